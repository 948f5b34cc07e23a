"""3-layer configuration system for RepoScope.

Loads and merges configuration from:
1. Default settings (built-in)
2. Project config (.reposcope/config.yaml)
3. CLI parameters (override)
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "ai": {
        "provider": "gemini",
        "temperature": 0.3,
        "timeout_seconds": 300,
        "rate_limit_cooldown_seconds": 60,
        "max_output_tokens": 8192,
        "gemini": {
            "model": "gemini-2.5-flash",
            "endpoint": "https://generativelanguage.googleapis.com",
            "api_key_env": "GEMINI_API_KEY",
        },
        "ollama": {
            "endpoint": "http://localhost:11434",
            "model": "llama3.1:8b",
        },
    },
    "storage": {
        "path": "~/.reposcope",
        "namespace": "reposcope",
        "quota_kb": 5120,
    },
    "history": {
        "capacity": 50,
        "fallback_capacity": 20,
    },
    "review": {
        "max_commits": 30,
        "max_pull_requests": 20,
        "max_files": 200,
        "max_readme_chars": 4000,
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_project_config(project_path: Path) -> dict:
    """Load project configuration from .reposcope/config.yaml."""
    config_path = project_path / ".reposcope" / "config.yaml"
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        data = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


def get_effective_config(
    project_path: Path,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    project_config = load_project_config(project_path)
    if project_config:
        config = deep_merge(config, project_config)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    return config


def get_storage_root(config: dict) -> Path:
    """Resolve the storage directory, expanding ~."""
    raw = config.get("storage", {}).get("path") or DEFAULT_CONFIG["storage"]["path"]
    return Path(raw).expanduser()


def get_quota_bytes(config: dict) -> Optional[int]:
    quota_kb = config.get("storage", {}).get("quota_kb")
    if not quota_kb:
        return None
    return int(quota_kb) * 1024
