"""Tests for core/prompts.py."""

from __future__ import annotations

from reposcope.core.prompts import build_system_prompt, build_user_prompt
from reposcope.models.analysis import SCORE_METRICS


class TestUserPrompt:
    def test_includes_snapshot_sections(self, snapshot):
        prompt = build_user_prompt(snapshot, {})
        assert "octo/widgets" in prompt
        assert "- Python: 90.0%" in prompt
        assert "- alice: 40 contributions" in prompt
        assert "abc1234" in prompt
        assert "Add widget factory (+10/-2)" in prompt
        assert "Longer body" not in prompt
        assert "#7 [open] Factory cleanup by bob" in prompt
        assert "src/widgets/factory.py" in prompt
        assert "# Widgets" in prompt

    def test_asks_for_every_metric(self, snapshot):
        prompt = build_user_prompt(snapshot, {})
        for metric in SCORE_METRICS:
            assert f'"{metric}": <0-100>' in prompt
        assert "```json" in prompt

    def test_applies_limits(self, snapshot):
        snapshot.files = [f"file{i}.py" for i in range(10)]
        snapshot.readme = "x" * 50
        prompt = build_user_prompt(snapshot, {"max_files": 3, "max_readme_chars": 20})
        assert "FILE STRUCTURE (3 of 10)" in prompt
        assert "file2.py" in prompt
        assert "file3.py" not in prompt
        assert "[README truncated]" in prompt

    def test_optional_sections_omitted(self, snapshot):
        snapshot.languages = {}
        snapshot.contributors = []
        snapshot.readme = None
        prompt = build_user_prompt(snapshot, {})
        assert "# LANGUAGES" not in prompt
        assert "# CONTRIBUTORS" not in prompt
        assert "# README" not in prompt


def test_system_prompt_mentions_markdown():
    assert "markdown" in build_system_prompt()
