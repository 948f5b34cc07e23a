"""RepoScope - AI review engine for repository dashboards."""

__version__ = "1.0.0"
