"""Configuration loading for faultline.

Sources are merged lowest to highest priority:
    1. Defaults (AnalysisConfiguration field defaults)
    2. ``[tool.faultline]`` in ``<root>/pyproject.toml``
    3. ``<root>/.faultline.toml``
    4. An explicit config file
    5. ``FAULTLINE_*`` environment variables
    6. Keyword overrides (CLI flags)
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TEST_GLOBS = [
    "tests/*",
    "test/*",
    "*/tests/*",
    "*/test/*",
    "*/__tests__/*",
    "spec/*",
    "*/spec/*",
    "test_*",
    "*_test.*",
    "*.test.*",
    "*.spec.*",
    "conftest.py",
]

DEFAULT_ENTRY_POINT_GLOBS = [
    "__init__.py",
    "index.js",
    "index.jsx",
    "index.ts",
    "index.tsx",
    "index.mjs",
    "index.cjs",
    "lib.rs",
    "mod.rs",
    "main.go",
    "public_api.*",
]

DEFAULT_EXCLUDE_DIRS = [
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    "dist",
    "build",
    "target",
    "vendor",
    ".next",
    "coverage",
]

# Environment variable -> (field, parser)
_ENV_FIELDS = {
    "FAULTLINE_MAX_WORKERS": ("max_workers", int),
    "FAULTLINE_MAX_OPEN_FILES": ("max_open_files", int),
    "FAULTLINE_TIME_BUDGET": ("time_budget_seconds", float),
    "FAULTLINE_MAX_FILE_SIZE_KB": ("max_file_size_kb", int),
}


@dataclass
class AnalysisConfiguration:
    """Configuration for a change impact analysis run."""
    max_workers: Optional[int] = None  # None = os.cpu_count()
    max_open_files: int = 64
    time_budget_seconds: Optional[float] = None  # None = no deadline
    max_file_size_kb: int = 1024
    test_globs: List[str] = field(default_factory=lambda: list(DEFAULT_TEST_GLOBS))
    entry_point_globs: List[str] = field(default_factory=lambda: list(DEFAULT_ENTRY_POINT_GLOBS))
    exclude_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))
    rename_similarity_threshold: float = 0.5

    def __post_init__(self) -> None:
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.max_open_files < 1:
            raise ConfigurationError("max_open_files must be at least 1")
        if self.time_budget_seconds is not None and self.time_budget_seconds < 0:
            raise ConfigurationError("time_budget_seconds must be non-negative")
        if self.max_file_size_kb < 1:
            raise ConfigurationError("max_file_size_kb must be at least 1")
        if not 0.0 < self.rename_similarity_threshold <= 1.0:
            raise ConfigurationError("rename_similarity_threshold must be in (0, 1]")

    @property
    def worker_count(self) -> int:
        return self.max_workers or os.cpu_count() or 4

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_kb * 1024


def load_configuration(root: Optional[Path] = None, config_file: Optional[Path] = None,
                       **overrides) -> AnalysisConfiguration:
    """Load configuration for the codebase at ``root`` with discovery and merging.

    Raises:
        ConfigurationError: If a config file is missing, unreadable or holds
            unknown keys or invalid values.
    """
    merged: Dict[str, Any] = {}
    root = Path(root) if root is not None else Path.cwd()

    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        data = _load_toml_file(pyproject)
        merged.update(data.get("tool", {}).get("faultline", {}))

    project_config = root / ".faultline.toml"
    if project_config.is_file():
        merged.update(_load_toml_file(project_config))

    if config_file is not None:
        config_file = Path(config_file)
        if not config_file.is_file():
            raise ConfigurationError(f"Config file not found: {config_file}")
        merged.update(_load_toml_file(config_file))

    merged.update(_load_env_vars())
    merged.update({key: value for key, value in overrides.items() if value is not None})

    known = {f.name for f in fields(AnalysisConfiguration)}
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ConfigurationError(
            "Unknown configuration keys", details={"keys": ", ".join(unknown)}
        )

    logger.debug("Resolved configuration keys: %s", sorted(merged))
    return AnalysisConfiguration(**merged)


def _load_env_vars() -> Dict[str, Any]:
    """Read FAULTLINE_* environment variables."""
    values: Dict[str, Any] = {}
    for env_name, (field_name, parser) in _ENV_FIELDS.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = parser(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from e
    return values


def _load_toml_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Invalid config file '{path}': {e}") from e
