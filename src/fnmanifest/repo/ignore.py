from __future__ import annotations

from pathlib import Path
from typing import Iterable

DEFAULT_IGNORES = {
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    "node_modules",
    "dist",
    "build",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".tox",
    ".fnmanifest",
}


def should_ignore_dir(dir_path: Path, extra: Iterable[str] = ()) -> bool:
    name = dir_path.name
    if name in DEFAULT_IGNORES or name in extra:
        return True
    # *.egg-info and friends
    return name.endswith(".egg-info")
