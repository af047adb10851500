from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from fnmanifest.repo.ignore import should_ignore_dir

log = logging.getLogger(__name__)


def rel_posix(path: Path, root: Path) -> str:
    return Path(os.path.relpath(str(path), str(root))).as_posix()


def scan_python_files(root: Path, exclude: Iterable[str] = ()) -> list[Path]:
    """
    Return absolute paths of every .py file under root.

    Ignored directories are pruned during the walk. The result is sorted by
    repo-relative POSIX path so every later phase sees modules in the same order.
    """
    root = root.resolve()
    extra = frozenset(exclude)
    out: list[Path] = []
    for dirpath, dirs, files in os.walk(root):
        root_p = Path(dirpath)

        # prune ignored dirs
        dirs[:] = [d for d in dirs if not should_ignore_dir(root_p / d, extra)]

        for f in files:
            if f.endswith(".py"):
                out.append((root_p / f).resolve())

    # stable ordering
    out.sort(key=lambda p: rel_posix(p, root))
    log.debug("found %d python files under %s", len(out), root)
    return out
