"""Run-scoped staging directory for fetched change content.

Layout::

    {cwd}/gerrit-{YYYY-MM-DD}/{change number}/{revision id}/
        base64.patch
        path/to/file.go.base64

Two runs on the same host and day share the date directory. Collisions are
not guarded against.
"""

from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path

from lintflow_core.errors import WorkspaceError
from lintflow_core.models import CONTENT_SUFFIX

logger = logging.getLogger(__name__)

ROOT_PREFIX = "gerrit-"


def make_root(now: datetime | None = None) -> Path:
    """Return the run directory for ``now`` (default: today) under the cwd."""
    now = now or datetime.now()
    try:
        cwd = Path.cwd()
    except OSError as e:
        raise WorkspaceError("failed to getwd") from e
    return cwd / f"{ROOT_PREFIX}{now.strftime('%Y-%m-%d')}"


def staged_name(name: str) -> str:
    """Map a changed-file path to its path relative to the staging root.

    The content suffix is always appended, even when ``name`` already ends
    with it, so ``a.go`` and ``a.go.base64`` never share a staged file. The
    patch is not a changed file and is written under ``PATCH_NAME`` directly.
    """
    # Gerrit magic files such as /COMMIT_MSG are absolute.
    return name.lstrip("/") + CONTENT_SUFFIX


def write(directory: str | os.PathLike, name: str, content: str) -> Path:
    """Write ``content`` to ``directory/name``, creating parents as needed."""
    path = Path(directory) / name
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceError("failed to mkdir") from e
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as e:
        raise WorkspaceError("failed to write") from e
    return path


def read(root: str | os.PathLike, name: str) -> str:
    """Read back a staged file exactly as it was written."""
    try:
        with open(Path(root) / name, encoding="utf-8", newline="") as f:
            return f.read()
    except OSError as e:
        raise WorkspaceError(f"failed to read {name}") from e


def clean(root: str | os.PathLike) -> None:
    """Remove ``root`` and everything below it. Missing paths are ignored.

    Parent directories left empty are pruned up to and including the
    ``gerrit-*`` run directory.
    """
    path = Path(root)
    if path.exists():
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise WorkspaceError("failed to clean") from e
        logger.debug("Removed staging directory %s", path)

    run_dir = next((p for p in path.parents if p.name.startswith(ROOT_PREFIX)), None)
    if run_dir is None:
        return
    for parent in path.parents:
        if parent.exists():
            if any(parent.iterdir()):
                break
            try:
                parent.rmdir()
            except OSError:
                # Another run staged into it after the check.
                break
        if parent == run_dir:
            break
