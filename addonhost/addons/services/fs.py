from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable

logger = logging.getLogger("addonhost.addons.fs")


def atomic_write_text(path: Path, content: str) -> None:
    """Write to a temp file in the same directory, then os.replace into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def merge_tree(src: Path, dst: Path) -> None:
    """Copy src into dst file by file, keeping whatever dst already holds."""
    shutil.copytree(src, dst, dirs_exist_ok=True)


def safe_unlink(path: Path) -> bool:
    """Best-effort file removal; failures are logged, never raised."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Failed removing %s: %s", path, exc)
        return False


def safe_rmtree(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        safe_unlink(path)
        return
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


def prune_empty_dirs(dirs: Iterable[Path], stop_at: Path) -> None:
    """
    Remove each directory if empty, then walk upward while parents are empty.

    Never removes `stop_at` or anything outside it.
    """
    stop = stop_at.resolve()
    # deepest first so children go before their parents
    for d in sorted({Path(p) for p in dirs}, key=lambda p: len(p.parts), reverse=True):
        current = d
        while True:
            try:
                resolved = current.resolve()
            except OSError:
                break
            if resolved == stop or stop not in resolved.parents:
                break
            try:
                current.rmdir()
            except OSError:
                # not empty, already gone, or not permitted
                break
            logger.debug("Pruned empty directory %s", current)
            current = current.parent
