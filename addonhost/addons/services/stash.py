from __future__ import annotations

import logging
import os
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger("addonhost.addons.stash")

STASH_NAME = ".overlay.zip"
SOURCE_PREFIX = "source/"
DISPLACED_PREFIX = "displaced/"


class OverlayStash:
    """
    Zip kept inside a projected addon's directory.

    - source/<addon path>: the addon's own copy as it was before projection.
    - displaced/<live path>: live files that projection overwrote.

    Once projected the addon's tracked directories are gone; the stash is
    what conflict detection compares against and what retract restores from.
    """

    def __init__(self, addon_dir: Path) -> None:
        self.path = addon_dir / STASH_NAME

    def exists(self) -> bool:
        return self.path.is_file()

    def _names(self, prefix: str) -> List[str]:
        if not self.exists():
            return []
        with zipfile.ZipFile(self.path) as zf:
            return [n[len(prefix):] for n in zf.namelist() if n.startswith(prefix) and not n.endswith("/")]

    def source_names(self) -> List[str]:
        return self._names(SOURCE_PREFIX)

    def displaced_names(self) -> List[str]:
        return self._names(DISPLACED_PREFIX)

    def source_size(self, addon_rel: str) -> Optional[int]:
        if not self.exists():
            return None
        with zipfile.ZipFile(self.path) as zf:
            try:
                return zf.getinfo(SOURCE_PREFIX + addon_rel).file_size
            except KeyError:
                return None

    def read_source(self, addon_rel: str) -> bytes:
        with zipfile.ZipFile(self.path) as zf:
            return zf.read(SOURCE_PREFIX + addon_rel)

    def _extract(self, entry: str, target: Path) -> bool:
        if not self.exists():
            return False
        with zipfile.ZipFile(self.path) as zf:
            try:
                member = zf.getinfo(entry)
            except KeyError:
                return False
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
        return True

    def restore_source(self, addon_rel: str, target: Path) -> bool:
        return self._extract(SOURCE_PREFIX + addon_rel, target)

    def restore_displaced(self, live_rel: str, target: Path) -> bool:
        return self._extract(DISPLACED_PREFIX + live_rel, target)

    def write(self, sources: Dict[str, Path], displaced: Dict[str, Path]) -> None:
        """
        Add entries, keeping existing ones that are not being replaced.

        Written to a temp file and renamed so a crash never leaves a torn stash.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        new_entries: Dict[str, Path] = {SOURCE_PREFIX + k: v for k, v in sources.items()}
        new_entries.update({DISPLACED_PREFIX + k: v for k, v in displaced.items()})

        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".overlay.", suffix=".tmp")
        os.close(fd)
        try:
            with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as out:
                if self.exists():
                    with zipfile.ZipFile(self.path) as old:
                        for item in old.infolist():
                            if item.filename in new_entries:
                                continue
                            out.writestr(item, old.read(item.filename))
                for entry, src in new_entries.items():
                    out.write(src, entry)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Stashed %d source / %d displaced file(s) in %s", len(sources), len(displaced), self.path)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)
