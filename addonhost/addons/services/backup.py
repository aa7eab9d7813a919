from __future__ import annotations

import logging
import os
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .conflicts import OverlayLayout

logger = logging.getLogger("addonhost.addons.backup")

TAG_CONFLICT_ENABLE = "conflict-enable"
TAG_CONFLICT_DISABLE = "conflict-disable"
TAG_BACKUP = "backup"


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


class BackupArchiver:
    """
    Write-once zip snapshots under <runtime>/addons/.

    Backups are an audit / manual recovery aid only: failures are logged and
    the partial archive is left as is. Nothing reads them back automatically.
    """

    def __init__(self, layout: OverlayLayout, backups_dir: Path) -> None:
        self.layout = layout
        self.backups_dir = backups_dir

    def archive_path(self, name: str, tag: str) -> Path:
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        stem = f"{name}-{tag}-{_timestamp()}"
        target = self.backups_dir / f"{stem}.zip"
        n = 1
        # write-once: never reuse a name taken within the same second
        while target.exists():
            target = self.backups_dir / f"{stem}-{n}.zip"
            n += 1
        return target

    def backup(self, name: str, relative_paths: Iterable[str], tag: str) -> Optional[Path]:
        """Archive live-tree files (read from the shared tree, not the addon)."""
        paths = list(relative_paths)
        if not paths:
            return None
        target = self.archive_path(name, tag)
        try:
            with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for rel in paths:
                    zf.write(self.layout.live_file(rel), rel)
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            logger.warning("Backup of %d file(s) for addon '%s' abandoned: %s", len(paths), name, e)
            return None
        logger.info("Backed up %d live file(s) for addon '%s' to %s", len(paths), name, target)
        return target

    def backup_directory(self, name: str) -> Optional[Path]:
        """Archive the addon's whole private directory."""
        addon_dir = self.layout.addon_dir(name)
        target = self.archive_path(name, TAG_BACKUP)
        try:
            with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for root, _dirs, files in os.walk(addon_dir):
                    for fname in sorted(files):
                        path = Path(root) / fname
                        zf.write(path, path.relative_to(addon_dir).as_posix())
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            logger.warning("Backup of addon '%s' abandoned: %s", name, e)
            return None
        logger.info("Backed up addon '%s' to %s", name, target)
        return target
