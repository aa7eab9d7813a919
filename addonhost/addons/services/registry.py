from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..domain.errors import AddonError, ManifestInvalid, NotFound
from ..domain.models import AddonInfo, AddonLoadError
from .cache import ADDONS_KEY, AddonCache
from .manifest import MANIFEST_NAME, read_manifest_from_dir, write_manifest

logger = logging.getLogger("addonhost.addons.registry")

CONFIG_NAME = "config.json"


class AddonSnapshot(BaseModel):
    addons: Dict[str, AddonInfo] = {}
    errors: List[AddonLoadError] = []


class AddonRegistry:
    """
    Directory-backed view of installed addons.

    The addons directory is the source of truth; the parsed snapshot is cached
    under the `addons` key and dropped whenever a manifest is written.
    """

    def __init__(self, addons_dir: Path, cache: Optional[AddonCache] = None) -> None:
        self.addons_dir = addons_dir
        self.cache = cache or AddonCache()

    def addon_dir(self, name: str) -> Path:
        return self.addons_dir / name

    def exists(self, name: str) -> bool:
        return bool(name) and self.addon_dir(name).is_dir()

    def load(self) -> AddonSnapshot:
        """
        Scan addons_dir/*/info.ini.

        - Invalid manifests are logged and added to .errors, but do not crash.
        - A manifest whose name differs from its directory is rejected.
        """
        addons: Dict[str, AddonInfo] = {}
        errors: List[AddonLoadError] = []

        if not self.addons_dir.exists():
            logger.debug("Addons directory does not exist: %s", self.addons_dir)
            return AddonSnapshot()

        for manifest_path in sorted(self.addons_dir.glob(f"*/{MANIFEST_NAME}")):
            addon_root = manifest_path.parent
            try:
                info = read_manifest_from_dir(addon_root)
            except AddonError as e:
                logger.warning("Invalid manifest in %s: %s", manifest_path, e)
                errors.append(AddonLoadError(addon_path=str(addon_root), error=str(e)))
                continue

            if info.name != addon_root.name:
                msg = f"Addon name '{info.name}' does not match directory '{addon_root.name}'"
                logger.error(msg)
                errors.append(AddonLoadError(addon_path=str(addon_root), error=msg))
                continue

            addons[info.name] = info

        return AddonSnapshot(addons=addons, errors=errors)

    def snapshot(self) -> AddonSnapshot:
        cached = self.cache.get(ADDONS_KEY)
        if cached is None:
            cached = self.load()
            self.cache.set(ADDONS_KEY, cached)
        return cached

    def list(self) -> List[AddonInfo]:
        """All installed addons sorted by name."""
        snap = self.snapshot()
        return [snap.addons[name] for name in sorted(snap.addons)]

    def get(self, name: str) -> AddonInfo:
        # read through to disk so status reflects the latest write
        if not self.exists(name):
            raise NotFound(f"Addon '{name}' not found")
        info = read_manifest_from_dir(self.addon_dir(name))
        if info.name != name:
            raise ManifestInvalid(f"Addon name '{info.name}' does not match directory '{name}'")
        return info

    def save(self, info: AddonInfo) -> None:
        write_manifest(self.addon_dir(info.name), info)
        self.invalidate()

    def invalidate(self) -> None:
        self.cache.delete(ADDONS_KEY)

    def config_file(self, name: str) -> Path:
        return self.addon_dir(name) / CONFIG_NAME

    def config(self, name: str) -> Dict[str, Any]:
        """The addon's own config.json ({} when absent or unreadable)."""
        p = self.config_file(name)
        if not p.is_file():
            return {}
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable config for addon '%s': %s", name, e)
            return {}
        return data if isinstance(data, dict) else {}
