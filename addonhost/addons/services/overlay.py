from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from ..domain.errors import WriteError
from ..domain.models import OverlayRecord
from .conflicts import ConflictDetector, OverlayLayout, normalize
from .fs import atomic_write_text, merge_tree, prune_empty_dirs, safe_rmtree, safe_unlink
from .stash import OverlayStash

logger = logging.getLogger("addonhost.addons.overlay")

RECORD_NAME = ".addonrc"


class OverlayRecordStore:
    """Reads and merges <addon_dir>/.addonrc."""

    def __init__(self, layout: OverlayLayout) -> None:
        self.layout = layout

    def path(self, name: str) -> Path:
        return self.layout.addon_dir(name) / RECORD_NAME

    def read_raw(self, name: str) -> Dict[str, Any]:
        p = self.path(name)
        if not p.is_file():
            return {}
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable overlay record %s: %s", p, e)
            return {}
        return data if isinstance(data, dict) else {}

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def load(self, name: str) -> OverlayRecord:
        try:
            return OverlayRecord.model_validate(self.read_raw(name))
        except ValidationError as e:
            logger.warning("Invalid overlay record for addon '%s': %s", name, e)
            return OverlayRecord()

    def merge(self, name: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Existing keys survive; keys in `changes` replace theirs."""
        data = self.read_raw(name)
        data.update(changes)
        atomic_write_text(self.path(name), json.dumps(data, ensure_ascii=False, indent=2))
        return data


class OverlayEngine:
    """
    Bidirectional copy between an addon's private tree and the live tree.

    project(): addon tracked dirs -> live tree (merge), then delete private copies.
    retract(): live tree -> addon tree where needed, then remove live copies.
    """

    def __init__(self, layout: OverlayLayout, detector: ConflictDetector, records: OverlayRecordStore) -> None:
        self.layout = layout
        self.detector = detector
        self.records = records

    def _live_dir_for(self, name: str, dir_name: str) -> Path:
        if dir_name == self.layout.settings.assets_dir:
            return self.layout.live_file(self.layout.settings.public_assets_for(name))
        return self.layout.live_file(dir_name)

    def project(self, name: str) -> List[str]:
        addon_dir = self.layout.addon_dir(name)
        stash = OverlayStash(addon_dir)

        files = self.detector.detect(name)
        if files:
            self.records.merge(name, {"files": files})

        on_disk = list(self.detector.walk(name))
        if not on_disk:
            logger.info("Addon '%s' has nothing new to project (%d recorded path(s))", name, len(files))
            return files

        # snapshot pristine copies and any live file we are about to overwrite
        already_projected = set(stash.source_names())
        already_displaced = set(stash.displaced_names())
        displaced: Dict[str, Path] = {}
        for cand in on_disk:
            live = self.layout.live_file(cand.live_rel)
            if (
                live.is_file()
                and cand.addon_rel not in already_projected
                and cand.live_rel not in already_displaced
            ):
                displaced[cand.live_rel] = live
        sources = {c.addon_rel: self.layout.addon_file(name, c.addon_rel) for c in on_disk}

        try:
            stash.write(sources, displaced)
            if displaced:
                record = self.records.load(name)
                merged = list(dict.fromkeys(record.displaced + sorted(displaced)))
                self.records.merge(name, {"displaced": merged})

            for dir_name in self.layout.tracked_dirs:
                src = addon_dir / dir_name
                if src.is_dir():
                    dst = self._live_dir_for(name, dir_name)
                    logger.debug("Projecting %s -> %s", src, dst)
                    merge_tree(src, dst)
        except OSError as e:
            logger.exception("Projection of addon '%s' failed", name)
            raise WriteError(f"Failed projecting addon '{name}' onto the live tree: {e}") from e

        # the live tree is now the only home of these files
        for dir_name in self.layout.tracked_dirs:
            safe_rmtree(addon_dir / dir_name)

        logger.info("Projected %d file(s) for addon '%s' (%d displaced)", len(on_disk), name, len(displaced))
        return files

    def retract(self, name: str) -> List[str]:
        addon_dir = self.layout.addon_dir(name)
        stash = OverlayStash(addon_dir)
        has_private_copies = any(True for _ in self.detector.walk(name))

        record = self.records.load(name)
        files = [normalize(f) for f in record.files]
        if not files:
            # never enabled: scan what the addon itself holds
            files = self.detector.detect(name)

        stashed_sources = set(stash.source_names())
        for live_rel in files:
            addon_rel = self.layout.addon_path(name, live_rel)
            target = self.layout.addon_file(name, addon_rel)
            try:
                if addon_rel in stashed_sources:
                    stash.restore_source(addon_rel, target)
                    continue
                # assets come back wholesale below
                if target.exists() or self.layout.is_assets(name, live_rel):
                    continue
                live = self.layout.live_file(live_rel)
                if live.is_file():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(live, target)
            except OSError as e:
                logger.warning("Could not restore %s into addon '%s': %s", live_rel, name, e)

        if not stash.exists() and not has_private_copies:
            live_assets = self._live_dir_for(name, self.layout.settings.assets_dir)
            if live_assets.is_dir():
                try:
                    merge_tree(live_assets, addon_dir / self.layout.settings.assets_dir)
                except OSError as e:
                    logger.warning("Could not copy assets back into addon '%s': %s", name, e)

        self._remove_live(name, files, stash)
        stash.delete()
        if self.records.exists(name):
            self.records.merge(name, {"displaced": []})

        logger.info("Retracted %d file(s) for addon '%s'", len(files), name)
        return files

    def purge(self, name: str) -> List[str]:
        """Remove every live copy this addon provides, without copying anything back."""
        record = self.records.load(name)
        files = list(dict.fromkeys(self.detector.detect(name) + [normalize(f) for f in record.files]))
        self._remove_live(name, files, OverlayStash(self.layout.addon_dir(name)))
        logger.info("Purged %d live file(s) of addon '%s'", len(files), name)
        return files

    def _remove_live(self, name: str, files: List[str], stash: OverlayStash) -> None:
        dirs = []
        for live_rel in files:
            live = self.layout.live_file(live_rel)
            dirs.append(live.parent)
            safe_unlink(live)

        for live_rel in stash.displaced_names():
            try:
                stash.restore_displaced(live_rel, self.layout.live_file(live_rel))
                logger.debug("Restored displaced live file %s", live_rel)
            except OSError as e:
                logger.warning("Could not restore displaced %s for addon '%s': %s", live_rel, name, e)

        prune_empty_dirs(dirs, stop_at=self.layout.root)
