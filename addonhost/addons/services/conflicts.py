from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Sequence

from ...config import Settings
from .stash import OverlayStash

logger = logging.getLogger("addonhost.addons.conflicts")

_CHUNK = 1024 * 1024


def md5_file(path: Path) -> str:
    h = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


class OverlayLayout:
    """
    Path mapping between an addon's private tree and the live tree.

    Tracked directories map to the identically named live directory, except the
    assets directory which maps to <public_assets_dir>/<name>/.
    All relative paths use '/' regardless of platform.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.root = settings.root_path

    @property
    def tracked_dirs(self) -> List[str]:
        dirs = list(self.settings.tracked_dirs)
        if self.settings.assets_dir not in dirs:
            dirs.append(self.settings.assets_dir)
        return dirs

    def addon_dir(self, name: str) -> Path:
        return self.settings.addon_dir(name)

    def assets_prefix(self, name: str) -> str:
        return self.settings.public_assets_for(name) + "/"

    def live_path(self, name: str, addon_rel: str) -> str:
        assets = self.settings.assets_dir.strip("/") + "/"
        if addon_rel.startswith(assets):
            return self.assets_prefix(name) + addon_rel[len(assets):]
        return addon_rel

    def addon_path(self, name: str, live_rel: str) -> str:
        prefix = self.assets_prefix(name)
        if live_rel.startswith(prefix):
            return self.settings.assets_dir.strip("/") + "/" + live_rel[len(prefix):]
        return live_rel

    def is_assets(self, name: str, live_rel: str) -> bool:
        return live_rel.startswith(self.assets_prefix(name))

    def live_file(self, live_rel: str) -> Path:
        return self.root.joinpath(*normalize(live_rel).split("/"))

    def addon_file(self, name: str, addon_rel: str) -> Path:
        return self.addon_dir(name).joinpath(*normalize(addon_rel).split("/"))


def normalize(rel: str) -> str:
    """Records written on another server may use '\\'."""
    return rel.replace("\\", "/").lstrip("/")


@dataclass
class Candidate:
    addon_rel: str
    live_rel: str
    size: int
    digest: Callable[[], str]


class ConflictDetector:
    """
    Walks an addon's tracked directories and maps every file to the live tree.

    detect(name, only_conflicts=False) -> every live path the addon provides
    detect(name, only_conflicts=True)  -> only paths where a live file exists
                                          and differs by size or md5
    """

    def __init__(self, layout: OverlayLayout) -> None:
        self.layout = layout

    def walk(self, name: str) -> Iterator[Candidate]:
        addon_dir = self.layout.addon_dir(name)
        for dir_name in self.layout.tracked_dirs:
            base = addon_dir / dir_name
            if not base.is_dir():
                continue
            # bottom-up: deepest files first
            for root, _dirs, files in os.walk(base, topdown=False):
                for fname in sorted(files):
                    path = Path(root) / fname
                    addon_rel = path.relative_to(addon_dir).as_posix()
                    yield Candidate(
                        addon_rel=addon_rel,
                        live_rel=self.layout.live_path(name, addon_rel),
                        size=path.stat().st_size,
                        digest=lambda p=path: md5_file(p),
                    )

    def _stashed(self, name: str, seen: Sequence[str]) -> Iterator[Candidate]:
        stash = OverlayStash(self.layout.addon_dir(name))
        if not stash.exists():
            return
        tracked = tuple(d.strip("/") + "/" for d in self.layout.tracked_dirs)
        for addon_rel in stash.source_names():
            if addon_rel in seen or not addon_rel.startswith(tracked):
                continue
            size = stash.source_size(addon_rel) or 0
            yield Candidate(
                addon_rel=addon_rel,
                live_rel=self.layout.live_path(name, addon_rel),
                size=size,
                digest=lambda r=addon_rel: hashlib.md5(stash.read_source(r)).hexdigest(),
            )

    def candidates(self, name: str) -> List[Candidate]:
        found = list(self.walk(name))
        seen = {c.addon_rel for c in found}
        found.extend(self._stashed(name, seen))
        return found

    def detect(self, name: str, only_conflicts: bool = False) -> List[str]:
        paths: List[str] = []
        for cand in self.candidates(name):
            if only_conflicts:
                live = self.layout.live_file(cand.live_rel)
                if not live.is_file():
                    continue
                if live.stat().st_size == cand.size and md5_file(live) == cand.digest():
                    continue
            paths.append(cand.live_rel)

        # drop duplicates, keep first-seen order
        unique = list(dict.fromkeys(p for p in paths if p))
        if only_conflicts and unique:
            logger.info("Addon '%s' conflicts with %d live file(s)", name, len(unique))
        return unique
