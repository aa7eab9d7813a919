from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List

from ...config import Settings
from ..domain.errors import AddonError, WriteError
from ..domain.models import RegistrationTable
from .cache import ADDONS_KEY, HOOKS_KEY, AddonCache
from .fs import atomic_write_text
from .hooks import HookRegistry
from .locks import LockManager
from .registry import AddonRegistry

logger = logging.getLogger("addonhost.addons.artifacts")

BUNDLE_TEMPLATE = """define([], function () {
    {__JS__}
});"""


class ArtifactRebuilder:
    """
    Regenerates everything derived from the enabled-addon set:

    - the bootstrap bundle (every enabled addon's bootstrap.js, by name)
    - the registration table (hooks / routes), unless autoload is on
    """

    def __init__(
        self,
        settings: Settings,
        registry: AddonRegistry,
        hooks: HookRegistry,
        cache: AddonCache,
        locks: LockManager,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.hooks = hooks
        self.cache = cache
        self.locks = locks

    @property
    def artifact_path(self) -> Path:
        return self.settings.root_path / self.settings.bootstrap_artifact

    @property
    def registration_path(self) -> Path:
        return self.settings.config_dir / self.settings.registration_file

    def bundle(self) -> str:
        fragments: List[str] = []
        for info in self.registry.list():
            if not info.enabled:
                continue
            fragment = self.registry.addon_dir(info.name) / self.settings.bootstrap_file
            if fragment.is_file():
                fragments.append(fragment.read_text(encoding="utf-8"))
        return BUNDLE_TEMPLATE.replace("{__JS__}", "\n".join(fragments))

    def registration_table(self) -> RegistrationTable:
        hooks: Dict[str, List[str]] = {}
        routes: Dict[str, str] = {}
        for info in self.registry.list():
            if not info.enabled:
                continue
            addon_dir = self.registry.addon_dir(info.name)
            try:
                impl = self.hooks.resolve(info.name, addon_dir, info)
                names = self.hooks.declared_hooks(impl, info)
            except AddonError as e:
                logger.warning("Hooks of addon '%s' unavailable, using manifest only: %s", info.name, e)
                names = info.declared_hooks
            for hook in names:
                hooks.setdefault(hook, []).append(info.name)

            rewrite = self.registry.config(info.name).get("rewrite") or {}
            if isinstance(rewrite, dict):
                for pattern, target in rewrite.items():
                    routes[str(pattern)] = str(target)
        return RegistrationTable(autoload=False, hooks=hooks, route=routes)

    def rebuild(self) -> Path:
        self.registry.invalidate()
        with self.locks.rebuild():
            content = self.bundle()
            try:
                atomic_write_text(self.artifact_path, content)
            except OSError as e:
                raise WriteError(f"Cannot write {self.artifact_path}: {e}") from e
            logger.info("Rebuilt bootstrap bundle %s", self.artifact_path)

            self.cache.delete(ADDONS_KEY)
            self.cache.delete(HOOKS_KEY)

            if self.settings.autoload:
                logger.debug("Autoload enabled; registration table not written")
                return self.artifact_path

            table = self.registration_table()
            try:
                atomic_write_text(
                    self.registration_path,
                    json.dumps(table.model_dump(), indent=2, sort_keys=True, ensure_ascii=False),
                )
            except OSError as e:
                raise WriteError(f"Cannot write {self.registration_path}: {e}") from e
            logger.info("Wrote registration table %s", self.registration_path)
        return self.artifact_path
