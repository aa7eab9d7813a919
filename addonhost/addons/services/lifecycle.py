from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import BinaryIO, List, Optional

from ...config import Settings
from ..domain.errors import (
    AddonEnabled,
    AddonError,
    AlreadyExists,
    Conflict,
    HookFailed,
    ManifestInvalid,
    NotFound,
)
from ..domain.models import (
    AddonInfo,
    AddonOperationResult,
    AddonStatus,
    is_valid_addon_name,
)
from .artifacts import ArtifactRebuilder
from .backup import TAG_CONFLICT_DISABLE, TAG_CONFLICT_ENABLE, BackupArchiver
from .cache import AddonCache
from .conflicts import ConflictDetector, OverlayLayout
from .fs import safe_rmtree
from .hooks import AddonHooks, HookRegistry, call_hook
from .install import ArchiveInstaller, open_archive
from .locks import LockManager
from .overlay import OverlayEngine, OverlayRecordStore
from .registry import AddonRegistry
from .sql_runner import SqlRunner
from .stash import OverlayStash

logger = logging.getLogger("addonhost.addons.lifecycle")

INSTALL_SQL = "install.sql"
TESTDATA_SQL = "testdata.sql"


class LifecycleService:
    """
    install / enable / disable / uninstall / backup for addons.

    Every public operation holds the addon's file lock for its whole run.
    install() and install_from_upload() delete the addon directory on any
    failure after it was created; enable() and disable() leave partial state
    for the operator to retry.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        cache: Optional[AddonCache] = None,
        registry: Optional[AddonRegistry] = None,
        hooks: Optional[HookRegistry] = None,
        sql: Optional[SqlRunner] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache or AddonCache()
        self.registry = registry or AddonRegistry(settings.addons_dir, self.cache)
        self.hooks = hooks or HookRegistry()
        self.sql = sql or SqlRunner(settings.database_url, table_prefix=settings.table_prefix)

        self.layout = OverlayLayout(settings)
        self.detector = ConflictDetector(self.layout)
        self.records = OverlayRecordStore(self.layout)
        self.overlay = OverlayEngine(self.layout, self.detector, self.records)
        self.archiver = BackupArchiver(self.layout, settings.backups_dir)
        self.installer = ArchiveInstaller()
        self.locks = LockManager(settings.locks_dir)
        self.rebuilder = ArtifactRebuilder(settings, self.registry, self.hooks, self.cache, self.locks)

    # ----------------------------
    # Queries
    # ----------------------------

    def list(self) -> List[AddonInfo]:
        return self.registry.list()

    def info(self, name: str) -> AddonInfo:
        self._require_existing(name)
        return self.registry.get(name)

    def conflicts(self, name: str) -> List[str]:
        self._require_existing(name)
        return self.detector.detect(name, only_conflicts=True)

    def noconflict(self, name: str) -> bool:
        conflicts = self.detector.detect(name, only_conflicts=True)
        if conflicts:
            raise Conflict(conflicts, f"Addon '{name}' conflicts with {len(conflicts)} live file(s)")
        return True

    def check(self, name: str) -> AddonInfo:
        """Manifest parses, hook code resolves and reports its info complete."""
        self._require_existing(name)
        info = self.registry.get(name)
        impl = self._hooks_for(name, info)
        check_info = getattr(impl, "check_info", None)
        if check_info is None:
            raise ManifestInvalid(f"Addon '{name}' hook implementation has no check_info()")
        try:
            complete = check_info()
        except Exception as e:
            raise HookFailed(f"check_info() of addon '{name}' failed: {e}") from e
        if not complete:
            raise ManifestInvalid(f"Addon '{name}' info is incomplete")
        return info

    # ----------------------------
    # Install
    # ----------------------------

    def package_path(self, name: str) -> Path:
        return self.settings.backups_dir / f"{name}.zip"

    def install(self, name: str, force: bool = False) -> AddonOperationResult:
        """Install <runtime>/addons/<name>.zip, then enable it."""
        if not is_valid_addon_name(name):
            raise ManifestInvalid(f"Invalid addon name '{name}'")
        package = self.package_path(name)
        if not package.is_file():
            raise NotFound(f"Package for addon '{name}' not found at {package}")

        logger.info("Installing addon '%s' (force=%s)", name, force)
        with self.locks.addon(name):
            addon_dir = self.registry.addon_dir(name)
            if addon_dir.exists() and not force:
                raise AlreadyExists(f"Addon '{name}' already exists")

            # a forced reinstall must not reuse hook code loaded from the old addon.py
            self.hooks.forget(name)
            try:
                self.installer.extract(package, addon_dir)
                self.check(name)
                if not force:
                    self.noconflict(name)
                self._mark_installed(name)
                self._run_seed(name)
                self._enable(name, force=True)
            except Exception as e:
                logger.warning("Install of addon '%s' failed, rolling back: %s", name, e)
                self._discard(name)
                raise

        logger.info("Addon '%s' installed", name)
        return self._result("installed", name)

    def install_from_upload(
        self,
        filename: Optional[str],
        stream: BinaryIO,
        size: Optional[int] = None,
    ) -> AddonOperationResult:
        """
        Install an uploaded package. The addon is left disabled.

        - validates extension and size
        - reads info.ini from the archive before touching the addons dir
        - removes the stored upload on every exit path
        """
        s = self.settings
        self.installer.validate_upload(filename, size, max_bytes=s.upload_max_bytes, extensions=s.upload_extensions)
        stored = self.installer.store_upload(stream, s.backups_dir / "uploads", max_bytes=s.upload_max_bytes)

        try:
            with open_archive(stored) as zf:
                name = self.installer.read_manifest(zf).name
                logger.info("Installing uploaded addon '%s' from %s", name, filename)
                with self.locks.addon(name):
                    addon_dir = self.registry.addon_dir(name)
                    if addon_dir.exists():
                        raise AlreadyExists(f"Addon '{name}' already exists")
                    try:
                        self.installer.extract(zf, addon_dir)
                        self.check(name)
                        self._mark_installed(name)
                        self._run_seed(name)
                    except Exception as e:
                        logger.warning("Upload install of addon '%s' failed, rolling back: %s", name, e)
                        self._discard(name)
                        raise
        finally:
            stored.unlink(missing_ok=True)

        self.registry.invalidate()
        return self._result("installed", name)

    def _mark_installed(self, name: str) -> None:
        info = self.registry.get(name)
        info.installed = True
        self.registry.save(info)
        call_hook(name, self._hooks_for(name, info), "install", required=True)

    def _run_seed(self, name: str) -> None:
        self.sql.run_file(self.registry.addon_dir(name) / INSTALL_SQL)

    def _discard(self, name: str) -> None:
        addon_dir = self.registry.addon_dir(name)
        if OverlayStash(addon_dir).exists():
            # projection started; take live copies back out first
            self.overlay.purge(name)
        safe_rmtree(addon_dir)
        self.hooks.forget(name)
        self.registry.invalidate()
        # the bundle may already carry this addon's fragment
        try:
            self.rebuilder.rebuild()
        except AddonError as e:
            logger.error("Rebuild after discarding addon '%s' failed: %s", name, e)

    # ----------------------------
    # Uninstall
    # ----------------------------

    def uninstall(self, name: str, force: bool = False) -> AddonOperationResult:
        self._require_existing(name)
        logger.info("Uninstalling addon '%s' (force=%s)", name, force)
        with self.locks.addon(name):
            info = self.registry.get(name)
            if info.enabled and not force:
                raise AddonEnabled(f"Addon '{name}' is enabled; disable it before uninstalling")
            if not force:
                self.noconflict(name)
            else:
                self.overlay.purge(name)

            call_hook(name, self._hooks_for(name, info), "uninstall")

            shutil.rmtree(self.registry.addon_dir(name))
            self.hooks.forget(name)
            self.registry.invalidate()
            self.rebuilder.rebuild()

        logger.info("Addon '%s' uninstalled", name)
        return AddonOperationResult(status="uninstalled", manifest=info)

    # ----------------------------
    # Enable / disable
    # ----------------------------

    def enable(self, name: str, force: bool = False) -> AddonOperationResult:
        self._require_existing(name)
        with self.locks.addon(name):
            return self._enable(name, force)

    def _enable(self, name: str, force: bool) -> AddonOperationResult:
        logger.info("Enabling addon '%s' (force=%s)", name, force)
        if not force:
            self.noconflict(name)
        backup_path = self._backup_conflicts(name, TAG_CONFLICT_ENABLE)

        self.overlay.project(name)

        info = self.registry.get(name)
        call_hook(name, self._hooks_for(name, info), "enable")
        info.status = AddonStatus.ENABLED
        self.registry.save(info)

        self.rebuilder.rebuild()
        return self._result("enabled", name, backup_path)

    def disable(self, name: str, force: bool = False) -> AddonOperationResult:
        self._require_existing(name)
        with self.locks.addon(name):
            return self._disable(name, force)

    def _disable(self, name: str, force: bool) -> AddonOperationResult:
        logger.info("Disabling addon '%s' (force=%s)", name, force)
        info = self.registry.get(name)
        backup_path = None
        if not info.enabled and not OverlayStash(self.registry.addon_dir(name)).exists():
            # nothing projected; live paths now belong to the host
            logger.info("Addon '%s' is not projected; live tree left untouched", name)
        else:
            if not force:
                self.noconflict(name)
            backup_path = self._backup_conflicts(name, TAG_CONFLICT_DISABLE)
            self.overlay.retract(name)
            info = self.registry.get(name)

        call_hook(name, self._hooks_for(name, info), "disable")
        info.status = AddonStatus.DISABLED
        self.registry.save(info)

        self.rebuilder.rebuild()
        return self._result("disabled", name, backup_path)

    def _backup_conflicts(self, name: str, tag: str) -> Optional[Path]:
        if not self.settings.backup_global_files:
            return None
        conflicts = self.detector.detect(name, only_conflicts=True)
        if not conflicts:
            return None
        return self.archiver.backup(name, conflicts, tag)

    # ----------------------------
    # Backup / refresh
    # ----------------------------

    def backup(self, name: str) -> AddonOperationResult:
        self._require_existing(name)
        with self.locks.addon(name):
            path = self.archiver.backup_directory(name)
        result = self._result("backed_up", name, path)
        if path is None:
            result.warnings.append("Backup could not be completed (see logs)")
        return result

    def refresh(self) -> AddonOperationResult:
        self.rebuilder.rebuild()
        return AddonOperationResult(status="refreshed")

    # ----------------------------
    # Helpers
    # ----------------------------

    def _require_existing(self, name: str) -> None:
        if not is_valid_addon_name(name) or not self.registry.exists(name):
            raise NotFound(f"Addon '{name}' not found")

    def _hooks_for(self, name: str, info: AddonInfo) -> AddonHooks:
        return self.hooks.resolve(name, self.registry.addon_dir(name), info)

    def _result(self, status: str, name: str, backup_path: Optional[Path] = None) -> AddonOperationResult:
        addon_dir = self.registry.addon_dir(name)
        return AddonOperationResult(
            status=status,
            manifest=self.registry.get(name),
            has_config=self.registry.config_file(name).is_file(),
            has_testdata=(addon_dir / TESTDATA_SQL).is_file(),
            backup_path=str(backup_path) if backup_path else None,
        )
