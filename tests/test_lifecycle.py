import io
import zipfile
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

from addonhost.addons.domain.errors import (
    AddonEnabled,
    AlreadyExists,
    ArchiveCorrupt,
    Conflict,
    ExtractFailed,
    HookFailed,
    ManifestInvalid,
    ManifestMissing,
    NotFound,
    UploadRejected,
    WriteError,
)
from addonhost.addons.domain.models import AddonStatus
from addonhost.addons.services.hooks import AddonHooks
from addonhost.addons.services.lifecycle import LifecycleService
from addonhost.config import Settings

from .conftest import info_ini, zip_bytes

INDEX = "app/controller/Index.php"
INDEX_SRC = "<?php\nclass Index {}\n"

HOOKS_MODULE = '''
from pathlib import Path


class Hooks:
    hooks = ["app_init"]
    info = None

    def install(self):
        (Path(__file__).parent / "installed.flag").write_text("yes")

    def uninstall(self):
        pass

    def check_info(self):
        return True


addon = Hooks()
'''

VERSIONED_HOOKS_MODULE = '''
from pathlib import Path


class Hooks:
    info = None

    def install(self):
        (Path(__file__).parent / "installed.flag").write_text("__VERSION__")

    def uninstall(self):
        pass

    def check_info(self):
        return True


addon = Hooks()
'''


def versioned_hooks(version):
    return VERSIONED_HOOKS_MODULE.replace("__VERSION__", version)


class TestInstall:
    def test_install_projects_and_enables(self, service, settings, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})

        result = service.install("demo")

        assert result.status == "installed"
        assert result.manifest.status is AddonStatus.ENABLED
        assert result.manifest.installed is True
        assert live(INDEX).read_text() == INDEX_SRC
        assert service.records.load("demo").files == [INDEX]
        assert not (settings.addon_dir("demo") / "app").exists()
        assert service.info("demo").enabled

    def test_missing_package(self, service):
        with pytest.raises(NotFound):
            service.install("demo")

    def test_invalid_name(self, service):
        with pytest.raises(ManifestInvalid):
            service.install("../demo")

    def test_existing_addon(self, service, make_package, make_addon):
        make_package("demo", {INDEX: INDEX_SRC})
        make_addon("demo", {})

        with pytest.raises(AlreadyExists):
            service.install("demo")

    def test_corrupt_package(self, service, settings):
        settings.backups_dir.mkdir(parents=True)
        (settings.backups_dir / "demo.zip").write_bytes(b"not a zip")

        with pytest.raises(ArchiveCorrupt):
            service.install("demo")
        assert not settings.addon_dir("demo").exists()

    def test_manifest_name_must_match_directory(self, service, settings):
        settings.backups_dir.mkdir(parents=True)
        (settings.backups_dir / "demo.zip").write_bytes(zip_bytes({"info.ini": info_ini("other")}))

        with pytest.raises(ManifestInvalid):
            service.install("demo")
        assert not settings.addon_dir("demo").exists()

    def test_conflict_aborts_and_leaves_live_tree(self, service, settings, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})
        live("app/controller").mkdir(parents=True)
        live(INDEX).write_text("host")

        with pytest.raises(Conflict) as exc:
            service.install("demo")

        assert exc.value.conflicts == [INDEX]
        assert live(INDEX).read_text() == "host"
        assert not settings.addon_dir("demo").exists()

    def test_force_overwrites_and_backs_up(self, service, settings, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})
        live("app/controller").mkdir(parents=True)
        live(INDEX).write_text("host")

        service.install("demo", force=True)

        assert live(INDEX).read_text() == INDEX_SRC
        backups = list(settings.backups_dir.glob("demo-conflict-enable-*.zip"))
        assert len(backups) == 1
        with zipfile.ZipFile(backups[0]) as zf:
            assert zf.read(INDEX) == b"host"

    def test_failing_install_hook_rolls_back(self, service, settings, make_package):
        class Boom(AddonHooks):
            def install(self):
                raise RuntimeError("boom")

        make_package("demo", {INDEX: INDEX_SRC})
        service.hooks.register("demo", Boom())

        with pytest.raises(HookFailed, match="boom"):
            service.install("demo")
        assert not settings.addon_dir("demo").exists()

    def test_failing_enable_hook_removes_live_copies(self, service, settings, make_package, live):
        class BadEnable(AddonHooks):
            def enable(self):
                raise RuntimeError("nope")

        make_package("demo", {INDEX: INDEX_SRC})
        service.hooks.register("demo", BadEnable())

        with pytest.raises(HookFailed, match="nope"):
            service.install("demo")
        assert not settings.addon_dir("demo").exists()
        assert not live(INDEX).exists()
        assert not live("app").exists()

    def test_unsafe_entry_aborts_extraction(self, service, settings):
        settings.backups_dir.mkdir(parents=True)
        (settings.backups_dir / "demo.zip").write_bytes(
            zip_bytes({"info.ini": info_ini("demo"), "../evil.php": "<?php"})
        )

        with pytest.raises(ExtractFailed):
            service.install("demo")

        assert not settings.addon_dir("demo").exists()
        assert not (settings.addons_dir / "evil.php").exists()
        assert not (settings.root_path / "evil.php").exists()

    def test_failed_rebuild_drops_fragment_from_bundle(self, tmp_path, settings, make_package, live):
        # registration table dir is a regular file, so that write fails
        blocker = tmp_path / "config-blocker"
        blocker.write_text("")
        svc = LifecycleService(settings.model_copy(update={"config_path": blocker}))
        make_package("demo", {INDEX: INDEX_SRC, "bootstrap.js": "DEMO();"})

        with pytest.raises(WriteError):
            svc.install("demo")

        assert not settings.addon_dir("demo").exists()
        assert not live(INDEX).exists()
        assert "DEMO();" not in live("public/assets/js/addons.js").read_text()

    def test_forced_reinstall_loads_new_hook_code(self, service, settings, make_package):
        make_package("demo", {"addon.py": versioned_hooks("v1")})
        service.install("demo")
        assert (settings.addon_dir("demo") / "installed.flag").read_text() == "v1"

        make_package("demo", {"addon.py": versioned_hooks("v2")})
        service.install("demo", force=True)

        assert (settings.addon_dir("demo") / "installed.flag").read_text() == "v2"

    def test_result_flags(self, service, make_package):
        make_package("demo", {INDEX: INDEX_SRC, "config.json": "{}", "testdata.sql": "SELECT 1;"})

        result = service.install("demo")

        assert result.has_config is True
        assert result.has_testdata is True

    def test_seed_script_runs_with_prefix(self, tmp_path, settings, make_package):
        db = tmp_path / "site.db"
        svc = LifecycleService(
            Settings(
                root_path=settings.root_path,
                log_dir=settings.log_dir,
                database_url=f"sqlite:///{db}",
                table_prefix="yu_",
            )
        )
        make_package(
            "demo",
            {
                INDEX: INDEX_SRC,
                "install.sql": (
                    "-- demo tables\n"
                    "CREATE TABLE __PREFIX__demo (id INTEGER PRIMARY KEY, title TEXT);\n"
                    "INSERT INTO __PREFIX__demo (id, title) VALUES (1, 'a');\n"
                    "INSERT INTO __PREFIX__demo (id, title) VALUES (1, 'dup');\n"
                    "THIS IS NOT SQL;\n"
                    "INSERT INTO __PREFIX__demo (id, title) VALUES (2, 'b');\n"
                ),
            },
        )

        svc.install("demo")

        engine = create_engine(f"sqlite:///{db}")
        with engine.connect() as conn:
            rows = conn.execute(text("SELECT id, title FROM yu_demo ORDER BY id")).fetchall()
        engine.dispose()
        assert [tuple(r) for r in rows] == [(1, "a"), (2, "b")]


class TestUploadInstall:
    def _upload(self, service, entries, filename="demo.zip"):
        data = zip_bytes(entries)
        return service.install_from_upload(filename, io.BytesIO(data), len(data))

    def test_upload_installs_disabled(self, service, settings, live):
        result = self._upload(service, {"info.ini": info_ini("demo"), INDEX: INDEX_SRC})

        assert result.status == "installed"
        assert result.manifest.status is AddonStatus.DISABLED
        assert result.manifest.installed is True
        assert (settings.addon_dir("demo") / INDEX).read_text() == INDEX_SRC
        assert not live(INDEX).exists()
        assert list((settings.backups_dir / "uploads").iterdir()) == []

    def test_runs_addon_install_hook(self, service, settings):
        self._upload(service, {"info.ini": info_ini("demo"), "addon.py": HOOKS_MODULE})

        assert (settings.addon_dir("demo") / "installed.flag").read_text() == "yes"

    def test_rejects_extension(self, service):
        with pytest.raises(UploadRejected):
            self._upload(service, {"info.ini": info_ini("demo")}, filename="demo.tar")

    def test_rejects_oversized(self, settings):
        svc = LifecycleService(settings.model_copy(update={"upload_max_bytes": 10}))

        with pytest.raises(UploadRejected):
            self._upload(svc, {"info.ini": info_ini("demo")})

    def test_corrupt_upload(self, service, settings):
        with pytest.raises(ArchiveCorrupt):
            service.install_from_upload("demo.zip", io.BytesIO(b"garbage"), 7)
        assert list((settings.backups_dir / "uploads").iterdir()) == []

    def test_upload_without_manifest(self, service):
        with pytest.raises(ManifestMissing):
            self._upload(service, {INDEX: INDEX_SRC})

    def test_upload_of_existing_addon(self, service, make_addon):
        make_addon("demo", {})

        with pytest.raises(AlreadyExists):
            self._upload(service, {"info.ini": info_ini("demo")})


class TestEnableDisable:
    def test_hand_edit_blocks_disable_until_forced(self, service, settings, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})
        service.install("demo")
        live(INDEX).write_text("hand edited")

        with pytest.raises(Conflict) as exc:
            service.disable("demo")
        assert exc.value.conflicts == [INDEX]
        assert service.info("demo").enabled

        result = service.disable("demo", force=True)

        assert result.status == "disabled"
        assert result.manifest.status is AddonStatus.DISABLED
        with zipfile.ZipFile(result.backup_path) as zf:
            assert zf.read(INDEX) == b"hand edited"
        assert not live(INDEX).exists()
        assert (settings.addon_dir("demo") / INDEX).read_text() == INDEX_SRC

    def test_disable_then_enable(self, service, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})
        service.install("demo")

        service.disable("demo")
        assert not live(INDEX).exists()

        result = service.enable("demo")
        assert result.status == "enabled"
        assert live(INDEX).read_text() == INDEX_SRC

    def test_enable_conflict(self, service, make_addon, live):
        make_addon("demo", {INDEX: INDEX_SRC})
        live("app/controller").mkdir(parents=True)
        live(INDEX).write_text("host")

        with pytest.raises(Conflict):
            service.enable("demo")
        assert live(INDEX).read_text() == "host"
        assert not service.info("demo").enabled

    def test_stuck_live_file_does_not_fail_disable(self, service, make_addon, live, monkeypatch):
        make_addon("demo", {"app/a.php": "a", "app/b.php": "b"})
        service.enable("demo")
        stuck = live("app/a.php")
        real_unlink = Path.unlink

        def unlink(self, *args, **kwargs):
            if self == stuck:
                raise PermissionError("file is locked")
            return real_unlink(self, *args, **kwargs)

        monkeypatch.setattr(Path, "unlink", unlink)

        result = service.disable("demo")

        assert result.status == "disabled"
        assert result.manifest.status is AddonStatus.DISABLED
        assert stuck.exists()
        assert not live("app/b.php").exists()

    def test_repeated_disable_leaves_host_files(self, service, make_addon, live):
        live("app").mkdir()
        live("app/shared.php").write_text("host")
        make_addon("demo", {"app/shared.php": "addon"})

        service.enable("demo", force=True)
        service.disable("demo")
        service.disable("demo", force=True)

        assert live("app/shared.php").read_text() == "host"

    def test_unknown_addon(self, service):
        with pytest.raises(NotFound):
            service.enable("ghost")
        with pytest.raises(NotFound):
            service.disable("ghost")

    def test_conflicts_query(self, service, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})
        service.install("demo")

        assert service.conflicts("demo") == []
        live(INDEX).write_text("edited")
        assert service.conflicts("demo") == [INDEX]

    def test_noconflict_raises_with_paths(self, service, make_addon, live):
        make_addon("demo", {INDEX: INDEX_SRC})
        live("app/controller").mkdir(parents=True)
        live(INDEX).write_text("host")

        with pytest.raises(Conflict) as exc:
            service.noconflict("demo")
        assert exc.value.details == {"conflicts": [INDEX]}


class TestUninstall:
    def test_enabled_addon_requires_force(self, service, settings, make_package, live):
        make_package("demo", {INDEX: INDEX_SRC})
        service.install("demo")

        with pytest.raises(AddonEnabled):
            service.uninstall("demo")
        assert settings.addon_dir("demo").exists()

        result = service.uninstall("demo", force=True)

        assert result.status == "uninstalled"
        assert not settings.addon_dir("demo").exists()
        assert not live(INDEX).exists()
        assert service.list() == []

    def test_disabled_addon(self, service, settings, make_package):
        make_package("demo", {INDEX: INDEX_SRC})
        service.install("demo")
        service.disable("demo")

        service.uninstall("demo")

        assert not settings.addon_dir("demo").exists()

    def test_missing(self, service):
        with pytest.raises(NotFound):
            service.uninstall("demo")


class TestBackupAndCheck:
    def test_backup(self, service, settings, make_addon):
        make_addon("demo", {INDEX: INDEX_SRC})

        result = service.backup("demo")

        assert result.status == "backed_up"
        assert result.backup_path.startswith(str(settings.backups_dir))
        assert result.warnings == []

    def test_check_rejects_incomplete_info(self, service, make_addon):
        class Incomplete(AddonHooks):
            def check_info(self):
                return False

        make_addon("demo", {})
        service.hooks.register("demo", Incomplete())

        with pytest.raises(ManifestInvalid, match="incomplete"):
            service.check("demo")

    def test_check_with_default_hooks(self, service, make_addon):
        make_addon("demo", {INDEX: INDEX_SRC}, title="Demo")

        assert service.check("demo").title == "Demo"

    def test_broken_addon_module(self, service, make_addon):
        make_addon("demo", {"addon.py": "raise ImportError('missing dependency')\n"})

        with pytest.raises(HookFailed, match="missing dependency"):
            service.check("demo")
