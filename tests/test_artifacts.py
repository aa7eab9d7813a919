import json

import pytest

from addonhost.addons.domain.errors import WriteError
from addonhost.addons.services.cache import HOOKS_KEY
from addonhost.addons.services.lifecycle import LifecycleService

HOOKS_MODULE = '''
class Hooks:
    hooks = ["app_init"]
    info = None

    def install(self):
        pass

    def uninstall(self):
        pass

    def check_info(self):
        return True


addon = Hooks()
'''


class TestBundle:
    def test_enabled_fragments_in_name_order(self, service, settings, make_addon):
        make_addon("beta", {"bootstrap.js": "B();"}, status="1")
        make_addon("alpha", {"bootstrap.js": "A();"}, status="1")
        make_addon("gamma", {"bootstrap.js": "C();"})

        path = service.rebuilder.rebuild()

        content = path.read_text()
        assert path == settings.root_path / "public/assets/js/addons.js"
        assert content == "define([], function () {\n    A();\nB();\n});"

    def test_rebuild_is_idempotent(self, service, make_addon):
        make_addon("alpha", {"bootstrap.js": "A();"}, status="1")

        first = service.rebuilder.rebuild().read_bytes()
        second = service.rebuilder.rebuild().read_bytes()

        assert first == second

    def test_empty_when_nothing_enabled(self, service):
        assert service.rebuilder.rebuild().read_text() == "define([], function () {\n    \n});"

    def test_write_failure(self, service, settings):
        # a directory where the bundle should go
        (settings.root_path / "public/assets/js/addons.js").mkdir(parents=True)

        with pytest.raises(WriteError):
            service.rebuilder.rebuild()

    def test_drops_cached_hooks(self, service, make_addon):
        make_addon("alpha", {}, status="1")
        service.registry.list()
        service.cache.set(HOOKS_KEY, {"stale": True})

        service.rebuilder.rebuild()

        assert service.cache.get(HOOKS_KEY) is None


class TestRegistrationTable:
    def test_hooks_and_routes_of_enabled_addons(self, service, settings, make_addon):
        make_addon(
            "demo",
            {
                "addon.py": HOOKS_MODULE,
                "config.json": json.dumps({"rewrite": {"demo/list": "demo/index/list"}}),
            },
            status="1",
            hooks="view_filter",
        )
        make_addon("idle", {}, hooks="app_init")

        service.rebuilder.rebuild()

        table = json.loads((settings.root_path / "config/addons.json").read_text())
        assert table == {
            "autoload": False,
            "hooks": {"app_init": ["demo"], "view_filter": ["demo"]},
            "route": {"demo/list": "demo/index/list"},
        }

    def test_broken_module_falls_back_to_manifest(self, service, make_addon):
        make_addon("demo", {"addon.py": "raise RuntimeError('broken')\n"}, status="1", hooks="app_init")

        assert service.rebuilder.registration_table().hooks == {"app_init": ["demo"]}

    def test_autoload_skips_registration_table(self, settings, make_addon):
        svc = LifecycleService(settings.model_copy(update={"autoload": True}))
        make_addon("demo", {"bootstrap.js": "D();"}, status="1")

        svc.refresh()

        assert not (settings.root_path / "config/addons.json").exists()
        assert "D();" in (settings.root_path / "public/assets/js/addons.js").read_text()


class TestLifecycleRebuilds:
    def test_enable_and_disable_update_bundle(self, service, settings, make_addon):
        make_addon("demo", {"bootstrap.js": "D();", "app/a.php": "a"})
        bundle = settings.root_path / "public/assets/js/addons.js"

        service.enable("demo")
        assert "D();" in bundle.read_text()

        service.disable("demo")
        assert "D();" not in bundle.read_text()
