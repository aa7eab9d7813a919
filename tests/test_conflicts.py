from addonhost.addons.services.conflicts import (
    ConflictDetector,
    OverlayLayout,
    md5_file,
    normalize,
)


def _detector(settings):
    return ConflictDetector(OverlayLayout(settings))


class TestLayout:
    def test_assets_map_under_public_addons_dir(self, settings):
        layout = OverlayLayout(settings)

        assert layout.live_path("demo", "assets/js/demo.js") == "public/assets/addons/demo/js/demo.js"
        assert layout.live_path("demo", "app/controller/Index.php") == "app/controller/Index.php"

    def test_addon_path_inverts_live_path(self, settings):
        layout = OverlayLayout(settings)

        assert layout.addon_path("demo", "public/assets/addons/demo/css/a.css") == "assets/css/a.css"
        # another addon's assets are not ours
        assert layout.addon_path("demo", "public/assets/addons/other/a.css") == "public/assets/addons/other/a.css"

    def test_assets_dir_is_always_tracked(self, settings):
        assert OverlayLayout(settings).tracked_dirs == ["app", "public", "templates", "assets"]

    def test_normalize_backslashes(self):
        assert normalize("\\app\\controller\\Index.php") == "app/controller/Index.php"


class TestDetect:
    def test_lists_every_provided_path(self, settings, make_addon):
        make_addon(
            "demo",
            {
                "app/controller/Index.php": "<?php",
                "assets/js/demo.js": "js",
                "templates/index.html": "<p>",
                "bootstrap.js": "console.log(1);",
                "README.md": "untracked",
            },
        )

        paths = _detector(settings).detect("demo")

        assert sorted(paths) == [
            "app/controller/Index.php",
            "public/assets/addons/demo/js/demo.js",
            "templates/index.html",
        ]

    def test_only_conflicts_ignores_missing_and_identical(self, settings, make_addon, live):
        make_addon("demo", {"app/a.php": "same", "app/b.php": "addon"})
        live("app").mkdir()
        live("app/a.php").write_text("same")

        assert _detector(settings).detect("demo", only_conflicts=True) == []

    def test_size_or_content_difference_is_a_conflict(self, settings, make_addon, live):
        make_addon("demo", {"app/a.php": "abc", "app/b.php": "abc"})
        live("app").mkdir()
        live("app/a.php").write_text("abd")
        live("app/b.php").write_text("abcd")

        assert sorted(_detector(settings).detect("demo", only_conflicts=True)) == ["app/a.php", "app/b.php"]

    def test_conflict_clears_when_content_matches_again(self, settings, make_addon, live):
        make_addon("demo", {"app/a.php": "v1"})
        live("app").mkdir()
        live("app/a.php").write_text("v2")
        detector = _detector(settings)

        assert detector.detect("demo", only_conflicts=True) == ["app/a.php"]
        live("app/a.php").write_text("v1")
        assert detector.detect("demo", only_conflicts=True) == []

    def test_deepest_files_first(self, settings, make_addon):
        make_addon("demo", {"app/top.php": "1", "app/deep/nested/leaf.php": "2"})

        paths = _detector(settings).detect("demo")

        assert paths.index("app/deep/nested/leaf.php") < paths.index("app/top.php")

    def test_no_tracked_dirs(self, settings, make_addon):
        make_addon("demo", {"bootstrap.js": "x"})

        assert _detector(settings).detect("demo") == []


def test_md5_file(tmp_path):
    p = tmp_path / "f.txt"
    p.write_bytes(b"hello")

    assert md5_file(p) == "5d41402abc4b2a76b9719d911017c592"
