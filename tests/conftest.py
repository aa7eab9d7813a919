"""
Shared fixtures: an isolated live tree per test plus helpers that build
addon directories and package archives.
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Dict, Union

import pytest

from addonhost.addons.services.lifecycle import LifecycleService
from addonhost.config import Settings

Content = Union[str, bytes]


def info_ini(name: str, **extra: str) -> str:
    lines = [f"name = {name}"] + [f"{k} = {v}" for k, v in extra.items()]
    return "\n".join(lines) + "\n"


def zip_bytes(entries: Dict[str, Content]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def write_file(path: Path, content: Content) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    root = tmp_path / "site"
    root.mkdir()
    return Settings(root_path=root, log_dir=tmp_path / "logs")


@pytest.fixture
def service(settings: Settings) -> LifecycleService:
    return LifecycleService(settings)


@pytest.fixture
def live(settings: Settings):
    """live("app/x.php") -> absolute path inside the live tree."""
    return lambda rel: settings.root_path / rel


@pytest.fixture
def make_addon(settings: Settings):
    """Lay out an addon directory directly (no archive, not installed)."""

    def _make(name: str, files: Dict[str, Content], **info: str) -> Path:
        addon_dir = settings.addon_dir(name)
        addon_dir.mkdir(parents=True)
        write_file(addon_dir / "info.ini", info_ini(name, **info))
        for rel, content in files.items():
            write_file(addon_dir / rel, content)
        return addon_dir

    return _make


@pytest.fixture
def make_package(settings: Settings):
    """Drop <runtime>/addons/<name>.zip for install(name)."""

    def _make(name: str, files: Dict[str, Content], **info: str) -> Path:
        entries: Dict[str, Content] = {"info.ini": info_ini(name, **info)}
        entries.update(files)
        target = settings.backups_dir / f"{name}.zip"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(zip_bytes(entries))
        return target

    return _make
