"""
addonhost.config - runtime settings.

Values come from (highest first):

    1. Explicit constructor arguments
    2. Environment variables prefixed with ADDONHOST_
    3. Defaults below

Example:
    ADDONHOST_ROOT_PATH=/srv/site
    ADDONHOST_AUTOLOAD=true
    ADDONHOST_DATABASE_URL=mysql+pymysql://user:pw@db/site
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ADDONHOST_", extra="ignore")

    # Live shared tree every addon projects into
    root_path: Path = Field(default_factory=Path.cwd)

    # <addons_path>/<name>/ holds each installed addon
    addons_path: Optional[Path] = None

    # Backups, package drop dir and uploads live under <runtime_path>/addons/
    runtime_path: Optional[Path] = None

    # Directory receiving the generated registration table
    config_path: Optional[Path] = None

    log_dir: Path = Path("logs")

    tracked_dirs: List[str] = Field(default_factory=lambda: ["app", "public", "templates"])
    assets_dir: str = "assets"
    public_assets_dir: str = "public/assets/addons"

    bootstrap_file: str = "bootstrap.js"
    bootstrap_artifact: str = "public/assets/js/addons.js"
    registration_file: str = "addons.json"

    backup_global_files: bool = True
    autoload: bool = False

    database_url: Optional[str] = None
    table_prefix: str = ""

    upload_max_bytes: int = Field(default=102400000, gt=0)
    upload_extensions: List[str] = Field(default_factory=lambda: [".zip"])

    @property
    def addons_dir(self) -> Path:
        return self.addons_path or self.root_path / "addons"

    @property
    def backups_dir(self) -> Path:
        return (self.runtime_path or self.root_path / "runtime") / "addons"

    @property
    def config_dir(self) -> Path:
        return self.config_path or self.root_path / "config"

    @property
    def locks_dir(self) -> Path:
        return self.addons_dir / ".locks"

    def addon_dir(self, name: str) -> Path:
        return self.addons_dir / name

    def public_assets_for(self, name: str) -> str:
        """Live-relative directory an addon's private assets/ maps to."""
        return f"{self.public_assets_dir.strip('/')}/{name}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
