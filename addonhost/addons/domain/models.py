# addonhost/addons/domain/models.py
from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ADDON_NAME_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def is_valid_addon_name(name: Optional[str]) -> bool:
    return bool(name) and ADDON_NAME_PATTERN.match(name) is not None


# -----------------------------
# Enums
# -----------------------------

class AddonStatus(str, Enum):
    """
    Status of an installed addon.

    - disabled: files live inside the addon directory only.
    - enabled: tracked files have been projected onto the live tree.
    """

    DISABLED = "disabled"
    ENABLED = "enabled"


# -----------------------------
# Manifest (info.ini)
# -----------------------------

class AddonInfo(BaseModel):
    """
    Parsed info.ini of an addon.

    Only `name` is required. Everything else (title, version, author, ...) is
    free-form metadata and kept as extra fields so we round-trip it untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(pattern=ADDON_NAME_PATTERN.pattern)
    title: Optional[str] = None
    version: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None

    status: AddonStatus = AddonStatus.DISABLED
    installed: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> Any:
        # info.ini stores status as 1/0
        if isinstance(v, AddonStatus):
            return v
        if v in (1, True, "1", "enabled", "true"):
            return AddonStatus.ENABLED
        if v in (0, False, None, "", "0", "disabled", "false"):
            return AddonStatus.DISABLED
        return v

    @property
    def enabled(self) -> bool:
        return self.status == AddonStatus.ENABLED

    def to_ini_values(self) -> Dict[str, str]:
        """Flatten into key -> string pairs for info.ini."""
        values: Dict[str, str] = {}
        for key, value in self.model_dump(exclude_none=True).items():
            if key == "status":
                values[key] = "1" if value == AddonStatus.ENABLED else "0"
            elif isinstance(value, bool):
                values[key] = "1" if value else "0"
            else:
                values[key] = str(value)
        return values

    @property
    def declared_hooks(self) -> List[str]:
        raw = (self.model_extra or {}).get("hooks") or ""
        return [h.strip() for h in str(raw).split(",") if h.strip()]


class AddonLoadError(BaseModel):
    addon_path: str
    error: str


# -----------------------------
# Overlay record (.addonrc)
# -----------------------------

class OverlayRecord(BaseModel):
    """
    Per-addon JSON record of what was projected onto the live tree.

    - files: ordered live-relative paths (always '/' separated).
    - displaced: live paths that existed before projection and were stashed.
    """

    model_config = ConfigDict(extra="allow")

    files: List[str] = Field(default_factory=list)
    displaced: List[str] = Field(default_factory=list)


# -----------------------------
# Registration table
# -----------------------------

class RegistrationTable(BaseModel):
    autoload: bool = False
    hooks: Dict[str, List[str]] = Field(default_factory=dict)
    route: Dict[str, str] = Field(default_factory=dict)


# -----------------------------
# Operation results
# -----------------------------

OperationName = Literal["installed", "uninstalled", "enabled", "disabled", "backed_up", "refreshed"]


class AddonOperationResult(BaseModel):
    status: OperationName
    manifest: Optional[AddonInfo] = None
    has_config: bool = False
    has_testdata: bool = False
    backup_path: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class ConflictReport(BaseModel):
    name: str
    conflicts: List[str] = Field(default_factory=list)
