# addonhost/addons/domain/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class AddonError(Exception):
    """
    Base error for every addon lifecycle failure.

    - message: human readable, always preserved when re-raised after cleanup.
    - error_code: machine readable UPPER_SNAKE_CASE kind.
    - details: structured payload (only Conflict fills it today).
    """

    error_code = "ADDON_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, error_code={self.error_code!r})"


class NotFound(AddonError):
    error_code = "NOT_FOUND"


class AlreadyExists(AddonError):
    error_code = "ALREADY_EXISTS"


class AddonEnabled(AddonError):
    """Raised when an operation requires the addon to be disabled first."""

    error_code = "ADDON_ENABLED"


class Conflict(AddonError):
    """
    Live files differ from the addon's copies.

    `conflicts` carries the offending live-relative paths so callers can
    render them or retry with force.
    """

    error_code = "CONFLICT"

    def __init__(self, conflicts: List[str], message: str = "Conflicting files found") -> None:
        self.conflicts = list(conflicts)
        super().__init__(message, details={"conflicts": self.conflicts})


class ArchiveCorrupt(AddonError):
    error_code = "ARCHIVE_CORRUPT"


class ExtractFailed(AddonError):
    error_code = "EXTRACT_FAILED"


class ManifestMissing(AddonError):
    error_code = "MANIFEST_MISSING"


class ManifestInvalid(AddonError):
    error_code = "MANIFEST_INVALID"


class HookFailed(AddonError):
    error_code = "HOOK_FAILED"


class WriteError(AddonError):
    error_code = "WRITE_ERROR"


class UploadRejected(AddonError):
    error_code = "UPLOAD_REJECTED"
