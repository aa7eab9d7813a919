# addonhost/addons/api/router.py
from __future__ import annotations

import logging
from typing import Dict, List, Type

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from ...config import get_settings
from ..domain.errors import (
    AddonEnabled,
    AddonError,
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
from ..domain.models import AddonInfo, AddonOperationResult, ConflictReport
from ..services.lifecycle import LifecycleService

router = APIRouter(prefix="/api/addons", tags=["addons"])
logger = logging.getLogger("addonhost.addons.api")

_STATUS_BY_ERROR: Dict[Type[AddonError], int] = {
    NotFound: 404,
    AlreadyExists: 409,
    Conflict: 409,
    AddonEnabled: 409,
    ArchiveCorrupt: 400,
    ExtractFailed: 400,
    ManifestMissing: 400,
    ManifestInvalid: 400,
    UploadRejected: 422,
    HookFailed: 500,
    WriteError: 500,
}

# ----------------------------
# Singleton (simple + safe)
# ----------------------------

_service: LifecycleService | None = None


def get_lifecycle_service() -> LifecycleService:
    global _service
    if _service is None:
        _service = LifecycleService(get_settings())
    return _service


def _http_error(e: AddonError) -> HTTPException:
    status = _STATUS_BY_ERROR.get(type(e), 500)
    if status >= 500:
        logger.error("Addon operation failed: %s", e)
    else:
        logger.info("Addon operation rejected (%s): %s", e.error_code, e)
    return HTTPException(status_code=status, detail=e.to_dict())


# ----------------------------
# Queries
# ----------------------------

@router.get("", response_model=List[AddonInfo])
def api_list_addons(svc: LifecycleService = Depends(get_lifecycle_service)) -> List[AddonInfo]:
    return svc.list()


@router.get("/{name}", response_model=AddonInfo)
def api_get_addon(name: str, svc: LifecycleService = Depends(get_lifecycle_service)) -> AddonInfo:
    try:
        return svc.info(name)
    except AddonError as e:
        raise _http_error(e)


@router.get("/{name}/conflicts", response_model=ConflictReport)
def api_get_conflicts(name: str, svc: LifecycleService = Depends(get_lifecycle_service)) -> ConflictReport:
    try:
        return ConflictReport(name=name, conflicts=svc.conflicts(name))
    except AddonError as e:
        raise _http_error(e)


# ----------------------------
# Lifecycle
# ----------------------------

@router.post("/install/upload", response_model=AddonOperationResult)
def api_install_upload(
    file: UploadFile = File(...),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AddonOperationResult:
    """
    Install an addon from an uploaded ZIP (left disabled).

    Example:
      curl -X POST http://localhost:9001/api/addons/install/upload \
        -F "file=@/path/to/addon.zip"
    """
    logger.info("POST /install/upload called with %s", file.filename)
    try:
        return svc.install_from_upload(file.filename, file.file, file.size)
    except AddonError as e:
        raise _http_error(e)


@router.post("/refresh", response_model=AddonOperationResult)
def api_refresh(svc: LifecycleService = Depends(get_lifecycle_service)) -> AddonOperationResult:
    try:
        return svc.refresh()
    except AddonError as e:
        raise _http_error(e)


@router.post("/{name}/install", response_model=AddonOperationResult)
def api_install(
    name: str,
    force: bool = Query(default=False),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AddonOperationResult:
    logger.info("POST /%s/install called (force=%s)", name, force)
    try:
        return svc.install(name, force=force)
    except AddonError as e:
        raise _http_error(e)


@router.post("/{name}/uninstall", response_model=AddonOperationResult)
def api_uninstall(
    name: str,
    force: bool = Query(default=False),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AddonOperationResult:
    logger.info("POST /%s/uninstall called (force=%s)", name, force)
    try:
        return svc.uninstall(name, force=force)
    except AddonError as e:
        raise _http_error(e)


@router.post("/{name}/enable", response_model=AddonOperationResult)
def api_enable(
    name: str,
    force: bool = Query(default=False),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AddonOperationResult:
    try:
        return svc.enable(name, force=force)
    except AddonError as e:
        raise _http_error(e)


@router.post("/{name}/disable", response_model=AddonOperationResult)
def api_disable(
    name: str,
    force: bool = Query(default=False),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> AddonOperationResult:
    try:
        return svc.disable(name, force=force)
    except AddonError as e:
        raise _http_error(e)


@router.post("/{name}/backup", response_model=AddonOperationResult)
def api_backup(name: str, svc: LifecycleService = Depends(get_lifecycle_service)) -> AddonOperationResult:
    try:
        return svc.backup(name)
    except AddonError as e:
        raise _http_error(e)
