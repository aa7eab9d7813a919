from __future__ import annotations

import configparser
import logging
import zipfile
from pathlib import Path
from typing import Dict

from pydantic import ValidationError

from ..domain.errors import ManifestInvalid, ManifestMissing
from ..domain.models import AddonInfo, is_valid_addon_name
from .fs import atomic_write_text

logger = logging.getLogger("addonhost.addons.manifest")

MANIFEST_NAME = "info.ini"
_ROOT_SECTION = "__addon__"


def parse_ini(text: str) -> Dict[str, str]:
    """
    Parse key=value manifest text.

    Keys before any section header and keys inside sections are flattened into
    one mapping; later keys win. Surrounding quotes are stripped.
    """
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        comment_prefixes=(";", "#"),
        inline_comment_prefixes=(";",),
    )
    parser.optionxform = str  # keep key case
    try:
        parser.read_string(f"[{_ROOT_SECTION}]\n{text}")
    except configparser.Error as e:
        raise ManifestInvalid(f"{MANIFEST_NAME} could not be parsed: {e}") from e

    values: Dict[str, str] = {}
    for section in parser.sections():
        for key, value in parser.items(section):
            value = (value or "").strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                value = value[1:-1]
            values[key] = value
    return values


def dump_ini(values: Dict[str, str]) -> str:
    return "".join(f"{key} = {value}\n" for key, value in values.items())


def build_info(values: Dict[str, str]) -> AddonInfo:
    name = values.get("name", "")
    if not name:
        raise ManifestInvalid(f"{MANIFEST_NAME} is incomplete: missing 'name'")
    if not is_valid_addon_name(name):
        raise ManifestInvalid(f"Invalid addon name '{name}' (letters and digits only)")
    try:
        return AddonInfo.model_validate(values)
    except ValidationError as e:
        raise ManifestInvalid(f"{MANIFEST_NAME} is invalid: {e}") from e


def read_manifest_from_archive(zf: zipfile.ZipFile) -> AddonInfo:
    try:
        raw = zf.read(MANIFEST_NAME)
    except KeyError:
        raise ManifestMissing(f"{MANIFEST_NAME} not found in archive") from None
    return build_info(parse_ini(raw.decode("utf-8", errors="replace")))


def read_manifest_from_dir(addon_dir: Path) -> AddonInfo:
    manifest_path = addon_dir / MANIFEST_NAME
    if not manifest_path.is_file():
        raise ManifestMissing(f"{MANIFEST_NAME} not found at {manifest_path}")
    return build_info(parse_ini(manifest_path.read_text(encoding="utf-8")))


def write_manifest(addon_dir: Path, info: AddonInfo) -> None:
    logger.debug("Writing %s for addon '%s'", MANIFEST_NAME, info.name)
    atomic_write_text(addon_dir / MANIFEST_NAME, dump_ini(info.to_ini_values()))
