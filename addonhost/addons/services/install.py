from __future__ import annotations

import hashlib
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable, Optional, Union

from ..domain.errors import ArchiveCorrupt, ExtractFailed, UploadRejected
from ..domain.models import AddonInfo
from .manifest import read_manifest_from_archive

logger = logging.getLogger("addonhost.addons.install")

ArchiveSource = Union[Path, zipfile.ZipFile]


def open_archive(path: Path) -> zipfile.ZipFile:
    """Open a package archive; the caller closes it."""
    if not path.is_file():
        raise ArchiveCorrupt(f"Archive not found: {path}")
    try:
        return zipfile.ZipFile(path, "r")
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveCorrupt(f"Cannot open archive {path.name}: {e}") from e


def _check_member(name: str) -> None:
    # no absolute paths, no drive letters, no '..'
    norm = name.replace("\\", "/")
    parts = PurePosixPath(norm).parts
    if norm.startswith("/") or (parts and ":" in parts[0]) or ".." in parts:
        raise ExtractFailed(f"Unsafe path in archive: {name}")


class ArchiveInstaller:
    """
    Turns a package archive into an addon directory.

    Extraction is not atomic: on ExtractFailed the caller removes the
    destination directory entirely.
    """

    def read_manifest(self, archive: ArchiveSource) -> AddonInfo:
        if isinstance(archive, zipfile.ZipFile):
            return read_manifest_from_archive(archive)
        with open_archive(archive) as zf:
            return read_manifest_from_archive(zf)

    def extract(self, archive: ArchiveSource, destination: Path) -> Path:
        if isinstance(archive, zipfile.ZipFile):
            return self._extract(archive, destination)
        with open_archive(archive) as zf:
            return self._extract(zf, destination)

    def _extract(self, zf: zipfile.ZipFile, destination: Path) -> Path:
        destination.mkdir(mode=0o755, parents=True, exist_ok=True)
        logger.debug("Extracting %s into %s", zf.filename, destination)
        try:
            for member in zf.namelist():
                _check_member(member)
            zf.extractall(destination)
        except ExtractFailed:
            raise
        except (zipfile.BadZipFile, OSError, RuntimeError, EOFError) as e:
            raise ExtractFailed(f"Cannot extract archive into {destination}: {e}") from e
        return destination

    # ----------------------------
    # Uploads
    # ----------------------------

    def validate_upload(
        self,
        filename: Optional[str],
        size: Optional[int],
        *,
        max_bytes: int,
        extensions: Iterable[str],
    ) -> None:
        if not filename:
            raise UploadRejected("No file uploaded or upload limit exceeded")
        suffix = Path(filename).suffix.lower()
        allowed = {e.lower() for e in extensions}
        if suffix not in allowed:
            raise UploadRejected(f"Unsupported file type '{suffix}' (allowed: {', '.join(sorted(allowed))})")
        if size is not None and size > max_bytes:
            raise UploadRejected(f"Upload is {size} bytes, limit is {max_bytes}")

    def store_upload(self, stream: BinaryIO, target_dir: Path, *, max_bytes: int) -> Path:
        """
        Save an upload under an md5 content name in target_dir.

        The size limit is enforced while streaming because the declared size
        may be missing.
        """
        target_dir.mkdir(parents=True, exist_ok=True)
        tmp = target_dir / f".upload-{id(stream)}.part"
        h = hashlib.md5()
        written = 0
        try:
            with tmp.open("wb") as f:
                while True:
                    chunk = stream.read(1024 * 1024)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise UploadRejected(f"Upload exceeds limit of {max_bytes} bytes")
                    h.update(chunk)
                    f.write(chunk)
            final = target_dir / f"{h.hexdigest()}.zip"
            shutil.move(str(tmp), str(final))
        finally:
            tmp.unlink(missing_ok=True)
        logger.info("Stored upload (%d bytes) as %s", written, final)
        return final
