"""Firmware image archive inspection and validation.

An image archive is a ``.tar`` holding the partition images, either bare or
packed inside a ``.zip``, ``.tar.gz`` or ``.tgz``. Packed archives are unpacked
into a work directory so the image tar can be flashed or copied directly.

Validation reads every tar member to the end, which catches truncated
downloads and bad compression streams. Info extraction looks for a
``build.prop`` member and reads the Android release from it.
"""

from __future__ import annotations

import gzip
import re
import shutil
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import IO, Callable, Iterator

from image_ops.config import settings
from image_ops.domain import ImageInfo
from image_ops.logging import LoggerFactory
from image_ops.storage.exceptions import (
    CorruptArchiveError,
    ImageNotFoundError,
    SourceNotFoundError,
    UnsupportedArchiveError,
)

log = LoggerFactory.for_storage()

ValidationProgress = Callable[[str, int], None]

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")
PROP_FILENAMES = {"build.prop", "default.prop"}
VERSION_KEYS = ("ro.build.version.release", "ro.system.build.version.release")
UNKNOWN_VERSION = "Unknown"
MAX_PROP_BYTES = 1024 * 1024

_VERSION_IN_NAME = re.compile(r"android[_\-\s]?(\d+(?:\.\d+)*)", re.IGNORECASE)


def archive_suffix(path: Path) -> str | None:
    lowered = path.name.lower()
    for suffix in ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            return suffix
    return None


def image_name_for(path: Path) -> str:
    """Archive file name without its archive suffix."""
    suffix = archive_suffix(path)
    if suffix:
        return path.name[: -len(suffix)]
    return path.stem


def _require_archive(path: str | Path) -> tuple[Path, str]:
    archive = Path(path)
    if not archive.is_file():
        raise SourceNotFoundError(archive)
    suffix = archive_suffix(archive)
    if suffix is None:
        raise UnsupportedArchiveError(archive)
    return archive, suffix


# ==============================================================================
# Info extraction
# ==============================================================================


def parse_android_version(prop_text: str) -> str | None:
    values: dict[str, str] = {}
    for line in prop_text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    for key in VERSION_KEYS:
        if values.get(key):
            return values[key]
    return None


def _is_prop_member(name: str) -> bool:
    return Path(name).name in PROP_FILENAMES


def _read_prop(stream: IO[bytes]) -> str:
    return stream.read(MAX_PROP_BYTES).decode("utf-8", errors="replace")


def _version_from_tar_stream(fileobj: IO[bytes]) -> str | None:
    # Streaming mode: members are visited once, in order.
    with tarfile.open(fileobj=fileobj, mode="r|*") as tar:
        for member in tar:
            if not member.isfile() or not _is_prop_member(member.name):
                continue
            extracted = tar.extractfile(member)
            if extracted is None:
                continue
            version = parse_android_version(_read_prop(extracted))
            if version:
                return version
    return None


def _version_from_zip(archive: Path) -> str | None:
    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
        for name in names:
            if _is_prop_member(name):
                with zf.open(name) as prop:
                    version = parse_android_version(_read_prop(prop))
                if version:
                    return version
        for name in names:
            if name.lower().endswith(".tar"):
                with zf.open(name) as inner:
                    version = _version_from_tar_stream(inner)
                if version:
                    return version
    return None


def read_image_info(path: str | Path) -> ImageInfo:
    """Read the image name and Android release of an archive.

    Raises:
        SourceNotFoundError: If the archive does not exist
        UnsupportedArchiveError: If the file is not a supported archive
        CorruptArchiveError: If the archive cannot be read
    """
    archive, suffix = _require_archive(path)
    try:
        if suffix == ".zip":
            version = _version_from_zip(archive)
        else:
            with open(archive, "rb") as fileobj:
                version = _version_from_tar_stream(fileobj)
    except (tarfile.TarError, zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
        raise CorruptArchiveError(archive, str(exc)) from exc

    if not version:
        match = _VERSION_IN_NAME.search(archive.name)
        version = match.group(1) if match else UNKNOWN_VERSION
    return ImageInfo(image_name=image_name_for(archive), android_version=version)


# ==============================================================================
# Validation
# ==============================================================================


def _copy_stream(source: IO[bytes], dest: Path, chunk_size: int) -> None:
    with open(dest, "wb") as out:
        shutil.copyfileobj(source, out, chunk_size)


def unpack_image_tar(
    path: str | Path, work_dir: Path | None = None, chunk_size: int | None = None
) -> Path:
    """Return the image tar inside ``path``, unpacking it if needed.

    A bare ``.tar`` is returned as is. Otherwise the tar is written to a new
    directory under ``work_dir`` which the caller owns and must remove.
    """
    archive, suffix = _require_archive(path)
    if suffix == ".tar":
        return archive
    if chunk_size is None:
        chunk_size = settings.get_int("verify_chunk_size", settings.DEFAULT_CHUNK_SIZE)

    work_dir = work_dir or settings.get_work_dir()
    work_dir.mkdir(parents=True, exist_ok=True)
    target_dir = Path(tempfile.mkdtemp(prefix="image-", dir=work_dir))
    image_name = image_name_for(archive)

    try:
        if suffix == ".zip":
            with zipfile.ZipFile(archive) as zf:
                inner = next(
                    (n for n in zf.namelist() if n.lower().endswith(".tar")), None
                )
                if inner is None:
                    raise ImageNotFoundError(archive)
                target = target_dir / Path(inner).name
                with zf.open(inner) as source:
                    _copy_stream(source, target, chunk_size)
        else:
            target = target_dir / f"{image_name}.tar"
            with gzip.open(archive, "rb") as source:
                _copy_stream(source, target, chunk_size)
    except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
        shutil.rmtree(target_dir, ignore_errors=True)
        raise CorruptArchiveError(archive, str(exc)) from exc
    except ImageNotFoundError:
        shutil.rmtree(target_dir, ignore_errors=True)
        raise

    log.debug(f"Unpacked {archive.name} to {target}")
    return target


def _iter_member_chunks(tar: tarfile.TarFile, chunk_size: int) -> Iterator[int]:
    for member in tar.getmembers():
        if not member.isfile():
            continue
        extracted = tar.extractfile(member)
        if extracted is None:
            continue
        remaining = member.size
        while remaining > 0:
            chunk = extracted.read(min(chunk_size, remaining))
            if not chunk:
                raise EOFError(f"Unexpected end of data in member {member.name}")
            remaining -= len(chunk)
            yield len(chunk)


def verify_image_tar(
    tar_path: Path,
    progress_callback: ValidationProgress | None = None,
    chunk_size: int | None = None,
    label: str = "Verifying",
) -> int:
    """Read every member of ``tar_path``; return the number of files.

    Raises:
        CorruptArchiveError: If the tar is truncated or malformed
        ImageNotFoundError: If the tar holds no files
    """
    if chunk_size is None:
        chunk_size = settings.get_int("verify_chunk_size", settings.DEFAULT_CHUNK_SIZE)
    try:
        with tarfile.open(tar_path, mode="r:") as tar:
            files = [m for m in tar.getmembers() if m.isfile()]
            if not files:
                raise ImageNotFoundError(tar_path)
            total = sum(m.size for m in files) or 1
            done = 0
            last_percent = -1
            for count in _iter_member_chunks(tar, chunk_size):
                done += count
                percent = min(100, done * 100 // total)
                if progress_callback and percent != last_percent:
                    progress_callback(label, percent)
                    last_percent = percent
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise CorruptArchiveError(tar_path, str(exc)) from exc
    return len(files)
