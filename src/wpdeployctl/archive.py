"""Archive helpers used by the backup workflow."""
from __future__ import annotations

import gzip
import hashlib
import os
import shutil
from pathlib import Path

from .backups import BackupError

GZIP_SUFFIX = ".gz"


def gzip_in_place(path: Path, *, compression_level: int = 6) -> Path:
    """Compress *path* to ``<path>.gz`` and remove the original.

    Mirrors ``gzip FILE``: the compressed file replaces the source. The partial
    output is removed when compression fails.
    """
    target = path.with_name(f"{path.name}{GZIP_SUFFIX}")
    try:
        with path.open("rb") as source, gzip.open(
            target, "wb", compresslevel=compression_level
        ) as sink:
            shutil.copyfileobj(source, sink, 1024 * 1024)
        shutil.copystat(path, target)
        path.unlink()
    except OSError as exc:
        target.unlink(missing_ok=True)
        raise BackupError(f"Failed to compress {path}: {exc}") from exc
    return target


def compute_checksum(path: Path) -> str:
    """Return the SHA-256 checksum for *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_checksum_file(archive_path: Path, checksum: str) -> Path:
    """Write ``<archive>.sha256`` and return the checksum path."""
    checksum_path = archive_path.with_name(f"{archive_path.name}.sha256")
    checksum_path.write_text(f"{checksum}  {archive_path.name}\n", encoding="utf-8")
    try:
        os.chmod(checksum_path, 0o640)
    except OSError:
        pass
    return checksum_path


__all__ = ["compute_checksum", "gzip_in_place", "write_checksum_file"]
