"""Backup artifact naming and the JSON backup index."""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

STATUS_COMPLETE = "complete"
STATUS_PARTIAL = "partial"


class BackupError(RuntimeError):
    """Raised when backup operations fail."""


class BackupRegistryError(BackupError):
    """Raised when backup index interactions fail."""


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def timestamp_token(moment: datetime | None = None) -> str:
    """Return the ``YYYYMMDD_HHMMSS`` token embedded in artifact names."""
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True, slots=True)
class BackupArtifacts:
    """Paths produced by one backup invocation."""

    timestamp: str
    database_dump: Path
    files_archive: Path

    @classmethod
    def plan(cls, root: Path, prefix: str, timestamp: str) -> BackupArtifacts:
        """Return the artifact paths for *prefix* at *timestamp* under *root*."""
        return cls(
            timestamp=timestamp,
            database_dump=root / f"{prefix}_backup_{timestamp}.sql",
            files_archive=root / f"{prefix}_files_{timestamp}.tar.gz",
        )

    @property
    def database_archive(self) -> Path:
        """Return the compressed dump path (``.sql.gz``)."""
        return self.database_dump.with_name(f"{self.database_dump.name}.gz")


@dataclass(slots=True)
class BackupsRegistry:
    """Manage the JSON backup index under the backups directory."""

    root: Path
    index: Path

    def __post_init__(self) -> None:
        """Normalise root/index paths after initialisation."""
        self.root = self.root.expanduser()
        self.index = self.index.expanduser()

    # Basic helpers -------------------------------------------------
    def ensure_root(self) -> None:
        """Ensure the backup root directory exists."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - permissions env-specific
            raise BackupRegistryError(f"Failed to prepare backup root {self.root}: {exc}") from exc

    def read(self) -> dict[str, object]:
        """Return the parsed backups index (empty structure when missing)."""
        if not self.index.exists():
            return {"backups": []}
        try:
            text = self.index.read_text(encoding="utf-8")
            data = json.loads(text)
        except FileNotFoundError:
            return {"backups": []}
        except json.JSONDecodeError as exc:
            raise BackupRegistryError(f"Backup index corrupted ({self.index}): {exc}") from exc
        except OSError as exc:
            raise BackupRegistryError(f"Unable to read backup index {self.index}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise BackupRegistryError(f"Backup index must be a JSON object ({self.index}).")
        return dict(data)

    def write(self, payload: Mapping[str, object]) -> None:
        """Atomically persist *payload* to the backups index."""
        self.ensure_root()
        try:
            self.index.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self.index.parent),
                prefix=f".{self.index.name}.",
            )
        except OSError as exc:
            raise BackupRegistryError(f"Failed to write backup index: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=False)
                handle.write("\n")
            os.replace(tmp_path, self.index)
            os.chmod(self.index, 0o640)
        except OSError as exc:
            raise BackupRegistryError(f"Failed to write backup index: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def append(self, entry: Mapping[str, object]) -> None:
        """Append *entry* to the backups index."""
        entries: list[object] = list(self.list_entries())
        entries.append(dict(entry))
        self.write({"backups": entries})

    def list_entries(self) -> list[dict[str, object]]:
        """Return a list of backup entries."""
        data = self.read()
        backups = data.get("backups", [])
        entries: list[dict[str, object]] = []
        if isinstance(backups, list):
            for item in backups:
                if isinstance(item, Mapping):
                    entries.append(dict(item))
        return entries


@dataclass(slots=True)
class ArtifactRecord:
    """Checksum metadata for one backup artifact."""

    path: Path
    checksum: str
    size_bytes: int

    def to_dict(self) -> dict[str, object]:
        """Return the JSON-serialisable representation."""
        return {
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "checksum": {"algorithm": "sha256", "value": self.checksum},
        }


@dataclass(slots=True)
class BackupEntryBuilder:
    """Helper for constructing backup index entries."""

    prefix: str
    timestamp: str
    database: ArtifactRecord
    files: ArtifactRecord | None = None
    error: str | None = None

    def build(self) -> dict[str, object]:
        """Return the JSON-serialisable entry for the backup index."""
        entry: dict[str, object] = {
            "id": f"{self.prefix}_{self.timestamp}",
            "timestamp": self.timestamp,
            "created_at": _now_iso(),
            "status": STATUS_COMPLETE if self.files is not None else STATUS_PARTIAL,
            "database": self.database.to_dict(),
            "files": self.files.to_dict() if self.files is not None else None,
        }
        if self.error:
            entry["error"] = self.error
        return entry


__all__ = [
    "ArtifactRecord",
    "BackupArtifacts",
    "BackupEntryBuilder",
    "BackupError",
    "BackupRegistryError",
    "BackupsRegistry",
    "STATUS_COMPLETE",
    "STATUS_PARTIAL",
    "TIMESTAMP_FORMAT",
    "timestamp_token",
]
