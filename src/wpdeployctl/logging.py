"""Structured operation logging for wpdeployctl.

Every CLI invocation is wrapped in an :class:`OperationScope` which collects
steps and a final result. When the scope closes a single JSON document is
appended to ``operations.jsonl`` inside the configured log directory.

Logging must never break an operation: when the directory cannot be created
or a write fails the logger disables itself and later records are dropped.
"""
from __future__ import annotations

import json
import os
import secrets
import time
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType

OPERATIONS_LOG_NAME = "operations.jsonl"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collect steps and the outcome of a single CLI operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Bind the scope to *logger* for *command*."""
        self._logger = logger
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.op_id = secrets.token_hex(6)
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started_at = datetime.now(UTC)
        self._started_monotonic = time.monotonic()

    def __enter__(self) -> OperationScope:
        """Return the scope for use inside a ``with`` block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Record an outcome when none was set explicitly and flush the record."""
        if self.result is None:
            exit_code = getattr(exc, "exit_code", None)
            if exc is None or exit_code == 0:
                self.success("Operation completed.")
            elif isinstance(exc, KeyboardInterrupt):
                self.error("Operation interrupted by operator.", rc=130)
            else:
                rc = exit_code if isinstance(exit_code, int) else 1
                self.error(str(exc) or exc.__class__.__name__, rc=rc)
        self._logger._write(self._build_record())

    # ------------------------------------------------------------------
    def add_step(self, name: str, *, status: str = "success", detail: str = "") -> None:
        """Append a named step to the operation record."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._set_result(
            "success",
            message,
            rc=0,
            changed=changed,
            backups=backups,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with warnings (or was cancelled)."""
        self._set_result(
            "warning",
            message,
            rc=0,
            changed=changed,
            warnings=warnings,
            errors=errors,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome."""
        error_list = list(errors) if errors is not None else [message]
        self._set_result(
            "error",
            message,
            rc=rc,
            errors=error_list or [message],
            context=context,
        )

    # ------------------------------------------------------------------
    def _set_result(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "rc": rc,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "backups": [str(item) for item in backups or []],
            "context": _sanitize(dict(context or {})),
        }

    def _build_record(self) -> dict[str, object]:
        duration_ms = int((time.monotonic() - self._started_monotonic) * 1000)
        return {
            "ts": self._started_at.isoformat(timespec="seconds").replace("+00:00", "Z"),
            "op_id": self.op_id,
            "pid": os.getpid(),
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "duration_ms": duration_ms,
            "result": self.result,
        }


class StructuredLogger:
    """Append JSON operation records to ``<logs_dir>/operations.jsonl``."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*, disabling the logger when it is unusable."""
        self._logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return True while records are being persisted."""
        return self._enabled

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSONL operations log."""
        return self._operations_log_path

    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> OperationScope:
        """Return a new scope for *command*; use it as a context manager."""
        return OperationScope(self, command, args=args, target=target)

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
