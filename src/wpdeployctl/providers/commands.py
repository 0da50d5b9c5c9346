"""Subprocess helpers shared by the external tool providers."""
from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 1024 * 1024


class CommandError(RuntimeError):
    """Raised when an external command cannot be run or exits non-zero."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int = 1,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Store the failing exit status alongside the message."""
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def command_exists(command: str) -> bool:
    """Return True when *command* resolves to an executable."""
    path = Path(command)
    if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
        return path.exists() and os.access(path, os.X_OK)
    resolved = shutil.which(command)
    return resolved is not None and os.access(resolved, os.X_OK)


def format_command(args: Sequence[str]) -> str:
    """Return *args* joined into a printable command line."""
    return " ".join(str(item) for item in args)


def run_command(
    args: Sequence[str],
    *,
    check: bool = True,
    capture_output: bool = True,
    error_cls: type[CommandError] = CommandError,
    error_prefix: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* and return the completed process.

    Output is captured as text unless *capture_output* is False, in which case
    the child inherits the terminal (used for streaming commands such as
    ``logs -f`` or interactive certbot output).
    """
    command = [str(item) for item in args]
    prefix = error_prefix or format_command(command)
    try:
        if capture_output:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        else:
            result = subprocess.run(  # noqa: S603, S607
                command,
                text=True,
                check=False,
            )
    except FileNotFoundError as exc:
        raise error_cls(f"{command[0]} not found: {exc}", returncode=127) from exc
    if check and result.returncode != 0:
        raise _failure(error_cls, prefix, result)
    return result


def run_to_file(
    args: Sequence[str],
    destination: Path,
    *,
    error_cls: type[CommandError] = CommandError,
    error_prefix: str | None = None,
) -> subprocess.CompletedProcess[bytes]:
    """Run *args* redirecting standard output into *destination*."""
    command = [str(item) for item in args]
    prefix = error_prefix or format_command(command)
    try:
        with destination.open("wb") as handle:
            result = subprocess.run(  # noqa: S603, S607
                command,
                stdout=handle,
                stderr=subprocess.PIPE,
                check=False,
            )
    except FileNotFoundError as exc:
        raise error_cls(f"{command[0]} not found: {exc}", returncode=127) from exc
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
        raise error_cls(
            f"{prefix} failed (exit {result.returncode}): {stderr or 'no output'}",
            returncode=result.returncode,
            stderr=stderr,
        )
    return result


def run_with_stream(
    args: Sequence[str],
    source: BinaryIO,
    *,
    error_cls: type[CommandError] = CommandError,
    error_prefix: str | None = None,
) -> int:
    """Run *args* feeding *source* to its standard input in chunks.

    Standard error is spooled to a temporary file so a chatty child cannot
    block on a full pipe while its input is still being written.
    """
    command = [str(item) for item in args]
    prefix = error_prefix or format_command(command)
    with tempfile.TemporaryFile() as stderr_spool:
        try:
            process = subprocess.Popen(  # noqa: S603, S607
                command,
                stdin=subprocess.PIPE,
                stderr=stderr_spool,
            )
        except FileNotFoundError as exc:
            raise error_cls(f"{command[0]} not found: {exc}", returncode=127) from exc

        assert process.stdin is not None
        try:
            shutil.copyfileobj(source, process.stdin, CHUNK_SIZE)
        except BrokenPipeError:
            # The child exited early; its exit status and stderr carry the reason.
            pass
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            try:
                process.stdin.close()
            except BrokenPipeError:
                pass
        returncode = process.wait()
        stderr_spool.seek(0)
        stderr_bytes = stderr_spool.read()
    if returncode != 0:
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        raise error_cls(
            f"{prefix} failed (exit {returncode}): {stderr or 'no output'}",
            returncode=returncode,
            stderr=stderr,
        )
    return returncode


def _failure(
    error_cls: type[CommandError],
    prefix: str,
    result: subprocess.CompletedProcess[str],
) -> CommandError:
    stdout = (getattr(result, "stdout", "") or "").strip()
    stderr = (getattr(result, "stderr", "") or "").strip()
    message = stderr or stdout or "no output"
    return error_cls(
        f"{prefix} failed (exit {result.returncode}): {message}",
        returncode=result.returncode,
        stdout=stdout,
        stderr=stderr,
    )


__all__ = [
    "CommandError",
    "command_exists",
    "format_command",
    "run_command",
    "run_to_file",
    "run_with_stream",
]
