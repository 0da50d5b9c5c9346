"""Operator-facing failures raised by the operation handlers.

Every class carries a ``tag`` naming the failure condition, the message shown
to the operator, and optional remediation lines (usually a command to run).
The dispatcher reports them and exits with ``exit_code``.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class DeployError(RuntimeError):
    """Base class for handler failures."""

    tag = "DeployError"

    def __init__(
        self,
        message: str,
        *,
        remediation: Sequence[str] = (),
        exit_code: int = ExitCode.FAILURE,
    ) -> None:
        """Store the operator message, remediation hints and exit status."""
        super().__init__(message)
        self.message = message
        self.remediation = tuple(remediation)
        self.exit_code = int(exit_code)


class DaemonUnavailableError(DeployError):
    """The docker daemon cannot be reached."""

    tag = "DaemonUnavailable"


class ContainerStartFailureError(DeployError):
    """A container expected after ``compose up`` is not running."""

    tag = "ContainerStartFailure"


class MissingArgumentError(DeployError):
    """A required positional argument was not supplied."""

    tag = "MissingArgument"


class BackupFileNotFoundError(DeployError):
    """A referenced backup file does not exist."""

    tag = "FileNotFound"


class BackupWriteFailureError(DeployError):
    """The database dump did not produce a file."""

    tag = "BackupWriteFailure"


class ToolMissingError(DeployError):
    """A required host tool is not installed."""

    tag = "ToolMissing"


class PrecheckFailedError(DeployError):
    """A precondition on host state is not met."""

    tag = "PrecheckFailed"


class ConfigInvalidError(DeployError):
    """The reverse proxy rejected its configuration."""

    tag = "ConfigInvalid"


class MissingInputError(DeployError):
    """The operator supplied an empty answer to a required prompt."""

    tag = "MissingInput"


class IssuanceFailedError(DeployError):
    """Certificate issuance failed."""

    tag = "IssuanceFailed"


class RenewalFailedError(DeployError):
    """Certificate renewal failed."""

    tag = "RenewalFailed"


class CommandFailedError(DeployError):
    """An external command failed; its exit status becomes ours."""

    tag = "CommandFailed"


__all__ = [
    "BackupFileNotFoundError",
    "BackupWriteFailureError",
    "CommandFailedError",
    "ConfigInvalidError",
    "ContainerStartFailureError",
    "DaemonUnavailableError",
    "DeployError",
    "IssuanceFailedError",
    "MissingArgumentError",
    "MissingInputError",
    "PrecheckFailedError",
    "RenewalFailedError",
    "ToolMissingError",
]
