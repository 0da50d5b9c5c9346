"""Docker Compose provider for the WordPress stack."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from .commands import CommandError, run_command, run_to_file, run_with_stream


class ComposeError(CommandError):
    """Raised when docker or docker compose operations fail."""


@dataclass(frozen=True, slots=True)
class VolumeMount:
    """A ``-v`` mount for an ephemeral helper container."""

    source: str
    target: str
    read_only: bool = False

    def to_flag(self) -> str:
        """Return the ``source:target[:ro]`` argument for ``docker run -v``."""
        flag = f"{self.source}:{self.target}"
        return f"{flag}:ro" if self.read_only else flag


@dataclass(slots=True)
class ComposeProvider:
    """Drive ``docker compose`` for a single project and query the docker daemon."""

    compose_file: Path
    project_name: str
    docker_bin: str = "docker"

    # Daemon queries ----------------------------------------------------
    def ping(self) -> bool:
        """Return True when the docker daemon answers ``docker ps``."""
        try:
            result = self._docker(["ps"], check=False)
        except ComposeError:
            return False
        return result.returncode == 0

    def running_containers(self) -> list[str]:
        """Return the names of all running containers."""
        result = self._docker(["ps", "--format", "{{.Names}}"])
        return _lines(result.stdout)

    def volume_mountpoint(self, volume: str) -> str:
        """Return the host mount point for *volume*."""
        result = self._docker(["volume", "inspect", volume, "--format", "{{ .Mountpoint }}"])
        return (result.stdout or "").strip()

    def list_volumes(self) -> list[str]:
        """Return the names of all docker volumes."""
        result = self._docker(["volume", "ls", "--format", "{{.Name}}"])
        return _lines(result.stdout)

    def list_networks(self) -> list[str]:
        """Return the names of all docker networks."""
        result = self._docker(["network", "ls", "--format", "{{.Name}}"])
        return _lines(result.stdout)

    # Compose lifecycle -------------------------------------------------
    def pull(self) -> subprocess.CompletedProcess[str]:
        """Pull the images referenced by the compose file."""
        return self._compose(["pull"], capture_output=False)

    def up(self, *, detach: bool = True) -> subprocess.CompletedProcess[str]:
        """Create and start the project's containers."""
        args = ["up", "-d"] if detach else ["up"]
        return self._compose(args, capture_output=False)

    def down(self) -> subprocess.CompletedProcess[str]:
        """Stop and remove the project's containers."""
        return self._compose(["down"], capture_output=False)

    def restart(self) -> subprocess.CompletedProcess[str]:
        """Restart the project's containers."""
        return self._compose(["restart"], capture_output=False)

    def ps(self) -> subprocess.CompletedProcess[str]:
        """Return the container table for the project."""
        return self._compose(["ps"])

    def logs(
        self,
        services: Sequence[str] = (),
        *,
        follow: bool = False,
        tail: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Return (or stream, when *follow* is set) the project's logs."""
        args: list[str] = ["logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        args.extend(services)
        return self._compose(args, capture_output=not follow)

    # Container execution -----------------------------------------------
    def exec_to_file(
        self,
        container: str,
        command: Sequence[str],
        destination: Path,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Run *command* inside *container* writing its stdout to *destination*."""
        args = [self.docker_bin, "exec", *_env_flags(env), container, *command]
        run_to_file(
            args,
            destination,
            error_cls=ComposeError,
            error_prefix=f"{self.docker_bin} exec {container} {command[0]}",
        )

    def exec_from_stream(
        self,
        container: str,
        command: Sequence[str],
        source: BinaryIO,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Run *command* inside *container* reading stdin from *source*."""
        args = [self.docker_bin, "exec", "-i", *_env_flags(env), container, *command]
        run_with_stream(
            args,
            source,
            error_cls=ComposeError,
            error_prefix=f"{self.docker_bin} exec -i {container} {command[0]}",
        )

    def run_ephemeral(
        self,
        image: str,
        command: Sequence[str],
        *,
        mounts: Sequence[VolumeMount] = (),
    ) -> subprocess.CompletedProcess[str]:
        """Run *command* in a throwaway container of *image*."""
        args: list[str] = ["run", "--rm"]
        for mount in mounts:
            args.extend(["-v", mount.to_flag()])
        args.append(image)
        args.extend(command)
        return self._docker(args)

    # ------------------------------------------------------------------
    def compose_command(self, *args: str) -> list[str]:
        """Return the full ``docker compose`` argument vector for *args*."""
        return [
            self.docker_bin,
            "compose",
            "-f",
            str(self.compose_file),
            "-p",
            self.project_name,
            *args,
        ]

    def _compose(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        joined = " ".join(args)
        return run_command(
            self.compose_command(*args),
            check=check,
            capture_output=capture_output,
            error_cls=ComposeError,
            error_prefix=f"{self.docker_bin} compose {joined}".rstrip(),
        )

    def _docker(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.docker_bin, *args],
            check=check,
            error_cls=ComposeError,
            error_prefix=f"{self.docker_bin} {args[0]}",
        )


def _lines(text: str | None) -> list[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def _env_flags(env: Mapping[str, str] | None) -> list[str]:
    flags: list[str] = []
    for key, value in (env or {}).items():
        flags.extend(["-e", f"{key}={value}"])
    return flags


__all__ = ["ComposeError", "ComposeProvider", "VolumeMount"]
