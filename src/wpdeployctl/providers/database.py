"""MySQL dump/import executed inside the database container."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol


class ContainerExec(Protocol):
    """The slice of the container runtime the database client relies on."""

    def exec_to_file(
        self,
        container: str,
        command: Sequence[str],
        destination: Path,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Run *command* in *container* writing stdout to *destination*."""

    def exec_from_stream(
        self,
        container: str,
        command: Sequence[str],
        source: BinaryIO,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Run *command* in *container* reading stdin from *source*."""


@dataclass(slots=True)
class MySQLClient:
    """Dump and load the WordPress database through ``docker exec``.

    The password travels as ``MYSQL_PWD`` in the exec environment instead of a
    ``-p`` argument.
    """

    runtime: ContainerExec
    container: str
    database: str
    user: str
    password: str = ""
    dump_bin: str = "mysqldump"
    client_bin: str = "mysql"

    def dump(self, destination: Path) -> None:
        """Write a plain SQL dump of the database to *destination*."""
        self.runtime.exec_to_file(
            self.container,
            [self.dump_bin, "-u", self.user, self.database],
            destination,
            env=self._env(),
        )

    def load(self, source: BinaryIO) -> None:
        """Import the SQL statements read from *source* into the database."""
        self.runtime.exec_from_stream(
            self.container,
            [self.client_bin, "-u", self.user, self.database],
            source,
            env=self._env(),
        )

    def _env(self) -> dict[str, str]:
        return {"MYSQL_PWD": self.password} if self.password else {}


__all__ = ["ContainerExec", "MySQLClient"]
