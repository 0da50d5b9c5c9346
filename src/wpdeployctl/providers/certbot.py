"""Certbot provider for Let's Encrypt certificates."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from .commands import CommandError, command_exists, run_command


class CertbotError(CommandError):
    """Raised when certbot operations fail."""


@dataclass(slots=True)
class CertbotProvider:
    """Issue and renew certificates with certbot's nginx installer."""

    certbot_bin: str = "certbot"
    privilege_prefix: tuple[str, ...] = ("sudo",)
    installer: str = "nginx"

    def is_installed(self) -> bool:
        """Return True when the certbot binary is available."""
        return command_exists(self.certbot_bin)

    def issue(
        self,
        domain: str,
        email: str,
        *,
        redirect: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Obtain and install a certificate for *domain* non-interactively."""
        args = [
            f"--{self.installer}",
            "-d",
            domain,
            "--non-interactive",
            "--agree-tos",
            "--email",
            email,
        ]
        if redirect:
            args.append("--redirect")
        return self._run(args)

    def renew(self, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Renew every certificate due for renewal."""
        args = ["renew"]
        if dry_run:
            args.append("--dry-run")
        return self._run(args)

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(
            [*self.privilege_prefix, self.certbot_bin, *args],
            capture_output=False,
            error_cls=CertbotError,
            error_prefix=f"{self.certbot_bin} {args[0]}",
        )


__all__ = ["CertbotError", "CertbotProvider"]
