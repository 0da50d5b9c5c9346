"""Nginx provider for the host reverse proxy in front of WordPress."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine
from .commands import CommandError, run_command


class NginxError(CommandError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxProvider:
    """Locate, draft, validate and reload the site's nginx vhost."""

    templates: TemplateEngine
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    systemctl_bin: str = "systemctl"
    service: str = "nginx"
    privilege_prefix: tuple[str, ...] = ("sudo",)

    def site_path(self, site: str) -> Path:
        """Return the vhost path under sites-available for *site*."""
        return self.sites_available / site

    def enabled_path(self, site: str) -> Path:
        """Return the vhost path under sites-enabled for *site*."""
        return self.sites_enabled / site

    def site_exists(self, site: str) -> bool:
        """Return True when the vhost exists in sites-available."""
        return self.site_path(site).is_file()

    def is_enabled(self, site: str) -> bool:
        """Return True when sites-enabled holds the vhost (file or live symlink)."""
        return self.enabled_path(site).is_file()

    def can_write_sites(self) -> bool:
        """Return True when the current user may write to sites-available."""
        return os.access(self.sites_available, os.W_OK)

    def render_draft(
        self,
        destination: Path,
        context: Mapping[str, object],
    ) -> bool:
        """Render the vhost template to *destination* for manual installation.

        Returns ``True`` when the draft was created or changed.
        """
        return self.templates.render_to_path(
            "nginx/site.conf.j2",
            destination,
            context,
            mode=0o644,
        )

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        return self._run([*self.privilege_prefix, self.nginx_bin, "-t"])

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx through systemd to apply configuration changes."""
        return self._run(
            [*self.privilege_prefix, self.systemctl_bin, "reload", self.service]
        )

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(args, error_cls=NginxError)


__all__ = ["NginxError", "NginxProvider"]
