"""Tests for the nginx provider."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest
from conftest import DummyResult

from wpdeployctl.providers import nginx as nginx_module
from wpdeployctl.providers.nginx import NginxError, NginxProvider
from wpdeployctl.templates import TemplateEngine

DOMAIN = "shop.docpilot.in"


@pytest.fixture
def provider(tmp_path: Path) -> NginxProvider:
    """Return an nginx provider bound to temporary directories."""
    sites_available = tmp_path / "sites-available"
    sites_enabled = tmp_path / "sites-enabled"
    sites_available.mkdir()
    sites_enabled.mkdir()
    return NginxProvider(
        templates=TemplateEngine.with_overrides(None),
        sites_available=sites_available,
        sites_enabled=sites_enabled,
        privilege_prefix=("sudo",),
    )


def test_paths_use_domain_as_file_name(provider: NginxProvider) -> None:
    """The vhost file is named after the domain in both directories."""
    assert provider.site_path(DOMAIN) == provider.sites_available / DOMAIN
    assert provider.enabled_path(DOMAIN) == provider.sites_enabled / DOMAIN
    assert provider.site_exists(DOMAIN) is False
    assert provider.is_enabled(DOMAIN) is False


def test_enabled_symlink_counts_as_enabled(provider: NginxProvider) -> None:
    """A live symlink in sites-enabled marks the vhost as enabled."""
    site = provider.site_path(DOMAIN)
    site.write_text("server {}\n", encoding="utf-8")
    provider.enabled_path(DOMAIN).symlink_to(site)

    assert provider.site_exists(DOMAIN) is True
    assert provider.is_enabled(DOMAIN) is True


def test_dangling_symlink_is_not_enabled(provider: NginxProvider) -> None:
    """A symlink to a removed vhost does not count."""
    provider.enabled_path(DOMAIN).symlink_to(provider.site_path(DOMAIN))

    assert provider.is_enabled(DOMAIN) is False


def test_render_draft_writes_outside_sites_available(
    provider: NginxProvider,
    tmp_path: Path,
) -> None:
    """Drafts are rendered to the requested path only."""
    draft = tmp_path / "project" / f"{DOMAIN}.conf"

    changed = provider.render_draft(
        draft,
        {
            "server_name": DOMAIN,
            "target_path": str(provider.site_path(DOMAIN)),
            "document_root": "/var/lib/docker/volumes/v/_data",
            "upstream_host": "127.0.0.1",
            "upstream_port": 8080,
            "client_max_body_size": "64M",
        },
    )

    assert changed is True
    assert f"server_name {DOMAIN};" in draft.read_text(encoding="utf-8")
    assert list(provider.sites_available.iterdir()) == []


def test_test_config_and_reload_use_privilege_prefix(
    monkeypatch: pytest.MonkeyPatch,
    provider: NginxProvider,
) -> None:
    """Validation and reload run through sudo."""
    calls: list[tuple[str, ...]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append(tuple(args))
        return DummyResult()

    monkeypatch.setattr(nginx_module, "run_command", fake_run)

    provider.test_config()
    provider.reload()

    assert calls == [("sudo", "nginx", "-t"), ("sudo", "systemctl", "reload", "nginx")]


def test_test_config_failure_raises(
    monkeypatch: pytest.MonkeyPatch,
    provider: NginxProvider,
) -> None:
    """A failing ``nginx -t`` raises ``NginxError`` with its stderr."""
    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        error_cls = kwargs["error_cls"]
        assert error_cls is NginxError
        raise NginxError("nginx -t failed (exit 1): emerg", returncode=1, stderr="emerg")

    monkeypatch.setattr(nginx_module, "run_command", fake_run)

    with pytest.raises(NginxError) as excinfo:
        provider.test_config()

    assert excinfo.value.stderr == "emerg"
