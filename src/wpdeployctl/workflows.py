"""Operation handlers behind each CLI verb.

Each handler is a short linear sequence of provider calls. The first failure
raises a :class:`~wpdeployctl.errors.DeployError` subclass and nothing after it
runs. External tools are reached only through the protocols below so the
handlers can be exercised against in-memory fakes.
"""
from __future__ import annotations

import gzip
import subprocess
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Protocol

from .archive import compute_checksum, gzip_in_place, write_checksum_file
from .backups import (
    ArtifactRecord,
    BackupArtifacts,
    BackupEntryBuilder,
    BackupError,
    BackupsRegistry,
    timestamp_token,
)
from .config import AppConfig
from .errors import (
    BackupFileNotFoundError,
    BackupWriteFailureError,
    CommandFailedError,
    ConfigInvalidError,
    ContainerStartFailureError,
    DaemonUnavailableError,
    DeployError,
    IssuanceFailedError,
    MissingArgumentError,
    MissingInputError,
    PrecheckFailedError,
    RenewalFailedError,
    ToolMissingError,
)
from .exit_codes import ExitCode
from .providers.commands import CommandError
from .providers.compose import VolumeMount
from .templates import TemplateError
from .tls import CertificateSummary, TLSInspectionError, inspect_certificate, live_certificate_path

CONFIRMATION_TOKEN = "yes"
GZIP_MAGIC = b"\x1f\x8b"
CERTBOT_INSTALL_HINT = "Install it with: sudo apt install certbot python3-certbot-nginx"


class ContainerRuntime(Protocol):
    """Container lifecycle and daemon queries."""

    def ping(self) -> bool: ...

    def pull(self) -> object: ...

    def up(self, *, detach: bool = True) -> object: ...

    def down(self) -> object: ...

    def restart(self) -> object: ...

    def ps(self) -> subprocess.CompletedProcess[str]: ...

    def logs(
        self,
        services: Sequence[str] = (),
        *,
        follow: bool = False,
        tail: int | None = None,
    ) -> subprocess.CompletedProcess[str]: ...

    def running_containers(self) -> list[str]: ...

    def volume_mountpoint(self, volume: str) -> str: ...

    def list_volumes(self) -> list[str]: ...

    def list_networks(self) -> list[str]: ...

    def run_ephemeral(
        self,
        image: str,
        command: Sequence[str],
        *,
        mounts: Sequence[VolumeMount] = (),
    ) -> object: ...


class DatabaseClient(Protocol):
    """Opaque dump/import of the WordPress database."""

    def dump(self, destination: Path) -> None: ...

    def load(self, source: BinaryIO) -> None: ...


class ProxyServer(Protocol):
    """Host reverse proxy."""

    def site_path(self, site: str) -> Path: ...

    def enabled_path(self, site: str) -> Path: ...

    def site_exists(self, site: str) -> bool: ...

    def is_enabled(self, site: str) -> bool: ...

    def can_write_sites(self) -> bool: ...

    def render_draft(self, destination: Path, context: dict[str, object]) -> bool: ...

    def test_config(self) -> object: ...

    def reload(self) -> object: ...


class CertificateClient(Protocol):
    """ACME certificate client."""

    def is_installed(self) -> bool: ...

    def issue(self, domain: str, email: str, *, redirect: bool = True) -> object: ...

    def renew(self, *, dry_run: bool = False) -> object: ...


class Reporter(Protocol):
    """Sink for operator-facing log lines and recorded steps."""

    def info(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def line(self, text: str = "") -> None: ...

    def step(self, name: str, *, status: str = "success", detail: str = "") -> None: ...


def no_answer(question: str) -> str:
    """Answer every question with an empty string (non-interactive deny)."""
    return ""


@dataclass
class Deployment:
    """Everything a handler needs, assembled once per process."""

    config: AppConfig
    runtime: ContainerRuntime
    database: DatabaseClient
    proxy: ProxyServer
    certificates: CertificateClient
    backups: BackupsRegistry
    reporter: Reporter
    ask: Callable[[str], str] = no_answer
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = datetime.now


@dataclass(frozen=True)
class DeployReport:
    """Outcome of a successful deploy."""

    volume_path: str
    checklist: tuple[str, ...]


@dataclass(frozen=True)
class BackupReport:
    """Artifacts written by a backup invocation."""

    artifacts: BackupArtifacts
    entry: dict[str, object]


@dataclass(frozen=True)
class StatusReport:
    """Read-only snapshot of the stack."""

    containers: str
    volumes: tuple[str, ...]
    networks: tuple[str, ...]
    certificate: CertificateSummary | None = None
    certificate_note: str | None = None


@dataclass(frozen=True)
class NginxSetupReport:
    """Inputs for the manual vhost installation."""

    draft_path: Path
    target_path: Path
    volume_path: str
    changed: bool
    commands: tuple[str, ...] = field(default_factory=tuple)


def is_confirmed(answer: str | None) -> bool:
    """Return True only for the literal confirmation token ``yes``."""
    return (answer or "").strip() == CONFIRMATION_TOKEN


@contextmanager
def _external(reporter: Reporter, step: str) -> Iterator[None]:
    """Translate provider failures into :class:`CommandFailedError`."""
    try:
        yield
    except CommandError as exc:
        reporter.step(step, status="error", detail=str(exc))
        code = exc.returncode if 0 < exc.returncode < 256 else ExitCode.FAILURE
        raise CommandFailedError(str(exc), exit_code=code) from exc
    reporter.step(step)


# ---------------------------------------------------------------------------
# Container lifecycle
# ---------------------------------------------------------------------------


def deploy(deployment: Deployment) -> DeployReport:
    """Pull, start and health-check the WordPress stack."""
    config = deployment.config
    site = config.site
    runtime = deployment.runtime
    reporter = deployment.reporter

    reporter.info(f"Starting {site.domain} deployment...")
    if not runtime.ping():
        reporter.step("docker.ping", status="error")
        raise DaemonUnavailableError(
            "Cannot connect to Docker daemon",
            remediation=(
                "Fix: sudo usermod -aG docker $USER && newgrp docker",
                "Or run with: sudo wpdeployctl start",
            ),
        )
    reporter.step("docker.ping")

    reporter.info("Pulling Docker images...")
    with _external(reporter, "compose.pull"):
        runtime.pull()

    reporter.info("Starting containers...")
    with _external(reporter, "compose.up"):
        runtime.up(detach=True)

    reporter.info("Waiting for services to be ready...")
    deployment.sleep(config.docker.settle_seconds)

    with _external(reporter, "docker.ps"):
        running = runtime.running_containers()
    checks = (
        ("WordPress", site.app_container, site.app_service),
        ("Database", site.db_container, site.db_service),
    )
    for label, fragment, service in checks:
        if any(fragment in name for name in running):
            reporter.info(f"{label} container is running")
            continue
        reporter.error(f"{label} container failed to start")
        _show_service_logs(deployment, service)
        raise ContainerStartFailureError(
            f"{label} container '{fragment}' is not running.",
            remediation=(f"Inspect: wpdeployctl logs {service}",),
        )

    reporter.info("WordPress files location:")
    with _external(reporter, "docker.volume.inspect"):
        volume_path = runtime.volume_mountpoint(config.data_volume)
    reporter.line(volume_path)

    checklist = (
        f"Configure nginx vhost (see {site.domain}.conf, `wpdeployctl nginx`)",
        "Test nginx config: sudo nginx -t",
        "Reload nginx: sudo systemctl reload nginx",
        f"Visit: http://{site.domain}",
    )
    reporter.info("Deployment complete!")
    reporter.info("Next steps:")
    for index, item in enumerate(checklist, start=1):
        reporter.line(f"  {index}. {item}")
    return DeployReport(volume_path=volume_path, checklist=checklist)


def _show_service_logs(deployment: Deployment, service: str) -> None:
    try:
        result = deployment.runtime.logs([service])
    except CommandError as exc:
        deployment.reporter.warn(f"Unable to fetch logs for {service}: {exc}")
        return
    output = (result.stdout or "").rstrip()
    if output:
        deployment.reporter.line(output)


def stop(deployment: Deployment) -> None:
    """Stop and remove the stack's containers."""
    reporter = deployment.reporter
    reporter.info(f"Stopping {deployment.config.site.domain}...")
    with _external(reporter, "compose.down"):
        deployment.runtime.down()
    reporter.info("Stopped")


def restart(deployment: Deployment) -> None:
    """Restart the stack's containers."""
    reporter = deployment.reporter
    reporter.info(f"Restarting {deployment.config.site.domain}...")
    with _external(reporter, "compose.restart"):
        deployment.runtime.restart()
    reporter.info("Restarted")


def update(deployment: Deployment) -> None:
    """Pull newer images and recreate changed containers."""
    reporter = deployment.reporter
    reporter.info(f"Updating {deployment.config.site.domain}...")
    with _external(reporter, "compose.pull"):
        deployment.runtime.pull()
    with _external(reporter, "compose.up"):
        deployment.runtime.up(detach=True)
    reporter.info("Updated")


def logs(
    deployment: Deployment,
    services: Sequence[str] = (),
    *,
    follow: bool = True,
    tail: int | None = None,
) -> None:
    """Stream the stack's logs until interrupted."""
    with _external(deployment.reporter, "compose.logs"):
        result = deployment.runtime.logs(services, follow=follow, tail=tail)
    output = (getattr(result, "stdout", "") or "").rstrip()
    if output:
        deployment.reporter.line(output)


# ---------------------------------------------------------------------------
# Backup / restore
# ---------------------------------------------------------------------------


def backup(deployment: Deployment) -> BackupReport:
    """Dump the database and archive the WordPress volume."""
    config = deployment.config
    reporter = deployment.reporter
    registry = deployment.backups

    reporter.info("Creating backup...")
    try:
        registry.ensure_root()
    except BackupError as exc:
        raise BackupWriteFailureError(str(exc)) from exc

    token = timestamp_token(deployment.clock())
    artifacts = BackupArtifacts.plan(registry.root, config.site.slug, token)
    if artifacts.database_archive.exists() or artifacts.files_archive.exists():
        raise BackupWriteFailureError(
            f"Backup artifacts for {token} already exist in {registry.root}.",
            remediation=("Retry in a second.",),
        )

    reporter.info("Backing up database...")
    dump_path = artifacts.database_dump
    try:
        deployment.database.dump(dump_path)
    except CommandError as exc:
        dump_path.unlink(missing_ok=True)
        reporter.step("database.dump", status="error", detail=str(exc))
        raise BackupWriteFailureError("Backup failed!", remediation=(str(exc),)) from exc
    if not dump_path.is_file() or dump_path.stat().st_size == 0:
        dump_path.unlink(missing_ok=True)
        reporter.step("database.dump", status="error", detail="empty dump")
        raise BackupWriteFailureError("Backup failed!")
    reporter.step("database.dump", detail=str(dump_path))
    reporter.info(f"Database backup created: {dump_path}")

    try:
        archive_path = gzip_in_place(dump_path)
    except BackupError as exc:
        raise BackupWriteFailureError(str(exc)) from exc
    reporter.info(f"Compressed to: {archive_path}")
    database_record = _record_artifact(archive_path)

    reporter.info("Backing up WordPress files...")
    files_path = artifacts.files_archive
    try:
        with _external(reporter, "docker.run.archive"):
            deployment.runtime.run_ephemeral(
                config.backups.helper_image,
                ["tar", "czf", f"/backup/{files_path.name}", "-C", "/source", "."],
                mounts=(
                    VolumeMount(config.data_volume, "/source", read_only=True),
                    VolumeMount(str(registry.root), "/backup"),
                ),
            )
    except CommandFailedError as exc:
        _append_index_entry(
            deployment,
            BackupEntryBuilder(
                prefix=config.site.slug,
                timestamp=token,
                database=database_record,
                error=exc.message,
            ).build(),
        )
        reporter.warn(f"Files backup failed; database backup kept at {archive_path}")
        raise

    files_record = _record_artifact(files_path) if files_path.is_file() else None
    entry = BackupEntryBuilder(
        prefix=config.site.slug,
        timestamp=token,
        database=database_record,
        files=files_record,
        error=None if files_record else f"{files_path} was not created",
    ).build()
    _append_index_entry(deployment, entry)

    if files_record is None:
        reporter.warn(f"Files archive missing: {files_path}")
    else:
        reporter.info(f"Files backup created: {files_path}")
    reporter.info("Backup complete!")
    return BackupReport(artifacts=artifacts, entry=entry)


def _record_artifact(path: Path) -> ArtifactRecord:
    checksum = compute_checksum(path)
    write_checksum_file(path, checksum)
    return ArtifactRecord(path=path, checksum=checksum, size_bytes=path.stat().st_size)


def _append_index_entry(deployment: Deployment, entry: dict[str, object]) -> None:
    try:
        deployment.backups.append(entry)
    except BackupError as exc:
        deployment.reporter.warn(f"Backup index not updated: {exc}")
        return
    deployment.reporter.step("backups.index", detail=str(entry.get("status", "")))


def restore(deployment: Deployment, backup_file: Path | None) -> bool:
    """Replace the database with the contents of *backup_file*.

    Returns ``True`` when the restore ran and ``False`` when the operator did
    not confirm it.
    """
    reporter = deployment.reporter
    if backup_file is None or not str(backup_file).strip():
        raise MissingArgumentError("Usage: wpdeployctl restore <backup_file.sql.gz>")
    if not backup_file.is_file():
        raise BackupFileNotFoundError(f"Backup file not found: {backup_file}")
    with backup_file.open("rb") as handle:
        if handle.read(len(GZIP_MAGIC)) != GZIP_MAGIC:
            raise PrecheckFailedError(
                f"{backup_file} is not a gzip-compressed SQL dump.",
                remediation=("Pass a *_backup_<timestamp>.sql.gz file created by `wpdeployctl backup`.",),
            )

    reporter.warn(f"This will restore database from: {backup_file}")
    if not is_confirmed(deployment.ask("Are you sure? (yes/no)")):
        reporter.step("confirm", status="skipped", detail="declined")
        reporter.info("Restore cancelled")
        return False
    reporter.step("confirm")

    reporter.info("Restoring database...")
    try:
        with gzip.open(backup_file, "rb") as source, _external(reporter, "database.load"):
            deployment.database.load(source)
    except (OSError, EOFError) as exc:
        raise CommandFailedError(f"Failed to decompress {backup_file}: {exc}") from exc
    reporter.info("Restore complete!")
    return True


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


def status(deployment: Deployment) -> StatusReport:
    """Report containers, volumes, networks and certificate without mutating anything."""
    config = deployment.config
    runtime = deployment.runtime
    reporter = deployment.reporter
    slug = config.site.slug

    with _external(reporter, "compose.ps"):
        containers = (runtime.ps().stdout or "").rstrip()
    with _external(reporter, "docker.volume.ls"):
        volumes = tuple(name for name in runtime.list_volumes() if slug in name)
    with _external(reporter, "docker.network.ls"):
        networks = tuple(name for name in runtime.list_networks() if slug in name)

    certificate: CertificateSummary | None = None
    note: str | None = None
    cert_path = live_certificate_path(config.certbot.live_dir, config.site.domain)
    try:
        certificate = inspect_certificate(cert_path)
    except TLSInspectionError as exc:
        note = str(exc)

    reporter.info(f"{config.site.domain} status:")
    reporter.line()
    reporter.line(containers or "(no containers)")
    reporter.line()
    reporter.info("Volumes:")
    for name in volumes or ("(none)",):
        reporter.line(name)
    reporter.line()
    reporter.info("Network:")
    for name in networks or ("(none)",):
        reporter.line(name)
    reporter.line()
    reporter.info("Certificate:")
    if certificate is not None:
        remaining = certificate.days_remaining()
        expiry = certificate.not_valid_after.strftime("%Y-%m-%d %H:%M UTC")
        if certificate.is_expired():
            reporter.warn(f"{cert_path} expired on {expiry}")
        else:
            reporter.line(f"{cert_path} valid until {expiry} ({remaining} days remaining)")
        if not certificate.covers(config.site.domain):
            names = ", ".join(certificate.dns_names) or certificate.common_name or "(none)"
            reporter.warn(f"Certificate does not cover {config.site.domain} (names: {names})")
    else:
        reporter.line(note or "(none)")

    return StatusReport(
        containers=containers,
        volumes=volumes,
        networks=networks,
        certificate=certificate,
        certificate_note=note,
    )


# ---------------------------------------------------------------------------
# nginx / certbot
# ---------------------------------------------------------------------------


def nginx_setup(deployment: Deployment) -> NginxSetupReport | None:
    """Draft the vhost and print the manual installation steps.

    The live vhost under sites-available is never written. Returns ``None``
    when the operator declines to replace an existing vhost.
    """
    config = deployment.config
    domain = config.site.domain
    proxy = deployment.proxy
    reporter = deployment.reporter

    if not proxy.can_write_sites():
        reporter.warn("Need sudo for nginx configuration. Run with sudo if needed.")

    reporter.info("Creating nginx vhost configuration...")
    target = proxy.site_path(domain)
    if proxy.site_exists(domain):
        reporter.warn(f"Nginx vhost already exists at {target}")
        if not is_confirmed(deployment.ask("Overwrite? (yes/no)")):
            reporter.step("confirm", status="skipped", detail="declined")
            reporter.info("Skipping nginx setup")
            return None
        reporter.step("confirm")

    volume = config.data_volume
    try:
        volume_path = deployment.runtime.volume_mountpoint(volume)
    except CommandError:
        volume_path = ""
    volume_path = volume_path or f"/var/lib/docker/volumes/{volume}/_data"

    draft = config.project_dir / f"{domain}.conf"
    context: dict[str, object] = {
        "server_name": domain,
        "target_path": str(target),
        "document_root": volume_path,
        "upstream_host": "127.0.0.1",
        "upstream_port": config.site.app_port,
        "client_max_body_size": "64M",
    }
    try:
        changed = proxy.render_draft(draft, context)
    except TemplateError as exc:
        raise DeployError(f"Failed to render nginx configuration: {exc}") from exc
    reporter.step("nginx.draft", detail=f"path={draft} changed={changed}")

    enabled_dir = proxy.enabled_path(domain).parent
    commands = (
        f"sudo cp {draft} {target}",
        f"sudo ln -s {target} {enabled_dir}/",
        "sudo nginx -t && sudo systemctl reload nginx",
    )
    reporter.info(f"Creating nginx configuration at: {draft.name}")
    reporter.info(f"Volume path: {volume_path}")
    reporter.warn(f"You'll need to copy this to {target} with sudo")
    for command in commands:
        reporter.line(f"  {command}")
    return NginxSetupReport(
        draft_path=draft,
        target_path=target,
        volume_path=volume_path,
        changed=changed,
        commands=commands,
    )


def ssl_setup(deployment: Deployment, email: str | None = None) -> str:
    """Issue a Let's Encrypt certificate for the site and return its HTTPS URL."""
    config = deployment.config
    domain = config.site.domain
    proxy = deployment.proxy
    certificates = deployment.certificates
    reporter = deployment.reporter

    reporter.info("Setting up SSL certificate with Certbot...")
    if not certificates.is_installed():
        raise ToolMissingError("Certbot is not installed!", remediation=(CERTBOT_INSTALL_HINT,))

    if not proxy.is_enabled(domain):
        site_path = proxy.site_path(domain)
        enabled_dir = proxy.enabled_path(domain).parent
        raise PrecheckFailedError(
            f"Nginx vhost not found in {enabled_dir}/",
            remediation=(
                f"Please run: sudo cp {domain}.conf {site_path}",
                f"Then: sudo ln -s {site_path} {enabled_dir}/",
            ),
        )

    reporter.info("Testing nginx configuration...")
    try:
        proxy.test_config()
    except CommandError as exc:
        reporter.step("nginx.test", status="error", detail=str(exc))
        raise ConfigInvalidError(
            "Nginx configuration test failed!",
            remediation=(exc.stderr or str(exc),),
        ) from exc
    reporter.step("nginx.test")

    reporter.info("Reloading nginx...")
    with _external(reporter, "nginx.reload"):
        proxy.reload()

    address = email if email is not None else deployment.ask(
        "Enter your email for Let's Encrypt notifications"
    )
    address = (address or "").strip()
    if not address:
        raise MissingInputError("Email is required")

    reporter.info(f"Running Certbot for {domain}...")
    try:
        certificates.issue(domain, address, redirect=True)
    except CommandError as exc:
        reporter.step("certbot.issue", status="error", detail=str(exc))
        raise IssuanceFailedError("Certbot failed! Check the logs above.") from exc
    reporter.step("certbot.issue")

    url = f"https://{domain}"
    reporter.info("SSL certificate installed successfully!")
    reporter.info(f"Your site is now available at: {url}")
    reporter.info("Certificate will auto-renew via certbot timer")

    reporter.info("Testing certificate renewal...")
    try:
        certificates.renew(dry_run=True)
    except CommandError as exc:
        reporter.step("certbot.renew.dry_run", status="error", detail=str(exc))
        raise RenewalFailedError("Certificate renewal dry-run failed!") from exc
    reporter.step("certbot.renew.dry_run")
    return url


def ssl_renew(deployment: Deployment) -> None:
    """Renew due certificates and reload nginx on success only."""
    reporter = deployment.reporter
    reporter.info("Renewing SSL certificates...")
    if not deployment.certificates.is_installed():
        raise ToolMissingError("Certbot is not installed!", remediation=(CERTBOT_INSTALL_HINT,))

    try:
        deployment.certificates.renew()
    except CommandError as exc:
        reporter.step("certbot.renew", status="error", detail=str(exc))
        raise RenewalFailedError("Certificate renewal failed!") from exc
    reporter.step("certbot.renew")

    reporter.info("Certificate renewal successful!")
    with _external(reporter, "nginx.reload"):
        deployment.proxy.reload()


__all__ = [
    "BackupReport",
    "CertificateClient",
    "ContainerRuntime",
    "DatabaseClient",
    "DeployReport",
    "Deployment",
    "NginxSetupReport",
    "ProxyServer",
    "Reporter",
    "StatusReport",
    "backup",
    "deploy",
    "is_confirmed",
    "logs",
    "nginx_setup",
    "no_answer",
    "restart",
    "restore",
    "ssl_renew",
    "ssl_setup",
    "status",
    "stop",
    "update",
]
