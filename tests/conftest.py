"""Shared fixtures and in-memory providers for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import BinaryIO

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from wpdeployctl.backups import BackupsRegistry
from wpdeployctl.config import AppConfig, load_config
from wpdeployctl.providers.commands import CommandError
from wpdeployctl.providers.compose import VolumeMount
from wpdeployctl.workflows import Deployment


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class FakeRuntime:
    """Container runtime that records calls instead of running docker."""

    def __init__(self, *, running: Sequence[str] = ()) -> None:
        """Start with a reachable daemon and the given running containers."""
        self.calls: list[str] = []
        self.daemon_up = True
        self.running = list(running)
        self.mountpoint = "/var/lib/docker/volumes/wp-site_docpilot_shop_data/_data"
        self.volumes = ["wp-site_docpilot_shop_data", "wp-site_docpilot_shop_db", "other_data"]
        self.networks = ["bridge", "wp-site_docpilot_shop_net", "host"]
        self.failures: dict[str, CommandError] = {}
        self.ephemeral: list[tuple[str, tuple[str, ...], tuple[VolumeMount, ...]]] = []
        self.log_requests: list[tuple[tuple[str, ...], bool, int | None]] = []
        self.write_archive = True

    def _call(self, name: str) -> None:
        self.calls.append(name)
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def ping(self) -> bool:
        self.calls.append("ping")
        return self.daemon_up

    def pull(self) -> DummyResult:
        self._call("pull")
        return DummyResult()

    def up(self, *, detach: bool = True) -> DummyResult:
        self._call("up")
        return DummyResult()

    def down(self) -> DummyResult:
        self._call("down")
        return DummyResult()

    def restart(self) -> DummyResult:
        self._call("restart")
        return DummyResult()

    def ps(self) -> DummyResult:
        self._call("ps")
        return DummyResult(stdout="NAME  STATUS\ndocpilot_shop_app  running\n")

    def logs(
        self,
        services: Sequence[str] = (),
        *,
        follow: bool = False,
        tail: int | None = None,
    ) -> DummyResult:
        self._call("logs")
        self.log_requests.append((tuple(services), follow, tail))
        return DummyResult(stdout="db  | crashed\n")

    def running_containers(self) -> list[str]:
        self._call("running_containers")
        return list(self.running)

    def volume_mountpoint(self, volume: str) -> str:
        self._call("volume_mountpoint")
        return self.mountpoint

    def list_volumes(self) -> list[str]:
        self._call("list_volumes")
        return list(self.volumes)

    def list_networks(self) -> list[str]:
        self._call("list_networks")
        return list(self.networks)

    def run_ephemeral(
        self,
        image: str,
        command: Sequence[str],
        *,
        mounts: Sequence[VolumeMount] = (),
    ) -> DummyResult:
        self._call("run_ephemeral")
        self.ephemeral.append((image, tuple(command), tuple(mounts)))
        if self.write_archive:
            backup_dir = next(Path(m.source) for m in mounts if m.target == "/backup")
            archive_name = Path(command[2]).name
            (backup_dir / archive_name).write_bytes(b"tar-bytes")
        return DummyResult()


class FakeDatabase:
    """Database client writing canned dumps and capturing imports."""

    def __init__(self, dump_content: bytes = b"-- dump\nCREATE TABLE wp_posts (id int);\n") -> None:
        """Use *dump_content* for every dump."""
        self.dump_content = dump_content
        self.dumps: list[Path] = []
        self.loaded: bytes | None = None
        self.dump_error: CommandError | None = None

    def dump(self, destination: Path) -> None:
        self.dumps.append(destination)
        if self.dump_error is not None:
            destination.write_bytes(b"partial")
            raise self.dump_error
        destination.write_bytes(self.dump_content)

    def load(self, source: BinaryIO) -> None:
        self.loaded = source.read()


class FakeProxy:
    """Reverse proxy backed by temporary sites directories."""

    def __init__(self, root: Path) -> None:
        """Create sites-available and sites-enabled under *root*."""
        self.sites_available = root / "sites-available"
        self.sites_enabled = root / "sites-enabled"
        self.sites_available.mkdir(parents=True, exist_ok=True)
        self.sites_enabled.mkdir(parents=True, exist_ok=True)
        self.writable = True
        self.calls: list[str] = []
        self.drafts: list[tuple[Path, dict[str, object]]] = []
        self.test_error: CommandError | None = None
        self.reload_error: CommandError | None = None

    def site_path(self, site: str) -> Path:
        return self.sites_available / site

    def enabled_path(self, site: str) -> Path:
        return self.sites_enabled / site

    def site_exists(self, site: str) -> bool:
        return self.site_path(site).is_file()

    def is_enabled(self, site: str) -> bool:
        return self.enabled_path(site).is_file()

    def can_write_sites(self) -> bool:
        return self.writable

    def render_draft(self, destination: Path, context: dict[str, object]) -> bool:
        self.calls.append("render_draft")
        self.drafts.append((destination, dict(context)))
        destination.write_text(f"server_name {context['server_name']};\n", encoding="utf-8")
        return True

    def test_config(self) -> DummyResult:
        self.calls.append("test_config")
        if self.test_error is not None:
            raise self.test_error
        return DummyResult()

    def reload(self) -> DummyResult:
        self.calls.append("reload")
        if self.reload_error is not None:
            raise self.reload_error
        return DummyResult()


class FakeCertificates:
    """Certificate client recording issue and renew calls."""

    def __init__(self) -> None:
        """Start installed with no configured failures."""
        self.installed = True
        self.calls: list[tuple[str, ...]] = []
        self.issue_error: CommandError | None = None
        self.renew_error: CommandError | None = None
        self.dry_run_error: CommandError | None = None

    def is_installed(self) -> bool:
        return self.installed

    def issue(self, domain: str, email: str, *, redirect: bool = True) -> DummyResult:
        self.calls.append(("issue", domain, email))
        if self.issue_error is not None:
            raise self.issue_error
        return DummyResult()

    def renew(self, *, dry_run: bool = False) -> DummyResult:
        self.calls.append(("renew", "dry-run") if dry_run else ("renew",))
        error = self.dry_run_error if dry_run else self.renew_error
        if error is not None:
            raise error
        return DummyResult()


class RecordingReporter:
    """Reporter that keeps every line for assertions."""

    def __init__(self) -> None:
        """Start with empty logs."""
        self.messages: list[tuple[str, str]] = []
        self.steps: list[tuple[str, str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warn(self, message: str) -> None:
        self.messages.append(("warn", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def line(self, text: str = "") -> None:
        self.messages.append(("line", text))

    def step(self, name: str, *, status: str = "success", detail: str = "") -> None:
        self.steps.append((name, status, detail))

    def text(self, level: str | None = None) -> str:
        """Return the recorded messages (optionally one level) joined by newlines."""
        return "\n".join(msg for lvl, msg in self.messages if level in (None, lvl))


class Answers:
    """Scripted replies for confirmation prompts."""

    def __init__(self, *answers: str) -> None:
        """Queue *answers*; an exhausted queue answers with an empty string."""
        self._answers = list(answers)
        self.questions: list[str] = []

    def __call__(self, question: str) -> str:
        self.questions.append(question)
        return self._answers.pop(0) if self._answers else ""


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted in a temporary project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return load_config(
        tmp_path / "missing.yml",
        env={},
        overrides={
            "project_dir": str(project),
            "logs_dir": str(tmp_path / "logs"),
            "templates_dir": str(tmp_path / "templates"),
            "nginx": {
                "sites_available": str(tmp_path / "nginx" / "sites-available"),
                "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
            },
            "certbot": {"live_dir": str(tmp_path / "letsencrypt" / "live")},
        },
    )


class Harness:
    """Bundle of fakes from which handler contexts are built."""

    def __init__(self, config: AppConfig, root: Path) -> None:
        """Create fresh fakes for *config*."""
        self.config = config
        self.runtime = FakeRuntime(running=[config.site.app_container, config.site.db_container])
        self.database = FakeDatabase()
        self.proxy = FakeProxy(root / "nginx")
        self.certificates = FakeCertificates()
        self.reporter = RecordingReporter()
        self.sleeps: list[float] = []

    def deployment(self, ask: Callable[[str], str] | None = None, **overrides: object) -> Deployment:
        """Return a handler context wired to the fakes."""
        deployment = Deployment(
            config=self.config,
            runtime=self.runtime,
            database=self.database,
            proxy=self.proxy,
            certificates=self.certificates,
            backups=BackupsRegistry(self.config.backups.root, self.config.backups.index),
            reporter=self.reporter,
            sleep=self.sleeps.append,
        )
        if ask is not None:
            deployment.ask = ask
        for key, value in overrides.items():
            setattr(deployment, key, value)
        return deployment


@pytest.fixture
def harness(app_config: AppConfig, tmp_path: Path) -> Harness:
    """Return fakes bound to the temporary configuration."""
    return Harness(app_config, tmp_path)


def completed(
    args: Sequence[str],
    returncode: int = 0,
    stdout: str = "",
    stderr: str = "",
) -> subprocess.CompletedProcess[str]:
    """Return a ``CompletedProcess`` for provider tests."""
    return subprocess.CompletedProcess(list(args), returncode, stdout, stderr)


def write_certificate(
    path: Path,
    name: str = "shop.docpilot.in",
    *,
    valid_days: int = 60,
) -> Path:
    """Write a self-signed PEM certificate for *name* to *path*."""
    now = datetime.now(UTC)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    not_after = now + timedelta(days=valid_days)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(min(now, not_after) - timedelta(days=1))
        .not_valid_after(not_after)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(name)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return path
