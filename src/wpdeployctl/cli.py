"""Typer-powered command line for ``wpdeployctl``.

Every verb maps onto exactly one handler in :mod:`wpdeployctl.workflows`.
Handlers raise :class:`~wpdeployctl.errors.DeployError` subclasses; this module
catches them once, prints the severity-tagged message with its remediation,
records the outcome in the operations log, and exits with the error's code.
"""
from __future__ import annotations

import textwrap
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypeVar

import typer
from rich.console import Console
from rich.text import Text

from . import __version__, workflows
from .backups import BackupsRegistry
from .config import AppConfig, ConfigError, load_config
from .errors import DeployError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import CertbotProvider, ComposeProvider, MySQLClient, NginxProvider
from .templates import TemplateEngine

console = Console()

T = TypeVar("T")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to wpdeployctl's YAML config file.",
)

LOG_SERVICES_ARGUMENT = typer.Argument(
    None,
    help="Limit output to these compose services (default: all).",
    show_default=False,
)

LOG_TAIL_OPTION = typer.Option(
    None,
    "--tail",
    min=0,
    help="Number of lines to show from the end of each service's log.",
)

RESTORE_FILE_ARGUMENT = typer.Argument(
    None,
    help="Compressed database dump (*.sql.gz) produced by `wpdeployctl backup`.",
    show_default=False,
)

SSL_EMAIL_OPTION = typer.Option(
    None,
    "--email",
    help="Contact address for Let's Encrypt (prompted for when omitted).",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Deploy and operate a single containerised WordPress site.

        Running without a command performs `deploy`. Containers are managed
        with Docker Compose; nginx and certbot run on the host.
        """
    ).strip(),
)


class ConsoleReporter:
    """Print handler messages as tagged console lines and record steps on *op*."""

    def __init__(self, op: OperationScope) -> None:
        """Bind the reporter to the active operation scope."""
        self._op = op
        self.warnings: list[str] = []

    def info(self, message: str) -> None:
        """Print a green ``[INFO]`` line."""
        _tagged("[INFO]", "green", message)

    def warn(self, message: str) -> None:
        """Print a yellow ``[WARN]`` line and remember it for the operation record."""
        self.warnings.append(message)
        _tagged("[WARN]", "yellow", message)

    def error(self, message: str) -> None:
        """Print a red ``[ERROR]`` line."""
        _tagged("[ERROR]", "red", message)

    def line(self, text: str = "") -> None:
        """Print *text* verbatim."""
        console.print(Text(text), soft_wrap=True)

    def step(self, name: str, *, status: str = "success", detail: str = "") -> None:
        """Record a step on the operation."""
        self._op.add_step(name, status=status, detail=detail)


def _tagged(tag: str, style: str, message: str) -> None:
    console.print(Text.assemble((tag, style), " ", message), soft_wrap=True)


def prompt_answer(question: str) -> str:
    """Ask *question* on the terminal; end-of-input counts as an empty answer."""
    try:
        answer = typer.prompt(question, default="", show_default=False)
    except typer.Abort:
        return ""
    return str(answer)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    compose: ComposeProvider
    database: MySQLClient
    nginx: NginxProvider
    certbot: CertbotProvider
    backups: BackupsRegistry
    ask: Callable[[str], str] = prompt_answer

    def deployment(self, reporter: workflows.Reporter) -> workflows.Deployment:
        """Return the handler context reporting through *reporter*."""
        return workflows.Deployment(
            config=self.config,
            runtime=self.compose,
            database=self.database,
            proxy=self.nginx,
            certificates=self.certbot,
            backups=self.backups,
            reporter=reporter,
            ask=self.ask,
        )

    def target(self) -> dict[str, object]:
        """Return the operation-log target describing the managed site."""
        return {
            "kind": "site",
            "slug": self.config.site.slug,
            "domain": self.config.site.domain,
        }


def build_runtime(config: AppConfig) -> RuntimeContext:
    """Construct providers for *config*."""
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    compose = ComposeProvider(
        compose_file=config.compose_file,
        project_name=config.project_name,
        docker_bin=config.docker.docker_bin,
    )
    database = MySQLClient(
        runtime=compose,
        container=config.site.db_container,
        database=config.database.name,
        user=config.database.user,
        password=config.database.password,
        dump_bin=config.database.dump_bin,
        client_bin=config.database.client_bin,
    )
    nginx_provider = NginxProvider(
        templates=templates,
        sites_available=config.nginx.sites_available,
        sites_enabled=config.nginx.sites_enabled,
        nginx_bin=config.nginx.nginx_bin,
        systemctl_bin=config.nginx.systemctl_bin,
        service=config.nginx.service,
        privilege_prefix=config.privilege_prefix,
    )
    certbot = CertbotProvider(
        certbot_bin=config.certbot.certbot_bin,
        privilege_prefix=config.privilege_prefix,
    )
    backups_registry = BackupsRegistry(config.backups.root, config.backups.index)
    return RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        compose=compose,
        database=database,
        nginx=nginx_provider,
        certbot=certbot,
        backups=backups_registry,
    )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        _tagged("[ERROR]", "red", f"Configuration error: {exc}")
        raise typer.Exit(code=ExitCode.USAGE) from exc
    runtime = build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _command_error(op: OperationScope, exc: DeployError) -> NoReturn:
    """Report *exc* on the console and in the operation record, then exit."""
    _tagged("[ERROR]", "red", exc.message)
    for hint in exc.remediation:
        console.print(Text(hint), soft_wrap=True)
    op.error(exc.message, errors=[f"{exc.tag}: {exc.message}"], rc=exc.exit_code)
    raise typer.Exit(code=exc.exit_code)


def _run(
    ctx: typer.Context,
    command: str,
    handler: Callable[[workflows.Deployment], T],
    *,
    args: Mapping[str, object] | None = None,
    describe: Callable[[T], tuple[str, dict[str, object]]] | None = None,
) -> T:
    """Run *handler* inside an operation scope and translate its failures."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(command, args=args, target=runtime.target()) as op:
        reporter = ConsoleReporter(op)
        try:
            result = handler(runtime.deployment(reporter))
        except DeployError as exc:
            _command_error(op, exc)
        message, context = describe(result) if describe else (f"{command} completed.", {})
        if reporter.warnings:
            op.warning(message, warnings=reporter.warnings, context=context)
        else:
            op.success(message, context=context)
        return result


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the wpdeployctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    runtime = _ensure_runtime(ctx, config_file)
    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"wpdeployctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    if ctx.invoked_subcommand is None:
        _deploy(ctx)


def _deploy(ctx: typer.Context) -> None:
    _run(
        ctx,
        "deploy",
        workflows.deploy,
        describe=lambda report: (
            "Deployment complete.",
            {"volume_path": report.volume_path},
        ),
    )


def deploy_command(ctx: typer.Context) -> None:
    """Pull images, start containers and verify they are running."""
    _deploy(ctx)


app.command("start")(deploy_command)
app.command("deploy")(deploy_command)


@app.command("stop")
def stop_command(ctx: typer.Context) -> None:
    """Stop and remove the site's containers."""
    _run(ctx, "stop", workflows.stop)


@app.command("restart")
def restart_command(ctx: typer.Context) -> None:
    """Restart the site's containers."""
    _run(ctx, "restart", workflows.restart)


@app.command("update")
def update_command(ctx: typer.Context) -> None:
    """Pull newer images and recreate containers."""
    _run(ctx, "update", workflows.update)


@app.command("logs")
def logs_command(
    ctx: typer.Context,
    services: list[str] | None = LOG_SERVICES_ARGUMENT,
    tail: int | None = LOG_TAIL_OPTION,
) -> None:
    """Follow the containers' logs until interrupted."""
    selected = tuple(services or ())
    try:
        _run(
            ctx,
            "logs",
            lambda deployment: workflows.logs(deployment, selected, follow=True, tail=tail),
            args={"services": list(selected), "tail": tail},
        )
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None


@app.command("backup")
def backup_command(ctx: typer.Context) -> None:
    """Back up the database and the WordPress files volume."""
    _run(
        ctx,
        "backup",
        workflows.backup,
        describe=lambda report: (
            f"Backup {report.entry['id']} recorded ({report.entry['status']}).",
            {"entry": report.entry},
        ),
    )


@app.command("restore")
def restore_command(
    ctx: typer.Context,
    backup_file: Path | None = RESTORE_FILE_ARGUMENT,
) -> None:
    """Replace the database with a compressed dump (asks for confirmation)."""
    _run(
        ctx,
        "restore",
        lambda deployment: workflows.restore(deployment, backup_file),
        args={"file": str(backup_file) if backup_file else None},
        describe=lambda restored: (
            "Database restored." if restored else "Restore cancelled by operator.",
            {"restored": restored},
        ),
    )


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show container, volume, network and certificate state."""
    _run(
        ctx,
        "status",
        workflows.status,
        describe=lambda report: (
            "Reported site status.",
            {
                "volumes": list(report.volumes),
                "networks": list(report.networks),
                "certificate": report.certificate.to_dict() if report.certificate else None,
            },
        ),
    )


@app.command("nginx")
def nginx_command(ctx: typer.Context) -> None:
    """Draft the nginx vhost and print the installation steps."""
    _run(
        ctx,
        "nginx",
        workflows.nginx_setup,
        describe=lambda report: (
            ("Rendered nginx draft.", {"draft": str(report.draft_path), "changed": report.changed})
            if report is not None
            else ("Nginx setup cancelled by operator.", {})
        ),
    )


def ssl_command(
    ctx: typer.Context,
    email: str | None = SSL_EMAIL_OPTION,
) -> None:
    """Issue a Let's Encrypt certificate through certbot's nginx installer."""
    _run(
        ctx,
        "ssl",
        lambda deployment: workflows.ssl_setup(deployment, email),
        args={"email": email},
        describe=lambda url: ("Certificate installed.", {"url": url}),
    )


app.command("ssl")(ssl_command)
app.command("certbot")(ssl_command)


@app.command("ssl-renew")
def ssl_renew_command(ctx: typer.Context) -> None:
    """Renew certificates and reload nginx."""
    _run(ctx, "ssl-renew", workflows.ssl_renew)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
