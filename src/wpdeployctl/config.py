"""Configuration loader for wpdeployctl.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``./wpdeployctl.yml`` (or an override path).
3. Environment variables prefixed with ``WPDEPLOYCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export WPDEPLOYCTL_SITE__DOMAIN=shop.example.com
    export WPDEPLOYCTL_DOCKER__SETTLE_SECONDS=20

Values for numeric settings are coerced via PyYAML's ``safe_load`` so that
numbers are parsed naturally; settings whose default is a string (names,
passwords, paths) are taken verbatim. Relative paths (compose file, backup
directory) are resolved against ``project_dir``. The resulting configuration is
exposed as immutable ``dataclasses`` so that a single instance can be shared
by every handler.
"""
from __future__ import annotations

import os
import shlex
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in packaging
    raise RuntimeError(
        "PyYAML is required to load wpdeployctl configuration. Install with "
        "`pip install wpdeployctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "WPDEPLOYCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class SiteConfig:
    """Identity of the deployed WordPress site."""

    slug: str = "docpilot_shop"
    domain: str = "shop.docpilot.in"
    app_service: str = "wordpress"
    db_service: str = "db"
    app_port: int = 8080

    @property
    def app_container(self) -> str:
        """Name fragment identifying the WordPress container."""
        return f"{self.slug}_app"

    @property
    def db_container(self) -> str:
        """Name fragment identifying the database container."""
        return f"{self.slug}_db"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "slug": self.slug,
            "domain": self.domain,
            "app_service": self.app_service,
            "db_service": self.db_service,
            "app_port": self.app_port,
        }


@dataclass(frozen=True)
class DockerConfig:
    """Container runtime settings."""

    docker_bin: str = "docker"
    settle_seconds: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"docker_bin": self.docker_bin, "settle_seconds": self.settle_seconds}


@dataclass(frozen=True)
class DatabaseConfig:
    """Credentials and client binaries used inside the database container."""

    name: str = "wpdb"
    user: str = "wpuser"
    password: str = "wppass"
    dump_bin: str = "mysqldump"
    client_bin: str = "mysql"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with the password masked."""
        return {
            "name": self.name,
            "user": self.user,
            "password": "********" if self.password else "",
            "dump_bin": self.dump_bin,
            "client_bin": self.client_bin,
        }


@dataclass(frozen=True)
class BackupConfig:
    """Backup storage settings."""

    root: Path
    index: Path
    helper_image: str = "alpine"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "index": str(self.index),
            "helper_image": self.helper_image,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Host nginx layout and service control."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    systemctl_bin: str = "systemctl"
    service: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "nginx_bin": self.nginx_bin,
            "systemctl_bin": self.systemctl_bin,
            "service": self.service,
        }


@dataclass(frozen=True)
class CertbotConfig:
    """Certificate client settings."""

    certbot_bin: str = "certbot"
    live_dir: Path = Path("/etc/letsencrypt/live")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"certbot_bin": self.certbot_bin, "live_dir": str(self.live_dir)}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for wpdeployctl."""

    config_file: Path
    project_dir: Path
    compose_file: Path
    project_name: str
    logs_dir: Path
    templates_dir: Path
    privilege_command: str
    site: SiteConfig
    docker: DockerConfig
    database: DatabaseConfig
    backups: BackupConfig
    nginx: NginxConfig
    certbot: CertbotConfig

    @property
    def data_volume(self) -> str:
        """Return the compose-scoped name of the WordPress data volume."""
        return f"{self.project_name}_{self.site.slug}_data"

    @property
    def privilege_prefix(self) -> tuple[str, ...]:
        """Return the command prefix used for root-only operations."""
        return tuple(shlex.split(self.privilege_command))

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "project_dir": str(self.project_dir),
            "compose_file": str(self.compose_file),
            "project_name": self.project_name,
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "privilege_command": self.privilege_command,
            "site": self.site.to_dict(),
            "docker": self.docker.to_dict(),
            "database": self.database.to_dict(),
            "backups": self.backups.to_dict(),
            "nginx": self.nginx.to_dict(),
            "certbot": self.certbot.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "wpdeployctl.yml",
    "project_dir": ".",
    "compose_file": "docker-compose.yml",
    "project_name": "wp-site",
    "logs_dir": "/var/log/wpdeployctl",
    "templates_dir": "/etc/wpdeployctl/templates",
    "privilege_command": "sudo",
    "site": {
        "slug": "docpilot_shop",
        "domain": "shop.docpilot.in",
        "app_service": "wordpress",
        "db_service": "db",
        "app_port": 8080,
    },
    "docker": {
        "docker_bin": "docker",
        "settle_seconds": 10,
    },
    "database": {
        "name": "wpdb",
        "user": "wpuser",
        "password": "wppass",
        "dump_bin": "mysqldump",
        "client_bin": "mysql",
    },
    "backups": {
        "root": "backups",
        "index": None,
        "helper_image": "alpine",
    },
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "nginx_bin": "nginx",
        "systemctl_bin": "systemctl",
        "service": "nginx",
    },
    "certbot": {
        "certbot_bin": "certbot",
        "live_dir": "/etc/letsencrypt/live",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    project_name = raw.get("project_name")
    if not isinstance(project_name, str) or not project_name.strip():
        raise ConfigError("project_name must be a non-empty string.")

    site_map = _as_dict(raw.get("site"), "site")
    for key in ("slug", "domain"):
        value = site_map.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"site.{key} must be a non-empty string.")
    domain = str(site_map["domain"])
    if "." not in domain or "/" in domain or " " in domain:
        raise ConfigError(f"site.domain must be a fully qualified hostname. Got {domain!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    project_dir = _to_path(raw.get("project_dir")).resolve()

    site_mapping = _as_dict(raw.get("site"), "site")
    app_port = _expect_int(site_mapping.get("app_port"), "site.app_port", default=8080)
    if not 0 < app_port < 65536:
        raise ConfigError(f"site.app_port must be between 1 and 65535. Got {app_port}.")
    site = SiteConfig(
        slug=_optional_str(site_mapping.get("slug"), "site.slug", default="docpilot_shop").strip(),
        domain=_optional_str(
            site_mapping.get("domain"), "site.domain", default="shop.docpilot.in",
        ).strip(),
        app_service=_optional_str(
            site_mapping.get("app_service"), "site.app_service", default="wordpress",
        ),
        db_service=_optional_str(site_mapping.get("db_service"), "site.db_service", default="db"),
        app_port=app_port,
    )

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    docker = DockerConfig(
        docker_bin=_optional_str(
            docker_mapping.get("docker_bin"), "docker.docker_bin", default="docker",
        ),
        settle_seconds=_expect_non_negative_float(
            docker_mapping.get("settle_seconds"),
            "docker.settle_seconds",
            default=10.0,
        ),
    )

    database_mapping = _as_dict(raw.get("database"), "database")
    database = DatabaseConfig(
        name=_optional_str(database_mapping.get("name"), "database.name", default="wpdb"),
        user=_optional_str(database_mapping.get("user"), "database.user", default="wpuser"),
        password=_optional_str(database_mapping.get("password"), "database.password", default=""),
        dump_bin=_optional_str(
            database_mapping.get("dump_bin"), "database.dump_bin", default="mysqldump",
        ),
        client_bin=_optional_str(
            database_mapping.get("client_bin"), "database.client_bin", default="mysql",
        ),
    )

    backups_mapping = _as_dict(raw.get("backups"), "backups")
    backups_root = _within(project_dir, _to_path(backups_mapping.get("root", "backups")))
    backups_index_value = backups_mapping.get("index")
    backups_index = (
        _within(project_dir, _to_path(backups_index_value))
        if backups_index_value
        else backups_root / "backups.json"
    )
    backups = BackupConfig(
        root=backups_root,
        index=backups_index,
        helper_image=_optional_str(
            backups_mapping.get("helper_image"), "backups.helper_image", default="alpine",
        ),
    )

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(
            nginx_mapping.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled", "/etc/nginx/sites-enabled")),
        nginx_bin=_optional_str(
            nginx_mapping.get("nginx_bin"), "nginx.nginx_bin", default="nginx",
        ),
        systemctl_bin=_optional_str(
            nginx_mapping.get("systemctl_bin"), "nginx.systemctl_bin", default="systemctl",
        ),
        service=_optional_str(nginx_mapping.get("service"), "nginx.service", default="nginx"),
    )

    certbot_mapping = _as_dict(raw.get("certbot"), "certbot")
    certbot = CertbotConfig(
        certbot_bin=_optional_str(
            certbot_mapping.get("certbot_bin"), "certbot.certbot_bin", default="certbot",
        ),
        live_dir=_to_path(certbot_mapping.get("live_dir", "/etc/letsencrypt/live")),
    )

    privilege_value = raw.get("privilege_command")
    privilege_command = (
        ""
        if privilege_value in (None, False)
        else _optional_str(privilege_value, "privilege_command", default="")
    )

    return AppConfig(
        config_file=config_file,
        project_dir=project_dir,
        compose_file=_within(project_dir, _to_path(raw.get("compose_file"))),
        project_name=str(raw.get("project_name", "wp-site")).strip(),
        logs_dir=_within(project_dir, _to_path(raw.get("logs_dir"))),
        templates_dir=_within(project_dir, _to_path(raw.get("templates_dir"))),
        privilege_command=privilege_command,
        site=site,
        docker=docker,
        database=database,
        backups=backups,
        nginx=nginx,
        certbot=certbot,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if _is_string_setting(path_segments):
            coerced: object = value
        else:
            coerced = _coerce_value(value)
        _assign_nested(overrides, path_segments, coerced)
    return overrides


def _is_string_setting(path: list[str]) -> bool:
    node: object = DEFAULTS
    for segment in path:
        if not isinstance(node, Mapping):
            return False
        node = cast(Mapping[str, object], node).get(segment, 0)
    return node is None or isinstance(node, str)


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _within(base: Path, path: Path) -> Path:
    return path if path.is_absolute() else base / path


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _optional_str(value: object | None, label: str, *, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    raise ConfigError(
        f"Expected {label} to be a string. Got {type(value).__name__} {value!r}; "
        "quote the value in YAML."
    )


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "CertbotConfig",
    "ConfigError",
    "DatabaseConfig",
    "DockerConfig",
    "NginxConfig",
    "SiteConfig",
    "load_config",
]
