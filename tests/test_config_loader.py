"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from wpdeployctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Defaults apply when no config file is present."""
    monkeypatch.chdir(tmp_path)

    config = load_config(env={})

    project = tmp_path.resolve()
    assert isinstance(config, AppConfig)
    assert config.config_file == Path("wpdeployctl.yml")
    assert config.project_dir == project
    assert config.compose_file == project / "docker-compose.yml"
    assert config.project_name == "wp-site"
    assert config.site.domain == "shop.docpilot.in"
    assert config.site.app_container == "docpilot_shop_app"
    assert config.site.db_container == "docpilot_shop_db"
    assert config.data_volume == "wp-site_docpilot_shop_data"
    assert config.docker.settle_seconds == 10.0
    assert config.backups.root == project / "backups"
    assert config.backups.index == project / "backups" / "backups.json"
    assert config.backups.helper_image == "alpine"
    assert config.nginx.sites_available == Path("/etc/nginx/sites-available")
    assert config.certbot.live_dir == Path("/etc/letsencrypt/live")
    assert config.privilege_prefix == ("sudo",)


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "wpdeployctl.yml"
    cfg.write_text(
        "project_dir: {project}\n"
        "project_name: blog\n"
        "site:\n"
        "  slug: myblog\n"
        "  domain: blog.example.org\n"
        "  app_port: 8181\n"
        "backups:\n"
        "  root: dumps\n"
        "docker:\n"
        "  settle_seconds: 2.5\n".format(project=str(tmp_path)),
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.project_name == "blog"
    assert config.site.slug == "myblog"
    assert config.site.app_port == 8181
    assert config.data_volume == "blog_myblog_data"
    assert config.backups.root == tmp_path.resolve() / "dumps"
    assert config.docker.settle_seconds == 2.5


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "wpdeployctl.yml"
    cfg.write_text("site:\n  domain: file.example.org\n", encoding="utf-8")
    env = {
        "WPDEPLOYCTL_CONFIG_FILE": str(cfg),
        "WPDEPLOYCTL_SITE__DOMAIN": "env.example.org",
        "WPDEPLOYCTL_DOCKER__SETTLE_SECONDS": "0",
        "WPDEPLOYCTL_DATABASE__PASSWORD": "s3cret",
        "WPDEPLOYCTL_PRIVILEGE_COMMAND": "doas",
        "WPDEPLOYCTL_LOGS_DIR": str(tmp_path / "logs"),
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.site.domain == "env.example.org"
    assert config.docker.settle_seconds == 0.0
    assert config.database.password == "s3cret"
    assert config.privilege_prefix == ("doas",)
    assert config.logs_dir == tmp_path / "logs"


def test_overrides_beat_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        tmp_path / "absent.yml",
        env={"WPDEPLOYCTL_PROJECT_NAME": "from-env"},
        overrides={"project_name": "from-code"},
    )

    assert config.project_name == "from-code"


def test_empty_privilege_command_disables_prefix(tmp_path: Path) -> None:
    """An empty privilege command runs host tools directly."""
    config = load_config(tmp_path / "absent.yml", env={}, overrides={"privilege_command": ""})

    assert config.privilege_prefix == ()


def test_database_password_masked_in_dict(tmp_path: Path) -> None:
    """The serialised config never exposes the database password."""
    config = load_config(tmp_path / "absent.yml", env={})

    assert config.to_dict()["database"]["password"] == "********"


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("unknown: 1\n", "Unknown configuration keys: unknown"),
        ("site:\n  colour: red\n", "Unknown site configuration keys: colour"),
        ("site:\n  domain: localhost\n", "fully qualified hostname"),
        ("site:\n  slug: ''\n", "site.slug must be a non-empty string"),
        ("site:\n  app_port: 70000\n", "between 1 and 65535"),
        ("docker:\n  settle_seconds: -1\n", "must not be negative"),
        ("project_name: ' '\n", "project_name must be a non-empty string"),
        ("- not\n- a mapping\n", "mapping at the top level"),
    ],
)
def test_invalid_config_rejected(tmp_path: Path, content: str, message: str) -> None:
    """Invalid configuration raises ``ConfigError`` with a descriptive message."""
    cfg = tmp_path / "wpdeployctl.yml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file=cfg, env={})

    assert message in str(excinfo.value)


@pytest.mark.parametrize("raw", ["0755", "yes", "null", "1e3", "[a, b]"])
def test_env_string_settings_are_not_coerced(tmp_path: Path, raw: str) -> None:
    """Passwords and names from the environment keep their exact text."""
    env = {
        "WPDEPLOYCTL_DATABASE__PASSWORD": raw,
        "WPDEPLOYCTL_DATABASE__NAME": raw,
        "WPDEPLOYCTL_DATABASE__USER": raw,
    }

    config = load_config(tmp_path / "absent.yml", env=env)

    assert config.database.password == raw
    assert config.database.name == raw
    assert config.database.user == raw


def test_env_numeric_settings_still_coerced(tmp_path: Path) -> None:
    """Numeric settings from the environment are parsed as numbers."""
    env = {"WPDEPLOYCTL_SITE__APP_PORT": "8181", "WPDEPLOYCTL_DOCKER__SETTLE_SECONDS": "2.5"}

    config = load_config(tmp_path / "absent.yml", env=env)

    assert config.site.app_port == 8181
    assert config.docker.settle_seconds == 2.5


@pytest.mark.parametrize(
    ("content", "label"),
    [
        ("database:\n  password: 0755\n", "database.password"),
        ("database:\n  user: yes\n", "database.user"),
        ("site:\n  app_service: 42\n", "site.app_service"),
    ],
)
def test_non_string_yaml_values_rejected(tmp_path: Path, content: str, label: str) -> None:
    """Unquoted YAML scalars for string settings are rejected instead of rewritten."""
    cfg = tmp_path / "wpdeployctl.yml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file=cfg, env={})

    assert f"Expected {label} to be a string" in str(excinfo.value)
