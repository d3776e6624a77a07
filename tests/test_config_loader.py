"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from postinstallctl.config import AppConfig, ConfigError, load_config
from postinstallctl.errors import ConfigurationError


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.target_user is None
    assert config.logs_dir == Path("/var/log/postinstallctl")
    assert config.tools_dir == "tools"
    assert config.timeouts.command == 1800.0
    assert config.timeouts.download == 120.0
    assert config.sudoers.dir == Path("/etc/sudoers.d")
    assert config.systemd.logind_conf == Path("/etc/systemd/logind.conf")
    assert "docker.io" in config.apt.packages
    assert config.fonts.files[0] == "UbuntuMono-Regular.ttf"
    assert config.dotfiles.url_for(".tmux.conf").endswith("/main/.tmux.conf")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "target_user: kali\n"
        "tools_dir: opt/tools\n"
        "timeouts:\n"
        "  download: 30\n"
        "apt:\n"
        "  packages: [git, ' jq ']\n"
        "desktop:\n"
        "  wallpaper: {wallpaper}\n".format(wallpaper=tmp_path / "bg.png")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.target_user == "kali"
    assert config.tools_dir == "opt/tools"
    assert config.timeouts.download == 30.0
    assert config.timeouts.command == 1800.0
    assert config.apt.packages == ("git", "jq")
    assert config.apt.vm_tools == ("open-vm-tools", "open-vm-tools-desktop")
    assert config.desktop.wallpaper == tmp_path / "bg.png"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("target_user: kali\ntimeouts:\n  command: 60\n")
    env = {
        "POSTINSTALLCTL_CONFIG_FILE": str(cfg),
        "POSTINSTALLCTL_TARGET_USER": "operator",
        "POSTINSTALLCTL_TIMEOUTS__COMMAND": "900",
        "POSTINSTALLCTL_LOGS_DIR": str(tmp_path / "logs"),
        "UNRELATED": "ignored",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.target_user == "operator"
    assert config.timeouts.command == 900.0
    assert config.logs_dir == tmp_path / "logs"


def test_explicit_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "none.yml",
        env={"POSTINSTALLCTL_TARGET_USER": "operator"},
        overrides={"target_user": "kali", "sudoers": {"dir": str(tmp_path)}},
    )

    assert config.target_user == "kali"
    assert config.sudoers.dir == tmp_path
    assert config.sudoers.visudo_bin == "visudo"


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    """Typos in the config file are reported instead of ignored."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("target_usr: kali\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys: target_usr"):
        load_config(config_file=cfg, env={})


def test_unknown_section_keys_are_rejected(tmp_path: Path) -> None:
    """Unknown keys inside a section are reported with the section name."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("timeouts:\n  network: 5\n")

    with pytest.raises(ConfigError, match="Unknown timeouts configuration keys: network"):
        load_config(config_file=cfg, env={})


def test_absolute_tools_dir_is_rejected(tmp_path: Path) -> None:
    """Tool checkouts always live below the target's home directory."""
    with pytest.raises(ConfigError, match="tools_dir must be relative"):
        load_config(config_file=tmp_path / "x.yml", env={}, overrides={"tools_dir": "/opt"})


@pytest.mark.parametrize("value", ["0", "-5", "soon", "true"])
def test_invalid_timeouts_are_rejected(tmp_path: Path, value: str) -> None:
    """Timeouts must be positive numbers."""
    with pytest.raises(ConfigError):
        load_config(
            config_file=tmp_path / "x.yml",
            env={"POSTINSTALLCTL_TIMEOUTS__DOWNLOAD": value},
        )


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    """The top level of the YAML document must be a mapping."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config(config_file=cfg, env={})


def test_package_entries_must_be_strings(tmp_path: Path) -> None:
    """Empty package names are configuration errors."""
    with pytest.raises(ConfigError, match=r"apt.packages\[1\]"):
        load_config(
            config_file=tmp_path / "x.yml",
            env={},
            overrides={"apt": {"packages": ["git", ""]}},
        )


def test_config_error_is_a_configuration_error() -> None:
    """Loader errors share the configuration error hierarchy."""
    assert issubclass(ConfigError, ConfigurationError)


def test_to_dict_round_trips_paths_as_strings(tmp_path: Path) -> None:
    """The serialisable view uses plain strings and lists."""
    config = load_config(config_file=tmp_path / "x.yml", env={})

    data = config.to_dict()

    assert data["config_file"] == str(tmp_path / "x.yml")
    assert data["sudoers"] == {"dir": "/etc/sudoers.d", "visudo_bin": "visudo"}
    assert isinstance(data["apt"]["packages"], list)  # type: ignore[index]
