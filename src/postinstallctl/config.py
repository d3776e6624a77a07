"""Configuration loader for postinstallctl.

Values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/postinstallctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``POSTINSTALLCTL_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export POSTINSTALLCTL_TIMEOUTS__COMMAND=3600
    export POSTINSTALLCTL_TARGET_USER=kali

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``. Package lists and download locations live here so the step
catalog can be pointed at other mirrors without code changes.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load postinstallctl configuration. Install with "
        "`pip install postinstallctl` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import ConfigurationError

ENV_PREFIX = "POSTINSTALLCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
TARGET_USER_ENV_VAR = f"{ENV_PREFIX}TARGET_USER"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(ConfigurationError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class TimeoutsConfig:
    """Upper bounds (seconds) for blocking external operations."""

    command: float = 1800.0
    download: float = 120.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"command": self.command, "download": self.download}


@dataclass(frozen=True)
class AptConfig:
    """Package manager binaries and package sets."""

    apt_get_bin: str = "apt-get"
    dpkg_bin: str = "dpkg"
    dpkg_query_bin: str = "dpkg-query"
    packages: tuple[str, ...] = ()
    vm_tools: tuple[str, ...] = ()
    python_tools: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "apt_get_bin": self.apt_get_bin,
            "dpkg_bin": self.dpkg_bin,
            "dpkg_query_bin": self.dpkg_query_bin,
            "packages": list(self.packages),
            "vm_tools": list(self.vm_tools),
            "python_tools": list(self.python_tools),
        }


@dataclass(frozen=True)
class DotfilesConfig:
    """Where shared dotfiles (tmux, sublime, xfce) are fetched from."""

    base_url: str = "https://raw.githubusercontent.com/Anon-Exploiter/dotfiles/refs/heads/main"

    def url_for(self, name: str) -> str:
        """Return the download URL for dotfile *name*."""
        return f"{self.base_url.rstrip('/')}/{name}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base_url": self.base_url}


@dataclass(frozen=True)
class FontsConfig:
    """Font family downloaded into the target user's font directory."""

    base_url: str = "https://raw.githubusercontent.com/google/fonts/main/ufl/ubuntumono"
    files: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base_url": self.base_url, "files": list(self.files)}


@dataclass(frozen=True)
class DesktopConfig:
    """XFCE desktop settings."""

    xfconf_bin: str = "xfconf-query"
    wallpaper: Path = Path("/usr/share/backgrounds/kali/kali-metal-dark-16x9.png")
    wallpaper_package: str = "kali-wallpapers-2024"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "xfconf_bin": self.xfconf_bin,
            "wallpaper": str(self.wallpaper),
            "wallpaper_package": self.wallpaper_package,
        }


@dataclass(frozen=True)
class SudoersConfig:
    """Location of sudoers drop-ins and the validator binary."""

    dir: Path = Path("/etc/sudoers.d")
    visudo_bin: str = "visudo"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"dir": str(self.dir), "visudo_bin": self.visudo_bin}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"
    logind_conf: Path = Path("/etc/systemd/logind.conf")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin, "logind_conf": str(self.logind_conf)}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for postinstallctl."""

    config_file: Path
    target_user: str | None
    logs_dir: Path
    tools_dir: str
    timeouts: TimeoutsConfig
    apt: AptConfig
    dotfiles: DotfilesConfig
    fonts: FontsConfig
    desktop: DesktopConfig
    sudoers: SudoersConfig
    systemd: SystemdConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "target_user": self.target_user,
            "logs_dir": str(self.logs_dir),
            "tools_dir": self.tools_dir,
            "timeouts": self.timeouts.to_dict(),
            "apt": self.apt.to_dict(),
            "dotfiles": self.dotfiles.to_dict(),
            "fonts": self.fonts.to_dict(),
            "desktop": self.desktop.to_dict(),
            "sudoers": self.sudoers.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULT_PACKAGES: tuple[str, ...] = (
    "build-essential", "git", "curl", "wget", "vim", "tmux", "htop", "jq",
    "unzip", "zip", "apt-transport-https", "ca-certificates", "gnupg",
    "python3", "python3-pip", "python3-venv", "python3-dev", "python-is-python3",
    "python3-virtualenv", "nmap", "net-tools", "tcpdump", "aircrack-ng",
    "hashcat", "john", "hydra", "sqlmap", "impacket-scripts", "nikto",
    "metasploit-framework", "burpsuite", "docker.io", "docker-compose",
    "openvpn", "wireshark", "remmina", "remmina-common", "remmina-dev", "gdebi",
)

DEFAULT_FONT_FILES: tuple[str, ...] = (
    "UbuntuMono-Regular.ttf",
    "UbuntuMono-Italic.ttf",
    "UbuntuMono-Bold.ttf",
    "UbuntuMono-BoldItalic.ttf",
)

DEFAULTS: dict[str, object] = {
    "config_file": "/etc/postinstallctl/config.yml",
    "target_user": None,
    "logs_dir": "/var/log/postinstallctl",
    "tools_dir": "tools",
    "timeouts": {
        "command": 1800.0,
        "download": 120.0,
    },
    "apt": {
        "apt_get_bin": "apt-get",
        "dpkg_bin": "dpkg",
        "dpkg_query_bin": "dpkg-query",
        "packages": list(DEFAULT_PACKAGES),
        "vm_tools": ["open-vm-tools", "open-vm-tools-desktop"],
        "python_tools": ["pipx", "python3-pip"],
    },
    "dotfiles": {
        "base_url": "https://raw.githubusercontent.com/Anon-Exploiter/dotfiles/refs/heads/main",
    },
    "fonts": {
        "base_url": "https://raw.githubusercontent.com/google/fonts/main/ufl/ubuntumono",
        "files": list(DEFAULT_FONT_FILES),
    },
    "desktop": {
        "xfconf_bin": "xfconf-query",
        "wallpaper": "/usr/share/backgrounds/kali/kali-metal-dark-16x9.png",
        "wallpaper_package": "kali-wallpapers-2024",
    },
    "sudoers": {
        "dir": "/etc/sudoers.d",
        "visudo_bin": "visudo",
    },
    "systemd": {
        "systemctl_bin": "systemctl",
        "logind_conf": "/etc/systemd/logind.conf",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
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

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    tools_dir = raw.get("tools_dir")
    if tools_dir is not None and Path(str(tools_dir)).is_absolute():
        raise ConfigError("tools_dir must be relative to the target user's home directory.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    target_value = raw.get("target_user")
    target_user: str | None = None
    if target_value not in (None, ""):
        if isinstance(target_value, bool) or not isinstance(target_value, (str, int)):
            raise ConfigError("target_user must be a string or null.")
        target_user = str(target_value).strip() or None

    timeouts_mapping = _as_dict(raw.get("timeouts"), "timeouts")
    timeouts = TimeoutsConfig(
        command=_expect_positive_float(
            timeouts_mapping.get("command"), "timeouts.command", default=1800.0
        ),
        download=_expect_positive_float(
            timeouts_mapping.get("download"), "timeouts.download", default=120.0
        ),
    )

    apt_mapping = _as_dict(raw.get("apt"), "apt")
    apt = AptConfig(
        apt_get_bin=str(apt_mapping.get("apt_get_bin", "apt-get")),
        dpkg_bin=str(apt_mapping.get("dpkg_bin", "dpkg")),
        dpkg_query_bin=str(apt_mapping.get("dpkg_query_bin", "dpkg-query")),
        packages=_expect_str_tuple(apt_mapping.get("packages"), "apt.packages"),
        vm_tools=_expect_str_tuple(apt_mapping.get("vm_tools"), "apt.vm_tools"),
        python_tools=_expect_str_tuple(apt_mapping.get("python_tools"), "apt.python_tools"),
    )

    dotfiles_mapping = _as_dict(raw.get("dotfiles"), "dotfiles")
    dotfiles = DotfilesConfig(
        base_url=_expect_str(dotfiles_mapping.get("base_url"), "dotfiles.base_url"),
    )

    fonts_mapping = _as_dict(raw.get("fonts"), "fonts")
    fonts = FontsConfig(
        base_url=_expect_str(fonts_mapping.get("base_url"), "fonts.base_url"),
        files=_expect_str_tuple(fonts_mapping.get("files"), "fonts.files"),
    )

    desktop_mapping = _as_dict(raw.get("desktop"), "desktop")
    desktop = DesktopConfig(
        xfconf_bin=str(desktop_mapping.get("xfconf_bin", "xfconf-query")),
        wallpaper=_to_path(desktop_mapping.get("wallpaper")),
        wallpaper_package=str(desktop_mapping.get("wallpaper_package", "kali-wallpapers-2024")),
    )

    sudoers_mapping = _as_dict(raw.get("sudoers"), "sudoers")
    sudoers = SudoersConfig(
        dir=_to_path(sudoers_mapping.get("dir", "/etc/sudoers.d")),
        visudo_bin=str(sudoers_mapping.get("visudo_bin", "visudo")),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        logind_conf=_to_path(systemd_mapping.get("logind_conf", "/etc/systemd/logind.conf")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        target_user=target_user,
        logs_dir=_to_path(raw.get("logs_dir")),
        tools_dir=str(raw.get("tools_dir", "tools")),
        timeouts=timeouts,
        apt=apt,
        dotfiles=dotfiles,
        fonts=fonts,
        desktop=desktop,
        sudoers=sudoers,
        systemd=systemd,
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
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


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
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _expect_str_tuple(value: object | None, label: str) -> tuple[str, ...]:
    if value is None:
        return ()
    items: list[str] = []
    for index, item in enumerate(_as_sequence(value, label)):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label}[{index}] must be a non-empty string.")
        items.append(item.strip())
    return tuple(items)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
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
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
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
    "AptConfig",
    "ConfigError",
    "DesktopConfig",
    "DotfilesConfig",
    "FontsConfig",
    "SudoersConfig",
    "SystemdConfig",
    "CONFIG_ENV_VAR",
    "ENV_PREFIX",
    "TARGET_USER_ENV_VAR",
    "TimeoutsConfig",
    "load_config",
]
