"""Sublime Text: apt repository, Package Control, preferences and theme."""
from __future__ import annotations

import io
import zipfile
from pathlib import Path

from ..errors import StepFailure
from ..files import write_if_changed
from ..tasks.models import ExecutionContext
from .common import download_for_target, ensure_target_dir

SUBLIME_PACKAGE = "sublime-text"
SUBLIME_KEY_URL = "https://download.sublimetext.com/sublimehq-pub.gpg"
SUBLIME_REPOSITORY = "https://download.sublimetext.com/"
SUBLIME_KEYRING = Path("/etc/apt/keyrings/sublimehq-pub.asc")
SUBLIME_SOURCES = Path("/etc/apt/sources.list.d/sublime-text.sources")

PACKAGE_CONTROL_URL = "https://packagecontrol.io/Package%20Control.sublime-package"
PACKAGE_CONTROL_FILE = "Package Control.sublime-package"
PREFERENCES_FILE = "Preferences.sublime-settings"
MATERIALIZE_URL = "https://github.com/zyphlar/Materialize/archive/refs/heads/master.zip"
MATERIALIZE_FILE = "Materialize.sublime-package"


def data_dir(ctx: ExecutionContext) -> Path:
    """Return the Sublime Text data directory, honouring a legacy ST3 layout."""
    config = ctx.home / ".config"
    legacy = config / "sublime-text-3"
    if legacy.is_dir() and not (config / "sublime-text").exists():
        return legacy
    return config / "sublime-text"


def _installed_packages(ctx: ExecutionContext) -> Path:
    return data_dir(ctx) / "Installed Packages"


def _user_packages(ctx: ExecutionContext) -> Path:
    return data_dir(ctx) / "Packages" / "User"


# sublime-text -------------------------------------------------------------

def sublime_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the sublime-text package is installed."""
    return ctx.apt.is_installed(SUBLIME_PACKAGE)


def install_sublime(ctx: ExecutionContext) -> str:
    """Add the vendor apt repository and install Sublime Text."""
    SUBLIME_KEYRING.parent.mkdir(parents=True, exist_ok=True)
    ctx.http.download(SUBLIME_KEY_URL, SUBLIME_KEYRING, mode=0o644)
    ctx.templates.render_to_path(
        "apt/sublime-text.sources.j2",
        SUBLIME_SOURCES,
        {"repository_url": SUBLIME_REPOSITORY, "keyring": str(SUBLIME_KEYRING)},
        mode=0o644,
    )
    ctx.apt.update()
    ctx.apt.install([SUBLIME_PACKAGE])
    return "sublime-text installed"


# sublime-package-control --------------------------------------------------

def package_control_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when Package Control is in ``Installed Packages``."""
    return (_installed_packages(ctx) / PACKAGE_CONTROL_FILE).is_file()


def install_package_control(ctx: ExecutionContext) -> str:
    """Download Package Control into the Sublime data directory."""
    destination = _installed_packages(ctx) / PACKAGE_CONTROL_FILE
    download_for_target(ctx, PACKAGE_CONTROL_URL, destination)
    return f"installed {destination}"


# sublime-preferences ------------------------------------------------------

def preferences_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when user preferences are present."""
    return (_user_packages(ctx) / PREFERENCES_FILE).is_file()


def install_preferences(ctx: ExecutionContext) -> str:
    """Install the shared ``Preferences.sublime-settings``."""
    destination = ensure_target_dir(ctx, _user_packages(ctx)) / PREFERENCES_FILE
    data = ctx.http.fetch_bytes(ctx.config.dotfiles.url_for(PREFERENCES_FILE))
    if not write_if_changed(destination, data, mode=0o644):
        return "preferences identical"
    ctx.chown_to_target(destination)
    return f"installed {destination}"


# sublime-materialize ------------------------------------------------------

def repack_archive(data: bytes) -> bytes:
    """Return *data* (a GitHub branch zip) rebuilt without its top-level directory."""
    output = io.BytesIO()
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as source, zipfile.ZipFile(
            output, "w", zipfile.ZIP_DEFLATED
        ) as target:
            for info in source.infolist():
                _, _, relative = info.filename.partition("/")
                if not relative or info.is_dir():
                    continue
                target.writestr(relative, source.read(info))
    except zipfile.BadZipFile as exc:
        raise StepFailure(f"Downloaded archive is not a zip file: {exc}") from exc
    return output.getvalue()


def materialize_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the Materialize theme package exists."""
    return (_installed_packages(ctx) / MATERIALIZE_FILE).is_file()


def install_materialize(ctx: ExecutionContext) -> str:
    """Download the Materialize theme and install it as a ``.sublime-package``."""
    package = repack_archive(ctx.http.fetch_bytes(MATERIALIZE_URL))
    destination = ensure_target_dir(ctx, _installed_packages(ctx)) / MATERIALIZE_FILE
    write_if_changed(destination, package, mode=0o644)
    ctx.chown_to_target(destination)
    return f"installed {destination}"


__all__ = [
    "data_dir",
    "install_materialize",
    "install_package_control",
    "install_preferences",
    "install_sublime",
    "materialize_installed",
    "package_control_installed",
    "preferences_installed",
    "repack_archive",
    "sublime_installed",
]
