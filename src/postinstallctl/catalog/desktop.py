"""XFCE desktop steps: fonts, power management, panel, screen lock, wallpaper."""
from __future__ import annotations

import re
import shutil
from pathlib import Path

from ..errors import StepFailure
from ..files import write_if_changed
from ..providers.xfconf import XfconfValue
from ..tasks.models import ExecutionContext
from .common import download_for_target, ensure_target_dir

POWER_MANAGER_XML = "xfce4-power-manager.xml"
XFCONF_XML_DIR = (".config", "xfce4", "xfconf", "xfce-perchannel-xml")
PANEL_CHANNEL = "xfce4-panel"
DESKTOP_CHANNEL = "xfce4-desktop"
PANEL_PLUGIN_RE = re.compile(r"^/plugins/plugin-(\d+)$")
PANEL_PLUGIN_TYPES = ("windowbuttons", "tasklist")
WALLPAPER_FALLBACK_PROPERTY = "/backdrop/screen0/monitorVirtual1/workspace0/last-image"

COMPOSITING_SETTING: tuple[str, str, XfconfValue] = ("xfwm4", "/general/use_compositing", False)

AUTO_LOCK_SETTINGS: tuple[tuple[str, str, XfconfValue], ...] = (
    ("xfce4-screensaver", "/lock-enabled", False),
    ("xfce4-screensaver", "/idle-activation-enabled", False),
    ("xfce4-power-manager", "/xfce4-power-manager/blank-on-ac", 0),
    ("xfce4-power-manager", "/xfce4-power-manager/blank-on-battery", 0),
    ("xfce4-power-manager", "/xfce4-power-manager/dpms-enabled", False),
    ("xfce4-power-manager", "/xfce4-power-manager/lock-screen-suspend-hibernate", False),
)


def _require_xfconf(ctx: ExecutionContext) -> None:
    if not ctx.xfconf.available():
        raise StepFailure(
            "xfconf-query is not reachable in the desktop session; log in to XFCE and re-run."
        )


def _apply(ctx: ExecutionContext, settings: tuple[tuple[str, str, XfconfValue], ...]) -> str:
    _require_xfconf(ctx)
    changed = [prop for channel, prop, value in settings if ctx.xfconf.set(channel, prop, value)]
    return f"set {', '.join(changed)}" if changed else "unchanged"


def _all_match(ctx: ExecutionContext, settings: tuple[tuple[str, str, XfconfValue], ...]) -> bool:
    return all(ctx.xfconf.matches(channel, prop, value) for channel, prop, value in settings)


# ubuntu-mono-font ---------------------------------------------------------

def _font_dir(ctx: ExecutionContext) -> Path:
    return ctx.home / ".local" / "share" / "fonts"


def fonts_installed(ctx: ExecutionContext) -> bool:
    """Return ``True`` when every configured font file is present."""
    directory = _font_dir(ctx)
    return all((directory / name).is_file() for name in ctx.config.fonts.files)


def install_ubuntu_mono(ctx: ExecutionContext) -> str:
    """Download the Ubuntu Mono family into the target's font directory."""
    directory = ensure_target_dir(ctx, _font_dir(ctx))
    base = ctx.config.fonts.base_url.rstrip("/")
    fetched: list[str] = []
    for name in ctx.config.fonts.files:
        destination = directory / name
        if destination.is_file():
            continue
        download_for_target(ctx, f"{base}/{name}", destination, mode=0o644)
        fetched.append(name)
    if fetched and shutil.which("fc-cache"):
        ctx.run_as_target(["fc-cache", "-f", str(directory)], check=False)
    return f"installed {len(fetched)} font file(s)" if fetched else "fonts present"


# xfce-power-manager -------------------------------------------------------

def _power_manager_xml(ctx: ExecutionContext) -> Path:
    return ctx.home.joinpath(*XFCONF_XML_DIR, POWER_MANAGER_XML)


def power_manager_xml_present(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the power-manager channel file exists."""
    return _power_manager_xml(ctx).is_file()


def install_power_manager_xml(ctx: ExecutionContext) -> str:
    """Install the shared power-manager channel file."""
    destination = _power_manager_xml(ctx)
    ensure_target_dir(ctx, destination.parent)
    data = ctx.http.fetch_bytes(ctx.config.dotfiles.url_for(POWER_MANAGER_XML))
    if not write_if_changed(destination, data, mode=0o644):
        return "power manager config identical"
    ctx.chown_to_target(destination)
    return f"installed {destination}"


# disable-compositing ------------------------------------------------------

def compositing_disabled(ctx: ExecutionContext) -> bool:
    """Return ``True`` when xfwm4 compositing is off."""
    return _all_match(ctx, (COMPOSITING_SETTING,))


def disable_compositing(ctx: ExecutionContext) -> str:
    """Turn xfwm4 compositing off."""
    return _apply(ctx, (COMPOSITING_SETTING,))


# spread-xfce-panel --------------------------------------------------------

def _panel_settings(ctx: ExecutionContext) -> tuple[tuple[str, str, XfconfValue], ...]:
    plugins = ctx.xfconf.list_values(PANEL_CHANNEL, "/plugins")
    settings: list[tuple[str, str, XfconfValue]] = []
    for prop, value in plugins.items():
        match = PANEL_PLUGIN_RE.match(prop)
        if not match or value not in PANEL_PLUGIN_TYPES:
            continue
        base = f"/plugins/plugin-{match.group(1)}"
        settings.append((PANEL_CHANNEL, f"{base}/grouping", 0))
        settings.append((PANEL_CHANNEL, f"{base}/show-labels", True))
    return tuple(settings)


def panel_spread(ctx: ExecutionContext) -> bool:
    """Return ``True`` when every window-list plugin shows ungrouped labels."""
    settings = _panel_settings(ctx)
    return bool(settings) and _all_match(ctx, settings)


def spread_panel(ctx: ExecutionContext) -> str:
    """Ungroup windows and show labels on window-button/tasklist plugins."""
    _require_xfconf(ctx)
    settings = _panel_settings(ctx)
    if not settings:
        return "no windowbuttons/tasklist plugin found"
    return _apply(ctx, settings)


# disable-auto-lock --------------------------------------------------------

def auto_lock_disabled(ctx: ExecutionContext) -> bool:
    """Return ``True`` when screen locking and blanking are off."""
    return _all_match(ctx, AUTO_LOCK_SETTINGS)


def disable_auto_lock(ctx: ExecutionContext) -> str:
    """Disable the screensaver lock, idle activation, blanking and DPMS."""
    return _apply(ctx, AUTO_LOCK_SETTINGS)


# wallpaper ----------------------------------------------------------------

def _wallpaper_properties(ctx: ExecutionContext) -> list[str]:
    keys = [key for key in ctx.xfconf.list(DESKTOP_CHANNEL, "/backdrop") if "last-image" in key]
    if WALLPAPER_FALLBACK_PROPERTY not in keys:
        keys.append(WALLPAPER_FALLBACK_PROPERTY)
    return keys


def wallpaper_set(ctx: ExecutionContext) -> bool:
    """Return ``True`` when every backdrop shows the configured image."""
    image = str(ctx.config.desktop.wallpaper)
    return all(
        ctx.xfconf.matches(DESKTOP_CHANNEL, key, image) for key in _wallpaper_properties(ctx)
    )


def set_wallpaper(ctx: ExecutionContext) -> str:
    """Install the wallpaper package and point every backdrop at the image."""
    desktop = ctx.config.desktop
    if not desktop.wallpaper.is_file() and desktop.wallpaper_package:
        ctx.apt.install([desktop.wallpaper_package])
    if not desktop.wallpaper.is_file():
        raise StepFailure(f"Wallpaper image {desktop.wallpaper} is missing.")
    _require_xfconf(ctx)
    settings = tuple(
        (DESKTOP_CHANNEL, key, str(desktop.wallpaper)) for key in _wallpaper_properties(ctx)
    )
    return _apply(ctx, settings)


__all__ = [
    "AUTO_LOCK_SETTINGS",
    "auto_lock_disabled",
    "compositing_disabled",
    "disable_auto_lock",
    "disable_compositing",
    "fonts_installed",
    "install_power_manager_xml",
    "install_ubuntu_mono",
    "panel_spread",
    "power_manager_xml_present",
    "set_wallpaper",
    "spread_panel",
    "wallpaper_set",
]
