"""System-level steps: apt, packages, sudoers, logind and docker."""
from __future__ import annotations

import grp
import logging
import re
from pathlib import Path

from ..errors import StepFailure
from ..files import (
    ReplaceStatus,
    secure_existing,
    secure_replace,
    set_ini_option,
    visudo_validator,
)
from ..tasks.models import ExecutionContext
from .common import install_missing

log = logging.getLogger("postinstallctl.catalog.system")

APT_FORCE_CONF = Path("/etc/apt/apt.conf.d/90force-conf")
NEEDRESTART_CONF = Path("/etc/needrestart/conf.d/zzz-auto-restart.conf")
LID_SWITCH_KEYS = ("HandleLidSwitch", "HandleLidSwitchExternalPower")
LOGIND_SECTION = "Login"
DOCKER_GROUP = "docker"


def _snippet_targets() -> list[tuple[str, Path]]:
    return [
        ("apt/90force-conf.j2", APT_FORCE_CONF),
        ("needrestart/zzz-auto-restart.conf.j2", NEEDRESTART_CONF),
    ]


# verify-target-home -------------------------------------------------------

def verify_target_home(ctx: ExecutionContext) -> str:
    """Fail unless the target's home directory exists."""
    home = ctx.home
    if not home.is_dir():
        raise StepFailure(f"Home directory {home} for user '{ctx.user}' does not exist.")
    return f"{ctx.user} -> {home}"


# apt-noninteractive -------------------------------------------------------

def apt_noninteractive_done(ctx: ExecutionContext) -> bool:
    """Return ``True`` when both apt snippets hold the expected content."""
    for template, path in _snippet_targets():
        if not path.is_file():
            return False
        if path.read_text(encoding="utf-8") != ctx.templates.render_to_string(template, {}):
            return False
    return True


def apt_noninteractive(ctx: ExecutionContext) -> str:
    """Keep existing dpkg configs and let needrestart restart services silently."""
    written = [
        str(path)
        for template, path in _snippet_targets()
        if ctx.templates.render_to_path(template, path, {}, mode=0o644)
    ]
    return f"wrote {', '.join(written)}" if written else "unchanged"


# apt-update-upgrade -------------------------------------------------------

def apt_update_upgrade(ctx: ExecutionContext) -> str:
    """Refresh indexes, upgrade, then tidy the package cache."""
    ctx.apt.update()
    ctx.apt.upgrade()
    for cleanup in (ctx.apt.autoremove, ctx.apt.autoclean):
        try:
            cleanup()
        except StepFailure as exc:
            log.warning("apt cleanup failed: %s", exc)
    return "packages upgraded"


# install-packages / vm-tools / python-tools -------------------------------

def packages_present(ctx: ExecutionContext) -> bool:
    """Return ``True`` when every configured base package is installed."""
    return not ctx.apt.missing(ctx.config.apt.packages)


def install_packages(ctx: ExecutionContext) -> str:
    """Install the configured base package set."""
    ctx.apt.update()
    return install_missing(ctx, ctx.config.apt.packages)


def vm_tools_present(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the VM guest tools are installed."""
    return not ctx.apt.missing(ctx.config.apt.vm_tools)


def install_vm_tools(ctx: ExecutionContext) -> str:
    """Install the VM guest tools."""
    return install_missing(ctx, ctx.config.apt.vm_tools)


def python_tools_present(ctx: ExecutionContext) -> bool:
    """Return ``True`` when pipx and pip are installed."""
    return not ctx.apt.missing(ctx.config.apt.python_tools)


def install_python_tools(ctx: ExecutionContext) -> str:
    """Install pipx/pip and put pipx's bin directory on the target's PATH."""
    message = install_missing(ctx, ctx.config.apt.python_tools)
    ctx.pipx.ensurepath()
    return message


# sudoers-ownership / passwordless-sudo ------------------------------------

def _sudoers_files(ctx: ExecutionContext) -> list[Path]:
    directory = ctx.config.sudoers.dir
    if not directory.is_dir():
        return []
    return sorted(path for path in directory.iterdir() if path.is_file())


def _misowned(ctx: ExecutionContext) -> list[Path]:
    return [path for path in _sudoers_files(ctx) if path.stat().st_uid != 0]


def sudoers_owned_by_root(ctx: ExecutionContext) -> bool:
    """Return ``True`` when every sudoers drop-in is owned by root."""
    return not _misowned(ctx)


def fix_sudoers_ownership(ctx: ExecutionContext) -> str:
    """Re-own drop-ins as root:root 0440, restoring any that then fail visudo."""
    validator = visudo_validator(ctx.runner, ctx.config.sudoers.visudo_bin)
    fixed: list[str] = []
    failed: list[str] = []
    for path in _misowned(ctx):
        log.warning("Fixing owner for %s", path)
        result = secure_existing(path, validator)
        (fixed if result.status is ReplaceStatus.REPLACED else failed).append(path.name)
    if failed:
        raise StepFailure(f"visudo rejected: {', '.join(failed)}")
    return f"secured {', '.join(fixed)}" if fixed else "nothing to fix"


def nopasswd_path(ctx: ExecutionContext) -> Path:
    """Return the sudoers drop-in path for the target user."""
    # sudo skips drop-ins whose names contain a dot.
    safe = re.sub(r"[^A-Za-z0-9_-]", "_", ctx.user)
    return ctx.config.sudoers.dir / f"{safe}_nopasswd"


def _nopasswd_content(ctx: ExecutionContext) -> str:
    return ctx.templates.render_to_string("sudoers/nopasswd.j2", {"user": ctx.user})


def passwordless_sudo_configured(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the drop-in exists with the expected content and mode."""
    path = nopasswd_path(ctx)
    if not path.is_file():
        return False
    stat = path.stat()
    return (
        stat.st_uid == 0
        and (stat.st_mode & 0o777) == 0o440
        and path.read_text(encoding="utf-8") == _nopasswd_content(ctx)
    )


def configure_passwordless_sudo(ctx: ExecutionContext) -> str:
    """Write the NOPASSWD drop-in through the validated replace primitive."""
    path = nopasswd_path(ctx)
    path.parent.mkdir(parents=True, exist_ok=True)
    result = secure_replace(
        path,
        _nopasswd_content(ctx),
        visudo_validator(ctx.runner, ctx.config.sudoers.visudo_bin),
    )
    if result.status is ReplaceStatus.RESTORED:
        raise StepFailure(result.message)
    return f"passwordless sudo written for {ctx.user}"


# lid-switch-ignore --------------------------------------------------------

def lid_switch_ignored(ctx: ExecutionContext) -> bool:
    """Return ``True`` when logind ignores the lid switch."""
    path = ctx.config.systemd.logind_conf
    if not path.is_file():
        return False
    lines = {line.strip() for line in path.read_text(encoding="utf-8").splitlines()}
    return all(f"{key}=ignore" in lines for key in LID_SWITCH_KEYS)


def ignore_lid_switch(ctx: ExecutionContext) -> str:
    """Set the lid-switch handlers to ``ignore`` and restart logind."""
    path = ctx.config.systemd.logind_conf
    changed = False
    for key in LID_SWITCH_KEYS:
        changed = set_ini_option(path, LOGIND_SECTION, key, "ignore") or changed
    if not changed:
        return "unchanged"
    ctx.systemd.restart("systemd-logind")
    return f"updated {path}; systemd-logind restarted"


# docker -------------------------------------------------------------------

def _in_docker_group(user: str) -> bool:
    try:
        return user in grp.getgrnam(DOCKER_GROUP).gr_mem
    except KeyError:
        return False


def docker_configured(ctx: ExecutionContext) -> bool:
    """Return ``True`` when docker is enabled and the target is in its group."""
    return ctx.systemd.is_enabled("docker") and _in_docker_group(ctx.user)


def configure_docker(ctx: ExecutionContext) -> str:
    """Enable and start docker and add the target to the docker group."""
    if not ctx.docker.available():
        raise StepFailure("docker is not installed.")
    ctx.systemd.enable("docker", now=True)
    if not _in_docker_group(ctx.user):
        ctx.runner.run(["usermod", "-aG", DOCKER_GROUP, ctx.user])
        return f"docker enabled; {ctx.user} added to {DOCKER_GROUP} (re-login required)"
    return "docker enabled"


__all__ = [
    "apt_noninteractive",
    "apt_noninteractive_done",
    "apt_update_upgrade",
    "configure_docker",
    "configure_passwordless_sudo",
    "docker_configured",
    "fix_sudoers_ownership",
    "ignore_lid_switch",
    "install_packages",
    "install_python_tools",
    "install_vm_tools",
    "lid_switch_ignored",
    "packages_present",
    "passwordless_sudo_configured",
    "python_tools_present",
    "sudoers_owned_by_root",
    "verify_target_home",
    "vm_tools_present",
]
