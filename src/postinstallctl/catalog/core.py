"""Core steps that run on every invocation, in execution order."""
from __future__ import annotations

from ..tasks.models import Criticality
from ..tasks.registry import TaskRegistry
from . import desktop, shell, sublime, system
from .common import repair_packages


def register(registry: TaskRegistry) -> None:
    """Append the core steps to *registry*."""
    add = registry.register
    add(
        "verify-target-home",
        system.verify_target_home,
        criticality=Criticality.FATAL,
        description="Target user's home directory exists",
    )
    add(
        "apt-noninteractive",
        system.apt_noninteractive,
        system.apt_noninteractive_done,
        description="dpkg keeps configs; needrestart restarts silently",
        requires_target=False,
    )
    add(
        "apt-update-upgrade",
        system.apt_update_upgrade,
        recovery=repair_packages,
        description="apt update, upgrade, autoremove, autoclean",
        requires_target=False,
    )
    add(
        "install-packages",
        system.install_packages,
        system.packages_present,
        recovery=repair_packages,
        description="Base package set",
        requires_target=False,
    )
    add(
        "vm-tools",
        system.install_vm_tools,
        system.vm_tools_present,
        recovery=repair_packages,
        description="VM guest tools",
        requires_target=False,
    )
    add(
        "python-tools",
        system.install_python_tools,
        system.python_tools_present,
        recovery=repair_packages,
        description="pipx and pip",
    )
    add(
        "sudoers-ownership",
        system.fix_sudoers_ownership,
        system.sudoers_owned_by_root,
        description="sudoers drop-ins owned by root",
        requires_target=False,
    )
    add(
        "passwordless-sudo",
        system.configure_passwordless_sudo,
        system.passwordless_sudo_configured,
        description="NOPASSWD sudoers drop-in for the target",
    )
    add("ssh-key", shell.generate_ssh_key, shell.ssh_key_exists, description="ed25519 key")
    add(
        "ubuntu-mono-font",
        desktop.install_ubuntu_mono,
        desktop.fonts_installed,
        description="Ubuntu Mono font family",
    )
    add(
        "xfce-power-manager",
        desktop.install_power_manager_xml,
        desktop.power_manager_xml_present,
        description="Power-manager channel settings",
    )
    add(
        "disable-compositing",
        desktop.disable_compositing,
        desktop.compositing_disabled,
        description="xfwm4 compositing off",
    )
    add(
        "spread-xfce-panel",
        desktop.spread_panel,
        desktop.panel_spread,
        description="Ungrouped window buttons with labels",
    )
    add(
        "lid-switch-ignore",
        system.ignore_lid_switch,
        system.lid_switch_ignored,
        description="logind ignores the lid switch",
        requires_target=False,
    )
    add(
        "disable-auto-lock",
        desktop.disable_auto_lock,
        desktop.auto_lock_disabled,
        description="No screen lock, blanking or DPMS",
    )
    add(
        "zsh-prompt",
        shell.configure_zsh_prompt,
        shell.zsh_prompt_configured,
        description="History sizes, prompt and ll alias",
    )
    add(
        "wallpaper",
        desktop.set_wallpaper,
        desktop.wallpaper_set,
        recovery=repair_packages,
        description="Desktop backdrop image",
    )
    add(
        "sublime-text",
        sublime.install_sublime,
        sublime.sublime_installed,
        recovery=repair_packages,
        description="Sublime Text from the vendor repository",
    )
    add(
        "sublime-package-control",
        sublime.install_package_control,
        sublime.package_control_installed,
        description="Package Control",
    )
    add(
        "sublime-preferences",
        sublime.install_preferences,
        sublime.preferences_installed,
        description="Shared Sublime preferences",
    )
    add(
        "sublime-materialize",
        sublime.install_materialize,
        sublime.materialize_installed,
        description="Materialize theme",
    )
    add(
        "docker",
        system.configure_docker,
        system.docker_configured,
        description="docker enabled; target in docker group",
    )
    add("fzf", shell.install_fzf, shell.fzf_installed, description="fzf with shell bindings")
    add("tmux", shell.configure_tmux, shell.tmux_configured, description="tmux config and plugins")
    add(
        "bat",
        shell.install_bat,
        shell.bat_installed,
        recovery=repair_packages,
        description="bat with cat alias",
    )


__all__ = ["register"]
