"""Wireless tooling (``--wifi``)."""
from __future__ import annotations

from ..tasks.registry import TaskRegistry
from .common import apt_step, repair_packages


def register(registry: TaskRegistry) -> None:
    """Append the wifi group to *registry*."""
    for name, description in (
        ("kali-tools-wireless", "Kali wireless metapackage"),
        ("eaphammer", "EAP evil-twin toolkit"),
    ):
        action, check = apt_step(name)
        registry.register(
            name,
            action,
            check,
            recovery=repair_packages,
            group="wifi",
            description=description,
            requires_target=False,
        )


__all__ = ["register"]
