"""Built-in provisioning catalog."""
from __future__ import annotations

from collections.abc import Callable, Iterable

from ..errors import ConfigurationError
from ..tasks.models import OPTIONAL_GROUPS, StepGroup
from ..tasks.registry import TaskRegistry
from . import core, internal, mobile, web, wifi

GROUP_REGISTRARS: dict[StepGroup, Callable[[TaskRegistry], None]] = {
    "internal": internal.register,
    "web": web.register,
    "mobile": mobile.register,
    "wifi": wifi.register,
}


def build_registry(groups: Iterable[str] = ()) -> TaskRegistry:
    """Return a registry with the core steps plus each selected optional group.

    Groups are appended in a fixed order (internal, web, mobile, wifi)
    regardless of the order they were requested in.
    """
    selected = set(groups)
    unknown = selected.difference(OPTIONAL_GROUPS)
    if unknown:
        raise ConfigurationError(f"Unknown step group(s): {', '.join(sorted(unknown))}.")
    registry = TaskRegistry()
    core.register(registry)
    for group in OPTIONAL_GROUPS:
        if group in selected:
            GROUP_REGISTRARS[group](registry)
    return registry


__all__ = ["GROUP_REGISTRARS", "build_registry"]
