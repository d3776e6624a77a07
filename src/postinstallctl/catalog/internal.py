"""Internal-engagement tooling (``--internal``)."""
from __future__ import annotations

from ..tasks.models import ExecutionContext
from ..tasks.registry import TaskRegistry
from .common import clone_tool, pipx_step

NETEXEC_SPEC = "git+https://github.com/Pennyw0rth/NetExec"
SLIVER_CHEATSHEET_REPOSITORY = "https://github.com/Anon-Exploiter/sliver-cheatsheet.git"


def sliver_cheatsheet_present(ctx: ExecutionContext) -> bool:
    """Return ``True`` when the cheatsheet checkout exists."""
    return ctx.git.is_checkout(ctx.tools_path("sliver-cheatsheet"))


def fetch_sliver_cheatsheet(ctx: ExecutionContext) -> str:
    """Clone or update the sliver cheatsheet under the tools directory."""
    destination = clone_tool(ctx, SLIVER_CHEATSHEET_REPOSITORY, "sliver-cheatsheet")
    return f"cheatsheet at {destination}"


def register(registry: TaskRegistry) -> None:
    """Append the internal group to *registry*."""
    netexec, netexec_present = pipx_step("netexec", NETEXEC_SPEC)
    registry.register(
        "netexec",
        netexec,
        netexec_present,
        group="internal",
        description="NetExec via pipx",
    )
    bloodhound, bloodhound_present = pipx_step("bloodhound-ce")
    registry.register(
        "bloodhound-ce",
        bloodhound,
        bloodhound_present,
        group="internal",
        description="BloodHound CE python ingestor via pipx",
    )
    registry.register(
        "sliver-cheatsheet",
        fetch_sliver_cheatsheet,
        sliver_cheatsheet_present,
        group="internal",
        description="Sliver C2 cheatsheet checkout",
    )


__all__ = ["fetch_sliver_cheatsheet", "register", "sliver_cheatsheet_present"]
