"""XFCE settings access through ``xfconf-query`` in the target's session."""
from __future__ import annotations

from dataclasses import dataclass

from ..command import CommandError
from ..identity import TargetExecutor

XfconfValue = bool | int | str


def _encode(value: XfconfValue) -> tuple[str, str]:
    if isinstance(value, bool):
        return "bool", "true" if value else "false"
    if isinstance(value, int):
        return "int", str(value)
    return "string", str(value)


@dataclass(slots=True)
class XfconfStore:
    """Read and write xfconf properties, creating missing ones."""

    target: TargetExecutor
    xfconf_bin: str = "xfconf-query"

    def available(self) -> bool:
        """Return ``True`` when the xfconf daemon answers for the target session."""
        return self.target.succeeds([self.xfconf_bin, "-l"])

    def list(self, channel: str, prefix: str | None = None) -> list[str]:
        """Return every property path in *channel* (optionally below *prefix*)."""
        return list(self.list_values(channel, prefix))

    def list_values(self, channel: str, prefix: str | None = None) -> dict[str, str]:
        """Return ``{property: value}`` for *channel* (optionally below *prefix*)."""
        args = [self.xfconf_bin, "-c", channel]
        if prefix:
            args.extend(["-p", prefix])
        args.extend(["-l", "-v"])
        try:
            result = self.target.run(args, check=False)
        except CommandError:
            return {}
        if result.returncode != 0:
            return {}
        values: dict[str, str] = {}
        for line in (result.stdout or "").splitlines():
            parts = line.strip().split(None, 1)
            if parts:
                values[parts[0]] = parts[1].strip() if len(parts) > 1 else ""
        return values

    def get(self, channel: str, prop: str) -> str | None:
        """Return the property value as printed by xfconf, or ``None`` when unset."""
        try:
            result = self.target.run([self.xfconf_bin, "-c", channel, "-p", prop], check=False)
        except CommandError:
            return None
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip()

    def matches(self, channel: str, prop: str, value: XfconfValue) -> bool:
        """Return ``True`` when *prop* already holds *value*."""
        return self.get(channel, prop) == _encode(value)[1]

    def set(self, channel: str, prop: str, value: XfconfValue) -> bool:
        """Set *prop* to *value*; return ``True`` when something changed."""
        type_name, text = _encode(value)
        if self.get(channel, prop) == text:
            return False
        base = [self.xfconf_bin, "-c", channel, "-p", prop]
        result = self.target.run([*base, "-s", text], check=False)
        if result.returncode != 0:
            self.target.run([*base, "-n", "-t", type_name, "-s", text])
        return True


__all__ = ["XfconfStore", "XfconfValue"]
