"""Resolve who is being provisioned and run commands as that user.

The *acting* identity is whoever runs postinstallctl (normally root after
``sudo``); the *target* identity is the human owner of the desktop session
whose dotfiles and tool checkouts are written. Resolution order:

1. An explicit override (argument, else ``POSTINSTALLCTL_TARGET_USER``).
2. The user who invoked elevation (``SUDO_USER``, ``DOAS_USER``, ``PKEXEC_UID``).
3. The current OS identity.
"""
from __future__ import annotations

import grp
import os
import pwd
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .command import CommandError, CommandRunner
from .config import TARGET_USER_ENV_VAR
from .errors import IdentityError

SESSION_PROCESS_NAMES: tuple[str, ...] = ("xfce4-panel", "xfce4-session", "dbus-daemon")
SESSION_ENV_KEYS: tuple[str, ...] = (
    "DISPLAY",
    "DBUS_SESSION_BUS_ADDRESS",
    "XDG_RUNTIME_DIR",
    "XAUTHORITY",
)
DEFAULT_SYSTEM_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


@dataclass(slots=True, frozen=True)
class Identity:
    """Acting and target identities resolved once at start-up."""

    acting_user: str
    acting_uid: int
    target_user: str | None = None
    target_uid: int | None = None
    target_gid: int | None = None
    target_group: str | None = None
    target_home: Path | None = None
    source: str = "current"

    @property
    def is_elevated(self) -> bool:
        """Return ``True`` when running as root."""
        return self.acting_uid == 0

    @property
    def has_target(self) -> bool:
        """Return ``True`` when a target user was resolved."""
        return self.target_user is not None and self.target_home is not None

    @property
    def switches_user(self) -> bool:
        """Return ``True`` when target commands must change identity."""
        return self.is_elevated and self.has_target and self.target_user != self.acting_user

    def require_target(self) -> tuple[str, Path]:
        """Return the target user and home or raise :class:`IdentityError`."""
        if self.target_user is None or self.target_home is None:
            raise IdentityError("No target user could be determined for this run.")
        return self.target_user, self.target_home


def _current_user() -> str:
    return pwd.getpwuid(os.geteuid()).pw_name


def _elevation_user(env: Mapping[str, str]) -> str | None:
    for key in ("SUDO_USER", "DOAS_USER"):
        value = (env.get(key) or "").strip()
        if value and value != "root":
            return value
    pkexec_uid = (env.get("PKEXEC_UID") or "").strip()
    if pkexec_uid.isdigit() and int(pkexec_uid) != 0:
        try:
            return pwd.getpwuid(int(pkexec_uid)).pw_name
        except KeyError:
            return None
    return None


def resolve_identity(
    env: Mapping[str, str] | None = None,
    *,
    override: str | None = None,
    require_target: bool = True,
    current_user: Callable[[], str] | None = None,
    acting_uid: int | None = None,
) -> Identity:
    """Resolve the acting and target identities for this run."""
    resolved_env = os.environ if env is None else env
    current = (current_user or _current_user)()
    uid = os.geteuid() if acting_uid is None else acting_uid

    candidates: list[tuple[str, str | None]] = [
        ("override", (override or resolved_env.get(TARGET_USER_ENV_VAR) or "").strip() or None),
        ("elevation", _elevation_user(resolved_env)),
        ("current", current.strip() or None),
    ]
    source, name = next(
        ((label, value) for label, value in candidates if value),
        ("none", None),
    )

    if name is None:
        if require_target:
            raise IdentityError("Unable to determine the target user.")
        return Identity(acting_user=current, acting_uid=uid, source=source)

    try:
        pw_entry = pwd.getpwnam(name)
    except KeyError as exc:
        if require_target:
            raise IdentityError(f"Target user '{name}' does not exist.") from exc
        return Identity(acting_user=current, acting_uid=uid, source=source)

    try:
        group_name: str | None = grp.getgrgid(pw_entry.pw_gid).gr_name
    except KeyError:
        group_name = None

    return Identity(
        acting_user=current,
        acting_uid=uid,
        target_user=name,
        target_uid=pw_entry.pw_uid,
        target_gid=pw_entry.pw_gid,
        target_group=group_name,
        target_home=Path(pw_entry.pw_dir),
        source=source,
    )


def discover_session_env(
    identity: Identity,
    *,
    proc_root: Path = Path("/proc"),
) -> dict[str, str]:
    """Return desktop-session variables borrowed from the target's running session."""
    session: dict[str, str] = {}
    if identity.target_uid is None:
        return session

    process_env = _find_session_environ(identity.target_uid, proc_root)
    for key in SESSION_ENV_KEYS:
        value = process_env.get(key)
        if value:
            session[key] = value

    session.setdefault("DISPLAY", ":0")
    if "XAUTHORITY" not in session and identity.target_home is not None:
        xauthority = identity.target_home / ".Xauthority"
        if xauthority.is_file():
            session["XAUTHORITY"] = str(xauthority)
    return session


def _find_session_environ(uid: int, proc_root: Path) -> dict[str, str]:
    owned: dict[str, list[int]] = {name: [] for name in SESSION_PROCESS_NAMES}
    try:
        entries = list(proc_root.iterdir())
    except OSError:
        return {}
    for entry in entries:
        if not entry.name.isdigit():
            continue
        try:
            if entry.stat().st_uid != uid:
                continue
            comm = (entry / "comm").read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if comm in owned:
            owned[comm].append(int(entry.name))

    for name in SESSION_PROCESS_NAMES:
        for pid in sorted(owned[name], reverse=True):
            try:
                blob = (proc_root / str(pid) / "environ").read_bytes()
            except OSError:
                continue
            return _parse_environ(blob)
    return {}


def _parse_environ(blob: bytes) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for chunk in blob.split(b"\0"):
        if b"=" not in chunk:
            continue
        key, _, value = chunk.partition(b"=")
        parsed[key.decode("utf-8", "replace")] = value.decode("utf-8", "replace")
    return parsed


def target_command(
    identity: Identity,
    argv: Sequence[str | os.PathLike[str]],
    env: Mapping[str, str] | None = None,
) -> tuple[list[str], dict[str, str]]:
    """Return ``(argv, env)`` that execute *argv* as the target user.

    When the acting identity differs from the target, the command is wrapped
    as ``sudo -u USER -H -- env K=V ... argv`` so the environment travels as
    discrete arguments. Otherwise the command runs unchanged and the
    environment is merged by the caller.
    """
    user, home = identity.require_target()
    merged: dict[str, str] = {
        "HOME": str(home),
        "USER": user,
        "LOGNAME": user,
        "PATH": f"{home}/.local/bin:{DEFAULT_SYSTEM_PATH}",
    }
    merged.update(env or {})
    args = [str(arg) for arg in argv]
    if not identity.switches_user:
        return args, merged
    assignments = [f"{key}={value}" for key, value in merged.items()]
    return ["sudo", "-u", user, "-H", "--", "env", *assignments, *args], {}


@dataclass(slots=True)
class TargetExecutor:
    """Run argument vectors under the target user's identity and environment."""

    identity: Identity
    runner: CommandRunner
    session_env: Mapping[str, str] = field(default_factory=dict)

    def run(
        self,
        argv: Sequence[str | os.PathLike[str]],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *argv* as the target user."""
        combined = dict(self.session_env)
        combined.update(env or {})
        args, run_env = target_command(self.identity, argv, combined)
        return self.runner.run(
            args,
            env=run_env or None,
            cwd=cwd,
            check=check,
            timeout=timeout,
        )

    def succeeds(self, argv: Sequence[str | os.PathLike[str]]) -> bool:
        """Return ``True`` when *argv* exits zero as the target user."""
        try:
            result = self.run(argv, check=False)
        except CommandError:
            return False
        return result.returncode == 0


__all__ = [
    "Identity",
    "TargetExecutor",
    "discover_session_env",
    "resolve_identity",
    "target_command",
]
