"""File primitives: validated replace-with-backup plus small dotfile edits.

:func:`secure_replace` is the only way the catalog touches files whose
corruption would lock the operator out (sudoers drop-ins). It always keeps a
timestamped ``<file>.bak.<YYYYmmddHHMMSS>`` copy, writes atomically and rolls
back byte-for-byte when validation fails. The remaining helpers are plain,
idempotent text edits for configuration and dotfiles; each returns ``True``
only when it changed something.
"""
from __future__ import annotations

import grp
import logging
import os
import pwd
import re
import shutil
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from .command import CommandRunner
from .errors import StepFailure, ValidationFailure

logger = logging.getLogger("postinstallctl.files")

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

Validator = Callable[[Path], bool]


class ReplaceStatus(str, Enum):
    """Final state of a :func:`secure_replace` call."""

    REPLACED = "replaced"
    RESTORED = "restored"


@dataclass(slots=True, frozen=True)
class ReplaceResult:
    """Outcome of :func:`secure_replace` or :func:`secure_existing`."""

    path: Path
    status: ReplaceStatus
    backup: Path | None
    message: str

    @property
    def ok(self) -> bool:
        """Return ``True`` when the new content was kept."""
        return self.status is ReplaceStatus.REPLACED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "path": str(self.path),
            "status": self.status.value,
            "backup": str(self.backup) if self.backup else None,
            "message": self.message,
        }


def backup_path_for(path: Path, *, now: datetime | None = None) -> Path:
    """Return an unused ``<file>.bak.<timestamp>`` path next to *path*."""
    stamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    candidate = path.with_name(f"{path.name}.bak.{stamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.bak.{stamp}.{counter}")
        counter += 1
    return candidate


def backup_file(path: Path, *, now: datetime | None = None) -> Path | None:
    """Copy *path* to a timestamped backup; return ``None`` when it is absent."""
    path = Path(path)
    if not path.exists():
        return None
    backup = backup_path_for(path, now=now)
    shutil.copy2(path, backup)
    logger.debug("Backed up %s -> %s", path, backup)
    return backup


def atomic_write(path: Path, content: str | bytes, *, mode: int = 0o644) -> None:
    """Write *content* to *path* through a temp file and ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except Exception:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _restore(path: Path, backup: Path | None) -> None:
    if backup is None:
        path.unlink(missing_ok=True)
        return
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    os.close(fd)
    try:
        shutil.copy2(backup, tmp_name)
        os.replace(tmp_name, path)
    except Exception:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _run_validator(validate: Validator, path: Path) -> str | None:
    """Return ``None`` when *path* validates, else the reason it did not."""
    try:
        if validate(path):
            return None
    except Exception as exc:  # noqa: BLE001 - any validator error means invalid
        return str(exc) or type(exc).__name__
    return "validator rejected the file"


def apply_ownership(
    path: Path,
    *,
    owner: str | int | None,
    group: str | int | None,
    mode: int | None,
) -> None:
    """Set owner, group and mode on *path* (``None`` leaves a value unchanged)."""
    uid = -1 if owner is None else (owner if isinstance(owner, int) else pwd.getpwnam(owner).pw_uid)
    gid = -1 if group is None else (group if isinstance(group, int) else grp.getgrnam(group).gr_gid)
    try:
        if uid != -1 or gid != -1:
            os.chown(path, uid, gid)
        if mode is not None:
            os.chmod(path, mode)
    except OSError as exc:
        raise StepFailure(f"Unable to set ownership on {path}: {exc}") from exc


def secure_replace(
    path: Path,
    content: str | bytes,
    validate: Validator,
    *,
    owner: str | int | None = "root",
    group: str | int | None = "root",
    mode: int = 0o440,
    now: datetime | None = None,
) -> ReplaceResult:
    """Replace *path* with *content*, keeping it only if *validate* accepts it.

    The existing file is backed up first. On rejection (``False`` or an
    exception) the previous bytes are restored, or the file is removed when
    none existed, and a ``restored`` result is returned instead of raising.
    """
    path = Path(path)
    backup = backup_file(path, now=now)
    atomic_write(path, content, mode=mode)

    reason = _run_validator(validate, path)
    if reason is not None:
        _restore(path, backup)
        message = f"Validation failed for {path}; previous version restored: {reason}"
        logger.warning(message)
        return ReplaceResult(path, ReplaceStatus.RESTORED, backup, message)

    apply_ownership(path, owner=owner, group=group, mode=mode)
    return ReplaceResult(path, ReplaceStatus.REPLACED, backup, f"Replaced {path}.")


def secure_existing(
    path: Path,
    validate: Validator,
    *,
    owner: str | int | None = "root",
    group: str | int | None = "root",
    mode: int = 0o440,
    now: datetime | None = None,
) -> ReplaceResult:
    """Re-apply ownership and mode to *path*, restoring it when validation fails."""
    path = Path(path)
    if not path.exists():
        raise StepFailure(f"{path} does not exist.")
    backup = backup_file(path, now=now)
    try:
        apply_ownership(path, owner=owner, group=group, mode=mode)
    except StepFailure:
        _restore(path, backup)
        raise

    reason = _run_validator(validate, path)
    if reason is not None:
        _restore(path, backup)
        message = f"Validation failed for {path}; previous version restored: {reason}"
        logger.warning(message)
        return ReplaceResult(path, ReplaceStatus.RESTORED, backup, message)
    return ReplaceResult(path, ReplaceStatus.REPLACED, backup, f"Secured {path}.")


def visudo_validator(runner: CommandRunner, visudo: str = "visudo") -> Validator:
    """Return a validator that checks a sudoers file with ``visudo -c -f``."""

    def _validate(path: Path) -> bool:
        result = runner.run([visudo, "-c", "-f", str(path)], check=False)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise ValidationFailure(detail or f"{visudo} rejected {path}")
        return True

    return _validate


# Plain text edits ---------------------------------------------------------

def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def _join(lines: Iterable[str]) -> str:
    text = "\n".join(lines)
    return f"{text}\n" if text else ""


def write_if_changed(path: Path, content: str | bytes, *, mode: int | None = None) -> bool:
    """Write *content* to *path* unless it already holds exactly that content."""
    path = Path(path)
    data = content.encode("utf-8") if isinstance(content, str) else content
    if path.exists() and path.read_bytes() == data:
        return False
    existing_mode = path.stat().st_mode & 0o777 if path.exists() else 0o644
    atomic_write(path, data, mode=mode if mode is not None else existing_mode)
    return True


def set_assignment(
    path: Path,
    key: str,
    value: str,
    *,
    separator: str = "=",
    marker: str | None = None,
) -> bool:
    """Replace every ``KEY<sep>...`` line of *path* or append one."""
    path = Path(path)
    words = r"\s+".join(re.escape(word) for word in key.split())
    pattern = re.compile(rf"^\s*{words}\s*{re.escape(separator)}")
    desired = f"{key}{separator}{value}"
    lines = _read(path).splitlines()
    found = False
    updated: list[str] = []
    for line in lines:
        if pattern.match(line):
            found = True
            updated.append(desired)
        else:
            updated.append(line)
    if not found:
        if marker:
            updated.extend(["", marker])
        updated.append(desired)
    if updated == lines:
        return False
    return write_if_changed(path, _join(updated))


def ensure_line(path: Path, line: str, *, marker: str | None = None) -> bool:
    """Append *line* to *path* unless an identical line is present."""
    path = Path(path)
    lines = _read(path).splitlines()
    if any(existing.strip() == line.strip() for existing in lines):
        return False
    if marker:
        lines.extend(["", marker])
    lines.append(line)
    return write_if_changed(path, _join(lines))


def set_ini_option(path: Path, section: str, key: str, value: str) -> bool:
    """Set ``key=value`` inside ``[section]``, uncommenting or adding it as needed.

    Files such as ``logind.conf`` ship defaults as commented ``#Key=value``
    lines; those are replaced in place.
    """
    path = Path(path)
    lines = _read(path).splitlines()
    header = f"[{section}]"
    key_pattern = re.compile(rf"^\s*#?\s*{re.escape(key)}\s*=")
    desired = f"{key}={value}"

    updated: list[str] = []
    in_section = False
    section_seen = False
    written = False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("[") and stripped.endswith("]"):
            if in_section and not written:
                updated.append(desired)
                written = True
            in_section = stripped == header
            section_seen = section_seen or in_section
            updated.append(line)
            continue
        if in_section and key_pattern.match(line):
            if not written:
                updated.append(desired)
                written = True
            continue
        updated.append(line)
    if not written:
        if not section_seen:
            updated.append(header)
        updated.append(desired)
    if updated == lines:
        return False
    return write_if_changed(path, _join(updated))


def chown_tree(path: Path, uid: int, gid: int) -> None:
    """Recursively chown *path* (used for files created as root in a user's home)."""
    path = Path(path)
    if not path.exists():
        return
    try:
        os.chown(path, uid, gid, follow_symlinks=False)
        if path.is_dir() and not path.is_symlink():
            for root, dirs, files in os.walk(path):
                for name in (*dirs, *files):
                    os.chown(os.path.join(root, name), uid, gid, follow_symlinks=False)
    except OSError as exc:
        raise StepFailure(f"Unable to chown {path}: {exc}") from exc


__all__ = [
    "BACKUP_TIMESTAMP_FORMAT",
    "ReplaceResult",
    "ReplaceStatus",
    "apply_ownership",
    "atomic_write",
    "backup_file",
    "backup_path_for",
    "chown_tree",
    "ensure_line",
    "secure_existing",
    "secure_replace",
    "set_assignment",
    "set_ini_option",
    "visudo_validator",
    "write_if_changed",
]
