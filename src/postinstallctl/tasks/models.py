"""Data models for provisioning steps and their outcomes."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from ..files import chown_tree

if TYPE_CHECKING:
    from ..command import CommandRunner
    from ..config import AppConfig
    from ..identity import Identity, TargetExecutor
    from ..providers.apt import AptProvider
    from ..providers.docker import DockerProvider
    from ..providers.git import GitProvider
    from ..providers.http import HttpFetcher
    from ..providers.npm import NpmProvider
    from ..providers.pipx import PipxProvider
    from ..providers.systemd import SystemdProvider
    from ..providers.xfconf import XfconfStore
    from ..templates import TemplateEngine


class Criticality(str, Enum):
    """Whether a step failing after its retry stops the run."""

    ADVISORY = "advisory"
    FATAL = "fatal"


class StepStatus(str, Enum):
    """Recorded outcome for a step."""

    OK = "ok"
    WARNED = "warned"
    FAILED = "failed"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the status represents a failure."""
        return self is StepStatus.FAILED

    @property
    def is_warning(self) -> bool:
        """Return ``True`` when the status represents a warning."""
        return self is StepStatus.WARNED


StepGroup = Literal["core", "internal", "web", "mobile", "wifi"]

# Ordered tuple of all step groups. Keep this in sync with ``StepGroup``.
STEP_GROUP_VALUES: tuple[StepGroup, ...] = ("core", "internal", "web", "mobile", "wifi")
OPTIONAL_GROUPS: tuple[StepGroup, ...] = ("internal", "web", "mobile", "wifi")


@dataclass(slots=True, frozen=True)
class ExecutionContext:
    """Everything a step may read; built once per run and never mutated."""

    identity: Identity
    config: AppConfig
    runner: CommandRunner
    target: TargetExecutor
    templates: TemplateEngine
    http: HttpFetcher
    apt: AptProvider
    git: GitProvider
    xfconf: XfconfStore
    systemd: SystemdProvider
    pipx: PipxProvider
    npm: NpmProvider
    docker: DockerProvider
    session_env: Mapping[str, str] = field(default_factory=dict)

    @property
    def user(self) -> str:
        """Return the target user name."""
        return self.identity.require_target()[0]

    @property
    def home(self) -> Path:
        """Return the target user's home directory."""
        return self.identity.require_target()[1]

    def tools_path(self, *parts: str) -> Path:
        """Return a path under the target's tools directory."""
        return self.home.joinpath(self.config.tools_dir, *parts)

    def run_as_target(
        self,
        argv: Sequence[str | os.PathLike[str]],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *argv* as the target user with the session environment applied."""
        return self.target.run(argv, env=env, cwd=cwd, check=check)

    def chown_to_target(self, path: Path) -> None:
        """Hand *path* (recursively) over to the target user."""
        identity = self.identity
        if not identity.is_elevated or identity.target_uid is None or identity.target_gid is None:
            return
        chown_tree(path, identity.target_uid, identity.target_gid)


StepAction = Callable[[ExecutionContext], str | None]
StepCheck = Callable[[ExecutionContext], bool]
StepRecovery = Callable[[ExecutionContext], object]


@dataclass(slots=True, frozen=True)
class Step:
    """A named unit of provisioning work."""

    name: str
    action: StepAction
    check: StepCheck | None = None
    criticality: Criticality = Criticality.ADVISORY
    recovery: StepRecovery | None = None
    group: StepGroup = "core"
    description: str = ""
    requires_target: bool = True

    @property
    def is_fatal(self) -> bool:
        """Return ``True`` when failure of this step aborts the run."""
        return self.criticality is Criticality.FATAL


@dataclass(slots=True, frozen=True)
class Outcome:
    """Recorded result of executing (or skipping) a step."""

    step: str
    status: StepStatus
    message: str
    group: StepGroup = "core"
    attempts: int = 0
    skipped: bool = False
    duration_ms: int | None = None


@dataclass(slots=True, frozen=True)
class RunSummary:
    """Aggregate counts derived from the outcomes of a run."""

    status: StepStatus
    totals: Mapping[StepStatus, int]
    skipped: int


@dataclass(slots=True, frozen=True)
class RunReport:
    """Complete report for one engine run."""

    outcomes: Sequence[Outcome]
    summary: RunSummary
    aborted: bool = False
    failure: BaseException | None = None
    metadata: Mapping[str, object] | None = None

    @property
    def completed(self) -> bool:
        """Return ``True`` when every registered step was attempted."""
        return not self.aborted


STATUS_ORDER: Mapping[StepStatus, int] = {
    StepStatus.OK: 0,
    StepStatus.WARNED: 1,
    StepStatus.FAILED: 2,
}


def aggregate_outcomes(outcomes: Iterable[Outcome]) -> RunSummary:
    """Compute the worst status and per-status totals."""
    totals: dict[StepStatus, int] = {status: 0 for status in StepStatus}
    worst = StepStatus.OK
    skipped = 0
    for outcome in outcomes:
        totals[outcome.status] += 1
        if outcome.skipped:
            skipped += 1
        if STATUS_ORDER[outcome.status] > STATUS_ORDER[worst]:
            worst = outcome.status
    return RunSummary(status=worst, totals=totals, skipped=skipped)


def build_report(
    outcomes: Sequence[Outcome],
    *,
    aborted: bool = False,
    failure: BaseException | None = None,
    metadata: Mapping[str, object] | None = None,
) -> RunReport:
    """Create a :class:`RunReport` from recorded outcomes."""
    return RunReport(
        outcomes=tuple(outcomes),
        summary=aggregate_outcomes(outcomes),
        aborted=aborted,
        failure=failure,
        metadata=metadata,
    )


__all__ = [
    "Criticality",
    "ExecutionContext",
    "OPTIONAL_GROUPS",
    "Outcome",
    "RunReport",
    "RunSummary",
    "STEP_GROUP_VALUES",
    "Step",
    "StepGroup",
    "StepStatus",
    "aggregate_outcomes",
    "build_report",
]
