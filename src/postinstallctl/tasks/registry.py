"""Ordered, name-unique collection of provisioning steps."""

from __future__ import annotations

from collections.abc import Iterator

from ..errors import ConfigurationError
from .models import Criticality, Step, StepAction, StepCheck, StepGroup, StepRecovery


class TaskRegistry:
    """Hold steps in registration order; performs no I/O."""

    def __init__(self) -> None:
        """Create an empty registry."""
        self._steps: list[Step] = []
        self._names: set[str] = set()

    def register(
        self,
        name: str,
        action: StepAction,
        check: StepCheck | None = None,
        criticality: Criticality = Criticality.ADVISORY,
        *,
        recovery: StepRecovery | None = None,
        group: StepGroup = "core",
        description: str = "",
        requires_target: bool = True,
    ) -> Step:
        """Build a :class:`Step` from the arguments and append it."""
        try:
            level = Criticality(criticality)
        except ValueError as exc:
            raise ConfigurationError(
                f"Unknown criticality for step {name!r}: {criticality!r}."
            ) from exc
        step = Step(
            name=name,
            action=action,
            check=check,
            criticality=level,
            recovery=recovery,
            group=group,
            description=description,
            requires_target=requires_target,
        )
        return self.register_step(step)

    def register_step(self, step: Step) -> Step:
        """Append a pre-built *step*, rejecting blank or duplicate names."""
        name = step.name.strip() if isinstance(step.name, str) else ""
        if not name or name != step.name:
            raise ConfigurationError(f"Invalid step name: {step.name!r}.")
        if name in self._names:
            raise ConfigurationError(f"Step '{name}' is already registered.")
        if not callable(step.action):
            raise ConfigurationError(f"Step '{name}' has no callable action.")
        self._steps.append(step)
        self._names.add(name)
        return step

    def all(self) -> tuple[Step, ...]:
        """Return the registered steps in order."""
        return tuple(self._steps)

    def names(self) -> list[str]:
        """Return the registered step names in order."""
        return [step.name for step in self._steps]

    def groups(self) -> list[StepGroup]:
        """Return the distinct groups present, in first-seen order."""
        seen: list[StepGroup] = []
        for step in self._steps:
            if step.group not in seen:
                seen.append(step.group)
        return seen

    def requires_target(self) -> bool:
        """Return ``True`` when any registered step needs a target user."""
        return any(step.requires_target for step in self._steps)

    def __len__(self) -> int:
        """Return the number of registered steps."""
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        """Iterate over steps in registration order."""
        return iter(tuple(self._steps))

    def __contains__(self, name: object) -> bool:
        """Return ``True`` when a step called *name* is registered."""
        return name in self._names


__all__ = ["TaskRegistry"]
