"""Sequential execution harness for registered steps."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping

from ..errors import StepFailure
from ..exit_codes import ExitCode
from ..logging import OperationScope, StructuredLogger
from .models import (
    ExecutionContext,
    Outcome,
    RunReport,
    Step,
    StepStatus,
    build_report,
)
from .registry import TaskRegistry

ALREADY_SATISFIED = "already satisfied"

log = logging.getLogger("postinstallctl.engine")


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__


class ExecutionEngine:
    """Run a registry's steps in order with check, recover-and-retry and abort rules.

    For every step:

    * a truthy idempotence check records ``ok``/"already satisfied" and skips
      the action (a check that raises counts as "not satisfied");
    * a failing action triggers the step's recovery once, then exactly one
      retry;
    * a step still failing is ``failed`` and aborts the run when fatal, or is
      ``warned`` and the run continues when advisory.
    """

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        """Store the structured logger used to record the run."""
        self._logger = logger

    def run(
        self,
        registry: TaskRegistry,
        context: ExecutionContext,
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> RunReport:
        """Execute every step of *registry* against *context*."""
        if self._logger is None:
            return self._run_steps(registry, context, None, metadata)
        target = {"user": context.identity.target_user, "steps": len(registry)}
        with self._logger.operation(
            "run",
            args=dict(metadata or {}),
            target=target,
        ) as op:
            report = self._run_steps(registry, context, op, metadata)
            totals = {status.value: count for status, count in report.summary.totals.items()}
            changed = sum(
                1
                for outcome in report.outcomes
                if outcome.status is StepStatus.OK and not outcome.skipped
            )
            if report.aborted:
                op.error(
                    _describe(report.failure) if report.failure else "Run aborted.",
                    rc=ExitCode.PROVIDER,
                    context={"totals": totals},
                )
            elif report.summary.status is StepStatus.WARNED:
                op.warning(
                    "Run completed with warnings.",
                    warnings=[o.step for o in report.outcomes if o.status is StepStatus.WARNED],
                    changed=changed,
                    context={"totals": totals},
                )
            else:
                op.success("Run completed.", changed=changed, context={"totals": totals})
        return report

    def _run_steps(
        self,
        registry: TaskRegistry,
        context: ExecutionContext,
        op: OperationScope | None,
        metadata: Mapping[str, object] | None,
    ) -> RunReport:
        start = time.perf_counter()
        outcomes: list[Outcome] = []
        failure: StepFailure | None = None
        for step in registry.all():
            outcome, error = self._execute(step, context)
            outcomes.append(outcome)
            if op is not None:
                op.add_step(step.name, status=outcome.status.value, detail=outcome.message)
            if outcome.status is StepStatus.FAILED:
                failure = _as_step_failure(step, error)
                log.error("[%s] fatal step failed; aborting run", step.name)
                break

        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "step_count": len(outcomes),
            "registered_steps": len(registry),
        }
        if metadata:
            run_metadata.update(metadata)
        return build_report(
            outcomes,
            aborted=failure is not None,
            failure=failure,
            metadata=run_metadata,
        )

    def _execute(
        self,
        step: Step,
        context: ExecutionContext,
    ) -> tuple[Outcome, Exception | None]:
        start = time.perf_counter()
        log.info("[%s] starting", step.name)

        if step.check is not None and self._is_satisfied(step, context):
            log.info("[%s] %s", step.name, ALREADY_SATISFIED)
            outcome = Outcome(
                step=step.name,
                status=StepStatus.OK,
                message=ALREADY_SATISFIED,
                group=step.group,
                attempts=0,
                skipped=True,
                duration_ms=_duration_ms(start),
            )
            return outcome, None

        attempts = 1
        try:
            message = step.action(context)
        except Exception as exc:  # noqa: BLE001 - any step error is recorded
            log.warning("[%s] attempt 1 failed: %s", step.name, _describe(exc))
            self._recover(step, context)
            attempts = 2
            try:
                message = step.action(context)
            except Exception as retry_exc:  # noqa: BLE001 - any step error is recorded
                return self._failed(step, retry_exc, attempts, start), retry_exc

        text = message or "done"
        log.info("[%s] ok: %s", step.name, text)
        outcome = Outcome(
            step=step.name,
            status=StepStatus.OK,
            message=text,
            group=step.group,
            attempts=attempts,
            duration_ms=_duration_ms(start),
        )
        return outcome, None

    def _is_satisfied(self, step: Step, context: ExecutionContext) -> bool:
        if step.check is None:
            return False
        try:
            return bool(step.check(context))
        except Exception as exc:  # noqa: BLE001 - a broken check means "not satisfied"
            log.warning(
                "[%s] idempotence check raised, running action: %s", step.name, _describe(exc)
            )
            return False

    def _recover(self, step: Step, context: ExecutionContext) -> None:
        if step.recovery is None:
            log.info("[%s] retrying", step.name)
            return
        log.info("[%s] running recovery before retry", step.name)
        try:
            step.recovery(context)
        except Exception as exc:  # noqa: BLE001 - recovery failure never stops the retry
            log.warning("[%s] recovery failed: %s", step.name, _describe(exc))

    def _failed(
        self,
        step: Step,
        exc: Exception,
        attempts: int,
        start: float,
    ) -> Outcome:
        status = StepStatus.FAILED if step.is_fatal else StepStatus.WARNED
        message = _describe(exc)
        if status is StepStatus.FAILED:
            log.error("[%s] failed after retry: %s", step.name, message)
        else:
            log.warning("[%s] failed after retry, continuing: %s", step.name, message)
        return Outcome(
            step=step.name,
            status=status,
            message=message,
            group=step.group,
            attempts=attempts,
            duration_ms=_duration_ms(start),
        )


def _as_step_failure(step: Step, error: Exception | None) -> StepFailure:
    if isinstance(error, StepFailure):
        return error
    detail = _describe(error) if error is not None else "unknown error"
    failure = StepFailure(f"Step '{step.name}' failed: {detail}")
    if error is not None:
        failure.__cause__ = error
    return failure


__all__ = ["ALREADY_SATISFIED", "ExecutionEngine"]
