"""Serialisation and console rendering for run reports."""
from __future__ import annotations

from collections.abc import Mapping, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from .models import RunReport, StepStatus

STATUS_STYLES: Mapping[StepStatus, str] = {
    StepStatus.OK: "green",
    StepStatus.WARNED: "yellow",
    StepStatus.FAILED: "red",
}


def _sanitize_payload(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize_payload(item) for item in value]
    return str(value)


def serialize_report(report: RunReport) -> dict[str, object]:
    """Convert a run report into a JSON-serialisable mapping."""
    totals = {status.value: int(report.summary.totals.get(status, 0)) for status in StepStatus}
    summary_payload = {
        "status": report.summary.status.value,
        "aborted": report.aborted,
        "failure": str(report.failure) if report.failure else None,
        "skipped": report.summary.skipped,
        "totals": totals,
    }
    outcomes_payload: list[dict[str, object]] = []
    for outcome in report.outcomes:
        payload: dict[str, object] = {
            "step": outcome.step,
            "group": outcome.group,
            "status": outcome.status.value,
            "message": outcome.message,
            "attempts": outcome.attempts,
            "skipped": outcome.skipped,
        }
        if outcome.duration_ms is not None:
            payload["duration_ms"] = outcome.duration_ms
        outcomes_payload.append(payload)

    metadata_payload = _sanitize_payload(report.metadata) if report.metadata else {}
    return {
        "summary": summary_payload,
        "outcomes": outcomes_payload,
        "metadata": metadata_payload,
    }


def render_summary(report: RunReport, console: Console) -> None:
    """Print the end-of-run summary table."""
    table = Table(title="Provisioning summary", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Group")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Message", overflow="fold")
    for index, outcome in enumerate(report.outcomes, start=1):
        style = STATUS_STYLES[outcome.status]
        table.add_row(
            str(index),
            outcome.step,
            outcome.group,
            f"[{style}]{outcome.status.value}[/{style}]",
            str(outcome.attempts),
            Text(outcome.message),
        )
    console.print(table)

    totals = report.summary.totals
    line = (
        f"ok={totals.get(StepStatus.OK, 0)} "
        f"warned={totals.get(StepStatus.WARNED, 0)} "
        f"failed={totals.get(StepStatus.FAILED, 0)} "
        f"(already satisfied: {report.summary.skipped})"
    )
    if report.aborted:
        console.print(f"[red]Run aborted:[/red] {escape(str(report.failure))}")
    elif report.summary.status is StepStatus.WARNED:
        console.print(f"[yellow]Completed with warnings.[/yellow] {line}")
        console.print("Re-run postinstallctl to retry the warned steps.")
    else:
        console.print(f"[green]Completed.[/green] {line}")


__all__ = ["render_summary", "serialize_report"]
