"""Tests for the subprocess runner."""
from __future__ import annotations

import sys

import pytest

from postinstallctl.command import CommandError, CommandRunner, format_argv


def test_run_captures_output() -> None:
    """Standard output is captured as text."""
    result = CommandRunner().run([sys.executable, "-c", "print('hello')"])

    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_nonzero_exit_raises_with_return_code() -> None:
    """A failing command raises :class:`CommandError` carrying its exit status."""
    with pytest.raises(CommandError) as excinfo:
        CommandRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"]
        )

    assert excinfo.value.returncode == 3
    assert "bad" in str(excinfo.value)
    assert excinfo.value.argv[0] == sys.executable


def test_nonzero_exit_without_check_returns_result() -> None:
    """``check=False`` hands the failing result back to the caller."""
    result = CommandRunner().run([sys.executable, "-c", "raise SystemExit(2)"], check=False)

    assert result.returncode == 2


def test_environment_is_merged() -> None:
    """Extra variables are layered over the inherited environment."""
    result = CommandRunner().run(
        [sys.executable, "-c", "import os; print(os.environ['POSTINSTALLCTL_PROBE'])"],
        env={"POSTINSTALLCTL_PROBE": "42"},
    )

    assert result.stdout.strip() == "42"


def test_missing_binary_is_a_command_error() -> None:
    """Executables that do not exist surface as :class:`CommandError`."""
    with pytest.raises(CommandError, match="not found"):
        CommandRunner().run(["postinstallctl-definitely-missing-binary"])


def test_empty_command_is_rejected() -> None:
    """An empty argument vector is never executed."""
    with pytest.raises(CommandError, match="empty command"):
        CommandRunner().run([])


@pytest.mark.mutation_timeout
def test_timeout_is_a_command_error() -> None:
    """Commands exceeding the timeout are killed and reported."""
    runner = CommandRunner(timeout=0.2)

    with pytest.raises(CommandError, match="timed out"):
        runner.run([sys.executable, "-c", "import time; time.sleep(5)"])


def test_succeeds_reports_exit_status() -> None:
    """``succeeds`` never raises."""
    runner = CommandRunner()

    assert runner.succeeds([sys.executable, "-c", "pass"]) is True
    assert runner.succeeds([sys.executable, "-c", "raise SystemExit(1)"]) is False
    assert runner.succeeds(["postinstallctl-definitely-missing-binary"]) is False


def test_format_argv_quotes_arguments() -> None:
    """Displayed commands are shell-quoted."""
    assert format_argv(["echo", "two words", "$HOME"]) == "echo 'two words' '$HOME'"
