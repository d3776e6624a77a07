"""Tests for the postinstallctl command line."""
from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from postinstallctl import __version__, cli
from postinstallctl.config import AppConfig, ConfigError
from postinstallctl.errors import IdentityError, StepFailure
from postinstallctl.identity import Identity
from postinstallctl.tasks import Criticality, TaskRegistry
from postinstallctl.tasks.models import ExecutionContext

runner = CliRunner()


def _registry(*, fatal_failure: bool = False) -> TaskRegistry:
    registry = TaskRegistry()
    registry.register("first", lambda _ctx: "configured")

    def gate(_ctx: object) -> str:
        if fatal_failure:
            raise StepFailure("home missing")
        return "ok"

    registry.register("gate", gate, criticality=Criticality.FATAL)
    registry.register("last", lambda _ctx: "configured")
    return registry


@pytest.fixture
def patched_run(
    monkeypatch: pytest.MonkeyPatch,
    app_config: AppConfig,
    identity: Identity,
    context: ExecutionContext,
) -> dict[str, object]:
    """Stub out elevation, discovery and provisioning side effects for ``run``."""
    seen: dict[str, object] = {}

    def fake_build_registry(groups: list[str]) -> TaskRegistry:
        seen["groups"] = groups
        return _registry()

    def fake_resolve_identity(
        *,
        override: str | None = None,
        require_target: bool = True,
    ) -> Identity:
        seen["override"] = override
        seen["require_target"] = require_target
        return identity

    monkeypatch.setattr(cli, "_ensure_elevated", lambda: None)
    monkeypatch.setattr(cli, "load_config", lambda config_file=None: app_config)
    monkeypatch.setattr(cli, "resolve_identity", fake_resolve_identity)
    monkeypatch.setattr(cli, "discover_session_env", lambda _identity: {"DISPLAY": ":0"})
    monkeypatch.setattr(cli, "build_execution_context", lambda *_args, **_kwargs: context)
    monkeypatch.setattr(cli, "build_registry", fake_build_registry)
    return seen


def _records(config: AppConfig) -> list[dict[str, object]]:
    path = config.logs_dir / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_version_flag() -> None:
    """``--version`` prints the package version."""
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert f"postinstallctl {__version__}" in result.stdout


def test_no_command_prints_help() -> None:
    """Invoking without a subcommand shows the help text."""
    result = runner.invoke(cli.app, [])

    assert result.exit_code == 0
    assert "Idempotent post-install provisioning" in result.stdout


def test_plan_json_lists_core_then_groups() -> None:
    """``plan --json`` emits the ordered step list without side effects."""
    result = runner.invoke(cli.app, ["plan", "--web", "--json"])

    assert result.exit_code == 0
    steps = json.loads(result.stdout)
    assert steps[0] == {
        "name": "verify-target-home",
        "group": "core",
        "criticality": "fatal",
        "check": False,
        "description": "Target user's home directory exists",
    }
    assert steps[-1]["name"] == "dirsearch"
    assert steps[-1]["group"] == "web"


def test_plan_table_names_groups() -> None:
    """The table view states which optional groups were selected."""
    result = runner.invoke(cli.app, ["plan", "--all"])

    assert result.exit_code == 0
    assert "Optional groups: internal, web, mobile, wifi" in result.stdout
    assert "verify-target-home" in result.stdout


def test_run_success_exits_zero(patched_run: dict[str, object], app_config: AppConfig) -> None:
    """A run whose steps all succeed exits 0 and is logged."""
    result = runner.invoke(cli.app, ["run", "--wifi", "--mobile", "--user", "tester"])

    assert result.exit_code == 0, result.stdout
    assert patched_run["groups"] == ["mobile", "wifi"]
    assert patched_run["override"] == "tester"
    assert "Target user: tester" in result.stdout
    record = _records(app_config)[-1]
    assert record["command"] == "run"
    steps = record["steps"]
    assert [step["id"] for step in steps] == ["first", "gate", "last"]  # type: ignore[union-attr]
    assert record["result"]["status"] == "success"  # type: ignore[index]


def test_run_uses_configured_target_user(
    patched_run: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
    app_config: AppConfig,
) -> None:
    """Without ``--user`` the configured target user is used."""
    configured = replace(app_config, target_user="kali")
    monkeypatch.setattr(cli, "load_config", lambda config_file=None: configured)

    result = runner.invoke(cli.app, ["run"])

    assert result.exit_code == 0, result.stdout
    assert patched_run["override"] == "kali"
    assert patched_run["groups"] == []


def test_run_without_target_steps_does_not_require_a_user(
    patched_run: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A registry of system-only steps resolves identity without demanding a target."""
    system_only = TaskRegistry()
    system_only.register("apt-noninteractive", lambda _ctx: "ok", requires_target=False)
    monkeypatch.setattr(cli, "build_registry", lambda _groups: system_only)

    def no_target(*, override: str | None = None, require_target: bool = True) -> Identity:
        patched_run["require_target"] = require_target
        return Identity(acting_user="root", acting_uid=0, source="none")

    monkeypatch.setattr(cli, "resolve_identity", no_target)

    result = runner.invoke(cli.app, ["run"])

    assert result.exit_code == 0, result.stdout
    assert patched_run["require_target"] is False
    assert "Target user: none (system steps only)" in result.stdout


def test_run_requires_target_when_a_step_needs_one(patched_run: dict[str, object]) -> None:
    """Registries with user-facing steps demand a resolvable target user."""
    result = runner.invoke(cli.app, ["run"])

    assert result.exit_code == 0, result.stdout
    assert patched_run["require_target"] is True


def test_run_fatal_failure_exits_with_provider_code(
    patched_run: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
    app_config: AppConfig,
) -> None:
    """An aborted run exits 4 after reporting the failure."""
    monkeypatch.setattr(cli, "build_registry", lambda _groups: _registry(fatal_failure=True))

    result = runner.invoke(cli.app, ["run"])

    assert result.exit_code == 4
    assert "home missing" in result.stdout
    record = _records(app_config)[-1]
    assert [step["id"] for step in record["steps"]] == ["first", "gate"]  # type: ignore[union-attr]
    assert record["result"]["rc"] == 4  # type: ignore[index]


def test_run_identity_error_exits_with_environment_code(
    patched_run: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
    app_config: AppConfig,
) -> None:
    """An unknown target user exits 3 before any step runs."""

    def fail(*, override: str | None = None, require_target: bool = True) -> Identity:
        raise IdentityError("User 'mallory' does not exist.")

    monkeypatch.setattr(cli, "resolve_identity", fail)

    result = runner.invoke(cli.app, ["run", "--user", "mallory"])

    assert result.exit_code == 3
    assert "mallory" in result.stdout
    record = _records(app_config)[-1]
    assert record["result"]["status"] == "error"  # type: ignore[index]
    assert record["result"]["rc"] == 3  # type: ignore[index]


def test_run_config_error_exits_with_validation_code(
    patched_run: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Invalid configuration exits 2."""

    def fail(config_file: Path | None = None) -> AppConfig:
        raise ConfigError("Unknown configuration keys: bogus.")

    monkeypatch.setattr(cli, "load_config", fail)

    result = runner.invoke(cli.app, ["run"])

    assert result.exit_code == 2
    assert "Unknown configuration keys: bogus." in result.stdout


def test_selected_groups_all_overrides_individual_flags() -> None:
    """``--all`` selects every group in execution order."""
    assert cli._selected_groups(
        mobile=True, internal=False, web=False, wifi=False, all_groups=True
    ) == ["internal", "web", "mobile", "wifi"]
    assert cli._selected_groups(
        mobile=True, internal=False, web=True, wifi=False, all_groups=False
    ) == ["web", "mobile"]


def test_ensure_elevated_reexecs_under_sudo(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-root invocations are replaced by a sudo re-execution."""
    calls: list[tuple[str, list[str]]] = []
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    monkeypatch.setattr(cli.shutil, "which", lambda _name: "/usr/bin/sudo")
    monkeypatch.setattr(cli.os, "execv", lambda path, argv: calls.append((path, argv)))
    monkeypatch.setattr(cli.sys, "argv", ["postinstallctl", "run", "--web"])
    monkeypatch.setattr(
        cli.os,
        "environ",
        {"PATH": "/usr/bin", "POSTINSTALLCTL_TIMEOUTS__COMMAND": "60"},
    )

    cli._ensure_elevated()

    path, argv = calls[0]
    assert path == "/usr/bin/sudo"
    assert argv[1] == (
        "--preserve-env=POSTINSTALLCTL_CONFIG_FILE,"
        "POSTINSTALLCTL_TARGET_USER,POSTINSTALLCTL_TIMEOUTS__COMMAND"
    )
    assert argv[-4:] == ["-m", "postinstallctl", "run", "--web"]


def test_ensure_elevated_without_sudo_exits(monkeypatch: pytest.MonkeyPatch) -> None:
    """Missing sudo is an environment error."""
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    monkeypatch.setattr(cli.shutil, "which", lambda _name: None)

    with pytest.raises(typer.Exit) as excinfo:
        cli._ensure_elevated()

    assert excinfo.value.exit_code == 3


def test_ensure_elevated_is_noop_for_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Root runs continue in-process."""
    monkeypatch.setattr(cli.os, "geteuid", lambda: 0)
    monkeypatch.setattr(cli.os, "execv", lambda *_args: pytest.fail("should not exec"))

    cli._ensure_elevated()


def test_run_json_prints_report(
    patched_run: dict[str, object],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """``run --json`` emits the serialised report only."""
    monkeypatch.setattr(cli, "configure_console_logging", lambda *_args, **_kwargs: None)
    result = runner.invoke(cli.app, ["run", "--json"])

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["summary"]["status"] == "ok"
    assert payload["summary"]["aborted"] is False
    assert [outcome["step"] for outcome in payload["outcomes"]] == ["first", "gate", "last"]
    metadata = payload["metadata"]
    assert metadata["groups"] == []
    assert metadata["target_user"] == "tester"
    assert metadata["step_count"] == metadata["registered_steps"] == 3


def test_config_show_json(tmp_path: Path) -> None:
    """``config show --json`` prints the merged configuration."""
    config_file = tmp_path / "config.yml"
    config_file.write_text("target_user: kali\ntools_dir: src\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["config", "show", "--json", "--config-file", str(config_file)])

    assert result.exit_code == 0, result.stdout
    data = json.loads(result.stdout)
    assert data["target_user"] == "kali"
    assert data["tools_dir"] == "src"
    assert data["config_file"] == str(config_file)


def test_config_show_rejects_invalid_file(tmp_path: Path) -> None:
    """Invalid configuration files exit 2."""
    config_file = tmp_path / "config.yml"
    config_file.write_text("tools_dir: /absolute\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["config", "show", "--config-file", str(config_file)])

    assert result.exit_code == 2
    assert "tools_dir must be relative" in result.stdout
