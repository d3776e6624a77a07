"""Pytest configuration helpers and shared fakes for the test suite."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Iterator, Mapping, Sequence
from pathlib import Path

import pytest

from postinstallctl.command import CommandError
from postinstallctl.config import AppConfig, load_config
from postinstallctl.identity import Identity
from postinstallctl.logging import CONSOLE_LOGGER_NAME
from postinstallctl.providers.http import HttpError
from postinstallctl.runtime import build_execution_context
from postinstallctl.tasks.models import ExecutionContext
from postinstallctl.templates import TemplateEngine

Response = int | tuple[int, str] | tuple[int, str, str] | BaseException


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeRunner:
    """Record argument vectors and answer them from prefix-keyed responses.

    ``responses`` maps an argv prefix (tuple of strings) to a return code,
    ``(rc, stdout)``, ``(rc, stdout, stderr)``, an exception to raise, or a
    callable receiving the argv and returning one of those. The longest
    matching prefix wins; unmatched commands succeed with empty output.
    """

    def __init__(self, responses: Mapping[tuple[str, ...], object] | None = None) -> None:
        self.responses: dict[tuple[str, ...], object] = dict(responses or {})
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str] | None] = []
        self.cwds: list[str | None] = []

    def _lookup(self, args: list[str]) -> object:
        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return 0
        response = self.responses[best]
        if callable(response) and not isinstance(response, BaseException):
            return response(args)
        return response

    def run(
        self,
        argv: Sequence[object],
        *,
        env: Mapping[str, str] | None = None,
        cwd: object = None,
        check: bool = True,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        args = [str(arg) for arg in argv]
        self.calls.append(args)
        self.envs.append(dict(env) if env else None)
        self.cwds.append(str(cwd) if cwd is not None else None)
        response = self._lookup(args)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, int):
            returncode, stdout, stderr = response, "", ""
        else:
            parts = tuple(response)  # type: ignore[arg-type]
            returncode, stdout, stderr = (parts + ("", ""))[:3]
        if check and returncode != 0:
            raise CommandError(
                f"{' '.join(args)} failed (exit {returncode}): {stderr or stdout}",
                argv=args,
                returncode=returncode,
            )
        return subprocess.CompletedProcess(args, returncode, stdout, stderr)

    def succeeds(self, argv: Sequence[object], **kwargs: object) -> bool:
        try:
            return self.run(argv, check=False).returncode == 0
        except CommandError:
            return False

    def commands(self, program: str) -> list[list[str]]:
        """Return every recorded call whose first element is *program*."""
        return [call for call in self.calls if call and call[0] == program]


class FakeHttp:
    """In-memory stand-in for :class:`postinstallctl.providers.http.HttpFetcher`."""

    def __init__(
        self,
        documents: Mapping[str, bytes] | None = None,
        releases: Mapping[str, str] | None = None,
    ) -> None:
        self.documents: dict[str, bytes] = dict(documents or {})
        self.releases: dict[str, str] = dict(releases or {})
        self.requests: list[str] = []

    def fetch_bytes(self, url: str, *, accept: str | None = None) -> bytes:
        self.requests.append(url)
        try:
            return self.documents[url]
        except KeyError as exc:
            raise HttpError(f"GET {url} failed: HTTP 404") from exc

    def download(self, url: str, destination: Path, *, mode: int = 0o644) -> Path:
        data = self.fetch_bytes(url)
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        destination.chmod(mode)
        return destination

    def latest_release_asset(self, repository: str, match: Callable[[str], bool]) -> str:
        url = self.releases.get(repository)
        if url is None or not match(url.rsplit("/", 1)[-1]):
            raise HttpError(f"No matching release asset found for {repository}.")
        return url


@pytest.fixture(autouse=True)
def _isolated_console_logger() -> Iterator[None]:
    """Give every test a package logger without handlers from earlier tests."""
    logger = logging.getLogger(CONSOLE_LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    logger.handlers.clear()
    logger.propagate = True
    yield
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Return an empty home directory for the target user."""
    path = tmp_path / "home" / "tester"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def identity(home: Path) -> Identity:
    """Return an unprivileged identity that provisions itself."""
    return Identity(
        acting_user="tester",
        acting_uid=1000,
        target_user="tester",
        target_uid=os.getuid(),
        target_gid=os.getgid(),
        target_group="tester",
        target_home=home,
        source="override",
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration whose system paths live under ``tmp_path``."""
    return load_config(
        config_file=tmp_path / "etc" / "config.yml",
        env={},
        overrides={
            "logs_dir": str(tmp_path / "logs"),
            "sudoers": {"dir": str(tmp_path / "sudoers.d")},
            "systemd": {"logind_conf": str(tmp_path / "logind.conf")},
            "desktop": {"wallpaper": str(tmp_path / "wallpaper.png")},
            "apt": {"packages": ["git", "curl"]},
            "fonts": {"files": ["UbuntuMono-Regular.ttf"]},
        },
    )


@pytest.fixture
def runner() -> FakeRunner:
    """Return a fake command runner."""
    return FakeRunner()


@pytest.fixture
def http() -> FakeHttp:
    """Return an in-memory HTTP fetcher."""
    return FakeHttp()


@pytest.fixture
def context(
    app_config: AppConfig,
    identity: Identity,
    runner: FakeRunner,
    http: FakeHttp,
) -> ExecutionContext:
    """Return an execution context wired to the fakes."""
    return build_execution_context(
        app_config,
        identity,
        runner=runner,  # type: ignore[arg-type]
        session_env={"DISPLAY": ":0"},
        templates=TemplateEngine.with_overrides(None),
        http=http,  # type: ignore[arg-type]
    )
