"""Tests for the apt, git, xfconf, systemd, pipx, npm, docker and http providers."""
from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from postinstallctl.command import CommandError
from postinstallctl.providers import (
    NONINTERACTIVE_ENV,
    AptError,
    AptProvider,
    HttpError,
    HttpFetcher,
    SystemdError,
)
from postinstallctl.tasks.models import ExecutionContext

if TYPE_CHECKING:
    from conftest import FakeRunner


def test_apt_install_is_non_interactive(runner: FakeRunner) -> None:
    """Installs pass ``-y`` and the non-interactive environment."""
    apt = AptProvider(runner=runner)  # type: ignore[arg-type]

    apt.install(["git", "curl"])

    assert runner.calls == [["apt-get", "install", "-y", "git", "curl"]]
    assert runner.envs[0] == NONINTERACTIVE_ENV


def test_apt_install_without_packages_fails(runner: FakeRunner) -> None:
    """Empty install requests are rejected before apt runs."""
    with pytest.raises(AptError):
        AptProvider(runner=runner).install([])  # type: ignore[arg-type]
    assert runner.calls == []


def test_apt_is_installed_parses_dpkg_status(runner: FakeRunner) -> None:
    """Only ``install ok installed`` counts; glob suffixes are stripped."""
    runner.responses[("dpkg-query", "-W", "-f=${Status}", "git")] = (0, "install ok installed")
    runner.responses[("dpkg-query", "-W", "-f=${Status}", "open-vm-tools")] = (
        0,
        "deinstall ok config-files",
    )
    runner.responses[("dpkg-query", "-W", "-f=${Status}", "curl")] = (1, "", "no packages")
    apt = AptProvider(runner=runner)  # type: ignore[arg-type]

    assert apt.is_installed("git") is True
    assert apt.is_installed("open-vm-tools*") is False
    assert apt.missing(["git", "curl"]) == ["curl"]


def test_apt_repair_falls_back_to_dpkg_configure(runner: FakeRunner) -> None:
    """A failing fix-broken pass runs ``dpkg --configure -a`` and retries."""
    attempts: list[int] = []

    def fix_broken(_args: list[str]) -> int:
        attempts.append(1)
        return 100 if len(attempts) == 1 else 0

    runner.responses[("apt-get", "-o")] = fix_broken
    AptProvider(runner=runner).repair()  # type: ignore[arg-type]

    assert [call[:3] for call in runner.calls] == [
        ["apt-get", "-o", "Dpkg::Options::=--force-overwrite"],
        ["dpkg", "--configure", "-a"],
        ["apt-get", "-o", "Dpkg::Options::=--force-overwrite"],
    ]


def test_apt_install_deb_falls_back_to_dpkg(runner: FakeRunner, tmp_path: Path) -> None:
    """Local packages apt refuses are installed with dpkg and dependency fixing."""
    deb = tmp_path / "bat.deb"
    deb.write_bytes(b"deb")
    runner.responses[("apt-get", "install", "-y", str(deb.resolve()))] = (1, "", "conflict")

    AptProvider(runner=runner).install_deb(deb)  # type: ignore[arg-type]

    assert runner.calls[1] == ["dpkg", "-i", str(deb.resolve())]
    assert runner.calls[2] == ["apt-get", "-y", "-f", "install"]


def test_git_clones_then_pulls(
    context: ExecutionContext,
    runner: FakeRunner,
    tmp_path: Path,
) -> None:
    """Fresh destinations are cloned shallowly; checkouts are fast-forwarded."""
    destination = tmp_path / "tools" / "fzf"

    assert context.git.clone_or_update("https://example.invalid/fzf.git", destination) == "cloned"
    (destination / ".git").mkdir(parents=True)
    assert context.git.clone_or_update("https://example.invalid/fzf.git", destination) == "updated"

    assert runner.calls == [
        ["git", "clone", "--depth", "1", "https://example.invalid/fzf.git", str(destination)],
        ["git", "-C", str(destination), "pull", "--ff-only", "--recurse-submodules"],
    ]


def test_git_replaces_non_checkout_directory(context: ExecutionContext, tmp_path: Path) -> None:
    """A plain directory in the way of a clone is removed."""
    destination = tmp_path / "dirsearch"
    destination.mkdir()
    (destination / "stale.txt").write_text("old")

    context.git.clone_or_update("https://example.invalid/dirsearch.git", destination, depth=None)

    assert not (destination / "stale.txt").exists()


def test_xfconf_set_creates_missing_property(
    context: ExecutionContext,
    runner: FakeRunner,
) -> None:
    """Setting an unknown property retries with ``-n -t <type>``."""
    base = ("xfconf-query", "-c", "xfce4-panel", "-p", "/panels/dark-mode")
    runner.responses[base] = (1, "", "Property does not exist")
    runner.responses[(*base, "-s")] = 1
    runner.responses[(*base, "-n")] = 0

    changed = context.xfconf.set("xfce4-panel", "/panels/dark-mode", True)

    assert changed is True
    assert runner.calls[-1] == [*base, "-n", "-t", "bool", "-s", "true"]
    assert runner.envs[-1] is not None and runner.envs[-1]["DISPLAY"] == ":0"


def test_xfconf_set_is_noop_when_value_matches(
    context: ExecutionContext,
    runner: FakeRunner,
) -> None:
    """Matching values are left untouched."""
    runner.responses[("xfconf-query", "-c", "xsettings", "-p", "/Net/ThemeName")] = (
        0,
        "Kali-Dark\n",
    )

    assert context.xfconf.set("xsettings", "/Net/ThemeName", "Kali-Dark") is False
    assert context.xfconf.matches("xsettings", "/Net/ThemeName", "Kali-Dark") is True
    assert len(runner.calls) == 2


def test_xfconf_list_values_parses_properties(
    context: ExecutionContext,
    runner: FakeRunner,
) -> None:
    """``-l -v`` output becomes a property map."""
    runner.responses[("xfconf-query", "-c", "xfce4-desktop", "-p", "/backdrop")] = (
        0,
        "/backdrop/screen0/monitorVirtual1/workspace0/last-image  /usr/share/bg.png\n"
        "/backdrop/screen0/monitorVirtual1/workspace0/image-style 5\n",
    )

    values = context.xfconf.list_values("xfce4-desktop", "/backdrop")

    assert values == {
        "/backdrop/screen0/monitorVirtual1/workspace0/last-image": "/usr/share/bg.png",
        "/backdrop/screen0/monitorVirtual1/workspace0/image-style": "5",
    }


def test_systemd_enable_now(context: ExecutionContext, runner: FakeRunner) -> None:
    """``enable(now=True)`` passes ``--now``."""
    context.systemd.enable("ssh", now=True)

    assert runner.calls == [["systemctl", "enable", "--now", "ssh"]]


def test_systemd_failures_are_wrapped(context: ExecutionContext, runner: FakeRunner) -> None:
    """systemctl errors become :class:`SystemdError`."""
    runner.responses[("systemctl", "restart")] = (1, "", "unit not found")

    with pytest.raises(SystemdError, match="restart failed"):
        context.systemd.restart("missing")


def test_systemd_queries_never_raise(context: ExecutionContext, runner: FakeRunner) -> None:
    """State queries map exit codes to booleans."""
    runner.responses[("systemctl", "is-enabled")] = 1
    runner.responses[("systemctl", "is-active")] = CommandError("gone", argv=["systemctl"])

    assert context.systemd.is_enabled("docker") is False
    assert context.systemd.is_active("docker") is False


def test_pipx_reads_installed_venvs(context: ExecutionContext, runner: FakeRunner) -> None:
    """The JSON listing is reduced to venv names."""
    runner.responses[("pipx", "list", "--json")] = (
        0,
        json.dumps({"venvs": {"netexec": {}, "frida-tools": {}}}),
    )

    assert context.pipx.installed() == {"netexec", "frida-tools"}
    assert context.pipx.is_installed("netexec") is True
    assert context.pipx.is_installed("objection") is False


def test_pipx_tolerates_garbage_listing(context: ExecutionContext, runner: FakeRunner) -> None:
    """Unparseable output means nothing is installed."""
    runner.responses[("pipx", "list", "--json")] = (0, "not json")

    assert context.pipx.installed() == set()


def test_npm_is_installed_reads_dependency_tree(
    context: ExecutionContext,
    runner: FakeRunner,
) -> None:
    """Global packages are looked up in ``npm ls`` JSON output."""
    runner.responses[("npm", "ls")] = (
        0,
        json.dumps({"dependencies": {"igf": {"version": "1.0.0"}}}),
    )

    assert context.npm.is_installed("igf") is True
    assert context.npm.is_installed("rms-runtime-mobile-security") is False


def test_docker_has_image(context: ExecutionContext, runner: FakeRunner) -> None:
    """Image presence follows ``docker image inspect``."""
    runner.responses[("docker", "image", "inspect", "missing")] = 1

    assert context.docker.has_image("present") is True
    assert context.docker.has_image("missing") is False


def test_latest_release_asset_picks_matching_asset(monkeypatch: pytest.MonkeyPatch) -> None:
    """The first asset accepted by the predicate wins."""
    document = {
        "assets": [
            {"name": "jadx-gui.exe", "browser_download_url": "https://example.invalid/gui.exe"},
            {"name": "jadx-1.5.0.zip", "browser_download_url": "https://example.invalid/j.zip"},
        ]
    }
    requested: list[str] = []

    def fake_fetch_json(self: HttpFetcher, url: str) -> object:
        requested.append(url)
        return document

    monkeypatch.setattr(HttpFetcher, "fetch_json", fake_fetch_json)
    fetcher = HttpFetcher()

    url = fetcher.latest_release_asset("skylot/jadx", lambda name: name.endswith(".zip"))

    assert url == "https://example.invalid/j.zip"
    assert requested == ["https://api.github.com/repos/skylot/jadx/releases/latest"]
    with pytest.raises(HttpError, match="No matching release asset"):
        fetcher.latest_release_asset("skylot/jadx", lambda name: name.endswith(".deb"))
