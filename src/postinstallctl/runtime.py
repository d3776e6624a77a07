"""Assemble the immutable execution context for a provisioning run."""
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from .command import CommandRunner
from .config import AppConfig
from .identity import Identity, TargetExecutor
from .providers.apt import AptProvider
from .providers.docker import DockerProvider
from .providers.git import GitProvider
from .providers.http import HttpFetcher
from .providers.npm import NpmProvider
from .providers.pipx import PipxProvider
from .providers.systemd import SystemdProvider
from .providers.xfconf import XfconfStore
from .tasks.models import ExecutionContext
from .templates import TemplateEngine

TEMPLATE_OVERRIDE_DIRNAME = "templates"


def template_override_dir(config: AppConfig) -> Path:
    """Return the directory whose templates shadow the built-in ones."""
    return config.config_file.parent / TEMPLATE_OVERRIDE_DIRNAME


def build_execution_context(
    config: AppConfig,
    identity: Identity,
    *,
    runner: CommandRunner | None = None,
    session_env: Mapping[str, str] | None = None,
    templates: TemplateEngine | None = None,
    http: HttpFetcher | None = None,
) -> ExecutionContext:
    """Wire providers from *config* around a single command runner."""
    runner = runner or CommandRunner(timeout=config.timeouts.command)
    session = dict(session_env or {})
    target = TargetExecutor(identity=identity, runner=runner, session_env=session)
    return ExecutionContext(
        identity=identity,
        config=config,
        runner=runner,
        target=target,
        templates=templates or TemplateEngine.with_overrides(template_override_dir(config)),
        http=http or HttpFetcher(timeout=config.timeouts.download),
        apt=AptProvider.from_config(runner, config.apt),
        git=GitProvider(target=target),
        xfconf=XfconfStore(target=target, xfconf_bin=config.desktop.xfconf_bin),
        systemd=SystemdProvider(runner=runner, systemctl_bin=config.systemd.systemctl_bin),
        pipx=PipxProvider(target=target),
        npm=NpmProvider(runner=runner),
        docker=DockerProvider(runner=runner),
        session_env=session,
    )


__all__ = ["build_execution_context", "template_override_dir"]
