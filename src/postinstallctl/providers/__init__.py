"""Provider interfaces for postinstallctl."""
from __future__ import annotations

from .apt import NONINTERACTIVE_ENV, AptError, AptProvider
from .docker import DockerProvider
from .git import GitProvider
from .http import HttpError, HttpFetcher
from .npm import NpmProvider
from .pipx import PipxProvider
from .systemd import SystemdError, SystemdProvider
from .xfconf import XfconfStore

__all__ = [
    "AptError",
    "AptProvider",
    "DockerProvider",
    "GitProvider",
    "HttpError",
    "HttpFetcher",
    "NONINTERACTIVE_ENV",
    "NpmProvider",
    "PipxProvider",
    "SystemdError",
    "SystemdProvider",
    "XfconfStore",
]
