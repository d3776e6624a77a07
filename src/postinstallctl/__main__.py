"""Allow ``python -m postinstallctl`` (used when re-executing under sudo)."""
from __future__ import annotations

from .cli import main

main()
