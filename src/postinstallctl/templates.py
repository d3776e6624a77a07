"""Jinja2 rendering for the configuration snippets postinstallctl writes."""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, StrictUndefined

BUILTIN_PACKAGE = "postinstallctl"
BUILTIN_DIRECTORY = "templates"


@dataclass(slots=True)
class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates found in *override_dir*."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader(BUILTIN_PACKAGE, BUILTIN_DIRECTORY))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render template *name* with *context*."""
        template = self.environment.get_template(name)
        return template.render(**dict(context))

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *name* into *destination*; return ``True`` when content changed."""
        rendered = self.render_to_string(name, context)
        destination = Path(destination)
        if destination.exists():
            current = destination.read_text(encoding="utf-8")
            if current == rendered:
                if (destination.stat().st_mode & 0o777) != mode:
                    destination.chmod(mode)
                return False

        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", dir=destination.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, destination)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return True


__all__ = ["TemplateEngine"]
