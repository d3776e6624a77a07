"""Docker image pulls and group membership."""
from __future__ import annotations

from dataclasses import dataclass

from ..command import CommandRunner


@dataclass(slots=True)
class DockerProvider:
    """Thin wrapper over the docker CLI."""

    runner: CommandRunner
    docker_bin: str = "docker"

    def available(self) -> bool:
        """Return ``True`` when the docker CLI answers."""
        return self.runner.succeeds([self.docker_bin, "--version"])

    def has_image(self, image: str) -> bool:
        """Return ``True`` when *image* is present locally."""
        return self.runner.succeeds([self.docker_bin, "image", "inspect", image])

    def pull(self, image: str) -> None:
        """Pull *image*."""
        self.runner.run([self.docker_bin, "pull", image])


__all__ = ["DockerProvider"]
