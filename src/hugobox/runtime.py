"""Container runtime reachability.

Docker is the default; any CLI that speaks the same subcommands (podman)
can be selected through ``[engine] cli``. Before any container work the
daemon must answer ``<cli> info``; otherwise :class:`EngineUnavailable`
is raised and the process exits non-zero.
"""

from __future__ import annotations

import shutil
import subprocess
import sys
import time
from dataclasses import dataclass

from hugobox.logger import logger


class EngineUnavailable(RuntimeError):
    """The container engine endpoint cannot be reached at all."""


@dataclass(frozen=True)
class ContainerRuntime:
    """Runtime adapter for a docker-compatible CLI."""

    cli: str = "docker"

    @property
    def name(self) -> str:
        return self.cli.rsplit("/", 1)[-1]

    def is_available(self) -> bool:
        return shutil.which(self.cli) is not None

    def ensure_running(self) -> None:
        if not self.is_available():
            raise EngineUnavailable(f"{self.cli} is not installed or not on PATH")
        try:
            subprocess.run(
                [self.cli, "info"],
                capture_output=True,
                check=True,
                timeout=30,
            )
            logger.debug("Container engine is running", runtime=self.name)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
            if sys.platform == "darwin" and self.name == "docker":
                self._start_docker_desktop(exc)
            else:
                raise EngineUnavailable(
                    f"{self.name} is required but not running. "
                    f"Start with: sudo systemctl start {self.name}"
                ) from exc

    # ------------------------------------------------------------------

    def _start_docker_desktop(self, original_exc: Exception) -> None:
        """Attempt to launch Docker Desktop on macOS and wait for the daemon."""
        logger.info("Docker not running, attempting to start Docker Desktop...")
        try:
            subprocess.run(
                ["open", "-a", "Docker"],
                capture_output=True,
                check=True,
            )
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            raise EngineUnavailable(
                "Docker Desktop is required but could not be started. "
                "Install from https://www.docker.com/products/docker-desktop/"
            ) from exc

        for i in range(30):
            try:
                subprocess.run(
                    [self.cli, "info"],
                    capture_output=True,
                    check=True,
                )
                logger.info("Docker Desktop started successfully")
                return
            except (subprocess.CalledProcessError, FileNotFoundError):
                if i % 5 == 0:
                    logger.info("Waiting for Docker Desktop to start...")
                time.sleep(2)

        raise EngineUnavailable(
            "Docker Desktop was launched but the daemon did not become ready "
            "within 60s. Check Docker Desktop for errors."
        ) from original_exc
