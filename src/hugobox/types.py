"""Data models for hugobox."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path


@dataclass(frozen=True)
class BindMount:
    source: str  # Host path, already rewritten for the engine
    target: str  # Absolute path inside the container
    readonly: bool = False


@dataclass(frozen=True)
class RunSpec:
    """How to launch the workload. Built once at startup, reused on every restart."""

    image: str
    command: tuple[str, ...]
    interactive: bool
    mounts: tuple[BindMount, ...]
    host_port: int
    container_port: int
    host_ip: str = "0.0.0.0"
    tty: bool = False
    entrypoint: str | None = None

    @property
    def port_spec(self) -> str:
        return f"{self.container_port}/tcp"


@dataclass
class ContainerHandle:
    """The running instance plus its attachment state.

    ``name`` is assigned before the engine create call, so the instance can
    be removed by name even if the create was interrupted; ``container_id``
    is filled in once the engine reports it.
    """

    name: str
    container_id: str | None = None
    attached: bool = False
    retired: bool = False
    attach_process: asyncio.subprocess.Process | None = field(default=None, repr=False)

    @property
    def ref(self) -> str:
        """Identifier to pass to the engine CLI."""
        return self.container_id or self.name


class ChangeKind(StrEnum):
    WRITE = "write"
    CREATE = "create"
    REMOVE = "remove"
    OTHER = "other"

    @property
    def reload_worthy(self) -> bool:
        return self is not ChangeKind.OTHER


@dataclass(frozen=True)
class ChangeEvent:
    """A reload-worthy filesystem change forwarded by the detector."""

    path: Path
    kind: ChangeKind
    at: datetime
