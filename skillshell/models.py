"""Data models shared between the registry, sandbox bridge and tool layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Union

TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class SandboxFile:
    """A file to materialize inside the sandbox.

    ``path`` is relative to the bridge's destination (no leading slash).
    """

    path: str
    content: Union[bytes, str]

    def as_bytes(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command line."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SkillSummary:
    """Name and description advertised to the agent up front."""

    name: str
    description: str
