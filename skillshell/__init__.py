"""Top-level package for Skill Shell.

Skill Shell turns a directory of skill bundles (``SKILL.md`` plus scripts)
into tools an agent can call against an isolated, emulated shell.

High-level data flow:
- Discover skills once at startup → upload their files into the sandbox
- Expose ``skill``, ``bash``, ``readFile`` and ``writeFile`` tools
- An agent loop calls one tool at a time until the model is done
"""

from __future__ import annotations

from .bridge import Sandbox, ShellSandbox
from .errors import (
    AmbiguousSkillError,
    NotFoundError,
    PathEscapeError,
    SandboxIOError,
    SkillShellError,
    ToolsetNotReadyError,
    ToolValidationError,
    UploadError,
)
from .models import CommandResult, SandboxFile, SkillSummary
from .shell import CommandInterpreter
from .skills import SkillDiscovery, SkillManifest, discover
from .tools import ToolDefinition, Toolset, ToolsetState, create_skill_toolset
from .vfs import VirtualFilesystem


__all__ = [
    "AmbiguousSkillError",
    "CommandInterpreter",
    "CommandResult",
    "NotFoundError",
    "PathEscapeError",
    "Sandbox",
    "SandboxFile",
    "SandboxIOError",
    "ShellSandbox",
    "SkillDiscovery",
    "SkillManifest",
    "SkillShellError",
    "SkillSummary",
    "ToolDefinition",
    "ToolValidationError",
    "Toolset",
    "ToolsetNotReadyError",
    "ToolsetState",
    "UploadError",
    "VirtualFilesystem",
    "create_skill_toolset",
    "discover",
]
