"""Tool exposer: the operations an agent may call.

Four tools are exposed: ``skill`` (load a skill's instructions), ``bash``
(run a command in the sandbox), ``readFile`` and ``writeFile``. Arguments
are validated with pydantic before anything reaches the sandbox. Per-turn
failures come back as ``{"error": ...}`` results so the agent can adapt;
only malformed calls and misuse of the toolset raise.
"""

from __future__ import annotations

import enum
import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .bridge import Sandbox, ShellSandbox
from .errors import SkillShellError, ToolsetNotReadyError, ToolValidationError
from .models import SandboxFile
from .shell import CommandInterpreter
from .skills import SkillDiscovery, discover
from .vfs import VirtualFilesystem

DEFAULT_MAX_OUTPUT_CHARS = 30_000


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SkillArgs(_Args):
    skillName: str = Field(min_length=1, description="Name of the skill to load.")


class BashArgs(_Args):
    command: str = Field(min_length=1, description="Shell command line to run in the sandbox.")


class ReadFileArgs(_Args):
    path: str = Field(min_length=1, description="Path of the file to read.")


class WriteFileArgs(_Args):
    path: str = Field(min_length=1, description="Path of the file to write.")
    content: str = Field(description="Full file content.")


@dataclass(frozen=True)
class ToolDefinition:
    """A single tool definition for LLM consumption.

    Attributes:
        name: Tool name as the model sees it.
        description: When and why to use the tool.
        args_model: pydantic model validating the arguments.
        handler: Callable taking the validated model and returning a JSON-able dict.
    """

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable[[Any], Dict[str, Any]]

    @property
    def parameters(self) -> Dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


class ToolsetState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    INVOKED = "invoked"


def truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} characters]"


class Toolset:
    """Skill, bash and file tools bound to one sandbox and one discovery result."""

    def __init__(
        self,
        sandbox: Sandbox,
        discovery: SkillDiscovery,
        destination: str = "/",
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        self.sandbox = sandbox
        self.discovery = discovery
        self.destination = destination
        self.max_output_chars = max_output_chars
        self.state = ToolsetState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._tools: Dict[str, ToolDefinition] = {
            tool.name: tool
            for tool in (
                ToolDefinition(
                    name="skill",
                    description=self._skill_description(),
                    args_model=SkillArgs,
                    handler=self._load_skill,
                ),
                ToolDefinition(
                    name="bash",
                    description=self._bash_description(),
                    args_model=BashArgs,
                    handler=self._bash,
                ),
                ToolDefinition(
                    name="readFile",
                    description="Read a text file from the sandbox.",
                    args_model=ReadFileArgs,
                    handler=self._read_file,
                ),
                ToolDefinition(
                    name="writeFile",
                    description="Write a text file into the sandbox, creating parent directories.",
                    args_model=WriteFileArgs,
                    handler=self._write_file,
                ),
            )
        }

    def _bash_description(self) -> str:
        return (
            "Run a command line in the sandboxed shell. Supports pipes, "
            "redirects, &&, || and common text utilities (cat, ls, grep, "
            "sed, sort, cut, head, tail, wc, find and more). Skill files "
            f"live under {self.discovery.root(self.destination)}/<skill-name>/."
        )

    def _skill_description(self) -> str:
        names = ", ".join(skill.name for skill in self.discovery.skills) or "none"
        return (
            "Load a skill's full instructions and file list by name. "
            f"Available skills: {names}."
        )

    @property
    def instructions(self) -> str:
        """Describe the sandbox layout and every available skill for a system prompt."""
        return (
            f"Skills live in {self.discovery.root(self.destination)}/<skill-name>/.\n"
            f"All file operations happen in the working directory {self.destination}.\n\n"
            + self.discovery.instructions(self.destination)
        )

    def definitions(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def prepare(self) -> List[str]:
        """Upload the discovered skill files and move to READY."""
        with self._state_lock:
            if self.state is not ToolsetState.UNINITIALIZED:
                raise ToolsetNotReadyError(f"Toolset already prepared (state: {self.state.value})")
        written = self.sandbox.write_files(self.discovery.files)
        with self._state_lock:
            self.state = ToolsetState.READY
        logger.info("Toolset ready with {count} uploaded file(s)", count=len(written))
        return written

    def invoke(self, name: str, arguments: Union[Dict[str, Any], str, None]) -> Dict[str, Any]:
        """Validate ``arguments`` and run the named tool."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolValidationError(name, f"unknown tool (expected one of {sorted(self._tools)})")
        args = self._validate(tool, arguments)

        with self._state_lock:
            if self.state is not ToolsetState.READY:
                raise ToolsetNotReadyError(
                    f"Cannot invoke '{name}' while toolset is {self.state.value}"
                )
            self.state = ToolsetState.INVOKED
        try:
            logger.debug("Invoking tool {tool} with {args}", tool=name, args=args.model_dump())
            return tool.handler(args)
        finally:
            with self._state_lock:
                self.state = ToolsetState.READY

    def _validate(self, tool: ToolDefinition, arguments: Union[Dict[str, Any], str, None]) -> BaseModel:
        if arguments is None:
            arguments = {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as exc:
                raise ToolValidationError(tool.name, f"arguments are not valid JSON: {exc}") from exc
        if not isinstance(arguments, dict):
            raise ToolValidationError(tool.name, "arguments must be a JSON object")
        try:
            return tool.args_model.model_validate(arguments)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc']) or 'arguments'}: {error['msg']}"
                for error in exc.errors()
            )
            raise ToolValidationError(tool.name, problems) from exc

    def _load_skill(self, args: SkillArgs) -> Dict[str, Any]:
        manifest = self.discovery.get(args.skillName)
        if manifest is None:
            available = ", ".join(skill.name for skill in self.discovery.skills) or "none"
            return {"error": f"Skill '{args.skillName}' not found. Available skills: {available}"}
        return {
            "name": manifest.name,
            "location": self.discovery.location(manifest.name, self.destination),
            "instructions": manifest.instructions,
            "files": list(manifest.files),
        }

    def _bash(self, args: BashArgs) -> Dict[str, Any]:
        result = self.sandbox.execute_command(args.command).to_dict()
        result["stdout"] = truncate(result["stdout"], self.max_output_chars)
        result["stderr"] = truncate(result["stderr"], self.max_output_chars)
        return result

    def _read_file(self, args: ReadFileArgs) -> Dict[str, Any]:
        try:
            data = self.sandbox.read_file(args.path)
        except SkillShellError as exc:
            return {"error": str(exc)}
        content = data.decode("utf-8", errors="replace")
        return {"path": args.path, "content": truncate(content, self.max_output_chars)}

    def _write_file(self, args: WriteFileArgs) -> Dict[str, Any]:
        try:
            written = self.sandbox.write_files([SandboxFile(args.path, args.content)])
        except SkillShellError as exc:
            return {"error": str(exc)}
        return {"path": written[0] if written else args.path, "success": True}


def create_skill_toolset(
    skills_directory: Union[str, Path],
    workspace: Union[str, Path],
    destination: str = "/",
    timeout: Optional[float] = 30.0,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
) -> Toolset:
    """Discover skills, build the sandbox over ``workspace`` and upload the skills.

    Setup errors (missing skills directory, ambiguous skill names, path escapes,
    failed uploads) propagate; the returned toolset is READY.
    """
    vfs = VirtualFilesystem(workspace)
    interpreter = CommandInterpreter(vfs, default_timeout=timeout or 0)
    sandbox = ShellSandbox(interpreter, destination=destination, timeout=timeout)
    discovery = discover(skills_directory)
    toolset = Toolset(
        sandbox,
        discovery,
        destination=sandbox.destination,
        max_output_chars=max_output_chars,
    )
    toolset.prepare()
    return toolset
