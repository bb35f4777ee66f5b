"""Restricted shell interpreter over the virtual filesystem.

No host process is ever spawned: every command name is looked up in the
utility registry, a path to a script inside the sandbox, or reported as
"command not found". All file access goes through
:class:`~skillshell.vfs.VirtualFilesystem`, so confinement is enforced in a
single place.
"""

from __future__ import annotations

import posixpath
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..errors import NotFoundError, PathEscapeError, SandboxIOError, SkillShellError
from ..models import TIMEOUT_EXIT_CODE, CommandResult
from ..vfs import VirtualFilesystem, has_glob
from . import builtins, fileutils, textutils  # noqa: F401  (register utilities)
from .registry import (
    UTILITIES,
    CommandTimeout,
    ExitRequest,
    Output,
    UsageError,
    describe_error,
    read_text,
)
from .syntax import Command, CommandList, Part, Pipeline, Redirect, ShellSyntaxError, Word, parse

MAX_SCRIPT_DEPTH = 16

_FS_ERRORS = (NotFoundError, PathEscapeError, SandboxIOError)

# A sink is where one output stream ends up: ("out",), ("err",), ("null",) or ("file", path).
Sink = Tuple[str, ...]


@dataclass
class ShellContext:
    """Mutable state of one running command line or script."""

    vfs: VirtualFilesystem
    runner: "CommandInterpreter"
    cwd: str = "/"
    env: Dict[str, str] = field(default_factory=dict)
    positional: List[str] = field(default_factory=list)
    script_name: str = "sh"
    deadline: Optional[float] = None
    depth: int = 0
    last_status: int = 0

    def path(self, operand: str) -> str:
        """Resolve a command operand against the working directory."""
        return self.vfs.normalize(posixpath.join(self.cwd, operand))

    def fork(self) -> "ShellContext":
        return replace(self, env=dict(self.env), positional=list(self.positional))

    def child(self, positional: List[str], script_name: str) -> "ShellContext":
        forked = self.fork()
        forked.positional = list(positional)
        forked.script_name = script_name
        forked.depth = self.depth + 1
        return forked

    def check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise CommandTimeout()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        left = self.deadline - time.monotonic()
        if left <= 0:
            raise CommandTimeout()
        return left

    def sleep(self, seconds: float) -> None:
        end = time.monotonic() + seconds
        while True:
            self.check_deadline()
            remaining = end - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(remaining, 0.05))


@dataclass
class _Streams:
    out: List[str] = field(default_factory=list)
    err: List[str] = field(default_factory=list)


class CommandInterpreter:
    """Runs command lines against a :class:`VirtualFilesystem`."""

    def __init__(
        self,
        vfs: VirtualFilesystem,
        env: Optional[Dict[str, str]] = None,
        default_timeout: float = 30.0,
    ) -> None:
        self.vfs = vfs
        self.env = dict(env or {})
        self.default_timeout = default_timeout

    def execute(
        self,
        command_line: str,
        working_directory: str = "/",
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run ``command_line`` and capture its outcome.

        Failures never raise: syntax errors exit 2, unknown commands 127,
        file errors 1, and a passed deadline returns exit 124 with
        ``timed_out`` set.
        """
        limit = self.default_timeout if timeout is None else timeout
        deadline = time.monotonic() + limit if limit and limit > 0 else None
        streams = _Streams()
        timed_out = False
        logger.debug("Executing command: {command}", command=command_line)
        try:
            cwd = self.vfs.normalize(working_directory)
            ctx = ShellContext(
                vfs=self.vfs,
                runner=self,
                cwd=cwd,
                env=self._base_env(cwd, env),
                deadline=deadline,
            )
            status = self._run_list(parse(command_line), ctx, "", streams)
        except ShellSyntaxError as exc:
            streams.err.append(f"sh: syntax error: {exc}\n")
            status = 2
        except ExitRequest as exc:
            status = exc.status
        except CommandTimeout:
            streams.err.append(f"sh: command timed out after {limit:g}s\n")
            status = TIMEOUT_EXIT_CODE
            timed_out = True
        except RecursionError:
            streams.err.append("sh: maximum nesting depth exceeded\n")
            status = 1
        except SkillShellError as exc:
            streams.err.append(f"sh: {describe_error(exc)}\n")
            status = 1
        except Exception as exc:
            logger.exception("Unexpected interpreter failure for {command}", command=command_line)
            streams.err.append(f"sh: internal error: {exc}\n")
            status = 1
        result = CommandResult(
            stdout="".join(streams.out),
            stderr="".join(streams.err),
            exit_code=status,
            timed_out=timed_out,
        )
        logger.debug(
            "Command finished with exit code {code} (timed_out={timed_out})",
            code=result.exit_code,
            timed_out=timed_out,
        )
        return result

    def _base_env(self, cwd: str, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = {"HOME": "/", "PATH": "/bin:/usr/bin", "SHELL": "/bin/sh", "PWD": cwd}
        env.update(self.env)
        env.update(extra or {})
        return env

    def run_script(
        self,
        text: str,
        ctx: ShellContext,
        name: str,
        args: Optional[List[str]],
        stdin: str = "",
        share: bool = False,
    ) -> Output:
        """Run script text in a child context (or the caller's, for ``source``)."""
        if ctx.depth >= MAX_SCRIPT_DEPTH:
            return Output(stderr=f"{name}: maximum script nesting depth exceeded\n", status=1)
        try:
            items = parse(text)
        except ShellSyntaxError as exc:
            return Output(stderr=f"{name}: syntax error: {exc}\n", status=2)
        if share:
            scope = ctx
            saved = (ctx.positional, ctx.depth)
            if args is not None:
                ctx.positional = list(args)
            ctx.depth += 1
        else:
            scope = ctx.child(args or [], name)
        streams = _Streams()
        try:
            status = self._run_list(items, scope, stdin, streams)
        except ExitRequest as exc:
            status = exc.status
        finally:
            if share:
                ctx.positional, ctx.depth = saved
        return Output("".join(streams.out), "".join(streams.err), status)

    def _run_list(self, items: CommandList, ctx: ShellContext, stdin: str, streams: _Streams) -> int:
        status = ctx.last_status
        for connector, pipeline in items:
            ctx.check_deadline()
            if connector == "&&" and status != 0:
                continue
            if connector == "||" and status == 0:
                continue
            status = self._run_pipeline(pipeline, ctx, stdin, streams)
            ctx.last_status = status
        return status

    def _run_pipeline(
        self, pipeline: Pipeline, ctx: ShellContext, stdin: str, streams: _Streams
    ) -> int:
        commands = pipeline.commands
        if len(commands) == 1:
            return self._run_command(commands[0], ctx, stdin, streams)
        data = stdin
        status = 0
        for index, command in enumerate(commands):
            last = index == len(commands) - 1
            stage = _Streams(out=streams.out if last else [], err=streams.err)
            try:
                status = self._run_command(command, ctx.fork(), data, stage)
            except ExitRequest as exc:
                # exit inside a pipeline only ends that stage
                status = exc.status
            data = "".join(stage.out)
        return status

    def _run_command(
        self, command: Command, ctx: ShellContext, stdin: str, streams: _Streams
    ) -> int:
        ctx.check_deadline()
        argv = self._expand(command.words, ctx, streams)
        values = [(name, self._word_text(word, ctx, streams)) for name, word in command.assignments]

        plan = self._plan_redirects(command.redirects, ctx, stdin, streams)
        if plan is None:
            return 1
        sinks, input_text = plan

        if not argv:
            for name, value in values:
                ctx.env[name] = value
            return 0

        saved = {name: ctx.env.get(name) for name, _ in values}
        ctx.env.update(values)
        try:
            output = self._invoke(argv, ctx, input_text)
        finally:
            for name, previous in saved.items():
                if previous is None:
                    ctx.env.pop(name, None)
                else:
                    ctx.env[name] = previous

        try:
            self._emit(sinks[1], output.stdout, ctx, streams)
            self._emit(sinks[2], output.stderr, ctx, streams)
        except _FS_ERRORS as exc:
            streams.err.append(f"sh: {describe_error(exc)}\n")
            return 1
        return output.status

    def _plan_redirects(
        self, redirects: List[Redirect], ctx: ShellContext, stdin: str, streams: _Streams
    ) -> Optional[Tuple[Dict[int, Sink], str]]:
        """Open redirect targets in order; returns ``None`` after reporting a failure."""
        sinks: Dict[int, Sink] = {1: ("out",), 2: ("err",)}
        input_text = stdin
        for redirect in redirects:
            if redirect.mode == "dup":
                sinks[redirect.fd] = sinks[redirect.dup_to or 1]
                continue
            assert redirect.target is not None
            target = self._word_text(redirect.target, ctx, streams)
            try:
                if redirect.mode == "<":
                    input_text = "" if target == "/dev/null" else read_text(ctx, target)
                    continue
                if target == "/dev/null":
                    sink: Sink = ("null",)
                else:
                    path = ctx.path(target)
                    if ctx.vfs.is_dir(path):
                        raise SandboxIOError(path, "Is a directory")
                    if redirect.mode == ">":
                        ctx.vfs.write_file(path, b"")
                    elif not ctx.vfs.exists(path):
                        ctx.vfs.write_file(path, b"")
                    sink = ("file", path)
            except _FS_ERRORS as exc:
                streams.err.append(f"sh: {target}: {describe_error(exc)}\n")
                return None
            for fd in (1, 2) if redirect.fd == -1 else (redirect.fd,):
                sinks[fd] = sink
        return sinks, input_text

    def _emit(self, sink: Sink, text: str, ctx: ShellContext, streams: _Streams) -> None:
        if not text:
            return
        kind = sink[0]
        if kind == "out":
            streams.out.append(text)
        elif kind == "err":
            streams.err.append(text)
        elif kind == "file":
            ctx.vfs.append_file(sink[1], text)

    def _invoke(self, argv: List[str], ctx: ShellContext, stdin: str) -> Output:
        name = argv[0]
        func = UTILITIES.get(name)
        try:
            if func is not None:
                return func(ctx, argv, stdin)
            if "/" in name:
                return self._run_file(argv, ctx, stdin)
            return Output(stderr=f"{name}: command not found\n", status=127)
        except UsageError as exc:
            return Output(stderr=f"{name}: {exc}\n", status=2)
        except SkillShellError as exc:
            return Output(stderr=f"{name}: {describe_error(exc)}\n", status=1)

    def _run_file(self, argv: List[str], ctx: ShellContext, stdin: str) -> Output:
        name = argv[0]
        path = ctx.path(name)
        if not ctx.vfs.exists(path):
            return Output(stderr=f"sh: {name}: No such file or directory\n", status=127)
        if ctx.vfs.is_dir(path):
            return Output(stderr=f"sh: {name}: Is a directory\n", status=126)
        return self.run_script(read_text(ctx, name), ctx, name, argv[1:], stdin)

    def _expand(self, words: List[Word], ctx: ShellContext, streams: _Streams) -> List[str]:
        argv: List[str] = []
        for word in words:
            parts = word.parts
            if len(parts) == 1 and parts[0].kind == "var" and parts[0].value in ("@", "*"):
                argv.extend(ctx.positional)
                continue
            if len(parts) == 1 and parts[0].kind != "lit" and not parts[0].quoted:
                # Field splitting applies only to a bare $VAR or $(...).
                argv.extend(self._part_value(parts[0], ctx, streams).split())
                continue
            text, pattern, globbing = self._assemble(parts, ctx, streams)
            if globbing:
                try:
                    matches = self.vfs.glob(pattern, ctx.cwd)
                except SkillShellError:
                    matches = []
                if matches:
                    argv.extend(matches)
                    continue
            if text or any(part.quoted for part in parts):
                argv.append(text)
        return argv

    def _assemble(
        self, parts: List[Part], ctx: ShellContext, streams: _Streams
    ) -> Tuple[str, str, bool]:
        """Return the word text, its glob pattern and whether it needs globbing."""
        text: List[str] = []
        pattern: List[str] = []
        globbing = False
        for index, part in enumerate(parts):
            value = self._part_value(part, ctx, streams)
            if index == 0 and part.kind == "lit" and not part.quoted:
                if value == "~" or value.startswith("~/"):
                    value = ctx.env.get("HOME", "/").rstrip("/") + value[1:] or "/"
            text.append(value)
            if part.kind == "lit" and not part.quoted and has_glob(value):
                globbing = True
                pattern.append(value)
            else:
                pattern.append(
                    value.replace("[", "[[]").replace("*", "[*]").replace("?", "[?]")
                )
        return "".join(text), "".join(pattern), globbing

    def _word_text(self, word: Word, ctx: ShellContext, streams: _Streams) -> str:
        return "".join(self._part_value(part, ctx, streams) for part in word.parts)

    def _part_value(self, part: Part, ctx: ShellContext, streams: _Streams) -> str:
        if part.kind == "lit":
            return part.value
        if part.kind == "cmd":
            return self._substitute(part.value, ctx, streams)
        name = part.value
        if name == "?":
            return str(ctx.last_status)
        if name == "#":
            return str(len(ctx.positional))
        if name in ("@", "*"):
            return " ".join(ctx.positional)
        if name == "$":
            return "1"
        if name == "0":
            return ctx.script_name
        if name.isdigit():
            index = int(name)
            return ctx.positional[index - 1] if index <= len(ctx.positional) else ""
        return ctx.env.get(name, "")

    def _substitute(self, text: str, ctx: ShellContext, streams: _Streams) -> str:
        inner = _Streams(err=streams.err)
        scope = ctx.fork()
        try:
            status = self._run_list(parse(text), scope, "", inner)
        except ExitRequest as exc:
            status = exc.status
        ctx.last_status = status
        return "".join(inner.out).rstrip("\n")


def available_commands() -> List[str]:
    return sorted(UTILITIES)
