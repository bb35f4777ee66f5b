"""Utility registry and the helpers shared by every sandbox utility.

A utility is a plain function ``(ctx, argv, stdin) -> Output``. ``argv[0]``
is the name it was invoked under. Utilities never raise for ordinary
failures: they report them in ``Output.stderr`` with a nonzero status. Bad
flags raise :class:`UsageError`, which the interpreter turns into exit 2.
"""

from __future__ import annotations

import getopt
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Sequence, Tuple

from ..errors import NotFoundError, PathEscapeError, SandboxIOError

if TYPE_CHECKING:
    from .interpreter import ShellContext


@dataclass
class Output:
    stdout: str = ""
    stderr: str = ""
    status: int = 0


class UsageError(Exception):
    """Invalid flags or operands."""


class ExitRequest(Exception):
    """Raised by ``exit`` to stop the current script or command line."""

    def __init__(self, status: int) -> None:
        super().__init__(status)
        self.status = status & 0xFF


class CommandTimeout(Exception):
    """Raised when the per-call deadline has passed."""


Utility = Callable[["ShellContext", List[str], str], Output]

UTILITIES: Dict[str, Utility] = {}


def utility(*names: str) -> Callable[[Utility], Utility]:
    """Register a function under one or more command names."""

    def register(func: Utility) -> Utility:
        for name in names:
            UTILITIES[name] = func
        return func

    return register


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, NotFoundError):
        return "No such file or directory"
    if isinstance(exc, SandboxIOError):
        return exc.reason
    if isinstance(exc, PathEscapeError):
        return "Permission denied (outside sandbox root)"
    return str(exc)


def options(
    args: Sequence[str], shortopts: str, longopts: Iterable[str] = ()
) -> Tuple[Dict[str, List[str]], List[str]]:
    """Parse GNU-style flags; returns ``({flag: [values]}, operands)``."""
    try:
        pairs, operands = getopt.gnu_getopt(list(args), shortopts, list(longopts))
    except getopt.GetoptError as exc:
        raise UsageError(str(exc)) from exc
    parsed: Dict[str, List[str]] = {}
    for flag, value in pairs:
        parsed.setdefault(flag, []).append(value)
    return parsed, operands


def int_option(parsed: Dict[str, List[str]], flag: str, default: int) -> int:
    if flag not in parsed:
        return default
    value = parsed[flag][-1]
    try:
        return int(value)
    except ValueError:
        raise UsageError(f"invalid number: '{value}'") from None


def read_text(ctx: "ShellContext", operand: str) -> str:
    return ctx.vfs.read_file(ctx.path(operand)).decode("utf-8", errors="replace")


def gather(
    ctx: "ShellContext", name: str, operands: Sequence[str], stdin: str
) -> Tuple[List[Tuple[str, str]], List[str]]:
    """Read every operand (``-`` or none means stdin).

    Returns ``(label, text)`` pairs for the readable inputs and one error
    line per unreadable operand.
    """
    if not operands:
        return [("-", stdin)], []
    sources: List[Tuple[str, str]] = []
    errors: List[str] = []
    for operand in operands:
        if operand == "-":
            sources.append(("-", stdin))
            continue
        try:
            sources.append((operand, read_text(ctx, operand)))
        except (NotFoundError, SandboxIOError, PathEscapeError) as exc:
            errors.append(f"{name}: {operand}: {describe_error(exc)}\n")
    return sources, errors


def split_lines(text: str) -> List[str]:
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def join_lines(lines: Iterable[str]) -> str:
    return "".join(line + "\n" for line in lines)


def finish(errors: Sequence[str], stdout: str = "", failure: int = 1) -> Output:
    return Output(stdout, "".join(errors), failure if errors else 0)
