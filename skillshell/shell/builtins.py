"""Shell builtins: output, control flow, variables, tests and script execution."""

from __future__ import annotations

import posixpath
import re
from typing import TYPE_CHECKING, List

from ..errors import NotFoundError, PathEscapeError, SandboxIOError, SkillShellError
from .registry import ExitRequest, Output, UsageError, describe_error, read_text, utility

if TYPE_CHECKING:
    from .interpreter import ShellContext


ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}

_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_FORMAT_RE = re.compile(r"%([-+ 0#]*\d*(?:\.\d+)?)([sdifxc%])")
_VAR_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def unescape(text: str) -> str:
    return _ESCAPE_RE.sub(lambda m: ESCAPES.get(m.group(1), "\\" + m.group(1)), text)


@utility("echo")
def echo(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    args = argv[1:]
    newline = True
    escapes = False
    while args and re.fullmatch(r"-[neE]+", args[0]):
        flags = args[0][1:]
        newline = newline and "n" not in flags
        if "e" in flags:
            escapes = True
        if "E" in flags:
            escapes = False
        args = args[1:]
    text = " ".join(args)
    if escapes:
        text = unescape(text)
    return Output(text + ("\n" if newline else ""))


@utility("printf")
def printf(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    if len(argv) < 2:
        raise UsageError("usage: printf format [arguments]")
    template = unescape(argv[1])
    values = list(argv[2:])
    errors: List[str] = []
    chunks: List[str] = []

    def number(value: str, kind: type) -> float:
        try:
            return kind(value or 0)
        except ValueError:
            errors.append(f"printf: '{value}': invalid number\n")
            return kind(0)

    while True:
        used = 0

        def convert(match: "re.Match[str]") -> str:
            nonlocal used
            spec, kind = match.groups()
            if kind == "%":
                return "%"
            value = values[used] if used < len(values) else ""
            used += 1
            if kind in "di":
                return ("%" + spec + "d") % number(value, int)
            if kind == "x":
                return ("%" + spec + "x") % number(value, int)
            if kind == "f":
                return ("%" + spec + "f") % number(value, float)
            if kind == "c":
                return value[:1]
            return ("%" + spec + "s") % value

        chunks.append(_FORMAT_RE.sub(convert, template))
        values = values[used:]
        if not values or used == 0:
            break
    return Output("".join(chunks), "".join(errors), 1 if errors else 0)


@utility("true", ":")
def true(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    return Output()


@utility("false")
def false(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    return Output(status=1)


@utility("exit")
def exit_(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    if len(argv) < 2:
        raise ExitRequest(ctx.last_status)
    try:
        raise ExitRequest(int(argv[1]))
    except ValueError:
        raise UsageError(f"{argv[1]}: numeric argument required") from None


@utility("export")
def export(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    errors = []
    for arg in argv[1:]:
        name, sep, value = arg.partition("=")
        if not _VAR_NAME_RE.fullmatch(name):
            errors.append(f"export: `{arg}': not a valid identifier\n")
            continue
        if sep:
            ctx.env[name] = value
        else:
            ctx.env.setdefault(name, "")
    return Output(stderr="".join(errors), status=1 if errors else 0)


@utility("unset")
def unset(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    for name in argv[1:]:
        ctx.env.pop(name, None)
    return Output()


@utility("sleep")
def sleep(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    if len(argv) != 2:
        raise UsageError("usage: sleep SECONDS")
    match = re.fullmatch(r"(\d+(?:\.\d+)?)([smh]?)", argv[1])
    if not match:
        raise UsageError(f"invalid time interval '{argv[1]}'")
    seconds = float(match.group(1)) * {"": 1, "s": 1, "m": 60, "h": 3600}[match.group(2)]
    ctx.sleep(seconds)
    return Output()


@utility("pwd")
def pwd(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    return Output(ctx.cwd + "\n")


@utility("cd")
def cd(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    target = argv[1] if len(argv) > 1 else ctx.env.get("HOME", "/")
    path = ctx.path(target)
    if not ctx.vfs.exists(path):
        return Output(stderr=f"cd: {target}: No such file or directory\n", status=1)
    if not ctx.vfs.is_dir(path):
        return Output(stderr=f"cd: {target}: Not a directory\n", status=1)
    ctx.cwd = path
    ctx.env["PWD"] = path
    return Output()


@utility("basename")
def basename(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    if len(argv) < 2:
        raise UsageError("missing operand")
    name = posixpath.basename(argv[1].rstrip("/")) or "/"
    if len(argv) > 2 and name != argv[2] and name.endswith(argv[2]):
        name = name[: -len(argv[2])]
    return Output(name + "\n")


@utility("dirname")
def dirname(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    if len(argv) < 2:
        raise UsageError("missing operand")
    path = argv[1].rstrip("/") or "/"
    parent = posixpath.dirname(path) or "."
    return Output(parent + "\n")


def _file_test(ctx: "ShellContext", op: str, operand: str) -> bool:
    try:
        path = ctx.path(operand)
        if not ctx.vfs.exists(path):
            return False
        if op == "-f":
            return ctx.vfs.is_file(path)
        if op == "-d":
            return ctx.vfs.is_dir(path)
        if op == "-s":
            return ctx.vfs.stat(path).size > 0
        return True
    except SkillShellError:
        return False


def _integer(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise UsageError(f"{value}: integer expression expected") from None


def evaluate_test(ctx: "ShellContext", args: List[str]) -> bool:
    if not args:
        return False
    if args[0] == "!":
        return not evaluate_test(ctx, args[1:])
    if len(args) == 1:
        return args[0] != ""
    if len(args) == 2:
        op, operand = args
        if op == "-z":
            return operand == ""
        if op == "-n":
            return operand != ""
        if op in ("-e", "-f", "-d", "-s", "-r", "-w", "-x"):
            return _file_test(ctx, op, operand)
        raise UsageError(f"{op}: unary operator expected")
    if len(args) == 3:
        left, op, right = args
        if op in ("=", "=="):
            return left == right
        if op == "!=":
            return left != right
        comparisons = {
            "-eq": lambda a, b: a == b,
            "-ne": lambda a, b: a != b,
            "-lt": lambda a, b: a < b,
            "-le": lambda a, b: a <= b,
            "-gt": lambda a, b: a > b,
            "-ge": lambda a, b: a >= b,
        }
        if op in comparisons:
            return comparisons[op](_integer(left), _integer(right))
        raise UsageError(f"{op}: binary operator expected")
    raise UsageError("too many arguments")


@utility("test", "[")
def test(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    args = argv[1:]
    if argv[0] == "[":
        if not args or args[-1] != "]":
            raise UsageError("missing `]'")
        args = args[:-1]
    return Output(status=0 if evaluate_test(ctx, args) else 1)


@utility("sh", "bash")
def sh(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    args = argv[1:]
    while args and re.fullmatch(r"-[eux]+", args[0]):
        args = args[1:]
    if args and args[0] == "-c":
        if len(args) < 2:
            raise UsageError("-c: option requires an argument")
        name = args[2] if len(args) > 2 else argv[0]
        return ctx.runner.run_script(args[1], ctx, name, args[3:], stdin)
    if not args:
        return ctx.runner.run_script(stdin, ctx, argv[0], [], "")
    script = args[0]
    try:
        text = read_text(ctx, script)
    except (NotFoundError, SandboxIOError, PathEscapeError) as exc:
        return Output(stderr=f"{argv[0]}: {script}: {describe_error(exc)}\n", status=127)
    return ctx.runner.run_script(text, ctx, script, args[1:], stdin)


@utility("source", ".")
def source(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    if len(argv) < 2:
        raise UsageError("filename argument required")
    text = read_text(ctx, argv[1])
    return ctx.runner.run_script(text, ctx, argv[1], None, stdin, share=True)
