"""File utilities: cat, ls, mkdir, touch, rm, cp, mv, tee, find."""

from __future__ import annotations

import fnmatch
import posixpath
import time
from typing import TYPE_CHECKING, List, Optional

from ..errors import NotFoundError, PathEscapeError, SandboxIOError
from .registry import (
    Output,
    UsageError,
    describe_error,
    finish,
    gather,
    join_lines,
    options,
    split_lines,
    utility,
)

if TYPE_CHECKING:
    from .interpreter import ShellContext

_FS_ERRORS = (NotFoundError, PathEscapeError, SandboxIOError)


@utility("cat")
def cat(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "n")
    sources, errors = gather(ctx, "cat", operands, stdin)
    text = "".join(body for _, body in sources)
    if "-n" in parsed:
        lines = split_lines(text)
        text = join_lines(f"{number:>6}\t{line}" for number, line in enumerate(lines, 1))
    return finish(errors, text)


def _long_entry(ctx: "ShellContext", path: str, name: str) -> str:
    info = ctx.vfs.stat(path)
    kind = "d" if info.is_dir else "-"
    perms = "rwxr-xr-x" if info.is_dir else "rw-r--r--"
    stamp = time.strftime("%b %d %H:%M", time.localtime(info.mtime))
    return f"{kind}{perms} 1 user user {info.size:>8} {stamp} {name}"


@utility("ls")
def ls(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "aAl1")
    show_all = "-a" in parsed
    almost_all = "-A" in parsed
    long_format = "-l" in parsed
    targets = operands or ["."]
    errors: List[str] = []
    files: List[str] = []
    directories: List[str] = []
    for target in targets:
        try:
            path = ctx.path(target)
            if not ctx.vfs.exists(path):
                raise NotFoundError(path)
        except _FS_ERRORS as exc:
            errors.append(f"ls: cannot access '{target}': {describe_error(exc)}\n")
            continue
        (directories if ctx.vfs.is_dir(path) else files).append(target)

    def render(path: str, names: List[str]) -> List[str]:
        if not long_format:
            return names
        return [_long_entry(ctx, posixpath.join(path, name), name) for name in names]

    blocks: List[str] = []
    if files:
        blocks.append(
            join_lines(
                _long_entry(ctx, ctx.path(name), name) if long_format else name
                for name in files
            )
        )
    for target in directories:
        path = ctx.path(target)
        names = ctx.vfs.list_dir(path)
        if not (show_all or almost_all):
            names = [name for name in names if not name.startswith(".")]
        if show_all:
            names = [".", ".."] + names
        body = join_lines(render(path, names))
        if len(targets) > 1:
            body = f"{target}:\n{body}"
        blocks.append(body)
    return finish(errors, "\n".join(blocks), failure=2)


@utility("mkdir")
def mkdir(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "p")
    if not operands:
        raise UsageError("missing operand")
    parents = "-p" in parsed
    errors = []
    for operand in operands:
        try:
            path = ctx.path(operand)
            if ctx.vfs.exists(path):
                if parents and ctx.vfs.is_dir(path):
                    continue
                raise SandboxIOError(path, "File exists")
            ctx.vfs.make_dirs(path, parents=parents)
        except _FS_ERRORS as exc:
            errors.append(f"mkdir: cannot create directory '{operand}': {describe_error(exc)}\n")
    return finish(errors)


@utility("touch")
def touch(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    _, operands = options(argv[1:], "")
    if not operands:
        raise UsageError("missing file operand")
    errors = []
    for operand in operands:
        try:
            path = ctx.path(operand)
            if ctx.vfs.exists(path):
                ctx.vfs.resolve(path).touch()
            else:
                ctx.vfs.write_file(path, b"")
        except _FS_ERRORS as exc:
            errors.append(f"touch: cannot touch '{operand}': {describe_error(exc)}\n")
    return finish(errors)


@utility("rm")
def rm(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "rRf")
    recursive = "-r" in parsed or "-R" in parsed
    force = "-f" in parsed
    if not operands and not force:
        raise UsageError("missing operand")
    errors = []
    for operand in operands:
        try:
            path = ctx.path(operand)
            if not ctx.vfs.exists(path):
                if force:
                    continue
                raise NotFoundError(path)
            if ctx.vfs.is_dir(path) and not recursive:
                errors.append(f"rm: cannot remove '{operand}': Is a directory\n")
                continue
            ctx.vfs.remove(path, recursive=recursive)
        except _FS_ERRORS as exc:
            errors.append(f"rm: cannot remove '{operand}': {describe_error(exc)}\n")
    return finish(errors)


def _destination(ctx: "ShellContext", source: str, target: str, many: bool) -> str:
    if many or ctx.vfs.is_dir(target):
        return posixpath.join(target, posixpath.basename(source.rstrip("/")))
    return target


@utility("cp")
def cp(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "rRf")
    recursive = "-r" in parsed or "-R" in parsed
    if len(operands) < 2:
        raise UsageError("missing destination file operand")
    *sources, target_operand = operands
    target = ctx.path(target_operand)
    many = len(sources) > 1
    if many and not ctx.vfs.is_dir(target):
        return Output(stderr=f"cp: target '{target_operand}' is not a directory\n", status=1)
    errors = []
    for operand in sources:
        try:
            source = ctx.path(operand)
            if not ctx.vfs.exists(source):
                raise NotFoundError(source)
            destination = _destination(ctx, source, target, many)
            if ctx.vfs.is_dir(source):
                if not recursive:
                    errors.append(f"cp: -r not specified; omitting directory '{operand}'\n")
                    continue
                if destination == source or destination.startswith(source.rstrip("/") + "/"):
                    errors.append(
                        f"cp: cannot copy a directory, '{operand}', into itself\n"
                    )
                    continue
                for path, is_dir in list(ctx.vfs.walk(source)):
                    copied = destination + path[len(source):]
                    if is_dir:
                        ctx.vfs.make_dirs(copied)
                    else:
                        ctx.vfs.copy_file(path, copied)
            else:
                ctx.vfs.copy_file(source, destination)
        except _FS_ERRORS as exc:
            errors.append(f"cp: cannot copy '{operand}': {describe_error(exc)}\n")
    return finish(errors)


@utility("mv")
def mv(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    _, operands = options(argv[1:], "f")
    if len(operands) < 2:
        raise UsageError("missing destination file operand")
    *sources, target_operand = operands
    target = ctx.path(target_operand)
    many = len(sources) > 1
    if many and not ctx.vfs.is_dir(target):
        return Output(stderr=f"mv: target '{target_operand}' is not a directory\n", status=1)
    errors = []
    for operand in sources:
        try:
            source = ctx.path(operand)
            if not ctx.vfs.exists(source):
                raise NotFoundError(source)
            ctx.vfs.move(source, _destination(ctx, source, target, many))
        except _FS_ERRORS as exc:
            errors.append(f"mv: cannot move '{operand}': {describe_error(exc)}\n")
    return finish(errors)


@utility("tee")
def tee(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "a")
    errors = []
    for operand in operands:
        try:
            path = ctx.path(operand)
            if "-a" in parsed:
                ctx.vfs.append_file(path, stdin)
            else:
                ctx.vfs.write_file(path, stdin)
        except _FS_ERRORS as exc:
            errors.append(f"tee: {operand}: {describe_error(exc)}\n")
    return finish(errors, stdin)


class _FindQuery:
    def __init__(self, args: List[str]) -> None:
        self.name: Optional[str] = None
        self.insensitive = False
        self.kind: Optional[str] = None
        self.max_depth: Optional[int] = None
        self.min_depth = 0
        index = 0
        while index < len(args):
            flag = args[index]
            if flag == "-print":
                index += 1
                continue
            if index + 1 >= len(args):
                raise UsageError(f"missing argument to `{flag}'")
            value = args[index + 1]
            if flag in ("-name", "-iname"):
                self.name = value
                self.insensitive = flag == "-iname"
            elif flag == "-type":
                if value not in ("f", "d"):
                    raise UsageError(f"Unknown argument to -type: {value}")
                self.kind = value
            elif flag in ("-maxdepth", "-mindepth"):
                try:
                    depth = int(value)
                except ValueError:
                    raise UsageError(f"invalid depth '{value}'") from None
                if flag == "-maxdepth":
                    self.max_depth = depth
                else:
                    self.min_depth = depth
            else:
                raise UsageError(f"unknown predicate `{flag}'")
            index += 2

    def matches(self, name: str, is_dir: bool, depth: int) -> bool:
        if depth < self.min_depth:
            return False
        if self.kind == "f" and is_dir or self.kind == "d" and not is_dir:
            return False
        if self.name is not None:
            if self.insensitive:
                return fnmatch.fnmatchcase(name.lower(), self.name.lower())
            return fnmatch.fnmatchcase(name, self.name)
        return True


@utility("find")
def find(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    args = argv[1:]
    roots: List[str] = []
    while args and not args[0].startswith("-"):
        roots.append(args.pop(0))
    query = _FindQuery(args)
    found: List[str] = []
    errors: List[str] = []
    for shown in roots or ["."]:
        try:
            start = ctx.path(shown)
            if not ctx.vfs.exists(start):
                raise NotFoundError(start)
            for path, is_dir in ctx.vfs.walk(start):
                ctx.check_deadline()
                relative = path[len(start):].lstrip("/") if start != "/" else path.lstrip("/")
                depth = relative.count("/") + 1 if relative else 0
                if query.max_depth is not None and depth > query.max_depth:
                    continue
                display = shown if not relative else shown.rstrip("/") + "/" + relative
                name = posixpath.basename(display.rstrip("/")) or display
                if query.matches(name, is_dir, depth):
                    found.append(display)
        except _FS_ERRORS as exc:
            errors.append(f"find: '{shown}': {describe_error(exc)}\n")
    return finish(errors, join_lines(found))
