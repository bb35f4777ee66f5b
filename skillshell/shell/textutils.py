"""Text utilities: head, tail, wc, sort, uniq, grep, cut, tr, sed."""

from __future__ import annotations

import re
from functools import cmp_to_key
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

import regex

from ..errors import NotFoundError, PathEscapeError, SandboxIOError
from .builtins import ESCAPES
from .registry import (
    CommandTimeout,
    Output,
    UsageError,
    describe_error,
    finish,
    gather,
    int_option,
    join_lines,
    options,
    read_text,
    split_lines,
    utility,
)

if TYPE_CHECKING:
    from .interpreter import ShellContext

_FS_ERRORS = (NotFoundError, PathEscapeError, SandboxIOError)

_POSIX_CLASSES = {
    "alpha": "a-zA-Z",
    "digit": "0-9",
    "alnum": "a-zA-Z0-9",
    "upper": "A-Z",
    "lower": "a-z",
    "space": " \\t\\n\\r\\f\\v",
    "blank": " \\t",
    "punct": "!-/:-@\\[-`{-~",
    "xdigit": "0-9A-Fa-f",
}

_NUMBER_RE = re.compile(r"\s*([-+]?\d*\.?\d+(?:[eE][-+]?\d+)?)")


def _count_shorthand(args: Sequence[str]) -> List[str]:
    """Rewrite ``-5`` into ``-n 5`` for head and tail."""
    rewritten: List[str] = []
    for arg in args:
        if re.fullmatch(r"-\d+", arg):
            rewritten.extend(["-n", arg[1:]])
        else:
            rewritten.append(arg)
    return rewritten


def _with_headers(sources: List[Tuple[str, str]], render: Callable[[str], str]) -> str:
    if len(sources) == 1:
        return render(sources[0][1])
    blocks = []
    for label, text in sources:
        shown = "standard input" if label == "-" else label
        blocks.append(f"==> {shown} <==\n{render(text)}")
    return "\n".join(blocks)


@utility("head")
def head(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(_count_shorthand(argv[1:]), "n:c:")
    sources, errors = gather(ctx, "head", operands, stdin)
    if "-c" in parsed:
        count = int_option(parsed, "-c", 0)

        def render(text: str) -> str:
            data = text.encode("utf-8")
            chunk = data[:count] if count >= 0 else data[:count or None]
            return chunk.decode("utf-8", errors="replace")

    else:
        count = int_option(parsed, "-n", 10)

        def render(text: str) -> str:
            lines = split_lines(text)
            return join_lines(lines[:count] if count >= 0 else lines[:count or None])

    return finish(errors, _with_headers(sources, render))


@utility("tail")
def tail(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(_count_shorthand(argv[1:]), "n:")
    raw = parsed.get("-n", ["10"])[-1]
    from_start = raw.startswith("+")
    try:
        count = abs(int(raw))
    except ValueError:
        raise UsageError(f"invalid number of lines: '{raw}'") from None
    sources, errors = gather(ctx, "tail", operands, stdin)

    def render(text: str) -> str:
        lines = split_lines(text)
        if from_start:
            return join_lines(lines[max(count - 1, 0):])
        return join_lines(lines[-count:] if count else [])

    return finish(errors, _with_headers(sources, render))


@utility("wc")
def wc(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "lwmc")
    selected = [flag for flag in ("-l", "-w", "-m", "-c") if flag in parsed]
    if not selected:
        selected = ["-l", "-w", "-c"]
    sources, errors = gather(ctx, "wc", operands, stdin)

    def counts(text: str) -> List[int]:
        values = {
            "-l": text.count("\n"),
            "-w": len(text.split()),
            "-m": len(text),
            "-c": len(text.encode("utf-8")),
        }
        return [values[flag] for flag in selected]

    rows = [(label, counts(text)) for label, text in sources]
    if len(rows) > 1:
        totals = [sum(row[1][i] for row in rows) for i in range(len(selected))]
        rows.append(("total", totals))
    if len(rows) == 1 and len(selected) == 1:
        width = 0
    else:
        width = max(len(str(value)) for _, values in rows for value in values)
    lines = []
    for label, values in rows:
        line = " ".join(f"{value:>{width}}" for value in values)
        if label != "-":
            line += f" {label}"
        lines.append(line)
    return finish(errors, join_lines(lines))


class _SortKey:
    def __init__(self, spec: str) -> None:
        match = re.fullmatch(r"(\d+)(?:\.\d+)?([bfnr]*)(?:,(\d+)(?:\.\d+)?([bfnr]*))?", spec)
        if not match:
            raise UsageError(f"invalid key specification '{spec}'")
        self.start = int(match.group(1))
        self.end = int(match.group(3)) if match.group(3) else None
        flags = (match.group(2) or "") + (match.group(4) or "")
        self.numeric = "n" in flags
        self.reverse = "r" in flags
        self.fold = "f" in flags
        if self.start < 1:
            raise UsageError(f"invalid field number '{spec}'")

    def extract(self, line: str, separator: Optional[str]) -> str:
        fields = line.split(separator) if separator is not None else line.split()
        end = self.end if self.end is not None else len(fields)
        joiner = separator if separator is not None else " "
        return joiner.join(fields[self.start - 1:end])


def _numeric_value(text: str) -> float:
    match = _NUMBER_RE.match(text)
    return float(match.group(1)) if match else 0.0


def _compare(left: str, right: str, numeric: bool, fold: bool) -> int:
    if numeric:
        a, b = _numeric_value(left), _numeric_value(right)
    elif fold:
        a, b = left.lower(), right.lower()
    else:
        a, b = left, right
    return (a > b) - (a < b)


@utility("sort")
def sort(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "rnufst:k:o:")
    reverse = "-r" in parsed
    numeric = "-n" in parsed
    fold = "-f" in parsed
    stable = "-s" in parsed
    separator = parsed["-t"][-1] if "-t" in parsed else None
    if separator is not None and len(separator) != 1:
        raise UsageError("multi-character tab")
    keys = [_SortKey(spec) for spec in parsed.get("-k", [])]
    sources, errors = gather(ctx, "sort", operands, stdin)
    if errors:
        return finish(errors, failure=2)
    lines = [line for _, text in sources for line in split_lines(text)]

    def compare_keys(left: str, right: str) -> int:
        for key in keys:
            result = _compare(
                key.extract(left, separator),
                key.extract(right, separator),
                key.numeric or numeric,
                key.fold or fold,
            )
            if result:
                return -result if key.reverse != reverse else result
        if not keys:
            result = _compare(left, right, numeric, fold)
            if result:
                return -result if reverse else result
        return 0

    def compare_lines(left: str, right: str) -> int:
        result = compare_keys(left, right)
        if result or stable:
            return result
        # Last-resort comparison on the whole line.
        result = (left > right) - (left < right)
        return -result if reverse else result

    ordered = sorted(lines, key=cmp_to_key(compare_lines))
    if "-u" in parsed:
        unique: List[str] = []
        for line in ordered:
            if not unique or compare_keys(unique[-1], line) != 0:
                unique.append(line)
        ordered = unique
    text = join_lines(ordered)
    if "-o" in parsed:
        target = parsed["-o"][-1]
        try:
            ctx.vfs.write_file(ctx.path(target), text)
        except _FS_ERRORS as exc:
            return Output(stderr=f"sort: {target}: {describe_error(exc)}\n", status=2)
        return Output()
    return Output(text)


@utility("uniq")
def uniq(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "cdui")
    if len(operands) > 1:
        raise UsageError("output files are not supported")
    sources, errors = gather(ctx, "uniq", operands, stdin)
    if errors:
        return finish(errors)
    lines = split_lines(sources[0][1])
    fold = "-i" in parsed
    groups: List[List[str]] = []
    for line in lines:
        if groups:
            last = groups[-1][0]
            same = last.lower() == line.lower() if fold else last == line
            if same:
                groups[-1].append(line)
                continue
        groups.append([line])
    output = []
    for group in groups:
        if "-d" in parsed and len(group) < 2:
            continue
        if "-u" in parsed and len(group) > 1:
            continue
        if "-c" in parsed:
            output.append(f"{len(group):>7} {group[0]}")
        else:
            output.append(group[0])
    return Output(join_lines(output))


def _bracket_end(pattern: str, start: int) -> int:
    """Return the index just past the ``]`` closing the bracket at ``start``."""
    index = start + 1
    if index < len(pattern) and pattern[index] == "^":
        index += 1
    if index < len(pattern) and pattern[index] == "]":
        index += 1
    while index < len(pattern):
        if pattern.startswith("[:", index):
            close = pattern.find(":]", index + 2)
            if close >= 0:
                index = close + 2
                continue
        if pattern[index] == "]":
            return index + 1
        index += 1
    return len(pattern)


def _translate_bracket(body: str) -> str:
    if len(body) < 2 or not body.endswith("]"):
        raise UsageError("unbalanced [")
    inner = body[1:-1]
    negate = inner.startswith("^")
    if negate:
        inner = inner[1:]
    pieces = []
    for index, piece in enumerate(re.split(r"\[:(\w+):\]", inner)):
        if index % 2:
            if piece not in _POSIX_CLASSES:
                raise UsageError(f"invalid character class '{piece}'")
            pieces.append(_POSIX_CLASSES[piece])
        else:
            pieces.append(piece.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]"))
    return "[" + ("^" if negate else "") + "".join(pieces) + "]"


def convert_regex(pattern: str, extended: bool) -> str:
    """Translate a POSIX basic or extended regex into Python syntax."""
    out: List[str] = []
    index = 0
    bre_specials = "(){}|+?"
    while index < len(pattern):
        ch = pattern[index]
        if ch == "[":
            end = _bracket_end(pattern, index)
            out.append(_translate_bracket(pattern[index:end]))
            index = end
            continue
        if ch == "\\" and index + 1 < len(pattern):
            nxt = pattern[index + 1]
            if not extended and nxt in bre_specials:
                out.append(nxt)
            elif nxt == "<":
                out.append(r"\b(?=\w)")
            elif nxt == ">":
                out.append(r"\b(?<=\w)")
            else:
                out.append("\\" + nxt)
            index += 2
            continue
        if not extended and ch in bre_specials:
            out.append("\\" + ch)
        elif ch == "*" and (not out or out[-1] in ("^", "(", "|")):
            out.append("\\*")
        else:
            out.append(ch)
        index += 1
    return "".join(out)


def _compile(pattern: str, extended: bool, flags: int = 0) -> "regex.Pattern[str]":
    try:
        return regex.compile(convert_regex(pattern, extended), flags)
    except regex.error as exc:
        raise UsageError(f"invalid regular expression '{pattern}': {exc}") from exc


def _timed(ctx: "ShellContext", call: Callable[[Optional[float]], Any]) -> Any:
    """Run a regex match with the time left before the command deadline."""
    try:
        return call(ctx.remaining())
    except TimeoutError:
        raise CommandTimeout() from None


@utility("grep", "egrep", "fgrep")
def grep(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(
        argv[1:], "ivnclLoqwxEFrRhHe:", ["ignore-case", "invert-match", "count", "quiet"]
    )
    for long_flag, short in (
        ("--ignore-case", "-i"),
        ("--invert-match", "-v"),
        ("--count", "-c"),
        ("--quiet", "-q"),
    ):
        if long_flag in parsed:
            parsed[short] = parsed[long_flag]
    patterns = parsed.get("-e", [])
    if not patterns:
        if not operands:
            raise UsageError("usage: grep [OPTION]... PATTERNS [FILE]...")
        patterns = [operands.pop(0)]
    fixed = "-F" in parsed or argv[0] == "fgrep"
    extended = "-E" in parsed or argv[0] == "egrep"
    flags = regex.IGNORECASE if "-i" in parsed else 0
    sources_regex = []
    for pattern in patterns:
        for alternative in pattern.split("\n"):
            body = re.escape(alternative) if fixed else convert_regex(alternative, extended)
            if "-w" in parsed:
                body = rf"(?<!\w)(?:{body})(?!\w)"
            if "-x" in parsed:
                body = rf"^(?:{body})$"
            sources_regex.append(f"(?:{body})")
    try:
        matcher = regex.compile("|".join(sources_regex), flags)
    except regex.error as exc:
        return Output(stderr=f"grep: invalid regular expression: {exc}\n", status=2)

    recursive = "-r" in parsed or "-R" in parsed
    errors: List[str] = []
    inputs: List[Tuple[str, str]] = []
    if recursive:
        for operand in operands or ["."]:
            try:
                start = ctx.path(operand)
                for path, is_dir in ctx.vfs.walk(start):
                    ctx.check_deadline()
                    if not is_dir:
                        shown = operand.rstrip("/") + path[len(start):] if start != "/" else (
                            operand.rstrip("/") + path
                        )
                        inputs.append((shown, read_text(ctx, path)))
            except _FS_ERRORS as exc:
                errors.append(f"grep: {operand}: {describe_error(exc)}\n")
    else:
        inputs, errors = gather(ctx, "grep", operands, stdin)

    show_names = ("-H" in parsed or len(inputs) > 1 or recursive) and "-h" not in parsed
    invert = "-v" in parsed
    out: List[str] = []
    matched_any = False
    for label, text in inputs:
        shown = "(standard input)" if label == "-" else label
        count = 0
        for number, line in enumerate(split_lines(text), 1):
            found = _timed(ctx, lambda limit: matcher.search(line, timeout=limit)) is not None
            if found == invert:
                continue
            count += 1
            matched_any = True
            if "-q" in parsed:
                return Output()
            if "-c" in parsed or "-l" in parsed or "-L" in parsed:
                continue
            prefix = f"{shown}:" if show_names else ""
            if "-n" in parsed:
                prefix += f"{number}:"
            if "-o" in parsed and not invert:
                pieces = _timed(
                    ctx,
                    lambda limit: [m.group(0) for m in matcher.finditer(line, timeout=limit)],
                )
                out.extend(prefix + piece for piece in pieces if piece)
            else:
                out.append(prefix + line)
        if "-c" in parsed:
            out.append(f"{shown}:{count}" if show_names else str(count))
        elif "-l" in parsed and count:
            out.append(shown)
        elif "-L" in parsed and not count:
            out.append(shown)
    status = 0 if matched_any else 1
    if errors:
        status = 2
    if "-q" in parsed:
        return Output(status=status)
    return Output(join_lines(out), "".join(errors), status)


def _parse_list(spec: str) -> List[Tuple[int, Optional[int]]]:
    ranges: List[Tuple[int, Optional[int]]] = []
    for item in spec.split(","):
        match = re.fullmatch(r"(\d*)(-?)(\d*)", item)
        if not item or not match or (not match.group(1) and not match.group(3)):
            raise UsageError(f"invalid field range '{item}'")
        start = int(match.group(1)) if match.group(1) else 1
        if match.group(2):
            end = int(match.group(3)) if match.group(3) else None
        else:
            end = start
        if start < 1:
            raise UsageError("fields and positions are numbered from 1")
        ranges.append((start, end))
    return ranges


def _selected(ranges: List[Tuple[int, Optional[int]]], count: int) -> List[int]:
    chosen = set()
    for start, end in ranges:
        last = count if end is None else min(end, count)
        chosen.update(range(start, last + 1))
    return sorted(chosen)


@utility("cut")
def cut(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "d:f:c:s")
    if ("-f" in parsed) == ("-c" in parsed):
        raise UsageError("you must specify a list of fields or characters")
    delimiter = parsed["-d"][-1] if "-d" in parsed else "\t"
    if len(delimiter) != 1:
        raise UsageError("the delimiter must be a single character")
    sources, errors = gather(ctx, "cut", operands, stdin)
    out: List[str] = []
    if "-c" in parsed:
        ranges = _parse_list(parsed["-c"][-1])
        for _, text in sources:
            for line in split_lines(text):
                out.append("".join(line[i - 1] for i in _selected(ranges, len(line))))
    else:
        ranges = _parse_list(parsed["-f"][-1])
        for _, text in sources:
            for line in split_lines(text):
                if delimiter not in line:
                    if "-s" not in parsed:
                        out.append(line)
                    continue
                fields = line.split(delimiter)
                out.append(delimiter.join(fields[i - 1] for i in _selected(ranges, len(fields))))
    return finish(errors, join_lines(out))


_TR_CLASSES = {
    "alpha": "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "digit": "0123456789",
    "alnum": "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789",
    "upper": "ABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "lower": "abcdefghijklmnopqrstuvwxyz",
    "space": " \t\n\r\f\v",
    "blank": " \t",
    "punct": "!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~",
}


def _expand_set(spec: str) -> str:
    chars: List[str] = []
    index = 0
    while index < len(spec):
        match = re.match(r"\[:(\w+):\]", spec[index:])
        if match:
            name = match.group(1)
            if name not in _TR_CLASSES:
                raise UsageError(f"invalid character class '{name}'")
            chars.extend(_TR_CLASSES[name])
            index += match.end()
            continue
        ch = spec[index]
        if ch == "\\" and index + 1 < len(spec):
            ch = ESCAPES.get(spec[index + 1], spec[index + 1])
            index += 2
        else:
            index += 1
        if index + 1 < len(spec) and spec[index] == "-":
            end = spec[index + 1]
            if end < ch:
                raise UsageError(f"range-endpoints of '{ch}-{end}' are in reverse collating order")
            chars.extend(chr(code) for code in range(ord(ch), ord(end) + 1))
            index += 2
        else:
            chars.append(ch)
    return "".join(chars)


def _squeeze(text: str, squeeze: str) -> str:
    out: List[str] = []
    for ch in text:
        if out and ch == out[-1] and ch in squeeze:
            continue
        out.append(ch)
    return "".join(out)


@utility("tr")
def tr(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "ds")
    delete = "-d" in parsed
    squeeze = "-s" in parsed
    if not operands or len(operands) > 2:
        raise UsageError("usage: tr [-ds] SET1 [SET2]")
    first = _expand_set(operands[0])
    second = _expand_set(operands[1]) if len(operands) > 1 else ""
    text = stdin
    if delete:
        text = "".join(ch for ch in text if ch not in first)
        if squeeze and second:
            text = _squeeze(text, second)
        return Output(text)
    if second:
        padded = second + second[-1] * max(len(first) - len(second), 0)
        table: Dict[int, str] = {}
        for source, target in zip(first, padded):
            table[ord(source)] = target
        text = text.translate(table)
        if squeeze:
            text = _squeeze(text, second)
    elif squeeze:
        text = _squeeze(text, first)
    else:
        raise UsageError("missing operand after SET1")
    return Output(text)


class _SedCommand:
    def __init__(self) -> None:
        self.first: Optional[object] = None
        self.second: Optional[object] = None
        self.negate = False
        self.name = ""
        self.regex: Optional["regex.Pattern[str]"] = None
        self.replacement = ""
        self.count = 1
        self.print_after = False
        self.active = False


class _SedParser:
    def __init__(self, script: str, extended: bool) -> None:
        self.script = script
        self.extended = extended
        self.pos = 0

    def _peek(self) -> str:
        return self.script[self.pos] if self.pos < len(self.script) else ""

    def _skip(self, chars: str = " \t") -> None:
        while self._peek() and self._peek() in chars:
            self.pos += 1

    def _delimited(self, delimiter: str) -> str:
        out: List[str] = []
        while True:
            ch = self._peek()
            if not ch:
                raise UsageError("unterminated `s' command")
            self.pos += 1
            if ch == "\\" and self._peek() == delimiter:
                out.append(delimiter)
                self.pos += 1
            elif ch == "\\" and self._peek():
                out.append("\\" + self._peek())
                self.pos += 1
            elif ch == delimiter:
                return "".join(out)
            else:
                out.append(ch)

    def _address(self) -> Optional[object]:
        ch = self._peek()
        if ch.isdigit():
            start = self.pos
            while self._peek().isdigit():
                self.pos += 1
            return int(self.script[start:self.pos])
        if ch == "$":
            self.pos += 1
            return "$"
        if ch == "/":
            self.pos += 1
            return _compile(self._delimited("/"), self.extended)
        return None

    def parse(self) -> List[_SedCommand]:
        commands: List[_SedCommand] = []
        while True:
            self._skip(" \t\n;")
            if not self._peek():
                return commands
            command = _SedCommand()
            command.first = self._address()
            if command.first is not None and self._peek() == ",":
                self.pos += 1
                command.second = self._address()
                if command.second is None:
                    raise UsageError("unexpected `,'")
            self._skip()
            if self._peek() == "!":
                command.negate = True
                self.pos += 1
                self._skip()
            name = self._peek()
            self.pos += 1
            if name not in ("s", "d", "p", "q"):
                raise UsageError(f"unknown command: `{name}'")
            command.name = name
            if name == "s":
                self._substitution(command)
            self._skip()
            if self._peek() not in ("", ";", "\n", "}"):
                raise UsageError("extra characters after command")
            commands.append(command)

    def _substitution(self, command: _SedCommand) -> None:
        delimiter = self._peek()
        if not delimiter or delimiter in "\\\n":
            raise UsageError("unterminated `s' command")
        self.pos += 1
        pattern = self._delimited(delimiter)
        command.replacement = self._delimited(delimiter)
        flags = 0
        while self._peek() and self._peek() in "gipI0123456789":
            ch = self._peek()
            if ch == "g":
                command.count = 0
            elif ch in "iI":
                flags |= regex.IGNORECASE
            elif ch == "p":
                command.print_after = True
            else:
                command.count = int(ch)
            self.pos += 1
        command.regex = _compile(pattern, self.extended, flags)


def _expand_replacement(template: str, match: "regex.Match[str]") -> str:
    out: List[str] = []
    index = 0
    while index < len(template):
        ch = template[index]
        if ch == "&":
            out.append(match.group(0))
        elif ch == "\\" and index + 1 < len(template):
            nxt = template[index + 1]
            index += 1
            if nxt.isdigit():
                group = int(nxt)
                if group > (match.re.groups or 0):
                    raise UsageError(f"invalid reference \\{group} on `s' command's RHS")
                out.append(match.group(group) or "")
            elif nxt == "n":
                out.append("\n")
            elif nxt == "t":
                out.append("\t")
            else:
                out.append(nxt)
        else:
            out.append(ch)
        index += 1
    return "".join(out)


def _substitute(ctx: "ShellContext", command: _SedCommand, line: str) -> Tuple[str, bool]:
    assert command.regex is not None
    seen = 0
    replaced = False

    def replace(match: "regex.Match[str]") -> str:
        nonlocal seen, replaced
        seen += 1
        if command.count and seen != command.count:
            return match.group(0)
        replaced = True
        return _expand_replacement(command.replacement, match)

    pattern = command.regex
    result = _timed(ctx, lambda limit: pattern.sub(replace, line, timeout=limit))
    return result, replaced


def _address_matches(ctx: "ShellContext", address: object, number: int, line: str, last: bool) -> bool:
    if address == "$":
        return last
    if isinstance(address, int):
        return number == address
    found = _timed(ctx, lambda limit: address.search(line, timeout=limit))  # type: ignore[union-attr]
    return found is not None


def _selects(ctx: "ShellContext", command: _SedCommand, number: int, line: str, last: bool) -> bool:
    if command.first is None:
        hit = True
    elif command.second is None:
        hit = _address_matches(ctx, command.first, number, line, last)
    elif command.active:
        hit = True
        second = command.second
        if isinstance(second, int):
            if number >= second:
                command.active = False
        elif _address_matches(ctx, second, number, line, last):
            command.active = False
    else:
        hit = _address_matches(ctx, command.first, number, line, last)
        if hit:
            second = command.second
            if isinstance(second, int):
                command.active = second > number
            else:
                command.active = not (second == "$" and last)
    return hit != command.negate


def run_sed(ctx: "ShellContext", commands: List[_SedCommand], text: str, quiet: bool) -> str:
    for command in commands:
        command.active = False
    lines = split_lines(text)
    out: List[str] = []
    for number, line in enumerate(lines, 1):
        last = number == len(lines)
        deleted = False
        quit_now = False
        for command in commands:
            if not _selects(ctx, command, number, line, last):
                continue
            if command.name == "s":
                line, replaced = _substitute(ctx, command, line)
                if replaced and command.print_after:
                    out.append(line)
            elif command.name == "p":
                out.append(line)
            elif command.name == "d":
                deleted = True
                break
            elif command.name == "q":
                quit_now = True
                break
        if not deleted and not quiet:
            out.append(line)
        if quit_now:
            break
    return join_lines(out)


@utility("sed")
def sed(ctx: "ShellContext", argv: List[str], stdin: str) -> Output:
    parsed, operands = options(argv[1:], "ne:Eri")
    scripts = parsed.get("-e", [])
    if not scripts:
        if not operands:
            raise UsageError("usage: sed [-nEi] [-e] SCRIPT [FILE]...")
        scripts = [operands.pop(0)]
    extended = "-E" in parsed or "-r" in parsed
    commands = _SedParser("\n".join(scripts), extended).parse()
    quiet = "-n" in parsed
    if "-i" in parsed:
        if not operands:
            raise UsageError("no input files")
        errors = []
        for operand in operands:
            try:
                path = ctx.path(operand)
                ctx.vfs.write_file(path, run_sed(ctx, commands, read_text(ctx, operand), quiet))
            except _FS_ERRORS as exc:
                errors.append(f"sed: can't read {operand}: {describe_error(exc)}\n")
        return finish(errors, failure=2)
    sources, errors = gather(ctx, "sed", operands, stdin)
    text = "".join(body for _, body in sources)
    return finish(errors, run_sed(ctx, commands, text, quiet), failure=2)
