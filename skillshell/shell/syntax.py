"""Tokenizer and parser for the restricted shell language.

The grammar is a small subset of POSIX sh::

    list      := pipeline ((';' | '&&' | '||' | NEWLINE) pipeline)*
    pipeline  := command ('|' command)*
    command   := (NAME=value)* (word | redirect)*

Words keep their expansions (``$VAR``, ``$(...)``) unevaluated so that
assignments earlier on the same line are visible to later commands.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ASSIGNMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=")
_SPECIAL_PARAMS = set("@#?*$0123456789")


class ShellSyntaxError(ValueError):
    """Raised when a command line cannot be parsed."""


@dataclass
class Part:
    kind: str  # "lit" | "var" | "cmd"
    value: str
    quoted: bool = False


@dataclass
class Word:
    parts: List[Part] = field(default_factory=list)

    def literal(self) -> Optional[str]:
        """Return the text if the word has no expansions, else None."""
        if any(part.kind != "lit" for part in self.parts):
            return None
        return "".join(part.value for part in self.parts)


@dataclass
class Redirect:
    fd: int  # 0, 1, 2, or -1 for both stdout and stderr
    mode: str  # "<", ">", ">>", "dup"
    target: Optional[Word] = None
    dup_to: Optional[int] = None


@dataclass
class Operator:
    value: str


@dataclass
class Command:
    assignments: List[Tuple[str, Word]] = field(default_factory=list)
    words: List[Word] = field(default_factory=list)
    redirects: List[Redirect] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.assignments or self.words or self.redirects)


@dataclass
class Pipeline:
    commands: List[Command]


Token = Union[Word, Operator, Redirect]
CommandList = List[Tuple[str, Pipeline]]


class _Tokenizer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.tokens: List[Token] = []
        self.word: Optional[Word] = None

    def _peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ""

    def _add(self, kind: str, value: str, quoted: bool) -> None:
        if self.word is None:
            self.word = Word()
        parts = self.word.parts
        if kind == "lit" and parts and parts[-1].kind == "lit" and parts[-1].quoted == quoted:
            parts[-1].value += value
        else:
            parts.append(Part(kind, value, quoted))

    def _end_word(self) -> None:
        if self.word is not None:
            self.tokens.append(self.word)
            self.word = None

    def run(self) -> List[Token]:
        while self.pos < len(self.text):
            ch = self._peek()
            if ch in " \t\r":
                self._end_word()
                self.pos += 1
            elif ch == "\n":
                self._end_word()
                self.tokens.append(Operator("\n"))
                self.pos += 1
            elif ch == "#" and self.word is None:
                while self.pos < len(self.text) and self._peek() != "\n":
                    self.pos += 1
            elif ch == "'":
                end = self.text.find("'", self.pos + 1)
                if end < 0:
                    raise ShellSyntaxError("unterminated single quote")
                self._add("lit", self.text[self.pos + 1:end], True)
                self.pos = end + 1
            elif ch == '"':
                self._double_quoted()
            elif ch == "\\":
                nxt = self._peek(1)
                if nxt == "\n":
                    self.pos += 2
                elif nxt:
                    self._add("lit", nxt, True)
                    self.pos += 2
                else:
                    self.pos += 1
            elif ch == "$":
                self._dollar(quoted=False)
            elif ch == "`":
                raise ShellSyntaxError("backtick substitution is not supported; use $(...)")
            elif ch in "()":
                raise ShellSyntaxError(f"unexpected token `{ch}'")
            elif ch in "|&;<>":
                self._operator()
            else:
                self._add("lit", ch, False)
                self.pos += 1
        self._end_word()
        return self.tokens

    def _double_quoted(self) -> None:
        self.pos += 1
        # An empty "" still produces a word.
        self._add("lit", "", True)
        while True:
            if self.pos >= len(self.text):
                raise ShellSyntaxError("unterminated double quote")
            ch = self._peek()
            if ch == '"':
                self.pos += 1
                return
            if ch == "\\" and self._peek(1) in ('"', "\\", "$", "`", "\n"):
                if self._peek(1) != "\n":
                    self._add("lit", self._peek(1), True)
                self.pos += 2
            elif ch == "$":
                self._dollar(quoted=True)
            elif ch == "`":
                raise ShellSyntaxError("backtick substitution is not supported; use $(...)")
            else:
                self._add("lit", ch, True)
                self.pos += 1

    def _dollar(self, quoted: bool) -> None:
        nxt = self._peek(1)
        if nxt == "(":
            if self._peek(2) == "(":
                raise ShellSyntaxError("arithmetic expansion is not supported")
            end = _matching_paren(self.text, self.pos + 2)
            self._add("cmd", self.text[self.pos + 2:end], quoted)
            self.pos = end + 1
        elif nxt == "{":
            end = self.text.find("}", self.pos + 2)
            if end < 0:
                raise ShellSyntaxError("unterminated ${")
            name = self.text[self.pos + 2:end]
            if not (_NAME_RE.fullmatch(name) or (len(name) == 1 and name in _SPECIAL_PARAMS)):
                raise ShellSyntaxError(f"bad substitution: ${{{name}}}")
            self._add("var", name, quoted)
            self.pos = end + 1
        elif nxt and nxt in _SPECIAL_PARAMS:
            self._add("var", nxt, quoted)
            self.pos += 2
        else:
            match = _NAME_RE.match(self.text, self.pos + 1)
            if match:
                self._add("var", match.group(0), quoted)
                self.pos = match.end()
            else:
                self._add("lit", "$", quoted)
                self.pos += 1

    def _operator(self) -> None:
        ch = self._peek()
        fd: Optional[int] = None
        if ch in "<>" and self.word is not None:
            literal = self.word.literal()
            if literal in ("0", "1", "2") and not self.word.parts[0].quoted:
                fd = int(literal)
                self.word = None
        self._end_word()

        two = self.text[self.pos:self.pos + 2]
        if two in ("&&", "||"):
            self.tokens.append(Operator(two))
            self.pos += 2
        elif ch == "|":
            self.tokens.append(Operator("|"))
            self.pos += 1
        elif ch == ";":
            self.tokens.append(Operator(";"))
            self.pos += 1
        elif two == "&>":
            self.tokens.append(Redirect(fd=-1, mode=">"))
            self.pos += 2
        elif ch == "&":
            raise ShellSyntaxError("background jobs are not supported")
        elif ch == "<":
            self.tokens.append(Redirect(fd=0 if fd is None else fd, mode="<"))
            self.pos += 1
        elif two == ">&":
            target = self._peek(2)
            if target not in ("1", "2"):
                raise ShellSyntaxError("only >&1 and >&2 are supported")
            self.tokens.append(Redirect(fd=1 if fd is None else fd, mode="dup", dup_to=int(target)))
            self.pos += 3
        elif two == ">>":
            self.tokens.append(Redirect(fd=1 if fd is None else fd, mode=">>"))
            self.pos += 2
        else:
            self.tokens.append(Redirect(fd=1 if fd is None else fd, mode=">"))
            self.pos += 1


def _matching_paren(text: str, start: int) -> int:
    """Return the index of the ``)`` closing a ``$(`` whose body starts at ``start``."""
    depth = 1
    index = start
    quote = ""
    while index < len(text):
        ch = text[index]
        if quote:
            if ch == "\\" and quote == '"':
                index += 1
            elif ch == quote:
                quote = ""
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "\\":
            index += 1
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    raise ShellSyntaxError("unterminated $(")


def tokenize(text: str) -> List[Token]:
    return _Tokenizer(text).run()


def parse(text: str) -> CommandList:
    """Parse a command line (or a whole script) into connected pipelines.

    Each entry is ``(connector, pipeline)`` where the connector is the
    operator that preceded the pipeline (``;`` for the first one).
    """
    result: CommandList = []
    connector = ";"
    commands: List[Command] = []
    current = Command()
    expecting = False

    def finish_command(op: str) -> None:
        nonlocal current
        if current.is_empty():
            raise ShellSyntaxError(f"unexpected token `{_show(op)}'")
        commands.append(current)
        current = Command()

    tokens = tokenize(text)
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if isinstance(token, Word):
            literal_head = token.parts[0] if token.parts else None
            match = None
            if (
                not current.words
                and literal_head is not None
                and literal_head.kind == "lit"
                and not literal_head.quoted
            ):
                match = _ASSIGNMENT_RE.match(literal_head.value)
            if match:
                rest = Word([Part("lit", literal_head.value[match.end():], False)] + token.parts[1:])
                current.assignments.append((match.group(1), rest))
            else:
                current.words.append(token)
            expecting = False
        elif isinstance(token, Redirect):
            if token.mode != "dup":
                if index >= len(tokens) or not isinstance(tokens[index], Word):
                    raise ShellSyntaxError("missing redirect target")
                token.target = tokens[index]
                index += 1
            current.redirects.append(token)
            expecting = False
        elif token.value == "|":
            finish_command("|")
            expecting = True
        else:
            op = token.value
            if current.is_empty():
                # Blank lines and line breaks after |, && or || are allowed.
                if op == "\n" and (expecting or not commands):
                    continue
                raise ShellSyntaxError(f"unexpected token `{_show(op)}'")
            commands.append(current)
            current = Command()
            result.append((connector, Pipeline(commands)))
            commands = []
            connector = op if op in ("&&", "||") else ";"
            expecting = op in ("&&", "||")

    if not current.is_empty():
        commands.append(current)
    elif expecting:
        raise ShellSyntaxError("unexpected end of input")
    if commands:
        result.append((connector, Pipeline(commands)))
    return result


def _show(op: str) -> str:
    return "newline" if op == "\n" else op
