"""Emulated POSIX-like shell used as the sandbox command surface."""

from .interpreter import CommandInterpreter, ShellContext, available_commands
from .syntax import ShellSyntaxError

__all__ = ["CommandInterpreter", "ShellContext", "ShellSyntaxError", "available_commands"]
