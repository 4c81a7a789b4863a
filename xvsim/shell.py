"""Command-line parsing for the shell: tokens, redirections, pipes, lists and background jobs."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Tuple, Union

MAXARGS = 10

WHITESPACE = " \t\r\n\v"
SYMBOLS = "<|>&;()"

# Token kinds returned by gettoken besides the symbol characters themselves.
TOKEN_END = ""
TOKEN_WORD = "a"
TOKEN_APPEND = "+"


class ShellSyntaxError(ValueError):
    """The command line cannot be parsed."""


class RedirMode(enum.Enum):
    """How a redirected file is opened."""

    READ = "read"
    WRITE = "write"  # write-only, created if missing


@dataclass
class ExecCmd:
    """A program and its arguments."""

    argv: List[str] = field(default_factory=list)


@dataclass
class RedirCmd:
    """A command with one file descriptor redirected to a file."""

    cmd: "Command"
    file: str
    mode: RedirMode
    fd: int


@dataclass
class PipeCmd:
    """Two commands with the left one's output feeding the right one's input."""

    left: "Command"
    right: "Command"


@dataclass
class ListCmd:
    """Two commands run one after the other."""

    left: "Command"
    right: "Command"


@dataclass
class BackCmd:
    """A command run in the background."""

    cmd: "Command"


Command = Union[ExecCmd, RedirCmd, PipeCmd, ListCmd, BackCmd]


def _char(s: str, pos: int) -> str:
    return s[pos] if pos < len(s) else ""


def _skip_space(s: str, pos: int) -> int:
    end = len(s)
    while pos < end and s[pos] in WHITESPACE:
        pos += 1
    return pos


def gettoken(s: str, pos: int) -> Tuple[str, int, int, int]:
    """Read the next token at pos.

    Returns (kind, start, stop, next position): kind is "" at the end of
    the line, "a" for a word, "+" for ">>", or the symbol character; the
    token text is s[start:stop] and whitespace after it is skipped.
    """
    end = len(s)
    pos = _skip_space(s, pos)
    start = pos
    c = _char(s, pos)
    if c == "":
        tok = TOKEN_END
    elif c in "|();&<":
        tok = c
        pos += 1
    elif c == ">":
        tok = ">"
        pos += 1
        if _char(s, pos) == ">":
            tok = TOKEN_APPEND
            pos += 1
    else:
        tok = TOKEN_WORD
        while pos < end and s[pos] not in WHITESPACE and s[pos] not in SYMBOLS:
            pos += 1
    stop = pos
    return tok, start, stop, _skip_space(s, pos)


def peek(s: str, pos: int, toks: str) -> Tuple[bool, int]:
    """Skip whitespace; report whether the next character is one of toks, and the new position."""
    pos = _skip_space(s, pos)
    c = _char(s, pos)
    return (c != "" and c in toks), pos


class _Parser:
    def __init__(self, s: str) -> None:
        self.s = s
        self.pos = 0

    def peek(self, toks: str) -> bool:
        found, self.pos = peek(self.s, self.pos, toks)
        return found

    def token(self) -> Tuple[str, str]:
        tok, start, stop, self.pos = gettoken(self.s, self.pos)
        return tok, self.s[start:stop]

    def line(self) -> Command:
        cmd = self.pipe()
        while self.peek("&"):
            self.token()
            cmd = BackCmd(cmd)
        if self.peek(";"):
            self.token()
            cmd = ListCmd(cmd, self.line())
        return cmd

    def pipe(self) -> Command:
        cmd = self.exec()
        if self.peek("|"):
            self.token()
            cmd = PipeCmd(cmd, self.pipe())
        return cmd

    def redirs(self, cmd: Command) -> Command:
        while self.peek("<>"):
            tok, _ = self.token()
            kind, name = self.token()
            if kind != TOKEN_WORD:
                raise ShellSyntaxError("missing file for redirection")
            if tok == "<":
                cmd = RedirCmd(cmd, name, RedirMode.READ, 0)
            else:  # ">" and ">>" open the file the same way
                cmd = RedirCmd(cmd, name, RedirMode.WRITE, 1)
        return cmd

    def block(self) -> Command:
        if not self.peek("("):
            raise ShellSyntaxError("parseblock")
        self.token()
        cmd = self.line()
        if not self.peek(")"):
            raise ShellSyntaxError("syntax - missing )")
        self.token()
        return self.redirs(cmd)

    def exec(self) -> Command:
        if self.peek("("):
            return self.block()
        cmd = ExecCmd()
        ret = self.redirs(cmd)
        while not self.peek("|)&;"):
            tok, word = self.token()
            if tok == TOKEN_END:
                break
            if tok != TOKEN_WORD:
                raise ShellSyntaxError("syntax")
            cmd.argv.append(word)
            if len(cmd.argv) >= MAXARGS:
                raise ShellSyntaxError("too many args")
            ret = self.redirs(ret)
        return ret


def parsecmd(s: str) -> Command:
    """Parse a whole command line into a command tree."""
    s = s.split("\0", 1)[0]
    parser = _Parser(s)
    cmd = parser.line()
    parser.peek("")
    if parser.pos != len(s):
        raise ShellSyntaxError(f"leftovers: {s[parser.pos:]}")
    return cmd