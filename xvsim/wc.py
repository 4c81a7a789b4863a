"""Count lines, words and bytes."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import IO, Optional, Sequence

_CHUNK = 512
_WHITESPACE = frozenset(" \r\t\n\v")


@dataclass(frozen=True)
class WordCount:
    """Line, word and character totals."""

    lines: int = 0
    words: int = 0
    chars: int = 0


def count(stream: IO) -> WordCount:
    """Count a stream read in 512-unit chunks; words may span chunks."""
    lines = words = chars = 0
    inword = False
    while True:
        chunk = stream.read(_CHUNK)
        if not chunk:
            break
        text = chunk if isinstance(chunk, str) else bytes(chunk).decode("latin-1")
        for c in text:
            chars += 1
            if c == "\n":
                lines += 1
            if c in _WHITESPACE:
                inword = False
            elif not inword:
                words += 1
                inword = True
    return WordCount(lines, words, chars)


def _report(result: WordCount, name: str) -> None:
    sys.stdout.write(f"{result.lines} {result.words} {result.chars} {name}\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Print counts for each named file, or for standard input when none."""
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        if not args:
            _report(count(getattr(sys.stdin, "buffer", sys.stdin)), "")
            return 0
        for name in args:
            try:
                handle = open(name, "rb")
            except OSError:
                sys.stdout.write(f"wc: cannot open {name}\n")
                return 1
            with handle:
                _report(count(handle), name)
    except OSError:
        sys.stdout.write("wc: read error\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())