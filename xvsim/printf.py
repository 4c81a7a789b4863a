"""Formatted output understanding %d, %x, %p, %s, %c and %%."""

from __future__ import annotations

from typing import IO

_DIGITS = "0123456789ABCDEF"


def _int32(value: int) -> int:
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def printint(xx: int, base: int, sgn: bool) -> str:
    """Render a 32-bit integer; signed only when sgn is true."""
    xx = _int32(xx)
    neg = bool(sgn) and xx < 0
    x = -xx if neg else xx & 0xFFFFFFFF
    digits = []
    while True:
        x, rem = divmod(x, base)
        digits.append(_DIGITS[rem])
        if x == 0:
            break
    if neg:
        digits.append("-")
    return "".join(reversed(digits))


def _char(arg) -> str:
    if isinstance(arg, str):
        return arg[:1]
    return chr(arg & 0xFF)


def sprintf(fmt: str, *args) -> str:
    """Format args as the user-level printf does."""
    remaining = iter(args)

    def take():
        try:
            return next(remaining)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out = []
    pending = False
    for c in fmt:
        if not pending:
            if c == "%":
                pending = True
            else:
                out.append(c)
            continue
        if c == "d":
            out.append(printint(take(), 10, True))
        elif c in "xp":
            out.append(printint(take(), 16, False))
        elif c == "s":
            s = take()
            out.append("(null)" if s is None else str(s))
        elif c == "c":
            out.append(_char(take()))
        elif c == "%":
            out.append("%")
        else:
            out.append("%" + c)
        pending = False
    return "".join(out)


def printf(stream: IO[str], fmt: str, *args) -> None:
    """Write the formatted text to stream."""
    stream.write(sprintf(fmt, *args))