"""C-style string and memory helpers working on NUL-terminated str or bytes."""

from __future__ import annotations

import io
from typing import IO, AnyStr, Optional, Union

_WIDTH_ERROR = "length must not be negative"


def _split(s):
    """The part of s before its first NUL, and the NUL of s's kind."""
    nul = b"\0" if isinstance(s, (bytes, bytearray)) else "\0"
    return s.partition(nul)[0], nul


def _cstr(s):
    """The part of s before its first NUL."""
    return _split(s)[0]


def _codes(s) -> list:
    """Unsigned character codes of the C string in s."""
    text = _cstr(s)
    if isinstance(text, str):
        text = text.encode("utf-8")
    return list(text)


def memcmp(a: bytes, b: bytes, n: int) -> int:
    """Compare n bytes; the difference of the first differing pair, or 0."""
    if n < 0:
        raise ValueError(_WIDTH_ERROR)
    if n > len(a) or n > len(b):
        raise ValueError("comparison runs past the end of a buffer")
    for x, y in zip(bytes(a[:n]), bytes(b[:n])):
        if x != y:
            return x - y
    return 0


def strncmp(p: AnyStr, q: AnyStr, n: int) -> int:
    """Compare at most n characters of two C strings."""
    if n < 0:
        raise ValueError(_WIDTH_ERROR)
    for i, (a, b) in enumerate(zip(_codes(p) + [0], _codes(q) + [0])):
        if i == n:
            return 0
        if a == 0 or a != b:
            return a - b
    return 0


def strcmp(p: AnyStr, q: AnyStr) -> int:
    """Compare two C strings."""
    for a, b in zip(_codes(p) + [0], _codes(q) + [0]):
        if a == 0 or a != b:
            return a - b
    return 0


def strncpy(t: AnyStr, n: int) -> AnyStr:
    """The n-character buffer strncpy fills: copied text, then NUL padding.

    The result is not NUL-terminated when t has n or more characters.
    """
    if n < 0:
        raise ValueError(_WIDTH_ERROR)
    text, nul = _split(t)
    text = text[:n]
    return text + nul * (n - len(text))


def safestrcpy(t: AnyStr, n: int) -> AnyStr:
    """The text a buffer of size n holds after a terminating copy of t."""
    if n <= 0:
        return t[:0]
    return _cstr(t)[: n - 1]


def strlen(s: AnyStr) -> int:
    """Length of the C string in s."""
    return len(_cstr(s))


def strchr(s: AnyStr, c: Union[str, int, bytes]) -> Optional[int]:
    """Index of the first c in the C string s, or None; NUL is never found."""
    index = _cstr(s).find(c)
    return None if index < 0 else index


def atoi(s: AnyStr) -> int:
    """Value of the leading decimal digits of s; no sign or spaces are read."""
    n = 0
    for code in _codes(s):
        if not 0x30 <= code <= 0x39:
            break
        n = n * 10 + code - 0x30
    return n


def gets(stream: IO, max: int) -> AnyStr:
    """Read one character at a time, up to max - 1, stopping after a newline or CR."""
    empty = "" if isinstance(stream, io.TextIOBase) else b""
    chunks = []
    while len(chunks) + 1 < max:
        c = stream.read(1)
        empty = c[:0]
        if not c:
            break
        chunks.append(c)
        if c in ("\n", "\r", b"\n", b"\r"):
            break
    return empty.join(chunks)