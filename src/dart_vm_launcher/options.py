"""VM option and program argument parsing.

Tokenization follows shell conventions closely enough for option strings
typed into a run configuration:

- whitespace separates tokens
- '...' groups text literally
- "..." groups text; \\" and \\\\ are escapes inside
- outside quotes a backslash escapes whitespace, a quote or a backslash;
  any other backslash is kept, so Windows paths survive unquoted
- an unterminated quote runs to the end of the input
"""

from __future__ import annotations

import re

__all__ = ["tokenize", "parse_int_before_slash"]

_QUOTES = "'\""
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def tokenize(text: str | None) -> list[str]:
    """Split an options string into tokens.

    Args:
        text: Raw options string (None or blank yields no tokens)

    Returns:
        Tokens in order, quotes removed
    """
    if not text:
        return []

    tokens: list[str] = []
    current: list[str] = []
    in_token = False
    quote: str | None = None
    length = len(text)
    i = 0

    while i < length:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < length else ""

        if quote == "'":
            if ch == "'":
                quote = None
            else:
                current.append(ch)
        elif quote == '"':
            if ch == '"':
                quote = None
            elif ch == "\\" and nxt in ('"', "\\"):
                current.append(nxt)
                i += 1
            else:
                current.append(ch)
        elif ch.isspace():
            if in_token:
                tokens.append("".join(current))
                current = []
                in_token = False
        elif ch in _QUOTES:
            quote = ch
            in_token = True
        elif ch == "\\" and nxt and (nxt.isspace() or nxt in _QUOTES or nxt == "\\"):
            current.append(nxt)
            in_token = True
            i += 1
        else:
            current.append(ch)
            in_token = True

        i += 1

    if in_token:
        tokens.append("".join(current))

    return tokens


def parse_int_before_slash(value: str) -> int:
    """Parse the port part of "5858" or "5858/0.0.0.0".

    Raises:
        ValueError: The part before the slash is not an integer
    """
    index = value.find("/")
    number = value[:index] if index > 0 else value
    if not _INTEGER_RE.fullmatch(number):
        raise ValueError(f"invalid integer: {number!r}")
    return int(number)
