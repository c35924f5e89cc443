"""A small JSON path dialect: ``$``, ``.key``, ``[n]`` and ``[*]``.

Paths are used in two places: the matcher records where it found things,
and the transform engine follows those records against live responses.
A leading ``$`` is optional, so ``title`` and ``$.title`` are equivalent.
"""

from __future__ import annotations

import re
from typing import Any

WILDCARD = "*"

_TOKEN_RE = re.compile(r"\.?([A-Za-z_$@][\w\-$@]*)|\[(\d+)\]|\[\*\]|\.\*")


class PathError(LookupError):
    """Raised when a path cannot be followed through a document."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


def parse(path: str) -> list[str | int]:
    """Split a path into keys, integer indexes and wildcards."""
    text = path.strip()
    if text.startswith("$"):
        text = text[1:]
    tokens: list[str | int] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise PathError(path, f"unexpected character at {pos}")
        key, index = match.group(1), match.group(2)
        if key is not None:
            tokens.append(key)
        elif index is not None:
            tokens.append(int(index))
        else:
            tokens.append(WILDCARD)
        pos = match.end()
    return tokens


def resolve(data: Any, path: str) -> Any:
    """Follow *path* through *data*.

    A wildcard maps the rest of the path over every element of a list and
    returns the flattened results; elements the rest of the path does not
    fit are skipped. Raises :class:`PathError` when a key or index is
    missing or the document has the wrong shape.
    """
    return _walk(data, parse(path), path)


def get(data: Any, path: str, default: Any = None) -> Any:
    try:
        return resolve(data, path)
    except PathError:
        return default


def join(base: str, *parts: str | int) -> str:
    """Append keys and indexes to a path, e.g. ``join("$.data", "Page", 0)``."""
    out = base or "$"
    for part in parts:
        if isinstance(part, int):
            out += f"[{part}]"
        elif part == WILDCARD:
            out += "[*]"
        elif part:
            out += f".{part}"
    return out


def depth(path: str) -> int:
    return len([t for t in parse(path) if t != WILDCARD])


def _walk(node: Any, tokens: list[str | int], path: str) -> Any:
    for i, token in enumerate(tokens):
        if token == WILDCARD:
            if not isinstance(node, list):
                raise PathError(path, "wildcard applied to a non-list")
            rest = tokens[i + 1:]
            out: list[Any] = []
            for element in node:
                try:
                    value = _walk(element, rest, path)
                except PathError:
                    continue
                if isinstance(value, list) and WILDCARD in rest:
                    out.extend(value)
                else:
                    out.append(value)
            return out
        if isinstance(token, int):
            if not isinstance(node, list):
                raise PathError(path, f"index [{token}] applied to a non-list")
            if token >= len(node):
                raise PathError(path, f"index [{token}] out of range")
            node = node[token]
        else:
            if not isinstance(node, dict):
                raise PathError(path, f"key {token!r} applied to a non-object")
            if token not in node:
                raise PathError(path, f"missing key {token!r}")
            node = node[token]
    return node
