"""Helpers for building arguments to in-container shell commands."""

from typing import Iterable

# POSIX ERE metacharacters. Anything else passes through unescaped, since
# GNU grep warns about a backslash before an ordinary character.
ERE_SPECIAL = frozenset("\\.[]()*+?{}|^$")


def ere_escape(text: str) -> str:
    """Escape `text` so `grep -E` matches it literally."""
    return "".join("\\" + ch if ch in ERE_SPECIAL else ch for ch in text)


def prefix_pattern(prefixes: Iterable[str]) -> str:
    """Anchored ERE matching lines that start with any of `prefixes`.

    Raises:
        ValueError: If no prefixes are given (the pattern would match everything)
    """
    escaped = [ere_escape(p) for p in prefixes if p]
    if not escaped:
        raise ValueError("at least one prefix is required")
    return "^(" + "|".join(escaped) + ")"
