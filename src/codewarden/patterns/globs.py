"""Glob compiler shared by the path filter and rule exclusion lists.

Dialect (matches the shell-glob flavour used by gitignore tooling with
``require_literal_separator`` off):

* ``*`` and ``?`` match any character, ``/`` included.
* ``**`` must form a whole path component; ``**/`` matches zero or more
  leading directories.
* ``[abc]``, ``[a-z]`` and ``[!abc]`` character classes.

``fnmatch.translate`` silently treats an unclosed ``[`` as a literal, so the
translation is done here in order to reject malformed patterns.
"""

from __future__ import annotations

import re


class GlobSyntaxError(ValueError):
    """Raised for a malformed glob pattern."""


def _translate_class(pattern: str, start: int) -> tuple[str, int]:
    """Translate the character class opening at *start*; return (regex, next index)."""
    i = start + 1
    negate = False
    if i < len(pattern) and pattern[i] == "!":
        negate = True
        i += 1
    body_start = i
    # A ']' right after '[' or '[!' is a literal member.
    if i < len(pattern) and pattern[i] == "]":
        i += 1
    while i < len(pattern) and pattern[i] != "]":
        i += 1
    if i >= len(pattern):
        msg = f"unclosed character class in '{pattern}'"
        raise GlobSyntaxError(msg)

    body = pattern[body_start:i]
    parts: list[str] = []
    j = 0
    while j < len(body):
        if j + 2 < len(body) and body[j + 1] == "-":
            low, high = body[j], body[j + 2]
            if low > high:
                msg = f"invalid range '{low}-{high}' in '{pattern}'"
                raise GlobSyntaxError(msg)
            parts.append(f"{re.escape(low)}-{re.escape(high)}")
            j += 3
        else:
            parts.append(re.escape(body[j]))
            j += 1
    prefix = "^" if negate else ""
    return f"[{prefix}{''.join(parts)}]", i + 1


def translate(pattern: str) -> str:
    """Translate a glob into an (unanchored) regular expression body."""
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                before_ok = i == 0 or pattern[i - 1] == "/"
                after = i + 2
                after_ok = after == n or pattern[after] == "/"
                if not (before_ok and after_ok):
                    msg = f"'**' must be a whole path component in '{pattern}'"
                    raise GlobSyntaxError(msg)
                if after < n:
                    out.append("(?:.*/)?")
                    i = after + 1
                else:
                    out.append(".*")
                    i = after
                continue
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "[":
            regex, i = _translate_class(pattern, i)
            out.append(regex)
            continue
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


def compile_glob(pattern: str, *, case_sensitive: bool = True) -> re.Pattern[str]:
    """Compile *pattern*; use ``.fullmatch`` on POSIX-style path strings."""
    flags = re.DOTALL if case_sensitive else re.DOTALL | re.IGNORECASE
    return re.compile(translate(pattern), flags)
