"""Minimal `key: value` front matter for markdown pages."""

from __future__ import annotations

import re

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
INDENTED_RE = re.compile(r"^\s")


def strip_quotes(value: str) -> str:
    trimmed = value.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ('"', "'"):
        return trimmed[1:-1].strip()
    return trimmed


def parse_block(raw: str) -> dict[str, str]:
    """Parse front matter lines; indented lines continue the previous key."""
    fm: dict[str, str] = {}
    key = None
    continuation: list[str] = []

    def flush():
        if key is not None and continuation:
            fm[key] = strip_quotes(" ".join(continuation))

    for line in raw.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        if key is not None and INDENTED_RE.match(line):
            continuation.append(line.strip())
            continue
        flush()
        key, continuation = None, []
        if ":" not in line:
            continue
        name, _, rest = line.partition(":")
        value = rest.strip()
        if value:
            fm[name.strip()] = strip_quotes(value)
        else:
            key = name.strip()
            fm[key] = ""
    flush()
    return fm


def split_frontmatter(content: str) -> tuple[dict[str, str], str]:
    match = FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    return parse_block(match.group(1)), content[match.end() :].lstrip("\r\n")
