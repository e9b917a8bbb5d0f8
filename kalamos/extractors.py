"""Front matter and excerpt extraction for Kalamos.

A content file may start with a delimited front matter block:

    ---                 +++
    title: Hello        title = "Hello"
    ---                 +++

``---`` blocks are YAML, ``+++`` blocks are TOML. Blank lines may precede
the opening delimiter; anything else there is an error. Only the first
closing delimiter ends the block, so later ``---``/``+++`` lines belong to
the body.

Key functions:
- extract_frontmatter: Split raw text into (mapping, body).
- extract_excerpt: Excerpt for a post body.
"""

from __future__ import annotations

import re
import tomllib
from typing import Any

import yaml

from .utils import first_paragraph

MORE_RE = re.compile(r"\s*<!--\s*more\s*-->\s*(?:\n|$)")

DELIMITERS = {"---": "yaml", "+++": "toml"}


class FrontMatterSyntaxError(ValueError):
    """Front matter block is present but unusable."""


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split front matter from body.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (front matter dict, remaining body). A file without an
        opening delimiter has empty front matter and is all body.

    Raises:
        FrontMatterSyntaxError: Content before the block, an unterminated
            block, invalid YAML/TOML, or a block that is not a mapping.
    """
    text = text.lstrip("\ufeff")
    lines = text.splitlines(keepends=True)
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    if start == len(lines):
        return {}, text

    opener = lines[start].strip()
    fmt = DELIMITERS.get(opener)
    if fmt is None:
        # A lone --- is a Markdown thematic break; +++ never is.
        if sum(1 for line in lines[start + 1 :] if line.strip() == "+++") >= 2:
            raise FrontMatterSyntaxError("content before front matter")
        return {}, text

    for end in range(start + 1, len(lines)):
        if lines[end].strip() == opener:
            break
    else:
        raise FrontMatterSyntaxError(f"unterminated front matter (missing '{opener}')")

    block = "".join(lines[start + 1 : end])
    body = "".join(lines[end + 1 :])
    return _parse_block(block, fmt), body


def _parse_block(block: str, fmt: str) -> dict[str, Any]:
    try:
        if fmt == "yaml":
            data = yaml.safe_load(block)
        else:
            data = tomllib.loads(block)
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
        raise FrontMatterSyntaxError(f"invalid {fmt.upper()}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FrontMatterSyntaxError(
            f"front matter must be a mapping, got {type(data).__name__}"
        )
    return data


def extract_excerpt(body: str) -> str:
    """Return the excerpt source for a post body.

    Markdown above a ``<!--more-->`` marker is used when the marker exists;
    otherwise the first prose paragraph.

    Marker excerpts are Markdown; fallback excerpts are plain text.
    """
    parts = MORE_RE.split(body, maxsplit=1)
    if len(parts) == 2:
        return parts[0].strip()
    return first_paragraph(body)
