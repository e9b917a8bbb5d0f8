"""Utility functions for Kalamos.

String, date and path helpers shared by the loader, the layout table and the
writer.

Key functions:
    slugify: Convert filenames to URL slugs.
    extract_date_from_name: Extract date from filename prefix.
    coerce_date: Normalize a front matter date value.
    first_paragraph: First prose paragraph of Markdown as plain text.
    is_markdown: Check if a path is a Markdown file.
    digest_bytes: sha256 fingerprint.
    is_relative_to: Safe containment check for paths.
"""

from __future__ import annotations

import hashlib
import re
from datetime import date, datetime
from pathlib import Path

MARKDOWN_SUFFIXES = (".md", ".markdown")


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug, possibly empty.
    """
    cleaned = name
    if "-" in cleaned:
        parts = cleaned.split("-")
        if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
            cleaned = "-".join(parts[3:])
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    return cleaned.strip("-").lower()


def extract_date_from_name(name: str) -> date | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        date object if a valid date prefix is found, None otherwise.

    Examples:
        >>> extract_date_from_name("2024-01-15-hello-world")
        datetime.date(2024, 1, 15)

        >>> extract_date_from_name("hello-world")
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return date(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def coerce_date(value: object) -> date:
    """Turn a front matter date value into a date.

    YAML and TOML already produce date/datetime objects for unquoted dates;
    quoted strings are parsed as ISO dates.

    Raises:
        ValueError: If the value is not a recognizable date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return date.fromisoformat(text[:10])
    raise ValueError(f"not a date: {value!r}")


def first_paragraph(text: str) -> str:
    """Return the first prose paragraph of Markdown text as plain text.

    Headings, images, code fences and HTML comments are skipped; whitespace
    is collapsed.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "![", "```", "~~~", "---", "<!--")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        return " ".join(para.split())
    return ""


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file (case-insensitive)."""
    return path.suffix.lower() in MARKDOWN_SUFFIXES


def is_relative_to(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def digest_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def list_files(root: Path) -> list[Path]:
    """All regular files below root, sorted; empty when root is missing."""
    if not root.exists():
        return []
    return sorted(path for path in root.rglob("*") if path.is_file())
