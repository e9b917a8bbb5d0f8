"""Markdown rendering for Kalamos.

Converts Markdown bodies to HTML fragments with mistune. Headings get
anchor ids and fenced code blocks are highlighted with Pygments when the
language is known.

Key objects:
- render_markdown: Pure ``text -> html`` function used by the content model.
- MarkdownError: Raised when conversion fails.
"""

from __future__ import annotations

import re

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]


class MarkdownError(Exception):
    """Markdown could not be converted to HTML."""


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _HighlightRenderer(mistune.HTMLRenderer):
    """HTML renderer with heading anchors and Pygments code blocks."""

    def __init__(self):
        super().__init__(escape=False)
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        """Render a heading with a unique auto-generated id."""
        base_id = _generate_heading_id(text) or "section"

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block with Pygments syntax highlighting.

        Args:
            code: The code content.
            info: Language identifier (e.g., 'python', 'javascript').

        Returns:
            HTML string with highlighted code.
        """
        lang = info.split()[0] if info and info.strip() else None
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        lang_class = f' class="language-{lang}"' if lang else ""
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


def render_markdown(text: str) -> str:
    """Render Markdown to an HTML fragment.

    A fresh renderer is created per call, so this is safe to call from
    several render workers at once.

    Raises:
        MarkdownError: If mistune fails on the input.
    """
    markdown = mistune.create_markdown(
        renderer=_HighlightRenderer(), plugins=MARKDOWN_PLUGINS
    )
    try:
        return markdown(text)
    except Exception as exc:
        raise MarkdownError(f"{type(exc).__name__}: {exc}") from exc


def pygments_css(style: str = "default") -> str:
    """CSS for the ``.highlight`` blocks, exposed to layouts."""
    return HtmlFormatter(style=style).get_style_defs(".highlight")
