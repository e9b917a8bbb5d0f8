"""Template rendering engine for Kalamos.

This module uses Jinja2 to expand layouts. Templates are served from the
LayoutTable rather than straight from disk, so layout front matter never
reaches Jinja and a template is recompiled only when its layout changed.

Key class:
- TemplateEngine: Renders a layout, or a whole layout chain, with a context.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import jinja2
from jinja2 import Environment, FunctionLoader, select_autoescape
from markupsafe import Markup

from .errors import TemplateNotFound
from .layouts import LayoutTable
from .renderers import pygments_css, render_markdown


def _markdown_filter(text: str | None) -> Markup:
    """Jinja filter: render Markdown (e.g. a post excerpt) inline."""
    return Markup(render_markdown(text or ""))


class TemplateEngine:
    """Template rendering engine using Jinja2.

    The environment is created once and shared by every render worker;
    Jinja environments are safe to render from several threads as long as
    nobody mutates them, and the engine never does after construction.

    Attributes:
        layouts: Table the templates are loaded from.
        site: Site-wide variables, installed as the ``site`` global.
        env: Jinja2 environment.
    """

    def __init__(self, layouts: LayoutTable, site: dict[str, Any] | None = None):
        self.layouts = layouts
        self.site = dict(site or {})
        self.env = Environment(
            loader=FunctionLoader(self._load_template),
            autoescape=select_autoescape(["html", "xml", "jinja"], default=True),
            enable_async=False,
        )
        self._install_globals()

    def _install_globals(self) -> None:
        """Install global variables and functions in the Jinja environment."""
        self.env.globals["site"] = self.site
        self.env.globals["url_for"] = self._url_for
        self.env.globals["pygments_css"] = pygments_css
        self.env.filters["markdown"] = _markdown_filter

    def _load_template(self, name: str):
        found = self.layouts.template_source(name)
        if found is None:
            return None
        source, filename, digest = found

        def uptodate() -> bool:
            current = self.layouts.template_source(name)
            return current is not None and current[2] == digest

        return source, filename, uptodate

    def _url_for(self, path: str) -> str:
        """Generate a URL for a path, applying the site base_url if configured.

        Args:
            path: Path to generate URL for.

        Returns:
            Absolute URL when ``site.base_url`` is set, else a rooted path.
        """
        if path.startswith(("http://", "https://", "//")):
            return path
        rooted = path if path.startswith("/") else f"/{path}"
        base = str(self.site.get("base_url", "") or "").rstrip("/")
        return f"{base}{rooted}" if base else rooted

    def render_template(self, layout_id: str, context: dict[str, Any]) -> str:
        """Render one layout with the given context.

        Raises:
            TemplateNotFound: The layout has no usable template source.
            jinja2.TemplateError: Expansion failed.
        """
        try:
            template = self.env.get_template(layout_id)
        except jinja2.TemplateNotFound as exc:
            if exc.name != layout_id:
                # A missing include inside the layout, not the layout itself.
                raise
            raise TemplateNotFound(layout_id) from exc
        return template.render(**context)

    def render_chain(
        self, chain: Sequence[str], content: str, context: dict[str, Any]
    ) -> str:
        """Render content through a layout chain, innermost layout first.

        Each layout sees the output of the previous one as ``content``.
        """
        html = content
        for layout_id in chain:
            html = self.render_template(
                layout_id, {**context, "content": Markup(html)}
            )
        return html
