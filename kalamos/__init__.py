"""Kalamos static site generator.

Builds a site of Markdown posts and pages rendered through Jinja layouts,
and keeps it up to date incrementally: every output remembers which
content, layouts and site-wide listings its last render read, so an edit
re-renders exactly the outputs that depend on it.

The main entry point is the CLI module; ``kalamos.build.build_site`` is the
programmatic one.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
