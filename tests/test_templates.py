from pathlib import Path

import jinja2
import pytest

from kalamos.errors import TemplateNotFound
from kalamos.layouts import LayoutTable
from kalamos.renderers import pygments_css, render_markdown
from kalamos.templates import TemplateEngine


def create_engine(tmp_path: Path, site=None) -> tuple[Path, TemplateEngine]:
    root = tmp_path / "layouts"
    (root / "partials").mkdir(parents=True)
    (root / "base.html").write_text(
        "<title>{{ title }} - {{ site.title }}</title>{{ content }}", encoding="utf-8"
    )
    (root / "post.html").write_text(
        '---\nlayout: base\n---\n{% include "partials/by.html" %}<article>{{ content }}</article>',
        encoding="utf-8",
    )
    (root / "partials" / "by.html").write_text("<em>by {{ author }}</em>", encoding="utf-8")
    (root / "links.html").write_text(
        "{{ url_for('css/site.css') }}|{{ url_for('https://cdn.example/x.js') }}",
        encoding="utf-8",
    )
    table = LayoutTable.load(root)
    return root, TemplateEngine(table, site or {"title": "Site"})


def test_render_chain_wraps_innermost_first(tmp_path):
    _, engine = create_engine(tmp_path)

    html = engine.render_chain(
        ["post", "base"], "<p>Hi & bye</p>", {"title": "Hello", "author": "Ann"}
    )

    assert html == (
        "<title>Hello - Site</title><em>by Ann</em><article><p>Hi & bye</p></article>"
    )


def test_context_values_are_escaped(tmp_path):
    _, engine = create_engine(tmp_path)
    html = engine.render_template("base", {"title": "<script>", "content": ""})
    assert "&lt;script&gt;" in html


def test_url_for_applies_base_url(tmp_path):
    _, engine = create_engine(tmp_path, {"base_url": "https://example.com/blog/"})
    assert engine.render_template("links", {}) == (
        "https://example.com/blog/css/site.css|https://cdn.example/x.js"
    )

    _, engine = create_engine(tmp_path / "other")
    assert engine.render_template("links", {}).startswith("/css/site.css|")


def test_missing_layout_template(tmp_path):
    _, engine = create_engine(tmp_path)
    with pytest.raises(TemplateNotFound) as excinfo:
        engine.render_template("nope", {})
    assert excinfo.value.layout_id == "nope"


def test_missing_include_is_a_template_error(tmp_path):
    root, engine = create_engine(tmp_path)
    (root / "partials" / "by.html").unlink()
    engine.layouts.refresh(root / "partials" / "by.html")

    with pytest.raises(jinja2.TemplateNotFound):
        engine.render_template("post", {"content": ""})


def test_templates_reload_when_layout_changes(tmp_path):
    root, engine = create_engine(tmp_path)
    assert engine.render_template("partials/by", {"author": "A"}) == "<em>by A</em>"

    (root / "partials" / "by.html").write_text("<b>{{ author }}</b>", encoding="utf-8")
    engine.layouts.refresh(root / "partials" / "by.html")

    assert engine.render_template("partials/by", {"author": "A"}) == "<b>A</b>"


def test_markdown_filter_returns_markup(tmp_path):
    root, engine = create_engine(tmp_path)
    (root / "excerpt.html").write_text("{{ text | markdown }}", encoding="utf-8")
    engine.layouts.refresh(root / "excerpt.html")

    assert engine.render_template("excerpt", {"text": "*hi*"}) == "<p><em>hi</em></p>\n"


def test_markdown_headings_get_unique_ids():
    html = render_markdown("# Intro\n\n## Intro\n\n## Setup, then Run")
    assert '<h1 id="intro">Intro</h1>' in html
    assert '<h2 id="intro-1">Intro</h2>' in html
    assert 'id="setup-then-run"' in html


def test_markdown_code_highlighting():
    highlighted = render_markdown("```python\nprint('x')\n```\n")
    assert 'class="highlight"' in highlighted

    plain = render_markdown("```nosuchlang\n<tag>\n```\n")
    assert '<pre><code class="language-nosuchlang">&lt;tag&gt;' in plain


def test_markdown_plugins():
    html = render_markdown("~~gone~~\n\n| a | b |\n|---|---|\n| 1 | 2 |\n")
    assert "<del>gone</del>" in html
    assert "<table>" in html


def test_pygments_css_returns_styles():
    assert ".highlight" in pygments_css()
