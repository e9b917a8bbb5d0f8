from pathlib import Path

import pytest

from kalamos.content import ContentItem, ContentKind
from kalamos.errors import CyclicLayout, LayoutError, UnknownLayout
from kalamos.graph import DependencyRecorder, Producer
from kalamos.layouts import LayoutResolver, LayoutTable


def create_layouts(tmp_path: Path) -> Path:
    root = tmp_path / "layouts"
    (root / "partials").mkdir(parents=True)
    (root / "base.html").write_text("<html>{{ content }}</html>", encoding="utf-8")
    (root / "post.html.jinja").write_text(
        '---\nlayout: base\n---\n{% include "partials/meta.html" %}{{ content }}',
        encoding="utf-8",
    )
    (root / "partials" / "meta.html").write_text("<meta>", encoding="utf-8")
    (root / "page.html").write_text("---\nlayout: base.html\n---\n{{ content }}", encoding="utf-8")
    return root


def item(kind=ContentKind.PAGE, layout=None) -> ContentItem:
    return ContentItem(
        kind=kind,
        id="pages/x.md",
        source=Path("pages/x.md"),
        rel_path="x.md",
        front_matter={},
        body="",
        title="X",
        layout=layout,
    )


def resolver(table: LayoutTable) -> LayoutResolver:
    return LayoutResolver(table, {ContentKind.POST: "post", ContentKind.PAGE: "page"})


def test_table_loads_ids_parents_and_includes(tmp_path):
    table = LayoutTable.load(create_layouts(tmp_path))

    assert sorted(table) == ["base", "page", "partials/meta", "post"]
    assert table["post"].parent == "base"
    assert table["post"].includes == {"partials/meta"}
    assert table["page"].parent == "base"
    assert "layout:" not in table["post"].template
    assert table.links()["post"] == {"base", "partials/meta"}


def test_suffix_precedence(tmp_path):
    root = create_layouts(tmp_path)
    (root / "base.html.jinja").write_text("preferred {{ content }}", encoding="utf-8")

    table = LayoutTable.load(root)

    assert table["base"].template == "preferred {{ content }}"
    (root / "base.html.jinja").unlink()
    assert table.refresh(root / "base.html.jinja") == "base"
    assert table["base"].source == root / "base.html"


def test_refresh_handles_removal_and_non_layouts(tmp_path):
    root = create_layouts(tmp_path)
    table = LayoutTable.load(root)

    (root / "page.html").unlink()
    assert table.refresh(root / "page.html") == "page"
    assert "page" not in table
    assert table.refresh(root / "notes.txt") is None


def test_resolve_chain_records_every_layout(tmp_path):
    table = LayoutTable.load(create_layouts(tmp_path))
    recorder = DependencyRecorder()

    chain = resolver(table).resolve(item(ContentKind.POST), recorder)

    assert chain == ["post", "base"]
    assert recorder.producers == {
        Producer.layout("post"),
        Producer.layout("partials/meta"),
        Producer.layout("base"),
    }


def test_explicit_layout_beats_default(tmp_path):
    table = LayoutTable.load(create_layouts(tmp_path))
    assert resolver(table).resolve(item(layout="base")) == ["base"]


def test_unknown_layout_still_records_it(tmp_path):
    table = LayoutTable.load(create_layouts(tmp_path))
    recorder = DependencyRecorder()

    with pytest.raises(UnknownLayout) as excinfo:
        resolver(table).resolve(item(layout="missing"), recorder)

    assert excinfo.value.layout_id == "missing"
    assert excinfo.value.referrer == "pages/x.md"
    assert Producer.layout("missing") in recorder.producers


def test_unknown_parent_names_its_referrer(tmp_path):
    root = create_layouts(tmp_path)
    (root / "orphan.html").write_text("---\nlayout: gone\n---\n", encoding="utf-8")
    table = LayoutTable.load(root)

    with pytest.raises(UnknownLayout) as excinfo:
        resolver(table).resolve(item(layout="orphan"))

    assert excinfo.value.referrer == "orphan"


def test_cycles_are_found_and_fail_resolution(tmp_path):
    root = create_layouts(tmp_path)
    (root / "a.html").write_text("---\nlayout: b\n---\n", encoding="utf-8")
    (root / "b.html").write_text("---\nlayout: c\n---\n", encoding="utf-8")
    (root / "c.html").write_text("---\nlayout: a\n---\n", encoding="utf-8")
    (root / "self.html").write_text("---\nlayout: self\n---\n", encoding="utf-8")
    table = LayoutTable.load(root)

    assert table.cycles() == [["a", "b", "c", "a"], ["self", "self"]]
    with pytest.raises(CyclicLayout) as excinfo:
        resolver(table).resolve(item(layout="b"))
    assert excinfo.value.chain == ["b", "c", "a", "b"]


def test_broken_front_matter_makes_layout_unusable(tmp_path):
    root = create_layouts(tmp_path)
    (root / "broken.html").write_text("---\nlayout: [x\n---\n", encoding="utf-8")
    table = LayoutTable.load(root)

    assert table["broken"].error
    assert table.template_source("broken") is None
    with pytest.raises(LayoutError):
        resolver(table).resolve(item(layout="broken"))


def test_template_source_tracks_digest(tmp_path):
    root = create_layouts(tmp_path)
    table = LayoutTable.load(root)
    _, _, before = table.template_source("base.html")

    (root / "base.html").write_text("<body>{{ content }}</body>", encoding="utf-8")
    table.refresh(root / "base.html")
    text, filename, after = table.template_source("base")

    assert text == "<body>{{ content }}</body>"
    assert filename == str(root / "base.html")
    assert before != after
