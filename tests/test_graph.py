import json
import threading

import pytest

from kalamos.graph import (
    ALL_POSTS,
    GRAPH_FORMAT_VERSION,
    DependencyGraph,
    Producer,
    ProducerKind,
)

POST_A = Producer.content("posts/a.md")
POST_LAYOUT = Producer.layout("post")
BASE = Producer.layout("base")


def populated() -> DependencyGraph:
    graph = DependencyGraph()
    for output_id, source, producers in [
        ("a.html", "posts/a.md", [POST_A, POST_LAYOUT, BASE]),
        ("index.html", "pages/index.md", [Producer.content("pages/index.md"), BASE, ALL_POSTS]),
        ("about.html", "pages/about.md", [Producer.content("pages/about.md"), Producer.layout("page")]),
    ]:
        graph.ensure_artifact(output_id, source)
        for producer in producers:
            graph.record_dependency(output_id, producer)
    graph.set_layout_links({"post": {"base"}, "page": {"base"}, "base": set()})
    return graph


def test_producer_encoding():
    assert ALL_POSTS.kind is ProducerKind.AGGREGATE
    assert POST_A.encode() == "content:posts/a.md"
    assert Producer.decode("layout:partials/nav") == Producer.layout("partials/nav")


def test_reverse_index_follows_edges():
    graph = populated()
    assert graph.consumers(BASE) == {"a.html", "index.html"}
    assert graph.consumers(ALL_POSTS) == {"index.html"}

    graph.record_dependency("a.html", BASE)
    assert graph.dependencies("a.html") == {POST_A, POST_LAYOUT, BASE}


def test_begin_pass_forgets_old_edges():
    graph = populated()
    graph.begin_pass("index.html")

    assert graph.dependencies("index.html") == frozenset()
    assert graph.consumers(ALL_POSTS) == frozenset()
    assert "index.html" in graph


def test_affected_outputs_is_one_hop_for_content_and_aggregates():
    graph = populated()
    assert graph.affected_outputs([POST_A]) == {"a.html"}
    assert graph.affected_outputs([ALL_POSTS]) == {"index.html"}
    assert graph.affected_outputs([Producer.content("posts/new.md")]) == set()


def test_affected_outputs_expands_layout_descendants():
    graph = populated()
    # about.html reaches base only through the page layout
    assert graph.affected_outputs([BASE]) == {"a.html", "index.html", "about.html"}
    assert graph.affected_outputs([POST_LAYOUT]) == {"a.html"}


def test_layout_descendants_survive_cycles():
    graph = DependencyGraph()
    graph.set_layout_links({"a": {"b"}, "b": {"a"}, "c": {"a"}})
    assert graph.layout_descendants(["a"]) == {"a", "b", "c"}


def test_remove_output_drops_artifact_and_edges():
    graph = populated()
    graph.remove_output("a.html")

    assert "a.html" not in graph
    assert graph.consumers(POST_A) == frozenset()
    assert len(graph) == 2


@pytest.mark.parametrize("read", [len, lambda graph: "a.html" in graph])
def test_size_and_membership_wait_for_writers(read):
    graph = populated()
    results = []
    reader = threading.Thread(target=lambda: results.append(read(graph)))

    with graph._lock:
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()
        graph.remove_output("a.html")

    reader.join(timeout=5)
    assert results in ([2], [False])


def test_outputs_for_and_failed_outputs():
    graph = populated()
    graph.artifact("about.html").failed = True

    assert graph.outputs_for("posts/a.md") == {"a.html"}
    assert graph.failed_outputs() == {"about.html"}
    assert graph.outputs() == ["a.html", "about.html", "index.html"]


def test_save_and_load_preserve_everything(tmp_path):
    graph = populated()
    graph.artifact("a.html").digest = "abc"
    graph.set_source_digest("posts/a.md", "123")
    path = tmp_path / "cache" / "graph.json"

    graph.save(path)
    loaded = DependencyGraph.load(path)

    assert loaded.to_dict() == graph.to_dict()
    assert loaded.artifact("a.html").digest == "abc"
    assert loaded.source_digest("posts/a.md") == "123"
    assert loaded.affected_outputs([BASE]) == {"a.html", "index.html", "about.html"}


def test_load_rejects_missing_corrupt_and_foreign_files(tmp_path):
    path = tmp_path / "graph.json"
    assert DependencyGraph.load(path) is None

    path.write_text("{", encoding="utf-8")
    assert DependencyGraph.load(path) is None

    path.write_text(json.dumps({"version": GRAPH_FORMAT_VERSION + 1}), encoding="utf-8")
    assert DependencyGraph.load(path) is None

    path.write_text(
        json.dumps({"version": GRAPH_FORMAT_VERSION, "outputs": {"x.html": {}}}),
        encoding="utf-8",
    )
    assert DependencyGraph.load(path) is None
