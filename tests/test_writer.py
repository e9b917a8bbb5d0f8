import pytest

from kalamos.assets import AssetCopier
from kalamos.errors import OutputWriteError
from kalamos.graph import DependencyGraph
from kalamos.writer import OutputWriter, WriteStatus


def test_write_then_unchanged(tmp_path):
    graph = DependencyGraph()
    writer = OutputWriter(tmp_path / "out", graph)

    assert writer.write("a/b.html", b"<p>hi</p>", "pages/a/b.md") is WriteStatus.WRITTEN
    assert (tmp_path / "out" / "a" / "b.html").read_bytes() == b"<p>hi</p>"
    assert graph.artifact("a/b.html").source == "pages/a/b.md"

    assert writer.write("a/b.html", b"<p>hi</p>", "pages/a/b.md") is WriteStatus.UNCHANGED
    assert writer.write("a/b.html", b"<p>bye</p>", "pages/a/b.md") is WriteStatus.WRITTEN
    assert list((tmp_path / "out" / "a").iterdir()) == [tmp_path / "out" / "a" / "b.html"]


def test_missing_file_is_rewritten_even_with_same_digest(tmp_path):
    writer = OutputWriter(tmp_path / "out", DependencyGraph())
    writer.write("x.html", b"x", "pages/x.md")
    (tmp_path / "out" / "x.html").unlink()

    assert writer.write("x.html", b"x", "pages/x.md") is WriteStatus.WRITTEN


def test_paths_escaping_the_output_dir_are_refused(tmp_path):
    writer = OutputWriter(tmp_path / "out", DependencyGraph())
    with pytest.raises(OutputWriteError):
        writer.write("../evil.html", b"x", "pages/evil.md")
    assert not (tmp_path / "evil.html").exists()


def test_os_errors_become_output_write_errors(tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    (out / "blocked").write_text("a file, not a directory", encoding="utf-8")
    writer = OutputWriter(out, DependencyGraph())

    with pytest.raises(OutputWriteError) as excinfo:
        writer.write("blocked/page.html", b"x", "pages/blocked/page.md")
    assert excinfo.value.output_id == "blocked/page.html"
    assert isinstance(excinfo.value.original_error, OSError)


def test_delete_prunes_empty_directories(tmp_path):
    graph = DependencyGraph()
    writer = OutputWriter(tmp_path / "out", graph)
    writer.write("2024/01/a.html", b"a", "posts/a.md")
    writer.write("2024/02/b.html", b"b", "posts/b.md")

    writer.delete("2024/01/a.html")

    assert not (tmp_path / "out" / "2024" / "01").exists()
    assert (tmp_path / "out" / "2024" / "02" / "b.html").exists()
    assert "2024/01/a.html" not in graph
    writer.delete("2024/01/a.html")  # already gone


def test_asset_copier_skips_current_files(tmp_path):
    assets = tmp_path / "assets"
    (assets / "img").mkdir(parents=True)
    (assets / "img" / "logo.svg").write_text("<svg/>", encoding="utf-8")
    (assets / "robots.txt").write_text("User-agent: *", encoding="utf-8")
    copier = AssetCopier(assets, tmp_path / "out")

    assert copier.copy_all() == 2
    assert copier.copy_all() == 0
    assert (tmp_path / "out" / "img" / "logo.svg").read_text(encoding="utf-8") == "<svg/>"
    assert copier.owns(assets / "robots.txt")
    assert not copier.owns(tmp_path / "robots.txt")

    copier.remove(assets / "img")
    assert not (tmp_path / "out" / "img").exists()
