from datetime import date

import questionary
import yaml
from click.testing import CliRunner

from kalamos import __version__
from kalamos.cli import cli


def scaffold(tmp_path):
    runner = CliRunner()
    target = tmp_path / "mysite"
    result = runner.invoke(cli, ["new", str(target)])
    assert result.exit_code == 0, result.output
    return runner, target


def test_cli_new_scaffolds_project(tmp_path):
    runner, target = scaffold(tmp_path)
    assert (target / "kalamos.yaml").exists()
    assert (target / "layouts" / "base.html").exists()
    assert (target / "layouts" / "partials" / "nav.html").exists()
    assert (target / "posts" / "2024-01-01-hello-world.md").exists()
    assert (target / "assets" / "css" / "style.css").exists()

    result = runner.invoke(cli, ["new", str(target)])
    assert result.exit_code != 0
    assert "non-empty" in result.output


def test_cli_build_scaffolded_site(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build", "--workers", "1"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "Full build" in result.output
    index = (target / "output" / "index.html").read_text(encoding="utf-8")
    assert "Hello, world" in index
    assert (target / "output" / "css" / "style.css").exists()

    result = runner.invoke(cli, ["build"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "Build: 0 rendered" in result.output


def test_cli_build_reports_failures(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    (target / "posts" / "2024-02-02-broken.md").write_text(
        "---\ntitle: [unclosed\n---\nBody\n", encoding="utf-8"
    )
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "posts/2024-02-02-broken.md" in result.output


def test_cli_build_rejects_bad_config(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    (target / "kalamos.yaml").write_text("colour: blue\n", encoding="utf-8")
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build"])
    assert result.exit_code != 0
    assert "Unknown configuration keys" in result.output


def test_cli_serve_passes_port(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    monkeypatch.chdir(target)
    called = {}

    class DummyServer:
        def __init__(self, root, http_port=None):
            called["port"] = http_port
            self.output_dir = root / "output"
            self.http_port = http_port

        def start(self):
            called["started"] = True

    monkeypatch.setattr("kalamos.server.DevServer", DummyServer)

    result = runner.invoke(cli, ["serve", "--port", "5050"], catch_exceptions=False)
    assert result.exit_code == 0
    assert called == {"port": 5050, "started": True}
    assert "http://localhost:5050" in result.output


class _Answer:
    def __init__(self, value):
        self.value = value

    def ask(self):
        return self.value


def fake_prompts(monkeypatch, *answers):
    queue = list(answers)
    monkeypatch.setattr(questionary, "text", lambda *a, **k: _Answer(queue.pop(0)))


def test_cli_post_writes_front_matter(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    monkeypatch.chdir(target)
    fake_prompts(monkeypatch, "  My Second Post ", "python, web ,")

    result = runner.invoke(cli, ["post"], catch_exceptions=False)
    assert result.exit_code == 0, result.output

    created = target / "posts" / f"{date.today():%Y-%m-%d}-my-second-post.md"
    text = created.read_text(encoding="utf-8")
    front = yaml.safe_load(text.split("---\n")[1])
    assert front == {"title": "My Second Post", "date": date.today(), "tags": ["python", "web"]}
    assert text.endswith("Write your post here.\n")


def test_cli_post_refuses_duplicate_slug(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    monkeypatch.chdir(target)
    fake_prompts(monkeypatch, "Hello World", "")

    result = runner.invoke(cli, ["post"])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_cli_post_aborts_on_cancel(monkeypatch, tmp_path):
    runner, target = scaffold(tmp_path)
    monkeypatch.chdir(target)
    fake_prompts(monkeypatch, None)

    result = runner.invoke(cli, ["post"])
    assert result.exit_code == 1
    assert len(list((target / "posts").glob("*.md"))) == 1


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])
    assert __version__ in result.output


def test_module_main_entrypoint():
    from kalamos.__main__ import main

    assert callable(main)
