from pathlib import Path

import pytest

from kalamos.config import DEFAULT_CONFIG, load_config
from kalamos.errors import ConfigError


def create_site(tmp_path: Path, config: str | None = None) -> Path:
    root = tmp_path / "site"
    (root / "layouts").mkdir(parents=True)
    (root / "posts").mkdir()
    if config is not None:
        (root / "kalamos.yaml").write_text(config, encoding="utf-8")
    return root


def test_defaults_without_config_file(tmp_path):
    root = create_site(tmp_path)
    config = load_config(root)

    assert config.project_root == root.resolve()
    assert config.output_dir == root.resolve() / "output"
    assert config.cache_file == root.resolve() / DEFAULT_CONFIG["cache_file"]
    assert config.post_layout == "post"
    assert config.page_layout == "page"
    assert config.workers == 0
    assert config.pool_size >= 1
    assert config.site == {}


def test_file_values_and_overrides(tmp_path):
    root = create_site(
        tmp_path,
        "output_dir: public\nworkers: 2\nport: 8000\nsite:\n  title: Blog\n",
    )
    config = load_config(root, {"workers": 5, "port": None})

    assert config.output_dir.name == "public"
    assert config.workers == 5
    assert config.port == 8000
    assert config.site == {"title": "Blog"}


@pytest.mark.parametrize(
    "text, message",
    [
        ("- a list\n", "mapping"),
        ("colour: blue\n", "Unknown configuration keys: colour"),
        ("site: 3\n", "site"),
        ("workers: -1\n", "workers"),
        ("workers: many\n", "Invalid configuration value"),
        ("output_dir: posts/out\n", "overlaps"),
        ("output_dir: .\n", "project root"),
        ("site: [unclosed\n", "Could not read"),
    ],
)
def test_invalid_configuration(tmp_path, text, message):
    root = create_site(tmp_path, text)
    with pytest.raises(ConfigError, match=message):
        load_config(root)


def test_layouts_dir_is_required(tmp_path):
    root = tmp_path / "site"
    (root / "posts").mkdir(parents=True)
    with pytest.raises(ConfigError, match="Layout directory"):
        load_config(root)


def test_some_content_root_is_required(tmp_path):
    root = tmp_path / "site"
    (root / "layouts").mkdir(parents=True)
    with pytest.raises(ConfigError, match="No content"):
        load_config(root)
