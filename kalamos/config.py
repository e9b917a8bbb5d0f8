"""Site configuration for Kalamos.

Configuration lives in ``kalamos.yaml`` at the project root. Every key is
optional; missing keys fall back to DEFAULT_CONFIG. The build engine only
ever sees a validated SiteConfig: an invalid configuration raises
ConfigError before any build pass begins.

Key objects:
- SiteConfig: Parsed, path-resolved configuration.
- load_config: Reads and validates kalamos.yaml.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .utils import is_relative_to

CONFIG_FILENAME = "kalamos.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "posts_dir": "posts",
    "pages_dir": "pages",
    "layouts_dir": "layouts",
    "assets_dir": "assets",
    "output_dir": "output",
    "cache_file": ".kalamos-cache.json",
    "post_layout": "post",
    "page_layout": "page",
    "workers": 0,
    "port": 4000,
    "tick_seconds": 0.05,
    "site": {},
}


@dataclass
class SiteConfig:
    """Validated site configuration.

    Attributes:
        project_root: Directory holding kalamos.yaml and the source roots.
        posts_dir: Root of the Post collection.
        pages_dir: Root of the Page collection.
        layouts_dir: Root of the layout templates.
        assets_dir: Root of static assets (copied, not tracked).
        output_dir: Destination tree.
        cache_file: Where the dependency graph is persisted between runs.
        site: Site-wide variables injected into every render as ``site``.
        workers: Render pool size; 0 means one per CPU.
        port: Dev server HTTP port.
        tick_seconds: Window in which change events are coalesced.
        post_layout: Default layout for Posts.
        page_layout: Default layout for Pages.
    """

    project_root: Path
    posts_dir: Path
    pages_dir: Path
    layouts_dir: Path
    assets_dir: Path
    output_dir: Path
    cache_file: Path
    site: dict[str, Any] = field(default_factory=dict)
    workers: int = 0
    port: int = 4000
    tick_seconds: float = 0.05
    post_layout: str = "post"
    page_layout: str = "page"

    @property
    def config_path(self) -> Path:
        return self.project_root / CONFIG_FILENAME

    @property
    def pool_size(self) -> int:
        return self.workers or os.cpu_count() or 1

    @property
    def content_roots(self) -> tuple[Path, Path]:
        return self.posts_dir, self.pages_dir

    def validate(self) -> None:
        """Check the configuration before the engine starts.

        Raises:
            ConfigError: On missing roots or overlapping source/output trees.
        """
        if not self.layouts_dir.is_dir():
            raise ConfigError(f"Layout directory not found: {self.layouts_dir}")
        if not (self.posts_dir.is_dir() or self.pages_dir.is_dir()):
            raise ConfigError(
                f"No content found: expected {self.posts_dir} or {self.pages_dir}"
            )
        if self.workers < 0:
            raise ConfigError(f"workers must be >= 0, got {self.workers}")
        if self.tick_seconds < 0:
            raise ConfigError(f"tick_seconds must be >= 0, got {self.tick_seconds}")
        if self.output_dir == self.project_root:
            raise ConfigError("output_dir must not be the project root")
        for root in (*self.content_roots, self.layouts_dir, self.assets_dir):
            if is_relative_to(self.output_dir, root) or is_relative_to(
                root, self.output_dir
            ):
                raise ConfigError(
                    f"output_dir {self.output_dir} overlaps source directory {root}"
                )


def load_config(
    project_root: Path, overrides: dict[str, Any] | None = None
) -> SiteConfig:
    """Load and validate kalamos.yaml.

    Args:
        project_root: Root directory of the project.
        overrides: Values that win over the file (e.g. CLI flags).

    Returns:
        A validated SiteConfig.

    Raises:
        ConfigError: If the file is unreadable, not a mapping, or invalid.
    """
    project_root = project_root.resolve()
    values = dict(DEFAULT_CONFIG)
    config_path = project_root / CONFIG_FILENAME
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Could not read {config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        values.update(loaded)
    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    site = values.get("site") or {}
    if not isinstance(site, dict):
        raise ConfigError("'site' must be a mapping of site-wide variables")

    def _dir(key: str) -> Path:
        return (project_root / str(values[key])).resolve()

    try:
        config = SiteConfig(
            project_root=project_root,
            posts_dir=_dir("posts_dir"),
            pages_dir=_dir("pages_dir"),
            layouts_dir=_dir("layouts_dir"),
            assets_dir=_dir("assets_dir"),
            output_dir=_dir("output_dir"),
            cache_file=_dir("cache_file"),
            site=dict(site),
            workers=int(values["workers"]),
            port=int(values["port"]),
            tick_seconds=float(values["tick_seconds"]),
            post_layout=str(values["post_layout"]),
            page_layout=str(values["page_layout"]),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc
    config.validate()
    return config
