"""Site building entry points for Kalamos.

This module wires configuration, the persisted dependency graph and the
scheduler together. Both the ``build`` command and the dev server go
through it.

Key objects:
- Site: A configured project with its scheduler.
- build_site: One-shot build of a project.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import SiteConfig, load_config
from .report import BuildReport
from .scheduler import IncrementalScheduler

logger = logging.getLogger(__name__)


@dataclass
class Site:
    """A loaded project.

    Attributes:
        config: Validated configuration.
        scheduler: Scheduler owning the site's content and graph.
    """

    config: SiteConfig
    scheduler: IncrementalScheduler

    @classmethod
    def open(
        cls, project_root: Path, overrides: dict[str, Any] | None = None
    ) -> Site:
        """Load config and the persisted graph for a project.

        Raises:
            ConfigError: The configuration is invalid.
        """
        config = load_config(project_root, overrides)
        logger.debug("Opened site at %s", config.project_root)
        return cls(config, IncrementalScheduler.from_config(config))

    def build(self, full: bool = False) -> BuildReport:
        if full:
            return self.scheduler.full_rebuild()
        return self.scheduler.startup()


def build_site(
    project_root: Path, full: bool = False, workers: int | None = None
) -> BuildReport:
    """Build the site at project_root.

    Without ``full``, only what changed since the last build (as recorded in
    the build cache) is rendered again; a project never built before gets a
    full rebuild either way.

    Args:
        project_root: Root directory of the project.
        full: Render every output regardless of the build cache.
        workers: Render pool size, overriding the configuration.

    Returns:
        The BuildReport of the pass.

    Raises:
        ConfigError: The configuration is invalid.
    """
    site = Site.open(project_root, {"workers": workers})
    return site.build(full=full)
