"""Static asset copying for Kalamos.

Assets are copied one-to-one from the assets directory into the output
tree, preserving relative paths. They are not part of dependency tracking:
an asset event copies or removes exactly that file.

Key class:
- AssetCopier: Full and per-file copies.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .utils import is_relative_to, list_files

logger = logging.getLogger(__name__)


class AssetCopier:
    """Copies files from ``assets_dir`` to the same relative path in ``output_dir``.

    Attributes:
        assets_dir: Directory containing source assets.
        output_dir: Root of the output tree.
    """

    def __init__(self, assets_dir: Path, output_dir: Path):
        self.assets_dir = assets_dir
        self.output_dir = output_dir

    def owns(self, path: Path) -> bool:
        return is_relative_to(path, self.assets_dir)

    def destination(self, path: Path) -> Path:
        return self.output_dir / path.relative_to(self.assets_dir)

    def copy_all(self) -> int:
        """Copy every asset; returns how many files were copied.

        Files whose size and modification time already match are skipped.
        """
        copied = 0
        for path in list_files(self.assets_dir):
            if self.copy(path):
                copied += 1
        return copied

    def copy(self, path: Path) -> bool:
        """Copy one asset; False when the destination is already current."""
        dest = self.destination(path)
        if dest.exists():
            src_stat, dest_stat = path.stat(), dest.stat()
            if (
                src_stat.st_size == dest_stat.st_size
                and int(src_stat.st_mtime) == int(dest_stat.st_mtime)
            ):
                return False
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, dest)
        logger.debug("Copied asset %s", dest.relative_to(self.output_dir))
        return True

    def remove(self, path: Path) -> None:
        dest = self.destination(path)
        if dest.is_dir():
            shutil.rmtree(dest, ignore_errors=True)
        else:
            dest.unlink(missing_ok=True)
