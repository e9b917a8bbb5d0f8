"""Output writing for Kalamos.

The writer puts rendered bytes into the output tree. It skips writes whose
bytes match what was last written for the same output, so serve-mode
rebuilds leave untouched files (and their timestamps) alone.

Key classes:
- WriteStatus: WRITTEN or UNCHANGED.
- OutputWriter: Writes and deletes outputs, keeping digests in the graph.
"""

from __future__ import annotations

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path

from .errors import OutputWriteError
from .graph import DependencyGraph
from .utils import digest_bytes

logger = logging.getLogger(__name__)


class WriteStatus(str, Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"


class OutputWriter:
    """Writes rendered outputs below ``output_dir``.

    Digests of written bytes live on the graph's OutputArtifact records, so
    they are persisted along with the edges.

    Attributes:
        output_dir: Root of the output tree.
        graph: Dependency graph owning the artifact records.
    """

    def __init__(self, output_dir: Path, graph: DependencyGraph):
        self.output_dir = output_dir
        self.graph = graph

    def target(self, output_id: str) -> Path:
        target = (self.output_dir / output_id).resolve()
        if not target.is_relative_to(self.output_dir.resolve()):
            raise OutputWriteError(
                output_id, OSError(f"{output_id} escapes the output directory")
            )
        return target

    def write(self, output_id: str, data: bytes, source: str) -> WriteStatus:
        """Write one output unless its bytes are unchanged.

        Args:
            output_id: Destination path relative to the output root.
            data: Rendered bytes.
            source: ContentId the output was rendered from.

        Returns:
            WRITTEN or UNCHANGED.

        Raises:
            OutputWriteError: The file could not be written.
        """
        digest = digest_bytes(data)
        target = self.target(output_id)
        artifact = self.graph.ensure_artifact(output_id, source)
        if artifact.digest == digest and target.is_file():
            return WriteStatus.UNCHANGED
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise OutputWriteError(output_id, exc) from exc
        artifact.digest = digest
        logger.debug("Wrote %s", output_id)
        return WriteStatus.WRITTEN

    def delete(self, output_id: str) -> None:
        """Remove an output file and its artifact record.

        A file that is already gone is fine. Directories left empty are
        pruned up to the output root.

        Raises:
            OutputWriteError: The file exists but could not be removed.
        """
        target = self.target(output_id)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise OutputWriteError(output_id, exc) from exc
        self.graph.remove_output(output_id)
        self._prune_empty_dirs(target.parent)
        logger.debug("Deleted %s", output_id)

    def _prune_empty_dirs(self, directory: Path) -> None:
        root = self.output_dir.resolve()
        while directory != root and directory.is_relative_to(root):
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent
