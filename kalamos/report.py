"""Build pass reports."""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import KalamosError, LoadError, format_error


@dataclass
class BuildReport:
    """Result of one build pass.

    Attributes:
        outputs_rendered: Outputs rendered and written with new bytes.
        outputs_skipped_unchanged: Outputs rendered to identical bytes.
        outputs_failed: (OutputId, error) for every output that failed.
        load_failures: (ContentId, error) for content that did not load.
        outputs_deleted: Outputs removed because their source went away.
        full_rebuild: Whether the pass covered every known input.
        duration: Wall-clock seconds.
    """

    outputs_rendered: list[str] = field(default_factory=list)
    outputs_skipped_unchanged: list[str] = field(default_factory=list)
    outputs_failed: list[tuple[str, KalamosError]] = field(default_factory=list)
    load_failures: list[tuple[str, LoadError]] = field(default_factory=list)
    outputs_deleted: list[str] = field(default_factory=list)
    full_rebuild: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.outputs_failed and not self.load_failures

    @property
    def failed_ids(self) -> list[str]:
        return [output_id for output_id, _ in self.outputs_failed]

    def errors(self) -> list[tuple[str, str]]:
        """(id, message) pairs for every failure, loads first."""
        return [(cid, format_error(exc)) for cid, exc in self.load_failures] + [
            (oid, format_error(exc)) for oid, exc in self.outputs_failed
        ]

    def summary(self) -> str:
        kind = "Full build" if self.full_rebuild else "Build"
        return (
            f"{kind}: {len(self.outputs_rendered)} rendered, "
            f"{len(self.outputs_skipped_unchanged)} unchanged, "
            f"{len(self.outputs_deleted)} deleted, "
            f"{len(self.outputs_failed) + len(self.load_failures)} failed "
            f"in {self.duration:.2f}s"
        )
