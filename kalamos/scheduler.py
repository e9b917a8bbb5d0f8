"""Incremental build scheduler for Kalamos.

The scheduler turns batches of filesystem change events into build passes.
A pass moves through four states:

    IDLE -> COLLECTING -> RESOLVING -> RENDERING -> IDLE

COLLECTING maps changed paths to invalidated inputs (content files,
layouts, the ``all_posts`` and ``all_pages`` aggregates). RESOLVING asks the dependency graph
which outputs those inputs reach and which outputs must be deleted.
RENDERING renders the affected outputs on a thread pool, outputs that read
aggregates after the others, and applies the results on the scheduler
thread: the writer writes, the graph gets the freshly recorded edges.

A full rebuild is a pass whose change set is every input on disk; there is
no separate code path for it.

Key classes:
- ChangeKind / ChangeEvent: What a watcher reports.
- SchedulerState: Current pass phase.
- IncrementalScheduler: Owns the loaded site and runs passes.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .assets import AssetCopier
from .collections import AggregateView, PageCollection, PostCollection
from .config import SiteConfig, load_config
from .content import ContentItem, ContentKind, ContentLoader
from .errors import ConfigError, KalamosError, LoadError, OutputConflict
from .graph import (
    ALL_PAGES,
    ALL_POSTS,
    DependencyGraph,
    DependencyRecorder,
    Producer,
    ProducerKind,
)
from .layouts import LayoutResolver, LayoutTable
from .report import BuildReport
from .templates import TemplateEngine
from .utils import digest_bytes, is_relative_to, list_files
from .writer import OutputWriter, WriteStatus

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    path: Path
    kind: ChangeKind


class SchedulerState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    RESOLVING = "resolving"
    RENDERING = "rendering"


@dataclass
class _Collected:
    """Outcome of the COLLECTING phase."""

    producers: set[Producer] = field(default_factory=set)
    loaded: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)


@dataclass
class _RenderResult:
    output_id: str
    source: str
    data: bytes | None
    error: KalamosError | None
    producers: set[Producer]


class IncrementalScheduler:
    """Runs full and incremental build passes for one site.

    Attributes:
        config: Site configuration.
        graph: Dependency graph, persisted to ``config.cache_file``.
        items: Loaded content by ContentId.
        load_errors: Content that currently fails to load, by ContentId.
        layouts: Layout table.
        state: Current SchedulerState.
    """

    def __init__(self, config: SiteConfig, graph: DependencyGraph | None = None):
        self.graph = graph if graph is not None else DependencyGraph()
        self._has_history = graph is not None
        self.items: dict[str, ContentItem] = {}
        self.load_errors: dict[str, LoadError] = {}
        self.state = SchedulerState.IDLE
        self._pending: dict[Path, ChangeKind] = {}
        self._pending_lock = threading.Lock()
        self._pass_lock = threading.Lock()
        self._forced: set[str] = set()
        self._configure(config)

    @classmethod
    def from_config(cls, config: SiteConfig) -> IncrementalScheduler:
        """Scheduler with the graph persisted by a previous run, if any."""
        return cls(config, DependencyGraph.load(config.cache_file))

    def _configure(self, config: SiteConfig) -> None:
        self.config = config
        self.loader = ContentLoader(config)
        self.layouts = LayoutTable(config.layouts_dir)
        self.resolver = LayoutResolver(
            self.layouts,
            {ContentKind.POST: config.post_layout, ContentKind.PAGE: config.page_layout},
        )
        self.engine = TemplateEngine(self.layouts, config.site)
        self.writer = OutputWriter(config.output_dir, self.graph)
        self.assets = AssetCopier(config.assets_dir, config.output_dir)

    # -- event intake --------------------------------------------------------

    def submit(self, events: Iterable[ChangeEvent]) -> None:
        """Queue change events for the next pass.

        Safe to call from watcher threads at any time, including while a pass
        is rendering; those events simply wait for the next pass. Events for
        the same path are coalesced, the latest kind winning, except that a
        path added and then modified in one batch stays ADDED.
        """
        with self._pending_lock:
            for event in events:
                path = Path(event.path).resolve()
                previous = self._pending.get(path)
                if previous is ChangeKind.ADDED and event.kind is ChangeKind.MODIFIED:
                    continue
                self._pending[path] = event.kind

    def pending(self) -> dict[Path, ChangeKind]:
        """Snapshot of the queued, coalesced events."""
        with self._pending_lock:
            return dict(self._pending)

    def _take_pending(self) -> dict[Path, ChangeKind]:
        with self._pending_lock:
            pending, self._pending = self._pending, {}
            return pending

    def run_pending(self) -> BuildReport | None:
        """Run one pass over every queued event; None when nothing is queued."""
        events = self._take_pending()
        if not events:
            return None
        if self.config.config_path in events:
            try:
                config = load_config(self.config.project_root)
            except ConfigError as exc:
                logger.error("Ignoring configuration change: %s", exc)
                del events[self.config.config_path]
                if not events:
                    return None
            else:
                logger.info("Configuration changed; rebuilding everything")
                self.items.clear()
                self.load_errors.clear()
                self._configure(config)
                return self.full_rebuild()
        return self._run_pass(events, full=False)

    # -- entry points ----------------------------------------------------------

    def full_rebuild(self) -> BuildReport:
        """Rebuild every output, reusing the incremental machinery.

        The change set is every content file and layout on disk plus a removal
        for every input known from before that is gone now.
        """
        self._take_pending()
        events: dict[Path, ChangeKind] = {}
        for path in self._known_input_paths():
            events[path] = ChangeKind.REMOVED
        for path in self.loader.iter_files():
            events[path] = ChangeKind.MODIFIED
        for path in list_files(self.config.layouts_dir):
            events[path] = ChangeKind.MODIFIED
        report = self._run_pass(events, full=True)
        self.assets.copy_all()
        return report

    def startup(self) -> BuildReport:
        """First pass of a process.

        Without a persisted graph this is a full rebuild. With one, inputs are
        compared against their recorded digests and only what changed while
        the process was not running is rebuilt.
        """
        if not self._has_history:
            return self.full_rebuild()
        self._has_history = False
        events = self._prime_from_disk()
        report = self._run_pass(events, full=False)
        self.assets.copy_all()
        return report

    def _known_input_paths(self) -> set[Path]:
        root = self.config.project_root
        known = {root / cid for cid in self.items}
        known.update(root / cid for cid in self.load_errors)
        known.update(root / sid for sid in self.graph.known_sources())
        known.update(layout.source for layout in self.layouts.values())
        return known

    def _prime_from_disk(self) -> dict[Path, ChangeKind]:
        """Load unchanged inputs quietly; return events for everything else."""
        events: dict[Path, ChangeKind] = {}
        seen: set[str] = set()
        for path in list_files(self.config.layouts_dir):
            sid = self._source_id(path)
            seen.add(sid)
            self.layouts.refresh(path)
            if self.graph.source_digest(sid) != digest_bytes(path.read_bytes()):
                events[path] = ChangeKind.MODIFIED
        for path in self.loader.iter_files():
            cid = self.loader.content_id(path)
            seen.add(cid)
            raw = path.read_bytes()
            if self.graph.source_digest(cid) != digest_bytes(raw):
                events[path] = ChangeKind.MODIFIED
                continue
            try:
                self.items[cid] = self.loader.load(path, raw)
            except LoadError:
                events[path] = ChangeKind.MODIFIED
        for sid in self.graph.known_sources() - seen:
            events[self.config.project_root / sid] = ChangeKind.REMOVED
        self.graph.set_layout_links(self.layouts.links())
        for output_id in self.graph.outputs():
            artifact = self.graph.artifact(output_id)
            if artifact is not None and not self.writer.target(output_id).is_file():
                self._forced.add(artifact.source)
        return events

    # -- the pass ----------------------------------------------------------------

    def _run_pass(self, events: dict[Path, ChangeKind], full: bool) -> BuildReport:
        with self._pass_lock:
            started = time.perf_counter()
            report = BuildReport(full_rebuild=full)
            try:
                self.state = SchedulerState.COLLECTING
                collected = self._collect(events, full, report)

                self.state = SchedulerState.RESOLVING
                targets, deletions = self._resolve(collected, full)
                self._delete_outputs(deletions, report)

                self.state = SchedulerState.RENDERING
                self._render(targets, report)
            finally:
                self.state = SchedulerState.IDLE
            self._save_graph()
            report.duration = time.perf_counter() - started
            logger.info(report.summary())
            return report

    def _source_id(self, path: Path) -> str:
        return path.relative_to(self.config.project_root).as_posix()

    def _collect(
        self, events: dict[Path, ChangeKind], full: bool, report: BuildReport
    ) -> _Collected:
        collected = _Collected()
        layouts_changed = False
        for path, kind in sorted(events.items()):
            if is_relative_to(path, self.config.layouts_dir):
                if kind is ChangeKind.REMOVED and not path.is_file():
                    paths = [
                        layout.source
                        for layout in self.layouts.values()
                        if is_relative_to(layout.source, path)
                    ] or [path]
                else:
                    paths = [path]
                for layout_path in paths:
                    layouts_changed |= self._collect_layout(layout_path, collected)
            elif self.assets.owns(path):
                self._collect_asset(path, kind)
            elif self.loader.collection_for(path) is not None:
                if kind is ChangeKind.REMOVED and not path.is_file():
                    for known in self._known_under(path):
                        self._collect_removal(known, collected)
                elif self.loader.is_content_path(path):
                    self._collect_content(path, full, collected, report)
            else:
                logger.debug("Ignoring change outside the site: %s", path)

        if layouts_changed:
            self.graph.set_layout_links(self.layouts.links())
            for cycle in self.layouts.cycles():
                logger.error("Layout cycle: %s", " -> ".join(cycle))

        # Sources still broken from earlier passes.
        reported = {cid for cid, _ in report.load_failures}
        for cid in sorted(self.load_errors.keys() - reported):
            report.load_failures.append((cid, self.load_errors[cid]))
        return collected

    def _collect_layout(self, path: Path, collected: _Collected) -> bool:
        if path.is_dir():
            return False
        layout_id = self.layouts.refresh(path)
        if layout_id is None:
            return False
        sid = self._source_id(path)
        if path.is_file():
            self.graph.set_source_digest(sid, digest_bytes(path.read_bytes()))
        else:
            self.graph.drop_source_digest(sid)
        collected.producers.add(Producer.layout(layout_id))
        return True

    def _collect_asset(self, path: Path, kind: ChangeKind) -> None:
        if path.is_file():
            self.assets.copy(path)
        elif kind is ChangeKind.REMOVED:
            self.assets.remove(path)

    def _known_under(self, path: Path) -> list[Path]:
        """Known content paths at or below a removed path."""
        return sorted(p for p in self._known_input_paths() if is_relative_to(p, path))

    def _forget(self, cid: str, collected: _Collected) -> None:
        """Drop an item that was removed or no longer loads."""
        previous = self.items.pop(cid, None)
        self.graph.drop_source_digest(cid)
        collected.producers.add(Producer.content(cid))
        if previous is not None:
            kind = previous.kind
        else:
            kind = self.loader.collection_for(self.config.project_root / cid)
        if kind is not None:
            collected.producers.add(_LISTINGS[kind])

    def _collect_removal(self, path: Path, collected: _Collected) -> None:
        cid = self._source_id(path)
        self.load_errors.pop(cid, None)
        self._forget(cid, collected)
        collected.removed.add(cid)

    def _collect_content(
        self, path: Path, full: bool, collected: _Collected, report: BuildReport
    ) -> None:
        if not path.is_file():
            self._collect_removal(path, collected)
            return
        cid = self.loader.content_id(path)
        previous = self.items.get(cid)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            error = LoadError(cid, f"could not read: {exc}")
            self._record_load_error(cid, error, collected, report)
            return
        digest = digest_bytes(raw)
        if not full and previous is not None and self.graph.source_digest(cid) == digest:
            return

        try:
            item = self.loader.load(path, raw)
        except LoadError as exc:
            self._record_load_error(cid, exc, collected, report)
            return

        self.items[cid] = item
        self.load_errors.pop(cid, None)
        self.graph.set_source_digest(cid, digest)
        collected.producers.add(Producer.content(cid))
        collected.loaded.add(cid)
        collected.producers |= _listings_changed(previous, item)

    def _record_load_error(
        self, cid: str, exc: LoadError, collected: _Collected, report: BuildReport
    ) -> None:
        logger.warning("Could not load %s", exc)
        report.load_failures.append((cid, exc))
        self.load_errors[cid] = exc
        self._forget(cid, collected)

    def _resolve(self, collected: _Collected, full: bool) -> tuple[list[str], set[str]]:
        """Content ids to render, and output ids to delete."""
        if full:
            sources = set(self.items)
            sources.update(self.graph.artifact(oid).source for oid in self.graph.outputs())
        else:
            affected = self.graph.affected_outputs(collected.producers)
            affected |= self.graph.failed_outputs()
            sources = {self.graph.artifact(oid).source for oid in affected}
            sources |= collected.loaded
        sources |= collected.removed
        sources |= self._forced
        self._forced = set()

        targets: set[str] = set()
        deletions: set[str] = set()
        for cid in sorted(sources):
            item = self.items.get(cid)
            if item is not None:
                targets.add(cid)
                deletions |= self.graph.outputs_for(cid) - {item.output_path()}
            elif cid in self.load_errors:
                for output_id in self.graph.outputs_for(cid):
                    self.graph.artifact(output_id).failed = True
            else:
                deletions |= self.graph.outputs_for(cid)

        # An output its source gave up passes to the next item claiming it.
        claims = self._claims()
        for output_id in deletions:
            targets.update(claims.get(output_id, ()))

        claimed = {self.items[cid].output_path() for cid in targets}
        return sorted(targets), deletions - claimed

    def _claims(self) -> dict[str, list[str]]:
        """OutputId -> loaded items rendering to it, in ContentId order."""
        claims: dict[str, list[str]] = {}
        for cid in sorted(self.items):
            claims.setdefault(self.items[cid].output_path(), []).append(cid)
        return claims

    def _delete_outputs(self, deletions: set[str], report: BuildReport) -> None:
        for output_id in sorted(deletions):
            try:
                self.writer.delete(output_id)
            except KalamosError as exc:
                logger.warning("Could not delete %s: %s", output_id, exc)
                report.outputs_failed.append((output_id, exc))
                continue
            report.outputs_deleted.append(output_id)

    def _snapshot(self) -> dict[Producer, Sequence]:
        """Aggregate collections as of now, keyed by their producer."""
        posts = [item.summary() for item in self.items.values() if item.is_post]
        pages = [item.summary() for item in self.items.values() if not item.is_post]
        return {ALL_POSTS: PostCollection(posts), ALL_PAGES: PageCollection(pages)}

    def _render(self, targets: list[str], report: BuildReport) -> None:
        """Render targets in two waves and apply the results.

        Outputs whose last render read an aggregate, and outputs with no
        history, go in the second wave, after everything that only reads
        its own content. Aggregates are snapshotted once, before either wave.
        """
        snapshots = self._snapshot()
        claims = self._claims()

        first: list[ContentItem] = []
        second: list[ContentItem] = []
        for cid in targets:
            item = self.items[cid]
            output_id = item.output_path()
            owner = claims[output_id][0]
            if owner != cid:
                error = OutputConflict(output_id, owner, cid)
                logger.warning("%s", error)
                report.outputs_failed.append((output_id, error))
                continue
            deps = self.graph.dependencies(output_id)
            if deps and not any(p.kind is ProducerKind.AGGREGATE for p in deps):
                first.append(item)
            else:
                second.append(item)

        for wave in (first, second):
            for result in self._render_wave(wave, snapshots):
                self._apply(result, report)

    def _render_wave(
        self, items: list[ContentItem], snapshots: dict[Producer, Sequence]
    ) -> list[_RenderResult]:
        if not items:
            return []
        workers = min(self.config.pool_size, len(items))
        if workers <= 1:
            return [self._render_one(item, snapshots) for item in items]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda i: self._render_one(i, snapshots), items))

    def _render_one(
        self, item: ContentItem, snapshots: dict[Producer, Sequence]
    ) -> _RenderResult:
        """Render one output. Runs on a worker; touches no shared state."""
        recorder = DependencyRecorder()
        recorder.record(Producer.content(item.id))
        output_id = item.output_path()
        try:
            chain = self.resolver.resolve(item, recorder)
            aggregates = {
                producer.id: AggregateView(
                    collection, functools.partial(recorder.record, producer)
                )
                for producer, collection in snapshots.items()
            }
            context = item.produce_context(chain[0], self.config.site, aggregates)
            data = item.render(context, chain, self.engine)
        except KalamosError as exc:
            return _RenderResult(output_id, item.id, None, exc, recorder.producers)
        return _RenderResult(output_id, item.id, data, None, recorder.producers)

    def _apply(self, result: _RenderResult, report: BuildReport) -> None:
        """Write a render result and update the graph (scheduler thread only)."""
        output_id = result.output_id
        error = result.error
        status = None
        if error is None:
            try:
                status = self.writer.write(output_id, result.data, result.source)
            except KalamosError as exc:
                error = exc

        artifact = self.graph.ensure_artifact(output_id, result.source)
        if error is not None:
            # Old edges stay; new ones are added.
            for producer in result.producers:
                self.graph.record_dependency(output_id, producer)
            artifact.failed = True
            logger.warning("Failed to render %s: %s", output_id, error)
            report.outputs_failed.append((output_id, error))
            return

        self.graph.begin_pass(output_id)
        for producer in result.producers:
            self.graph.record_dependency(output_id, producer)
        artifact.failed = False
        if status is WriteStatus.WRITTEN:
            logger.debug("Rendered %s", output_id)
            report.outputs_rendered.append(output_id)
        else:
            report.outputs_skipped_unchanged.append(output_id)

    def _save_graph(self) -> None:
        try:
            self.graph.save(self.config.cache_file)
        except OSError as exc:
            logger.warning("Could not save build cache %s: %s", self.config.cache_file, exc)


_LISTINGS = {ContentKind.POST: ALL_POSTS, ContentKind.PAGE: ALL_PAGES}


def _listings_changed(previous: ContentItem | None, item: ContentItem) -> set[Producer]:
    """Aggregates whose contents a (re)load of item changes."""
    if previous is None or previous.summary() != item.summary():
        return {_LISTINGS[item.kind]}
    return set()
