"""Dependency graph for incremental builds.

The graph records, for every output file, the inputs its last render read:
content files, layouts, and aggregate nodes such as ``all_posts``. Given a
set of changed inputs it answers which outputs must be rendered again.

Aggregates are first-class producer nodes, so a changed post reaches a
listing page through a single lookup (post -> ``all_posts`` -> listing)
without any closure over the graph. Layout inheritance is the one genuinely
transitive relation; ``affected_outputs`` expands layout producers to their
descendant layouts before the lookup.

Key classes:
- Producer: (kind, id) node an output can depend on.
- OutputArtifact: Bookkeeping for one output (source, digest, edges).
- DependencyRecorder: Per-render edge collector, owned by one worker.
- DependencyGraph: Edge store, reverse index, persistence.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)

GRAPH_FORMAT_VERSION = 1


class ProducerKind(str, Enum):
    CONTENT = "content"
    LAYOUT = "layout"
    AGGREGATE = "aggregate"


class Producer(NamedTuple):
    kind: ProducerKind
    id: str

    @classmethod
    def content(cls, content_id: str) -> Producer:
        return cls(ProducerKind.CONTENT, content_id)

    @classmethod
    def layout(cls, layout_id: str) -> Producer:
        return cls(ProducerKind.LAYOUT, layout_id)

    @classmethod
    def aggregate(cls, aggregate_id: str) -> Producer:
        return cls(ProducerKind.AGGREGATE, aggregate_id)

    def encode(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def decode(cls, text: str) -> Producer:
        kind, _, ident = text.partition(":")
        return cls(ProducerKind(kind), ident)


ALL_POSTS = Producer.aggregate("all_posts")
ALL_PAGES = Producer.aggregate("all_pages")


@dataclass
class OutputArtifact:
    """State kept for one output file.

    Attributes:
        output_id: Destination path relative to the output root.
        source: ContentId the output is rendered from.
        digest: sha256 of the bytes last written, or None before first write.
        failed: Whether the most recent render of this output failed.
    """

    output_id: str
    source: str
    digest: str | None = None
    failed: bool = False


@dataclass
class DependencyRecorder:
    """Collects the producers read while rendering a single output.

    Each render gets its own recorder, so no locking is needed; the
    scheduler applies the collected edges to the graph after the render.
    """

    producers: set[Producer] = field(default_factory=set)

    def record(self, producer: Producer) -> None:
        self.producers.add(producer)


class DependencyGraph:
    """Edges from outputs to the producers they were derived from.

    The graph holds:
    - forward edges (output -> producers) and the reverse index
      (producer -> outputs), always kept in step;
    - one OutputArtifact per output;
    - layout inheritance links (child layout -> layouts it builds on), used
      only to expand layout changes to descendants;
    - input digests, so a restarted process can tell which inputs changed
      while it was not running.
    """

    def __init__(self) -> None:
        self._edges: dict[str, set[Producer]] = {}
        self._consumers: dict[Producer, set[str]] = {}
        self._artifacts: dict[str, OutputArtifact] = {}
        self._layout_links: dict[str, set[str]] = {}
        self._source_digests: dict[str, str] = {}
        self._lock = threading.RLock()

    # -- edges -----------------------------------------------------------

    def begin_pass(self, output_id: str) -> None:
        """Forget every edge previously recorded for output_id."""
        with self._lock:
            for producer in self._edges.pop(output_id, set()):
                consumers = self._consumers.get(producer)
                if consumers is None:
                    continue
                consumers.discard(output_id)
                if not consumers:
                    del self._consumers[producer]

    def record_dependency(self, output_id: str, producer: Producer) -> None:
        """Add an edge; recording the same edge twice is a no-op."""
        with self._lock:
            self._edges.setdefault(output_id, set()).add(producer)
            self._consumers.setdefault(producer, set()).add(output_id)

    def dependencies(self, output_id: str) -> frozenset[Producer]:
        with self._lock:
            return frozenset(self._edges.get(output_id, ()))

    def consumers(self, producer: Producer) -> frozenset[str]:
        with self._lock:
            return frozenset(self._consumers.get(producer, ()))

    def set_layout_links(self, links: Mapping[str, Iterable[str]]) -> None:
        """Replace the layout inheritance adjacency (child -> bases)."""
        with self._lock:
            self._layout_links = {child: set(bases) for child, bases in links.items()}

    def layout_descendants(self, layout_ids: Iterable[str]) -> set[str]:
        """Return layout_ids plus every layout that builds on any of them.

        Walks ancestor to descendant with an explicit worklist; the visited
        set keeps the walk finite even when the links contain a cycle.
        """
        with self._lock:
            children: dict[str, set[str]] = {}
            for child, bases in self._layout_links.items():
                for base in bases:
                    children.setdefault(base, set()).add(child)
        seen = set(layout_ids)
        stack = list(seen)
        while stack:
            current = stack.pop()
            for child in children.get(current, ()):
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return seen

    def affected_outputs(self, changed: Iterable[Producer]) -> set[str]:
        """Every output with an edge to a changed producer.

        Layout producers are first expanded to their descendant layouts;
        everything else is a direct one-hop lookup.
        """
        changed = set(changed)
        layout_ids = {p.id for p in changed if p.kind is ProducerKind.LAYOUT}
        if layout_ids:
            changed.update(
                Producer.layout(lid) for lid in self.layout_descendants(layout_ids)
            )
        affected: set[str] = set()
        with self._lock:
            for producer in changed:
                affected.update(self._consumers.get(producer, ()))
        return affected

    # -- artifacts ---------------------------------------------------------

    def artifact(self, output_id: str) -> OutputArtifact | None:
        with self._lock:
            return self._artifacts.get(output_id)

    def ensure_artifact(self, output_id: str, source: str) -> OutputArtifact:
        with self._lock:
            artifact = self._artifacts.get(output_id)
            if artifact is None:
                artifact = OutputArtifact(output_id=output_id, source=source)
                self._artifacts[output_id] = artifact
            else:
                artifact.source = source
            return artifact

    def outputs(self) -> list[str]:
        with self._lock:
            return sorted(self._artifacts)

    def outputs_for(self, source: str) -> set[str]:
        """Outputs rendered from the given ContentId."""
        with self._lock:
            return {
                oid for oid, art in self._artifacts.items() if art.source == source
            }

    def failed_outputs(self) -> set[str]:
        with self._lock:
            return {oid for oid, art in self._artifacts.items() if art.failed}

    def remove_output(self, output_id: str) -> None:
        """Drop an output's artifact record and all of its edges."""
        with self._lock:
            self.begin_pass(output_id)
            self._artifacts.pop(output_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)

    def __contains__(self, output_id: object) -> bool:
        with self._lock:
            return output_id in self._artifacts

    # -- input digests -------------------------------------------------------

    def source_digest(self, path_id: str) -> str | None:
        with self._lock:
            return self._source_digests.get(path_id)

    def set_source_digest(self, path_id: str, digest: str) -> None:
        with self._lock:
            self._source_digests[path_id] = digest

    def drop_source_digest(self, path_id: str) -> None:
        with self._lock:
            self._source_digests.pop(path_id, None)

    def known_sources(self) -> set[str]:
        with self._lock:
            return set(self._source_digests)

    # -- persistence ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": GRAPH_FORMAT_VERSION,
                "outputs": {
                    oid: {
                        "source": art.source,
                        "digest": art.digest,
                        "failed": art.failed,
                        "producers": sorted(
                            p.encode() for p in self._edges.get(oid, ())
                        ),
                    }
                    for oid, art in sorted(self._artifacts.items())
                },
                "layout_links": {
                    child: sorted(bases)
                    for child, bases in sorted(self._layout_links.items())
                },
                "sources": dict(sorted(self._source_digests.items())),
            }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> DependencyGraph:
        graph = cls()
        for oid, entry in payload.get("outputs", {}).items():
            artifact = graph.ensure_artifact(oid, entry["source"])
            artifact.digest = entry.get("digest")
            artifact.failed = bool(entry.get("failed", False))
            for encoded in entry.get("producers", []):
                graph.record_dependency(oid, Producer.decode(encoded))
        graph.set_layout_links(payload.get("layout_links", {}))
        for path_id, digest in payload.get("sources", {}).items():
            graph.set_source_digest(path_id, digest)
        return graph

    def save(self, path: Path) -> None:
        """Write the graph as JSON, atomically."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp, path)

    @classmethod
    def load(cls, path: Path) -> DependencyGraph | None:
        """Read a persisted graph.

        Returns:
            The graph, or None when the file is missing, unreadable, or from
            another format version (the caller then does a full rebuild).
        """
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable build cache %s: %s", path, exc)
            return None
        if not isinstance(payload, dict) or payload.get("version") != GRAPH_FORMAT_VERSION:
            logger.info("Build cache %s is from another version; rebuilding", path)
            return None
        try:
            return cls.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt build cache %s: %s", path, exc)
            return None
