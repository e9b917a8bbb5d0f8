"""Layout table and layout resolution for Kalamos.

Layouts are Jinja templates under the layouts directory. A layout may name a
parent in its own front matter; the rendered child becomes the parent's
``content``, Jekyll style:

    ---
    layout: base
    ---
    <article>{{ content }}</article>

Layout ids are paths relative to the layouts directory without the template
suffix (``base``, ``partials/nav``). When several files map to the same id
the first suffix in LAYOUT_SUFFIXES wins.

Key classes:
- Layout: One parsed layout file.
- LayoutTable: Arena of layouts keyed by id, refreshed file by file.
- LayoutResolver: Maps a content item to its layout chain.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, TemplateSyntaxError, meta

from .errors import CyclicLayout, LayoutError, UnknownLayout
from .extractors import FrontMatterSyntaxError, extract_frontmatter
from .graph import DependencyRecorder, Producer
from .utils import digest_bytes

if TYPE_CHECKING:
    from .content import ContentItem, ContentKind

logger = logging.getLogger(__name__)

LAYOUT_SUFFIXES = (".html.jinja", ".jinja", ".html")

# Only used to parse templates for include/extends references.
_PARSE_ENV = Environment()


def strip_layout_suffix(name: str) -> str:
    for suffix in LAYOUT_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


@dataclass
class Layout:
    """A named template.

    Attributes:
        id: Layout id.
        source: Path of the file it was read from.
        template: Jinja source with the front matter removed.
        parent: Id of the layout this one renders into, if any.
        includes: Ids of templates pulled in with include/import/extends.
        digest: Fingerprint of the file bytes.
        error: Why the layout is unusable (bad front matter or syntax).
    """

    id: str
    source: Path
    template: str
    parent: str | None = None
    includes: frozenset[str] = field(default_factory=frozenset)
    digest: str = ""
    error: str | None = None

    @classmethod
    def parse(cls, layout_id: str, path: Path, raw: bytes) -> Layout:
        digest = digest_bytes(raw)
        try:
            text = raw.decode("utf-8")
            front_matter, template = extract_frontmatter(text)
        except (UnicodeDecodeError, FrontMatterSyntaxError) as exc:
            return cls(layout_id, path, "", digest=digest, error=str(exc))

        parent = front_matter.get("layout")
        if parent is not None:
            parent = strip_layout_suffix(str(parent))

        try:
            ast = _PARSE_ENV.parse(template)
        except TemplateSyntaxError as exc:
            # Rendering reports the syntax error; the layout still resolves.
            logger.warning("Template syntax error in layout %s: %s", layout_id, exc)
            includes: frozenset[str] = frozenset()
        else:
            includes = frozenset(
                strip_layout_suffix(name)
                for name in meta.find_referenced_templates(ast)
                if name is not None
            )
        return cls(
            layout_id,
            path,
            template,
            parent=parent,
            includes=includes,
            digest=digest,
        )


class LayoutTable(Mapping[str, Layout]):
    """All layouts of a site, keyed by id.

    Attributes:
        root: The layouts directory.
    """

    def __init__(self, root: Path):
        self.root = root
        self._layouts: dict[str, Layout] = {}

    @classmethod
    def load(cls, root: Path) -> LayoutTable:
        table = cls(root)
        for path in sorted(root.rglob("*")):
            layout_id = table.layout_id_for(path)
            if layout_id is not None and layout_id not in table._layouts:
                table.refresh(path)
        return table

    def __getitem__(self, layout_id: str) -> Layout:
        return self._layouts[layout_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._layouts)

    def __len__(self) -> int:
        return len(self._layouts)

    def layout_id_for(self, path: Path) -> str | None:
        """Layout id for a file under the root, or None if it is not a layout."""
        try:
            rel = path.relative_to(self.root)
        except ValueError:
            return None
        if path.name.startswith("."):
            return None
        name = rel.as_posix()
        if not name.endswith(LAYOUT_SUFFIXES):
            return None
        return strip_layout_suffix(name)

    def refresh(self, path: Path) -> str | None:
        """Re-read whichever file currently defines the id of ``path``.

        Works for additions, modifications and removals alike.

        Returns:
            The affected layout id, or None if path is not a layout file.
        """
        layout_id = self.layout_id_for(path)
        if layout_id is None:
            return None
        for suffix in LAYOUT_SUFFIXES:
            candidate = self.root / f"{layout_id}{suffix}"
            try:
                raw = candidate.read_bytes()
            except (FileNotFoundError, IsADirectoryError):
                continue
            self._layouts[layout_id] = Layout.parse(layout_id, candidate, raw)
            return layout_id
        self._layouts.pop(layout_id, None)
        return layout_id

    def links(self) -> dict[str, set[str]]:
        """Child -> layouts it builds on (parent and includes)."""
        result: dict[str, set[str]] = {}
        for layout in self._layouts.values():
            bases = set(layout.includes)
            if layout.parent:
                bases.add(layout.parent)
            result[layout.id] = bases
        return result

    def cycles(self) -> list[list[str]]:
        """Every parent cycle, each as the id sequence that closes it.

        Each layout's parent chain is walked iteratively; ids already known
        to be acyclic or already reported are not walked again.
        """
        found: list[list[str]] = []
        settled: set[str] = set()
        for start in sorted(self._layouts):
            path: list[str] = []
            on_path: set[str] = set()
            current: str | None = start
            while current is not None and current not in settled:
                if current in on_path:
                    cycle = path[path.index(current) :] + [current]
                    found.append(cycle)
                    break
                on_path.add(current)
                path.append(current)
                layout = self._layouts.get(current)
                current = layout.parent if layout else None
            settled.update(path)
        return found

    def template_source(self, name: str) -> tuple[str, str, str] | None:
        """(template text, filename, digest) for a Jinja template name."""
        layout = self._layouts.get(strip_layout_suffix(name))
        if layout is None or layout.error:
            return None
        return layout.template, str(layout.source), layout.digest


class LayoutResolver:
    """Maps content items to the layout chain they render through.

    Attributes:
        table: The site's LayoutTable.
        defaults: Default layout id per content kind.
    """

    def __init__(self, table: LayoutTable, defaults: Mapping[ContentKind, str]):
        self.table = table
        self.defaults = dict(defaults)

    def start_layout(self, item: ContentItem) -> str:
        return item.layout or self.defaults[item.kind]

    def resolve(
        self, item: ContentItem, recorder: DependencyRecorder | None = None
    ) -> list[str]:
        """Resolve the layout chain for an item, innermost layout first.

        Every id visited is recorded, including the one that fails, so that
        defining or fixing that layout later re-triggers the item.

        Raises:
            CyclicLayout: The parent chain revisits a layout.
            UnknownLayout: A layout id in the chain has no definition.
            LayoutError: A layout file is unusable.
        """
        chain: list[str] = []
        visited: set[str] = set()
        referrer = item.id
        current: str | None = self.start_layout(item)
        while current is not None:
            if recorder is not None:
                recorder.record(Producer.layout(current))
            if current in visited:
                raise CyclicLayout(chain + [current])
            layout = self.table.get(current)
            if layout is None:
                raise UnknownLayout(current, referrer)
            if layout.error:
                raise LayoutError(current, f"layout '{current}': {layout.error}")
            visited.add(current)
            chain.append(current)
            if recorder is not None:
                for name in layout.includes:
                    recorder.record(Producer.layout(name))
            referrer = current
            current = layout.parent
        return chain
