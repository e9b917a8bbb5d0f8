"""Content loading and the content model for Kalamos.

Content files are Markdown with front matter, living in one of two
collections: posts (``posts/2024-01-15-hello.md``) and pages
(``pages/about.md``). Loading is pure: ``ContentLoader.load`` turns a path
and its bytes into a ContentItem or raises a LoadError, and never touches
the output tree.

Key classes:
- ContentKind: The Post/Page tag.
- ContentItem: One loaded content file, Post or Page, dispatched on ``kind``.
- PostSummary / PageSummary: Read-only views of an item as listings see it.
- ContentLoader: Finds content files and builds ContentItems.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import (
    KalamosError,
    MalformedFrontMatter,
    MissingRequiredField,
    RenderFailure,
    UnsupportedContent,
)
from .extractors import FrontMatterSyntaxError, extract_excerpt, extract_frontmatter
from .layouts import strip_layout_suffix
from .renderers import render_markdown
from .utils import (
    coerce_date,
    extract_date_from_name,
    is_markdown,
    is_relative_to,
    slugify,
)

if TYPE_CHECKING:
    from .config import SiteConfig
    from .templates import TemplateEngine


class ContentKind(str, Enum):
    POST = "post"
    PAGE = "page"


@dataclass(frozen=True)
class PostSummary:
    """What a listing page can read about a post."""

    id: str
    title: str
    url: str
    date: date
    excerpt: str
    tags: tuple[str, ...] = ()
    front_matter: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PageSummary:
    """What navigation can read about a page."""

    id: str
    title: str
    url: str
    front_matter: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ContentItem:
    """A loaded content file.

    Posts and Pages share this one type and are told apart by ``kind``;
    every capability below dispatches on it explicitly.

    Attributes:
        kind: POST or PAGE.
        id: ContentId, the source path relative to the project root.
        source: Absolute source path.
        rel_path: Path inside its collection directory.
        front_matter: Parsed front matter, as written.
        body: Markdown body without the front matter.
        title: Title from front matter.
        layout: Layout named in front matter, or None for the kind default.
        date: Publication date (posts only).
        url: Public URL, rooted at ``/``.
        excerpt: Post excerpt: Markdown above ``<!--more-->``, an explicit
            front matter excerpt, or the first paragraph as plain text.
        tags: Tags from front matter.
    """

    kind: ContentKind
    id: str
    source: Path
    rel_path: str
    front_matter: dict[str, Any]
    body: str
    title: str
    layout: str | None = None
    date: date | None = None
    url: str = ""
    excerpt: str = ""
    tags: tuple[str, ...] = ()

    @property
    def is_post(self) -> bool:
        return self.kind is ContentKind.POST

    def output_path(self) -> str:
        """OutputId: destination path relative to the output root.

        Posts land under a date-derived directory (``2024/01/hello.html``)
        unless front matter sets ``url``; pages mirror their path inside the
        pages collection with the suffix replaced by ``.html``.
        """
        if self.kind is ContentKind.POST:
            return url_to_output_path(self.url)
        return Path(self.rel_path).with_suffix(".html").as_posix()

    def summary(self) -> PostSummary | PageSummary:
        """The entry this item contributes to ``all_posts`` or ``all_pages``."""
        if self.kind is ContentKind.PAGE:
            return PageSummary(
                id=self.id, title=self.title, url=self.url, front_matter=self.front_matter
            )
        if self.date is None:
            raise TypeError(f"post {self.id} has no date")
        return PostSummary(
            id=self.id,
            title=self.title,
            url=self.url,
            date=self.date,
            excerpt=self.excerpt,
            tags=self.tags,
            front_matter=self.front_matter,
        )

    def produce_context(
        self,
        layout: str,
        site: Mapping[str, Any],
        aggregates: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Template context for this item.

        Front matter comes first so that computed values (title, url, date,
        excerpt, layout) always win over hand-written keys of the same name.

        Args:
            layout: Resolved starting layout id.
            site: Site-wide variables.
            aggregates: Aggregate views (``all_posts``, ``all_pages``).
        """
        context: dict[str, Any] = dict(self.front_matter)
        context.update(
            id=self.id,
            kind=self.kind.value,
            title=self.title,
            url=self.url,
            layout=layout,
            tags=list(self.tags),
            front_matter=self.front_matter,
            site=site,
        )
        if self.kind is ContentKind.POST:
            context.update(date=self.date, excerpt=self.excerpt)
        context.update(aggregates or {})
        return context

    def render(
        self, context: dict[str, Any], chain: Sequence[str], engine: TemplateEngine
    ) -> bytes:
        """Render the body and wrap it in the layout chain.

        Raises:
            TemplateNotFound: A layout in the chain has no template.
            RenderFailure: Markdown or template expansion raised.
        """
        try:
            content = render_markdown(self.body)
            html = engine.render_chain(chain, content, context)
        except KalamosError:
            raise
        except Exception as exc:
            raise RenderFailure(self.output_path(), exc) from exc
        return html.encode("utf-8")


def url_to_output_path(url: str) -> str:
    """``/2024/01/a.html`` -> ``2024/01/a.html``; ``/about/`` -> ``about/index.html``."""
    path = url.strip("/")
    if not path or url.endswith("/"):
        return f"{path}/index.html".lstrip("/")
    if Path(path).suffix:
        return path
    return f"{path}.html"


def output_path_to_url(output_id: str) -> str:
    if output_id == "index.html":
        return "/"
    if output_id.endswith("/index.html"):
        return "/" + output_id[: -len("index.html")]
    return "/" + output_id


class ContentLoader:
    """Finds and loads content files for a site.

    Attributes:
        config: Site configuration; only the collection roots are used.
    """

    def __init__(self, config: SiteConfig):
        self.config = config

    def content_id(self, path: Path) -> str:
        return path.relative_to(self.config.project_root).as_posix()

    def collection_for(self, path: Path) -> ContentKind | None:
        """Which collection a path belongs to, or None."""
        if is_relative_to(path, self.config.posts_dir):
            return ContentKind.POST
        if is_relative_to(path, self.config.pages_dir):
            return ContentKind.PAGE
        return None

    def is_content_path(self, path: Path) -> bool:
        """True for non-hidden files inside a collection."""
        kind = self.collection_for(path)
        if kind is None:
            return False
        root = self.config.posts_dir if kind is ContentKind.POST else self.config.pages_dir
        rel = path.relative_to(root)
        return not any(part.startswith(("_", ".")) for part in rel.parts)

    def iter_files(self) -> list[Path]:
        """All content files of both collections, sorted."""
        files: list[Path] = []
        for root in self.config.content_roots:
            if not root.is_dir():
                continue
            for path in sorted(root.rglob("*")):
                if path.is_file() and self.is_content_path(path):
                    files.append(path)
        return files

    def load(self, path: Path, raw: bytes) -> ContentItem:
        """Parse one content file.

        Args:
            path: Absolute source path.
            raw: File contents.

        Returns:
            The ContentItem.

        Raises:
            UnsupportedContent: Not in a collection, or not Markdown.
            MalformedFrontMatter: Front matter block does not parse.
            MissingRequiredField: A required field is absent.
        """
        content_id = self.content_id(path)
        kind = self.collection_for(path)
        if kind is None or not self.is_content_path(path):
            raise UnsupportedContent(content_id, "not inside a content collection")
        if not is_markdown(path):
            raise UnsupportedContent(
                content_id, f"unsupported file type '{path.suffix or path.name}'"
            )

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrontMatter(content_id, f"not UTF-8 text: {exc}") from exc
        try:
            front_matter, body = extract_frontmatter(text)
        except FrontMatterSyntaxError as exc:
            raise MalformedFrontMatter(content_id, str(exc)) from exc

        root = self.config.posts_dir if kind is ContentKind.POST else self.config.pages_dir
        rel_path = path.relative_to(root).as_posix()
        layout = front_matter.get("layout")
        item = ContentItem(
            kind=kind,
            id=content_id,
            source=path,
            rel_path=rel_path,
            front_matter=front_matter,
            body=body,
            title="",
            layout=strip_layout_suffix(str(layout)) if layout else None,
            tags=_coerce_tags(front_matter.get("tags")),
        )
        if kind is ContentKind.POST:
            self._fill_post(item, path)
        else:
            item.title = _required_text(front_matter, "title", content_id)
            item.url = output_path_to_url(item.output_path())
        return item

    def _fill_post(self, item: ContentItem, path: Path) -> None:
        fm = item.front_matter
        raw_date = fm.get("date")
        if raw_date is None or raw_date == "":
            item.date = extract_date_from_name(path.stem)
            if item.date is None:
                raise MissingRequiredField(item.id, "date")
        else:
            try:
                item.date = coerce_date(raw_date)
            except ValueError as exc:
                raise MalformedFrontMatter(item.id, f"invalid date: {exc}") from exc

        item.title = _required_text(fm, "title", item.id)

        if fm.get("url"):
            item.url = "/" + str(fm["url"]).lstrip("/")
        else:
            slug = slugify(str(fm.get("slug") or path.stem))
            if not slug:
                raise MissingRequiredField(item.id, "url")
            item.url = f"/{item.date:%Y}/{item.date:%m}/{slug}.html"

        if fm.get("excerpt"):
            item.excerpt = str(fm["excerpt"])
        else:
            item.excerpt = extract_excerpt(item.body)


def _required_text(front_matter: Mapping[str, Any], key: str, content_id: str) -> str:
    value = front_matter.get(key)
    if value is None or str(value).strip() == "":
        raise MissingRequiredField(content_id, key)
    return str(value)


def _coerce_tags(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(t.strip() for t in value.split(",") if t.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(t) for t in value)
    return (str(value),)
