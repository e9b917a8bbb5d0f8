from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from itertools import groupby
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .content import PageSummary, PostSummary


def sort_posts(posts: Iterable[PostSummary]) -> list[PostSummary]:
    """Newest first; posts sharing a date keep ContentId order."""
    by_id = sorted(posts, key=lambda p: p.id)
    return sorted(by_id, key=lambda p: p.date, reverse=True)


class PostCollection(Sequence["PostSummary"]):
    """Ordered, read-only list of posts for listing pages."""

    def __init__(self, posts: Iterable[PostSummary]):
        self._posts = tuple(sort_posts(posts))

    def __iter__(self) -> Iterator[PostSummary]:
        return iter(self._posts)

    def __len__(self) -> int:
        return len(self._posts)

    def __getitem__(self, item):
        return self._posts[item]

    def latest(self, count: int = 5) -> list[PostSummary]:
        return list(self._posts[:count])

    def by_year(self) -> list[tuple[int, list[PostSummary]]]:
        """Posts grouped by year, newest year first."""
        return [
            (year, list(group))
            for year, group in groupby(self._posts, key=lambda p: p.date.year)
        ]

    def with_tag(self, tag: str) -> list[PostSummary]:
        return [p for p in self._posts if tag in p.tags]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PostCollection({len(self._posts)} posts)"


class PageCollection(Sequence["PageSummary"]):
    """Every page of the site ordered by url, for navigation."""

    def __init__(self, pages: Iterable[PageSummary]):
        self._pages = tuple(sorted(pages, key=lambda p: (p.url, p.id)))

    def __iter__(self) -> Iterator[PageSummary]:
        return iter(self._pages)

    def __len__(self) -> int:
        return len(self._pages)

    def __getitem__(self, item):
        return self._pages[item]

    def find(self, url: str) -> PageSummary | None:
        return next((p for p in self._pages if p.url == url), None)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PageCollection({len(self._pages)} pages)"


class AggregateView(Sequence[Any]):
    """A collection that reports every read to a callback.

    Templates receive this instead of the collection itself, so a page
    depends on an aggregate exactly when its render looks at it. Helper
    methods of the wrapped collection (``latest``, ``with_tag``, ``find``)
    are reached through attribute access and count as reads too.
    """

    def __init__(self, collection: Sequence[Any], on_read: Callable[[], None]):
        self._collection = collection
        self._on_read = on_read

    def __iter__(self) -> Iterator[Any]:
        self._on_read()
        return iter(self._collection)

    def __len__(self) -> int:
        self._on_read()
        return len(self._collection)

    def __getitem__(self, item):
        self._on_read()
        return self._collection[item]

    def __bool__(self) -> bool:
        self._on_read()
        return bool(len(self._collection))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        attr = getattr(self._collection, name)
        self._on_read()
        return attr

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"AggregateView({self._collection!r})"
