"""Cursor-based paging over index snapshots (list, search, namespaces)."""

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Sequence

from core.errors import InvalidCursorError, StaleCursorError
from core.index import IndexSnapshot, ToolIndex

from .cursor import CursorCodec, query_scope
from .search import BaseSearcher, KeywordSearcher

logger = logging.getLogger(__name__)

LIST_SCOPE = "tools"
NAMESPACE_SCOPE = "namespaces"


class StaleCursorPolicy(str, Enum):
    RESUME = "resume"
    REJECT = "reject"


@dataclass
class Page:
    items: list[Any] = field(default_factory=list)
    next_cursor: str | None = None
    revision: int = 0


def relocate_sorted(old_keys: Sequence, ordinal: int, new_keys: Sequence) -> int:
    """Resume position in a key-sorted sequence.

    The last key handed out is the anchor; paging resumes at the first key
    strictly greater than it, whether or not the anchor still exists.
    """
    if ordinal <= 0 or not old_keys:
        return 0
    anchor = old_keys[min(ordinal, len(old_keys)) - 1]
    return bisect_right(new_keys, anchor)


def relocate_ranked(old_keys: Sequence, ordinal: int, new_keys: Sequence) -> int:
    """Resume position in a sequence with an arbitrary (ranked) order."""
    if ordinal <= 0 or not old_keys:
        return 0
    positions = {key: i for i, key in enumerate(new_keys)}
    ordinal = min(ordinal, len(old_keys))
    anchor = old_keys[ordinal - 1]
    if anchor in positions:
        return positions[anchor] + 1
    for key in old_keys[ordinal:]:
        if key in positions:
            return positions[key]
    return len(new_keys)


class Paginator:
    """Listing, Search and Namespace APIs with stable opaque cursors.

    Every page is computed from one snapshot. A cursor minted at an older
    revision is either relocated by key against the current snapshot
    (``resume``) or rejected with StaleCursorError (``reject``); relocation
    needs the old snapshot, so it also fails once that revision has been
    evicted from the index history.
    """

    def __init__(
        self,
        index: ToolIndex,
        codec: CursorCodec,
        searcher: BaseSearcher | None = None,
        default_page_size: int = 20,
        max_page_size: int = 100,
        stale_policy: StaleCursorPolicy | str = StaleCursorPolicy.RESUME,
    ):
        self._index = index
        self._codec = codec
        self._searcher = searcher or KeywordSearcher()
        self.max_page_size = max(max_page_size, 1)
        self.default_page_size = min(max(default_page_size, 1), self.max_page_size)
        self.stale_policy = StaleCursorPolicy(stale_policy)

    def page_size(self, requested: int | None) -> int:
        if requested is None:
            return self.default_page_size
        return min(max(requested, 1), self.max_page_size)

    def list_tools(self, cursor: str | None = None, page_size: int | None = None) -> Page:
        snap = self._index.snapshot()

        def relocate(old: IndexSnapshot, ordinal: int) -> int:
            return relocate_sorted(old.keys, ordinal, snap.keys)

        start = self._start(cursor, LIST_SCOPE, snap, relocate)
        return self._page(snap.descriptors, start, page_size, snap.revision, LIST_SCOPE)

    def search_tools(self, query: str, cursor: str | None = None, page_size: int | None = None) -> Page:
        snap = self._index.snapshot()
        scope = query_scope(query)
        results = self._searcher.search(snap, query)

        def relocate(old: IndexSnapshot, ordinal: int) -> int:
            old_keys = [d.key for d in self._searcher.search(old, query)]
            return relocate_ranked(old_keys, ordinal, [d.key for d in results])

        start = self._start(cursor, scope, snap, relocate)
        return self._page(results, start, page_size, snap.revision, scope)

    def list_namespaces(self, cursor: str | None = None, page_size: int | None = None) -> Page:
        snap = self._index.snapshot()
        namespaces = snap.namespaces()

        def relocate(old: IndexSnapshot, ordinal: int) -> int:
            return relocate_sorted(old.namespaces(), ordinal, namespaces)

        start = self._start(cursor, NAMESPACE_SCOPE, snap, relocate)
        return self._page(namespaces, start, page_size, snap.revision, NAMESPACE_SCOPE)

    def _start(
        self,
        cursor: str | None,
        scope: str,
        snap: IndexSnapshot,
        relocate: Callable[[IndexSnapshot, int], int],
    ) -> int:
        if not cursor:
            return 0

        revision, ordinal = self._codec.decode(cursor, scope, self._index.instance_id)
        if revision > snap.revision:
            raise InvalidCursorError("Cursor refers to an unknown index revision")
        if revision == snap.revision:
            return ordinal

        if self.stale_policy is StaleCursorPolicy.REJECT:
            raise StaleCursorError(
                "Index changed since cursor was issued; restart pagination",
                {"cursor_revision": revision, "current_revision": snap.revision},
            )

        old = self._index.snapshot_at(revision)
        if old is None:
            raise StaleCursorError(
                "Cursor revision is no longer available; restart pagination",
                {"cursor_revision": revision, "current_revision": snap.revision},
            )
        start = relocate(old, ordinal)
        logger.debug(
            "Relocated cursor %s@%d:%d -> %d at revision %d",
            scope, revision, ordinal, start, snap.revision,
        )
        return start

    def _page(self, sequence: Sequence, start: int, page_size: int | None, revision: int, scope: str) -> Page:
        size = self.page_size(page_size)
        items = list(sequence[start:start + size])
        end = start + len(items)
        next_cursor = None
        if end < len(sequence):
            next_cursor = self._codec.encode(revision, end, scope, self._index.instance_id)
        return Page(items=items, next_cursor=next_cursor, revision=revision)
