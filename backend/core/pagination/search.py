"""Search collaborators producing a deterministic result order per snapshot."""

import re
from abc import ABC, abstractmethod

from core.index import IndexSnapshot, ToolDescriptor

_TOKEN_RE = re.compile(r"[\w\-]+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    return [t.lower() for t in _TOKEN_RE.findall(text)]


class BaseSearcher(ABC):
    """Returns matching descriptors for a query.

    Implementations must be deterministic for a given snapshot and query;
    the paginator relies on this for stable paging.
    """

    @abstractmethod
    def search(self, snapshot: IndexSnapshot, query: str) -> list[ToolDescriptor]:
        ...


class KeywordSearcher(BaseSearcher):
    """Weighted token match over name, namespace, tags and description."""

    NAME_WEIGHT = 3
    NAMESPACE_WEIGHT = 2
    TAG_WEIGHT = 2
    DESCRIPTION_WEIGHT = 1

    def search(self, snapshot: IndexSnapshot, query: str) -> list[ToolDescriptor]:
        terms = tokenize(query)
        if not terms:
            return list(snapshot)

        scored: list[tuple[int, ToolDescriptor]] = []
        for descriptor in snapshot:
            score = self._score(descriptor, terms)
            if score > 0:
                scored.append((score, descriptor))
        # Ties broken by key so the order never depends on insertion
        scored.sort(key=lambda item: (-item[0], item[1].key))
        return [d for _, d in scored]

    def _score(self, descriptor: ToolDescriptor, terms: list[str]) -> int:
        name = descriptor.name.lower()
        namespace = descriptor.namespace.lower()
        tags = {t.lower() for t in descriptor.tags}
        description = set(tokenize(descriptor.description))

        score = 0
        for term in terms:
            if term in name:
                score += self.NAME_WEIGHT
            if term == namespace:
                score += self.NAMESPACE_WEIGHT
            if term in tags:
                score += self.TAG_WEIGHT
            if term in description:
                score += self.DESCRIPTION_WEIGHT
        return score
