"""Opaque cursors and stable paging over tool index snapshots."""

from .cursor import CursorCodec, query_scope
from .paginator import LIST_SCOPE, NAMESPACE_SCOPE, Page, Paginator, StaleCursorPolicy
from .search import BaseSearcher, KeywordSearcher

__all__ = [
    "BaseSearcher",
    "CursorCodec",
    "KeywordSearcher",
    "LIST_SCOPE",
    "NAMESPACE_SCOPE",
    "Page",
    "Paginator",
    "StaleCursorPolicy",
    "query_scope",
]
