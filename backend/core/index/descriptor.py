"""Tool descriptors and immutable index snapshots."""

import copy
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from typing import Any, Iterator

DEFAULT_NAMESPACE = "default"

ToolKey = tuple[str, str]


def parse_tool_id(tool_id: str) -> ToolKey:
    """Split ``"namespace:name"`` into a key. Bare names use the default namespace."""
    if ":" in tool_id:
        namespace, name = tool_id.split(":", 1)
        return namespace, name
    return DEFAULT_NAMESPACE, tool_id


@dataclass(frozen=True)
class ToolDescriptor:
    """Published tool definition.

    Immutable once published under a revision. An update is a new descriptor
    with a higher ``revision``; the index never mutates one in place.
    """

    name: str
    namespace: str = DEFAULT_NAMESPACE
    revision: int = 1
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    tags: tuple[str, ...] = ()
    backend: str = "local"
    capabilities: frozenset[str] = frozenset()

    def __post_init__(self):
        if not self.name or ":" in self.name:
            raise ValueError(f"Invalid tool name: {self.name!r}")
        if not self.namespace or ":" in self.namespace:
            raise ValueError(f"Invalid namespace: {self.namespace!r}")
        if self.revision < 1:
            raise ValueError("revision must be >= 1")
        # Detach from the caller's objects so later edits cannot leak in
        object.__setattr__(self, "input_schema", copy.deepcopy(dict(self.input_schema)))
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))

    @property
    def key(self) -> ToolKey:
        return self.namespace, self.name

    @property
    def tool_id(self) -> str:
        return f"{self.namespace}:{self.name}"

    def to_schema(self) -> dict:
        """MCP ``Tool`` object for tools/list responses."""
        schema = {
            "name": self.tool_id,
            "description": self.description,
            "inputSchema": copy.deepcopy(self.input_schema),
        }
        meta: dict[str, Any] = {"revision": self.revision, "namespace": self.namespace}
        if self.tags:
            meta["tags"] = list(self.tags)
        if self.capabilities:
            meta["capabilities"] = sorted(self.capabilities)
        schema["_meta"] = meta
        return schema

    def summary(self) -> dict:
        return {
            "id": self.tool_id,
            "name": self.name,
            "namespace": self.namespace,
            "description": self.description,
            "tags": list(self.tags),
        }


class IndexSnapshot:
    """Point-in-time view of the index, ordered by (namespace, name).

    Snapshots are never modified after construction; writers build a new one
    and swap the index's reference.
    """

    __slots__ = ("revision", "_descriptors", "_keys", "_by_key")

    def __init__(self, revision: int, descriptors: tuple[ToolDescriptor, ...]):
        self.revision = revision
        self._descriptors = descriptors
        self._keys = tuple(d.key for d in descriptors)
        self._by_key = {d.key: d for d in descriptors}

    @classmethod
    def empty(cls) -> "IndexSnapshot":
        return cls(0, ())

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._descriptors)

    def __getitem__(self, ordinal: int) -> ToolDescriptor:
        return self._descriptors[ordinal]

    def __repr__(self) -> str:
        return f"IndexSnapshot(revision={self.revision}, size={len(self)})"

    @property
    def descriptors(self) -> tuple[ToolDescriptor, ...]:
        return self._descriptors

    @property
    def keys(self) -> tuple[ToolKey, ...]:
        return self._keys

    def get(self, namespace: str, name: str) -> ToolDescriptor | None:
        return self._by_key.get((namespace, name))

    def position_after(self, key: ToolKey) -> int:
        """Ordinal of the first entry whose key is strictly greater than ``key``."""
        return bisect_right(self._keys, key)

    def namespaces(self) -> list[str]:
        return sorted({ns for ns, _ in self._keys})

    def with_descriptor(self, descriptor: ToolDescriptor, revision: int) -> "IndexSnapshot":
        items = list(self._descriptors)
        pos = bisect_left(self._keys, descriptor.key)
        if pos < len(items) and items[pos].key == descriptor.key:
            items[pos] = descriptor
        else:
            items.insert(pos, descriptor)
        return IndexSnapshot(revision, tuple(items))

    def without(self, key: ToolKey, revision: int) -> "IndexSnapshot":
        pos = bisect_left(self._keys, key)
        items = self._descriptors[:pos] + self._descriptors[pos + 1:]
        return IndexSnapshot(revision, items)
