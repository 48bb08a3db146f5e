"""Tests for tool descriptors, snapshots and the live index."""

import threading

import pytest

from core.errors import ConflictError, NotFoundError
from core.index import IndexSnapshot, ToolDescriptor, ToolIndex, parse_tool_id

from helpers import make_tool


# ---------------------------------------------------------------------------
# Descriptor Tests
# ---------------------------------------------------------------------------


class TestToolDescriptor:
    def test_tool_id_and_key(self):
        d = make_tool("search", namespace="docs")
        assert d.tool_id == "docs:search"
        assert d.key == ("docs", "search")

    def test_invalid_name(self):
        with pytest.raises(ValueError):
            ToolDescriptor(name="")
        with pytest.raises(ValueError):
            ToolDescriptor(name="a:b")

    def test_invalid_revision(self):
        with pytest.raises(ValueError):
            ToolDescriptor(name="x", revision=0)

    def test_schema_is_detached(self):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}}
        d = ToolDescriptor(name="x", input_schema=schema)
        schema["properties"]["injected"] = {"type": "string"}
        assert "injected" not in d.input_schema["properties"]

    def test_to_schema(self):
        d = make_tool("search", namespace="docs", revision=3, description="Find docs", tags=("search",))
        schema = d.to_schema()
        assert schema["name"] == "docs:search"
        assert schema["description"] == "Find docs"
        assert schema["inputSchema"]["type"] == "object"
        assert schema["_meta"]["revision"] == 3
        assert schema["_meta"]["tags"] == ["search"]

    def test_parse_tool_id(self):
        assert parse_tool_id("docs:search") == ("docs", "search")
        assert parse_tool_id("search") == ("default", "search")


# ---------------------------------------------------------------------------
# Snapshot Tests
# ---------------------------------------------------------------------------


class TestIndexSnapshot:
    def test_ordering_by_namespace_then_name(self):
        snap = IndexSnapshot.empty()
        for i, (ns, name) in enumerate([("b", "x"), ("a", "z"), ("a", "y")], start=1):
            snap = snap.with_descriptor(make_tool(name, namespace=ns), i)
        assert snap.keys == (("a", "y"), ("a", "z"), ("b", "x"))
        assert snap.namespaces() == ["a", "b"]

    def test_snapshots_are_independent(self):
        empty = IndexSnapshot.empty()
        one = empty.with_descriptor(make_tool("a"), 1)
        assert len(empty) == 0
        assert len(one) == 1
        two = one.without(("default", "a"), 2)
        assert len(one) == 1
        assert len(two) == 0

    def test_position_after(self):
        snap = IndexSnapshot.empty()
        for i, name in enumerate(["a", "c", "e"], start=1):
            snap = snap.with_descriptor(make_tool(name), i)
        assert snap.position_after(("default", "c")) == 2
        assert snap.position_after(("default", "b")) == 1


# ---------------------------------------------------------------------------
# Index Tests
# ---------------------------------------------------------------------------


class TestToolIndex:
    def test_register_bumps_revision(self, index: ToolIndex):
        assert index.revision == 0
        assert index.register(make_tool("a")) == 1
        assert index.register(make_tool("b")) == 2
        assert len(index) == 2

    def test_register_higher_revision_replaces(self, index: ToolIndex):
        index.register(make_tool("a", revision=1, description="old"))
        index.register(make_tool("a", revision=2, description="new"))
        assert len(index) == 1
        assert index.get("default", "a").description == "new"

    def test_register_same_revision_conflicts(self, index: ToolIndex):
        index.register(make_tool("a", revision=2))
        with pytest.raises(ConflictError):
            index.register(make_tool("a", revision=2))
        with pytest.raises(ConflictError):
            index.register(make_tool("a", revision=1))
        assert index.revision == 1

    def test_deregister(self, index: ToolIndex):
        index.register(make_tool("a"))
        assert index.deregister("a", "default") == 2
        assert len(index) == 0

    def test_deregister_unknown(self, index: ToolIndex):
        with pytest.raises(NotFoundError):
            index.deregister("missing", "default")
        assert index.revision == 0

    def test_get_and_resolve(self, index: ToolIndex):
        index.register(make_tool("search", namespace="docs"))
        assert index.resolve("docs:search").name == "search"
        with pytest.raises(NotFoundError):
            index.resolve("docs:missing")

    def test_old_snapshot_unchanged(self, index: ToolIndex):
        index.register(make_tool("a"))
        snap = index.snapshot()
        index.register(make_tool("b"))
        index.deregister("a", "default")
        assert [d.name for d in snap] == ["a"]
        assert snap.revision == 1

    def test_snapshot_history(self):
        index = ToolIndex(history=2)
        for name in ["a", "b", "c"]:
            index.register(make_tool(name))
        assert index.snapshot_at(3) is index.snapshot()
        assert index.snapshot_at(2) is not None
        assert index.snapshot_at(1) is None

    def test_change_hooks(self, index: ToolIndex):
        events = []
        unsubscribe = index.on_change(events.append)
        index.register(make_tool("a"))
        index.deregister("a", "default")
        assert [(e.action, e.tool_id, e.revision) for e in events] == [
            ("register", "default:a", 1),
            ("deregister", "default:a", 2),
        ]
        unsubscribe()
        index.register(make_tool("b"))
        assert len(events) == 2

    def test_failing_hook_does_not_fail_mutation(self, index: ToolIndex):
        def broken(event):
            raise RuntimeError("boom")

        index.on_change(broken)
        assert index.register(make_tool("a")) == 1

    def test_concurrent_writers(self, index: ToolIndex):
        def worker(prefix):
            for i in range(50):
                index.register(make_tool(f"{prefix}{i}"))

        threads = [threading.Thread(target=worker, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(index) == 200
        assert index.revision == 200
        keys = index.snapshot().keys
        assert list(keys) == sorted(keys)
