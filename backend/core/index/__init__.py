"""Tool index: descriptors, snapshots and the live copy-on-write registry."""

from .descriptor import DEFAULT_NAMESPACE, IndexSnapshot, ToolDescriptor, ToolKey, parse_tool_id
from .tool_index import ChangeEvent, ChangeHook, ToolIndex

__all__ = [
    "ChangeEvent",
    "ChangeHook",
    "DEFAULT_NAMESPACE",
    "IndexSnapshot",
    "ToolDescriptor",
    "ToolIndex",
    "ToolKey",
    "parse_tool_id",
]
