"""Test helpers."""

from core.index import ToolDescriptor


def make_tool(name: str, namespace: str = "default", revision: int = 1, **kwargs) -> ToolDescriptor:
    return ToolDescriptor(name=name, namespace=namespace, revision=revision, **kwargs)
