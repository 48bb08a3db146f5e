"""Shared fixtures."""

import pytest

from core.index import ToolIndex
from core.pagination import CursorCodec, Paginator
from gateway import reset_runtime


@pytest.fixture
def index():
    return ToolIndex(history=64)


@pytest.fixture
def codec():
    return CursorCodec("test-secret")


@pytest.fixture
def paginator(index, codec):
    return Paginator(index, codec, default_page_size=20, max_page_size=100)


@pytest.fixture(autouse=True)
def fresh_runtime():
    """Each test gets its own process-wide runtime."""
    reset_runtime()
    yield
    reset_runtime()
