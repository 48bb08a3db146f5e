"""Execution backends."""

from .base import Backend
from .http import HttpBackend

__all__ = ["Backend", "HttpBackend"]
