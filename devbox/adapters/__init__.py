"""Adapters — bindings for the external tools a run touches.

Public re-exports for convenient access.
"""

from devbox.adapters.base import Adapter
from devbox.adapters.mock import RecordingRunner
from devbox.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "RecordingRunner",
]
