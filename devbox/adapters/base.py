"""
Adapter base — the contract between the engine and external tools.

Probes and actions never shell out, open URLs or touch the login
database directly; they go through an adapter. That keeps every
external side effect in one layer that tests can replace.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class Adapter(ABC):
    """Abstract base class for all adapters.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name and is_available
        3. Add it to the AdapterRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'shell', 'git', 'apt')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
