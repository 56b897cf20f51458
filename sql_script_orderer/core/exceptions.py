"""Exception hierarchy for dependency ordering failures."""

from __future__ import annotations

from typing import Any, List, Optional


class OrderingError(Exception):
    """Base exception for ordering failures.

    Attributes:
        message: Human-readable error message
        urn: The identifier that triggered the failure, when known
        kind: The kind or sub-kind value that triggered the failure, when known
    """

    def __init__(
        self,
        message: str,
        urn: Optional[Any] = None,
        kind: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.urn = urn
        self.kind = kind

    def __repr__(self) -> str:
        parts = [repr(self.message)]
        if self.urn is not None:
            parts.append(f"urn={str(self.urn)!r}")
        if self.kind is not None:
            parts.append(f"kind={self.kind!r}")
        return f"{self.__class__.__name__}({', '.join(parts)})"


class ConfigurationError(OrderingError):
    """A kind, sub-kind or option value the engine has no mapping for."""

    pass


class EntityNotFoundError(ConfigurationError):
    """The entity repository has no metadata for an identifier."""

    pass


class OrderingCycleError(OrderingError):
    """The dependency graph of a kind family contains a cycle."""

    def __init__(self, cycle: List[Any], urns: Optional[List[Any]] = None) -> None:
        super().__init__("Ordering cycle detected")
        self.cycle = cycle
        self.urns = urns or []

    def __str__(self) -> str:
        path = self.urns or self.cycle
        if not path:
            return self.message
        return f"{self.message}: {' -> '.join(str(node) for node in path)}"
