"""
pyscope_shims.errors
====================

Exception types raised by the scope analysis.

Hierarchy
---------
::

    ScopeAnalysisError
    ├── DataflowLimitExceeded   - fact-map size ceiling crossed
    ├── Cancelled               - external abort between solver passes
    ├── FlowGraphError          - malformed graph assembly
    └── ListingError            - malformed flow listing
        └── ListingSyntaxError  - listing text does not match the grammar

Only ``DataflowLimitExceeded`` and ``Cancelled`` escape from ``Scope``
queries.  A queried element that is not part of the graph is never an
error; the query simply has no result.
"""

from __future__ import annotations

from typing import Optional


class ScopeAnalysisError(Exception):
    """Base class for every error raised by :mod:`pyscope_shims`."""


class DataflowLimitExceeded(ScopeAnalysisError):
    """The fixed-point computation grew past the configured fact ceiling.

    Callers must read this as "answer unknown", never as "answer empty".

    Attributes
    ----------
    limit : int
        The configured ceiling.
    total : int
        The running fact total at the moment the ceiling was crossed.
    """

    def __init__(self, limit: int, total: int) -> None:
        self.limit = limit
        self.total = total
        super().__init__(
            f"Dataflow fact limit exceeded: {total} facts > limit {limit}"
        )


class Cancelled(ScopeAnalysisError):
    """An externally requested abort was observed between solver passes."""

    def __init__(self, passes: int = 0) -> None:
        self.passes = passes
        super().__init__(f"Dataflow analysis cancelled after {passes} pass(es)")


class FlowGraphError(ScopeAnalysisError):
    """Raised when a control-flow graph is assembled incorrectly."""


class ListingError(ScopeAnalysisError):
    """Raised when a flow listing is well-formed text but describes an
    inconsistent scope (unknown label, sparse indices, ...)."""


class ListingSyntaxError(ListingError):
    """The listing text does not match the grammar.

    Attributes
    ----------
    line, column : int or None
        1-based position of the failure, when known.
    """

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)
