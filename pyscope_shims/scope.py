"""
pyscope_shims.scope
===================

The per-scope facade over the reaching-definitions result.

A :class:`Scope` wraps one scope owner (module, function, class, lambda,
comprehension) and its control-flow graph.  It answers:

- which bindings of a name reach a given element
  (:meth:`Scope.get_declared_variable`, :meth:`Scope.get_declared_variables`)
- which bindings reach the end of the scope
  (:meth:`Scope.get_all_declared_variables`)
- whether a name is declared ``global`` / ``nonlocal`` here
- whether the scope itself binds a name (:meth:`Scope.contains_declaration`)
- which element declares a name, and which star imports inject unknown names

Every piece of derived state is computed on first use, exactly once, under
the scope's lock.  Concurrent callers block until the first computation
finishes and then read the cached value.

Failure semantics
-----------------
Fact-map queries raise :class:`~pyscope_shims.errors.DataflowLimitExceeded`
when the analysis grew too large.  The failure is remembered: every later
fact-map query raises it again without recomputing.  A
:class:`~pyscope_shims.errors.Cancelled` analysis leaves nothing cached, so
a later query starts over.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Generic,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from pyscope_shims.config import AnalysisConfig
from pyscope_shims.ctrlflow_graph import ControlFlowGraph, get_control_flow
from pyscope_shims.dataflow_engine import CancellationToken
from pyscope_shims.errors import DataflowLimitExceeded
from pyscope_shims.reaching_defs import (
    FactMap,
    ScopeVariable,
    compute_reaching_definitions,
)
from pyscope_shims.syntax import Element, ElementKind, scope_owner_of, walk

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Lazy cache
# ---------------------------------------------------------------------------

class CacheState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    COMPUTING = "computing"
    READY = "ready"
    FAILED = "failed"


class LazyCache(Generic[T]):
    """One lazily computed value guarded by a (shared) re-entrant lock.

    ``UNINITIALIZED -> COMPUTING -> READY``; a ``DataflowLimitExceeded``
    moves it to ``FAILED`` for good, any other exception back to
    ``UNINITIALIZED``.
    """

    __slots__ = ("name", "_compute", "_lock", "_state", "_value", "_error")

    def __init__(
        self,
        name: str,
        compute: Callable[[], T],
        lock: threading.RLock,
    ) -> None:
        self.name = name
        self._compute = compute
        self._lock = lock
        self._state = CacheState.UNINITIALIZED
        self._value: Optional[T] = None
        self._error: Optional[DataflowLimitExceeded] = None

    @property
    def state(self) -> CacheState:
        return self._state

    def get(self) -> T:
        if self._state is CacheState.READY:
            return self._value
        with self._lock:
            if self._state is CacheState.READY:
                return self._value
            if self._state is CacheState.FAILED:
                raise self._error
            if self._state is CacheState.COMPUTING:
                raise RuntimeError(f"recursive computation of {self.name}")
            self._state = CacheState.COMPUTING
            try:
                value = self._compute()
            except DataflowLimitExceeded as exc:
                self._error = exc
                self._state = CacheState.FAILED
                raise
            except BaseException:
                self._state = CacheState.UNINITIALIZED
                raise
            self._value = value
            self._state = CacheState.READY
            logger.debug("Computed %s", self.name)
            return value


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

class Scope:
    """Name-binding facts for one scope owner.

    Parameters
    ----------
    owner : Element
        The scope-owning element.
    control_flow : ControlFlowGraph, optional
        The owner's graph.  When omitted it is fetched from the default
        :class:`~pyscope_shims.ctrlflow_graph.ControlFlowCache` on first
        use.
    config : AnalysisConfig, optional
        Passed to the fixed-point solver.
    cancellation : CancellationToken, optional
        Polled by the solver between passes.
    """

    def __init__(
        self,
        owner: Element,
        control_flow: Optional[ControlFlowGraph] = None,
        *,
        config: Optional[AnalysisConfig] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        self._owner = owner
        self._given_flow = control_flow
        self._config = config
        self._cancellation = cancellation
        self._lock = threading.RLock()

        self._flow: LazyCache[ControlFlowGraph] = LazyCache(
            "control flow", self._compute_flow, self._lock)
        self._facts: LazyCache[Sequence[FactMap]] = LazyCache(
            "scope variables", self._compute_scope_variables, self._lock)
        self._globals: LazyCache[FrozenSet[str]] = LazyCache(
            "globals", self._compute_globals, self._lock)
        self._nonlocals: LazyCache[FrozenSet[str]] = LazyCache(
            "nonlocals", self._compute_nonlocals, self._lock)
        self._all_names: LazyCache[FrozenSet[str]] = LazyCache(
            "defined names", self._compute_all_names, self._lock)
        self._declarations: LazyCache[
            Tuple[Dict[str, Element], Tuple[Element, ...]]
        ] = LazyCache("declarations", self._collect_declarations, self._lock)

    # ----- accessors --------------------------------------------------------

    @property
    def owner(self) -> Element:
        return self._owner

    @property
    def control_flow(self) -> ControlFlowGraph:
        return self._flow.get()

    def fact_maps(self) -> Sequence[FactMap]:
        """Fact map after every instruction, index-aligned with the graph."""
        return self._facts.get()

    # ----- reaching definitions ---------------------------------------------

    def get_declared_variables(self, element: Element) -> FrozenSet[ScopeVariable]:
        """Bindings visible at the first instruction generated for
        *element*; empty if no instruction was."""
        facts = self._facts.get()
        instr = self.control_flow.find_instruction(element)
        if instr is None:
            return frozenset()
        return frozenset(facts[instr.index].values())

    def get_declared_variable(
        self,
        element: Element,
        name: str,
    ) -> Optional[ScopeVariable]:
        """Binding of *name* visible at *element*, or ``None``."""
        facts = self._facts.get()
        instr = self.control_flow.find_instruction(element)
        if instr is None:
            return None
        return facts[instr.index].get(name)

    def get_all_declared_variables(self) -> FrozenSet[ScopeVariable]:
        """Bindings reaching the last instruction of the scope."""
        facts = self._facts.get()
        if not facts:
            return frozenset()
        return frozenset(facts[-1].values())

    # ----- scope declarations -----------------------------------------------

    def is_global(self, name: str) -> bool:
        return name in self._globals.get()

    def is_nonlocal(self, name: str) -> bool:
        return name in self._nonlocals.get()

    def contains_declaration(self, name: str) -> bool:
        """The scope writes *name* and does not declare it ``nonlocal``."""
        return name in self._all_names.get() and not self.is_nonlocal(name)

    def get_names_defined(self) -> FrozenSet[str]:
        """Every name written by some instruction of this scope."""
        return self._all_names.get()

    def get_declaration(self, name: str) -> Optional[Element]:
        declarations, _ = self._declarations.get()
        return declarations.get(name)

    def get_star_declarations(self) -> Tuple[Element, ...]:
        """Star imports of this scope, in document order."""
        _, stars = self._declarations.get()
        return stars

    # ----- computations -----------------------------------------------------

    def _compute_flow(self) -> ControlFlowGraph:
        if self._given_flow is not None:
            return self._given_flow.freeze()
        return get_control_flow(self._owner)

    def _compute_scope_variables(self) -> Sequence[FactMap]:
        flow = self._flow.get()
        result = compute_reaching_definitions(
            flow,
            config=self._config,
            cancellation=self._cancellation,
        )
        return result.facts

    def _compute_all_names(self) -> FrozenSet[str]:
        return frozenset(
            instr.name for instr in self._flow.get() if instr.is_write
        )

    def _compute_globals(self) -> FrozenSet[str]:
        names: Set[str] = set()
        for node in walk(self._owner):
            if node.kind is ElementKind.GLOBAL:
                names.update(node.declared_names)
        return frozenset(names)

    def _compute_nonlocals(self) -> FrozenSet[str]:
        owner = self._owner
        names: Set[str] = set()
        for node in walk(owner):
            if (
                node.kind is ElementKind.NONLOCAL
                and scope_owner_of(node) is owner
            ):
                names.update(node.declared_names)
        return frozenset(names)

    def _collect_declarations(
        self,
    ) -> Tuple[Dict[str, Element], Tuple[Element, ...]]:
        declarations: Dict[str, Element] = {}
        stars: List[Element] = []
        for node in walk(self._owner, include_root=False, descend=_declares_inside):
            if node.kind is ElementKind.STAR_IMPORT:
                stars.append(node)
            elif node.is_named:
                declarations[node.name] = node
        return declarations, tuple(stars)

    def __repr__(self) -> str:
        return f"Scope({self._owner!r})"


def _declares_inside(node: Element) -> bool:
    # Nested scopes keep their bindings to themselves.
    return not node.is_scope_owner and node.kind is not ElementKind.STAR_IMPORT
