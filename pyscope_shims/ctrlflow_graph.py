"""
pyscope_shims.ctrlflow_graph
============================

Instruction-level control-flow graphs for one scope owner.

The graph is produced elsewhere (a front end, a dump reader, a test
fixture); this module only defines its shape and a per-owner cache.  Once
:meth:`ControlFlowGraph.freeze` has been called nothing may change it, and
the analysis never mutates it.

Public API
----------
    Access              - read / write classification of a name access
    Instruction         - one CFG node, identified by its index
    ControlFlowGraph    - ordered instructions plus edges
    ControlFlowCache    - per-owner graph and Scope cache
    get_control_flow    - look up a graph in the default cache
    get_scope           - look up (or create) a Scope in the default cache

Typical usage::

    from pyscope_shims.ctrlflow_graph import Access, ControlFlowGraph

    flow = ControlFlowGraph(owner=func)
    w = flow.add_instruction(element=target_x, name="x", access=Access.WRITE)
    r = flow.add_instruction(element=ref_x, name="x", access=Access.READ)
    flow.add_edge(w, r)
    flow.freeze()
"""

from __future__ import annotations

import enum
import logging
import threading
import weakref
from typing import (
    TYPE_CHECKING,
    Callable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Union,
)

from pyscope_shims.errors import FlowGraphError
from pyscope_shims.syntax import Element, ElementKind

if TYPE_CHECKING:
    from pyscope_shims.config import AnalysisConfig
    from pyscope_shims.dataflow_engine import CancellationToken
    from pyscope_shims.scope import Scope

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Access kinds
# ---------------------------------------------------------------------------


class Access(enum.Enum):
    """How an instruction touches the name it carries."""

    READ = "read"
    WRITE = "write"
    READ_WRITE = "readwrite"     # augmented assignment: x += 1
    DELETE = "delete"

    @property
    def is_read(self) -> bool:
        return self in (Access.READ, Access.READ_WRITE)

    @property
    def is_write(self) -> bool:
        return self in (Access.WRITE, Access.READ_WRITE)


# ---------------------------------------------------------------------------
# Instruction
# ---------------------------------------------------------------------------


class Instruction:
    """A single CFG node.

    Attributes
    ----------
    index : int
        Position in the owning graph; this is the node's identity.
    element : Element or None
        The syntax element the instruction was generated for.
    name : str or None
        The accessed name, for read/write instructions.
    access : Access or None
        ``None`` for instructions that touch no name (branches, merges,
        entry/exit markers).
    successors, predecessors : list[int]
        Neighbour indices, in insertion order.
    """

    __slots__ = (
        "index",
        "element",
        "name",
        "access",
        "successors",
        "predecessors",
    )

    def __init__(
        self,
        index: int,
        element: Optional[Element] = None,
        name: Optional[str] = None,
        access: Optional[Access] = None,
    ) -> None:
        if (name is None) != (access is None):
            raise FlowGraphError(
                f"instruction {index}: name and access must be given together"
            )
        self.index = index
        self.element = element
        self.name = name
        self.access = access
        self.successors: Sequence[int] = []
        self.predecessors: Sequence[int] = []

    @property
    def is_access(self) -> bool:
        return self.access is not None

    @property
    def is_write(self) -> bool:
        return self.access is not None and self.access.is_write

    @property
    def is_read(self) -> bool:
        return self.access is not None and self.access.is_read

    @property
    def binds_parameter(self) -> bool:
        """True when this write binds a function parameter."""
        return (
            self.is_write
            and self.element is not None
            and self.element.kind is ElementKind.PARAMETER
        )

    def __repr__(self) -> str:
        if self.access is None:
            return f"Instruction({self.index})"
        return f"Instruction({self.index}, {self.access.value} {self.name!r})"


# ---------------------------------------------------------------------------
# ControlFlowGraph
# ---------------------------------------------------------------------------


class ControlFlowGraph:
    """Ordered instructions of one scope owner, with successor and
    predecessor edges.  Index 0 is the entry node.

    Attributes
    ----------
    owner : Element or None
        The scope owner this graph was built for.
    """

    def __init__(self, owner: Optional[Element] = None) -> None:
        self.owner = owner
        self._instructions: List[Instruction] = []
        self._frozen = False

    # ----- graph assembly ---------------------------------------------------

    def add_instruction(
        self,
        element: Optional[Element] = None,
        name: Optional[str] = None,
        access: Optional[Access] = None,
    ) -> Instruction:
        """Append a new instruction and return it."""
        self._check_mutable()
        instr = Instruction(len(self._instructions), element, name, access)
        self._instructions.append(instr)
        return instr

    def add_edge(
        self,
        src: Union[Instruction, int],
        dst: Union[Instruction, int],
    ) -> None:
        """Add a control-flow edge ``src -> dst``.  Duplicate edges are
        ignored."""
        self._check_mutable()
        s = self._index_of(src)
        d = self._index_of(dst)
        src_node = self._instructions[s]
        dst_node = self._instructions[d]
        if d not in src_node.successors:
            src_node.successors.append(d)
            dst_node.predecessors.append(s)

    def chain(self, *nodes: Union[Instruction, int]) -> None:
        """Add edges linking *nodes* in order."""
        for src, dst in zip(nodes, nodes[1:]):
            self.add_edge(src, dst)

    def freeze(self) -> "ControlFlowGraph":
        """Make the graph immutable.  Returns ``self``."""
        if not self._frozen:
            for instr in self._instructions:
                instr.successors = tuple(instr.successors)
                instr.predecessors = tuple(instr.predecessors)
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise FlowGraphError("control-flow graph is frozen")

    def _index_of(self, node: Union[Instruction, int]) -> int:
        index = node.index if isinstance(node, Instruction) else node
        if not 0 <= index < len(self._instructions):
            raise FlowGraphError(
                f"instruction index {index} out of range "
                f"(graph has {len(self._instructions)} instructions)"
            )
        return index

    # ----- queries ----------------------------------------------------------

    @property
    def instructions(self) -> Sequence[Instruction]:
        return tuple(self._instructions)

    def __len__(self) -> int:
        return len(self._instructions)

    def __getitem__(self, index: int) -> Instruction:
        return self._instructions[index]

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._instructions)

    def successors_of(self, index: int) -> Sequence[int]:
        return self._instructions[index].successors

    def predecessors_of(self, index: int) -> Sequence[int]:
        return self._instructions[index].predecessors

    def reachable_from(self, start: int = 0) -> Set[int]:
        """Return the indices reachable from *start*."""
        if not self._instructions:
            return set()
        visited: Set[int] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            worklist.extend(self._instructions[n].successors)
        return visited

    def find_instruction(self, element: Element) -> Optional[Instruction]:
        """First instruction (graph order) generated for *element*."""
        for instr in self._instructions:
            if instr.element is element:
                return instr
        return None

    def __repr__(self) -> str:
        owner = self.owner.name if self.owner is not None else None
        return (
            f"ControlFlowGraph(owner={owner!r}, "
            f"instructions={len(self._instructions)})"
        )


# ---------------------------------------------------------------------------
# Per-owner cache
# ---------------------------------------------------------------------------

FlowBuilder = Callable[[Element], ControlFlowGraph]


class _CacheEntry:
    __slots__ = ("flow", "scope")

    def __init__(self, flow: ControlFlowGraph) -> None:
        self.flow = flow
        self.scope: Optional["Scope"] = None


class ControlFlowCache:
    """Hands out one graph and one :class:`Scope` per scope owner.

    A graph and its Scope both lead back to the owner (``flow.owner``,
    every instruction's element through its parent chain), so entries are
    stored in the owner's ``user_data`` rather than in a table keyed by
    owner.  They are collected together with the tree; the cache only
    tracks its owners weakly.

    Parameters
    ----------
    builder : callable(Element) -> ControlFlowGraph, optional
        Called for owners that have no registered graph.  Without a builder
        such a lookup raises ``FlowGraphError``.
    config : AnalysisConfig, optional
        Passed to every Scope this cache creates.
    cancellation : CancellationToken, optional
        Passed to every Scope this cache creates.
    """

    def __init__(
        self,
        builder: Optional[FlowBuilder] = None,
        *,
        config: Optional["AnalysisConfig"] = None,
        cancellation: Optional["CancellationToken"] = None,
    ) -> None:
        self._builder = builder
        self._config = config
        self._cancellation = cancellation
        self._lock = threading.RLock()
        self._owners: "weakref.WeakSet[Element]" = weakref.WeakSet()

    def __len__(self) -> int:
        """Number of live owners with a cached graph."""
        return len(self._owners)

    def __contains__(self, owner: Element) -> bool:
        return self in owner.user_data and owner in self._owners

    def register(self, owner: Element, flow: ControlFlowGraph) -> None:
        """Attach a pre-built graph to *owner*; drops any cached Scope."""
        if not owner.is_scope_owner:
            raise FlowGraphError(f"{owner!r} does not own a scope")
        with self._lock:
            self._store(owner, flow.freeze())

    def get_control_flow(self, owner: Element) -> ControlFlowGraph:
        with self._lock:
            return self._entry(owner).flow

    def get_scope(self, owner: Element) -> "Scope":
        from pyscope_shims.scope import Scope

        with self._lock:
            entry = self._entry(owner)
            if entry.scope is None:
                entry.scope = Scope(
                    owner,
                    entry.flow,
                    config=self._config,
                    cancellation=self._cancellation,
                )
            return entry.scope

    def clear(self) -> None:
        with self._lock:
            for owner in list(self._owners):
                owner.user_data.pop(self, None)
            self._owners.clear()

    def _entry(self, owner: Element) -> _CacheEntry:
        entry = owner.user_data.get(self)
        if entry is None:
            if self._builder is None:
                raise FlowGraphError(
                    f"no control-flow graph registered for {owner!r}"
                )
            logger.debug("Building control flow for %r", owner)
            entry = self._store(owner, self._builder(owner).freeze())
        return entry

    def _store(self, owner: Element, flow: ControlFlowGraph) -> _CacheEntry:
        entry = _CacheEntry(flow)
        owner.user_data[self] = entry
        self._owners.add(owner)
        return entry


default_cache = ControlFlowCache()


def get_control_flow(owner: Element) -> ControlFlowGraph:
    """Graph registered for *owner* in the default cache."""
    return default_cache.get_control_flow(owner)


def get_scope(owner: Element) -> "Scope":
    """Scope for *owner* from the default cache."""
    return default_cache.get_scope(owner)
