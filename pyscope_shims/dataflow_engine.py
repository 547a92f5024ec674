"""
pyscope_shims.dataflow_engine
=============================

A generic, lattice-based fixed-point engine over instruction-level
control-flow graphs.

Theory
------
A forward dataflow analysis is defined by:

1.  A **semilattice** ``(L, ⊑, ⊥, ⊔)`` whose join ``⊔`` is commutative,
    associative, idempotent and monotone.
2.  A **transfer function** ``f : Instruction × L → L``.
3.  An **initial value** for the entry node (``⊥`` unless told otherwise).

For every node ``i`` the engine computes the fact *after* ``i``::

    fact[i] = f(i, ⊔ { fact[p] | p ∈ preds(i) })

and iterates until no fact changes.

Iteration order
---------------
Round-robin: every pass visits the pending nodes in graph order.  A node
whose fact changed marks its successors pending; the loop stops after a pass
that changed nothing.  Nodes unreachable from the entry are never visited,
keep ``⊥`` and contribute nothing to joins.

Bounding
--------
The engine keeps a running total of ``lattice.size(fact)`` over all nodes.
Once the total crosses the configured ceiling it raises
:class:`~pyscope_shims.errors.DataflowLimitExceeded` and discards everything
it computed.  Between passes it polls a :class:`CancellationToken` and raises
:class:`~pyscope_shims.errors.Cancelled` when asked to stop.

Public API
----------
    Lattice                 - abstract base for semilattices
    TransferFunction        - callable protocol for transfer functions
    CancellationToken       - thread-safe cancellation flag
    DataflowResult          - per-node facts plus statistics
    IntraproceduralSolver   - the fixed-point engine
    run_forward_analysis    - convenience function
"""

from __future__ import annotations

import abc
import logging
import threading
import time
from collections.abc import Sized
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    runtime_checkable,
)

from pyscope_shims.config import DEFAULT_CONFIG, AnalysisConfig
from pyscope_shims.ctrlflow_graph import ControlFlowGraph, Instruction
from pyscope_shims.errors import Cancelled, DataflowLimitExceeded

logger = logging.getLogger(__name__)

L = TypeVar("L")          # Lattice value type


# ===========================================================================
# LATTICE: ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a join semilattice.

    Subclasses provide:

    - ``bottom()``   → the least element ⊥.
    - ``join(a, b)`` → the least upper bound ``a ⊔ b``.
    - ``leq(a, b)``  → ``True`` iff ``a ⊑ b``.

    Values must be treated as immutable: ``join`` returns a new value and
    never updates an operand in place.
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the least element ⊥."""
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        """Return the least upper bound ``a ⊔ b``."""
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``."""
        ...

    def eq(self, a: L, b: L) -> bool:
        """Equality: ``a = b`` iff ``a ⊑ b`` and ``b ⊑ a``."""
        return self.leq(a, b) and self.leq(b, a)

    def join_all(self, values: Iterable[L]) -> L:
        """Join a sequence of values; ⊥ for an empty sequence."""
        result = self.bottom()
        for v in values:
            result = self.join(result, v)
        return result

    def size(self, value: L) -> int:
        """Weight of *value* towards the solver's fact ceiling.

        Defaults to ``len(value)`` for sized values and 1 otherwise.
        """
        if isinstance(value, Sized):
            return len(value)
        return 1


# ===========================================================================
# TRANSFER FUNCTION PROTOCOL
# ===========================================================================

@runtime_checkable
class TransferFunction(Protocol[L]):
    """Protocol for a transfer function.

    Takes an instruction and the incoming fact (the join of its
    predecessors' facts) and returns the outgoing fact.
    """

    def __call__(self, instruction: Instruction, fact_in: L) -> L:
        ...


# ===========================================================================
# CANCELLATION
# ===========================================================================

class CancellationToken:
    """A flag an interactive caller sets to stop a running analysis.

    Safe to share between threads; the solver only reads it.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, passes: int = 0) -> None:
        """Raise :class:`Cancelled` if cancellation was requested."""
        if self._event.is_set():
            raise Cancelled(passes)


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

@dataclass(frozen=True)
class DataflowResult(Generic[L]):
    """Container for a converged analysis.

    Attributes
    ----------
    facts : tuple
        ``facts[i]`` is the fact after instruction ``i``.
    passes : int
        Number of round-robin passes, including the final quiet one.
    visits : int
        Number of transfer-function applications.
    total_facts : int
        Sum of ``lattice.size`` over all facts at the fixed point.
    elapsed_seconds : float
        Wall-clock time.
    """

    facts: Sequence[L]
    passes: int = 0
    visits: int = 0
    total_facts: int = 0
    elapsed_seconds: float = 0.0

    def __len__(self) -> int:
        return len(self.facts)

    def fact_at(self, index: int) -> L:
        return self.facts[index]


# ===========================================================================
# INTRAPROCEDURAL SOLVER
# ===========================================================================

PassObserver = Callable[[int, Sequence[Any]], None]


class IntraproceduralSolver(Generic[L]):
    """Fixed-point engine for one control-flow graph.

    Parameters
    ----------
    flow : ControlFlowGraph
        The graph; index 0 is the entry.
    lattice : Lattice[L]
        The dataflow semilattice.
    transfer : callable(Instruction, L) → L
        The transfer function.
    initial_value : L, optional
        Fact flowing into the entry node.  Defaults to ``lattice.bottom()``.
    config : AnalysisConfig, optional
        Provides the fact ceiling.
    fact_limit : int, optional
        Overrides ``config.fact_limit``.
    cancellation : CancellationToken, optional
        Polled before the first pass and between passes.
    on_pass : callable(int, Sequence[L]), optional
        Called after each pass with the pass number and a snapshot of all
        facts.  Meant for diagnostics and tests.
    """

    def __init__(
        self,
        flow: ControlFlowGraph,
        lattice: Lattice[L],
        transfer: Callable[[Instruction, L], L],
        initial_value: Optional[L] = None,
        config: Optional[AnalysisConfig] = None,
        fact_limit: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
        on_pass: Optional[PassObserver] = None,
    ) -> None:
        self.flow = flow
        self.lattice = lattice
        self.transfer = transfer
        self.initial_value = (
            initial_value if initial_value is not None
            else lattice.bottom()
        )
        self.config = config or DEFAULT_CONFIG
        self.fact_limit = (
            fact_limit if fact_limit is not None else self.config.fact_limit
        )
        self.cancellation = cancellation
        self.on_pass = on_pass

    def solve(self) -> DataflowResult[L]:
        """Run the analysis to its fixed point.

        Raises
        ------
        DataflowLimitExceeded
            The running fact total crossed ``fact_limit``.
        Cancelled
            The cancellation token was set.
        """
        t0 = time.monotonic()
        lat = self.lattice
        flow = self.flow
        n = len(flow)
        bot = lat.bottom()
        facts: List[L] = [bot] * n
        if n == 0:
            return DataflowResult(facts=())

        reachable = flow.reachable_from(0)
        pending = [i in reachable for i in range(n)]
        sizes = [lat.size(bot)] * n
        total = sum(sizes)

        passes = 0
        visits = 0
        changed = True
        while changed:
            self._check_cancelled(passes)
            passes += 1
            changed = False

            for i in range(n):
                if not pending[i]:
                    continue
                pending[i] = False
                visits += 1
                instr = flow[i]

                incoming = lat.join_all(
                    facts[p] for p in instr.predecessors if p in reachable
                )
                if i == 0:
                    incoming = lat.join(self.initial_value, incoming)

                new_out = self.transfer(instr, incoming)
                if lat.eq(new_out, facts[i]):
                    continue

                new_size = lat.size(new_out)
                total += new_size - sizes[i]
                sizes[i] = new_size
                facts[i] = new_out
                if total > self.fact_limit:
                    logger.warning(
                        "Dataflow fact limit %d exceeded (%d facts, %d "
                        "instructions, pass %d); discarding results",
                        self.fact_limit, total, n, passes,
                    )
                    raise DataflowLimitExceeded(self.fact_limit, total)

                changed = True
                for succ in instr.successors:
                    pending[succ] = True

            if self.on_pass is not None:
                self.on_pass(passes, tuple(facts))

        elapsed = time.monotonic() - t0
        level = logging.INFO if self.config.log_statistics else logging.DEBUG
        logger.log(
            level,
            "Dataflow converged: %d instructions, %d passes, %d visits, "
            "%d facts, %.4fs",
            n, passes, visits, total, elapsed,
        )
        return DataflowResult(
            facts=tuple(facts),
            passes=passes,
            visits=visits,
            total_facts=total,
            elapsed_seconds=elapsed,
        )

    def _check_cancelled(self, passes: int) -> None:
        if self.cancellation is None:
            return
        if passes == 0 or self.config.check_cancel_every_pass:
            self.cancellation.check(passes)


# ===========================================================================
# CONVENIENCE
# ===========================================================================

def run_forward_analysis(
    flow: ControlFlowGraph,
    lattice: Lattice[L],
    transfer: Callable[[Instruction, L], L],
    **kwargs: Any,
) -> DataflowResult[L]:
    """Build an :class:`IntraproceduralSolver` and solve it."""
    return IntraproceduralSolver(flow, lattice, transfer, **kwargs).solve()
