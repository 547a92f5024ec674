"""
pyscope_shims.reaching_defs
===========================

Reaching definitions of *names* over an instruction-level CFG.

Direction:   FORWARD
Confluence:  JOIN (may / union)
Lattice:     name → ScopeVariable, merged key-wise
Transfer:    a write of ``n`` at node ``i`` rebinds ``n`` to ``{i}``;
             every other instruction passes its input through.

"Which writes of name x may have produced the binding visible at node p?"

The fact for a node is an immutable mapping; both the join and the transfer
function build new mappings rather than updating their inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Mapping

from pyscope_shims.ctrlflow_graph import ControlFlowGraph, Instruction
from pyscope_shims.dataflow_engine import (
    DataflowResult,
    IntraproceduralSolver,
    Lattice,
)


# ═════════════════════════════════════════════════════════════════════════
#  SCOPE VARIABLE
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScopeVariable:
    """
    Name ``name`` may be bound by the writes at ``defined_at``.

    Attributes
    ----------
    name         : str
    defined_at   : frozenset of instruction indices
    is_parameter : bool, true when every reaching write binds a parameter.
                   Not part of equality or hashing.
    """

    name: str
    defined_at: FrozenSet[int]
    is_parameter: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.defined_at, frozenset):
            object.__setattr__(self, "defined_at", frozenset(self.defined_at))

    def merge(self, other: "ScopeVariable") -> "ScopeVariable":
        """Union of two candidates for the same name."""
        if other.name != self.name:
            raise ValueError(
                f"cannot merge variables {self.name!r} and {other.name!r}"
            )
        if other.defined_at <= self.defined_at and (
            other.is_parameter or not self.is_parameter
        ):
            return self
        return ScopeVariable(
            self.name,
            self.defined_at | other.defined_at,
            self.is_parameter and other.is_parameter,
        )

    def __repr__(self) -> str:
        sites = ", ".join(str(i) for i in sorted(self.defined_at))
        param = ", param" if self.is_parameter else ""
        return f"ScopeVariable({self.name}@{{{sites}}}{param})"


FactMap = Mapping[str, ScopeVariable]

EMPTY_FACTS: FactMap = MappingProxyType({})


def make_facts(variables: Iterable[ScopeVariable]) -> FactMap:
    """Build an immutable fact map from *variables* (later ones win)."""
    return MappingProxyType({v.name: v for v in variables})


# ═════════════════════════════════════════════════════════════════════════
#  SEMILATTICE
# ═════════════════════════════════════════════════════════════════════════

class ReachingDefsSemilattice(Lattice[FactMap]):
    """Key-wise merge of fact maps.

    A name missing from one operand is simply absent there; the result
    carries every name present in either operand.
    """

    def bottom(self) -> FactMap:
        return EMPTY_FACTS

    def join(self, a: FactMap, b: FactMap) -> FactMap:
        if not a:
            return b
        if not b or a is b:
            return a
        result = dict(a)
        for name, var in b.items():
            mine = result.get(name)
            result[name] = var if mine is None else mine.merge(var)
        return MappingProxyType(result)

    def leq(self, a: FactMap, b: FactMap) -> bool:
        for name, va in a.items():
            vb = b.get(name)
            if vb is None or not va.defined_at <= vb.defined_at:
                return False
        return True

    def eq(self, a: FactMap, b: FactMap) -> bool:
        return a is b or a == b

    def size(self, value: FactMap) -> int:
        return len(value)


# ═════════════════════════════════════════════════════════════════════════
#  TRANSFER FUNCTION
# ═════════════════════════════════════════════════════════════════════════

class ReachingDefsTransfer:
    """A write kills every earlier definition of its name; everything else
    is transparent."""

    def __call__(self, instruction: Instruction, fact_in: FactMap) -> FactMap:
        if not instruction.is_write:
            return fact_in
        name = instruction.name
        updated = dict(fact_in)
        updated[name] = ScopeVariable(
            name,
            frozenset((instruction.index,)),
            instruction.binds_parameter,
        )
        return MappingProxyType(updated)


def compute_reaching_definitions(
    flow: ControlFlowGraph,
    **kwargs: Any,
) -> DataflowResult[FactMap]:
    """Run reaching definitions over *flow*.

    Keyword arguments are passed to :class:`IntraproceduralSolver`
    (``config``, ``fact_limit``, ``cancellation``, ``on_pass``).
    """
    solver = IntraproceduralSolver(
        flow,
        ReachingDefsSemilattice(),
        ReachingDefsTransfer(),
        **kwargs,
    )
    return solver.solve()
