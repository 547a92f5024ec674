"""
pyscope_shims: reaching-definitions scope analysis for Python-like code
=======================================================================

This package answers "which bindings of name X are visible at program
point P" for one scope at a time, on top of a pre-built instruction-level
control-flow graph.

Core modules
------------
syntax
    Tagged-variant syntax tree (``ElementKind`` / ``Element``) and traversal.
ctrlflow_graph
    Instructions, control-flow graphs and the per-owner graph/scope cache.
dataflow_engine
    Generic round-robin fixed-point solver with a fact ceiling and
    cancellation.
reaching_defs
    ``ScopeVariable``, the reaching-definitions semilattice and transfer
    function.
scope
    The ``Scope`` facade: declared variables, globals, nonlocals,
    declarations and star imports.
flow_listing
    Textual listings of a scope's tree and graph.
config
    ``AnalysisConfig`` and TOML loading.
errors
    Exception hierarchy.

Quick start
-----------
>>> from pyscope_shims import parse_listing
>>> listing = parse_listing('''
...     function f { target x  reference x #use }
...     flow { 0: write x @x -> 1  1: read x @use }
... ''')
>>> listing.scope().get_declared_variable(listing["use"], "x").defined_at
frozenset({0})
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, Dict, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__license__ = "MIT"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Re-export registry: module_name -> names bound at package level
# ---------------------------------------------------------------------------

_CORE_MODULES: Dict[str, List[str]] = {
    "errors": [
        "ScopeAnalysisError",
        "DataflowLimitExceeded",
        "Cancelled",
        "FlowGraphError",
        "ListingError",
        "ListingSyntaxError",
    ],
    "config": [
        "AnalysisConfig",
        "load_config",
    ],
    "syntax": [
        "ElementKind",
        "Element",
        "walk",
        "scope_owner_of",
    ],
    "ctrlflow_graph": [
        "Access",
        "Instruction",
        "ControlFlowGraph",
        "ControlFlowCache",
        "get_control_flow",
        "get_scope",
    ],
    "dataflow_engine": [
        "Lattice",
        "CancellationToken",
        "DataflowResult",
        "IntraproceduralSolver",
        "run_forward_analysis",
    ],
    "reaching_defs": [
        "ScopeVariable",
        "ReachingDefsSemilattice",
        "ReachingDefsTransfer",
        "compute_reaching_definitions",
    ],
    "scope": [
        "Scope",
    ],
    "flow_listing": [
        "ParsedListing",
        "parse_listing",
        "load_listing",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package
    namespace, together with the submodule itself."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"pyscope_shims: submodule '{module_rel_name}' failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            raise AttributeError(
                f"pyscope_shims.{module_rel_name} does not export '{name}'"
            )
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names

__all__.append("__version__")

if TYPE_CHECKING:
    from .errors import (
        ScopeAnalysisError as ScopeAnalysisError,
        DataflowLimitExceeded as DataflowLimitExceeded,
        Cancelled as Cancelled,
        FlowGraphError as FlowGraphError,
        ListingError as ListingError,
        ListingSyntaxError as ListingSyntaxError,
    )
    from .config import (
        AnalysisConfig as AnalysisConfig,
        load_config as load_config,
    )
    from .syntax import (
        ElementKind as ElementKind,
        Element as Element,
        walk as walk,
        scope_owner_of as scope_owner_of,
    )
    from .ctrlflow_graph import (
        Access as Access,
        Instruction as Instruction,
        ControlFlowGraph as ControlFlowGraph,
        ControlFlowCache as ControlFlowCache,
        get_control_flow as get_control_flow,
        get_scope as get_scope,
    )
    from .dataflow_engine import (
        Lattice as Lattice,
        CancellationToken as CancellationToken,
        DataflowResult as DataflowResult,
        IntraproceduralSolver as IntraproceduralSolver,
        run_forward_analysis as run_forward_analysis,
    )
    from .reaching_defs import (
        ScopeVariable as ScopeVariable,
        ReachingDefsSemilattice as ReachingDefsSemilattice,
        ReachingDefsTransfer as ReachingDefsTransfer,
        compute_reaching_definitions as compute_reaching_definitions,
    )
    from .scope import Scope as Scope
    from .flow_listing import (
        ParsedListing as ParsedListing,
        parse_listing as parse_listing,
        load_listing as load_listing,
    )
