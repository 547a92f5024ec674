# tests/test_ctrlflow_graph.py
"""
Tests for the control-flow graph, the syntax tree helpers and the
per-owner cache.
"""

import gc
import weakref

import pytest

from pyscope_shims.config import AnalysisConfig
from pyscope_shims.ctrlflow_graph import (
    Access,
    ControlFlowCache,
    ControlFlowGraph,
    Instruction,
)
from pyscope_shims.dataflow_engine import CancellationToken
from pyscope_shims.errors import Cancelled, DataflowLimitExceeded, FlowGraphError
from pyscope_shims.scope import Scope
from pyscope_shims.syntax import (
    Element,
    ElementKind,
    find_labelled,
    scope_owner_of,
    walk,
)


@pytest.fixture
def tree():
    module = Element(ElementKind.MODULE, "m")
    func = module.add(Element(ElementKind.FUNCTION, "f", label="f"))
    stmt = func.add(Element(ElementKind.STATEMENT, label="body"))
    stmt.add(Element(ElementKind.TARGET, "x", label="x"))
    inner = func.add(Element(ElementKind.LAMBDA, label="lam"))
    inner.add(Element(ElementKind.PARAMETER, "p", label="p"))
    module.add(Element(ElementKind.TARGET, "y", label="y"))
    return module


def _single_write(owner):
    flow = ControlFlowGraph(owner=owner)
    flow.add_instruction(None, "x", Access.WRITE)
    return flow


# ===========================================================================
# Syntax tree
# ===========================================================================

class TestSyntax:

    def test_walk_is_document_order(self, tree):
        labels = [e.label for e in walk(tree, include_root=False)]
        assert labels == ["f", "body", "x", "lam", "p", "y"]

    def test_walk_pruning(self, tree):
        labels = [
            e.label
            for e in walk(tree, include_root=False,
                          descend=lambda e: not e.is_scope_owner)
        ]
        assert labels == ["f", "y"]

    def test_scope_owner_of(self, tree):
        func = find_labelled(tree, "f")
        assert scope_owner_of(find_labelled(tree, "x")) is func
        assert scope_owner_of(find_labelled(tree, "p")).kind is ElementKind.LAMBDA
        assert scope_owner_of(func) is tree
        assert scope_owner_of(tree) is None

    def test_identity_semantics(self):
        a = Element(ElementKind.TARGET, "x")
        b = Element(ElementKind.TARGET, "x")
        assert a != b
        assert len({a, b}) == 2

    def test_constructor_children_get_parent(self):
        child = Element(ElementKind.TARGET, "x")
        parent = Element(ElementKind.FUNCTION, "f", children=[child])
        assert child.parent is parent


# ===========================================================================
# Graph assembly
# ===========================================================================

class TestGraph:

    def test_edges_both_directions(self):
        flow = ControlFlowGraph()
        a = flow.add_instruction()
        b = flow.add_instruction(None, "x", Access.WRITE)
        flow.add_edge(a, b)
        flow.add_edge(0, 1)
        assert flow.successors_of(0) == [1]
        assert flow.predecessors_of(1) == [0]

    def test_chain(self):
        flow = ControlFlowGraph()
        nodes = [flow.add_instruction() for _ in range(4)]
        flow.chain(*nodes)
        flow.freeze()
        assert [flow.successors_of(i) for i in range(4)] == [(1,), (2,), (3,), ()]

    def test_frozen_graph_rejects_changes(self):
        flow = ControlFlowGraph()
        flow.add_instruction()
        assert flow.freeze() is flow
        assert flow.freeze() is flow
        with pytest.raises(FlowGraphError):
            flow.add_instruction()
        with pytest.raises(FlowGraphError):
            flow.add_edge(0, 0)

    def test_edge_index_out_of_range(self):
        flow = ControlFlowGraph()
        flow.add_instruction()
        with pytest.raises(FlowGraphError, match="out of range"):
            flow.add_edge(0, 3)

    def test_name_and_access_together(self):
        with pytest.raises(FlowGraphError):
            Instruction(0, name="x")
        with pytest.raises(FlowGraphError):
            Instruction(0, access=Access.READ)

    def test_access_properties(self):
        assert Access.READ_WRITE.is_read and Access.READ_WRITE.is_write
        assert not Access.DELETE.is_read and not Access.DELETE.is_write
        param = Element(ElementKind.PARAMETER, "a")
        assert Instruction(0, param, "a", Access.WRITE).binds_parameter
        assert not Instruction(0, param, "a", Access.READ).binds_parameter
        assert not Instruction(0).is_access

    def test_reachable_from(self):
        flow = ControlFlowGraph()
        for _ in range(4):
            flow.add_instruction()
        flow.add_edge(0, 1)
        flow.add_edge(1, 0)
        flow.add_edge(2, 3)
        assert flow.reachable_from() == {0, 1}
        assert flow.reachable_from(2) == {2, 3}
        assert ControlFlowGraph().reachable_from() == set()

    def test_find_instruction_first_match(self):
        target = Element(ElementKind.TARGET, "x")
        flow = ControlFlowGraph()
        flow.add_instruction()
        first = flow.add_instruction(target, "x", Access.WRITE)
        flow.add_instruction(target, "x", Access.READ)
        assert flow.find_instruction(target) is first
        assert flow.find_instruction(Element(ElementKind.TARGET, "x")) is None


# ===========================================================================
# Per-owner cache
# ===========================================================================

class TestControlFlowCache:

    def test_register_and_lookup(self):
        cache = ControlFlowCache()
        owner = Element(ElementKind.FUNCTION, "f")
        flow = _single_write(owner)
        cache.register(owner, flow)
        assert cache.get_control_flow(owner) is flow
        assert flow.frozen

    def test_scope_is_cached(self):
        cache = ControlFlowCache()
        owner = Element(ElementKind.FUNCTION, "f")
        cache.register(owner, _single_write(owner))
        scope = cache.get_scope(owner)
        assert isinstance(scope, Scope)
        assert cache.get_scope(owner) is scope
        assert scope.contains_declaration("x")

    def test_register_again_drops_scope(self):
        cache = ControlFlowCache()
        owner = Element(ElementKind.FUNCTION, "f")
        cache.register(owner, _single_write(owner))
        first = cache.get_scope(owner)
        cache.register(owner, ControlFlowGraph(owner=owner))
        second = cache.get_scope(owner)
        assert second is not first
        assert not second.contains_declaration("x")

    def test_builder_called_once(self):
        built = []

        def _build(owner):
            built.append(owner)
            return _single_write(owner)

        cache = ControlFlowCache(builder=_build)
        owner = Element(ElementKind.FUNCTION, "f")
        assert cache.get_control_flow(owner) is cache.get_control_flow(owner)
        assert cache.get_control_flow(owner).frozen
        assert built == [owner]

    def test_missing_graph(self):
        cache = ControlFlowCache()
        with pytest.raises(FlowGraphError, match="no control-flow graph"):
            cache.get_control_flow(Element(ElementKind.FUNCTION, "f"))

    def test_register_requires_scope_owner(self):
        cache = ControlFlowCache()
        stmt = Element(ElementKind.STATEMENT)
        with pytest.raises(FlowGraphError):
            cache.register(stmt, ControlFlowGraph())

    def test_clear(self):
        cache = ControlFlowCache()
        owner = Element(ElementKind.FUNCTION, "f")
        cache.register(owner, _single_write(owner))
        cache.clear()
        assert len(cache) == 0
        assert owner not in cache
        with pytest.raises(FlowGraphError):
            cache.get_control_flow(owner)

    def test_entries_die_with_the_tree(self):
        cache = ControlFlowCache()
        owner = Element(ElementKind.FUNCTION, "f")
        target = owner.add(Element(ElementKind.TARGET, "x"))
        flow = ControlFlowGraph(owner=owner)
        flow.add_instruction(target, "x", Access.WRITE)
        cache.register(owner, flow)
        cache.get_scope(owner).get_all_declared_variables()
        assert owner in cache
        assert len(cache) == 1

        alive = weakref.ref(owner)
        del owner, target, flow
        gc.collect()

        assert alive() is None
        assert len(cache) == 0

    def test_separate_caches_do_not_share_entries(self):
        first, second = ControlFlowCache(), ControlFlowCache()
        owner = Element(ElementKind.FUNCTION, "f")
        first.register(owner, _single_write(owner))
        assert owner in first
        assert owner not in second
        with pytest.raises(FlowGraphError):
            second.get_control_flow(owner)

    def test_scopes_get_cache_cancellation(self):
        token = CancellationToken()
        token.cancel()
        cache = ControlFlowCache(cancellation=token)
        owner = Element(ElementKind.FUNCTION, "f")
        cache.register(owner, _single_write(owner))
        with pytest.raises(Cancelled):
            cache.get_scope(owner).get_all_declared_variables()
        token.reset()
        (x,) = cache.get_scope(owner).get_all_declared_variables()
        assert x.defined_at == {0}

    def test_scopes_get_cache_config(self):
        owner = Element(ElementKind.FUNCTION, "f")
        flow = ControlFlowGraph(owner=owner)
        for name in ("a", "b", "c"):
            flow.add_instruction(None, name, Access.WRITE)
        flow.chain(0, 1, 2)
        # fact sizes 1, 2, 3 -> total 6
        cache = ControlFlowCache(config=AnalysisConfig(fact_limit=5))
        cache.register(owner, flow)
        with pytest.raises(DataflowLimitExceeded):
            cache.get_scope(owner).get_all_declared_variables()
