"""Pytest configuration and shared fixtures."""

import pytest

from pyscope_shims.ctrlflow_graph import Access, ControlFlowGraph, default_cache
from pyscope_shims.syntax import Element, ElementKind


BRANCH_MERGE_LISTING = """
function f {
    statement #if
    target x #x_then
    target x #x_else
    statement #merge
}
flow {
    0: nop @if -> 1, 2       // branch
    1: write x @x_then -> 3  // then-branch
    2: write x @x_else -> 3  // else-branch
    3: nop @merge            // merge
}
"""

LOOP_LISTING = """
function count {
    target i #i0
    statement #head
    target i #i1
    reference i #use
}
flow {
    0: write i @i0 -> 1
    1: nop @head -> 2, 3
    2: write i @i1 -> 1
    3: read i @use
}
"""


@pytest.fixture
def branch_merge_text():
    return BRANCH_MERGE_LISTING


@pytest.fixture
def loop_text():
    return LOOP_LISTING


@pytest.fixture
def write_chain():
    """Factory: a function whose instructions write *names* one after the
    other, followed by a final read of the first name."""

    def _make(names):
        owner = Element(ElementKind.FUNCTION, "chain")
        flow = ControlFlowGraph(owner=owner)
        previous = None
        for name in names:
            target = owner.add(Element(ElementKind.TARGET, name))
            instr = flow.add_instruction(target, name, Access.WRITE)
            if previous is not None:
                flow.add_edge(previous, instr)
            previous = instr
        use = owner.add(Element(ElementKind.REFERENCE, names[0], label="use"))
        last = flow.add_instruction(use, names[0], Access.READ)
        if previous is not None:
            flow.add_edge(previous, last)
        return owner, flow.freeze()

    return _make


@pytest.fixture(autouse=True)
def _clear_default_cache():
    yield
    default_cache.clear()
