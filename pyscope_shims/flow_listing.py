"""
flow_listing.py: textual listings of a pre-built scope
=======================================================

A flow listing describes one scope owner's syntax tree and its
instruction graph, so that an analysis can be fed from a dump file or a
test fixture without a front end.

Usage::

    from pyscope_shims.flow_listing import parse_listing

    listing = parse_listing('''
        function f {
            parameter a
            target x #x1
            reference x #use
        }
        flow {
            0: start -> 1
            1: write a @a -> 2
            2: write x @x1 -> 3
            3: read x @use
        }
    ''')
    scope = listing.scope()
    scope.get_declared_variable(listing["use"], "x")

Tree syntax
-----------
``kind [name[, name ...]] [#label] [{ children }]``

``kind`` is the lower-case value of an :class:`ElementKind`.  ``global``
and ``nonlocal`` take a name list and get one ``target`` child per name;
every other kind takes at most one name.  An element can be referred to by
its ``#label`` or, when unlabelled, by its name (the last such element
wins).

Flow syntax
-----------
``index ":" op [name] ["@" ref] ["->" successor, ...]``

``op`` is one of ``start``, ``exit``, ``nop`` (no name) or ``read``,
``write``, ``readwrite``, ``delete`` (name required).  Indices are dense
and listed in order.  ``//`` starts a comment.

Depends on:
    - parsimonious (PEG parser)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from pyscope_shims.ctrlflow_graph import Access, ControlFlowGraph
from pyscope_shims.errors import ListingError, ListingSyntaxError
from pyscope_shims.syntax import Element, ElementKind, walk

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1: GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════

FLOW_LISTING_GRAMMAR = Grammar(r'''
    listing         = _ element _ flow _

    # ─────────────────────────────────────────────────────────────
    # Syntax tree
    # ─────────────────────────────────────────────────────────────

    element         = kind name_list? label? children?
    children        = _ "{" _ (element _)* "}"
    name_list       = __ name (_ "," _ name)*
    label           = _ "#" identifier

    # ─────────────────────────────────────────────────────────────
    # Instruction graph
    # ─────────────────────────────────────────────────────────────

    flow            = "flow" _ "{" _ (instruction _)* "}"
    instruction     = index _ ":" _ op operand? ref? successors?
    operand         = __ name
    ref             = _ "@" identifier
    successors      = _ "->" _ index (_ "," _ index)*
    op              = "readwrite" / "read" / "write" / "delete"
                    / "start" / "exit" / "nop"

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    kind            = ~r"[a-z_]+"
    name            = ~r"[A-Za-z_][A-Za-z0-9_.]*"
    identifier      = ~r"[A-Za-z_][A-Za-z0-9_]*"
    index           = ~r"[0-9]+"
    _               = (ws / comment)*
    __              = ~r"[ \t]+"
    ws              = ~r"\s+"
    comment         = ~r"//[^\n]*"
''')

_OPS: Dict[str, Optional[Access]] = {
    "start": None,
    "exit": None,
    "nop": None,
    "read": Access.READ,
    "write": Access.WRITE,
    "readwrite": Access.READ_WRITE,
    "delete": Access.DELETE,
}


# ═══════════════════════════════════════════════════════════════════
#  PART 2: PARSE TREE → RECORDS
# ═══════════════════════════════════════════════════════════════════

@dataclass
class _InstructionRecord:
    index: int
    op: str
    name: Optional[str]
    ref: Optional[str]
    successors: List[int] = field(default_factory=list)


def _optional(visited: Any) -> Any:
    """Unwrap an optional node visited by :meth:`generic_visit`."""
    if isinstance(visited, list) and visited:
        return visited[0]
    return None


def _repeated(visited: Any) -> List[Any]:
    """Per-repetition child lists of a ``*`` node."""
    return visited if isinstance(visited, list) else []


class ListingBuilder(NodeVisitor):
    """Transforms the parse tree into an element tree and instruction
    records."""

    unwrapped_exceptions = (ListingError,)

    def generic_visit(self, node: Node, visited_children: List[Any]) -> Any:
        return visited_children or node

    # ─────────────────────────────────────────────────────────────
    # Top level
    # ─────────────────────────────────────────────────────────────

    def visit_listing(self, node, visited_children):
        _, root, _, records, _ = visited_children
        return root, records

    # ─────────────────────────────────────────────────────────────
    # Syntax tree
    # ─────────────────────────────────────────────────────────────

    def visit_element(self, node, visited_children):
        kind_text, names, label, children = visited_children
        try:
            kind = ElementKind(kind_text)
        except ValueError:
            raise ListingError(f"unknown element kind {kind_text!r}") from None
        names = _optional(names) or []
        label = _optional(label)
        children = _optional(children) or []

        if kind in (ElementKind.GLOBAL, ElementKind.NONLOCAL):
            element = Element(kind, label=label)
            for name in names:
                element.add(Element(ElementKind.TARGET, name))
        else:
            if len(names) > 1:
                raise ListingError(
                    f"{kind.value} takes at most one name, got {', '.join(names)}"
                )
            element = Element(kind, names[0] if names else None, label=label)
        element.extend(children)
        return element

    def visit_children(self, node, visited_children):
        _, _, _, elements, _ = visited_children
        return [rep[0] for rep in _repeated(elements)]

    def visit_name_list(self, node, visited_children):
        _, first, rest = visited_children
        return [first] + [rep[3] for rep in _repeated(rest)]

    def visit_label(self, node, visited_children):
        return visited_children[2]

    # ─────────────────────────────────────────────────────────────
    # Instruction graph
    # ─────────────────────────────────────────────────────────────

    def visit_flow(self, node, visited_children):
        _, _, _, _, instructions, _ = visited_children
        return [rep[0] for rep in _repeated(instructions)]

    def visit_instruction(self, node, visited_children):
        index, _, _, _, op, operand, ref, successors = visited_children
        return _InstructionRecord(
            index=index,
            op=op,
            name=_optional(operand),
            ref=_optional(ref),
            successors=_optional(successors) or [],
        )

    def visit_operand(self, node, visited_children):
        return visited_children[1]

    def visit_ref(self, node, visited_children):
        return visited_children[2]

    def visit_successors(self, node, visited_children):
        _, _, _, first, rest = visited_children
        return [first] + [rep[3] for rep in _repeated(rest)]

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    def visit_op(self, node, visited_children):
        return node.text

    def visit_kind(self, node, visited_children):
        return node.text

    def visit_name(self, node, visited_children):
        return node.text

    def visit_identifier(self, node, visited_children):
        return node.text

    def visit_index(self, node, visited_children):
        return int(node.text)


# ═══════════════════════════════════════════════════════════════════
#  PART 3: RECORDS → SCOPE INPUT
# ═══════════════════════════════════════════════════════════════════

@dataclass
class ParsedListing:
    """A parsed listing: the scope owner, its frozen graph, and a label
    index.

    ``listing["x1"]`` returns the element labelled (or, when unlabelled,
    named) ``x1``.
    """

    owner: Element
    flow: ControlFlowGraph
    labels: Dict[str, Element] = field(default_factory=dict)

    def __getitem__(self, label: str) -> Element:
        try:
            return self.labels[label]
        except KeyError:
            raise KeyError(f"no element labelled {label!r}") from None

    def scope(self, **kwargs: Any):
        """A fresh :class:`~pyscope_shims.scope.Scope` over this listing.

        Keyword arguments are passed to the ``Scope`` constructor.
        """
        from pyscope_shims.scope import Scope

        return Scope(self.owner, self.flow, **kwargs)


def _index_labels(root: Element) -> Dict[str, Element]:
    by_name: Dict[str, Element] = {}
    by_label: Dict[str, Element] = {}
    for node in walk(root):
        if node.label:
            by_label[node.label] = node
        elif node.name:
            by_name[node.name] = node
    by_name.update(by_label)
    return by_name


def _build_flow(
    root: Element,
    records: List[_InstructionRecord],
    labels: Dict[str, Element],
) -> ControlFlowGraph:
    flow = ControlFlowGraph(owner=root)
    for expected, rec in enumerate(records):
        if rec.index != expected:
            raise ListingError(
                f"instruction {rec.index} out of order; expected {expected}"
            )
        access = _OPS[rec.op]
        if access is None and rec.name is not None:
            raise ListingError(
                f"instruction {rec.index}: {rec.op!r} does not take a name"
            )
        if access is not None and rec.name is None:
            raise ListingError(
                f"instruction {rec.index}: {rec.op!r} needs a name"
            )
        element = None
        if rec.ref is not None:
            element = labels.get(rec.ref)
            if element is None:
                raise ListingError(
                    f"instruction {rec.index}: unknown element {rec.ref!r}"
                )
        flow.add_instruction(element=element, name=rec.name, access=access)

    for rec in records:
        for succ in rec.successors:
            if not 0 <= succ < len(records):
                raise ListingError(
                    f"instruction {rec.index}: successor {succ} does not exist"
                )
            flow.add_edge(rec.index, succ)
    return flow.freeze()


def parse_listing(text: str) -> ParsedListing:
    """Parse a flow listing.

    Raises
    ------
    ListingSyntaxError
        The text does not match the grammar.
    ListingError
        The listing is inconsistent (unknown kind or label, sparse indices).
    """
    try:
        tree = FLOW_LISTING_GRAMMAR.parse(text)
    except ParseError as exc:
        raise ListingSyntaxError(
            f"invalid flow listing near {exc.text[exc.pos:exc.pos + 20]!r}",
            line=exc.line(),
            column=exc.column(),
        ) from exc

    try:
        root, records = ListingBuilder().visit(tree)
    except VisitationError as exc:
        raise ListingError(str(exc)) from exc

    if not root.is_scope_owner:
        raise ListingError(f"root element {root!r} does not own a scope")

    labels = _index_labels(root)
    flow = _build_flow(root, records, labels)
    logger.debug(
        "Parsed listing for %r: %d instructions", root, len(flow),
    )
    return ParsedListing(owner=root, flow=flow, labels=labels)


def load_listing(path: Union[str, Path]) -> ParsedListing:
    """Read and parse a listing file."""
    return parse_listing(Path(path).read_text(encoding="utf-8"))
