"""
pyscope_shims.syntax
====================

A small tagged-variant syntax tree for the parts of a Python program the
scope analysis looks at.

Every node is an :class:`Element` whose :class:`ElementKind` says what it is.
Traversal is a single generator, :func:`walk`, and callers dispatch on
``element.kind`` instead of implementing one visitor method per node type.

The tree is built by whoever builds the control-flow graph (or by
:mod:`pyscope_shims.flow_listing`); the analysis only reads it.

Public API
----------
    ElementKind         - node kinds
    Element             - a tree node
    SCOPE_OWNER_KINDS   - kinds that open a new scope
    walk                - pre-order traversal with optional pruning
    scope_owner_of      - nearest enclosing scope owner
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional


# ===========================================================================
# ELEMENT KINDS
# ===========================================================================

class ElementKind(enum.Enum):
    """Syntactic node kinds."""

    # Scope owners
    MODULE = "module"
    FUNCTION = "function"
    CLASS = "class"
    LAMBDA = "lambda"
    COMPREHENSION = "comprehension"

    # Bindings
    PARAMETER = "parameter"
    TARGET = "target"
    IMPORT_ELEMENT = "import_element"
    STAR_IMPORT = "star_import"

    # Scope declarations
    GLOBAL = "global"
    NONLOCAL = "nonlocal"

    # Everything else
    REFERENCE = "reference"
    STATEMENT = "statement"
    EXPRESSION = "expression"


SCOPE_OWNER_KINDS = frozenset({
    ElementKind.MODULE,
    ElementKind.FUNCTION,
    ElementKind.CLASS,
    ElementKind.LAMBDA,
    ElementKind.COMPREHENSION,
})

# Kinds that introduce a name into the enclosing scope when they carry one.
NAMED_KINDS = frozenset({
    ElementKind.FUNCTION,
    ElementKind.CLASS,
    ElementKind.PARAMETER,
    ElementKind.TARGET,
    ElementKind.IMPORT_ELEMENT,
})


# ===========================================================================
# ELEMENT
# ===========================================================================

@dataclass(eq=False)
class Element:
    """A syntax tree node.

    Elements compare by identity: two distinct assignments to ``x`` are two
    different declarations even though they look alike.

    Attributes
    ----------
    kind : ElementKind
    name : str or None
        The bound or referenced name, for kinds that have one.  For a
        ``STAR_IMPORT`` it is the source module.
    label : str or None
        Free-form tag used to refer to the element from outside the tree
        (flow listings, test fixtures).
    children : list[Element]
    parent : Element or None
        Set by :meth:`add`.
    user_data : dict
        Per-element storage for caches that must live exactly as long as
        the element (see :class:`~pyscope_shims.ctrlflow_graph.ControlFlowCache`).
    """

    kind: ElementKind
    name: Optional[str] = None
    label: Optional[str] = None
    children: List["Element"] = field(default_factory=list)
    parent: Optional["Element"] = field(default=None, repr=False)
    user_data: Dict[Any, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for child in self.children:
            child.parent = self

    def add(self, child: "Element") -> "Element":
        """Append *child* and return it."""
        child.parent = self
        self.children.append(child)
        return child

    def extend(self, children: Iterable["Element"]) -> "Element":
        for child in children:
            self.add(child)
        return self

    @property
    def is_scope_owner(self) -> bool:
        return self.kind in SCOPE_OWNER_KINDS

    @property
    def is_named(self) -> bool:
        return self.kind in NAMED_KINDS and bool(self.name)

    @property
    def declared_names(self) -> List[str]:
        """Names listed by a ``global`` or ``nonlocal`` statement."""
        if self.kind not in (ElementKind.GLOBAL, ElementKind.NONLOCAL):
            return []
        return [
            c.name for c in self.children
            if c.kind is ElementKind.TARGET and c.name
        ]

    def ancestors(self) -> Iterator["Element"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def __repr__(self) -> str:
        parts = [self.kind.value]
        if self.name:
            parts.append(self.name)
        if self.label:
            parts.append(f"#{self.label}")
        return f"Element({' '.join(parts)})"


# ===========================================================================
# TRAVERSAL
# ===========================================================================

def walk(
    root: Element,
    *,
    include_root: bool = True,
    descend: Optional[Callable[[Element], bool]] = None,
) -> Iterator[Element]:
    """Yield *root*'s subtree in pre-order (document order).

    Parameters
    ----------
    root : Element
    include_root : bool
        Yield *root* itself first.
    descend : callable(Element) -> bool, optional
        Called for every yielded element other than *root*; when it returns
        ``False`` the element's children are skipped.  *root*'s own children
        are always visited.
    """
    if include_root:
        yield root
    stack: List[Element] = list(reversed(root.children))
    while stack:
        node = stack.pop()
        yield node
        if descend is None or descend(node):
            stack.extend(reversed(node.children))


def scope_owner_of(element: Element) -> Optional[Element]:
    """Return the nearest *strict* ancestor of *element* that owns a scope.

    A function's own scope owner is the scope it is defined in, not the
    function itself.
    """
    for ancestor in element.ancestors():
        if ancestor.is_scope_owner:
            return ancestor
    return None


def find_labelled(root: Element, label: str) -> Optional[Element]:
    """First element in *root*'s subtree carrying *label*."""
    for node in walk(root):
        if node.label == label:
            return node
    return None
