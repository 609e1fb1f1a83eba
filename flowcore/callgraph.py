"""
flowcore/callgraph.py
=====================

Whole-program call graph built by Class Hierarchy Analysis (CHA).

The call graph is a directed graph where:

- **Nodes** are the :class:`~flowcore.ir.JMethod` objects reachable from the
  entry methods.
- **Edges** are ``(kind, call site, callee)`` triples; the caller is the
  method containing the call site and ``kind`` is the call site's
  :class:`~flowcore.ir.CallKind`.

Resolution by call kind
-----------------------
``STATIC``
    The method with the call's subsignature declared in the named class.
``SPECIAL``
    ``dispatch`` from the named class (constructors, private and super
    calls).
``VIRTUAL`` / ``INTERFACE``
    ``dispatch`` on the named class and on every class and interface below
    it: sub-classes of classes, sub-interfaces and implementors of
    interfaces.

``dispatch(cls, subsignature)`` returns the first non-abstract method with
that subsignature declared by ``cls`` or one of its super classes, or
``None``.  A call site with no resolvable target simply has no edges.

Public API
----------
    CallGraphEdge         - a directed edge (call site → callee)
    CallGraph             - the whole-program call graph
    CHABuilder            - the ``cha`` program analysis
    build_callgraph       - build from an entry method and a class hierarchy
    callgraph_summary     - human-readable summary
    find_recursive_methods
    unreachable_methods

Typical usage::

    from flowcore.callgraph import build_callgraph

    cg = build_callgraph(main_method, hierarchy)
    for site in cg.call_sites_in(main_method):
        print(site, "->", [str(m) for m in cg.get_callees_of(site)])
    print(cg.to_dot())
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, Iterable, Iterator, List, Mapping, Optional, Set

from flowcore.analysis import ProgramAnalysis
from flowcore.config import AnalysisContext
from flowcore.errors import (
    ArityMismatchError,
    CallGraphError,
    ErrorCodes,
)
from flowcore.hierarchy import ClassHierarchyOracle
from flowcore.ir import CallKind, Invoke, JClass, JMethod, Subsignature

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CallGraphEdge
# ---------------------------------------------------------------------------

class CallGraphEdge:
    """A call edge from *call_site* to *callee*.

    Attributes
    ----------
    kind : CallKind
    call_site : Invoke
    callee : JMethod
    """

    __slots__ = ("kind", "call_site", "callee")

    def __init__(self, kind: CallKind, call_site: Invoke, callee: JMethod) -> None:
        self.kind = kind
        self.call_site = call_site
        self.callee = callee

    @property
    def caller(self) -> JMethod:
        return self.call_site.method

    def __repr__(self) -> str:
        return (
            f"CallGraphEdge({self.kind.value}, {self.caller}[{self.call_site.index}] "
            f"-> {self.callee})"
        )

    def __hash__(self) -> int:
        return hash((self.kind, id(self.call_site), id(self.callee)))

    def __eq__(self, other) -> bool:
        if not isinstance(other, CallGraphEdge):
            return NotImplemented
        return (
            self.kind is other.kind
            and self.call_site is other.call_site
            and self.callee is other.callee
        )


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """The whole-program call graph.

    Reachable methods are recorded in discovery order; each appears once.
    """

    def __init__(self) -> None:
        self._entry_methods: List[JMethod] = []
        self._reachable: Dict[JMethod, None] = {}
        self._edges: Dict[CallGraphEdge, None] = {}
        self._site_edges: Dict[Invoke, List[CallGraphEdge]] = {}
        self._in_edges: Dict[JMethod, List[CallGraphEdge]] = {}

    # ----- construction -------------------------------------------------------

    def add_entry_method(self, method: JMethod) -> None:
        if method not in self._entry_methods:
            self._entry_methods.append(method)

    def add_reachable_method(self, method: JMethod) -> bool:
        """Mark *method* reachable; return ``False`` if it already was."""
        if method in self._reachable:
            return False
        self._reachable[method] = None
        return True

    def add_edge(self, edge: CallGraphEdge) -> bool:
        """Add *edge*; return ``False`` if it was already present.

        Raises
        ------
        CallGraphError
            The call site belongs to no reachable method's body.
        ArityMismatchError
            The call passes a different number of arguments than the
            callee declares parameters.
        """
        site, callee = edge.call_site, edge.callee
        caller = site.method
        if caller is None or not caller.has_ir or _stmt_at(caller, site.index) is not site:
            raise CallGraphError(
                f"call site {site} does not belong to {caller}",
                code=ErrorCodes.FOREIGN_CALL_SITE,
            )
        if caller not in self._reachable:
            raise CallGraphError(
                f"caller {caller} of {site} is not reachable",
                code=ErrorCodes.UNREACHABLE_CALLER,
            )
        n_args = len(site.invoke_exp.args)
        if n_args != callee.parameter_count:
            raise ArityMismatchError(site, callee, n_args, callee.parameter_count)
        if edge in self._edges:
            return False
        self._edges[edge] = None
        self._site_edges.setdefault(site, []).append(edge)
        self._in_edges.setdefault(callee, []).append(edge)
        return True

    # ----- queries ------------------------------------------------------------

    def entry_methods(self) -> List[JMethod]:
        return list(self._entry_methods)

    def reachable_methods(self) -> List[JMethod]:
        return list(self._reachable)

    def contains(self, method: JMethod) -> bool:
        return method in self._reachable

    @property
    def edges(self) -> List[CallGraphEdge]:
        return list(self._edges)

    def edges_out_of(self, call_site: Invoke) -> List[CallGraphEdge]:
        return list(self._site_edges.get(call_site, ()))

    def edges_in_to(self, method: JMethod) -> List[CallGraphEdge]:
        return list(self._in_edges.get(method, ()))

    def get_callees_of(self, call_site: Invoke) -> List[JMethod]:
        return [e.callee for e in self._site_edges.get(call_site, ())]

    def get_callers_of(self, method: JMethod) -> List[Invoke]:
        """Call sites that may invoke *method*."""
        return [e.call_site for e in self._in_edges.get(method, ())]

    def get_caller_of(self, call_site: Invoke) -> JMethod:
        return call_site.method

    def call_sites_in(self, method: JMethod) -> List[Invoke]:
        if not method.has_ir:
            return []
        return list(method.ir.invokes())

    def get_callees_of_method(self, method: JMethod) -> List[JMethod]:
        seen: Dict[JMethod, None] = {}
        for site in self.call_sites_in(method):
            for callee in self.get_callees_of(site):
                seen.setdefault(callee, None)
        return list(seen)

    def get_callers_of_method(self, method: JMethod) -> List[JMethod]:
        seen: Dict[JMethod, None] = {}
        for site in self.get_callers_of(method):
            seen.setdefault(site.method, None)
        return list(seen)

    # ----- whole-graph queries ------------------------------------------------

    def transitive_callees(self, method: JMethod) -> List[JMethod]:
        """Methods transitively reachable by calls from *method*."""
        visited: Dict[JMethod, None] = {}
        worklist: Deque[JMethod] = deque(self.get_callees_of_method(method))
        while worklist:
            m = worklist.popleft()
            if m in visited:
                continue
            visited[m] = None
            worklist.extend(self.get_callees_of_method(m))
        return list(visited)

    def is_recursive(self, method: JMethod) -> bool:
        """Is *method* part of a (possibly indirect) recursive cycle?"""
        return method in self.transitive_callees(method)

    def strongly_connected_components(self) -> List[List[JMethod]]:
        """Compute SCCs using Tarjan's algorithm.

        Returns a list of SCCs in reverse topological order (callees before
        callers).
        """
        index_counter = [0]
        stack: List[JMethod] = []
        lowlink: Dict[JMethod, int] = {}
        index: Dict[JMethod, int] = {}
        on_stack: Set[JMethod] = set()
        result: List[List[JMethod]] = []

        def strongconnect(v: JMethod) -> None:
            index[v] = index_counter[0]
            lowlink[v] = index_counter[0]
            index_counter[0] += 1
            stack.append(v)
            on_stack.add(v)

            for w in self.get_callees_of_method(v):
                if w not in index:
                    strongconnect(w)
                    lowlink[v] = min(lowlink[v], lowlink[w])
                elif w in on_stack:
                    lowlink[v] = min(lowlink[v], index[w])

            if lowlink[v] == index[v]:
                scc: List[JMethod] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    scc.append(w)
                    if w is v:
                        break
                result.append(scc)

        for v in self._reachable:
            if v not in index:
                strongconnect(v)
        return result

    def bottom_up_order(self) -> List[JMethod]:
        """Callees before callers (SCC members in arbitrary order)."""
        return [m for scc in self.strongly_connected_components() for m in scc]

    def top_down_order(self) -> List[JMethod]:
        return list(reversed(self.bottom_up_order()))

    # ----- statistics ---------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        by_kind = {k: 0 for k in CallKind}
        for e in self._edges:
            by_kind[e.kind] += 1
        sites = [s for m in self._reachable for s in self.call_sites_in(m)]
        sccs = self.strongly_connected_components()
        return {
            "reachable_methods": len(self._reachable),
            "entry_methods": len(self._entry_methods),
            "total_edges": len(self._edges),
            "call_sites": len(sites),
            "unresolved_call_sites": sum(1 for s in sites if s not in self._site_edges),
            "static_calls": by_kind[CallKind.STATIC],
            "special_calls": by_kind[CallKind.SPECIAL],
            "virtual_calls": by_kind[CallKind.VIRTUAL],
            "interface_calls": by_kind[CallKind.INTERFACE],
            "sccs": len(sccs),
            "recursive_sccs": len(find_recursive_methods(self)),
        }

    # ----- serialisation ------------------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation."""
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')
        ids = {m: f"m{i}" for i, m in enumerate(self._reachable)}
        for m, nid in ids.items():
            attrs = 'style=filled, fillcolor="#ddeeff"'
            if m in self._entry_methods:
                attrs = 'style=filled, fillcolor="#ccffcc", shape=invhouse'
            escaped = str(m).replace('"', '\\"')
            lines.append(f'  {nid} [label="{escaped}", {attrs}];')

        kind_attrs = {
            CallKind.STATIC: "",
            CallKind.SPECIAL: ", color=gray40",
            CallKind.VIRTUAL: ", style=dashed, color=blue",
            CallKind.INTERFACE: ", style=dashed, color=purple",
        }
        for e in self._edges:
            lines.append(
                f'  {ids[e.caller]} -> {ids[e.callee]} '
                f'[label="{e.kind.value}:{e.call_site.index}"{kind_attrs[e.kind]}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __iter__(self) -> Iterator[JMethod]:
        return iter(list(self._reachable))

    def __len__(self) -> int:
        return len(self._reachable)

    def __contains__(self, method: object) -> bool:
        return method in self._reachable

    def __repr__(self) -> str:
        return (
            f"CallGraph(methods={len(self._reachable)}, edges={len(self._edges)})"
        )


def _stmt_at(method: JMethod, index: int):
    stmts = method.ir.stmts
    return stmts[index] if 0 <= index < len(stmts) else None


# ---------------------------------------------------------------------------
# CHA
# ---------------------------------------------------------------------------

def dispatch(cls: Optional[JClass], subsignature: Subsignature) -> Optional[JMethod]:
    """First non-abstract method with *subsignature* from *cls* upwards."""
    while cls is not None:
        method = cls.get_declared_method(subsignature)
        if method is not None and not method.is_abstract:
            return method
        cls = cls.super_class
    return None


class CHABuilder(ProgramAnalysis):
    """Builds the call graph of a program by class hierarchy analysis."""

    ID = "cha"

    def __init__(self, config=None, hierarchy: Optional[ClassHierarchyOracle] = None) -> None:
        super().__init__(config)
        self.hierarchy = hierarchy

    def analyze(
        self,
        context: AnalysisContext,
        results: Optional[Mapping[str, Any]] = None,
    ) -> CallGraph:
        self.hierarchy = context.hierarchy
        return self.build(context.entry_methods or [context.main_method])

    def build(self, entry_methods: Iterable[JMethod]) -> CallGraph:
        cg = CallGraph()
        worklist: Deque[JMethod] = deque()
        for entry in entry_methods:
            cg.add_entry_method(entry)
            worklist.append(entry)
        while worklist:
            method = worklist.popleft()
            if not cg.add_reachable_method(method):
                continue
            for call_site in cg.call_sites_in(method):
                for callee in self.resolve(call_site):
                    cg.add_edge(CallGraphEdge(call_site.kind, call_site, callee))
                    worklist.append(callee)
        logger.debug(
            "CHA: %d reachable method(s), %d edge(s)",
            len(cg), len(cg.edges),
        )
        return cg

    def resolve(self, call_site: Invoke) -> List[JMethod]:
        """Possible targets of *call_site*, without duplicates."""
        ref = call_site.method_ref
        subsig = ref.subsignature
        kind = call_site.kind
        targets: Dict[JMethod, None] = {}
        if kind is CallKind.STATIC:
            method = ref.declaring_class.get_declared_method(subsig)
            if method is not None:
                targets[method] = None
        elif kind is CallKind.SPECIAL:
            method = dispatch(ref.declaring_class, subsig)
            if method is not None:
                targets[method] = None
        elif kind in (CallKind.VIRTUAL, CallKind.INTERFACE):
            if self.hierarchy is None:
                raise CallGraphError(
                    "virtual call resolution needs a class hierarchy",
                    code=ErrorCodes.MISSING_CONTEXT,
                )
            seen: Set[int] = set()
            queue: Deque[JClass] = deque([ref.declaring_class])
            while queue:
                cls = queue.popleft()
                if id(cls) in seen:
                    continue
                seen.add(id(cls))
                method = dispatch(cls, subsig)
                if method is not None:
                    targets[method] = None
                if cls.is_interface:
                    queue.extend(self.hierarchy.get_direct_subinterfaces_of(cls))
                    queue.extend(self.hierarchy.get_direct_implementors_of(cls))
                else:
                    queue.extend(self.hierarchy.get_direct_subclasses_of(cls))
        else:
            raise AssertionError(f"unhandled call kind {kind!r}")
        return list(targets)


def build_callgraph(
    entry: JMethod,
    hierarchy: ClassHierarchyOracle,
) -> CallGraph:
    """Build the CHA call graph rooted at *entry*."""
    return CHABuilder(hierarchy=hierarchy).build([entry])


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        "Call Graph Summary",
        f"  Reachable methods:    {stats['reachable_methods']}",
        f"  Entry methods:        {stats['entry_methods']}",
        f"  Total edges:          {stats['total_edges']}",
        f"  Call sites:           {stats['call_sites']}",
        f"  Unresolved sites:     {stats['unresolved_call_sites']}",
        f"  Static calls:         {stats['static_calls']}",
        f"  Special calls:        {stats['special_calls']}",
        f"  Virtual calls:        {stats['virtual_calls']}",
        f"  Interface calls:      {stats['interface_calls']}",
        f"  SCCs:                 {stats['sccs']}",
        f"  Recursive SCCs:       {stats['recursive_sccs']}",
        "",
        "Methods:",
    ]
    for m in cg.reachable_methods():
        callees = [str(c) for c in cg.get_callees_of_method(m)]
        callers = [str(c) for c in cg.get_callers_of_method(m)]
        lines.append(
            f"  {m}: calls [{', '.join(callees)}], "
            f"called by [{', '.join(callers)}]"
        )
    return "\n".join(lines)


def find_recursive_methods(cg: CallGraph) -> List[List[JMethod]]:
    """Groups of mutually recursive methods.

    Singleton groups are directly self-recursive methods.
    """
    result: List[List[JMethod]] = []
    for scc in cg.strongly_connected_components():
        if len(scc) > 1 or scc[0] in cg.get_callees_of_method(scc[0]):
            result.append(scc)
    return result


def unreachable_methods(cg: CallGraph, methods: Iterable[JMethod]) -> List[JMethod]:
    """Those of *methods* the call graph does not reach."""
    return [m for m in methods if m not in cg]
