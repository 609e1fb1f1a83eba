"""
flowcore/interproc_analysis.py
==============================

Interprocedural control-flow graph and interprocedural dataflow solving.

ICFG
----
The ICFG is a read-only composition of the CFGs of every reachable method
(methods without a body contribute nothing) and the call graph.  It adds
no nodes.  Its edges are:

``NORMAL``
    Every intraprocedural CFG edge whose source is not a call site.
``CALL_TO_RETURN``
    Every intraprocedural CFG edge leaving a call site.
``CALL``
    From a call site to the entry of each of its callees.
``RETURN``
    From a callee's exit to each return site (intraprocedural successor)
    of the call site.  The edge remembers its call site and the callee's
    return variables.

Interprocedural solver
----------------------
One global worklist over all ICFG nodes.  Every OUT fact starts as the
initial fact, except the entry node of each entry method, whose IN and
OUT facts start from the boundary fact computed from that method's own
CFG.  A node's IN fact is the meet, over its in-edges, of the edge
transfer applied to the source's OUT fact; the node transfer then
computes OUT and successors are re-queued when it changes.

Public API
----------
    ICFGEdgeKind
    ICFGEdge
    ICFG
    build_icfg
    InterDataflowAnalysis
    InterSolver
    InterConstantPropagation   - the ``inter-constprop`` program analysis
"""

from __future__ import annotations

import abc
import enum
import logging
import time
from collections import deque
from typing import (
    Any,
    Deque,
    Dict,
    Generic,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

from flowcore.analysis import ProgramAnalysis
from flowcore.callgraph import CallGraph, CHABuilder
from flowcore.config import AnalysisContext
from flowcore.ctrlflow_graph import CFG, CFGEdgeKind, cfg_of
from flowcore.dataflow_analyses import ConstantPropagation, meet_value
from flowcore.dataflow_engine import DataflowResult
from flowcore.errors import ConfigError, ConvergenceError, ErrorCodes, IRError
from flowcore.ir import Invoke, JMethod, Stmt, Var
from flowcore.lattice import CPFact

logger = logging.getLogger(__name__)

Fact = TypeVar("Fact")


# ===========================================================================
# ICFG
# ===========================================================================

class ICFGEdgeKind(enum.Enum):
    NORMAL = "normal"
    CALL_TO_RETURN = "call-to-return"
    CALL = "call"
    RETURN = "return"


class ICFGEdge:
    """An ICFG edge.

    Attributes
    ----------
    source, target : Stmt
    kind : ICFGEdgeKind
    cfg_kind : CFGEdgeKind or None
        Kind of the underlying CFG edge (``NORMAL`` / ``CALL_TO_RETURN``).
    call_site : Invoke or None
        The call site (``CALL_TO_RETURN``, ``CALL`` and ``RETURN`` edges).
    callee : JMethod or None
        ``CALL`` and ``RETURN`` edges.
    return_vars : tuple of Var
        Variables returned by the callee (``RETURN`` edges).
    """

    __slots__ = ("source", "target", "kind", "cfg_kind", "call_site", "callee", "return_vars")

    def __init__(
        self,
        source: Stmt,
        target: Stmt,
        kind: ICFGEdgeKind,
        cfg_kind: Optional[CFGEdgeKind] = None,
        call_site: Optional[Invoke] = None,
        callee: Optional[JMethod] = None,
        return_vars: Tuple[Var, ...] = (),
    ) -> None:
        self.source = source
        self.target = target
        self.kind = kind
        self.cfg_kind = cfg_kind
        self.call_site = call_site
        self.callee = callee
        self.return_vars = return_vars

    def __repr__(self) -> str:
        return (
            f"ICFGEdge({self.source.method}[{self.source.index}] -> "
            f"{self.target.method}[{self.target.index}], {self.kind.value})"
        )


class ICFG:
    """Interprocedural control flow graph over a :class:`CallGraph`."""

    def __init__(self, call_graph: CallGraph) -> None:
        self.call_graph = call_graph
        self._cfgs: Dict[JMethod, CFG] = {}
        self._method_of: Dict[Stmt, JMethod] = {}
        self._nodes: List[Stmt] = []
        self._in: Dict[Stmt, List[ICFGEdge]] = {}
        self._out: Dict[Stmt, List[ICFGEdge]] = {}
        self._build()

    def _build(self) -> None:
        for method in self.call_graph.reachable_methods():
            if not method.has_ir:
                continue
            cfg = cfg_of(method.ir)
            self._cfgs[method] = cfg
            for node in cfg:
                self._method_of[node] = method
                self._nodes.append(node)
                self._in[node] = []
                self._out[node] = []
        for cfg in self._cfgs.values():
            for e in cfg.edges:
                if isinstance(e.source, Invoke):
                    self._add(ICFGEdge(
                        e.source, e.target, ICFGEdgeKind.CALL_TO_RETURN,
                        cfg_kind=e.kind, call_site=e.source,
                    ))
                else:
                    self._add(ICFGEdge(e.source, e.target, ICFGEdgeKind.NORMAL, cfg_kind=e.kind))
        for edge in self.call_graph.edges:
            callee_cfg = self._cfgs.get(edge.callee)
            caller_cfg = self._cfgs.get(edge.caller)
            if callee_cfg is None or caller_cfg is None:
                continue
            site = edge.call_site
            self._add(ICFGEdge(
                site, callee_cfg.get_entry(), ICFGEdgeKind.CALL,
                call_site=site, callee=edge.callee,
            ))
            return_vars = tuple(edge.callee.ir.return_vars)
            for return_site in caller_cfg.get_succs_of(site):
                self._add(ICFGEdge(
                    callee_cfg.get_exit(), return_site, ICFGEdgeKind.RETURN,
                    call_site=site, callee=edge.callee, return_vars=return_vars,
                ))
        logger.debug("%r", self)

    def _add(self, edge: ICFGEdge) -> None:
        self._out[edge.source].append(edge)
        self._in[edge.target].append(edge)

    def _check(self, node: Stmt) -> Stmt:
        if node not in self._method_of:
            raise IRError(f"{node!r} is not an ICFG node", code=ErrorCodes.UNKNOWN_NODE)
        return node

    # ----- queries ------------------------------------------------------------

    def entry_methods(self) -> List[JMethod]:
        return [m for m in self.call_graph.entry_methods() if m in self._cfgs]

    def methods(self) -> List[JMethod]:
        return list(self._cfgs)

    def get_cfg_of(self, method: JMethod) -> CFG:
        cfg = self._cfgs.get(method)
        if cfg is None:
            raise IRError(f"{method} is not part of the ICFG", code=ErrorCodes.UNKNOWN_NODE)
        return cfg

    def get_entry_of(self, method: JMethod) -> Stmt:
        return self.get_cfg_of(method).get_entry()

    def get_exit_of(self, method: JMethod) -> Stmt:
        return self.get_cfg_of(method).get_exit()

    def get_containing_method_of(self, node: Stmt) -> JMethod:
        return self._method_of[self._check(node)]

    def get_nodes(self) -> List[Stmt]:
        return list(self._nodes)

    def contains(self, node: Stmt) -> bool:
        return node in self._method_of

    def get_in_edges_of(self, node: Stmt) -> List[ICFGEdge]:
        return list(self._in[self._check(node)])

    def get_out_edges_of(self, node: Stmt) -> List[ICFGEdge]:
        return list(self._out[self._check(node)])

    def get_preds_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.source for e in self.get_in_edges_of(node))

    def get_succs_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.target for e in self.get_out_edges_of(node))

    def is_call_site(self, node: Stmt) -> bool:
        return isinstance(node, Invoke)

    def get_callees_of(self, call_site: Invoke) -> List[JMethod]:
        return [m for m in self.call_graph.get_callees_of(call_site) if m in self._cfgs]

    def get_callers_of(self, method: JMethod) -> List[Invoke]:
        return self.call_graph.get_callers_of(method)

    def get_return_sites_of(self, call_site: Invoke) -> List[Stmt]:
        method = self.get_containing_method_of(call_site)
        return self._cfgs[method].get_succs_of(call_site)

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation, one cluster per method."""
        ids = {n: f"n{i}" for i, n in enumerate(self._nodes)}
        lines = ["digraph ICFG {"]
        if title:
            lines.append(f'  label="{title}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for i, (method, cfg) in enumerate(self._cfgs.items()):
            lines.append(f"  subgraph cluster_{i} {{")
            lines.append(f'    label="{str(method).replace(chr(34), chr(92) + chr(34))}";')
            for n in cfg:
                lbl = str(n).replace('"', '\\"')
                lines.append(f'    {ids[n]} [label="{n.index}: {lbl}"];')
            lines.append("  }")
        styles = {
            ICFGEdgeKind.NORMAL: "",
            ICFGEdgeKind.CALL_TO_RETURN: ", style=dotted",
            ICFGEdgeKind.CALL: ", color=blue, fontcolor=blue",
            ICFGEdgeKind.RETURN: ", color=red, fontcolor=red",
        }
        for n in self._nodes:
            for e in self._out[n]:
                lines.append(
                    f'  {ids[e.source]} -> {ids[e.target]} '
                    f'[label="{e.kind.value}"{styles[e.kind]}];'
                )
        lines.append("}")
        return "\n".join(lines)

    def __iter__(self) -> Iterator[Stmt]:
        return iter(list(self._nodes))

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        n_edges = sum(len(v) for v in self._out.values())
        return f"ICFG(methods={len(self._cfgs)}, nodes={len(self._nodes)}, edges={n_edges})"


def _unique(nodes) -> List[Stmt]:
    return list(dict.fromkeys(nodes))


def build_icfg(call_graph: CallGraph) -> ICFG:
    return ICFG(call_graph)


# ===========================================================================
# ANALYSIS
# ===========================================================================

class InterDataflowAnalysis(ProgramAnalysis, Generic[Fact]):
    """Abstract base class of interprocedural dataflow analyses.

    Node transfer dispatches on whether the node is a call site; edge
    transfer dispatches on the edge kind.  The ICFG is attached by the
    solver before solving starts.
    """

    requires = (CHABuilder.ID,)

    icfg: Optional[ICFG] = None

    @abc.abstractmethod
    def is_forward(self) -> bool:
        ...

    @abc.abstractmethod
    def new_boundary_fact(self, entry: Stmt) -> Fact:
        ...

    @abc.abstractmethod
    def new_initial_fact(self) -> Fact:
        ...

    @abc.abstractmethod
    def meet_into(self, fact: Fact, target: Fact) -> None:
        ...

    def transfer_node(self, node: Stmt, in_fact: Fact, out_fact: Fact) -> bool:
        if self.icfg.is_call_site(node):
            return self.transfer_call_node(node, in_fact, out_fact)
        return self.transfer_non_call_node(node, in_fact, out_fact)

    @abc.abstractmethod
    def transfer_call_node(self, node: Stmt, in_fact: Fact, out_fact: Fact) -> bool:
        ...

    @abc.abstractmethod
    def transfer_non_call_node(self, node: Stmt, in_fact: Fact, out_fact: Fact) -> bool:
        ...

    def transfer_edge(self, edge: ICFGEdge, out: Fact) -> Fact:
        kind = edge.kind
        if kind is ICFGEdgeKind.NORMAL:
            return self.transfer_normal_edge(edge, out)
        if kind is ICFGEdgeKind.CALL_TO_RETURN:
            return self.transfer_call_to_return_edge(edge, out)
        if kind is ICFGEdgeKind.CALL:
            return self.transfer_call_edge(edge, out)
        if kind is ICFGEdgeKind.RETURN:
            return self.transfer_return_edge(edge, out)
        raise AssertionError(f"unhandled ICFG edge kind {kind!r}")

    @abc.abstractmethod
    def transfer_normal_edge(self, edge: ICFGEdge, out: Fact) -> Fact:
        ...

    @abc.abstractmethod
    def transfer_call_to_return_edge(self, edge: ICFGEdge, out: Fact) -> Fact:
        ...

    @abc.abstractmethod
    def transfer_call_edge(self, edge: ICFGEdge, call_site_out: Fact) -> Fact:
        ...

    @abc.abstractmethod
    def transfer_return_edge(self, edge: ICFGEdge, return_out: Fact) -> Fact:
        ...

    def analyze(
        self,
        context: AnalysisContext,
        results: Optional[Mapping[str, Any]] = None,
    ) -> DataflowResult[Fact]:
        call_graph = (results or {}).get(CHABuilder.ID)
        if call_graph is None:
            call_graph = CHABuilder().analyze(context)
        return InterSolver(self, ICFG(call_graph)).solve()


# ===========================================================================
# SOLVER
# ===========================================================================

class InterSolver(Generic[Fact]):
    """Worklist solver over an :class:`ICFG` (forward analyses only).

    Parameters
    ----------
    analysis : InterDataflowAnalysis
    icfg : ICFG
    max_iterations : int, optional
        Bound on node transfers (default: the analysis config's
        ``max_iterations``).
    """

    def __init__(
        self,
        analysis: InterDataflowAnalysis[Fact],
        icfg: ICFG,
        max_iterations: Optional[int] = None,
    ) -> None:
        if not analysis.is_forward():
            raise ConfigError(
                f"{analysis.ID}: interprocedural analyses must be forward",
                code=ErrorCodes.UNSUPPORTED_DIRECTION,
            )
        self.analysis = analysis
        self.icfg = icfg
        self.max_iterations = (
            max_iterations if max_iterations is not None
            else analysis.config.max_iterations
        )
        analysis.icfg = icfg
        self._boundary: Dict[Stmt, Fact] = {}

    def solve(self) -> DataflowResult[Fact]:
        t0 = time.monotonic()
        result: DataflowResult[Fact] = DataflowResult("worklist")
        self._initialize(result)
        self._do_solve(result)
        result.elapsed_seconds = time.monotonic() - t0
        logger.debug(
            "%s: interprocedural fixpoint after %d transfers over %d nodes",
            self.analysis.ID, result.iterations, len(self.icfg),
        )
        return result

    def _initialize(self, result: DataflowResult[Fact]) -> None:
        a = self.analysis
        for node in self.icfg:
            result.set_in_fact(node, a.new_initial_fact())
            result.set_out_fact(node, a.new_initial_fact())
        for method in self.icfg.entry_methods():
            entry = self.icfg.get_entry_of(method)
            self._boundary[entry] = a.new_boundary_fact(entry)
            result.set_in_fact(entry, a.new_boundary_fact(entry))
            result.set_out_fact(entry, a.new_boundary_fact(entry))

    def _do_solve(self, result: DataflowResult[Fact]) -> None:
        a = self.analysis
        worklist: Deque[Stmt] = deque(self.icfg.get_nodes())
        queued: Set[Stmt] = set(worklist)
        while worklist:
            node = worklist.popleft()
            queued.discard(node)
            new_in = a.new_initial_fact()
            boundary = self._boundary.get(node)
            if boundary is not None:
                a.meet_into(boundary, new_in)
            for edge in self.icfg.get_in_edges_of(node):
                a.meet_into(a.transfer_edge(edge, result.get_out_fact(edge.source)), new_in)
            result.set_in_fact(node, new_in)
            result.iterations += 1
            if self.max_iterations is not None and result.iterations > self.max_iterations:
                raise ConvergenceError(a.ID, self.max_iterations)
            if a.transfer_node(node, new_in, result.get_out_fact(node)):
                for succ in self.icfg.get_succs_of(node):
                    if succ not in queued:
                        worklist.append(succ)
                        queued.add(succ)


# ===========================================================================
# INTERPROCEDURAL CONSTANT PROPAGATION
# ===========================================================================

class InterConstantPropagation(InterDataflowAnalysis[CPFact]):
    """Context-insensitive interprocedural constant propagation."""

    ID = "inter-constprop"

    def __init__(self, config=None) -> None:
        super().__init__(config)
        self.cp = ConstantPropagation()

    def is_forward(self) -> bool:
        return self.cp.is_forward()

    def new_boundary_fact(self, entry: Stmt) -> CPFact:
        method = self.icfg.get_containing_method_of(entry)
        return self.cp.new_boundary_fact(self.icfg.get_cfg_of(method))

    def new_initial_fact(self) -> CPFact:
        return self.cp.new_initial_fact()

    def meet_into(self, fact: CPFact, target: CPFact) -> None:
        self.cp.meet_into(fact, target)

    def transfer_call_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> bool:
        return out_fact.copy_from(in_fact)

    def transfer_non_call_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> bool:
        return self.cp.transfer_node(node, in_fact, out_fact)

    def transfer_normal_edge(self, edge: ICFGEdge, out: CPFact) -> CPFact:
        return out

    def transfer_call_to_return_edge(self, edge: ICFGEdge, out: CPFact) -> CPFact:
        result = out.copy()
        if edge.call_site.result is not None:
            result.remove(edge.call_site.result)
        return result

    def transfer_call_edge(self, edge: ICFGEdge, call_site_out: CPFact) -> CPFact:
        result = CPFact()
        params = edge.callee.ir.params
        args = edge.call_site.invoke_exp.args
        for param, arg in zip(params, args):
            result.update(param, call_site_out.get(arg))
        return result

    def transfer_return_edge(self, edge: ICFGEdge, return_out: CPFact) -> CPFact:
        result = CPFact()
        lhs = edge.call_site.result
        if lhs is not None:
            for var in edge.return_vars:
                result.update(lhs, meet_value(result.get(lhs), return_out.get(var)))
        return result
