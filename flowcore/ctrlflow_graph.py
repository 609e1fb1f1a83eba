"""
flowcore/ctrlflow_graph.py
==========================

Statement-level intraprocedural Control Flow Graphs.

Each method body (:class:`~flowcore.ir.IR`) yields one CFG.  Nodes are the
IR statements themselves plus two synthetic :class:`~flowcore.ir.Nop`
nodes, *entry* and *exit*; edges carry control-flow semantics
(fall-through, if-true, if-false, goto, switch-case, ...).

Public API
----------
    CFGEdgeKind      - classification of a CFG edge
    CFGEdge          - a directed edge between two statements
    CFG              - the control flow graph for one method
    build_cfg        - build a CFG from an IR
    cfg_of           - the CFG of an IR, built once and cached on the IR
    CFGBuilder       - the ``cfg`` method analysis

Typical usage::

    from flowcore.ctrlflow_graph import cfg_of

    cfg = cfg_of(method.ir)
    for node in cfg:
        print(node.index, node, [str(s) for s in cfg.get_succs_of(node)])

Construction rules
------------------
* ``entry`` has a single ``entry`` edge to the first statement (or to
  ``exit`` when the body is empty).
* ``If`` has an ``if-true`` edge to its target and an ``if-false`` edge to
  the next statement.
* ``Goto`` has a single ``goto`` edge; ``Switch`` has one ``switch-case``
  edge per case (carrying the case value) and one ``switch-default`` edge.
* ``Return`` has a ``return`` edge to ``exit``.
* Every other statement falls through to the next statement; the last
  statement of a body falls through to ``exit``.
* ``exceptional`` edges are never produced by :func:`build_cfg`; front
  ends that model exceptions add them with :meth:`CFG.add_edge`.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from typing import Dict, Iterator, List, Optional, Set

from flowcore.analysis import MethodAnalysis
from flowcore.errors import ErrorCodes, IRError
from flowcore.ir import IR, Goto, If, JMethod, Nop, Return, Stmt, Switch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------


class CFGEdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    ENTRY = "entry"
    FALL_THROUGH = "fall-through"
    GOTO = "goto"
    IF_TRUE = "if-true"
    IF_FALSE = "if-false"
    SWITCH_CASE = "switch-case"
    SWITCH_DEFAULT = "switch-default"
    RETURN = "return"
    EXCEPTIONAL = "exceptional"


class CFGEdge:
    """A directed edge ``source -> target``.

    ``case_value`` is set only on ``switch-case`` edges.
    """

    __slots__ = ("source", "target", "kind", "case_value")

    def __init__(
        self,
        source: Stmt,
        target: Stmt,
        kind: CFGEdgeKind = CFGEdgeKind.FALL_THROUGH,
        case_value: Optional[int] = None,
    ) -> None:
        self.source = source
        self.target = target
        self.kind = kind
        self.case_value = case_value

    @property
    def is_switch_case(self) -> bool:
        return self.kind is CFGEdgeKind.SWITCH_CASE

    def __repr__(self) -> str:
        extra = f"({self.case_value})" if self.case_value is not None else ""
        return (
            f"CFGEdge({self.source.index} -> {self.target.index}, "
            f"{self.kind.value}{extra})"
        )

    def __hash__(self) -> int:
        return hash((id(self.source), id(self.target), self.kind, self.case_value))

    def __eq__(self, other) -> bool:
        if not isinstance(other, CFGEdge):
            return NotImplemented
        return (
            self.source is other.source
            and self.target is other.target
            and self.kind is other.kind
            and self.case_value == other.case_value
        )


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------


class CFG:
    """Control flow graph for one method.

    Attributes
    ----------
    ir : IR
    entry, exit : Nop
        Synthetic nodes.  ``entry.index`` is ``-1``; ``exit.index`` is the
        number of statements, so sorting nodes by index keeps program order.
    """

    def __init__(self, ir: IR) -> None:
        self.ir = ir
        self.entry = Nop("entry")
        self.exit = Nop("exit")
        self.entry.index = -1
        self.exit.index = len(ir.stmts)
        self.entry.method = self.exit.method = ir.method
        self._nodes: List[Stmt] = [self.entry] + list(ir.stmts) + [self.exit]
        self._in: Dict[int, List[CFGEdge]] = {id(n): [] for n in self._nodes}
        self._out: Dict[int, List[CFGEdge]] = {id(n): [] for n in self._nodes}

    @property
    def method(self) -> JMethod:
        return self.ir.method

    def add_edge(
        self,
        source: Stmt,
        target: Stmt,
        kind: CFGEdgeKind = CFGEdgeKind.FALL_THROUGH,
        case_value: Optional[int] = None,
    ) -> CFGEdge:
        edge = CFGEdge(source, target, kind, case_value)
        self._out[self._key(source)].append(edge)
        self._in[self._key(target)].append(edge)
        return edge

    def _key(self, node: Stmt) -> int:
        key = id(node)
        if key not in self._out:
            raise IRError(
                f"{node!r} is not a node of the CFG of {self.method}",
                code=ErrorCodes.UNKNOWN_NODE,
            )
        return key

    # ----- queries ------------------------------------------------------------

    def get_entry(self) -> Stmt:
        return self.entry

    def get_exit(self) -> Stmt:
        return self.exit

    def is_entry(self, node: Stmt) -> bool:
        return node is self.entry

    def is_exit(self, node: Stmt) -> bool:
        return node is self.exit

    def get_nodes(self) -> List[Stmt]:
        return list(self._nodes)

    def contains(self, node: Stmt) -> bool:
        return id(node) in self._out

    def get_in_edges_of(self, node: Stmt) -> List[CFGEdge]:
        return list(self._in[self._key(node)])

    def get_out_edges_of(self, node: Stmt) -> List[CFGEdge]:
        return list(self._out[self._key(node)])

    def get_preds_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.source for e in self._in[self._key(node)])

    def get_succs_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.target for e in self._out[self._key(node)])

    @property
    def edges(self) -> List[CFGEdge]:
        return [e for n in self._nodes for e in self._out[id(n)]]

    def reachable_from(self, start: Optional[Stmt] = None) -> List[Stmt]:
        """Nodes reachable from *start* (default: entry), in BFS order."""
        start = start if start is not None else self.entry
        seen: Set[int] = {id(start)}
        order: List[Stmt] = []
        queue = deque([start])
        while queue:
            n = queue.popleft()
            order.append(n)
            for s in self.get_succs_of(n):
                if id(s) not in seen:
                    seen.add(id(s))
                    queue.append(s)
        return order

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this CFG."""
        lines = ["digraph CFG {"]
        lines.append(f'  label="{title or self.method}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for n in self._nodes:
            lbl = str(n).replace('"', '\\"')
            color = ""
            if n is self.entry:
                color = ', style=filled, fillcolor="#ccffcc"'
            elif n is self.exit:
                color = ', style=filled, fillcolor="#ffcccc"'
            lines.append(f'  S{n.index + 1} [label="{n.index}: {lbl}"{color}];')
        for e in self.edges:
            style = ""
            elabel = e.kind.value
            if e.case_value is not None:
                elabel += f": {e.case_value}"
            if e.kind is CFGEdgeKind.IF_TRUE:
                style = ', color=green, fontcolor=green'
            elif e.kind is CFGEdgeKind.IF_FALSE:
                style = ', color=red, fontcolor=red'
            elif e.kind is CFGEdgeKind.EXCEPTIONAL:
                style = ', style=dotted'
            lines.append(
                f'  S{e.source.index + 1} -> S{e.target.index + 1} '
                f'[label="{elabel}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return (
            f"CFG(method={self.method}, nodes={len(self._nodes)}, "
            f"edges={len(self.edges)})"
        )


def _unique(nodes) -> List[Stmt]:
    seen: Set[int] = set()
    out: List[Stmt] = []
    for n in nodes:
        if id(n) not in seen:
            seen.add(id(n))
            out.append(n)
    return out


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _require_target(stmt: Stmt, target: Optional[Stmt]) -> Stmt:
    if target is None:
        raise IRError(
            f"{stmt.method}: statement {stmt.index} jumps nowhere",
            code=ErrorCodes.UNRESOLVED_LABEL,
        )
    return target


def build_cfg(ir: IR) -> CFG:
    """Build the CFG of *ir* (see the module docstring for the rules)."""
    cfg = CFG(ir)
    stmts = ir.stmts
    cfg.add_edge(cfg.entry, stmts[0] if stmts else cfg.exit, CFGEdgeKind.ENTRY)
    for i, stmt in enumerate(stmts):
        nxt = stmts[i + 1] if i + 1 < len(stmts) else cfg.exit
        if isinstance(stmt, If):
            cfg.add_edge(stmt, _require_target(stmt, stmt.target), CFGEdgeKind.IF_TRUE)
            cfg.add_edge(stmt, nxt, CFGEdgeKind.IF_FALSE)
        elif isinstance(stmt, Goto):
            cfg.add_edge(stmt, _require_target(stmt, stmt.target), CFGEdgeKind.GOTO)
        elif isinstance(stmt, Switch):
            for value, target in stmt.case_targets:
                cfg.add_edge(
                    stmt, _require_target(stmt, target),
                    CFGEdgeKind.SWITCH_CASE, case_value=value,
                )
            cfg.add_edge(
                stmt, _require_target(stmt, stmt.default_target),
                CFGEdgeKind.SWITCH_DEFAULT,
            )
        elif isinstance(stmt, Return):
            cfg.add_edge(stmt, cfg.exit, CFGEdgeKind.RETURN)
        else:
            cfg.add_edge(stmt, nxt, CFGEdgeKind.FALL_THROUGH)
    logger.debug("%r", cfg)
    return cfg


class CFGBuilder(MethodAnalysis):
    """Method analysis publishing the CFG of each IR under ``cfg``."""

    ID = "cfg"

    def analyze(self, ir: IR) -> CFG:
        return cfg_of(ir)


def cfg_of(ir: IR) -> CFG:
    """Return the CFG of *ir*, building and caching it on first request."""
    cfg = ir.get_result(CFGBuilder.ID)
    if cfg is None:
        cfg = build_cfg(ir)
        ir.store_result(CFGBuilder.ID, cfg)
    return cfg
