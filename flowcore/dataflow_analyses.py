"""
flowcore/dataflow_analyses.py
=============================

Concrete intraprocedural analyses built on :mod:`flowcore.dataflow_engine`.

Analyses
--------
LiveVariableAnalysis (``livevar``)
    Backward may-analysis.  A variable is *live* at a point if its current
    value may be read before being overwritten.  Facts are
    :class:`~flowcore.lattice.SetFact` of variables; meet is union;
    ``IN = (OUT − def) ∪ uses``.

ConstantPropagation (``constprop``)
    Forward analysis over :class:`~flowcore.lattice.CPFact`.  Only
    int-holding variables (byte, short, int, char, boolean) are tracked.
    Int-holding parameters start as NAC.  Arithmetic follows 32-bit two's
    complement semantics: overflow wraps, division truncates toward zero,
    the remainder takes the sign of the dividend and shift distances use
    their low five bits.  Division or remainder by a constant zero
    evaluates to Undefined.

DeadCodeDetection (``deadcode``)
    Combines the two results above.  Sweeps the CFG from the entry,
    following only the feasible edge of a branch whose condition is
    constant (and only the matching target(s) of a switch on a constant)
    and skipping assignments to dead variables whose right-hand side has
    no side effect.  Every node never kept by the sweep, except the exit,
    is dead.  The result is ordered by statement index.

Each analysis stores its result on the IR under its ``ID``.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Optional, Set

from flowcore.ctrlflow_graph import CFG, CFGBuilder, CFGEdgeKind, cfg_of
from flowcore.analysis import MethodAnalysis
from flowcore.dataflow_engine import DataflowAnalysis, DataflowResult
from flowcore.ir import (
    IR,
    ArithmeticOp,
    ArrayAccess,
    AssignStmt,
    BinaryExp,
    BitwiseOp,
    CastExp,
    ConditionOp,
    Exp,
    FieldAccess,
    If,
    IntLiteral,
    InvokeExp,
    NewExp,
    ShiftOp,
    Stmt,
    Switch,
    Var,
)
from flowcore.lattice import NAC, UNDEF, ConstantLattice, CPFact, SetFact, Value

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  LIVE VARIABLES
# ═══════════════════════════════════════════════════════════════════════════

class LiveVariableAnalysis(DataflowAnalysis[SetFact]):
    """Live variables (backward, union)."""

    ID = "livevar"

    def is_forward(self) -> bool:
        return False

    def new_boundary_fact(self, cfg: CFG) -> SetFact:
        return SetFact()

    def new_initial_fact(self) -> SetFact:
        return SetFact()

    def meet_into(self, fact: SetFact, target: SetFact) -> None:
        target.union(fact)

    def transfer_node(self, node: Stmt, in_fact: SetFact, out_fact: SetFact) -> bool:
        new_in = out_fact.copy()
        d = node.get_def()
        if isinstance(d, Var):
            new_in.remove(d)
        for use in node.get_uses():
            new_in.add(use)
        return in_fact.set(new_in)


# ═══════════════════════════════════════════════════════════════════════════
#  32-BIT INTEGER ARITHMETIC
# ═══════════════════════════════════════════════════════════════════════════

_MASK32 = 0xFFFFFFFF


def to_int32(value: int) -> int:
    """Wrap *value* into the signed 32-bit range."""
    value &= _MASK32
    return value - 0x100000000 if value & 0x80000000 else value


def _div32(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return to_int32(q if (a < 0) == (b < 0) else -q)


def _rem32(a: int, b: int) -> int:
    r = abs(a) % abs(b)
    return to_int32(-r if a < 0 else r)


def _apply(op, c1: int, c2: int) -> int:
    if op is ArithmeticOp.ADD:
        return to_int32(c1 + c2)
    if op is ArithmeticOp.SUB:
        return to_int32(c1 - c2)
    if op is ArithmeticOp.MUL:
        return to_int32(c1 * c2)
    if op is ArithmeticOp.DIV:
        return _div32(c1, c2)
    if op is ArithmeticOp.REM:
        return _rem32(c1, c2)
    if op is ShiftOp.SHL:
        return to_int32(c1 << (c2 & 31))
    if op is ShiftOp.SHR:
        return c1 >> (c2 & 31)
    if op is ShiftOp.USHR:
        return to_int32((c1 & _MASK32) >> (c2 & 31))
    if op is BitwiseOp.OR:
        return c1 | c2
    if op is BitwiseOp.AND:
        return c1 & c2
    if op is BitwiseOp.XOR:
        return c1 ^ c2
    if op is ConditionOp.EQ:
        return int(c1 == c2)
    if op is ConditionOp.NE:
        return int(c1 != c2)
    if op is ConditionOp.LT:
        return int(c1 < c2)
    if op is ConditionOp.GT:
        return int(c1 > c2)
    if op is ConditionOp.LE:
        return int(c1 <= c2)
    if op is ConditionOp.GE:
        return int(c1 >= c2)
    raise AssertionError(f"unhandled binary operator {op!r}")


# ═══════════════════════════════════════════════════════════════════════════
#  CONSTANT PROPAGATION
# ═══════════════════════════════════════════════════════════════════════════

def can_hold_int(var: Exp) -> bool:
    """Whether *var* is a variable whose values fit in a 32-bit int."""
    return isinstance(var, Var) and var.can_hold_int


_VALUE_LATTICE = ConstantLattice()


def meet_value(v1: Value, v2: Value) -> Value:
    """Meet of two abstract values."""
    return _VALUE_LATTICE.meet(v1, v2)


def evaluate(exp: Exp, in_fact: CPFact) -> Value:
    """Abstract value of *exp* under *in_fact*.

    Expressions other than variables, int literals and binary expressions
    (invocations, allocations, field and array loads, casts) are NAC.
    """
    if isinstance(exp, IntLiteral):
        return Value.make_constant(to_int32(exp.value))
    if isinstance(exp, Var):
        return in_fact.get(exp)
    if isinstance(exp, BinaryExp):
        v1 = evaluate(exp.operand1, in_fact)
        v2 = evaluate(exp.operand2, in_fact)
        op = exp.op
        if (
            op in (ArithmeticOp.DIV, ArithmeticOp.REM)
            and v2.is_constant()
            and v2.get_constant() == 0
        ):
            return UNDEF
        if v1.is_constant() and v2.is_constant():
            return Value.make_constant(_apply(op, v1.get_constant(), v2.get_constant()))
        if v1.is_nac() or v2.is_nac():
            return NAC
        return UNDEF
    return NAC


class ConstantPropagation(DataflowAnalysis[CPFact]):
    """Constant propagation (forward)."""

    ID = "constprop"

    def is_forward(self) -> bool:
        return True

    def new_boundary_fact(self, cfg: CFG) -> CPFact:
        fact = CPFact()
        for param in cfg.ir.params:
            if can_hold_int(param):
                fact.update(param, NAC)
        return fact

    def new_initial_fact(self) -> CPFact:
        return CPFact()

    def meet_into(self, fact: CPFact, target: CPFact) -> None:
        for var, value in fact.items():
            target.update(var, meet_value(value, target.get(var)))

    def transfer_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> bool:
        d = node.get_def()
        if isinstance(d, Var) and can_hold_int(d):
            new_out = in_fact.copy()
            new_out.update(d, evaluate(_rvalue_of(node), in_fact))
            return out_fact.copy_from(new_out)
        return out_fact.copy_from(in_fact)


def _rvalue_of(stmt: Stmt) -> Exp:
    if isinstance(stmt, AssignStmt):
        return stmt.rvalue
    # an Invoke defining its result
    return stmt.invoke_exp


# ═══════════════════════════════════════════════════════════════════════════
#  DEAD CODE
# ═══════════════════════════════════════════════════════════════════════════

def has_no_side_effect(rvalue: Exp) -> bool:
    """Whether evaluating *rvalue* can neither modify the heap nor raise."""
    if isinstance(rvalue, (InvokeExp, NewExp, CastExp, FieldAccess, ArrayAccess)):
        return False
    if isinstance(rvalue, BinaryExp) and isinstance(rvalue.op, ArithmeticOp):
        return rvalue.op not in (ArithmeticOp.DIV, ArithmeticOp.REM)
    return True


def _result_of(ir: IR, analysis: DataflowAnalysis) -> DataflowResult:
    result = ir.get_result(analysis.ID)
    if result is None:
        result = analysis.analyze(ir)
        ir.store_result(analysis.ID, result)
    return result


class DeadCodeDetection(MethodAnalysis):
    """Unreachable code and dead assignments of one method."""

    ID = "deadcode"
    requires = (CFGBuilder.ID, ConstantPropagation.ID, LiveVariableAnalysis.ID)

    def analyze(self, ir: IR) -> List[Stmt]:
        cfg = cfg_of(ir)
        constants: DataflowResult[CPFact] = _result_of(ir, ConstantPropagation())
        live_vars: DataflowResult[SetFact] = _result_of(ir, LiveVariableAnalysis())

        live: Set[Stmt] = set()
        skipped: Set[Stmt] = set()
        queue: Deque[Stmt] = deque([cfg.get_entry()])
        while queue:
            stmt = queue.popleft()
            if (
                isinstance(stmt, AssignStmt)
                and isinstance(stmt.lvalue, Var)
                and stmt.lvalue not in live_vars.get_result(stmt)
                and has_no_side_effect(stmt.rvalue)
            ):
                if stmt not in skipped:
                    skipped.add(stmt)
                    queue.extend(cfg.get_succs_of(stmt))
                continue
            if stmt in live:
                continue
            live.add(stmt)
            queue.extend(self._feasible_succs(cfg, stmt, constants.get_in_fact(stmt)))

        dead = [
            n for n in cfg
            if n not in live and not cfg.is_exit(n)
        ]
        dead.sort(key=lambda s: s.index)
        logger.debug("%s: %d dead statement(s)", ir.method, len(dead))
        return dead

    @staticmethod
    def _feasible_succs(cfg: CFG, stmt: Stmt, in_fact: Optional[CPFact]) -> List[Stmt]:
        if isinstance(stmt, If):
            cond = evaluate(stmt.condition, in_fact)
            if cond.is_constant() and cond.get_constant() in (0, 1):
                wanted = CFGEdgeKind.IF_TRUE if cond.get_constant() == 1 else CFGEdgeKind.IF_FALSE
                return [e.target for e in cfg.get_out_edges_of(stmt) if e.kind is wanted]
        elif isinstance(stmt, Switch):
            value = evaluate(stmt.var, in_fact)
            if value.is_constant():
                c = value.get_constant()
                hits = [t for v, t in stmt.case_targets if v == c]
                return hits if hits else [stmt.default_target]
        return cfg.get_succs_of(stmt)
