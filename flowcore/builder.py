"""
flowcore/builder.py
===================

Programmatic construction of method bodies.

Front ends and tests build IR with a :class:`MethodBuilder`: declare
variables, append statements, name statements with labels and jump to
labels that have not been placed yet.  Labels are resolved when
:meth:`MethodBuilder.finish` is called, which also attaches the finished
:class:`~flowcore.ir.IR` to its method.

Usage example
-------------
::

    from flowcore.builder import MethodBuilder
    from flowcore.ir import ConditionOp, JClass, PrimitiveType

    main = JClass("Main")
    mb = MethodBuilder(main, "f", is_static=True)
    x = mb.var("x")
    mb.assign(x, 1)
    mb.if_(ConditionOp.EQ, x, 1, "then")
    mb.assign("a", 6)
    mb.goto("join")
    mb.label("then")
    mb.assign("a", 5)
    mb.label("join")
    mb.ret()
    ir = mb.finish()
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from flowcore.errors import ErrorCodes, IRError
from flowcore.ir import (
    IR,
    AssignStmt,
    BinaryExp,
    BinaryOp,
    CallKind,
    ClassType,
    ConditionOp,
    Exp,
    Goto,
    If,
    IntLiteral,
    Invoke,
    InvokeExp,
    JClass,
    JMethod,
    MethodRef,
    Nop,
    PrimitiveType,
    Return,
    Stmt,
    Subsignature,
    Switch,
    Type,
    Var,
)

logger = logging.getLogger(__name__)

# What callers may pass where a variable or literal is expected.
AtomLike = Union[Var, IntLiteral, int, str]


def declare_method(
    declaring_class: JClass,
    name: str,
    param_types: Sequence[Type] = (),
    return_type: Type = PrimitiveType.INT,
    is_static: bool = False,
    is_abstract: bool = False,
) -> JMethod:
    """Declare a method (without body) on *declaring_class*."""
    sub = Subsignature(name, tuple(param_types), return_type)
    method = JMethod(declaring_class, sub, is_static=is_static, is_abstract=is_abstract)
    return declaring_class.add_method(method)


class MethodBuilder:
    """Builds the body of one method.

    Parameters
    ----------
    declaring_class : JClass
    name : str
    param_types : sequence of Type
    return_type : Type
    is_static : bool
        Non-static methods get an implicit ``this`` variable.
    param_names : sequence of str, optional
        Names for the parameter variables (default ``p0``, ``p1``, ...).
    """

    def __init__(
        self,
        declaring_class: JClass,
        name: str,
        param_types: Sequence[Type] = (),
        return_type: Type = PrimitiveType.INT,
        is_static: bool = False,
        param_names: Optional[Sequence[str]] = None,
    ) -> None:
        self.method = declare_method(
            declaring_class, name, param_types, return_type, is_static=is_static,
        )
        names = list(param_names) if param_names is not None else [
            f"p{i}" for i in range(len(param_types))
        ]
        if len(names) != len(param_types):
            raise IRError(
                f"{self.method}: {len(names)} parameter names for "
                f"{len(param_types)} parameters",
                code=ErrorCodes.ARITY_MISMATCH,
            )
        self._vars: Dict[str, Var] = {}
        self.this: Optional[Var] = None
        if not is_static:
            self.this = self.var("this", ClassType(declaring_class.name))
        self.params: List[Var] = [self.var(n, t) for n, t in zip(names, param_types)]
        self._stmts: List[Stmt] = []
        self._labels: Dict[str, int] = {}
        self._pending_labels: List[str] = []
        # (stmt, attribute or case position, label)
        self._fixups: List[Tuple[Stmt, Union[str, int], str]] = []
        self._finished = False

    # ----- variables ----------------------------------------------------------

    def var(self, name: str, type: Type = PrimitiveType.INT) -> Var:
        """Return the variable called *name*, creating it on first use."""
        v = self._vars.get(name)
        if v is None:
            v = Var(name, type)
            self._vars[name] = v
        return v

    def param(self, i: int) -> Var:
        return self.params[i]

    def _atom(self, value: AtomLike) -> Union[Var, IntLiteral]:
        if isinstance(value, bool):
            return IntLiteral(int(value))
        if isinstance(value, int):
            return IntLiteral(value)
        if isinstance(value, str):
            return self.var(value)
        return value

    def _as_var(self, value: Union[Var, str]) -> Var:
        return self.var(value) if isinstance(value, str) else value

    # ----- statements ---------------------------------------------------------

    def label(self, name: str) -> None:
        """Attach *name* to the next statement appended."""
        if name in self._labels or name in self._pending_labels:
            raise IRError(
                f"{self.method}: label {name!r} defined twice",
                code=ErrorCodes.DUPLICATE_LABEL,
            )
        self._pending_labels.append(name)

    def add(self, stmt: Stmt) -> Stmt:
        """Append an already constructed statement."""
        if self._finished:
            raise IRError(f"{self.method}: body already finished")
        for name in self._pending_labels:
            self._labels[name] = len(self._stmts)
        self._pending_labels.clear()
        self._stmts.append(stmt)
        return stmt

    def assign(self, lvalue: Union[Exp, str], rvalue: Union[Exp, int, str]) -> AssignStmt:
        """``lvalue = rvalue``; ints become literals and strings variables."""
        lhs = self.var(lvalue) if isinstance(lvalue, str) else lvalue
        rhs = rvalue if isinstance(rvalue, Exp) else self._atom(rvalue)
        return self.add(AssignStmt(lhs, rhs))

    def binary(self, op: BinaryOp, a: AtomLike, b: AtomLike) -> BinaryExp:
        return BinaryExp(op, self._atom(a), self._atom(b))

    def compute(
        self,
        lvalue: Union[Var, str],
        op: BinaryOp,
        a: AtomLike,
        b: AtomLike,
    ) -> AssignStmt:
        """``lvalue = a op b``."""
        return self.assign(self._as_var(lvalue), self.binary(op, a, b))

    def if_(self, op: ConditionOp, a: AtomLike, b: AtomLike, target: str) -> If:
        stmt = self.add(If(self.binary(op, a, b)))
        self._fixups.append((stmt, "target", target))
        return stmt

    def goto(self, target: str) -> Goto:
        stmt = self.add(Goto())
        self._fixups.append((stmt, "target", target))
        return stmt

    def switch(
        self,
        var: Union[Var, str],
        cases: Mapping[int, str],
        default: str,
    ) -> Switch:
        """``switch (var)`` jumping to the labels in *cases* (value -> label)."""
        stmt = self.add(Switch(self._as_var(var), [(v, None) for v in cases]))
        for pos, target in enumerate(cases.values()):
            self._fixups.append((stmt, pos, target))
        self._fixups.append((stmt, "default_target", default))
        return stmt

    def invoke(
        self,
        kind: CallKind,
        method_ref: Union[MethodRef, JMethod],
        args: Sequence[Union[Var, str]] = (),
        base: Optional[Union[Var, str]] = None,
        result: Optional[Union[Var, str]] = None,
    ) -> Invoke:
        if isinstance(method_ref, JMethod):
            method_ref = method_ref.ref
        exp = InvokeExp(
            kind,
            method_ref,
            [self._as_var(a) for a in args],
            self._as_var(base) if base is not None else None,
        )
        return self.add(Invoke(exp, self._as_var(result) if result is not None else None))

    def ret(self, value: Optional[Union[Var, str]] = None) -> Return:
        return self.add(Return(self._as_var(value) if value is not None else None))

    def nop(self) -> Nop:
        return self.add(Nop())

    # ----- completion ---------------------------------------------------------

    def _resolve(self, name: str) -> Stmt:
        pos = self._labels.get(name)
        if pos is None:
            raise IRError(
                f"{self.method}: jump to undefined label {name!r}",
                code=ErrorCodes.UNRESOLVED_LABEL,
            )
        return self._stmts[pos]

    def finish(self) -> IR:
        """Resolve labels, build the :class:`IR` and attach it to the method."""
        if self._pending_labels:
            raise IRError(
                f"{self.method}: label(s) {', '.join(self._pending_labels)} "
                f"do not precede any statement",
                code=ErrorCodes.UNRESOLVED_LABEL,
            )
        for stmt, slot, name in self._fixups:
            target = self._resolve(name)
            if isinstance(slot, int) and isinstance(stmt, Switch):
                value, _ = stmt.case_targets[slot]
                stmt.case_targets[slot] = (value, target)
            else:
                setattr(stmt, slot, target)
        ir = IR(
            self.method,
            self.params,
            self._stmts,
            this=self.this,
            variables=list(self._vars.values()),
        )
        self.method.set_ir(ir)
        self._finished = True
        logger.debug("built %s with %d statements", self.method, len(ir))
        return ir
