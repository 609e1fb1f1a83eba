"""
flowcore/ir.py
==============

The in-memory intermediate representation consumed by the analysis core.

The core never parses source or bytecode; a front end (or the
:mod:`flowcore.builder` helpers) produces objects of the classes below and
hands them in.  The IR is a three-address statement list per method, in
the style of a Java-like object language:

* **Types** — :class:`PrimitiveType` and :class:`ClassType`.
* **Expressions** — a closed set: :class:`Var`, :class:`IntLiteral`,
  :class:`BinaryExp` (arithmetic / shift / bitwise / condition operators),
  :class:`NewExp`, :class:`CastExp`, :class:`FieldAccess`,
  :class:`ArrayAccess` and :class:`InvokeExp`.
* **Statements** — :class:`AssignStmt`, :class:`Invoke`, :class:`If`,
  :class:`Goto`, :class:`Switch`, :class:`Return` and :class:`Nop`.
* **Program structure** — :class:`Subsignature`, :class:`MethodRef`,
  :class:`JMethod`, :class:`JClass` and the per-method :class:`IR`.

Expressions and statements compare by identity: two variables named ``x``
in different methods are different variables.

Public API
----------
    PrimitiveType, ClassType, Type
    Exp, Var, IntLiteral, BinaryExp, NewExp, CastExp, FieldAccess,
    ArrayAccess, InvokeExp
    ArithmeticOp, ShiftOp, BitwiseOp, ConditionOp, BinaryOp
    CallKind
    Stmt, AssignStmt, Invoke, If, Goto, Switch, Return, Nop
    Subsignature, MethodRef, JMethod, JClass, IR
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from flowcore.errors import ErrorCodes, IRError


# ===========================================================================
# TYPES
# ===========================================================================

class PrimitiveType(enum.Enum):
    """Primitive value types."""
    BYTE = "byte"
    SHORT = "short"
    INT = "int"
    CHAR = "char"
    BOOLEAN = "boolean"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"

    @property
    def can_hold_int(self) -> bool:
        """Values of this type fit in a 32-bit int."""
        return self in _INT_LIKE

    def __str__(self) -> str:
        return self.value


_INT_LIKE = frozenset({
    PrimitiveType.BYTE,
    PrimitiveType.SHORT,
    PrimitiveType.INT,
    PrimitiveType.CHAR,
    PrimitiveType.BOOLEAN,
})


@dataclass(frozen=True)
class ClassType:
    """A reference type named by its class."""
    name: str

    @property
    def can_hold_int(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.name


Type = Union[PrimitiveType, ClassType]


# ===========================================================================
# EXPRESSIONS
# ===========================================================================

class Exp:
    """Base class of all expressions."""

    def get_uses(self) -> List["Var"]:
        """Variables read when this expression is evaluated."""
        return []


class Var(Exp):
    """A local variable (parameters, ``this`` and temporaries included)."""

    __slots__ = ("name", "type")

    def __init__(self, name: str, type: Type) -> None:
        self.name = name
        self.type = type

    @property
    def can_hold_int(self) -> bool:
        return self.type.can_hold_int

    def get_uses(self) -> List[Var]:
        return [self]

    def __repr__(self) -> str:
        return f"Var({self.name})"

    def __str__(self) -> str:
        return self.name


class IntLiteral(Exp):
    """An ``int`` constant."""

    __slots__ = ("value",)

    def __init__(self, value: int) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"IntLiteral({self.value})"

    def __str__(self) -> str:
        return str(self.value)


class ArithmeticOp(enum.Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    REM = "%"


class ShiftOp(enum.Enum):
    SHL = "<<"
    SHR = ">>"
    USHR = ">>>"


class BitwiseOp(enum.Enum):
    OR = "|"
    AND = "&"
    XOR = "^"


class ConditionOp(enum.Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="


BinaryOp = Union[ArithmeticOp, ShiftOp, BitwiseOp, ConditionOp]

# Operand of a binary expression: a variable or an int literal.
Atom = Union[Var, IntLiteral]


class BinaryExp(Exp):
    """``operand1 op operand2``."""

    __slots__ = ("op", "operand1", "operand2")

    def __init__(self, op: BinaryOp, operand1: Atom, operand2: Atom) -> None:
        self.op = op
        self.operand1 = operand1
        self.operand2 = operand2

    def get_uses(self) -> List[Var]:
        return self.operand1.get_uses() + self.operand2.get_uses()

    def __repr__(self) -> str:
        return f"BinaryExp({self})"

    def __str__(self) -> str:
        return f"{self.operand1} {self.op.value} {self.operand2}"


class NewExp(Exp):
    """Object allocation."""

    __slots__ = ("type",)

    def __init__(self, type: ClassType) -> None:
        self.type = type

    def __str__(self) -> str:
        return f"new {self.type}"


class CastExp(Exp):
    """``(cast_type) value``."""

    __slots__ = ("value", "cast_type")

    def __init__(self, value: Var, cast_type: Type) -> None:
        self.value = value
        self.cast_type = cast_type

    def get_uses(self) -> List[Var]:
        return [self.value]

    def __str__(self) -> str:
        return f"({self.cast_type}) {self.value}"


class FieldAccess(Exp):
    """``base.field`` or, with no base, a static field ``Class.field``."""

    __slots__ = ("base", "owner", "field_name", "type")

    def __init__(
        self,
        field_name: str,
        type: Type,
        base: Optional[Var] = None,
        owner: Optional[str] = None,
    ) -> None:
        self.field_name = field_name
        self.type = type
        self.base = base
        self.owner = owner

    @property
    def is_static(self) -> bool:
        return self.base is None

    def get_uses(self) -> List[Var]:
        return [self.base] if self.base is not None else []

    def __str__(self) -> str:
        prefix = self.base if self.base is not None else self.owner
        return f"{prefix}.{self.field_name}"


class ArrayAccess(Exp):
    """``base[index]``."""

    __slots__ = ("base", "index")

    def __init__(self, base: Var, index: Atom) -> None:
        self.base = base
        self.index = index

    def get_uses(self) -> List[Var]:
        return [self.base] + self.index.get_uses()

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"


class CallKind(enum.Enum):
    """Syntactic kind of a call site."""
    VIRTUAL = "virtual"
    INTERFACE = "interface"
    SPECIAL = "special"
    STATIC = "static"


class InvokeExp(Exp):
    """A method invocation expression."""

    __slots__ = ("kind", "method_ref", "args", "base")

    def __init__(
        self,
        kind: CallKind,
        method_ref: "MethodRef",
        args: Sequence[Var] = (),
        base: Optional[Var] = None,
    ) -> None:
        self.kind = kind
        self.method_ref = method_ref
        self.args: Tuple[Var, ...] = tuple(args)
        self.base = base

    def get_uses(self) -> List[Var]:
        uses = [self.base] if self.base is not None else []
        return uses + list(self.args)

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.args)
        recv = f"{self.base}." if self.base is not None else ""
        return f"invoke{self.kind.value} {recv}{self.method_ref}({args})"


# ===========================================================================
# STATEMENTS
# ===========================================================================

class Stmt:
    """Base class of all statements.

    ``index`` is the position in the owning method's statement list
    (``-1`` until the statement is placed in an :class:`IR`) and
    ``method`` is the containing :class:`JMethod`.
    """

    def __init__(self) -> None:
        self.index: int = -1
        self.method: Optional[JMethod] = None
        self.line: Optional[int] = None

    def get_def(self) -> Optional[Exp]:
        """The l-value written by this statement, if any."""
        return None

    def get_uses(self) -> List[Var]:
        """Variables read by this statement."""
        return []

    def can_fall_through(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"{self.index}@{self}"


class AssignStmt(Stmt):
    """``lvalue = rvalue`` (copies, arithmetic, allocation, loads and stores).

    Calls are never assignments; they are :class:`Invoke` statements.
    """

    def __init__(self, lvalue: Exp, rvalue: Exp) -> None:
        super().__init__()
        if isinstance(rvalue, InvokeExp):
            raise IRError(
                f"call {rvalue} must be an Invoke statement, not an assignment",
                code=ErrorCodes.INVALID_STATEMENT,
            )
        self.lvalue = lvalue
        self.rvalue = rvalue

    def get_def(self) -> Optional[Exp]:
        return self.lvalue

    def get_uses(self) -> List[Var]:
        uses = self.rvalue.get_uses()
        if not isinstance(self.lvalue, Var):
            # base/index of a store are reads
            uses = self.lvalue.get_uses() + uses
        return uses

    def __str__(self) -> str:
        return f"{self.lvalue} = {self.rvalue};"


class Invoke(Stmt):
    """A call statement, optionally assigning the call's result."""

    def __init__(self, invoke_exp: InvokeExp, result: Optional[Var] = None) -> None:
        super().__init__()
        self.invoke_exp = invoke_exp
        self.result = result

    @property
    def kind(self) -> CallKind:
        return self.invoke_exp.kind

    @property
    def method_ref(self) -> "MethodRef":
        return self.invoke_exp.method_ref

    @property
    def is_static(self) -> bool:
        return self.kind is CallKind.STATIC

    @property
    def is_special(self) -> bool:
        return self.kind is CallKind.SPECIAL

    @property
    def is_virtual(self) -> bool:
        return self.kind is CallKind.VIRTUAL

    @property
    def is_interface(self) -> bool:
        return self.kind is CallKind.INTERFACE

    def get_def(self) -> Optional[Exp]:
        return self.result

    def get_uses(self) -> List[Var]:
        return self.invoke_exp.get_uses()

    def __str__(self) -> str:
        if self.result is not None:
            return f"{self.result} = {self.invoke_exp};"
        return f"{self.invoke_exp};"


class If(Stmt):
    """``if (condition) goto target``; otherwise falls through."""

    def __init__(self, condition: BinaryExp, target: Optional[Stmt] = None) -> None:
        super().__init__()
        self.condition = condition
        self.target = target

    def get_uses(self) -> List[Var]:
        return self.condition.get_uses()

    def __str__(self) -> str:
        dest = self.target.index if self.target is not None else "?"
        return f"if ({self.condition}) goto {dest};"


class Goto(Stmt):
    """Unconditional jump."""

    def __init__(self, target: Optional[Stmt] = None) -> None:
        super().__init__()
        self.target = target

    def can_fall_through(self) -> bool:
        return False

    def __str__(self) -> str:
        dest = self.target.index if self.target is not None else "?"
        return f"goto {dest};"


class Switch(Stmt):
    """``switch (var)`` with ``(case value, target)`` pairs and a default."""

    def __init__(
        self,
        var: Var,
        case_targets: Sequence[Tuple[int, Optional[Stmt]]] = (),
        default_target: Optional[Stmt] = None,
    ) -> None:
        super().__init__()
        self.var = var
        self.case_targets: List[Tuple[int, Optional[Stmt]]] = list(case_targets)
        self.default_target = default_target

    @property
    def case_values(self) -> List[int]:
        return [value for value, _ in self.case_targets]

    def get_uses(self) -> List[Var]:
        return [self.var]

    def can_fall_through(self) -> bool:
        return False

    def __str__(self) -> str:
        cases = ", ".join(
            f"{v}->{t.index if t is not None else '?'}"
            for v, t in self.case_targets
        )
        dflt = self.default_target.index if self.default_target is not None else "?"
        return f"switch ({self.var}) {{{cases}, default->{dflt}}};"


class Return(Stmt):
    """``return`` or ``return value``."""

    def __init__(self, value: Optional[Var] = None) -> None:
        super().__init__()
        self.value = value

    def get_uses(self) -> List[Var]:
        return [self.value] if self.value is not None else []

    def can_fall_through(self) -> bool:
        return False

    def __str__(self) -> str:
        if self.value is None:
            return "return;"
        return f"return {self.value};"


class Nop(Stmt):
    """No operation.  Also used for the synthetic CFG entry / exit nodes."""

    def __init__(self, tag: str = "nop") -> None:
        super().__init__()
        self.tag = tag

    def __str__(self) -> str:
        return f"{self.tag};"


# ===========================================================================
# PROGRAM STRUCTURE
# ===========================================================================

@dataclass(frozen=True)
class Subsignature:
    """Method name plus parameter and return types, e.g. ``int foo(int,int)``."""
    name: str
    parameter_types: Tuple[Type, ...] = ()
    return_type: Type = PrimitiveType.INT

    @property
    def parameter_count(self) -> int:
        return len(self.parameter_types)

    def __str__(self) -> str:
        params = ",".join(str(t) for t in self.parameter_types)
        return f"{self.return_type} {self.name}({params})"


class JClass:
    """A class or interface.

    Attributes
    ----------
    name : str
    super_class : JClass or None
        ``None`` for the hierarchy root and for interfaces.
    interfaces : list[JClass]
        Directly implemented (for classes) or extended (for interfaces)
        interfaces.
    is_interface, is_abstract : bool
    """

    def __init__(
        self,
        name: str,
        super_class: Optional[JClass] = None,
        interfaces: Sequence[JClass] = (),
        is_interface: bool = False,
        is_abstract: bool = False,
    ) -> None:
        self.name = name
        self.super_class = super_class
        self.interfaces: List[JClass] = list(interfaces)
        self.is_interface = is_interface
        self.is_abstract = is_abstract or is_interface
        self._methods: Dict[Subsignature, JMethod] = {}

    def add_method(self, method: JMethod) -> JMethod:
        if method.subsignature in self._methods:
            raise IRError(
                f"{self.name} already declares {method.subsignature}",
                code=ErrorCodes.DUPLICATE_METHOD,
            )
        self._methods[method.subsignature] = method
        return method

    def get_declared_method(self, subsignature: Subsignature) -> Optional[JMethod]:
        return self._methods.get(subsignature)

    @property
    def declared_methods(self) -> List[JMethod]:
        return list(self._methods.values())

    def __repr__(self) -> str:
        kind = "interface" if self.is_interface else "class"
        return f"JClass({kind} {self.name})"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class MethodRef:
    """A symbolic method reference as it appears at a call site."""
    declaring_class: JClass
    subsignature: Subsignature

    def __str__(self) -> str:
        return f"<{self.declaring_class.name}: {self.subsignature}>"


class JMethod:
    """A declared method.  Non-abstract methods carry an :class:`IR`."""

    def __init__(
        self,
        declaring_class: JClass,
        subsignature: Subsignature,
        is_static: bool = False,
        is_abstract: bool = False,
    ) -> None:
        self.declaring_class = declaring_class
        self.subsignature = subsignature
        self.is_static = is_static
        self.is_abstract = is_abstract
        self._ir: Optional[IR] = None

    @property
    def name(self) -> str:
        return self.subsignature.name

    @property
    def parameter_count(self) -> int:
        return self.subsignature.parameter_count

    @property
    def ref(self) -> MethodRef:
        return MethodRef(self.declaring_class, self.subsignature)

    @property
    def ir(self) -> IR:
        if self._ir is None:
            raise IRError(f"{self} has no body", code=ErrorCodes.MISSING_BODY)
        return self._ir

    @property
    def has_ir(self) -> bool:
        return self._ir is not None

    def set_ir(self, ir: IR) -> None:
        self._ir = ir

    def __repr__(self) -> str:
        return f"JMethod({self})"

    def __str__(self) -> str:
        return f"<{self.declaring_class.name}: {self.subsignature}>"


class IR:
    """The body of one method.

    Statements are indexed in program order and tagged with their
    containing method on construction.  The IR also carries a small
    result store that analyses use to publish per-method results under
    their analysis id (``ir.get_result("constprop")``).
    """

    def __init__(
        self,
        method: JMethod,
        params: Sequence[Var],
        stmts: Sequence[Stmt],
        this: Optional[Var] = None,
        variables: Sequence[Var] = (),
    ) -> None:
        self.method = method
        self.this = this
        self.params: List[Var] = list(params)
        self.stmts: List[Stmt] = list(stmts)
        for i, stmt in enumerate(self.stmts):
            stmt.index = i
            stmt.method = method
        seen: Dict[int, Var] = {}
        for v in list(variables) + self.params + ([this] if this else []):
            seen.setdefault(id(v), v)
        for stmt in self.stmts:
            d = stmt.get_def()
            for v in ([d] if isinstance(d, Var) else []) + stmt.get_uses():
                seen.setdefault(id(v), v)
        self.vars: List[Var] = list(seen.values())
        self._results: Dict[str, Any] = {}

    @property
    def return_vars(self) -> List[Var]:
        """Variables returned by the method's ``return`` statements."""
        result: List[Var] = []
        for stmt in self.stmts:
            if isinstance(stmt, Return) and stmt.value is not None:
                if all(v is not stmt.value for v in result):
                    result.append(stmt.value)
        return result

    def invokes(self) -> Iterator[Invoke]:
        for stmt in self.stmts:
            if isinstance(stmt, Invoke):
                yield stmt

    # ----- result store -------------------------------------------------------

    def store_result(self, analysis_id: str, result: Any) -> None:
        self._results[analysis_id] = result

    def get_result(self, analysis_id: str) -> Any:
        return self._results.get(analysis_id)

    def has_result(self, analysis_id: str) -> bool:
        return analysis_id in self._results

    def clear_result(self, analysis_id: str) -> None:
        self._results.pop(analysis_id, None)

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self.stmts)

    def __len__(self) -> int:
        return len(self.stmts)

    def __repr__(self) -> str:
        return f"IR({self.method}, stmts={len(self.stmts)})"
