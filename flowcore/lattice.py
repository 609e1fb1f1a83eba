"""
flowcore/lattice.py
===================

Lattices and dataflow facts.

Theory
------
Every analysis in this package combines facts at control-flow merge points
with a single operator, called **meet** throughout (the traditional name
in monotone-framework texts).  The order is oriented so that facts only
grow during a fixpoint computation:

* ``bottom`` is the fact that carries no information yet; it is the
  identity of ``meet``.
* ``meet`` is commutative, associative and idempotent, and it is the least
  upper bound of the order: ``a ⊑ b`` iff ``meet(a, b) == b``.
* ``top`` (where it exists) absorbs everything.

For constant propagation the value order is
``Undefined ⊑ Constant(i) ⊑ NotAConstant``; two distinct constants meet to
``NotAConstant``.  For live variables the fact is a set of variables and
meet is union.

Public API
----------
    Lattice           - abstract base for lattice definitions
    Value             - constant-propagation value (Undefined / Constant / NAC)
    ConstantLattice   - the flat lattice over ``Value``
    SetLattice        - powerset lattice over :class:`SetFact` (meet = union)
    MapLattice        - pointwise lattice over :class:`MapFact`
    SetFact           - mutable, insertion-ordered set fact
    MapFact           - mutable key → value mapping fact
    CPFact            - ``MapFact[Var, Value]`` where absent keys read as Undefined
"""

from __future__ import annotations

import abc
import enum
from typing import (
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
)

L = TypeVar("L")
E = TypeVar("E")
K = TypeVar("K")
V = TypeVar("V")


# ===========================================================================
# LATTICE — ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a dataflow lattice.

    A lattice must provide:

    - ``bottom()``   → the identity of ``meet``.
    - ``meet(a, b)`` → the combination of two facts (a fresh value).
    - ``leq(a, b)``  → ``True`` iff ``a ⊑ b``.

    Optionally:

    - ``top()``      → the absorbing element (may raise if unbounded).
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the identity of ``meet``."""
        ...

    def top(self) -> L:
        """Return the absorbing element."""
        raise NotImplementedError("top() not available for this lattice")

    @abc.abstractmethod
    def meet(self, a: L, b: L) -> L:
        """Return the combination of ``a`` and ``b``."""
        ...

    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``, i.e. ``meet(a, b) == b``."""
        return self.eq(self.meet(a, b), b)

    def eq(self, a: L, b: L) -> bool:
        return a == b

    def is_bottom(self, a: L) -> bool:
        return self.eq(a, self.bottom())

    def meet_all(self, values: Iterable[L]) -> L:
        """Meet a sequence of values (``bottom`` for an empty sequence)."""
        result = self.bottom()
        for v in values:
            result = self.meet(result, v)
        return result

    def copy_value(self, v: L) -> L:
        copy = getattr(v, "copy", None)
        return copy() if callable(copy) else v


# ===========================================================================
# CONSTANT-PROPAGATION VALUES
# ===========================================================================

class ValueKind(enum.Enum):
    UNDEF = "UNDEF"
    CONSTANT = "CONSTANT"
    NAC = "NAC"


class Value:
    """An abstract int value: ``Undefined``, ``Constant(i)`` or ``NotAConstant``.

    ``Undefined`` and ``NotAConstant`` are singletons; constants compare by
    their int.
    """

    __slots__ = ("kind", "_constant")

    def __init__(self, kind: ValueKind, constant: int = 0) -> None:
        self.kind = kind
        self._constant = constant

    @staticmethod
    def get_undef() -> "Value":
        return UNDEF

    @staticmethod
    def get_nac() -> "Value":
        return NAC

    @staticmethod
    def make_constant(value: int) -> "Value":
        return Value(ValueKind.CONSTANT, value)

    def is_undef(self) -> bool:
        return self.kind is ValueKind.UNDEF

    def is_constant(self) -> bool:
        return self.kind is ValueKind.CONSTANT

    def is_nac(self) -> bool:
        return self.kind is ValueKind.NAC

    def get_constant(self) -> int:
        if not self.is_constant():
            raise ValueError(f"{self} is not a constant")
        return self._constant

    def __eq__(self, other) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return self.kind is other.kind and self._constant == other._constant

    def __hash__(self) -> int:
        return hash((self.kind, self._constant))

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        if self.is_constant():
            return str(self._constant)
        return self.kind.value


UNDEF = Value(ValueKind.UNDEF)
NAC = Value(ValueKind.NAC)


class ConstantLattice(Lattice[Value]):
    """Flat lattice ``Undefined ⊑ Constant(i) ⊑ NotAConstant``."""

    def bottom(self) -> Value:
        return UNDEF

    def top(self) -> Value:
        return NAC

    def meet(self, a: Value, b: Value) -> Value:
        if a.is_nac() or b.is_nac():
            return NAC
        if a.is_undef():
            return b
        if b.is_undef():
            return a
        return a if a == b else NAC

    def leq(self, a: Value, b: Value) -> bool:
        return a.is_undef() or b.is_nac() or a == b


# ===========================================================================
# FACTS
# ===========================================================================

class SetFact(Generic[E]):
    """A mutable set fact that remembers insertion order.

    Elements are hashed as usual; IR variables hash by identity.  Equality
    ignores order.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[E] = ()) -> None:
        self._items: Dict[E, None] = dict.fromkeys(items)

    def contains(self, e: E) -> bool:
        return e in self._items

    def add(self, e: E) -> bool:
        """Add *e*; return whether the fact changed."""
        if e in self._items:
            return False
        self._items[e] = None
        return True

    def remove(self, e: E) -> bool:
        """Remove *e*; return whether the fact changed."""
        if e not in self._items:
            return False
        del self._items[e]
        return True

    def remove_all(self, items: Iterable[E]) -> bool:
        changed = False
        for e in items:
            changed |= self.remove(e)
        return changed

    def union(self, other: "SetFact[E]") -> bool:
        """Add every element of *other*; return whether the fact changed."""
        changed = False
        for e in other:
            changed |= self.add(e)
        return changed

    def union_with(self, other: "SetFact[E]") -> "SetFact[E]":
        """A new fact holding the elements of both."""
        result = self.copy()
        result.union(other)
        return result

    def intersect(self, other: "SetFact[E]") -> bool:
        drop = [e for e in self._items if e not in other._items]
        for e in drop:
            del self._items[e]
        return bool(drop)

    def set(self, other: "SetFact[E]") -> bool:
        """Replace the contents with those of *other*; return whether changed."""
        if self == other:
            return False
        self._items = dict(other._items)
        return True

    copy_from = set

    def clear(self) -> None:
        self._items.clear()

    def is_empty(self) -> bool:
        return not self._items

    def copy(self) -> "SetFact[E]":
        return SetFact(self._items)

    def to_list(self) -> List[E]:
        return list(self._items)

    def __contains__(self, e: object) -> bool:
        return e in self._items

    def __iter__(self) -> Iterator[E]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SetFact):
            return NotImplemented
        return self._items.keys() == other._items.keys()

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return "{" + ", ".join(str(e) for e in self._items) + "}"


class MapFact(Generic[K, V]):
    """A mutable mapping fact.  Absent keys read as ``None``."""

    __slots__ = ("_map",)

    def __init__(self, entries: Optional[Dict[K, V]] = None) -> None:
        self._map: Dict[K, V] = dict(entries) if entries else {}

    def get(self, key: K) -> Optional[V]:
        return self._map.get(key)

    def update(self, key: K, value: V) -> bool:
        """Bind *key* to *value*; return whether the fact changed."""
        if key in self._map and self._map[key] == value:
            return False
        self._map[key] = value
        return True

    def remove(self, key: K) -> Optional[V]:
        return self._map.pop(key, None)

    def copy_from(self, other: "MapFact[K, V]") -> bool:
        """Replace the contents with those of *other*; return whether changed."""
        if self == other:
            return False
        self._map = dict(other._map)
        return True

    def copy(self) -> "MapFact[K, V]":
        result = type(self).__new__(type(self))
        result._map = dict(self._map)
        return result

    def keys(self) -> List[K]:
        return list(self._map)

    def values(self) -> List[V]:
        return list(self._map.values())

    def items(self) -> List[Tuple[K, V]]:
        return list(self._map.items())

    def for_each(self, action: Callable[[K, V], None]) -> None:
        for k, v in list(self._map.items()):
            action(k, v)

    def clear(self) -> None:
        self._map.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._map

    def __len__(self) -> int:
        return len(self._map)

    def __eq__(self, other) -> bool:
        if not isinstance(other, MapFact):
            return NotImplemented
        return self._map == other._map

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return "{" + ", ".join(f"{k}={v}" for k, v in self._map.items()) + "}"


class CPFact(MapFact["Var", Value]):
    """Constant-propagation fact: variable → :class:`Value`.

    Absent variables are ``Undefined``, and binding a variable to
    ``Undefined`` removes it, so two facts are equal exactly when they
    agree on every variable.
    """

    __slots__ = ()

    def get(self, key) -> Value:
        return self._map.get(key, UNDEF)

    def update(self, key, value: Value) -> bool:
        if value.is_undef():
            return self.remove(key) is not None
        return super().update(key, value)


# ===========================================================================
# COMPOSITE LATTICES
# ===========================================================================

class SetLattice(Lattice[SetFact]):
    """Powerset lattice (meet = union, bottom = empty set)."""

    def bottom(self) -> SetFact:
        return SetFact()

    def meet(self, a: SetFact, b: SetFact) -> SetFact:
        return a.union_with(b)

    def leq(self, a: SetFact, b: SetFact) -> bool:
        return all(e in b for e in a)


class MapLattice(Lattice[MapFact]):
    """Pointwise lattice of maps ``key → value``.

    Absent keys stand for the value lattice's bottom; ``fact_type`` selects
    the fact class produced (:class:`CPFact` by default, which drops
    bottom bindings).
    """

    def __init__(self, value_lattice: Lattice = None, fact_type: type = CPFact) -> None:
        self.value_lattice = value_lattice if value_lattice is not None else ConstantLattice()
        self.fact_type = fact_type

    def _get(self, fact: MapFact, key):
        v = fact.get(key)
        return self.value_lattice.bottom() if v is None else v

    def bottom(self) -> MapFact:
        return self.fact_type()

    def meet(self, a: MapFact, b: MapFact) -> MapFact:
        result = a.copy()
        for k in b.keys():
            result.update(k, self.value_lattice.meet(self._get(a, k), self._get(b, k)))
        return result

    def leq(self, a: MapFact, b: MapFact) -> bool:
        return all(
            self.value_lattice.leq(self._get(a, k), self._get(b, k))
            for k in a.keys()
        )
