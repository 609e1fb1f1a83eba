"""
flowcore/hierarchy.py
=====================

The class hierarchy oracle consulted by call graph construction.

:class:`ClassHierarchyOracle` names exactly the queries the CHA builder
makes; :class:`ClassHierarchy` is an in-memory implementation that
indexes direct subclasses, direct sub-interfaces and direct implementors
of every class it is given.

The hierarchy is immutable once built: pass every class to the
constructor (or use :meth:`ClassHierarchy.from_classes`).
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Protocol

from flowcore.ir import JClass, JMethod, MethodRef

logger = logging.getLogger(__name__)


class ClassHierarchyOracle(Protocol):
    """Queries over the class hierarchy used by call graph construction."""

    def get_direct_subclasses_of(self, cls: JClass) -> List[JClass]:
        ...

    def get_direct_subinterfaces_of(self, iface: JClass) -> List[JClass]:
        ...

    def get_direct_implementors_of(self, iface: JClass) -> List[JClass]:
        ...


class ClassHierarchy:
    """In-memory class hierarchy.

    Parameters
    ----------
    classes : iterable of JClass
        Every class and interface of the program.  Super classes and
        super interfaces referenced by these classes are added implicitly.
    """

    def __init__(self, classes: Iterable[JClass] = ()) -> None:
        self._classes: Dict[str, JClass] = {}
        self._subclasses: Dict[int, List[JClass]] = {}
        self._subinterfaces: Dict[int, List[JClass]] = {}
        self._implementors: Dict[int, List[JClass]] = {}
        pending = list(classes)
        while pending:
            cls = pending.pop(0)
            if self._classes.get(cls.name) is cls:
                continue
            self._classes[cls.name] = cls
            if cls.super_class is not None:
                self._subclasses.setdefault(id(cls.super_class), []).append(cls)
                pending.append(cls.super_class)
            for iface in cls.interfaces:
                if cls.is_interface:
                    self._subinterfaces.setdefault(id(iface), []).append(cls)
                else:
                    self._implementors.setdefault(id(iface), []).append(cls)
                pending.append(iface)
        logger.debug("class hierarchy: %d classes", len(self._classes))

    @classmethod
    def from_classes(cls, *classes: JClass) -> "ClassHierarchy":
        return cls(classes)

    # ----- oracle queries -----------------------------------------------------

    def get_direct_subclasses_of(self, cls: JClass) -> List[JClass]:
        return list(self._subclasses.get(id(cls), ()))

    def get_direct_subinterfaces_of(self, iface: JClass) -> List[JClass]:
        return list(self._subinterfaces.get(id(iface), ()))

    def get_direct_implementors_of(self, iface: JClass) -> List[JClass]:
        return list(self._implementors.get(id(iface), ()))

    # ----- lookups ------------------------------------------------------------

    def get_class(self, name: str) -> Optional[JClass]:
        return self._classes.get(name)

    def resolve_method(self, ref: MethodRef) -> Optional[JMethod]:
        """The method *ref* names, looked up from its class upwards."""
        cls: Optional[JClass] = ref.declaring_class
        while cls is not None:
            m = cls.get_declared_method(ref.subsignature)
            if m is not None:
                return m
            cls = cls.super_class
        return None

    def is_subclass(self, sup: JClass, sub: JClass) -> bool:
        """``sub`` equals ``sup`` or inherits from it (classes or interfaces)."""
        seen = set()
        pending = [sub]
        while pending:
            c = pending.pop()
            if c is sup:
                return True
            if id(c) in seen:
                continue
            seen.add(id(c))
            if c.super_class is not None:
                pending.append(c.super_class)
            pending.extend(c.interfaces)
        return False

    def all_classes(self) -> List[JClass]:
        return list(self._classes.values())

    def __iter__(self) -> Iterator[JClass]:
        return iter(self._classes.values())

    def __len__(self) -> int:
        return len(self._classes)

    def __contains__(self, cls: object) -> bool:
        return isinstance(cls, JClass) and self._classes.get(cls.name) is cls

    def __repr__(self) -> str:
        return f"ClassHierarchy(classes={len(self._classes)})"
