# tests/programs.py
"""
Small IR programs shared by the test suite.

Every builder returns fresh objects, so tests may mutate what they get.
Statement indices are noted next to each statement.
"""

from dataclasses import dataclass, field
from typing import Dict, Sequence

from flowcore.builder import MethodBuilder, declare_method
from flowcore.config import AnalysisContext
from flowcore.hierarchy import ClassHierarchy
from flowcore.ir import (
    IR,
    ArithmeticOp,
    CallKind,
    ConditionOp,
    FieldAccess,
    JClass,
    JMethod,
    MethodRef,
    NewExp,
    ClassType,
    PrimitiveType,
)

INT = PrimitiveType.INT


@dataclass
class Program:
    classes: Dict[str, JClass] = field(default_factory=dict)
    methods: Dict[str, JMethod] = field(default_factory=dict)
    main: JMethod = None

    @property
    def hierarchy(self) -> ClassHierarchy:
        return ClassHierarchy(self.classes.values())

    @property
    def context(self) -> AnalysisContext:
        return AnalysisContext(self.hierarchy, (self.main,))


# ---------------------------------------------------------------------------
# intraprocedural programs
# ---------------------------------------------------------------------------

def branch_on_constant() -> IR:
    """
    0: x = 1
    1: if (x == 1) goto 4
    2: a = 6
    3: goto 5
    4: a = 5
    5: invokestatic print(a)
    6: return
    """
    main = JClass("Main")
    printer = declare_method(main, "print", [INT], is_static=True)
    mb = MethodBuilder(main, "branch", is_static=True)
    mb.assign("x", 1)
    mb.if_(ConditionOp.EQ, "x", 1, "then")
    mb.assign("a", 6)
    mb.goto("join")
    mb.label("then")
    mb.assign("a", 5)
    mb.label("join")
    mb.invoke(CallKind.STATIC, printer, ["a"])
    mb.ret()
    return mb.finish()


def straight_line() -> IR:
    """
    static int f(int p)
    0: x = 1
    1: y = 2
    2: z = x + y
    3: w = x / 0
    4: q = p + x
    5: r = z * 2
    6: return r
    """
    mb = MethodBuilder(JClass("Main"), "f", [INT], is_static=True, param_names=["p"])
    mb.assign("x", 1)
    mb.assign("y", 2)
    mb.compute("z", ArithmeticOp.ADD, "x", "y")
    mb.compute("w", ArithmeticOp.DIV, "x", 0)
    mb.compute("q", ArithmeticOp.ADD, "p", "x")
    mb.compute("r", ArithmeticOp.MUL, "z", 2)
    mb.ret("r")
    return mb.finish()


def counting_loop() -> IR:
    """
    0: i = 0
    1: s = 0
    2: if (i >= 10) goto 6
    3: s = s + i
    4: i = i + 1
    5: goto 2
    6: return s
    """
    mb = MethodBuilder(JClass("Main"), "loop", is_static=True)
    mb.assign("i", 0)
    mb.assign("s", 0)
    mb.label("head")
    mb.if_(ConditionOp.GE, "i", 10, "end")
    mb.compute("s", ArithmeticOp.ADD, "s", "i")
    mb.compute("i", ArithmeticOp.ADD, "i", 1)
    mb.goto("head")
    mb.label("end")
    mb.ret("s")
    return mb.finish()


def merge_on_parameter() -> IR:
    """
    static int g(int p)
    0: if (p > 0) goto 4
    1: x = 1
    2: y = 7
    3: goto 6
    4: x = 2
    5: y = 7
    6: z = x + y
    7: return z
    """
    mb = MethodBuilder(JClass("Main"), "g", [INT], is_static=True, param_names=["p"])
    mb.if_(ConditionOp.GT, "p", 0, "pos")
    mb.assign("x", 1)
    mb.assign("y", 7)
    mb.goto("join")
    mb.label("pos")
    mb.assign("x", 2)
    mb.assign("y", 7)
    mb.label("join")
    mb.compute("z", ArithmeticOp.ADD, "x", "y")
    mb.ret("z")
    return mb.finish()


def dead_assignments() -> IR:
    """
    0: x = 1
    1: y = x + 2        (dead: y is never read)
    2: z = x / 2        (kept: division may fault)
    3: o = new Main     (kept: allocation)
    4: f = o.count      (kept: field load)
    5: x = 3            (dead: overwritten before use)
    6: x = 4
    7: return x
    """
    main = JClass("Main")
    mb = MethodBuilder(main, "d", is_static=True)
    mb.assign("x", 1)
    mb.compute("y", ArithmeticOp.ADD, "x", 2)
    mb.compute("z", ArithmeticOp.DIV, "x", 2)
    o = mb.var("o", ClassType("Main"))
    mb.assign(o, NewExp(ClassType("Main")))
    mb.assign("f", FieldAccess("count", INT, base=o))
    mb.assign("x", 3)
    mb.assign("x", 4)
    mb.ret("x")
    return mb.finish()


def constant_switch() -> IR:
    """
    0: k = 2
    1: switch (k) {1 -> 2, 2 -> 4, default -> 6}
    2: a = 1
    3: goto 7
    4: a = 2
    5: goto 7
    6: a = 3
    7: return a
    """
    mb = MethodBuilder(JClass("Main"), "sw", is_static=True)
    mb.assign("k", 2)
    mb.switch("k", {1: "c1", 2: "c2"}, "dflt")
    mb.label("c1")
    mb.assign("a", 1)
    mb.goto("end")
    mb.label("c2")
    mb.assign("a", 2)
    mb.goto("end")
    mb.label("dflt")
    mb.assign("a", 3)
    mb.label("end")
    mb.ret("a")
    return mb.finish()


def unmatched_switch() -> IR:
    """
    0: k = 9
    1: switch (k) {1 -> 2, 2 -> 4, default -> 6}
    2: a = 1
    3: goto 7
    4: a = 2
    5: goto 7
    6: a = 3
    7: return a
    """
    mb = MethodBuilder(JClass("Main"), "sw", is_static=True)
    mb.assign("k", 9)
    mb.switch("k", {1: "c1", 2: "c2"}, "dflt")
    mb.label("c1")
    mb.assign("a", 1)
    mb.goto("end")
    mb.label("c2")
    mb.assign("a", 2)
    mb.goto("end")
    mb.label("dflt")
    mb.assign("a", 3)
    mb.label("end")
    mb.ret("a")
    return mb.finish()


def liveness_sample() -> IR:
    """
    0: x = 1
    1: y = 2
    2: return x
    """
    mb = MethodBuilder(JClass("Main"), "live", is_static=True)
    mb.assign("x", 1)
    mb.assign("y", 2)
    mb.ret("x")
    return mb.finish()


# ---------------------------------------------------------------------------
# whole programs
# ---------------------------------------------------------------------------

def _body(cls: JClass, name: str, params: Sequence = (), ret_var: str = None,
          is_static: bool = False) -> JMethod:
    """A method returning a fresh constant (or its first parameter)."""
    mb = MethodBuilder(cls, name, list(params), is_static=is_static)
    if ret_var is None:
        mb.assign("r", 0)
        mb.ret("r")
    else:
        mb.ret(ret_var)
    mb.finish()
    return mb.method


def dispatch_program() -> Program:
    """Classes and interfaces exercising every call kind.

    ::

        interface I { int m(); }
        class A implements I { int m(); int n(); }
        class B extends A { int m(); }
        class C extends A { }
        class D extends B { }
        abstract class E implements I { abstract int m(); }
        class F extends E { int m(); }
        class G { int m(); }            // unrelated, never called

        class Main {
          static int main() {
            0: o = new A
            1: r1 = invokevirtual o.<A: m()>()
            2: r2 = invokeinterface o.<I: m()>()
            3: r3 = invokespecial o.<A: n()>()
            4: r4 = invokestatic <Main: helper(int)>(r1)
            5: r5 = invokevirtual o.<C: m()>()
            6: return r4
          }
          static int helper(int v) {   // self-recursive
            0: t = invokestatic <Main: helper(int)>(v)
            1: return t
          }
        }
    """
    p = Program()
    obj = JClass("Object")
    iface = JClass("I", is_interface=True)
    a = JClass("A", super_class=obj, interfaces=[iface])
    b = JClass("B", super_class=a)
    c = JClass("C", super_class=a)
    d = JClass("D", super_class=b)
    e = JClass("E", super_class=obj, interfaces=[iface], is_abstract=True)
    f = JClass("F", super_class=e)
    g = JClass("G", super_class=obj)
    main = JClass("Main", super_class=obj)
    for cls in (obj, iface, a, b, c, d, e, f, g, main):
        p.classes[cls.name] = cls

    p.methods["I.m"] = declare_method(iface, "m", is_abstract=True)
    p.methods["A.m"] = _body(a, "m")
    p.methods["A.n"] = _body(a, "n")
    p.methods["B.m"] = _body(b, "m")
    p.methods["E.m"] = declare_method(e, "m", is_abstract=True)
    p.methods["F.m"] = _body(f, "m")
    p.methods["G.m"] = _body(g, "m")

    hb = MethodBuilder(main, "helper", [INT], is_static=True, param_names=["v"])
    p.methods["Main.helper"] = hb.method
    hb.invoke(CallKind.STATIC, hb.method, ["v"], result="t")
    hb.ret("t")
    hb.finish()

    mb = MethodBuilder(main, "main", is_static=True)
    o = mb.var("o", ClassType("A"))
    mb.assign(o, NewExp(ClassType("A")))
    mb.invoke(CallKind.VIRTUAL, p.methods["A.m"], base=o, result="r1")
    mb.invoke(CallKind.INTERFACE, p.methods["I.m"], base=o, result="r2")
    mb.invoke(CallKind.SPECIAL, p.methods["A.n"], base=o, result="r3")
    mb.invoke(CallKind.STATIC, p.methods["Main.helper"], ["r1"], result="r4")
    c_m = p.methods["A.m"].subsignature
    mb.invoke(CallKind.VIRTUAL, MethodRef(c, c_m), base=o, result="r5")
    mb.ret("r4")
    mb.finish()
    p.main = p.methods["Main.main"] = mb.method
    return p


def interproc_program() -> Program:
    """Constants flowing through calls and returns.

    ::

        static int main() {
          0: a = 3
          1: c = 4
          2: b = invokestatic add(a, c)
          3: d = b + 1
          4: e = invokestatic id(a)
          5: f = invokestatic id(c)
          6: invokestatic add(a, c)
          7: return d
        }
        static int add(int x, int y) {
          0: r = x + y
          1: return r
        }
        static int id(int v) {
          0: return v
        }
    """
    p = Program()
    main = JClass("Main")
    p.classes["Main"] = main

    ab = MethodBuilder(main, "add", [INT, INT], is_static=True, param_names=["x", "y"])
    ab.compute("r", ArithmeticOp.ADD, "x", "y")
    ab.ret("r")
    ab.finish()
    p.methods["add"] = ab.method

    ib = MethodBuilder(main, "id", [INT], is_static=True, param_names=["v"])
    ib.ret("v")
    ib.finish()
    p.methods["id"] = ib.method

    mb = MethodBuilder(main, "main", is_static=True)
    mb.assign("a", 3)
    mb.assign("c", 4)
    mb.invoke(CallKind.STATIC, ab.method, ["a", "c"], result="b")
    mb.compute("d", ArithmeticOp.ADD, "b", 1)
    mb.invoke(CallKind.STATIC, ib.method, ["a"], result="e")
    mb.invoke(CallKind.STATIC, ib.method, ["c"], result="f")
    mb.invoke(CallKind.STATIC, ab.method, ["a", "c"])
    mb.ret("d")
    mb.finish()
    p.main = p.methods["main"] = mb.method
    return p


def two_returns_program() -> Program:
    """A callee with two return statements.

    ::

        static int main() {
          0: s = 1
          1: t = invokestatic pick(s)
          2: return t
        }
        static int pick(int q) {
          0: if (q > 0) goto 3
          1: u = 5
          2: return u
          3: w = 6
          4: return w
        }
    """
    p = Program()
    main = JClass("Main")
    p.classes["Main"] = main

    pb = MethodBuilder(main, "pick", [INT], is_static=True, param_names=["q"])
    pb.if_(ConditionOp.GT, "q", 0, "pos")
    pb.assign("u", 5)
    pb.ret("u")
    pb.label("pos")
    pb.assign("w", 6)
    pb.ret("w")
    pb.finish()
    p.methods["pick"] = pb.method

    mb = MethodBuilder(main, "main", is_static=True)
    mb.assign("s", 1)
    mb.invoke(CallKind.STATIC, pb.method, ["s"], result="t")
    mb.ret("t")
    mb.finish()
    p.main = p.methods["main"] = mb.method
    return p
