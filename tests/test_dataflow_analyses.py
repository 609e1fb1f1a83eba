# tests/test_dataflow_analyses.py
"""
Tests for live variables, constant propagation and dead code detection.
"""

from flowcore.builder import MethodBuilder, declare_method
from flowcore.ctrlflow_graph import cfg_of
from flowcore.dataflow_analyses import (
    ConstantPropagation,
    DeadCodeDetection,
    LiveVariableAnalysis,
    evaluate,
    has_no_side_effect,
    to_int32,
)
from flowcore.ir import (
    ArithmeticOp,
    BinaryExp,
    BitwiseOp,
    CallKind,
    ClassType,
    ConditionOp,
    If,
    IntLiteral,
    InvokeExp,
    JClass,
    NewExp,
    PrimitiveType,
    ShiftOp,
    Var,
)
from flowcore.lattice import NAC, UNDEF, CPFact, Value
from tests import programs
from tests.conftest import indices, var_named


def _c(i):
    return Value.make_constant(i)


def _names(fact):
    return sorted(v.name for v in fact)


class TestLiveVariables:

    def test_simple_sequence(self):
        ir = programs.liveness_sample()
        result = LiveVariableAnalysis().analyze(ir)
        s = ir.stmts
        assert _names(result.get_out_fact(s[0])) == ["x"]
        assert _names(result.get_out_fact(s[1])) == ["x"]
        assert _names(result.get_in_fact(s[2])) == ["x"]
        assert _names(result.get_in_fact(s[0])) == []

    def test_loop(self, loop_ir):
        result = LiveVariableAnalysis().analyze(loop_ir)
        head = loop_ir.stmts[2]
        assert _names(result.get_in_fact(head)) == ["i", "s"]
        assert _names(result.get_out_fact(loop_ir.stmts[0])) == ["i"]

    def test_parameter_live_on_entry(self, straight_ir):
        cfg = cfg_of(straight_ir)
        result = LiveVariableAnalysis().analyze(straight_ir)
        assert _names(result.get_out_fact(cfg.get_entry())) == ["p"]

    def test_call_arguments_are_uses(self, branch_ir):
        result = LiveVariableAnalysis().analyze(branch_ir)
        assert _names(result.get_in_fact(branch_ir.stmts[5])) == ["a"]


class TestEvaluate:

    def _fact(self, **values):
        vars_ = {n: Var(n, PrimitiveType.INT) for n in values}
        return vars_, CPFact({vars_[n]: v for n, v in values.items()})

    def _eval(self, op, a, b):
        return evaluate(BinaryExp(op, IntLiteral(a), IntLiteral(b)), CPFact())

    def test_arithmetic(self):
        assert self._eval(ArithmeticOp.ADD, 2, 3) == _c(5)
        assert self._eval(ArithmeticOp.SUB, 2, 3) == _c(-1)
        assert self._eval(ArithmeticOp.MUL, -4, 3) == _c(-12)

    def test_int32_overflow_wraps(self):
        assert self._eval(ArithmeticOp.ADD, 2147483647, 1) == _c(-2147483648)
        assert self._eval(ArithmeticOp.MUL, 65536, 65536) == _c(0)
        assert to_int32(2 ** 32 + 5) == 5

    def test_division_truncates_toward_zero(self):
        assert self._eval(ArithmeticOp.DIV, -7, 2) == _c(-3)
        assert self._eval(ArithmeticOp.DIV, 7, -2) == _c(-3)
        assert self._eval(ArithmeticOp.REM, -7, 2) == _c(-1)
        assert self._eval(ArithmeticOp.REM, 7, -2) == _c(1)
        assert self._eval(ArithmeticOp.DIV, -2147483648, -1) == _c(-2147483648)

    def test_division_by_zero_is_undefined(self):
        assert self._eval(ArithmeticOp.DIV, 1, 0) is UNDEF
        assert self._eval(ArithmeticOp.REM, 1, 0) is UNDEF
        vars_, fact = self._fact(n=NAC)
        exp = BinaryExp(ArithmeticOp.DIV, vars_["n"], IntLiteral(0))
        assert evaluate(exp, fact) is UNDEF

    def test_shifts(self):
        assert self._eval(ShiftOp.SHL, 1, 33) == _c(2)
        assert self._eval(ShiftOp.SHR, -8, 1) == _c(-4)
        assert self._eval(ShiftOp.USHR, -1, 28) == _c(15)
        assert self._eval(ShiftOp.SHL, 1, 31) == _c(-2147483648)

    def test_bitwise(self):
        assert self._eval(BitwiseOp.AND, 12, 10) == _c(8)
        assert self._eval(BitwiseOp.OR, 12, 10) == _c(14)
        assert self._eval(BitwiseOp.XOR, 12, 10) == _c(6)

    def test_conditions(self):
        assert self._eval(ConditionOp.EQ, 1, 1) == _c(1)
        assert self._eval(ConditionOp.NE, 1, 1) == _c(0)
        assert self._eval(ConditionOp.LT, 1, 2) == _c(1)
        assert self._eval(ConditionOp.GE, 1, 2) == _c(0)

    def test_nac_and_undef_operands(self):
        vars_, fact = self._fact(n=NAC, c=_c(1))
        u = Var("u", PrimitiveType.INT)
        add = ArithmeticOp.ADD
        assert evaluate(BinaryExp(add, vars_["n"], vars_["c"]), fact) is NAC
        assert evaluate(BinaryExp(add, u, vars_["c"]), fact) is UNDEF
        assert evaluate(BinaryExp(add, u, vars_["n"]), fact) is NAC

    def test_other_expressions_are_nac(self):
        assert evaluate(NewExp(ClassType("Main")), CPFact()) is NAC


class TestConstantPropagation:

    def test_straight_line(self, straight_ir):
        result = ConstantPropagation().analyze(straight_ir)
        s = straight_ir.stmts

        def v(name):
            return var_named(straight_ir, name)

        assert result.get_out_fact(s[2]).get(v("z")) == _c(3)
        assert result.get_out_fact(s[3]).get(v("w")) is UNDEF
        assert result.get_out_fact(s[4]).get(v("q")) is NAC
        assert result.get_out_fact(s[5]).get(v("r")) == _c(6)
        assert result.get_in_fact(s[0]).get(v("p")) is NAC

    def test_merge(self):
        ir = programs.merge_on_parameter()
        result = ConstantPropagation().analyze(ir)
        join = ir.stmts[6]
        fact = result.get_in_fact(join)
        assert fact.get(var_named(ir, "x")) is NAC
        assert fact.get(var_named(ir, "y")) == _c(7)
        assert result.get_out_fact(join).get(var_named(ir, "z")) is NAC

    def test_loop_variables_are_nac(self, loop_ir):
        result = ConstantPropagation().analyze(loop_ir)
        end = loop_ir.stmts[6]
        assert result.get_in_fact(end).get(var_named(loop_ir, "i")) is NAC
        assert result.get_in_fact(end).get(var_named(loop_ir, "s")) is NAC

    def test_only_int_holding_variables_are_tracked(self):
        mb = MethodBuilder(JClass("Main"), "f", [PrimitiveType.LONG, PrimitiveType.CHAR],
                           is_static=True, param_names=["l", "ch"])
        big = mb.var("big", PrimitiveType.LONG)
        mb.assign(big, 1)
        mb.assign("flag", 1)
        mb.ret("flag")
        ir = mb.finish()
        cfg = cfg_of(ir)
        result = ConstantPropagation().analyze(ir)
        boundary = result.get_out_fact(cfg.get_entry())
        assert var_named(ir, "l") not in boundary
        assert boundary.get(var_named(ir, "ch")) is NAC
        assert big not in result.get_out_fact(ir.stmts[0])
        assert result.get_out_fact(ir.stmts[1]).get(var_named(ir, "flag")) == _c(1)

    def test_call_result_is_nac(self, dispatch_program):
        ir = dispatch_program.main.ir
        result = ConstantPropagation().analyze(ir)
        r1 = var_named(ir, "r1")
        assert result.get_out_fact(ir.stmts[1]).get(r1) is NAC

    def test_meet_into_is_pointwise(self):
        x, y = Var("x", PrimitiveType.INT), Var("y", PrimitiveType.INT)
        target = CPFact({x: _c(1)})
        ConstantPropagation().meet_into(CPFact({x: _c(2), y: _c(5)}), target)
        assert target.get(x) is NAC
        assert target.get(y) == _c(5)


class TestDeadCode:

    def test_constant_condition(self, branch_ir):
        dead = DeadCodeDetection().analyze(branch_ir)
        assert indices(dead) == [2, 3]

    def test_dead_assignments(self):
        ir = programs.dead_assignments()
        assert indices(DeadCodeDetection().analyze(ir)) == [1, 5]

    def test_unused_assignment(self):
        ir = programs.liveness_sample()
        assert indices(DeadCodeDetection().analyze(ir)) == [1]

    def test_constant_switch(self):
        ir = programs.constant_switch()
        assert indices(DeadCodeDetection().analyze(ir)) == [2, 3, 6]

    def test_switch_falls_back_to_default(self):
        ir = programs.unmatched_switch()
        assert indices(DeadCodeDetection().analyze(ir)) == [2, 3, 4, 5]

    def test_unknown_condition_keeps_both_branches(self):
        ir = programs.merge_on_parameter()
        assert DeadCodeDetection().analyze(ir) == []

    def test_loop_has_no_dead_code(self, loop_ir):
        assert DeadCodeDetection().analyze(loop_ir) == []

    def test_non_boolean_condition_keeps_both_branches(self):
        mb = MethodBuilder(JClass("Main"), "f", is_static=True)
        mb.assign("x", 1)
        jump = mb.add(If(BinaryExp(ArithmeticOp.ADD, IntLiteral(1), IntLiteral(1))))
        mb.ret("x")
        jump.target = mb.ret("x")
        ir = mb.finish()
        assert DeadCodeDetection().analyze(ir) == []

    def test_code_after_return(self):
        mb = MethodBuilder(JClass("Main"), "f", is_static=True)
        mb.assign("x", 1)
        mb.ret("x")
        mb.assign("x", 2)
        mb.ret("x")
        ir = mb.finish()
        assert indices(DeadCodeDetection().analyze(ir)) == [2, 3]

    def test_calls_are_never_dead_assignments(self, dispatch_program):
        ir = dispatch_program.main.ir
        dead = DeadCodeDetection().analyze(ir)
        assert dead == []

    def test_reuses_published_results(self, branch_ir):
        cp = ConstantPropagation().analyze(branch_ir)
        branch_ir.store_result(ConstantPropagation.ID, cp)
        DeadCodeDetection().analyze(branch_ir)
        assert branch_ir.get_result(ConstantPropagation.ID) is cp
        assert branch_ir.has_result(LiveVariableAnalysis.ID)

    def test_side_effects(self):
        o = Var("o", ClassType("Main"))
        assert not has_no_side_effect(NewExp(ClassType("Main")))
        assert not has_no_side_effect(BinaryExp(ArithmeticOp.DIV, IntLiteral(1), IntLiteral(2)))
        assert not has_no_side_effect(BinaryExp(ArithmeticOp.REM, IntLiteral(1), IntLiteral(2)))
        assert has_no_side_effect(BinaryExp(ArithmeticOp.ADD, IntLiteral(1), IntLiteral(2)))
        assert has_no_side_effect(o)
        callee = declare_method(JClass("Main"), "g", is_static=True)
        assert not has_no_side_effect(InvokeExp(CallKind.STATIC, callee.ref))
