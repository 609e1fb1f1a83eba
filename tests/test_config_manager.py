# tests/test_config_manager.py
"""
Tests for analysis plans, the analysis manager, logging setup and errors.
"""

import io
import json
import logging

import pytest

from flowcore.analysis import MethodAnalysis
from flowcore.callgraph import CallGraph
from flowcore.config import (
    AnalysisConfig,
    AnalysisContext,
    AnalysisPlan,
    configure_logging,
)
from flowcore.dataflow_engine import DataflowResult
from flowcore.errors import (
    ConfigError,
    ConvergenceError,
    ErrorCodes,
    FlowcoreError,
    UnknownAnalysisError,
)
from flowcore.hierarchy import ClassHierarchy
from flowcore.manager import (
    AnalysisManager,
    get_analysis_class,
    register_analysis,
    registered_analyses,
    run_plan,
)
from tests import programs


class TestAnalysisConfig:

    def test_defaults(self):
        config = AnalysisConfig("constprop")
        assert config.strategy == "worklist"
        assert config.max_iterations is None
        assert config.get("missing", 42) == 42

    def test_options_are_read_only(self):
        config = AnalysisConfig("constprop", {"strategy": "iterative"})
        with pytest.raises(TypeError):
            config.options["strategy"] = "worklist"

    def test_hashable(self):
        a = AnalysisConfig("constprop", {"strategy": "iterative"})
        b = AnalysisConfig("constprop", {"strategy": "iterative"})
        assert hash(a) == hash(b)
        assert len({a, b, AnalysisConfig("livevar")}) == 2

    @pytest.mark.parametrize("options", [
        {"strategy": "magic"},
        {"max_iterations": 0},
        {"max_iterations": -3},
        {"max_iterations": "10"},
        {"max_iterations": True},
    ])
    def test_invalid_options(self, options):
        with pytest.raises(ConfigError) as exc:
            AnalysisConfig("constprop", options)
        assert exc.value.code is ErrorCodes.INVALID_OPTION

    def test_empty_id(self):
        with pytest.raises(ConfigError):
            AnalysisConfig("")

    def test_from_dict(self):
        assert AnalysisConfig.from_dict("livevar") == AnalysisConfig("livevar")
        config = AnalysisConfig.from_dict({"id": "livevar", "options": {"max_iterations": 9}})
        assert config.max_iterations == 9
        assert config.to_dict() == {"id": "livevar", "options": {"max_iterations": 9}}

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigError):
            AnalysisConfig.from_dict({"id": "livevar", "opts": {}})
        with pytest.raises(ConfigError):
            AnalysisConfig.from_dict({"options": {}})


class TestAnalysisPlan:

    def test_of(self):
        plan = AnalysisPlan.of("cfg", {"id": "constprop", "options": {"strategy": "iterative"}})
        assert plan.ids == ["cfg", "constprop"]
        assert plan.get("constprop").strategy == "iterative"
        assert plan.get("deadcode") is None
        assert len(plan) == 2

    def test_duplicates_rejected(self):
        with pytest.raises(ConfigError):
            AnalysisPlan.of("livevar", "livevar")

    def test_from_json(self, tmp_path):
        path = tmp_path / "plan.json"
        data = {"analyses": ["livevar", {"id": "deadcode", "options": {}}]}
        path.write_text(json.dumps(data), encoding="utf-8")
        plan = AnalysisPlan.from_json(path)
        assert plan.ids == ["livevar", "deadcode"]
        assert AnalysisPlan.from_dict(plan.to_dict()).ids == plan.ids

    def test_from_json_invalid(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError) as exc:
            AnalysisPlan.from_json(path)
        assert exc.value.cause is not None

    def test_from_json_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            AnalysisPlan.from_json(tmp_path / "absent.json")

    def test_from_dict_needs_list(self):
        with pytest.raises(ConfigError):
            AnalysisPlan.from_dict({"analyses": "livevar"})
        with pytest.raises(ConfigError):
            AnalysisPlan.from_dict({})


class TestAnalysisContext:

    def test_main_method(self, dispatch_program):
        context = dispatch_program.context
        assert context.main_method is dispatch_program.main

    def test_missing_entry(self):
        context = AnalysisContext(ClassHierarchy(), ())
        with pytest.raises(ConfigError) as exc:
            context.main_method
        assert exc.value.code is ErrorCodes.MISSING_CONTEXT


class TestRegistry:

    def test_builtin_analyses(self):
        assert set(registered_analyses()) >= {
            "cfg", "livevar", "constprop", "deadcode", "cha", "inter-constprop",
        }

    def test_unknown_analysis(self):
        with pytest.raises(UnknownAnalysisError) as exc:
            get_analysis_class("pointer-analysis")
        assert exc.value.analysis_id == "pointer-analysis"
        assert exc.value.code is ErrorCodes.UNKNOWN_ANALYSIS

    def test_class_without_id(self):

        class Anonymous(MethodAnalysis):
            def analyze(self, ir):
                return None

        with pytest.raises(ConfigError):
            register_analysis(Anonymous)


class TestAnalysisManager:

    def test_prerequisites_first(self):
        order = AnalysisManager().resolve_order(AnalysisPlan.of("deadcode"))
        assert [c.id for c in order] == ["cfg", "constprop", "livevar", "deadcode"]

    def test_plan_options_are_kept(self):
        plan = AnalysisPlan.of("deadcode", {"id": "constprop", "options": {"strategy": "iterative"}})
        order = AnalysisManager().resolve_order(plan)
        assert [c.id for c in order] == ["cfg", "constprop", "livevar", "deadcode"]
        assert order[1].strategy == "iterative"

    def test_cyclic_requirements(self):

        @register_analysis
        class Chicken(MethodAnalysis):
            ID = "test-chicken"
            requires = ("test-egg",)

            def analyze(self, ir):
                return None

        @register_analysis
        class Egg(MethodAnalysis):
            ID = "test-egg"
            requires = ("test-chicken",)

            def analyze(self, ir):
                return None

        with pytest.raises(ConfigError) as exc:
            AnalysisManager().resolve_order(AnalysisPlan.of("test-chicken"))
        assert exc.value.code is ErrorCodes.CYCLIC_REQUIREMENT

    def test_method_analyses_store_results(self):
        ir = programs.branch_on_constant()
        manager = run_plan(AnalysisPlan.of("deadcode"), methods=[ir.method])
        assert [s.index for s in manager.get_result("deadcode", ir)] == [2, 3]
        assert isinstance(ir.get_result("constprop"), DataflowResult)
        assert isinstance(manager.get_result("livevar", ir), DataflowResult)

    def test_method_result_needs_ir(self):
        manager = AnalysisManager(methods=[])
        with pytest.raises(ConfigError):
            manager.get_result("constprop")

    def test_program_analyses(self, interproc_program):
        p = interproc_program
        manager = run_plan(AnalysisPlan.of("inter-constprop"), context=p.context)
        assert manager.has_result("cha")
        assert isinstance(manager.get_result("cha"), CallGraph)
        result = manager.get_result("inter-constprop")
        assert isinstance(result, DataflowResult)
        assert manager.get_result("inter-constprop").iterations > 0
        assert [m.name for m in manager.methods()] == ["main", "add", "id"]

    def test_methods_follow_call_graph(self, interproc_program):
        p = interproc_program
        manager = run_plan(AnalysisPlan.of("cha", "constprop"), context=p.context)
        assert len(manager.irs()) == 3
        assert all(ir.has_result("constprop") for ir in manager.irs())

    def test_methods_default_to_entry_methods(self, interproc_program):
        p = interproc_program
        manager = AnalysisManager(context=p.context)
        assert manager.methods() == [p.main]

    def test_program_analysis_needs_context(self):
        with pytest.raises(ConfigError) as exc:
            AnalysisManager().run(AnalysisPlan.of("cha"))
        assert exc.value.code is ErrorCodes.MISSING_CONTEXT

    def test_unknown_analysis_in_plan(self):
        with pytest.raises(UnknownAnalysisError):
            run_plan(AnalysisPlan.of("taint"))

    def test_iteration_guard_in_plan(self):
        ir = programs.counting_loop()
        plan = AnalysisPlan.of({"id": "constprop", "options": {"max_iterations": 2}})
        with pytest.raises(ConvergenceError):
            run_plan(plan, methods=[ir.method])


class TestLogging:

    def test_configure_logging(self, flowcore_logger):
        stream = io.StringIO()
        handler = configure_logging(verbosity=2, stream=stream)
        assert handler in flowcore_logger.handlers
        assert flowcore_logger.level == logging.DEBUG
        run_plan(AnalysisPlan.of("deadcode"), methods=[programs.branch_on_constant().method])
        output = stream.getvalue()
        assert "flowcore.manager: running deadcode" in output
        assert "[DEBUG]" in output

    def test_default_level(self, flowcore_logger):
        configure_logging(stream=io.StringIO())
        assert flowcore_logger.level == logging.WARNING

    def test_info_level(self, flowcore_logger):
        configure_logging(verbosity=1, stream=io.StringIO())
        assert flowcore_logger.level == logging.INFO


class TestErrors:

    def test_code_and_message(self):
        err = ConvergenceError("constprop", 10)
        assert isinstance(err, FlowcoreError)
        assert str(err).startswith("[FLOW-4000] ")
        assert "constprop" in str(err)

    def test_to_dict(self):
        err = ConfigError("bad plan")
        assert err.to_dict() == {
            "code": "FLOW-1000",
            "phase": "config",
            "title": "invalid option",
            "message": "bad plan",
        }
