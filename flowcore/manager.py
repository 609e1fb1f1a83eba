"""
flowcore/manager.py
===================

Analysis registry and plan execution.

Every analysis class is registered under its ``ID``.  An
:class:`AnalysisManager` runs an :class:`~flowcore.config.AnalysisPlan`:
it adds missing prerequisites (``requires``), orders the analyses so that
prerequisites run first, then runs method analyses on every method body
in scope and program analyses once.

Method results are stored on each IR (``ir.get_result("constprop")``);
program results are kept by the manager (``manager.get_result("cha")``).

Methods in scope are, in order of preference: the methods passed to the
manager, the reachable methods of an already computed ``cha`` call graph,
or the entry methods of the context.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Type

from flowcore.analysis import Analysis, MethodAnalysis, ProgramAnalysis
from flowcore.callgraph import CHABuilder
from flowcore.config import AnalysisConfig, AnalysisContext, AnalysisPlan
from flowcore.ctrlflow_graph import CFGBuilder
from flowcore.dataflow_analyses import (
    ConstantPropagation,
    DeadCodeDetection,
    LiveVariableAnalysis,
)
from flowcore.errors import ConfigError, ErrorCodes, UnknownAnalysisError
from flowcore.interproc_analysis import InterConstantPropagation
from flowcore.ir import IR, JMethod

_log = logging.getLogger(__name__)

_REGISTRY: Dict[str, Type[Analysis]] = {}


def register_analysis(cls: Type[Analysis]) -> Type[Analysis]:
    """Register *cls* under ``cls.ID`` (usable as a class decorator)."""
    if not cls.ID:
        raise ConfigError(f"{cls.__name__} has no ID")
    _REGISTRY[cls.ID] = cls
    return cls


def get_analysis_class(analysis_id: str) -> Type[Analysis]:
    cls = _REGISTRY.get(analysis_id)
    if cls is None:
        raise UnknownAnalysisError(analysis_id)
    return cls


def registered_analyses() -> List[str]:
    return sorted(_REGISTRY)


for _cls in (
    CFGBuilder,
    LiveVariableAnalysis,
    ConstantPropagation,
    DeadCodeDetection,
    CHABuilder,
    InterConstantPropagation,
):
    register_analysis(_cls)
del _cls


class AnalysisManager:
    """Runs analysis plans.

    Parameters
    ----------
    context : AnalysisContext, optional
        Needed by program analyses.
    methods : iterable of JMethod, optional
        Methods analysed by method analyses.
    """

    def __init__(
        self,
        context: Optional[AnalysisContext] = None,
        methods: Optional[Iterable[JMethod]] = None,
    ) -> None:
        self.context = context
        self._methods = list(methods) if methods is not None else None
        self._program_results: Dict[str, Any] = {}

    # ----- ordering -----------------------------------------------------------

    def resolve_order(self, plan: AnalysisPlan) -> List[AnalysisConfig]:
        """Configs of *plan* plus missing prerequisites, prerequisites first."""
        configs = {c.id: c for c in plan}
        order: List[AnalysisConfig] = []
        state: Dict[str, str] = {}

        def visit(analysis_id: str, path: List[str]) -> None:
            mark = state.get(analysis_id)
            if mark == "done":
                return
            if mark == "active":
                cycle = " -> ".join(path + [analysis_id])
                raise ConfigError(
                    f"cyclic analysis requirement: {cycle}",
                    code=ErrorCodes.CYCLIC_REQUIREMENT,
                )
            state[analysis_id] = "active"
            cls = get_analysis_class(analysis_id)
            for req in cls.requires:
                visit(req, path + [analysis_id])
            state[analysis_id] = "done"
            order.append(configs.get(analysis_id) or AnalysisConfig(analysis_id))

        for c in plan:
            visit(c.id, [])
        return order

    # ----- execution ----------------------------------------------------------

    def run(self, plan: AnalysisPlan) -> "AnalysisManager":
        for config in self.resolve_order(plan):
            analysis = get_analysis_class(config.id)(config)
            if isinstance(analysis, MethodAnalysis):
                irs = self.irs()
                _log.info("running %s on %d method(s)", config.id, len(irs))
                for ir in irs:
                    ir.store_result(config.id, analysis.analyze(ir))
            elif isinstance(analysis, ProgramAnalysis):
                if self.context is None:
                    raise ConfigError(
                        f"program analysis {config.id!r} needs an analysis context",
                        code=ErrorCodes.MISSING_CONTEXT,
                    )
                _log.info("running %s", config.id)
                self._program_results[config.id] = analysis.analyze(
                    self.context, self._program_results,
                )
            else:
                raise AssertionError(f"unhandled analysis type {type(analysis)!r}")
        return self

    def methods(self) -> List[JMethod]:
        if self._methods is not None:
            return list(self._methods)
        cg = self._program_results.get(CHABuilder.ID)
        if cg is not None:
            return cg.reachable_methods()
        if self.context is not None:
            return list(self.context.entry_methods)
        return []

    def irs(self) -> List[IR]:
        return [m.ir for m in self.methods() if m.has_ir]

    # ----- results ------------------------------------------------------------

    def get_result(self, analysis_id: str, ir: Optional[IR] = None) -> Any:
        """Result of *analysis_id*: per *ir* for method analyses."""
        cls = get_analysis_class(analysis_id)
        if issubclass(cls, MethodAnalysis):
            if ir is None:
                raise ConfigError(f"{analysis_id!r} is a method analysis; pass an IR")
            return ir.get_result(analysis_id)
        return self._program_results.get(analysis_id)

    def has_result(self, analysis_id: str) -> bool:
        return analysis_id in self._program_results


def run_plan(
    plan: AnalysisPlan,
    context: Optional[AnalysisContext] = None,
    methods: Optional[Iterable[JMethod]] = None,
) -> AnalysisManager:
    """Run *plan* and return the manager holding the results."""
    return AnalysisManager(context, methods).run(plan)
