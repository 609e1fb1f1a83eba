"""
flowcore — dataflow and call graph analysis core
================================================

A monotone-framework fixpoint engine over statement-level control flow
graphs, a class hierarchy analysis (CHA) call graph builder, and an
interprocedural extension that stitches per-method analyses together
across call sites.

Core modules
------------
ir
    In-memory intermediate representation (types, expressions, statements,
    methods, classes).
builder
    Programmatic construction of method bodies with labels.
hierarchy
    Class hierarchy oracle consulted by call graph construction.
ctrlflow_graph
    Statement-level CFGs with synthetic entry and exit nodes.
lattice
    Lattices and facts (set facts, constant-propagation facts).
dataflow_engine
    Intraprocedural solvers (worklist and chaotic iteration).
dataflow_analyses
    Live variables, constant propagation, dead code detection.
callgraph
    CHA call graph construction and queries.
interproc_analysis
    ICFG and interprocedural solving (interprocedural constant propagation).
config, manager
    Analysis plans, the analysis context and plan execution.
errors
    Exception hierarchy.
viz
    Optional rendering of DOT output through ``graphviz``.

Quick start
-----------
>>> from flowcore import MethodBuilder, JClass, ConditionOp, DeadCodeDetection
>>> main = JClass("Main")
>>> mb = MethodBuilder(main, "f", is_static=True)
>>> _ = mb.assign("x", 1)
>>> _ = mb.if_(ConditionOp.EQ, "x", 1, "then")
>>> _ = mb.assign("a", 6)
>>> _ = mb.label("then")
>>> _ = mb.ret("x")
>>> [s.index for s in DeadCodeDetection().analyze(mb.finish())]
[2]

Package layout
--------------
::

    flowcore/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── config.py
    ├── analysis.py
    ├── ir.py
    ├── builder.py
    ├── hierarchy.py
    ├── ctrlflow_graph.py
    ├── lattice.py
    ├── dataflow_engine.py
    ├── dataflow_analyses.py
    ├── callgraph.py
    ├── interproc_analysis.py
    ├── manager.py
    └── viz.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"

__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "FlowcoreError",
        "ConfigError",
        "UnknownAnalysisError",
        "IRError",
        "CallGraphError",
        "ArityMismatchError",
        "ConvergenceError",
        "ErrorCodes",
    ],
    "config": [
        "AnalysisConfig",
        "AnalysisPlan",
        "AnalysisContext",
        "configure_logging",
    ],
    "ir": [
        "PrimitiveType",
        "ClassType",
        "Var",
        "IntLiteral",
        "BinaryExp",
        "ArithmeticOp",
        "ShiftOp",
        "BitwiseOp",
        "ConditionOp",
        "NewExp",
        "CastExp",
        "FieldAccess",
        "ArrayAccess",
        "InvokeExp",
        "CallKind",
        "AssignStmt",
        "Invoke",
        "If",
        "Goto",
        "Switch",
        "Return",
        "Nop",
        "Subsignature",
        "MethodRef",
        "JMethod",
        "JClass",
        "IR",
    ],
    "builder": [
        "MethodBuilder",
        "declare_method",
    ],
    "hierarchy": [
        "ClassHierarchy",
        "ClassHierarchyOracle",
    ],
    "ctrlflow_graph": [
        "CFG",
        "CFGEdge",
        "CFGEdgeKind",
        "CFGBuilder",
        "build_cfg",
        "cfg_of",
    ],
    "lattice": [
        "Lattice",
        "Value",
        "ConstantLattice",
        "SetLattice",
        "MapLattice",
        "SetFact",
        "MapFact",
        "CPFact",
    ],
    "dataflow_engine": [
        "DataflowAnalysis",
        "DataflowResult",
        "WorkListSolver",
        "IterativeSolver",
        "SolverStrategy",
        "make_solver",
        "run_analysis",
        "check_monotonicity",
        "check_fixpoint",
    ],
    "dataflow_analyses": [
        "LiveVariableAnalysis",
        "ConstantPropagation",
        "DeadCodeDetection",
        "evaluate",
    ],
    "callgraph": [
        "CallGraph",
        "CallGraphEdge",
        "CHABuilder",
        "build_callgraph",
        "callgraph_summary",
        "find_recursive_methods",
    ],
    "interproc_analysis": [
        "ICFG",
        "ICFGEdge",
        "ICFGEdgeKind",
        "InterDataflowAnalysis",
        "InterSolver",
        "InterConstantPropagation",
        "build_icfg",
    ],
    "manager": [
        "AnalysisManager",
        "register_analysis",
        "run_plan",
    ],
    "viz": [
        "render_dot",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    mod = importlib.import_module(fq_name)
    current_module = sys.modules[__name__]
    for name in names:
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    setattr(current_module, module_rel_name, mod)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names

__all__ += ["__version__"]


def list_submodules() -> List[str]:
    """Return the names of the package's public submodules."""
    return sorted(_CORE_MODULES)


if TYPE_CHECKING:
    from .errors import (
        FlowcoreError as FlowcoreError,
        ConfigError as ConfigError,
        IRError as IRError,
        CallGraphError as CallGraphError,
        ArityMismatchError as ArityMismatchError,
        ConvergenceError as ConvergenceError,
    )
    from .builder import MethodBuilder as MethodBuilder
    from .callgraph import CallGraph as CallGraph, CHABuilder as CHABuilder
    from .dataflow_analyses import (
        ConstantPropagation as ConstantPropagation,
        DeadCodeDetection as DeadCodeDetection,
        LiveVariableAnalysis as LiveVariableAnalysis,
    )
    from .interproc_analysis import (
        ICFG as ICFG,
        InterConstantPropagation as InterConstantPropagation,
    )
