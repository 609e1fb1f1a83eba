"""
flowcore/errors.py
==================

Exception hierarchy for the analysis core.

Error hierarchy
───────────────
::

    FlowcoreError (base)
    ├── ConfigError            - bad analysis plan / option values
    │   └── UnknownAnalysisError
    ├── IRError                - malformed IR handed in by a collaborator
    ├── CallGraphError         - call-graph construction contract violated
    │   └── ArityMismatchError
    └── ConvergenceError       - solver iteration guard exceeded

Every error carries an :class:`ErrorCode` of the form ``FLOW-NNNN``:

  - 1000-1999: configuration errors
  - 2000-2999: IR / CFG errors
  - 3000-3999: call graph / ICFG errors
  - 4000-4999: solver errors

Things that are *not* errors in this package (they are precision
limitations or well-defined abstract results): an unresolvable call target
(empty callee set), division by a constant zero during constant evaluation
(``Undefined``), and a non-monotone transfer function (it shows up as
non-termination, caught only by the iteration guard).
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Dict, Optional


@unique
class ErrorPhase(Enum):
    """Where in the pipeline an error was raised."""

    CONFIG = "config"
    IR = "ir"
    CALLGRAPH = "callgraph"
    SOLVER = "solver"


class ErrorCode:
    """A structured error code (``FLOW-NNNN``)."""

    __slots__ = ("number", "phase", "title")

    def __init__(self, number: int, phase: ErrorPhase, title: str) -> None:
        self.number = number
        self.phase = phase
        self.title = title

    @property
    def code(self) -> str:
        return f"FLOW-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code}, {self.phase.value}, {self.title!r})"


class ErrorCodes:
    """Predefined error codes."""

    # ── configuration (1000-1999) ───────────────────────────────────────
    INVALID_OPTION = ErrorCode(1000, ErrorPhase.CONFIG, "invalid option")
    UNKNOWN_ANALYSIS = ErrorCode(1001, ErrorPhase.CONFIG, "unknown analysis")
    CYCLIC_REQUIREMENT = ErrorCode(1002, ErrorPhase.CONFIG, "cyclic requirement")
    MISSING_CONTEXT = ErrorCode(1003, ErrorPhase.CONFIG, "missing context")
    UNSUPPORTED_DIRECTION = ErrorCode(1004, ErrorPhase.CONFIG, "unsupported analysis direction")

    # ── IR (2000-2999) ──────────────────────────────────────────────────
    UNRESOLVED_LABEL = ErrorCode(2000, ErrorPhase.IR, "unresolved label")
    DUPLICATE_LABEL = ErrorCode(2001, ErrorPhase.IR, "duplicate label")
    MISSING_BODY = ErrorCode(2002, ErrorPhase.IR, "method has no body")
    DUPLICATE_METHOD = ErrorCode(2003, ErrorPhase.IR, "duplicate method")
    INVALID_STATEMENT = ErrorCode(2004, ErrorPhase.IR, "invalid statement")

    # ── call graph / ICFG (3000-3999) ───────────────────────────────────
    ARITY_MISMATCH = ErrorCode(3000, ErrorPhase.CALLGRAPH, "argument count mismatch")
    FOREIGN_CALL_SITE = ErrorCode(3001, ErrorPhase.CALLGRAPH, "call site outside caller")
    UNREACHABLE_CALLER = ErrorCode(3002, ErrorPhase.CALLGRAPH, "caller not reachable")
    UNKNOWN_NODE = ErrorCode(3003, ErrorPhase.CALLGRAPH, "node not in graph")

    # ── solver (4000-4999) ──────────────────────────────────────────────
    NO_CONVERGENCE = ErrorCode(4000, ErrorPhase.SOLVER, "no convergence")


class FlowcoreError(Exception):
    """Base exception for every error raised by flowcore."""

    default_code: ErrorCode = ErrorCodes.INVALID_OPTION

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.code,
            "phase": self.code.phase.value,
            "title": self.code.title,
            "message": self.message,
        }


class ConfigError(FlowcoreError):
    """An analysis plan or option value is invalid."""

    default_code = ErrorCodes.INVALID_OPTION


class UnknownAnalysisError(ConfigError):
    """An analysis id is not registered."""

    default_code = ErrorCodes.UNKNOWN_ANALYSIS

    def __init__(self, analysis_id: str) -> None:
        super().__init__(f"no analysis registered under id {analysis_id!r}")
        self.analysis_id = analysis_id


class IRError(FlowcoreError):
    """The IR handed to the core is malformed."""

    default_code = ErrorCodes.MISSING_BODY


class CallGraphError(FlowcoreError):
    """A call-graph edge violates the construction contract."""

    default_code = ErrorCodes.FOREIGN_CALL_SITE


class ArityMismatchError(CallGraphError):
    """A call edge would connect a call site to a callee of different arity."""

    default_code = ErrorCodes.ARITY_MISMATCH

    def __init__(self, call_site: Any, callee: Any, n_args: int, n_params: int) -> None:
        super().__init__(
            f"{call_site} passes {n_args} argument(s) but {callee} "
            f"declares {n_params} parameter(s)"
        )
        self.call_site = call_site
        self.callee = callee
        self.n_args = n_args
        self.n_params = n_params


class ConvergenceError(FlowcoreError):
    """The solver exceeded its iteration guard."""

    default_code = ErrorCodes.NO_CONVERGENCE

    def __init__(self, analysis_id: str, iterations: int) -> None:
        super().__init__(
            f"analysis {analysis_id!r} did not converge in {iterations} iterations"
        )
        self.analysis_id = analysis_id
        self.iterations = iterations
