"""
flowcore/analysis.py
====================

Base classes shared by every analysis.

An analysis has a string ``ID`` under which its result is published and a
tuple of ``requires`` ids that must have run before it.  Method analyses
run once per :class:`~flowcore.ir.IR` and store their result in the IR's
result store; program analyses run once per
:class:`~flowcore.config.AnalysisContext`.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any, Mapping, Optional, Tuple

from flowcore.config import AnalysisConfig

if TYPE_CHECKING:
    from flowcore.config import AnalysisContext
    from flowcore.ir import IR


class Analysis(abc.ABC):
    """Common part of method and program analyses."""

    ID: str = ""
    requires: Tuple[str, ...] = ()

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config if config is not None else AnalysisConfig(self.ID)

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ID!r})"


class MethodAnalysis(Analysis):
    """An analysis of one method body."""

    @abc.abstractmethod
    def analyze(self, ir: "IR") -> Any:
        ...


class ProgramAnalysis(Analysis):
    """An analysis of the whole program.

    *results* maps the ids of program analyses that already ran to their
    results; an analysis computes a missing prerequisite itself.
    """

    @abc.abstractmethod
    def analyze(
        self,
        context: "AnalysisContext",
        results: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        ...
