"""
flowcore/config.py
==================

Configuration objects and logging setup.

* :class:`AnalysisConfig` — one analysis id plus its options.
* :class:`AnalysisPlan` — an ordered list of configs, loaded from a mapping
  or a JSON file::

      {
        "analyses": [
          {"id": "constprop", "options": {"strategy": "iterative"}},
          {"id": "deadcode"}
        ]
      }

* :class:`AnalysisContext` — the immutable program-level inputs (class
  hierarchy and entry methods) handed to whole-program analyses in place
  of global world state.
* :func:`configure_logging` — installs a stderr handler on the
  ``flowcore`` logger.

Recognised solver options
-------------------------
``strategy``
    ``"worklist"`` (default) or ``"iterative"`` (chaotic iteration).
``max_iterations``
    Positive int; the solver raises :class:`~flowcore.errors.ConvergenceError`
    when exceeded.  ``None`` (default) disables the guard.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from flowcore.errors import ConfigError, ErrorCodes

if TYPE_CHECKING:
    from flowcore.hierarchy import ClassHierarchyOracle
    from flowcore.ir import JMethod

_log = logging.getLogger(__name__)

STRATEGIES = ("worklist", "iterative")
DEFAULT_STRATEGY = "worklist"


# ═══════════════════════════════════════════════════════════════════════════
#  LOGGING
# ═══════════════════════════════════════════════════════════════════════════

LOG_FORMAT = "%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def configure_logging(verbosity: int = 0, stream=None) -> logging.Handler:
    """Set up the ``flowcore`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    stream:
        Destination (default ``sys.stderr``).

    Returns the installed handler so callers can remove it again.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root = logging.getLogger("flowcore")
    root.setLevel(level)
    root.addHandler(handler)
    return handler


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYSIS CONFIG
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnalysisConfig:
    """The id of an analysis and its options (read-only)."""

    id: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise ConfigError(f"analysis id must be a non-empty string, got {self.id!r}")
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))
        _validate_solver_options(self.id, self.options)

    def __hash__(self) -> int:
        # options are a read-only mapping and not hashable themselves
        return hash(("AnalysisConfig", self.id))

    def get(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    @property
    def strategy(self) -> str:
        return self.options.get("strategy", DEFAULT_STRATEGY)

    @property
    def max_iterations(self) -> Optional[int]:
        return self.options.get("max_iterations")

    @classmethod
    def from_dict(cls, data: Union[str, Mapping[str, Any]]) -> "AnalysisConfig":
        """Accept ``"id"`` or ``{"id": ..., "options": {...}}``."""
        if isinstance(data, str):
            return cls(data)
        if not isinstance(data, Mapping) or "id" not in data:
            raise ConfigError(f"analysis entry needs an 'id': {data!r}")
        unknown = set(data) - {"id", "options"}
        if unknown:
            raise ConfigError(
                f"analysis {data['id']!r}: unknown key(s) {sorted(unknown)}"
            )
        options = data.get("options") or {}
        if not isinstance(options, Mapping):
            raise ConfigError(f"analysis {data['id']!r}: options must be a mapping")
        return cls(data["id"], options)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "options": dict(self.options)}


def _validate_solver_options(analysis_id: str, options: Mapping[str, Any]) -> None:
    strategy = options.get("strategy", DEFAULT_STRATEGY)
    if strategy not in STRATEGIES:
        raise ConfigError(
            f"analysis {analysis_id!r}: strategy must be one of "
            f"{', '.join(STRATEGIES)}, got {strategy!r}",
            code=ErrorCodes.INVALID_OPTION,
        )
    limit = options.get("max_iterations")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        raise ConfigError(
            f"analysis {analysis_id!r}: max_iterations must be a positive int, "
            f"got {limit!r}",
            code=ErrorCodes.INVALID_OPTION,
        )


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYSIS PLAN
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnalysisPlan:
    """An ordered collection of analysis configs."""

    configs: Tuple[AnalysisConfig, ...] = ()

    def __post_init__(self) -> None:
        seen = set()
        for c in self.configs:
            if c.id in seen:
                raise ConfigError(f"analysis {c.id!r} listed twice")
            seen.add(c.id)

    @classmethod
    def of(cls, *items: Union[str, AnalysisConfig, Mapping[str, Any]]) -> "AnalysisPlan":
        return cls(tuple(
            i if isinstance(i, AnalysisConfig) else AnalysisConfig.from_dict(i)
            for i in items
        ))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisPlan":
        entries = data.get("analyses")
        if not isinstance(entries, Sequence) or isinstance(entries, str):
            raise ConfigError("plan needs an 'analyses' list")
        return cls.of(*entries)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "AnalysisPlan":
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{path}: invalid JSON: {exc}", cause=exc) from exc
        except OSError as exc:
            raise ConfigError(f"{path}: cannot read plan: {exc}", cause=exc) from exc
        if not isinstance(data, Mapping):
            raise ConfigError(f"{path}: plan must be a JSON object")
        _log.debug("loaded analysis plan from %s", path)
        return cls.from_dict(data)

    def get(self, analysis_id: str) -> Optional[AnalysisConfig]:
        for c in self.configs:
            if c.id == analysis_id:
                return c
        return None

    @property
    def ids(self) -> List[str]:
        return [c.id for c in self.configs]

    def to_dict(self) -> Dict[str, Any]:
        return {"analyses": [c.to_dict() for c in self.configs]}

    def __iter__(self):
        return iter(self.configs)

    def __len__(self) -> int:
        return len(self.configs)


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYSIS CONTEXT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnalysisContext:
    """Program-level inputs of whole-program analyses.

    Attributes
    ----------
    hierarchy : ClassHierarchyOracle
    entry_methods : tuple of JMethod
        The call graph is rooted at these methods.
    """

    hierarchy: "ClassHierarchyOracle"
    entry_methods: Tuple["JMethod", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entry_methods", tuple(self.entry_methods))

    @property
    def main_method(self) -> "JMethod":
        if not self.entry_methods:
            raise ConfigError(
                "analysis context has no entry method",
                code=ErrorCodes.MISSING_CONTEXT,
            )
        return self.entry_methods[0]
