"""
flowcore/dataflow_engine.py
===========================

A generic fixpoint engine for intraprocedural dataflow analyses over the
statement-level CFGs of :mod:`flowcore.ctrlflow_graph`.

Theory
------
A dataflow analysis is defined by:

1.  A **direction** — *forward* (facts flow along CFG edges) or *backward*
    (facts flow against them).
2.  A **boundary fact** for the entry (forward) or exit (backward) node,
    and an **initial fact** for every other node.
3.  A **meet** operator combining the facts flowing into a node from its
    predecessors (forward) or successors (backward).
4.  A **transfer function** computing a node's output fact from its input
    fact, reporting whether the output changed.

The solver iterates until a **fixpoint** is reached: no node's fact
changes on re-application of its transfer function.  With a monotone
transfer function and a finite-height lattice the iteration terminates and
the result does not depend on the iteration order.

Strategies
----------
``worklist``
    Every non-boundary node is queued once; a node whose output changes
    re-queues its successors (forward) or predecessors (backward).
``iterative``
    Chaotic iteration: sweep every non-boundary node in program order
    (reverse order for backward analyses) until a full sweep changes
    nothing.

Both strategies are available in both directions and reach the same
fixpoint.

Public API
----------
    DataflowAnalysis    - abstract base for analyses
    DataflowResult      - IN/OUT facts per node
    Solver              - abstract solver
    WorkListSolver      - worklist strategy
    IterativeSolver     - chaotic-iteration strategy
    SolverStrategy      - strategy enum
    make_solver         - solver for an analysis (strategy from its config)
    run_analysis        - convenience: analyse one IR or CFG
    transfer_function   - a node transfer as a pure ``(node, fact) -> fact``
    check_monotonicity  - development utility
    check_fixpoint      - development utility
"""

from __future__ import annotations

import abc
import enum
import logging
import time
from collections import deque
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
    Union,
)

from flowcore.analysis import MethodAnalysis
from flowcore.config import AnalysisConfig
from flowcore.ctrlflow_graph import CFG, CFGBuilder, cfg_of
from flowcore.errors import ConfigError, ConvergenceError, ErrorCodes
from flowcore.ir import IR, Stmt
from flowcore.lattice import Lattice

logger = logging.getLogger(__name__)

Fact = TypeVar("Fact")


# ===========================================================================
# ANALYSIS
# ===========================================================================

class DataflowAnalysis(MethodAnalysis, Generic[Fact]):
    """Abstract base class for an intraprocedural dataflow analysis.

    Subclasses define the direction, the boundary and initial facts, the
    meet and the node transfer.  :meth:`analyze` runs the solver selected
    by the analysis config (``strategy`` option) on the method's CFG.
    """

    requires = (CFGBuilder.ID,)

    @abc.abstractmethod
    def is_forward(self) -> bool:
        ...

    @abc.abstractmethod
    def new_boundary_fact(self, cfg: CFG) -> Fact:
        """Fact for OUT(entry) (forward) or IN(exit) (backward)."""
        ...

    @abc.abstractmethod
    def new_initial_fact(self) -> Fact:
        """Fact every other node starts with (the lattice bottom)."""
        ...

    @abc.abstractmethod
    def meet_into(self, fact: Fact, target: Fact) -> None:
        """Meet *fact* into *target* in place."""
        ...

    @abc.abstractmethod
    def transfer_node(self, node: Stmt, in_fact: Fact, out_fact: Fact) -> bool:
        """Apply the transfer of *node*.

        Forward analyses update *out_fact* from *in_fact*, backward ones
        *in_fact* from *out_fact*.  Returns whether the updated fact
        changed.
        """
        ...

    def analyze(self, ir: IR) -> "DataflowResult[Fact]":
        return make_solver(self).solve(cfg_of(ir))


# ===========================================================================
# RESULT
# ===========================================================================

class DataflowResult(Generic[Fact]):
    """IN and OUT facts of every CFG node.

    Attributes
    ----------
    iterations : int
        Number of node transfers performed.
    elapsed_seconds : float
    strategy : str
    """

    def __init__(self, strategy: str = "worklist") -> None:
        self._in: Dict[Stmt, Fact] = {}
        self._out: Dict[Stmt, Fact] = {}
        self.iterations = 0
        self.elapsed_seconds = 0.0
        self.strategy = strategy

    def get_in_fact(self, node: Stmt) -> Optional[Fact]:
        return self._in.get(node)

    def get_out_fact(self, node: Stmt) -> Optional[Fact]:
        return self._out.get(node)

    def set_in_fact(self, node: Stmt, fact: Fact) -> None:
        self._in[node] = fact

    def set_out_fact(self, node: Stmt, fact: Fact) -> None:
        self._out[node] = fact

    def get_result(self, node: Stmt) -> Optional[Fact]:
        """The analysis result at *node* (its OUT fact)."""
        return self._out.get(node)

    def fact_at(self, node: Stmt, *, before: bool = True) -> Optional[Fact]:
        return self.get_in_fact(node) if before else self.get_out_fact(node)

    def items_in(self) -> Iterable[Tuple[Stmt, Fact]]:
        return self._in.items()

    def items_out(self) -> Iterable[Tuple[Stmt, Fact]]:
        return self._out.items()

    def __repr__(self) -> str:
        return (
            f"DataflowResult(nodes={len(self._out)}, "
            f"iterations={self.iterations}, strategy={self.strategy!r})"
        )


# ===========================================================================
# SOLVERS
# ===========================================================================

class SolverStrategy(enum.Enum):
    WORKLIST = "worklist"
    ITERATIVE = "iterative"

    @classmethod
    def from_name(cls, name: str) -> "SolverStrategy":
        try:
            return cls(name)
        except ValueError:
            raise ConfigError(
                f"unknown solver strategy {name!r}",
                code=ErrorCodes.INVALID_OPTION,
            ) from None


class Solver(abc.ABC, Generic[Fact]):
    """Computes a :class:`DataflowResult` for one CFG.

    Parameters
    ----------
    analysis : DataflowAnalysis
    max_iterations : int, optional
        Bound on node transfers; exceeding it raises
        :class:`~flowcore.errors.ConvergenceError`.
    """

    strategy: SolverStrategy

    def __init__(
        self,
        analysis: DataflowAnalysis[Fact],
        max_iterations: Optional[int] = None,
    ) -> None:
        self.analysis = analysis
        self.max_iterations = max_iterations

    def solve(self, cfg: CFG) -> DataflowResult[Fact]:
        t0 = time.monotonic()
        result = self._initialize(cfg)
        if self.analysis.is_forward():
            self._solve_forward(cfg, result)
        else:
            self._solve_backward(cfg, result)
        result.elapsed_seconds = time.monotonic() - t0
        logger.debug(
            "%s on %s: %s fixpoint after %d transfers",
            self.analysis.ID, cfg.method, self.strategy.value, result.iterations,
        )
        return result

    def _initialize(self, cfg: CFG) -> DataflowResult[Fact]:
        a = self.analysis
        result: DataflowResult[Fact] = DataflowResult(self.strategy.value)
        boundary = cfg.get_entry() if a.is_forward() else cfg.get_exit()
        for node in cfg:
            result.set_in_fact(node, a.new_initial_fact())
            result.set_out_fact(node, a.new_initial_fact())
        if a.is_forward():
            result.set_out_fact(boundary, a.new_boundary_fact(cfg))
        else:
            result.set_in_fact(boundary, a.new_boundary_fact(cfg))
        return result

    def _tick(self, result: DataflowResult[Fact]) -> None:
        result.iterations += 1
        if self.max_iterations is not None and result.iterations > self.max_iterations:
            raise ConvergenceError(self.analysis.ID, self.max_iterations)

    def _update_forward(self, cfg: CFG, node: Stmt, result: DataflowResult[Fact]) -> bool:
        a = self.analysis
        new_in = a.new_initial_fact()
        for pred in cfg.get_preds_of(node):
            a.meet_into(result.get_out_fact(pred), new_in)
        result.set_in_fact(node, new_in)
        self._tick(result)
        return a.transfer_node(node, new_in, result.get_out_fact(node))

    def _update_backward(self, cfg: CFG, node: Stmt, result: DataflowResult[Fact]) -> bool:
        a = self.analysis
        new_out = a.new_initial_fact()
        for succ in cfg.get_succs_of(node):
            a.meet_into(result.get_in_fact(succ), new_out)
        result.set_out_fact(node, new_out)
        self._tick(result)
        return a.transfer_node(node, result.get_in_fact(node), new_out)

    @abc.abstractmethod
    def _solve_forward(self, cfg: CFG, result: DataflowResult[Fact]) -> None:
        ...

    @abc.abstractmethod
    def _solve_backward(self, cfg: CFG, result: DataflowResult[Fact]) -> None:
        ...


class WorkListSolver(Solver[Fact]):
    """Worklist iteration in either direction."""

    strategy = SolverStrategy.WORKLIST

    def _run(
        self,
        seeds: List[Stmt],
        update: Callable[[Stmt], bool],
        next_of: Callable[[Stmt], List[Stmt]],
        skip: Stmt,
    ) -> None:
        worklist: Deque[Stmt] = deque(seeds)
        queued: Set[int] = {id(n) for n in seeds}
        while worklist:
            node = worklist.popleft()
            queued.discard(id(node))
            if update(node):
                for n in next_of(node):
                    if n is not skip and id(n) not in queued:
                        worklist.append(n)
                        queued.add(id(n))

    def _solve_forward(self, cfg: CFG, result: DataflowResult[Fact]) -> None:
        entry = cfg.get_entry()
        self._run(
            [n for n in cfg if n is not entry],
            lambda n: self._update_forward(cfg, n, result),
            cfg.get_succs_of,
            entry,
        )

    def _solve_backward(self, cfg: CFG, result: DataflowResult[Fact]) -> None:
        exit_ = cfg.get_exit()
        self._run(
            [n for n in reversed(cfg.get_nodes()) if n is not exit_],
            lambda n: self._update_backward(cfg, n, result),
            cfg.get_preds_of,
            exit_,
        )


class IterativeSolver(Solver[Fact]):
    """Chaotic iteration in either direction."""

    strategy = SolverStrategy.ITERATIVE

    def _solve_forward(self, cfg: CFG, result: DataflowResult[Fact]) -> None:
        nodes = [n for n in cfg if not cfg.is_entry(n)]
        changed = True
        while changed:
            changed = False
            for node in nodes:
                changed |= self._update_forward(cfg, node, result)

    def _solve_backward(self, cfg: CFG, result: DataflowResult[Fact]) -> None:
        nodes = [n for n in reversed(cfg.get_nodes()) if not cfg.is_exit(n)]
        changed = True
        while changed:
            changed = False
            for node in nodes:
                changed |= self._update_backward(cfg, node, result)


_SOLVERS = {
    SolverStrategy.WORKLIST: WorkListSolver,
    SolverStrategy.ITERATIVE: IterativeSolver,
}


def make_solver(
    analysis: DataflowAnalysis[Fact],
    strategy: Union[SolverStrategy, str, None] = None,
    max_iterations: Optional[int] = None,
) -> Solver[Fact]:
    """Build a solver for *analysis*.

    Unspecified arguments are taken from the analysis config.
    """
    config: AnalysisConfig = analysis.config
    if strategy is None:
        strategy = config.strategy
    if isinstance(strategy, str):
        strategy = SolverStrategy.from_name(strategy)
    if max_iterations is None:
        max_iterations = config.max_iterations
    return _SOLVERS[strategy](analysis, max_iterations=max_iterations)


def run_analysis(
    analysis: DataflowAnalysis[Fact],
    target: Union[IR, CFG],
    strategy: Union[SolverStrategy, str, None] = None,
) -> DataflowResult[Fact]:
    """Solve *analysis* on an IR (through its cached CFG) or on a CFG."""
    cfg = target if isinstance(target, CFG) else cfg_of(target)
    return make_solver(analysis, strategy).solve(cfg)


# ===========================================================================
# DEVELOPMENT UTILITIES
# ===========================================================================

def transfer_function(analysis: DataflowAnalysis[Fact]) -> Callable[[Stmt, Fact], Fact]:
    """Wrap ``analysis.transfer_node`` as a pure ``(node, input) -> output``.

    The input is the IN fact for forward analyses and the OUT fact for
    backward ones; it is not modified.
    """

    def transfer(node: Stmt, fact: Fact) -> Fact:
        produced = analysis.new_initial_fact()
        if analysis.is_forward():
            analysis.transfer_node(node, _copy(fact), produced)
        else:
            analysis.transfer_node(node, produced, _copy(fact))
        return produced

    return transfer


def _copy(fact: Any) -> Any:
    return fact.copy()


def check_monotonicity(
    lattice: Lattice[Fact],
    transfer: Callable[[Stmt, Fact], Fact],
    node: Stmt,
    samples: Sequence[Fact],
) -> bool:
    """Check that ``transfer(node, ·)`` is monotone on the given samples.

    For every pair ``(a, b)`` in *samples* where ``a ⊑ b``, verifies
    that ``transfer(node, a) ⊑ transfer(node, b)``.

    This is a development/debugging utility: it cannot prove monotonicity
    in general, only detect violations.
    """
    for a in samples:
        for b in samples:
            if lattice.leq(a, b):
                if not lattice.leq(transfer(node, a), transfer(node, b)):
                    logger.debug("transfer of %r is not monotone", node)
                    return False
    return True


def check_fixpoint(
    analysis: DataflowAnalysis[Fact],
    cfg: CFG,
    result: DataflowResult[Fact],
) -> List[Stmt]:
    """Return the nodes at which *result* is not a fixpoint of *analysis*.

    Each non-boundary node is re-evaluated on copies of the stored facts;
    an empty list means every node is stable.
    """
    forward = analysis.is_forward()
    unstable: List[Stmt] = []
    for node in cfg:
        if (forward and cfg.is_entry(node)) or (not forward and cfg.is_exit(node)):
            continue
        merged = analysis.new_initial_fact()
        if forward:
            for pred in cfg.get_preds_of(node):
                analysis.meet_into(result.get_out_fact(pred), merged)
            stored, produced = result.get_in_fact(node), result.get_out_fact(node)
            out = _copy(produced)
            changed = analysis.transfer_node(node, _copy(merged), out)
        else:
            for succ in cfg.get_succs_of(node):
                analysis.meet_into(result.get_in_fact(succ), merged)
            stored, produced = result.get_out_fact(node), result.get_in_fact(node)
            in_ = _copy(produced)
            changed = analysis.transfer_node(node, in_, _copy(merged))
        if stored != merged or changed:
            unstable.append(node)
    return unstable
