# tests/conftest.py
"""
Shared fixtures and helpers for the flowcore test suite.
"""

import logging

import pytest

from flowcore.ctrlflow_graph import cfg_of
from flowcore.ir import IR, Stmt, Var
from tests import programs


def var_named(ir: IR, name: str) -> Var:
    """The variable called *name* in *ir*."""
    for v in ir.vars:
        if v.name == name:
            return v
    raise KeyError(name)


def stmt_at(ir: IR, index: int) -> Stmt:
    return ir.stmts[index]


def indices(stmts) -> list:
    return [s.index for s in stmts]


@pytest.fixture
def branch_ir():
    return programs.branch_on_constant()


@pytest.fixture
def straight_ir():
    return programs.straight_line()


@pytest.fixture
def loop_ir():
    return programs.counting_loop()


@pytest.fixture
def loop_cfg(loop_ir):
    return cfg_of(loop_ir)


@pytest.fixture
def dispatch_program():
    return programs.dispatch_program()


@pytest.fixture
def interproc_program():
    return programs.interproc_program()


@pytest.fixture
def flowcore_logger():
    """The package logger, restored after the test."""
    logger = logging.getLogger("flowcore")
    level, handlers = logger.level, list(logger.handlers)
    yield logger
    for h in list(logger.handlers):
        if h not in handlers:
            logger.removeHandler(h)
    logger.setLevel(level)
