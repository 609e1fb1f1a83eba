"""
flowcore/viz.py
===============

Rendering of the DOT text produced by ``CFG.to_dot``, ``CallGraph.to_dot``
and ``ICFG.to_dot``.  Needs the optional ``graphviz`` package
(``pip install flowcore[viz]``) and the Graphviz binaries.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from flowcore.errors import ConfigError

_log = logging.getLogger(__name__)


def render_dot(
    dot: str,
    output: Union[str, Path],
    fmt: str = "svg",
    cleanup: bool = True,
) -> Path:
    """Render *dot* to ``output.<fmt>`` and return the path written.

    Raises :class:`~flowcore.errors.ConfigError` when graphviz is not
    installed.
    """
    try:
        import graphviz
    except ImportError as exc:
        raise ConfigError(
            "rendering needs the 'graphviz' package (pip install flowcore[viz])",
            cause=exc,
        ) from exc
    output = Path(output)
    source = graphviz.Source(dot)
    written = source.render(
        filename=output.name,
        directory=str(output.parent),
        format=fmt,
        cleanup=cleanup,
    )
    _log.debug("rendered %s", written)
    return Path(written)


def source_of(dot: str, engine: Optional[str] = None):
    """A ``graphviz.Source`` for *dot* (displayable in notebooks)."""
    import graphviz

    return graphviz.Source(dot, engine=engine or "dot")
