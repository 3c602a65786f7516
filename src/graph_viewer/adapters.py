"""
Graph construction adapters.

Each adapter takes a loaded ``Program`` and the ``AnalysisSettings`` and
returns a named graph collection: a list of ``(label, graph)`` pairs in the
program's function order. Per-function adapters label entries with the
function name; the call graph is a single entry labeled ``Module``.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

from .analysis.callgraph import make_call_graph, scc_traversal_order
from .analysis.cfg import make_cfg, reverse_cfg
from .analysis.dominance import control_dependence_graph, dominator_tree, postdominator_tree
from .analysis.escape import ExternalPolicy, always_escape, escape_use_graphs, run_escape_analysis
from .analysis.pointsto import PointsToStrategy, TrivialFunctionPointsTo, run_points_to_analysis
from .errors import AnalysisError
from .program import BASICAA, MEM2REG, Program

logger = logging.getLogger(__name__)

MODULE_LABEL = "Module"

DEFAULT_OPTIMIZATION_OPTIONS: Tuple[str, ...] = (MEM2REG, BASICAA)

NamedGraphs = List[Tuple[str, Any]]


@dataclass(frozen=True)
class AnalysisSettings:
    """Knobs for the analyses; the command line always uses the defaults."""
    options: Sequence[str] = DEFAULT_OPTIMIZATION_OPTIONS
    points_to: PointsToStrategy = TrivialFunctionPointsTo
    external_escape_policy: ExternalPolicy = always_escape


def _per_function(program: Program, build) -> NamedGraphs:
    graphs = []
    for function in program.defined_functions():
        try:
            graphs.append((function.name, build(function)))
        except ValueError as e:
            # libclang raises ValueError for cursor kinds its bindings do not know
            raise AnalysisError(f"Cannot analyse function {function.name}: {e}") from e
    return graphs


def make_cfgs(program: Program, settings: AnalysisSettings) -> NamedGraphs:
    return _per_function(program, make_cfg)


def make_cdgs(program: Program, settings: AnalysisSettings) -> NamedGraphs:
    return _per_function(program, lambda f: control_dependence_graph(make_cfg(f)))


def make_dominator_trees(program: Program, settings: AnalysisSettings) -> NamedGraphs:
    return _per_function(program, lambda f: dominator_tree(make_cfg(f)))


def make_postdominator_trees(program: Program, settings: AnalysisSettings) -> NamedGraphs:
    return _per_function(program, lambda f: postdominator_tree(reverse_cfg(make_cfg(f))))


def make_call_graph_entries(program: Program, settings: AnalysisSettings) -> NamedGraphs:
    """The whole-program call graph, indirect calls resolved by points-to."""
    points_to = run_points_to_analysis(program, settings.points_to)
    return [(MODULE_LABEL, make_call_graph(program, points_to))]


def make_escape_graphs(program: Program, settings: AnalysisSettings) -> NamedGraphs:
    """
    Escape analysis over the whole program, one use graph per function.

    Points-to resolves indirect calls, the call graph fixes the bottom-up
    order, and calls to external functions are judged by
    ``settings.external_escape_policy``.
    """
    points_to = run_points_to_analysis(program, settings.points_to)
    cg = make_call_graph(program, points_to)
    result = run_escape_analysis(program, cg, points_to, settings.external_escape_policy)

    order = [f.name for f in program.defined_functions()]
    analysed = {name for component in scc_traversal_order(cg) for name in component}
    missing = [name for name in order if name not in analysed]
    if missing:
        raise AnalysisError(f"Escape analysis did not reach: {', '.join(missing)}")

    graphs = escape_use_graphs(result, order)
    logger.debug("Escape graphs for %d of %d function(s)", len(graphs), len(order))
    return graphs
