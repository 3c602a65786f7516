"""
Whole-program call graph and its bottom-up SCC traversal.

Nodes are function names. Defined functions carry ``defined=True``; callees
that are only declared are added as external nodes. Indirect calls are
resolved through a points-to analysis.
"""

import logging
from typing import Callable, List, TypeVar

import networkx as nx

from ..program import Function, Program
from .ast_utils import call_sites, direct_callee
from .pointsto import PointsToAnalysis

logger = logging.getLogger(__name__)

S = TypeVar("S")


class CallGraph:
    """Caller -> callee edges with ``kind`` (direct/indirect) and ``calls`` count."""

    def __init__(self, program: Program):
        self.program = program
        self.graph = nx.DiGraph()

    def add_function(self, name: str):
        if name in self.graph:
            return
        function = self.program.function(name)
        self.graph.add_node(
            name,
            defined=bool(function and function.is_defined),
            line=function.line if function else 0,
        )

    def add_call(self, caller: str, callee: str, kind: str):
        self.add_function(caller)
        self.add_function(callee)
        if self.graph.has_edge(caller, callee):
            edge = self.graph.edges[caller, callee]
            edge["calls"] += 1
            if kind == "direct":
                edge["kind"] = "direct"
        else:
            self.graph.add_edge(caller, callee, kind=kind, calls=1)

    def is_defined(self, name: str) -> bool:
        return self.graph.nodes[name].get("defined", False)

    def callees(self, name: str) -> List[str]:
        return list(self.graph.successors(name))

    def callers(self, name: str) -> List[str]:
        return list(self.graph.predecessors(name))

    def defined_functions(self) -> List[str]:
        return [n for n, data in self.graph.nodes(data=True) if data.get("defined")]

    def __repr__(self):
        return f"CallGraph(functions={self.graph.number_of_nodes()}, calls={self.graph.number_of_edges()})"


def _add_calls(cg: CallGraph, function: Function, points_to: PointsToAnalysis):
    for call in call_sites(function.body()):
        callee = direct_callee(call)
        if callee is not None:
            cg.add_call(function.name, callee, "direct")
            continue

        targets = points_to.function_targets(call)
        if not targets:
            logger.debug("%s: unresolved indirect call at line %d", function.name, call.location.line)
        for target in targets:
            cg.add_call(function.name, target, "indirect")


def make_call_graph(program: Program, points_to: PointsToAnalysis) -> CallGraph:
    """Build the call graph of every defined function in ``program``."""
    cg = CallGraph(program)
    for function in program.defined_functions():
        cg.add_function(function.name)
    for function in program.defined_functions():
        _add_calls(cg, function, points_to)

    logger.debug("Call graph: %d functions, %d call edges",
                 cg.graph.number_of_nodes(), cg.graph.number_of_edges())
    return cg


def scc_traversal_order(cg: CallGraph) -> List[List[str]]:
    """Strongly connected components of defined functions, callees first."""
    defined = cg.graph.subgraph(cg.defined_functions())
    condensed = nx.condensation(defined)
    order = reversed(list(nx.topological_sort(condensed)))

    def by_line(name):
        return cg.graph.nodes[name]["line"], name

    return [sorted(condensed.nodes[c]["members"], key=by_line) for c in order]


def call_graph_scc_traversal(cg: CallGraph,
                             analysis: Callable[[List[str], S], S],
                             seed: S) -> S:
    """Fold ``analysis`` over the SCCs bottom-up so callee summaries exist first."""
    summary = seed
    for component in scc_traversal_order(cg):
        summary = analysis(component, summary)
    return summary
