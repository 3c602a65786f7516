"""
Dominator trees, post-dominator trees and control dependence graphs.

Immediate dominators come from ``networkx.immediate_dominators``. A
post-dominator tree is the dominator tree of the reversed CFG rooted at the
exit block. Control dependences follow Ferrante, Ottenstein and Warren: for
each CFG edge A->B where B does not post-dominate A, every block on the
post-dominator tree path from B up to (but excluding) ipdom(A) is control
dependent on A.
"""

import logging
from typing import Dict, Hashable, List, Optional

import networkx as nx

from ..errors import AnalysisError
from .cfg import BasicBlock, ControlFlowGraph

logger = logging.getLogger(__name__)


def _immediate_dominators(graph: nx.DiGraph, start: Hashable) -> Dict[Hashable, Hashable]:
    idom = nx.immediate_dominators(graph, start)
    # Some networkx releases map the start node to itself
    return {node: dom for node, dom in idom.items() if node != dom}


def _dominates(idom: Dict[Hashable, Hashable], a: Hashable, b: Hashable) -> bool:
    """True if ``a`` dominates ``b`` (reflexive) according to ``idom``."""
    runner = b
    while runner is not None:
        if runner == a:
            return True
        runner = idom.get(runner)
    return False


class DominatorTree:
    """Tree whose parent links are immediate dominators."""

    def __init__(self, cfg: ControlFlowGraph, idom: Dict[int, int]):
        self.cfg = cfg
        self.function_name = cfg.function_name
        self.root = cfg.entry
        self.idom = idom
        self.tree = nx.DiGraph()
        self.tree.add_node(self.root)
        for node, parent in idom.items():
            self.tree.add_edge(parent, node)

    @property
    def blocks(self) -> Dict[int, BasicBlock]:
        return self.cfg.blocks

    def immediate_dominator(self, node: int) -> Optional[int]:
        return self.idom.get(node)

    def dominates(self, a: int, b: int) -> bool:
        return _dominates(self.idom, a, b)

    def children(self, node: int) -> List[int]:
        return sorted(self.tree.successors(node))

    def __contains__(self, node):
        return node in self.tree

    def __repr__(self):
        return f"{type(self).__name__}({self.function_name!r}, nodes={self.tree.number_of_nodes()})"


class PostdominatorTree(DominatorTree):
    """Dominator tree of a reversed CFG; ``dominates`` reads as post-dominates."""


def dominator_tree(cfg: ControlFlowGraph) -> DominatorTree:
    """Forward dominator tree rooted at the CFG entry."""
    return DominatorTree(cfg, _immediate_dominators(cfg.graph, cfg.entry))


def postdominator_tree(reversed_cfg: ControlFlowGraph) -> PostdominatorTree:
    """Post-dominator tree; expects a CFG produced by ``reverse_cfg``."""
    if not reversed_cfg.reversed:
        raise AnalysisError(
            f"{reversed_cfg.function_name}: post-dominators need a reversed CFG"
        )
    tree = PostdominatorTree(reversed_cfg, _immediate_dominators(reversed_cfg.graph, reversed_cfg.entry))
    missing = len(reversed_cfg) - tree.tree.number_of_nodes()
    if missing:
        logger.debug("%s: %d block(s) never reach the exit", reversed_cfg.function_name, missing)
    return tree


class ControlDependenceGraph:
    """Edges A->B mean B executes or not depending on the branch taken at A."""

    def __init__(self, cfg: ControlFlowGraph, graph: nx.DiGraph):
        self.cfg = cfg
        self.function_name = cfg.function_name
        self.graph = graph
        self.entry = cfg.entry

    @property
    def blocks(self) -> Dict[int, BasicBlock]:
        return self.cfg.blocks

    def dependences(self, node: int) -> List[int]:
        """Blocks ``node`` is control dependent on."""
        return sorted(self.graph.predecessors(node))

    def dependents(self, node: int) -> List[int]:
        return sorted(self.graph.successors(node))

    def __repr__(self):
        return f"ControlDependenceGraph({self.function_name!r}, edges={self.graph.number_of_edges()})"


def control_dependence_graph(cfg: ControlFlowGraph) -> ControlDependenceGraph:
    """Derive the control dependence graph of a forward CFG."""
    if cfg.reversed:
        raise AnalysisError(f"{cfg.function_name}: control dependence needs a forward CFG")

    # The entry->exit edge makes the entry the controller of top-level code
    augmented = cfg.graph.copy()
    if not augmented.has_edge(cfg.entry, cfg.exit):
        augmented.add_edge(cfg.entry, cfg.exit, label=None)
    ipdom = _immediate_dominators(augmented.reverse(copy=True), cfg.exit)

    def reaches_exit(node):
        return node == cfg.exit or node in ipdom

    cdg = nx.DiGraph()
    cdg.add_nodes_from(n for n in cfg.graph.nodes if n != cfg.exit)
    for a, b, data in augmented.edges(data=True):
        if not (reaches_exit(a) and reaches_exit(b)):
            continue
        if _dominates(ipdom, b, a):
            continue
        stop = ipdom.get(a)
        runner = b
        while runner is not None and runner != stop:
            if runner != cfg.exit and not cdg.has_edge(a, runner):
                cdg.add_edge(a, runner, label=data.get("label"))
            runner = ipdom.get(runner)

    return ControlDependenceGraph(cfg, cdg)
