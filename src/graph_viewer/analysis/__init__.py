"""Graph analyses over a loaded C program."""

from .callgraph import CallGraph, call_graph_scc_traversal, make_call_graph, scc_traversal_order
from .cfg import BasicBlock, ControlFlowGraph, make_cfg, reverse_cfg
from .dominance import (
    ControlDependenceGraph, DominatorTree, PostdominatorTree,
    control_dependence_graph, dominator_tree, postdominator_tree,
)
from .escape import (
    EscapeResult, EscapeUseGraph, FunctionEscapes, always_escape,
    escape_use_graphs, run_escape_analysis,
)
from .pointsto import PointsToAnalysis, TrivialFunctionPointsTo, run_points_to_analysis

__all__ = [
    "BasicBlock", "CallGraph", "ControlDependenceGraph", "ControlFlowGraph",
    "DominatorTree", "EscapeResult", "EscapeUseGraph", "FunctionEscapes",
    "PointsToAnalysis", "PostdominatorTree", "TrivialFunctionPointsTo",
    "always_escape", "call_graph_scc_traversal", "control_dependence_graph",
    "dominator_tree", "escape_use_graphs", "make_call_graph", "make_cfg",
    "postdominator_tree", "reverse_cfg", "run_escape_analysis",
    "run_points_to_analysis", "scc_traversal_order",
]
