"""
Renderable graph representation.

Each analysis result is turned into a ``RenderableGraph``: a plain
``networkx.DiGraph`` whose nodes and edges carry display attributes. The
render driver never looks at analysis objects, only at these attributes.

Node attributes: ``label``, ``shape`` (box, ellipse or diamond), ``color``
and ``layer`` (depth from the root, used by layered layouts). Edge
attributes: ``label``, ``style`` (solid or dashed) and ``color``.
"""

from collections import deque
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, List, Optional

import networkx as nx

from .analysis.callgraph import CallGraph
from .analysis.cfg import BasicBlock, ControlFlowGraph
from .analysis.dominance import ControlDependenceGraph, DominatorTree
from .analysis.escape import EscapeUseGraph

BLOCK_COLOR = "#4ecdc4"
TERMINAL_COLOR = "#f7dc6f"
EXTERNAL_COLOR = "#bdc3c7"
ESCAPE_COLOR = "#e74c3c"
EDGE_COLOR = "#7f8c8d"

MAX_BLOCK_LINES = 6


@dataclass
class RenderableGraph:
    """A graph ready for drawing; ``layered`` asks for a top-down layout."""
    title: str
    graph: nx.DiGraph
    layered: bool = True

    def __len__(self):
        return self.graph.number_of_nodes()


def _assign_layers(graph: nx.DiGraph, roots: Iterable[Hashable]):
    """Breadth-first depth from ``roots``; nodes they cannot reach go below the rest."""
    depth: Dict[Hashable, int] = {}
    queue = deque()
    for root in roots:
        if root in graph and root not in depth:
            depth[root] = 0
            queue.append(root)
    while queue:
        node = queue.popleft()
        for succ in graph.successors(node):
            if succ not in depth:
                depth[succ] = depth[node] + 1
                queue.append(succ)

    bottom = max(depth.values(), default=-1) + 1
    for node in graph.nodes:
        graph.nodes[node]["layer"] = depth.get(node, bottom)


def _block_label(block: BasicBlock) -> str:
    lines = [block.name]
    statements = block.statements
    if len(statements) > MAX_BLOCK_LINES:
        statements = statements[:MAX_BLOCK_LINES - 1] + ["..."]
    lines.extend(statements)
    return "\n".join(lines)


def _add_block(graph: nx.DiGraph, block: BasicBlock, short: bool = False):
    terminal = block.kind != "block"
    graph.add_node(
        block.index,
        label=block.name if short else _block_label(block),
        shape="ellipse" if terminal else "box",
        color=TERMINAL_COLOR if terminal else BLOCK_COLOR,
    )


def _add_edge(graph: nx.DiGraph, src, dst, label: Optional[str] = None,
              style: str = "solid", color: str = EDGE_COLOR):
    graph.add_edge(src, dst, label=label or "", style=style, color=color)


def cfg_repr(title: str, cfg: ControlFlowGraph) -> RenderableGraph:
    graph = nx.DiGraph()
    for index in sorted(cfg.graph.nodes):
        _add_block(graph, cfg.block(index))
    for src, dst, data in cfg.graph.edges(data=True):
        _add_edge(graph, src, dst, data.get("label"))
    _assign_layers(graph, [cfg.entry])
    return RenderableGraph(title, graph)


def cdg_repr(title: str, cdg: ControlDependenceGraph) -> RenderableGraph:
    graph = nx.DiGraph()
    for index in sorted(cdg.graph.nodes):
        _add_block(graph, cdg.blocks[index])
    for src, dst, data in cdg.graph.edges(data=True):
        _add_edge(graph, src, dst, data.get("label"))
    _assign_layers(graph, [cdg.entry])
    return RenderableGraph(title, graph)


def _tree_repr(title: str, tree: DominatorTree) -> RenderableGraph:
    graph = nx.DiGraph()
    for index in sorted(tree.tree.nodes):
        _add_block(graph, tree.blocks[index], short=True)
    for parent, child in tree.tree.edges:
        _add_edge(graph, parent, child)
    _assign_layers(graph, [tree.root])
    return RenderableGraph(title, graph)


def domtree_repr(title: str, tree: DominatorTree) -> RenderableGraph:
    return _tree_repr(title, tree)


def postdomtree_repr(title: str, tree: DominatorTree) -> RenderableGraph:
    """Post-dominator trees are drawn with the exit block at the top."""
    return _tree_repr(title, tree)


def cg_repr(title: str, cg: CallGraph) -> RenderableGraph:
    graph = nx.DiGraph()
    for name, data in cg.graph.nodes(data=True):
        defined = data.get("defined", False)
        graph.add_node(
            name,
            label=name,
            shape="box" if defined else "ellipse",
            color=BLOCK_COLOR if defined else EXTERNAL_COLOR,
        )
    for caller, callee, data in cg.graph.edges(data=True):
        indirect = data.get("kind") == "indirect"
        calls = data.get("calls", 1)
        _add_edge(graph, caller, callee,
                  label=f"x{calls}" if calls > 1 else None,
                  style="dashed" if indirect else "solid")

    # Functions nobody calls sit on top; fully recursive programs start at the first one
    roots = [n for n in graph.nodes if graph.in_degree(n) == 0]
    _assign_layers(graph, roots or list(graph.nodes)[:1])
    return RenderableGraph(title, graph, layered=False)


def use_graph_repr(title: str, use_graph: EscapeUseGraph) -> RenderableGraph:
    graph = nx.DiGraph()
    for node, data in use_graph.graph.nodes(data=True):
        escapes = data["escapes"]
        if data["kind"] == "value":
            label = f"{data['name']}\n({data['role']})"
            shape = "ellipse"
        else:
            label = f"{data['use']} @{data['line']}\n{data['text']}"
            shape = "box"
        graph.add_node(node, label=label, shape=shape,
                       color=ESCAPE_COLOR if escapes else BLOCK_COLOR)
    for src, dst, data in use_graph.graph.edges(data=True):
        _add_edge(graph, src, dst,
                  label=data["kind"] if data["kind"] == "copy" else None,
                  style="dashed" if data["kind"] == "copy" else "solid")

    roots = [n for n, d in use_graph.graph.nodes(data=True)
             if d["kind"] == "value" and use_graph.graph.in_degree(n) == 0]
    _assign_layers(graph, roots)
    return RenderableGraph(title, graph)


def node_order(renderable: RenderableGraph) -> List[Hashable]:
    """Nodes sorted by layer, then insertion order."""
    graph = renderable.graph
    position = {n: i for i, n in enumerate(graph.nodes)}
    return sorted(graph.nodes, key=lambda n: (graph.nodes[n].get("layer", 0), position[n]))
