"""Fixed mapping from graph type to its construction adapter and converter."""

from dataclasses import dataclass
from typing import Callable, Dict

from . import adapters, representation
from .adapters import AnalysisSettings, NamedGraphs
from .config import GraphType
from .program import Program
from .render import Converter


@dataclass(frozen=True)
class GraphKind:
    build: Callable[[Program, AnalysisSettings], NamedGraphs]
    convert: Converter


DISPATCH: Dict[GraphType, GraphKind] = {
    GraphType.CFG: GraphKind(adapters.make_cfgs, representation.cfg_repr),
    GraphType.CDG: GraphKind(adapters.make_cdgs, representation.cdg_repr),
    GraphType.CG: GraphKind(adapters.make_call_graph_entries, representation.cg_repr),
    GraphType.DOMTREE: GraphKind(adapters.make_dominator_trees, representation.domtree_repr),
    GraphType.POSTDOMTREE: GraphKind(adapters.make_postdominator_trees, representation.postdomtree_repr),
    GraphType.ESCAPE: GraphKind(adapters.make_escape_graphs, representation.use_graph_repr),
}

_missing = set(GraphType) - set(DISPATCH)
if _missing:
    raise RuntimeError(f"No graph kind registered for {sorted(t.value for t in _missing)}")


def select_graph_kind(graph_type: GraphType) -> GraphKind:
    return DISPATCH[graph_type]
