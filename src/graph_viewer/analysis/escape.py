"""
Inter-procedural escape analysis.

A value escapes its function when it is returned, stored into global or
non-local memory, or handed to a callee whose corresponding parameter
escapes. Tracked values are pointer-typed parameters and locals plus stack
memory: local arrays, address-taken locals and, without ``-mem2reg``, every
local variable. Local pointer copies (``q = p``) are followed, so ``p``
escapes when ``q`` does.

Functions are analysed bottom-up over the call graph SCCs; each function
leaves a summary (the parameter positions that escape) that its callers use.
Calls into external functions are decided by a policy callback.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

import clang.cindex as clang
import networkx as nx

from ..errors import AnalysisError
from ..program import Function, Program
from .ast_utils import (
    FLOW_THROUGH, K, children, cursor_text, decl_key, direct_callee, is_array,
    is_global_variable, is_local_variable, is_pointer_like, operator_spelling,
    strip, walk_with_parents,
)
from .callgraph import CallGraph, call_graph_scc_traversal
from .pointsto import PointsToAnalysis

logger = logging.getLogger(__name__)

USE_TEXT_LIMIT = 48

ExternalPolicy = Callable[[str, int], bool]


def always_escape(function_name: str, position: int) -> bool:
    """Default policy: every argument of an external function escapes."""
    return True


ValueKey = Tuple[str, int, str]


@dataclass(frozen=True)
class TrackedValue:
    """A pointer value or a piece of stack memory inside one function."""
    key: ValueKey
    name: str
    role: str  # parameter, local or memory
    position: Optional[int] = None


@dataclass(frozen=True)
class UseSite:
    value: ValueKey
    kind: str  # return, global, store, argument, local-store, copy, use
    text: str
    line: int
    escapes: bool
    target: Optional[str] = None


@dataclass
class FunctionEscapes:
    """Everything the analysis learned about one function."""
    function: str
    values: Dict[ValueKey, TrackedValue] = field(default_factory=dict)
    uses: List[UseSite] = field(default_factory=list)
    copies: nx.DiGraph = field(default_factory=nx.DiGraph)
    escaping: FrozenSet[ValueKey] = frozenset()

    def escaping_parameters(self) -> FrozenSet[int]:
        return frozenset(
            v.position for k, v in self.values.items()
            if v.role == "parameter" and k in self.escaping
        )

    def escaping_names(self) -> List[str]:
        return sorted(self.values[k].name for k in self.escaping)

    def use_graph(self) -> "EscapeUseGraph":
        graph = nx.DiGraph()
        ids = {}
        for n, (key, value) in enumerate(self.values.items()):
            ids[key] = f"v{n}"
            graph.add_node(ids[key], kind="value", name=value.name, role=value.role,
                           escapes=key in self.escaping)
        for src, dst in self.copies.edges:
            graph.add_edge(ids[src], ids[dst], kind="copy")
        for n, use in enumerate(self.uses):
            node = f"u{n}"
            graph.add_node(node, kind="use", use=use.kind, text=use.text, line=use.line,
                           escapes=use.escapes)
            graph.add_edge(ids[use.value], node, kind=use.kind)
        return EscapeUseGraph(self.function, graph)


@dataclass
class EscapeUseGraph:
    """Tracked values of a function connected to the places they are used."""
    function_name: str
    graph: nx.DiGraph

    def escaping_values(self) -> List[str]:
        return sorted(d["name"] for _, d in self.graph.nodes(data=True)
                      if d["kind"] == "value" and d["escapes"])


@dataclass(frozen=True)
class EscapeResult:
    """Aggregate result: per-function escape information, keyed by name."""
    functions: Dict[str, FunctionEscapes] = field(default_factory=dict)

    def summary(self, name: str) -> Optional[FrozenSet[int]]:
        info = self.functions.get(name)
        return info.escaping_parameters() if info is not None else None

    def updated(self, info: FunctionEscapes) -> "EscapeResult":
        functions = dict(self.functions)
        functions[info.function] = info
        return replace(self, functions=functions)


class _FunctionAnalyzer:
    """Collects tracked values and classifies every use of them."""

    def __init__(self, function: Function, program: Program, points_to: PointsToAnalysis,
                 policy: ExternalPolicy, result: EscapeResult):
        self.function = function
        self.program = program
        self.points_to = points_to
        self.policy = policy
        self.result = result
        self.info = FunctionEscapes(function.name)

    def run(self) -> FunctionEscapes:
        body = self.function.body()
        if body is None:
            raise AnalysisError(f"Function {self.function.name} has no body")

        self._collect_values(body)
        for node, parents in walk_with_parents(body):
            if node.kind == K.DECL_REF_EXPR:
                self._reference(node, parents)

        self.info.escaping = self._propagate()
        return self.info

    # Values

    def _track(self, decl: clang.Cursor, flavour: str, role: str, name: str,
               position: Optional[int] = None):
        key = decl_key(decl) + (flavour,)
        self.info.values.setdefault(key, TrackedValue(key, name, role, position))
        self.info.copies.add_node(key)

    def _collect_values(self, body: clang.Cursor):
        for position, parm in enumerate(self.function.cursor.get_arguments()):
            if is_pointer_like(parm.type):
                self._track(parm, "value", "parameter", parm.spelling, position)

        address_taken = set()
        locals_ = []
        for node in body.walk_preorder():
            if node.kind == K.VAR_DECL and is_local_variable(node):
                locals_.append(node)
            elif node.kind == K.UNARY_OPERATOR and operator_spelling(node) == '&':
                target = _memory_base(children(node)[0])
                if target is not None:
                    address_taken.add(decl_key(target))

        for parm in self.function.cursor.get_arguments():
            if decl_key(parm) in address_taken:
                self._track(parm, "addr", "memory", f"&{parm.spelling}")

        for var in locals_:
            if is_pointer_like(var.type) and not is_array(var.type):
                self._track(var, "value", "local", var.spelling)
            if is_array(var.type):
                self._track(var, "addr", "memory", var.spelling)
            elif decl_key(var) in address_taken or not self.program.promotes_registers:
                self._track(var, "addr", "memory", f"&{var.spelling}")

    def _key(self, decl: clang.Cursor, flavour: str) -> Optional[ValueKey]:
        key = decl_key(decl) + (flavour,)
        return key if key in self.info.values else None

    # Uses

    def _reference(self, ref: clang.Cursor, parents: Tuple[clang.Cursor, ...]):
        decl = ref.referenced
        if decl is None or decl.kind not in (K.VAR_DECL, K.PARM_DECL):
            return

        parent_index = len(parents) - 1
        while parent_index >= 0 and parents[parent_index].kind in FLOW_THROUGH:
            parent_index -= 1
        parent = parents[parent_index] if parent_index >= 0 else None

        addressed = self._address_of_part(ref, parents)
        if addressed is not None:
            key = self._key(decl, "addr")
            start = addressed
        elif is_array(decl.type):
            key = self._key(decl, "addr")
            start = len(parents)
        elif (parent is not None and parent.kind == K.UNARY_OPERATOR
              and operator_spelling(parent) == '&'):
            key = self._key(decl, "addr")
            start = parent_index
        else:
            key = self._key(decl, "value")
            start = len(parents)
            if key is None:
                # Scalar kept in memory: loads and stores are plain uses
                memory = self._key(decl, "addr")
                if memory is not None and not self._is_assignment_target(ref, parents):
                    self._record(memory, "use", parent or ref, escapes=False)
                return

        if key is None or self._is_assignment_target(ref, parents):
            return

        flow = parents[start] if start < len(parents) else ref
        self._classify(key, flow, parents[:start])

    def _address_of_part(self, ref: clang.Cursor, parents) -> Optional[int]:
        """Index of a unary `&` taken on an element or member of the local `ref` names."""
        if not is_local_variable(ref.referenced):
            return None
        child = ref
        through_access = False
        for index in range(len(parents) - 1, -1, -1):
            parent = parents[index]
            if parent.kind in (K.ARRAY_SUBSCRIPT_EXPR, K.MEMBER_REF_EXPR):
                if children(parent)[0] != child or _memory_base(parent) is None:
                    return None
                through_access = True
            elif parent.kind == K.UNARY_OPERATOR and operator_spelling(parent) == '&':
                return index if through_access else None
            elif parent.kind not in FLOW_THROUGH:
                return None
            child = parent
        return None

    def _is_assignment_target(self, ref: clang.Cursor, parents) -> bool:
        child = ref
        for parent in reversed(parents):
            if parent.kind in FLOW_THROUGH:
                child = parent
                continue
            if parent.kind == K.BINARY_OPERATOR and operator_spelling(parent) == '=':
                return children(parent)[0] == child
            return False
        return False

    def _classify(self, key: ValueKey, flow: clang.Cursor, parents: Tuple[clang.Cursor, ...]):
        child = flow
        aggregate = False
        for parent in reversed(parents):
            kind = parent.kind
            if kind in FLOW_THROUGH:
                child = parent
                continue

            if kind == K.CONDITIONAL_OPERATOR and children(parent)[0] != child:
                child = parent
                continue

            if kind in (K.INIT_LIST_EXPR, K.COMPOUND_LITERAL_EXPR):
                aggregate = True
                child = parent
                continue

            if kind == K.BINARY_OPERATOR:
                op = operator_spelling(parent)
                kids = children(parent)
                if op == '=' and kids[1] == child:
                    self._store(key, parent, kids[0])
                    return
                if op in ('+', '-') and is_pointer_like(parent.type):
                    child = parent
                    continue
                if op == ',' and kids[1] == child:
                    child = parent
                    continue
                self._record(key, "use", parent, escapes=False)
                return

            if kind == K.RETURN_STMT:
                self._record(key, "return", parent, escapes=True)
                return

            if kind == K.CALL_EXPR:
                self._argument(key, parent, child)
                return

            if kind == K.VAR_DECL:
                self._initialize(key, parent, aggregate)
                return

            self._record(key, "use", parent, escapes=False)
            return

        self._record(key, "use", flow, escapes=False)

    def _record(self, key: ValueKey, kind: str, cursor: clang.Cursor, escapes: bool,
                target: Optional[str] = None):
        self.info.uses.append(UseSite(
            value=key,
            kind=kind,
            text=cursor_text(cursor, USE_TEXT_LIMIT),
            line=cursor.location.line,
            escapes=escapes,
            target=target,
        ))

    def _local_memory_store(self, key: ValueKey, site: clang.Cursor, base: Optional[clang.Cursor]):
        if base is not None and is_local_variable(base) and self.program.basic_alias_analysis:
            self._record(key, "local-store", site, escapes=False, target=base.spelling)
        else:
            self._record(key, "store", site, escapes=True)

    def _copy(self, key: ValueKey, site: clang.Cursor, dest: clang.Cursor):
        dest_key = self._key(dest, "value")
        if dest_key is None:
            self._record(key, "use", site, escapes=False)
            return
        self.info.copies.add_edge(key, dest_key)
        self._record(key, "copy", site, escapes=False, target=dest.spelling)

    def _store(self, key: ValueKey, site: clang.Cursor, lhs: clang.Cursor):
        target = strip(lhs)
        if target.kind == K.DECL_REF_EXPR and target.referenced is not None:
            decl = target.referenced
            if is_global_variable(decl):
                self._record(key, "global", site, escapes=True, target=decl.spelling)
            else:
                self._copy(key, site, decl)
            return
        self._local_memory_store(key, site, _memory_base(target))

    def _initialize(self, key: ValueKey, var: clang.Cursor, aggregate: bool):
        if is_global_variable(var):
            self._record(key, "global", var, escapes=True, target=var.spelling)
        elif aggregate or not is_pointer_like(var.type):
            self._local_memory_store(key, var, var)
        else:
            self._copy(key, var, var)

    def _argument(self, key: ValueKey, call: clang.Cursor, child: clang.Cursor):
        position = next((i for i, arg in enumerate(call.get_arguments()) if arg == child), None)
        if position is None:
            # The value is the callee expression itself
            self._record(key, "use", call, escapes=False)
            return

        callee = direct_callee(call)
        targets = [callee] if callee is not None else self.points_to.function_targets(call)
        if targets:
            escapes = any(self._parameter_escapes(t, position) for t in targets)
        else:
            escapes = True
        self._record(key, "argument", call, escapes=escapes,
                     target=callee if callee is not None else "<indirect>")

    def _parameter_escapes(self, name: str, position: int) -> bool:
        function = self.program.function(name)
        if function is None or not function.is_defined:
            return bool(self.policy(name, position))
        if position >= len(function.parameters):
            return True
        summary = self.result.summary(name)
        if summary is None:
            # Same SCC, not analysed yet; the fixpoint revisits it
            return False
        return position in summary

    def _propagate(self) -> FrozenSet[ValueKey]:
        direct = {u.value for u in self.info.uses if u.escapes}
        escaping = set(direct)
        for key in self.info.values:
            if key in escaping:
                continue
            if nx.descendants(self.info.copies, key) & direct:
                escaping.add(key)
        return frozenset(escaping)


def _memory_base(target: clang.Cursor) -> Optional[clang.Cursor]:
    """The local variable a store lands in, or None for memory behind a pointer."""
    while True:
        target = strip(target)
        if target.kind == K.DECL_REF_EXPR:
            return target.referenced
        kids = children(target)
        if not kids:
            return None
        if target.kind == K.MEMBER_REF_EXPR:
            base = kids[0]
            if is_pointer_like(base.type) and not is_array(strip(base).type):
                return None
            target = base
        elif target.kind == K.ARRAY_SUBSCRIPT_EXPR:
            base = strip(kids[0])
            if base.kind == K.DECL_REF_EXPR and base.referenced is not None and is_array(base.referenced.type):
                return base.referenced
            if base.kind in (K.MEMBER_REF_EXPR, K.ARRAY_SUBSCRIPT_EXPR) and is_array(base.type):
                target = base
                continue
            return None
        else:
            return None


def escape_analysis(program: Program, points_to: PointsToAnalysis,
                    policy: ExternalPolicy = always_escape
                    ) -> Callable[[List[str], EscapeResult], EscapeResult]:
    """
    Analysis step for ``call_graph_scc_traversal``.

    Each SCC is iterated until the parameter summaries of its members stop
    changing; summaries only grow, so this terminates.
    """
    def analyse(component: List[str], result: EscapeResult) -> EscapeResult:
        changed = True
        while changed:
            changed = False
            for name in component:
                function = program.function(name)
                if function is None or not function.is_defined:
                    raise AnalysisError(f"Cannot resolve function {name} in the call graph")
                before = result.summary(name)
                info = _FunctionAnalyzer(function, program, points_to, policy, result).run()
                result = result.updated(info)
                if before != info.escaping_parameters():
                    changed = True
        return result

    return analyse


def run_escape_analysis(program: Program, cg: CallGraph, points_to: PointsToAnalysis,
                        policy: ExternalPolicy = always_escape) -> EscapeResult:
    result = call_graph_scc_traversal(cg, escape_analysis(program, points_to, policy), EscapeResult())
    logger.debug("Escape analysis covered %d function(s)", len(result.functions))
    return result


def escape_use_graphs(result: EscapeResult, order: List[str]) -> List[Tuple[str, EscapeUseGraph]]:
    """Use graphs of the functions in ``order`` that track at least one value."""
    graphs = []
    for name in order:
        info = result.functions.get(name)
        if info is not None and info.values:
            graphs.append((name, info.use_graph()))
    return graphs
