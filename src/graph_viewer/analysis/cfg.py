"""
Control flow graphs for C functions.

Blocks are built from libclang statement cursors. Every graph has a
synthetic ``entry`` and ``exit`` block; blocks that cannot be reached from
the entry are pruned once construction is finished.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import clang.cindex as clang
import networkx as nx

from ..errors import AnalysisError
from ..program import Function
from .ast_utils import K, children, cursor_text

logger = logging.getLogger(__name__)

STATEMENT_TEXT_LIMIT = 60


@dataclass
class BasicBlock:
    """A straight-line run of statements."""
    index: int
    kind: str = "block"  # entry, exit or block
    statements: List[str] = field(default_factory=list)
    label: Optional[str] = None  # C label that starts the block
    line: Optional[int] = None

    @property
    def name(self) -> str:
        if self.kind != "block":
            return self.kind
        return self.label or f"bb{self.index}"


class ControlFlowGraph:
    """Blocks of one function connected by their possible control transfers."""

    def __init__(self, function_name: str):
        self.function_name = function_name
        self.graph = nx.DiGraph()
        self.blocks: Dict[int, BasicBlock] = {}
        self.reversed = False
        self.entry = self.new_block("entry").index
        self.exit = self.new_block("exit").index

    def new_block(self, kind: str = "block", label: Optional[str] = None) -> BasicBlock:
        block = BasicBlock(index=len(self.blocks), kind=kind, label=label)
        while block.index in self.blocks:
            block.index += 1
        self.blocks[block.index] = block
        self.graph.add_node(block.index)
        return block

    def add_edge(self, src: int, dst: int, label: Optional[str] = None):
        if not self.graph.has_edge(src, dst):
            self.graph.add_edge(src, dst, label=label)

    def block(self, index: int) -> BasicBlock:
        return self.blocks[index]

    def successors(self, index: int) -> List[int]:
        return list(self.graph.successors(index))

    def predecessors(self, index: int) -> List[int]:
        return list(self.graph.predecessors(index))

    def edge_label(self, src: int, dst: int) -> Optional[str]:
        return self.graph.edges[src, dst].get("label")

    def __len__(self):
        return self.graph.number_of_nodes()

    def __repr__(self):
        return f"ControlFlowGraph({self.function_name!r}, blocks={len(self)})"


def reverse_cfg(cfg: ControlFlowGraph) -> ControlFlowGraph:
    """A copy of ``cfg`` with every edge flipped and entry/exit swapped."""
    rev = ControlFlowGraph.__new__(ControlFlowGraph)
    rev.function_name = cfg.function_name
    rev.graph = cfg.graph.reverse(copy=True)
    rev.blocks = cfg.blocks
    rev.reversed = not cfg.reversed
    rev.entry = cfg.exit
    rev.exit = cfg.entry
    return rev


@dataclass
class _SwitchContext:
    dispatch: int
    has_default: bool = False


class _CFGBuilder:
    """Walks a function body once, threading the current block through."""

    def __init__(self, function: Function):
        self.function = function
        self.cfg = ControlFlowGraph(function.name)
        self.break_targets: List[int] = []
        self.continue_targets: List[int] = []
        self.switches: List[_SwitchContext] = []
        self.labels: Dict[str, int] = {}

    def build(self) -> ControlFlowGraph:
        body = self.function.body()
        if body is None:
            raise AnalysisError(f"Function {self.function.name} has no body")

        start = self._new()
        self.cfg.add_edge(self.cfg.entry, start)
        end = self.visit(body, start)
        if end is not None:
            self.cfg.add_edge(end, self.cfg.exit)
        self._prune()
        return self.cfg

    # Helpers

    def _new(self, label: Optional[str] = None) -> int:
        return self.cfg.new_block(label=label).index

    def _ensure(self, current: Optional[int]) -> int:
        # Code after a jump gets a block with no predecessors; pruned later
        return current if current is not None else self._new()

    def _append(self, block: int, text: str, cursor: clang.Cursor):
        bb = self.cfg.block(block)
        bb.statements.append(text)
        if bb.line is None:
            bb.line = cursor.location.line

    def _reachable_or_none(self, block: int) -> Optional[int]:
        return block if self.cfg.graph.in_degree(block) > 0 else None

    def _label_block(self, name: str) -> int:
        if name not in self.labels:
            self.labels[name] = self._new(label=name)
        return self.labels[name]

    def _prune(self):
        graph = self.cfg.graph
        keep = nx.descendants(graph, self.cfg.entry) | {self.cfg.entry, self.cfg.exit}
        dead = [n for n in graph.nodes if n not in keep]
        graph.remove_nodes_from(dead)
        for n in dead:
            del self.cfg.blocks[n]
        if dead:
            logger.debug("%s: pruned %d unreachable block(s)", self.function.name, len(dead))

    # Statements

    def visit(self, stmt: clang.Cursor, current: Optional[int]) -> Optional[int]:
        """Add ``stmt`` after ``current``; return the block control continues in."""
        handler = getattr(self, f"_visit_{stmt.kind.name.lower()}", None)
        if handler is not None:
            return handler(stmt, current)
        current = self._ensure(current)
        self._append(current, cursor_text(stmt, STATEMENT_TEXT_LIMIT), stmt)
        return current

    def _visit_compound_stmt(self, stmt, current):
        for child in stmt.get_children():
            current = self.visit(child, current)
        return current

    def _visit_null_stmt(self, stmt, current):
        return current

    def _visit_if_stmt(self, stmt, current):
        kids = children(stmt)
        cond, then_stmt = kids[0], kids[1]
        else_stmt = kids[2] if len(kids) > 2 else None

        current = self._ensure(current)
        self._append(current, f"if ({cursor_text(cond, STATEMENT_TEXT_LIMIT)})", cond)

        then_block = self._new()
        self.cfg.add_edge(current, then_block, "true")
        then_end = self.visit(then_stmt, then_block)

        if else_stmt is not None:
            else_block = self._new()
            self.cfg.add_edge(current, else_block, "false")
            else_end = self.visit(else_stmt, else_block)
        else:
            else_end = None

        if then_end is None and else_end is None and else_stmt is not None:
            return None

        join = self._new()
        if then_end is not None:
            self.cfg.add_edge(then_end, join)
        if else_stmt is None:
            self.cfg.add_edge(current, join, "false")
        elif else_end is not None:
            self.cfg.add_edge(else_end, join)
        return join

    def _loop(self, body: clang.Cursor, body_block: int, brk: int, cont: int) -> Optional[int]:
        self.break_targets.append(brk)
        self.continue_targets.append(cont)
        try:
            return self.visit(body, body_block)
        finally:
            self.break_targets.pop()
            self.continue_targets.pop()

    def _visit_while_stmt(self, stmt, current):
        kids = children(stmt)
        cond, body = kids[-2], kids[-1]

        header = self._new()
        if current is not None:
            self.cfg.add_edge(current, header)
        self._append(header, f"while ({cursor_text(cond, STATEMENT_TEXT_LIMIT)})", cond)

        body_block = self._new()
        after = self._new()
        self.cfg.add_edge(header, body_block, "true")
        self.cfg.add_edge(header, after, "false")

        end = self._loop(body, body_block, after, header)
        if end is not None:
            self.cfg.add_edge(end, header)
        return after

    def _visit_do_stmt(self, stmt, current):
        kids = children(stmt)
        body, cond = kids[0], kids[-1]

        body_block = self._new()
        if current is not None:
            self.cfg.add_edge(current, body_block)
        cond_block = self._new()
        after = self._new()

        end = self._loop(body, body_block, after, cond_block)
        if end is not None:
            self.cfg.add_edge(end, cond_block)

        self._append(cond_block, f"do-while ({cursor_text(cond, STATEMENT_TEXT_LIMIT)})", cond)
        self.cfg.add_edge(cond_block, body_block, "true")
        self.cfg.add_edge(cond_block, after, "false")
        return after

    def _for_parts(self, stmt):
        """Split a for statement into (init, cond, inc, body); absent parts are None."""
        kids = children(stmt)
        body, parts = kids[-1], kids[:-1]

        semis = []
        depth = 0
        for tok in list(stmt.get_tokens())[1:]:
            if tok.spelling == '(':
                depth += 1
            elif tok.spelling == ')':
                depth -= 1
                if depth == 0:
                    break
            elif tok.spelling == ';' and depth == 1:
                semis.append(tok.extent.start.offset)

        if len(semis) != 2:
            if len(parts) == 3:
                return parts[0], parts[1], parts[2], body
            raise AnalysisError(
                f"{self.function.name}: cannot split for statement at line {stmt.location.line}"
            )

        init = cond = inc = None
        for part in parts:
            start = part.extent.start.offset
            if start < semis[0]:
                init = part
            elif start < semis[1]:
                cond = part
            else:
                inc = part
        return init, cond, inc, body

    def _visit_for_stmt(self, stmt, current):
        init, cond, inc, body = self._for_parts(stmt)

        if init is not None:
            current = self.visit(init, current)

        header = self._new()
        if current is not None:
            self.cfg.add_edge(current, header)

        body_block = self._new()
        after = self._new()
        if cond is not None:
            self._append(header, f"for ({cursor_text(cond, STATEMENT_TEXT_LIMIT)})", cond)
            self.cfg.add_edge(header, body_block, "true")
            self.cfg.add_edge(header, after, "false")
        else:
            self.cfg.add_edge(header, body_block)

        step = self._new()
        if inc is not None:
            self._append(step, cursor_text(inc, STATEMENT_TEXT_LIMIT), inc)

        end = self._loop(body, body_block, after, step)
        if end is not None:
            self.cfg.add_edge(end, step)
        self.cfg.add_edge(step, header)
        return self._reachable_or_none(after)

    def _visit_switch_stmt(self, stmt, current):
        kids = children(stmt)
        cond, body = kids[-2], kids[-1]

        current = self._ensure(current)
        self._append(current, f"switch ({cursor_text(cond, STATEMENT_TEXT_LIMIT)})", cond)

        after = self._new()
        context = _SwitchContext(dispatch=current)
        self.switches.append(context)
        self.break_targets.append(after)
        try:
            end = self.visit(body, None)
        finally:
            self.break_targets.pop()
            self.switches.pop()

        if end is not None:
            self.cfg.add_edge(end, after)
        if not context.has_default:
            self.cfg.add_edge(current, after, "default")
        return self._reachable_or_none(after)

    def _case_block(self, stmt, current, label: str) -> int:
        if not self.switches:
            raise AnalysisError(f"{self.function.name}: '{label}' outside of a switch at line {stmt.location.line}")
        block = self._new()
        self.cfg.add_edge(self.switches[-1].dispatch, block, label)
        if current is not None:
            self.cfg.add_edge(current, block)
        return block

    def _visit_case_stmt(self, stmt, current):
        kids = children(stmt)
        value, sub = kids[0], kids[-1]
        block = self._case_block(stmt, current, f"case {cursor_text(value, STATEMENT_TEXT_LIMIT)}")
        return self.visit(sub, block)

    def _visit_default_stmt(self, stmt, current):
        block = self._case_block(stmt, current, "default")
        self.switches[-1].has_default = True
        return self.visit(children(stmt)[-1], block)

    def _jump(self, stmt, current, targets: List[int], what: str):
        if not targets:
            raise AnalysisError(f"{self.function.name}: '{what}' outside of a loop at line {stmt.location.line}")
        if current is not None:
            self.cfg.add_edge(current, targets[-1])
        return None

    def _visit_break_stmt(self, stmt, current):
        return self._jump(stmt, current, self.break_targets, "break")

    def _visit_continue_stmt(self, stmt, current):
        return self._jump(stmt, current, self.continue_targets, "continue")

    def _visit_return_stmt(self, stmt, current):
        current = self._ensure(current)
        self._append(current, cursor_text(stmt, STATEMENT_TEXT_LIMIT), stmt)
        self.cfg.add_edge(current, self.cfg.exit)
        return None

    def _visit_label_stmt(self, stmt, current):
        block = self._label_block(stmt.spelling)
        if current is not None:
            self.cfg.add_edge(current, block)
        kids = children(stmt)
        return self.visit(kids[-1], block) if kids else block

    def _visit_goto_stmt(self, stmt, current):
        current = self._ensure(current)
        self._append(current, cursor_text(stmt, STATEMENT_TEXT_LIMIT), stmt)
        refs = [c for c in stmt.get_children() if c.kind == K.LABEL_REF]
        if not refs:
            raise AnalysisError(f"{self.function.name}: unresolved goto at line {stmt.location.line}")
        self.cfg.add_edge(current, self._label_block(refs[0].spelling))
        return None


def make_cfg(function: Function) -> ControlFlowGraph:
    """Build the control flow graph of a defined function."""
    cfg = _CFGBuilder(function).build()
    logger.debug("CFG for %s: %d blocks, %d edges",
                 function.name, len(cfg), cfg.graph.number_of_edges())
    return cfg
