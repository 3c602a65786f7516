"""
Points-to analyses used to resolve indirect calls.

Strategies are classes constructed from a ``Program``; the call graph and the
escape analysis only ask them which functions an indirect call may reach.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, List

import clang.cindex as clang

from ..program import Program
from .ast_utils import callee_function_type

logger = logging.getLogger(__name__)


class PointsToAnalysis:
    """Base class for pluggable points-to strategies."""

    name = "abstract"

    def __init__(self, program: Program):
        self.program = program

    def function_targets(self, call: clang.Cursor) -> List[str]:
        """Names of the functions an indirect call expression may invoke."""
        raise NotImplementedError


class TrivialFunctionPointsTo(PointsToAnalysis):
    """
    A function pointer may point to any function of the matching type.

    Conservative and cheap: no flow of pointer values is tracked at all.
    """

    name = "trivial-function"

    def __init__(self, program: Program):
        super().__init__(program)
        self._by_type: Dict[str, List[str]] = defaultdict(list)
        for function in program.functions():
            self._by_type[function.type_spelling].append(function.name)

    def function_targets(self, call: clang.Cursor) -> List[str]:
        ftype = callee_function_type(call)
        if ftype is None:
            logger.debug("No function type for call at line %d", call.location.line)
            return []
        return list(self._by_type.get(ftype, []))


PointsToStrategy = Callable[[Program], PointsToAnalysis]


def run_points_to_analysis(program: Program,
                           strategy: PointsToStrategy = TrivialFunctionPointsTo) -> PointsToAnalysis:
    analysis = strategy(program)
    logger.debug("Points-to analysis: %s", analysis.name)
    return analysis
