"""
Error types for the graph viewer.

Every failure the tool reports to the user is one of these. The CLI catches
``GraphViewError``, prints the message followed by the usage text and exits
with a non-zero status.
"""


class GraphViewError(Exception):
    """Base class for all errors reported by the graph viewer."""


class ConfigurationError(GraphViewError):
    """Malformed or conflicting command-line input, or an unusable destination."""


class LoadError(GraphViewError):
    """The input file could not be turned into a program representation."""


class AnalysisError(GraphViewError):
    """A graph construction adapter could not complete."""


class RenderError(GraphViewError):
    """The rendering backend or the output destination failed."""
