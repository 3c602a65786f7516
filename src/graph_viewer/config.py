"""
Configuration for a single view-graph invocation.

Command-line values are resolved into an immutable ``Configuration`` here so
that the CLI layer stays a thin Typer wrapper. Environment settings (location
of the libclang library, extra compiler arguments) come from the process
environment or a ``.env`` file.
"""

import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError


HTML_MARKER = "Html"


class GraphType(str, Enum):
    """The graphs the tool knows how to build."""
    CFG = "Cfg"
    CDG = "Cdg"
    CG = "Cg"
    DOMTREE = "Domtree"
    POSTDOMTREE = "Postdomtree"
    ESCAPE = "Escape"


class CanvasBackend(str, Enum):
    """Interactive windowing backends, mapped onto matplotlib GUI backends."""
    GTK = "Gtk"
    XLIB = "Xlib"
    QT = "Qt"

    @property
    def matplotlib_backend(self) -> str:
        return _CANVAS_BACKENDS[self]


_CANVAS_BACKENDS = {
    CanvasBackend.GTK: "GTK3Agg",
    CanvasBackend.XLIB: "TkAgg",
    CanvasBackend.QT: "QtAgg",
}


class FileEncoding(str, Enum):
    """File encodings the renderer can write."""
    XDOT = "XDot"
    DOT = "Dot"
    EPS = "Eps"
    JPEG = "Jpeg"
    PDF = "Pdf"
    PNG = "Png"
    PS = "Ps"
    PS2 = "Ps2"
    SVG = "Svg"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def is_graphviz(self) -> bool:
        return self in (FileEncoding.DOT, FileEncoding.XDOT)


_EXTENSIONS = {
    FileEncoding.XDOT: "xdot",
    FileEncoding.DOT: "dot",
    FileEncoding.EPS: "eps",
    FileEncoding.JPEG: "jpg",
    FileEncoding.PDF: "pdf",
    FileEncoding.PNG: "png",
    FileEncoding.PS: "ps",
    FileEncoding.PS2: "ps",
    FileEncoding.SVG: "svg",
}


@dataclass(frozen=True)
class CanvasOutput:
    backend: CanvasBackend = CanvasBackend.GTK


@dataclass(frozen=True)
class FileOutput:
    encoding: FileEncoding


@dataclass(frozen=True)
class HtmlOutput:
    pass


OutputFormat = Union[CanvasOutput, FileOutput, HtmlOutput]

DEFAULT_OUTPUT_FORMAT = CanvasOutput(CanvasBackend.GTK)


@dataclass(frozen=True)
class Configuration:
    """Validated settings for one run; never modified after resolution."""
    input_file: Path
    graph_type: GraphType
    output_format: OutputFormat = DEFAULT_OUTPUT_FORMAT
    output: Optional[Path] = None
    output_is_directory: bool = False
    verbose: bool = False


@dataclass(frozen=True)
class EnvironmentSettings:
    """Settings read from the environment (and ``.env``)."""
    libclang_path: Optional[str] = None
    clang_args: List[str] = field(default_factory=list)


def parse_graph_type(text: str) -> GraphType:
    """Match ``text`` exactly (case-sensitive) against the graph type names."""
    try:
        return GraphType(text)
    except ValueError:
        raise ConfigurationError(f"Unsupported graph type: {text}") from None


def parse_output_format(text: str) -> OutputFormat:
    """
    Resolve a ``--format`` value.

    The Html marker wins, then interactive backends, then file encodings.
    """
    if text == HTML_MARKER:
        return HtmlOutput()
    try:
        return CanvasOutput(CanvasBackend(text))
    except ValueError:
        pass
    try:
        return FileOutput(FileEncoding(text))
    except ValueError:
        raise ConfigurationError(f"Unrecognized output format: {text}") from None


def resolve_configuration(
    inputs: Optional[Sequence[Path]],
    outputs: Optional[Sequence[Union[str, Path]]],
    graph_type: Optional[str],
    output_format: Optional[str],
    verbose: bool = False,
) -> Configuration:
    """
    Build a ``Configuration`` from raw command-line values.

    Flag errors are reported first (duplicate input, duplicate output, bad
    type, bad format), then missing required values.
    """
    inputs = list(inputs or [])
    outputs = list(outputs or [])

    if len(inputs) > 1:
        raise ConfigurationError("Only one input file is allowed")
    if len(outputs) > 1:
        raise ConfigurationError("Only one output file is allowed")

    gtype = parse_graph_type(graph_type) if graph_type is not None else None
    fmt = parse_output_format(output_format) if output_format is not None else DEFAULT_OUTPUT_FORMAT

    if not inputs:
        raise ConfigurationError("Input file not specified")
    if gtype is None:
        raise ConfigurationError("No graph type specified")

    raw_output = str(outputs[0]) if outputs else None
    if isinstance(fmt, FileOutput) and not raw_output:
        raise ConfigurationError(
            f"File output requires an output destination (--output) for format {fmt.encoding.value}"
        )

    output = Path(raw_output) if raw_output else None
    # Path() drops a trailing separator, so remember it here
    as_directory = bool(raw_output) and raw_output.endswith(("/", os.sep))

    return Configuration(
        input_file=Path(inputs[0]),
        graph_type=gtype,
        output_format=fmt,
        output=output,
        output_is_directory=as_directory,
        verbose=verbose,
    )


def load_environment(dotenv_path: Optional[Path] = None) -> EnvironmentSettings:
    """Read ``VIEW_GRAPH_*`` settings, loading ``.env`` first if present."""
    load_dotenv(dotenv_path or find_dotenv(usecwd=True))

    extra = os.getenv("VIEW_GRAPH_CLANG_ARGS", "")
    return EnvironmentSettings(
        libclang_path=os.getenv("VIEW_GRAPH_LIBCLANG") or None,
        clang_args=shlex.split(extra),
    )
