"""
Render driver.

Takes a named graph collection and a conversion function, turns every entry
into a ``RenderableGraph`` and emits the result in the selected output
format: interactive matplotlib windows, one file per graph, or a single HTML
document with inline SVG drawings.
"""

import html
import io
import logging
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import matplotlib
import matplotlib.pyplot as plt
import networkx as nx
import pydot
from matplotlib.figure import Figure

from .config import CanvasOutput, FileEncoding, FileOutput, HtmlOutput, OutputFormat
from .errors import ConfigurationError, RenderError
from .representation import RenderableGraph, node_order

logger = logging.getLogger(__name__)

NamedGraph = Tuple[str, Any]
Converter = Callable[[str, Any], RenderableGraph]

HTML_INDEX = "index.html"

_MARKERS = {"box": "s", "ellipse": "o", "diamond": "d"}

# matplotlib savefig format for each file encoding drawn with matplotlib
_SAVEFIG_FORMATS = {
    FileEncoding.EPS: "eps",
    FileEncoding.JPEG: "jpg",
    FileEncoding.PDF: "pdf",
    FileEncoding.PNG: "png",
    FileEncoding.PS: "ps",
    FileEncoding.PS2: "ps",
    FileEncoding.SVG: "svg",
}


def sanitize_label(label: str) -> str:
    """Turn a graph label into a file name stem."""
    stem = re.sub(r'[^A-Za-z0-9._-]+', '_', label).strip('._')
    return stem or "graph"


def _unique_names(labels: Sequence[str], extension: str) -> List[str]:
    seen: Dict[str, int] = {}
    names = []
    for label in labels:
        stem = sanitize_label(label)
        count = seen.get(stem, 0) + 1
        seen[stem] = count
        names.append(f"{stem}.{extension}" if count == 1 else f"{stem}_{count}.{extension}")
    return names


def _figure_size(renderable: RenderableGraph) -> Tuple[float, float]:
    graph = renderable.graph
    layers: Dict[int, int] = {}
    for _, data in graph.nodes(data=True):
        layer = data.get("layer", 0)
        layers[layer] = layers.get(layer, 0) + 1
    width = max(layers.values(), default=1)
    height = len(layers) or 1
    if not renderable.layered:
        width = height = max(1, int(len(graph) ** 0.5) + 1)
    return min(40, max(8, 3 * width)), min(40, max(6, 1.6 * height))


def _layout(renderable: RenderableGraph) -> Dict[Any, Tuple[float, float]]:
    graph = renderable.graph
    if not renderable.layered:
        return nx.spring_layout(graph, k=2.5, iterations=100, seed=42)
    pos = nx.multipartite_layout(graph, subset_key="layer", align="horizontal")
    # Layer 0 at the top
    return {node: (x, -y) for node, (x, y) in pos.items()}


def draw_graph(renderable: RenderableGraph, ax):
    """Draw ``renderable`` onto a matplotlib axes."""
    graph = renderable.graph
    ax.set_title(renderable.title, fontsize=14, fontweight='bold')
    ax.axis('off')
    if len(graph) == 0:
        return

    pos = _layout(renderable)

    groups: Dict[Tuple[str, str], List[Any]] = {}
    for node, data in graph.nodes(data=True):
        key = (data.get("shape", "box"), data.get("color", "#4ecdc4"))
        groups.setdefault(key, []).append(node)
    for (shape, color), nodes in groups.items():
        nx.draw_networkx_nodes(
            graph, pos, ax=ax,
            nodelist=nodes,
            node_color=color,
            node_shape=_MARKERS.get(shape, "s"),
            node_size=1200,
            alpha=0.9,
            linewidths=1.5,
            edgecolors='#2c3e50',
        )

    for style in ("solid", "dashed"):
        edges = [(u, v) for u, v, d in graph.edges(data=True) if d.get("style", "solid") == style]
        if not edges:
            continue
        nx.draw_networkx_edges(
            graph, pos, ax=ax,
            edgelist=edges,
            edge_color=[graph.edges[e].get("color", "#7f8c8d") for e in edges],
            style=style,
            arrows=True,
            arrowsize=15,
            arrowstyle='-|>',
            node_size=1200,
            connectionstyle='arc3,rad=0.1',
        )

    labels = {node: data.get("label", str(node)) for node, data in graph.nodes(data=True)}
    nx.draw_networkx_labels(
        graph, pos, labels, ax=ax,
        font_size=7,
        bbox=dict(boxstyle='round,pad=0.3', facecolor='white', alpha=0.8),
    )

    edge_labels = {(u, v): d["label"] for u, v, d in graph.edges(data=True) if d.get("label")}
    if edge_labels:
        nx.draw_networkx_edge_labels(graph, pos, edge_labels=edge_labels, ax=ax, font_size=7)


def _figure(renderable: RenderableGraph) -> Figure:
    fig = Figure(figsize=_figure_size(renderable))
    draw_graph(renderable, fig.subplots())
    return fig


def to_dot(renderable: RenderableGraph) -> pydot.Dot:
    """Build a Graphviz graph carrying the display attributes of ``renderable``."""
    graph = renderable.graph
    dot = pydot.Dot(graph_name=sanitize_label(renderable.title), graph_type="digraph",
                    label=renderable.title, labelloc="t")
    dot.set_node_defaults(fontname="monospace", fontsize="10")

    ids = {}
    for i, node in enumerate(node_order(renderable)):
        data = graph.nodes[node]
        ids[node] = f"n{i}"
        dot.add_node(pydot.Node(
            ids[node],
            label=data.get("label", str(node)),
            shape=data.get("shape", "box"),
            style="filled",
            fillcolor=data.get("color", "#4ecdc4"),
        ))
    for u, v, data in graph.edges(data=True):
        attrs = {"style": data.get("style", "solid"), "color": data.get("color", "#7f8c8d")}
        if data.get("label"):
            attrs["label"] = data["label"]
        dot.add_edge(pydot.Edge(ids[u], ids[v], **attrs))
    return dot


def _write_file(renderable: RenderableGraph, encoding: FileEncoding, path: Path):
    logger.debug("Writing %s as %s", path, encoding.value)
    try:
        if encoding.is_graphviz:
            dot = to_dot(renderable)
            dot.write(str(path), format="raw" if encoding == FileEncoding.DOT else "xdot")
            return

        fig = _figure(renderable)
        if encoding == FileEncoding.PS2:
            with matplotlib.rc_context({"ps.fonttype": 42}):
                fig.savefig(path, format=_SAVEFIG_FORMATS[encoding], bbox_inches='tight')
        else:
            fig.savefig(path, format=_SAVEFIG_FORMATS[encoding], dpi=150,
                        bbox_inches='tight', facecolor='white')
    except OSError as e:
        raise RenderError(f"Cannot write {path}: {e}") from e
    except (AssertionError, RuntimeError, ValueError) as e:
        # pydot asserts on a failing graphviz run; matplotlib raises on bad output
        raise RenderError(f"Rendering {path} as {encoding.value} failed: {e}") from e


def _is_directory(destination: Path, as_directory: bool) -> bool:
    return as_directory or destination.is_dir()


def _render_files(rendered: List[RenderableGraph], encoding: FileEncoding,
                  destination: Optional[Path], as_directory: bool) -> List[Path]:
    if destination is None:
        raise ConfigurationError(
            f"File output requires an output destination (--output) for format {encoding.value}"
        )

    if _is_directory(destination, as_directory):
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RenderError(f"Cannot create output directory {destination}: {e}") from e
        names = _unique_names([r.title for r in rendered], encoding.extension)
        paths = [destination / name for name in names]
    else:
        if len(rendered) > 1:
            raise ConfigurationError(
                f"Output {destination} is a single file but {len(rendered)} graphs were produced; "
                "pass a directory instead"
            )
        paths = [destination]

    written: List[Path] = []
    try:
        for renderable, path in zip(rendered, paths):
            written.append(path)
            _write_file(renderable, encoding, path)
    except RenderError:
        # No partial output
        for path in written:
            path.unlink(missing_ok=True)
        raise
    logger.info("Wrote %d file(s) to %s", len(paths), destination)
    return paths


def _svg(renderable: RenderableGraph) -> str:
    buffer = io.StringIO()
    _figure(renderable).savefig(buffer, format="svg", bbox_inches='tight')
    text = buffer.getvalue()
    # Drop the XML prolog and doctype so the drawing can be inlined
    start = text.find("<svg")
    return text[start:] if start >= 0 else text


def html_document(rendered: List[RenderableGraph], title: str = "view-graph") -> str:
    sections = []
    for renderable in rendered:
        heading = html.escape(renderable.title)
        sections.append(
            f'<section id="{html.escape(sanitize_label(renderable.title), quote=True)}">\n'
            f"<h2>{heading}</h2>\n{_svg(renderable)}\n</section>"
        )
    body = "\n".join(sections)
    return (
        "<!DOCTYPE html>\n"
        f'<html>\n<head>\n<meta charset="utf-8">\n<title>{html.escape(title)}</title>\n</head>\n'
        f"<body>\n<h1>{html.escape(title)}</h1>\n{body}\n</body>\n</html>\n"
    )


def _render_html(rendered: List[RenderableGraph], destination: Optional[Path],
                 as_directory: bool) -> Optional[Path]:
    document = html_document(rendered)
    if destination is None:
        sys.stdout.write(document)
        return None

    path = destination
    try:
        if _is_directory(destination, as_directory):
            destination.mkdir(parents=True, exist_ok=True)
            path = destination / HTML_INDEX
        path.write_text(document, encoding="utf-8")
    except OSError as e:
        raise RenderError(f"Cannot write {path}: {e}") from e
    logger.info("Wrote %s", path)
    return path


def _render_canvas(rendered: List[RenderableGraph], output: CanvasOutput):
    backend = output.backend.matplotlib_backend
    try:
        matplotlib.use(backend, force=True)
    except (ImportError, ValueError) as e:
        raise RenderError(f"Canvas backend {output.backend.value} ({backend}) is unavailable: {e}") from e

    for renderable in rendered:
        fig = plt.figure(num=renderable.title, figsize=_figure_size(renderable))
        draw_graph(renderable, fig.gca())
        fig.tight_layout()
    plt.show()


def render_collection(collection: Sequence[NamedGraph], convert: Converter,
                      output_format: OutputFormat, destination: Optional[Path] = None,
                      as_directory: bool = False):
    """
    Render every ``(label, graph)`` entry of ``collection``.

    All entries are converted before anything is drawn or written, and a
    single-file destination with more than one entry is rejected before any
    write happens.
    """
    rendered = [convert(label, graph) for label, graph in collection]
    if not rendered:
        logger.warning("Nothing to render: the analysis produced no graphs")
        return

    if isinstance(output_format, FileOutput):
        _render_files(rendered, output_format.encoding, destination, as_directory)
    elif isinstance(output_format, HtmlOutput):
        _render_html(rendered, destination, as_directory)
    elif isinstance(output_format, CanvasOutput):
        if destination is not None:
            logger.warning("Output destination %s is ignored for canvas output", destination)
        _render_canvas(rendered, output_format)
    else:
        raise RenderError(f"Unknown output format: {output_format!r}")
