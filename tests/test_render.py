"""Tests for adapters, conversion and the render driver."""

import matplotlib.pyplot as plt
import networkx as nx
import pytest

from graph_viewer import render
from graph_viewer.adapters import (
    AnalysisSettings, make_call_graph_entries, make_cfgs, make_escape_graphs,
)
from graph_viewer.config import (
    CanvasBackend, CanvasOutput, FileEncoding, FileOutput, HtmlOutput, resolve_configuration,
)
from graph_viewer.errors import ConfigurationError, RenderError
from graph_viewer.render import render_collection, sanitize_label, to_dot
from graph_viewer.representation import ESCAPE_COLOR, RenderableGraph, cfg_repr, use_graph_repr
from graph_viewer.visualize import visualize_graph


def _renderable(title, nodes=("a", "b")):
    graph = nx.DiGraph()
    for layer, node in enumerate(nodes):
        graph.add_node(node, label=f"{node}: x ? y : z", shape="box", color="#4ecdc4", layer=layer)
    for src, dst in zip(nodes, nodes[1:]):
        graph.add_edge(src, dst, label="true", style="solid", color="#7f8c8d")
    return RenderableGraph(title, graph)


def _passthrough(label, graph):
    return graph


def test_cfg_collection_has_one_entry_per_function(three_function_program):
    """CFG collection has one entry per defined function."""
    entries = make_cfgs(three_function_program, AnalysisSettings())
    assert {label for label, _ in entries} == {"f", "g", "h"}


def test_call_graph_is_a_single_module_entry(three_function_program):
    """The call graph is one entry labelled Module."""
    entries = make_call_graph_entries(three_function_program, AnalysisSettings())
    assert [label for label, _ in entries] == ["Module"]


def test_cfg_repr_layers_from_entry(three_function_program):
    """CFG layers start at the entry block."""
    entries = make_cfgs(three_function_program, AnalysisSettings())
    label, cfg = entries[0]
    renderable = cfg_repr(label, cfg)

    assert renderable.title == "f"
    assert renderable.graph.nodes[cfg.entry]["layer"] == 0
    assert renderable.graph.nodes[cfg.entry]["shape"] == "ellipse"
    assert set(renderable.graph.nodes) == set(cfg.graph.nodes)


def test_directory_output_writes_one_file_per_function(three_function_source, tmp_path):
    """Directory output writes one file per function."""
    out = tmp_path / "graphs"
    out.mkdir()
    config = resolve_configuration([three_function_source], [str(out)], "Cfg", "Png")

    visualize_graph(config)

    assert sorted(p.name for p in out.iterdir()) == ["f.png", "g.png", "h.png"]


def test_trailing_separator_creates_directory(three_function_source, tmp_path):
    """A trailing separator creates the output directory."""
    out = tmp_path / "new-dir"
    config = resolve_configuration([three_function_source], [f"{out}/"], "Domtree", "Svg")

    visualize_graph(config)

    assert sorted(p.name for p in out.iterdir()) == ["f.svg", "g.svg", "h.svg"]


def test_single_file_with_many_graphs_is_rejected(three_function_source, tmp_path):
    """Many graphs cannot go to one file and nothing is written."""
    target = tmp_path / "out" / "graph.png"
    target.parent.mkdir()
    config = resolve_configuration([three_function_source], [str(target)], "Cfg", "Png")

    with pytest.raises(ConfigurationError):
        visualize_graph(config)
    assert list(target.parent.iterdir()) == []


def test_single_file_with_one_graph(three_function_source, tmp_path):
    """A single graph may go to a single file."""
    target = tmp_path / "calls.dot"
    config = resolve_configuration([three_function_source], [str(target)], "Cg", "Dot")

    visualize_graph(config)

    text = target.read_text()
    assert "digraph" in text
    assert "Module" in text


def test_duplicate_labels_get_suffixes(tmp_path):
    """Labels that sanitize alike get numbered file names."""
    collection = [("a b", _renderable("a b")), ("a/b", _renderable("a/b"))]
    render_collection(collection, _passthrough, FileOutput(FileEncoding.DOT), tmp_path)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["a_b.dot", "a_b_2.dot"]


def test_html_document(tmp_path):
    """The HTML document has one section and drawing per graph."""
    collection = [("first", _renderable("first")), ("second <2>", _renderable("second <2>"))]
    target = tmp_path / "report.html"
    render_collection(collection, _passthrough, HtmlOutput(), target)

    text = target.read_text()
    assert text.count("<section") == 2
    assert text.count("<svg") == 2
    assert "second &lt;2&gt;" in text


def test_html_into_directory(tmp_path):
    """HTML output into a directory writes index.html."""
    render_collection([("only", _renderable("only"))], _passthrough, HtmlOutput(), tmp_path)
    assert (tmp_path / "index.html").exists()


def test_html_to_stdout(capsys):
    """HTML output without a destination goes to stdout."""
    render_collection([("only", _renderable("only"))], _passthrough, HtmlOutput())
    assert capsys.readouterr().out.startswith("<!DOCTYPE html>")


def test_empty_collection_renders_nothing(tmp_path, caplog):
    """An empty collection writes nothing and warns."""
    render_collection([], _passthrough, FileOutput(FileEncoding.PNG), tmp_path / "x.png")
    assert not (tmp_path / "x.png").exists()
    assert "Nothing to render" in caplog.text


def test_dot_keeps_labels_with_colons():
    """Dot output keeps labels containing colons."""
    dot = to_dot(_renderable("main"))
    text = dot.to_string()
    assert "x ? y : z" in text
    assert "n0 -> n1" in text


def test_sanitize_label():
    """Labels become safe file name stems."""
    assert sanitize_label("Module") == "Module"
    assert sanitize_label("a b/c") == "a_b_c"
    assert sanitize_label("...") == "graph"


def test_escape_entries_mark_escaping_values(load_c):
    """Escaping values are coloured in the use graph."""
    program = load_c("""
        int *saved;
        void keep(int *q) { saved = q; }
        int plain(int n) { return n; }
    """)
    entries = make_escape_graphs(program, AnalysisSettings())
    assert [label for label, _ in entries] == ["keep"]

    renderable = use_graph_repr("keep", entries[0][1])
    colors = {d["label"].split("\n")[0]: d["color"] for _, d in renderable.graph.nodes(data=True)}
    assert colors["q"] == ESCAPE_COLOR


def test_custom_settings_reach_the_analysis(load_c):
    """Analysis settings reach the escape policy."""
    program = load_c("""
        void sink(void *p);
        void hand_off(int *r) { sink(r); }
    """)
    settings = AnalysisSettings(external_escape_policy=lambda name, position: False)
    entries = make_escape_graphs(program, settings)
    assert entries[0][1].escaping_values() == []


@pytest.fixture
def canvas(monkeypatch):
    """Record backend switches and the figures open when the window would show."""
    plt.close("all")
    calls = {"backends": [], "shown": []}

    def use(backend, force=False):
        calls["backends"].append(backend)

    monkeypatch.setattr(render.matplotlib, "use", use)
    monkeypatch.setattr(render.plt, "show", lambda: calls["shown"].append(plt.get_figlabels()))
    yield calls
    plt.close("all")


def test_canvas_opens_one_figure_per_graph(canvas):
    """Each graph gets its own figure, titled from its label."""
    collection = [("f", _renderable("f")), ("g", _renderable("g"))]
    render_collection(collection, _passthrough, CanvasOutput(CanvasBackend.QT))

    assert canvas["backends"] == ["QtAgg"]
    assert canvas["shown"] == [["f", "g"]]


def test_canvas_warns_about_unused_destination(canvas, tmp_path, caplog):
    """An output path given with a canvas format is reported and left alone."""
    render_collection([("f", _renderable("f"))], _passthrough, CanvasOutput(), tmp_path / "x.png")

    assert "ignored for canvas output" in caplog.text
    assert not (tmp_path / "x.png").exists()
    assert canvas["shown"] == [["f"]]


def test_unavailable_canvas_backend(monkeypatch):
    """A backend that cannot be imported is a render error."""
    def use(backend, force=False):
        raise ImportError(f"no module for {backend}")

    monkeypatch.setattr(render.matplotlib, "use", use)
    with pytest.raises(RenderError, match="Gtk"):
        render_collection([("f", _renderable("f"))], _passthrough, CanvasOutput())


def test_failed_write_removes_earlier_files(monkeypatch, tmp_path):
    """A write failing part way leaves no files behind."""
    write = render._write_file

    def failing_second(renderable, encoding, path):
        if renderable.title == "second":
            path.write_text("partial")
            raise RenderError(f"Cannot write {path}")
        write(renderable, encoding, path)

    monkeypatch.setattr(render, "_write_file", failing_second)
    collection = [("first", _renderable("first")), ("second", _renderable("second"))]

    with pytest.raises(RenderError):
        render_collection(collection, _passthrough, FileOutput(FileEncoding.DOT), tmp_path)
    assert list(tmp_path.iterdir()) == []
