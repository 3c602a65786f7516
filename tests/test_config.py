"""Tests for configuration resolution."""

from pathlib import Path

import pytest

from graph_viewer.config import (
    DEFAULT_OUTPUT_FORMAT, CanvasBackend, CanvasOutput, FileEncoding, FileOutput,
    GraphType, HtmlOutput, load_environment, parse_output_format, resolve_configuration,
)
from graph_viewer.dispatch import DISPATCH, select_graph_kind
from graph_viewer.errors import ConfigurationError

EXPECTED_KINDS = {
    GraphType.CFG: ("make_cfgs", "cfg_repr"),
    GraphType.CDG: ("make_cdgs", "cdg_repr"),
    GraphType.CG: ("make_call_graph_entries", "cg_repr"),
    GraphType.DOMTREE: ("make_dominator_trees", "domtree_repr"),
    GraphType.POSTDOMTREE: ("make_postdominator_trees", "postdomtree_repr"),
    GraphType.ESCAPE: ("make_escape_graphs", "use_graph_repr"),
}

FORMAT_NAMES = ["Html"] + [b.value for b in CanvasBackend] + [e.value for e in FileEncoding]


@pytest.mark.parametrize("graph_type", list(GraphType))
@pytest.mark.parametrize("format_name", FORMAT_NAMES)
def test_every_type_and_format_resolves(graph_type, format_name):
    """Every graph type and format name resolves."""
    config = resolve_configuration(["prog.c"], ["out"], graph_type.value, format_name)
    assert config.graph_type == graph_type

    kind = select_graph_kind(config.graph_type)
    build_name, convert_name = EXPECTED_KINDS[graph_type]
    assert kind.build.__name__ == build_name
    assert kind.convert.__name__ == convert_name


def test_dispatch_covers_every_graph_type():
    """Every graph type has a builder and a converter."""
    assert set(DISPATCH) == set(GraphType)


@pytest.mark.parametrize("text,expected", [
    ("Html", HtmlOutput()),
    ("Gtk", CanvasOutput(CanvasBackend.GTK)),
    ("Xlib", CanvasOutput(CanvasBackend.XLIB)),
    ("Qt", CanvasOutput(CanvasBackend.QT)),
    ("Png", FileOutput(FileEncoding.PNG)),
    ("Ps2", FileOutput(FileEncoding.PS2)),
    ("XDot", FileOutput(FileEncoding.XDOT)),
])
def test_parse_output_format(text, expected):
    """Format names map onto output formats."""
    assert parse_output_format(text) == expected


def test_format_defaults_to_gtk_canvas():
    """Without a format the Gtk canvas is used."""
    config = resolve_configuration(["prog.c"], [], "Cfg", None)
    assert config.output_format == DEFAULT_OUTPUT_FORMAT == CanvasOutput(CanvasBackend.GTK)
    assert config.output is None


def test_file_extensions():
    """File encodings know their extensions."""
    assert FileEncoding.JPEG.extension == "jpg"
    assert FileEncoding.PS2.extension == "ps"
    assert FileEncoding.XDOT.extension == "xdot"
    assert FileEncoding.DOT.is_graphviz
    assert not FileEncoding.SVG.is_graphviz


def test_flag_errors_come_before_missing_values():
    """Bad flag values are reported before missing ones."""
    with pytest.raises(ConfigurationError, match="Only one input file"):
        resolve_configuration(["a.c", "b.c"], [], None, None)
    with pytest.raises(ConfigurationError, match="Unsupported graph type: Foo"):
        resolve_configuration([], [], "Foo", None)
    with pytest.raises(ConfigurationError, match="Unrecognized output format: Gif"):
        resolve_configuration([], [], "Cfg", "Gif")


def test_trailing_separator_marks_directory():
    """An output ending in a separator names a directory."""
    config = resolve_configuration(["prog.c"], ["graphs/"], "Cfg", "Png")
    assert config.output == Path("graphs")
    assert config.output_is_directory

    config = resolve_configuration(["prog.c"], ["graph.png"], "Cfg", "Png")
    assert not config.output_is_directory


def test_configuration_is_frozen():
    """Resolved configurations are immutable."""
    config = resolve_configuration(["prog.c"], [], "Cg", "Html")
    with pytest.raises(AttributeError):
        config.graph_type = GraphType.CFG


def test_load_environment(tmp_path, monkeypatch):
    """Settings are read from a .env file."""
    env_file = tmp_path / ".env"
    env_file.write_text("VIEW_GRAPH_LIBCLANG=/opt/llvm/lib/libclang.so\n")
    # Recorded so that teardown removes the value load_dotenv sets
    monkeypatch.setenv("VIEW_GRAPH_LIBCLANG", "unused")
    monkeypatch.delenv("VIEW_GRAPH_LIBCLANG")
    monkeypatch.setenv("VIEW_GRAPH_CLANG_ARGS", "-DDEBUG -I '/usr/local/my include'")

    env = load_environment(env_file)
    assert env.libclang_path == "/opt/llvm/lib/libclang.so"
    assert env.clang_args == ["-DDEBUG", "-I", "/usr/local/my include"]
