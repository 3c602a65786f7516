"""Shared fixtures: small C programs parsed with libclang."""

import textwrap

import pytest

from graph_viewer.program import load_program


THREE_FUNCTIONS = """
int f(int x) {
    if (x > 0)
        return 1;
    return 0;
}

int g(int y) {
    return f(y) + 1;
}

int h(void) {
    return g(2);
}
"""


@pytest.fixture
def load_c(tmp_path):
    """Write C source to a temporary file and load it as a Program."""
    def _load(source, name="input.c", **kwargs):
        path = tmp_path / name
        path.write_text(textwrap.dedent(source))
        return load_program(path, **kwargs)
    return _load


@pytest.fixture
def three_function_program(load_c):
    return load_c(THREE_FUNCTIONS)


@pytest.fixture
def three_function_source(tmp_path):
    path = tmp_path / "three.c"
    path.write_text(THREE_FUNCTIONS)
    return path


def _block_with(cfg, text):
    """Index of the first block whose statements contain ``text``."""
    for index, block in cfg.blocks.items():
        if any(text in stmt for stmt in block.statements):
            return index
    raise AssertionError(f"no block contains {text!r}")


@pytest.fixture
def block_with():
    return _block_with
