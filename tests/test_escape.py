"""Tests for the escape analysis."""

import pytest

from graph_viewer.analysis.callgraph import make_call_graph
from graph_viewer.analysis.escape import escape_use_graphs, run_escape_analysis
from graph_viewer.analysis.pointsto import run_points_to_analysis
from graph_viewer.program import BASICAA, MEM2REG


@pytest.fixture
def analyse(load_c):
    def _analyse(source, options=(MEM2REG, BASICAA), policy=None):
        program = load_c(source, options=options)
        points_to = run_points_to_analysis(program)
        cg = make_call_graph(program, points_to)
        if policy is None:
            return run_escape_analysis(program, cg, points_to)
        return run_escape_analysis(program, cg, points_to, policy)
    return _analyse


def test_returned_pointer_escapes(analyse):
    """A returned pointer escapes."""
    result = analyse("""
        void *malloc(unsigned long);

        int *make(void) {
            int *p = malloc(sizeof(int));
            return p;
        }
    """)
    info = result.functions["make"]
    assert info.escaping_names() == ["p"]
    assert any(u.kind == "return" and u.escapes for u in info.uses)


def test_store_to_global_escapes(analyse):
    """A pointer stored into a global escapes."""
    result = analyse("""
        int *saved;
        void keep(int *q) { saved = q; }
    """)
    assert result.summary("keep") == frozenset({0})
    use = next(u for u in result.functions["keep"].uses if u.kind == "global")
    assert use.target == "saved"


def test_read_only_parameter_does_not_escape(analyse):
    """Reading through a pointer does not make it escape."""
    result = analyse("""
        int read(int *t) { return *t; }
        int call_reader(int *u) { return read(u); }
    """)
    assert result.summary("read") == frozenset()
    assert result.summary("call_reader") == frozenset()


def test_external_call_uses_policy(analyse):
    """Arguments to external functions follow the policy callback."""
    source = """
        void sink(void *p);
        void hand_off(int *r) { sink(r); }
    """
    assert analyse(source).summary("hand_off") == frozenset({0})

    calls = []

    def never(name, position):
        calls.append((name, position))
        return False

    assert analyse(source, policy=never).summary("hand_off") == frozenset()
    assert ("sink", 0) in calls


def test_callee_summary_propagates(analyse):
    """A caller argument escapes when the callee parameter does."""
    result = analyse("""
        int *saved;
        void keep(int *q) { saved = q; }
        void forward(int *s, int *unused) { keep(s); }
    """)
    assert result.summary("forward") == frozenset({0})


def test_copies_are_followed(analyse):
    """A local copy that escapes takes the original with it."""
    result = analyse("""
        int *saved;
        void copy_then_store(int *a) {
            int *b;
            b = a;
            saved = b;
        }
    """)
    info = result.functions["copy_then_store"]
    assert info.escaping_names() == ["a", "b"]
    assert result.summary("copy_then_store") == frozenset({0})


def test_mutual_recursion_reaches_fixpoint(analyse):
    """Summaries inside a recursive component settle on a fixpoint."""
    result = analyse("""
        int *saved;
        void ping(int *p, int n);
        void pong(int *p, int n) { if (n) ping(p, n - 1); }
        void ping(int *p, int n) { if (n) pong(p, n - 1); else saved = p; }
    """)
    assert result.summary("ping") == frozenset({0})
    assert result.summary("pong") == frozenset({0})


def test_basicaa_keeps_local_aggregate_stores(analyse):
    """Stores into local aggregates escape only without basicaa."""
    source = """
        struct holder { int *ptr; };
        void keep_local(int *v) {
            struct holder h;
            h.ptr = v;
        }
    """
    with_aa = analyse(source)
    assert with_aa.summary("keep_local") == frozenset()
    assert [u.kind for u in with_aa.functions["keep_local"].uses] == ["local-store"]

    without_aa = analyse(source, options=(MEM2REG,))
    assert without_aa.summary("keep_local") == frozenset({0})


def test_mem2reg_controls_tracked_locals(analyse):
    """Scalar locals are tracked as memory only without mem2reg."""
    source = """
        int count(void) {
            int y = 1;
            return y;
        }
    """
    promoted = analyse(source)
    assert promoted.functions["count"].values == {}

    in_memory = analyse(source, options=(BASICAA,))
    names = [v.name for v in in_memory.functions["count"].values.values()]
    assert names == ["&y"]
    assert in_memory.functions["count"].escaping_names() == []


def test_address_of_local_escapes(analyse):
    """Passing &x to an external function lets x escape."""
    result = analyse("""
        void sink(void *p);
        void expose(void) {
            int x = 0;
            sink(&x);
        }
    """)
    assert result.functions["expose"].escaping_names() == ["&x"]


def test_indirect_call_uses_all_targets(analyse):
    """An indirect call argument escapes if any possible target lets it."""
    result = analyse("""
        int *saved;
        void keep(int *q) { saved = q; }
        void drop(int *q) { }
        void apply(void (*fn)(int *), int *w) { fn(w); }
    """)
    assert 1 in result.summary("apply")


def test_use_graphs_follow_function_order(analyse):
    """Use graphs follow the given order and skip functions with nothing tracked."""
    result = analyse("""
        int *saved;
        void keep(int *q) { saved = q; }
        int plain(int n) { return n; }
        int *self(int *r) { return r; }
    """)
    graphs = escape_use_graphs(result, ["keep", "plain", "self"])

    assert [name for name, _ in graphs] == ["keep", "self"]
    keep = dict(graphs)["keep"]
    assert keep.escaping_values() == ["q"]
    kinds = {d["kind"] for _, d in keep.graph.nodes(data=True)}
    assert kinds == {"value", "use"}


def test_address_of_array_element_escapes(analyse):
    """Storing &a[i] in a global lets the whole local array escape."""
    result = analyse("""
        int *saved;
        void arr(void) {
            int a[4];
            saved = &a[1];
        }
    """)
    info = result.functions["arr"]
    assert info.escaping_names() == ["a"]
    assert [u.kind for u in info.uses] == ["global"]


def test_address_of_struct_member_escapes(analyse):
    """Storing &s.x in a global lets the local struct escape."""
    result = analyse("""
        struct S { int x; };
        int *saved;
        void mem(void) {
            struct S s;
            saved = &s.x;
        }
    """)
    assert result.functions["mem"].escaping_names() == ["&s"]


def test_address_of_element_kept_locally(analyse):
    """An element address stored in another local array stays on the stack."""
    result = analyse("""
        void table(void) {
            int a[4];
            int *slots[2];
            slots[0] = &a[1];
        }
    """)
    info = result.functions["table"]
    assert info.escaping_names() == []
    assert "local-store" in [u.kind for u in info.uses]


def test_assignment_inside_macro_is_a_store(analyse):
    """An assignment written through a macro is classified by its opcode."""
    result = analyse("""
        #define SET(a, b) a = b
        int *saved;
        void keep(int *q) { SET(saved, q); }
    """)
    assert result.functions["keep"].escaping_names() == ["q"]
