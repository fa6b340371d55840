import random

import pytest

from blocktree.core.exceptions import BlockTreeError, InvalidTarget, InvariantViolation, NotFound
from blocktree.core.models import Node, NodeKind
from blocktree.core.services.mutation_service import MutationEngine


@pytest.fixture
def engine_for(make_context, recorder):
    """Factory: engine_for(*roots) -> (context, engine), events go to ``recorder``."""
    def _build(*roots, **kwargs):
        ctx = make_context(*roots, **kwargs)
        ctx.notifier.subscribe(recorder)
        return ctx, MutationEngine(ctx)
    return _build


def _ids(nodes):
    return [n.id for n in nodes]


def _two_columns(make_node, left="p1", right="p2"):
    return make_node(
        "columns", "cols",
        make_node("column", "c1", make_node("paragraph", left), width=0.5),
        make_node("column", "c2", make_node("paragraph", right), width=0.5),
    )


# ---------------------------------------------------------------------------
# insert / remove / move
# ---------------------------------------------------------------------------

def test_insert_at_index_inside_container(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("container", "box", make_node("paragraph", "p1")))
    affected = engine.insert(Node(NodeKind.PARAGRAPH, id="p0"), "box", 0)

    assert affected == {"box"}
    assert _ids(ctx.document.get("box").children) == ["p0", "p1"]
    assert ctx.document.get("p0").parent is ctx.document.get("box")
    assert recorder.updated_ids() == ["box"]
    ctx.document.check_invariants()


def test_insert_appends_to_root_list(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("paragraph", "a"))
    engine.insert(Node(NodeKind.PARAGRAPH, id="b"), None)
    assert _ids(ctx.document.roots) == ["a", "b"]
    # Root-level change: the inserted node itself is announced
    assert recorder.updated_ids() == ["b"]


def test_insert_under_leaf_is_rejected(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "p"))
    before = ctx.document.snapshot()
    with pytest.raises(InvalidTarget):
        engine.insert(Node(NodeKind.PARAGRAPH), "p")
    assert ctx.document.snapshot() == before


def test_insert_with_used_id_is_rejected(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "p"))
    with pytest.raises(InvalidTarget):
        engine.insert(Node(NodeKind.PARAGRAPH, id="p"), None)
    assert len(ctx.document) == 1


def test_insert_with_repeated_id_inside_subtree_has_no_effect(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("paragraph", "p"))
    before = ctx.document.snapshot()
    box = make_node("container", "box", make_node("paragraph", "dup"), make_node("paragraph", "dup"))

    with pytest.raises(InvalidTarget):
        engine.insert(box, None)

    assert _ids(ctx.document.roots) == ["p"]
    assert ctx.document.snapshot() == before
    assert "box" not in ctx.document
    assert recorder.events == []
    ctx.document.check_invariants()


def test_insert_with_repeated_node_instance_is_rejected(engine_for, make_node):
    ctx, engine = engine_for()
    shared = make_node("paragraph", "shared")
    with pytest.raises(InvalidTarget):
        engine.insert(make_node("container", "box", shared, shared), None)
    assert len(ctx.document) == 0


@pytest.mark.parametrize("build", [
    lambda mk: mk("paragraph", "p", mk("paragraph", "q")),
    lambda mk: mk("columns", "cs", mk("column", "c1", mk("paragraph", "a")), mk("paragraph", "stray")),
    lambda mk: mk("container", "box", mk("column", "c1", mk("paragraph", "a"))),
])
def test_insert_of_malformed_subtree_has_no_effect(engine_for, make_node, recorder, build):
    ctx, engine = engine_for(make_node("paragraph", "keep"))
    before = ctx.document.snapshot()

    with pytest.raises(InvalidTarget):
        engine.insert(build(make_node), None)

    assert ctx.document.snapshot() == before
    assert recorder.events == []
    ctx.document.check_invariants()


def test_replace_with_malformed_subtree_has_no_effect(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("paragraph", "p"))
    before = ctx.document.snapshot()
    with pytest.raises(InvalidTarget):
        engine.replace("p", make_node("callout", "c", make_node("quote", "x"), make_node("quote", "x")))
    with pytest.raises(InvalidTarget):
        engine.replace("p", make_node("heading1", "h", make_node("paragraph", "y")))
    assert ctx.document.snapshot() == before
    assert recorder.events == []


def test_split_with_malformed_pasted_nodes_has_no_effect(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("paragraph", "target"))
    before = ctx.document.snapshot()
    with pytest.raises(InvalidTarget):
        engine.split_into_columns("target", [make_node("quote", "q"), make_node("quote", "q")], "left")
    with pytest.raises(InvalidTarget):
        engine.split_into_columns("target", [make_node("code", "c", make_node("paragraph", "inner"))], "right")
    assert ctx.document.snapshot() == before
    assert recorder.events == []


def test_remove_returns_subtree_and_signals_deleted(engine_for, make_node, recorder):
    inner = make_node("container", "inner", make_node("paragraph", "leaf"))
    ctx, engine = engine_for(make_node("callout", "outer", inner, make_node("paragraph", "keep")))

    removed = engine.remove("inner")

    assert removed is inner
    assert removed.parent is None
    assert _ids(removed.children) == ["leaf"]
    assert "leaf" not in ctx.document
    assert recorder.deleted_ids() == ["inner", "leaf"]
    assert recorder.updated_ids() == ["outer"]


def test_remove_missing_raises_not_found(engine_for):
    _, engine = engine_for()
    with pytest.raises(NotFound):
        engine.remove("ghost")


def test_move_between_containers(engine_for, make_node, recorder):
    ctx, engine = engine_for(
        make_node("container", "src", make_node("paragraph", "p")),
        make_node("container", "dst", make_node("paragraph", "q")),
    )
    affected = engine.move("p", "dst", 1)

    assert affected == {"src", "dst"}
    assert _ids(ctx.document.get("dst").children) == ["q", "p"]
    assert ctx.document.get("src").children == []
    assert set(recorder.updated_ids()) == {"src", "dst"}
    assert recorder.deleted_ids() == []


def test_move_reorders_root_list(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("paragraph", "a"), make_node("paragraph", "b"), make_node("paragraph", "c"))
    engine.move("a", None, 2)
    assert _ids(ctx.document.roots) == ["b", "c", "a"]
    assert recorder.updated_ids() == ["a"]


def test_move_into_own_descendant_has_no_effect(engine_for, make_node, recorder):
    inner = make_node("container", "inner")
    ctx, engine = engine_for(make_node("container", "outer", inner))
    before = ctx.document.snapshot()

    with pytest.raises(InvalidTarget):
        engine.move("outer", "inner")
    with pytest.raises(InvalidTarget):
        engine.move("outer", "outer")

    assert ctx.document.snapshot() == before
    assert recorder.events == []
    ctx.document.check_invariants()


def test_column_placement_rules(engine_for, make_node):
    ctx, engine = engine_for(_two_columns(make_node), make_node("paragraph", "x"))
    with pytest.raises(InvalidTarget):
        engine.move("x", "cols")
    with pytest.raises(InvalidTarget):
        engine.move("c1", None)
    ctx.document.check_invariants()


def test_random_moves_never_create_cycles(engine_for, make_node):
    roots = [make_node("container", f"box{i}", make_node("paragraph", f"p{i}")) for i in range(4)]
    roots.append(make_node("callout", "call", make_node("container", "deep")))
    ctx, engine = engine_for(*roots)
    ids = [n.id for n in ctx.document.iter_nodes()]
    containers = [n.id for n in ctx.document.iter_nodes() if n.is_container]
    rng = random.Random(7)

    for _ in range(200):
        node_id = rng.choice(ids)
        parent_id = rng.choice(containers + [None])
        try:
            engine.move(node_id, parent_id, rng.randint(0, 3))
        except InvalidTarget:
            pass
        ctx.document.check_invariants()
        for node in ctx.document.iter_nodes():
            assert not node.is_ancestor_of(node)
    assert len(ctx.document) == len(ids)


# ---------------------------------------------------------------------------
# batches
# ---------------------------------------------------------------------------

def test_move_batch_keeps_given_order(engine_for, make_node):
    ctx, engine = engine_for(
        make_node("paragraph", "a"), make_node("paragraph", "b"), make_node("paragraph", "c"),
        make_node("container", "box"),
    )
    engine.move_batch(["c", "a"], "box")
    assert _ids(ctx.document.get("box").children) == ["c", "a"]
    assert _ids(ctx.document.roots) == ["b", "box"]


def test_move_batch_moves_only_top_most_nodes(engine_for, make_node):
    ctx, engine = engine_for(
        make_node("container", "group", make_node("paragraph", "child")),
        make_node("container", "box"),
    )
    engine.move_batch(["child", "group"], "box")
    box = ctx.document.get("box")
    assert _ids(box.children) == ["group"]
    assert _ids(box.children[0].children) == ["child"]


def test_move_batch_resolves_anchor_after_removal(engine_for, make_node):
    ctx, engine = engine_for(*(make_node("paragraph", name) for name in "abcd"))
    engine.move_batch(["a", "b"], anchor_id="c", after=True)
    assert _ids(ctx.document.roots) == ["c", "a", "b", "d"]

    engine.move_batch(["d"], anchor_id="c")
    assert _ids(ctx.document.roots) == ["d", "c", "a", "b"]


def test_move_batch_rejects_anchor_inside_selection(engine_for, make_node):
    ctx, engine = engine_for(make_node("container", "box", make_node("paragraph", "p")))
    with pytest.raises(InvalidTarget):
        engine.move_batch(["box"], anchor_id="p")


def test_remove_many_skips_nodes_already_gone(engine_for, make_node, recorder):
    ctx, engine = engine_for(
        make_node("container", "box", make_node("paragraph", "p")),
        make_node("paragraph", "q"),
        make_node("paragraph", "r"),
    )
    removed = engine.remove_many(["box", "p", "q", "ghost"])

    assert _ids(removed) == ["box", "q"]
    assert _ids(ctx.document.roots) == ["r"]
    assert set(recorder.deleted_ids()) == {"box", "p", "q"}


def test_remove_many_with_nothing_to_remove(engine_for, recorder):
    _, engine = engine_for()
    assert engine.remove_many(["ghost"]) == []
    assert recorder.events == []


# ---------------------------------------------------------------------------
# replace / insert_after
# ---------------------------------------------------------------------------

def test_replace_keeps_presentation_properties(engine_for, make_node, recorder):
    old = make_node("paragraph", "p", position={"x": 10, "y": 20}, width=240, color="red")
    ctx, engine = engine_for(make_node("container", "box", old))
    heading = Node(NodeKind.HEADING1, id="h")

    replaced = engine.replace("p", heading)

    assert replaced is old
    assert _ids(ctx.document.get("box").children) == ["h"]
    assert heading.properties == {"position": {"x": 10, "y": 20}, "width": 240}
    assert recorder.deleted_ids() == ["p"]
    assert "box" in recorder.updated_ids()


def test_replace_with_same_id_is_not_a_deletion(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("paragraph", "p"))
    engine.replace("p", Node(NodeKind.QUOTE, id="p"))
    assert ctx.document.get("p").kind == NodeKind.QUOTE
    assert recorder.deleted_ids() == []
    assert recorder.updated_ids() == ["p"]


def test_replace_drops_old_children(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node("callout", "c", make_node("paragraph", "inside")))
    engine.replace("c", Node(NodeKind.PARAGRAPH, id="flat"))
    assert "inside" not in ctx.document
    assert set(recorder.deleted_ids()) == {"c", "inside"}


def test_insert_after_uses_factory(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "a"), make_node("paragraph", "b"))
    created = engine.insert_after("a")
    assert created.kind == NodeKind.PARAGRAPH
    assert _ids(ctx.document.roots) == ["a", created.id, "b"]

    top = engine.insert_after(None, "heading1")
    assert ctx.document.roots[0] is top


# ---------------------------------------------------------------------------
# columns
# ---------------------------------------------------------------------------

def test_split_wraps_target_and_incoming_in_new_columns(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "D"), make_node("paragraph", "E"))
    columns = engine.split_into_columns("E", ["D"], "left")

    assert ctx.document.roots == [columns]
    assert columns.kind == NodeKind.COLUMNS
    assert [c.kind for c in columns.children] == [NodeKind.COLUMN, NodeKind.COLUMN]
    assert [_ids(c.children) for c in columns.children] == [["D"], ["E"]]
    assert [c.width_fraction for c in columns.children] == [pytest.approx(0.5), pytest.approx(0.5)]
    ctx.document.check_invariants()


def test_split_right_puts_incoming_second(engine_for, make_node):
    ctx, engine = engine_for(
        make_node("container", "box", make_node("paragraph", "t"), make_node("paragraph", "after")),
        make_node("paragraph", "x"),
    )
    columns = engine.split_into_columns("t", ["x"], "right")
    box = ctx.document.get("box")
    assert box.children[0] is columns
    assert _ids(box.children)[1] == "after"
    assert [_ids(c.children) for c in columns.children] == [["t"], ["x"]]


def test_split_beside_existing_column_joins_columns(engine_for, make_node):
    ctx, engine = engine_for(_two_columns(make_node), make_node("paragraph", "x"))
    columns = engine.split_into_columns("c2", ["x"], "left")

    assert columns.id == "cols"
    assert [_ids(c.children) for c in columns.children] == [["p1"], ["x"], ["p2"]]
    for column in columns.children:
        assert column.width_fraction == pytest.approx(1 / 3)
    ctx.document.check_invariants()


def test_split_accepts_detached_nodes(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "t"))
    pasted = Node(NodeKind.IMAGE, id="img")
    engine.split_into_columns("t", [pasted], "right")
    assert ctx.document.get("img") is pasted
    ctx.document.check_invariants()


def test_split_rejects_ancestor_and_unknown_side(engine_for, make_node):
    ctx, engine = engine_for(make_node("container", "box", make_node("paragraph", "p")))
    before = ctx.document.snapshot()
    with pytest.raises(InvalidTarget):
        engine.split_into_columns("p", ["box"], "left")
    with pytest.raises(InvalidTarget):
        engine.split_into_columns("p", ["box"], "up")
    with pytest.raises(InvalidTarget):
        engine.split_into_columns("box", [], "left")
    assert ctx.document.snapshot() == before


def test_columns_dissolve_into_last_column_children(engine_for, make_node, recorder):
    ctx, engine = engine_for(
        make_node("paragraph", "before"),
        make_node(
            "columns", "cols",
            make_node("column", "c1", make_node("paragraph", "p1"), make_node("paragraph", "p1b"), width=0.5),
            make_node("column", "c2", make_node("paragraph", "p2"), width=0.5),
        ),
        make_node("paragraph", "after"),
    )
    engine.remove("p2")

    assert _ids(ctx.document.roots) == ["before", "p1", "p1b", "after"]
    assert ctx.document.get("p1").parent is None
    assert set(recorder.deleted_ids()) == {"p2", "c2", "cols", "c1"}
    ctx.document.check_invariants()


def test_columns_removed_when_no_column_left(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "x"), _two_columns(make_node))
    engine.remove_many(["p1", "p2"])
    assert _ids(ctx.document.roots) == ["x"]
    assert "cols" not in ctx.document


def test_widths_renormalized_when_column_count_changes(engine_for, make_node):
    ctx, engine = engine_for(make_node(
        "columns", "cols",
        *(make_node("column", f"c{i}", make_node("paragraph", f"p{i}"), width=1 / 3) for i in range(3))
    ))
    engine.remove("p2")
    columns = ctx.document.get("cols")
    assert len(columns.children) == 2
    assert sum(c.width_fraction for c in columns.children) == pytest.approx(1.0, abs=1e-6)
    assert all(c.width_fraction == pytest.approx(0.5) for c in columns.children)


def test_reordering_columns_keeps_their_widths(engine_for, make_node, recorder):
    ctx, engine = engine_for(make_node(
        "columns", "cs",
        make_node("column", "c1", make_node("paragraph", "p1"), width=0.7),
        make_node("column", "c2", make_node("paragraph", "p2"), width=0.3),
    ))
    engine.move("c2", "cs", 0)

    columns = ctx.document.get("cs")
    assert _ids(columns.children) == ["c2", "c1"]
    assert {c.id: c.width_fraction for c in columns.children} == {"c2": 0.3, "c1": 0.7}
    assert recorder.updated_ids() == ["cs"]


def test_moving_column_between_columns_blocks_renormalizes_both(engine_for, make_node):
    ctx, engine = engine_for(
        make_node(
            "columns", "left",
            *(make_node("column", f"l{i}", make_node("paragraph", f"lp{i}"), width=1 / 3) for i in range(3))
        ),
        make_node(
            "columns", "right",
            make_node("column", "r0", make_node("paragraph", "rp0"), width=0.8),
            make_node("column", "r1", make_node("paragraph", "rp1"), width=0.2),
        ),
    )
    engine.move("l2", "right")

    assert [c.width_fraction for c in ctx.document.get("left").children] == [pytest.approx(0.5)] * 2
    assert [c.width_fraction for c in ctx.document.get("right").children] == [pytest.approx(1 / 3)] * 3
    ctx.document.check_invariants()


def test_moving_content_out_of_nested_columns(engine_for, make_node):
    ctx, engine = engine_for(
        make_node("container", "box"),
        make_node(
            "columns", "outer",
            make_node("column", "oc1", _two_columns(make_node), width=0.5),
            make_node("column", "oc2", make_node("paragraph", "z"), width=0.5),
        ),
    )
    engine.move("p1", "box")
    # Inner columns collapsed into p2; outer still has two columns
    assert _ids(ctx.document.get("oc1").children) == ["p2"]
    assert "cols" not in ctx.document
    ctx.document.check_invariants()


def test_resize_columns_clamps_and_preserves_total(engine_for, make_node, recorder):
    ctx, engine = engine_for(_two_columns(make_node))
    assert engine.resize_columns("c1", "c2", 0.3) == (pytest.approx(0.8), pytest.approx(0.2))

    left, right = engine.resize_columns("c1", "c2", 0.5)
    assert right == pytest.approx(0.1)
    assert left == pytest.approx(0.9)
    assert "cols" in recorder.updated_ids()
    ctx.document.check_invariants()


def test_resize_columns_requires_adjacent_siblings(engine_for, make_node):
    _, engine = engine_for(_two_columns(make_node))
    with pytest.raises(InvalidTarget):
        engine.resize_columns("c2", "c1", 0.1)
    with pytest.raises(InvalidTarget):
        engine.resize_columns("c1", "p2", 0.1)


def test_normalize_rescales_drifted_widths(engine_for, make_node):
    ctx, engine = engine_for(make_node(
        "columns", "cols",
        make_node("column", "c1", make_node("paragraph", "p1"), width=0.3),
        make_node("column", "c2", make_node("paragraph", "p2"), width=0.1),
    ))
    assert engine.normalize() == {"cols"}
    widths = [c.width_fraction for c in ctx.document.get("cols").children]
    assert widths == [pytest.approx(0.75), pytest.approx(0.25)]
    assert engine.normalize() == set()


def test_normalize_reports_stray_children(engine_for, make_node):
    _, engine = engine_for(make_node("columns", "cols", make_node("paragraph", "stray")))
    with pytest.raises(InvariantViolation):
        engine.normalize()


def test_closed_context_rejects_edits(engine_for, make_node):
    ctx, engine = engine_for(make_node("paragraph", "p"))
    ctx.close()
    with pytest.raises(BlockTreeError):
        engine.remove("p")
