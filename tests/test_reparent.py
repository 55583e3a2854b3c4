"""Tests for the drag-and-drop reparent rules."""
import pytest

from tagtree_mcp.models.schema import TagRecord
from tagtree_mcp.services.reparent import (
    Detach,
    JoinAsChild,
    NoOp,
    ReorderSiblings,
    is_descendant,
    reorder,
    resolve,
)


@pytest.fixture
def rpc():
    """Root R, parent P, and C inside P."""
    return {
        "R": TagRecord(id="R", name="Root"),
        "P": TagRecord(id="P", name="Parent", is_parent=True),
        "C": TagRecord(id="C", name="Child", parent_id="P"),
    }


EXPECTED = {
    ("R", "R"): ReorderSiblings(),
    ("R", "P"): JoinAsChild(parent_id="P"),
    ("R", "C"): NoOp,
    ("P", "R"): ReorderSiblings(),
    ("P", "P"): NoOp,
    ("P", "C"): NoOp,
    ("C", "R"): Detach(),
    ("C", "P"): Detach(),
    ("C", "C"): Detach(),
}


def apply(records, active_id, action):
    """Write an action to a copy of the records, the way the service does."""
    result = {k: v.model_copy() for k, v in records.items()}
    if isinstance(action, JoinAsChild):
        result[active_id] = result[active_id].model_copy(update={"parent_id": action.parent_id})
    elif isinstance(action, Detach):
        result[active_id] = result[active_id].model_copy(update={"parent_id": None})
    return result


class TestResolve:
    """Tests for the ordered rule table."""

    @pytest.mark.parametrize("pair", sorted(EXPECTED))
    def test_every_pair_matches_the_rule_table(self, rpc, pair):
        active, over = pair
        action = resolve(rpc[active], rpc[over], list(rpc.values()))
        expected = EXPECTED[pair]
        if expected is NoOp:
            assert isinstance(action, NoOp)
        else:
            assert action == expected

    @pytest.mark.parametrize("pair", sorted(EXPECTED))
    def test_join_and_detach_are_idempotent(self, rpc, pair):
        active, over = pair
        action = resolve(rpc[active], rpc[over], list(rpc.values()))
        once = apply(rpc, active, action)
        twice = apply(once, active, action)
        assert twice == once

    @pytest.mark.parametrize("pair", [p for p, a in EXPECTED.items() if a == ReorderSiblings()])
    def test_reorder_resolves_to_reorder_again(self, rpc, pair):
        active, over = pair
        first = resolve(rpc[active], rpc[over])
        after = apply(rpc, active, first)
        assert resolve(after[active], after[over]) == ReorderSiblings()

    @pytest.mark.parametrize("pair", [p for p, a in EXPECTED.items() if a is NoOp])
    def test_noop_writes_nothing_and_stays_noop(self, rpc, pair):
        active, over = pair
        action = resolve(rpc[active], rpc[over], list(rpc.values()))
        after = apply(rpc, active, action)
        assert after == rpc
        assert isinstance(resolve(after[active], after[over], list(after.values())), NoOp)

    def test_join_into_own_descendant_is_rejected(self):
        outer = TagRecord(id="outer", name="Outer", is_parent=True)
        inner = TagRecord(id="inner", name="Inner", parent_id="outer", is_parent=True)
        deepest = TagRecord(id="deep", name="Deep", parent_id="inner", is_parent=True)
        records = [outer, inner, deepest]
        assert isinstance(resolve(outer, inner, records), NoOp)
        assert isinstance(resolve(outer, deepest, records), NoOp)
        assert resolve(outer, inner, records).creates_cycle is True

    def test_plain_rejection_is_not_a_cycle(self):
        root = TagRecord(id="root", name="Root")
        child = TagRecord(id="child", name="Child", parent_id="parent")
        action = resolve(root, child)
        assert isinstance(action, NoOp)
        assert action.creates_cycle is False

    def test_descendant_check_needs_records(self):
        outer = TagRecord(id="outer", name="Outer", is_parent=True)
        inner = TagRecord(id="inner", name="Inner", parent_id="outer", is_parent=True)
        assert resolve(outer, inner) == JoinAsChild(parent_id="inner")

    def test_detach_keeps_old_parent_flag(self, rpc):
        action = resolve(rpc["C"], rpc["R"], list(rpc.values()))
        after = apply(rpc, "C", action)
        assert after["C"].parent_id is None
        assert after["P"].is_parent is True

    def test_siblings_under_same_parent_reorder(self):
        parent = TagRecord(id="p", name="P", is_parent=True)
        a = TagRecord(id="a", name="A", parent_id="p")
        b = TagRecord(id="b", name="B", parent_id="p", is_parent=True)
        # b is a parent, so dropping a on it joins instead of reordering
        assert resolve(a, b, [parent, a, b]) == JoinAsChild(parent_id="b")
        assert resolve(b, a, [parent, a, b]) == Detach()


class TestIsDescendant:
    def test_walks_the_whole_chain(self):
        records = [
            TagRecord(id="a", name="A"),
            TagRecord(id="b", name="B", parent_id="a"),
            TagRecord(id="c", name="C", parent_id="b"),
        ]
        assert is_descendant("c", "a", records)
        assert is_descendant("b", "a", records)
        assert not is_descendant("a", "c", records)
        assert not is_descendant("a", "a", records)

    def test_terminates_on_cycles(self):
        records = [
            TagRecord(id="a", name="A", parent_id="b"),
            TagRecord(id="b", name="B", parent_id="a"),
        ]
        assert is_descendant("a", "b", records)
        assert not is_descendant("a", "zzz", records)


class TestReorder:
    def test_moves_down(self):
        assert reorder(["a", "b", "c", "d"], "a", "c") == [
            ("b", 0), ("c", 1), ("a", 2), ("d", 3),
        ]

    def test_moves_up(self):
        assert reorder(["a", "b", "c", "d"], "d", "b") == [
            ("a", 0), ("d", 1), ("b", 2), ("c", 3),
        ]

    def test_same_position_keeps_order(self):
        assert reorder(["a", "b"], "b", "b") == [("a", 0), ("b", 1)]

    def test_unknown_id_returns_empty(self):
        assert reorder(["a", "b"], "a", "zzz") == []
        assert reorder(["a", "b"], "zzz", "a") == []
