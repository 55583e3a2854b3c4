"""Tests for the tag search filter."""
from tagtree_mcp.models.schema import TagRecord
from tagtree_mcp.services.hierarchy import build_hierarchy, filter_tags


def records():
    return [
        TagRecord(id="work", name="Work", is_parent=True),
        TagRecord(id="report", name="Report", parent_id="work"),
        TagRecord(id="meeting", name="Meeting", parent_id="work", is_parent=True),
        TagRecord(id="minutes", name="Minutes", parent_id="meeting"),
        TagRecord(id="home", name="Home"),
        TagRecord(id="homework", name="Homework"),
    ]


def ids(result):
    return [r.id for r in result]


def test_blank_term_returns_everything():
    assert ids(filter_tags(records(), "")) == ids(records())
    assert ids(filter_tags(records(), "   ")) == ids(records())


def test_match_is_case_insensitive_substring():
    assert ids(filter_tags(records(), "HOME")) == ["home", "homework"]


def test_matching_parent_pulls_in_direct_children_only():
    result = ids(filter_tags(records(), "work"))
    assert "report" in result
    assert "meeting" in result
    assert "minutes" not in result


def test_matching_child_pulls_in_its_parent():
    assert ids(filter_tags(records(), "report")) == ["work", "report"]


def test_matching_grandchild_pulls_in_only_its_parent():
    assert ids(filter_tags(records(), "minutes")) == ["meeting", "minutes"]


def test_original_order_is_kept():
    result = ids(filter_tags(records(), "m"))
    assert result == [r for r in ids(records()) if r in result]


def test_no_match_returns_empty():
    assert filter_tags(records(), "zzz") == []


def test_filtered_tree_keeps_matching_child_under_parent():
    tree = build_hierarchy(filter_tags(records(), "report"))
    assert [n.id for n in tree.root_tags] == ["work"]
    assert [c.id for c in tree.get("work").children] == ["report"]


def test_filtered_orphan_becomes_root():
    # meeting's parent is not included, so meeting is shown at the top level
    tree = build_hierarchy(filter_tags(records(), "minutes"))
    assert [n.id for n in tree.root_tags] == ["meeting"]
    assert tree.get("minutes").level == 1
