"""Tag tree construction, linearization, search filtering and paging.

The pipeline is always: flat records -> (optional) ``filter_tags`` ->
``build_hierarchy`` -> ``flatten`` -> ``VisibleWindow.visible``. Every step
returns new objects; nothing here mutates its input.
"""
import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterable, List, Sequence, Set, TypeVar

from tagtree_mcp.models.schema import HierarchyNode, TagRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Hierarchy:
    """Result of a build: every node by ID, plus the roots in input order."""

    hierarchy: Dict[str, HierarchyNode] = field(default_factory=dict)
    root_tags: List[HierarchyNode] = field(default_factory=list)

    def get(self, tag_id: str):
        return self.hierarchy.get(tag_id)

    def __len__(self) -> int:
        return len(self.hierarchy)


def build_hierarchy(records: Iterable[TagRecord]) -> Hierarchy:
    """Build a forest from a flat tag list in O(n).

    A record whose parent is itself or is not in the list becomes a root.
    ``is_parent`` is copied as stored, never recomputed. Each record ends up
    in exactly one place: a root or a single parent's children.
    """
    records = list(records)
    result = Hierarchy()

    # Pass 1: wrap every record
    for record in records:
        if record.id in result.hierarchy:
            logger.warning(f"Duplicate tag id {record.id} ignored")
            continue
        result.hierarchy[record.id] = HierarchyNode(record=record, children=[], level=0)

    # Pass 2: link children to parents
    placed: Set[str] = set()
    for record in records:
        if record.id in placed:
            continue
        placed.add(record.id)
        node = result.hierarchy[record.id]
        parent = None
        if record.parent_id is not None and record.parent_id != record.id:
            parent = result.hierarchy.get(record.parent_id)
        if parent is not None:
            parent.children.append(node)
            node.level = parent.level + 1
        else:
            result.root_tags.append(node)

    # A child listed before its parent got its level too early; settle
    # levels top-down now that every link exists.
    stack = [(root, 0) for root in result.root_tags]
    reached = 0
    while stack:
        node, level = stack.pop()
        node.level = level
        reached += 1
        stack.extend((child, level + 1) for child in node.children)
    if reached != len(result.hierarchy):
        logger.warning(
            f"{len(result.hierarchy) - reached} tags are in a parent cycle and unreachable"
        )

    return result


def pinned_first(nodes: Sequence[T]) -> List[T]:
    """Pinned tags before unpinned ones; order otherwise unchanged."""
    return sorted(nodes, key=lambda n: not n.is_pinned)


def flatten(
    roots: Sequence[HierarchyNode], expanded: AbstractSet[str]
) -> List[HierarchyNode]:
    """Linearize a forest for display.

    Depth-first. Roots are always emitted; a deeper node only when every
    ancestor is expanded. Each node is emitted at most once and carries the
    level it is displayed at.
    """
    result: List[HierarchyNode] = []
    seen: Set[str] = set()

    def visit(nodes: Sequence[HierarchyNode], level: int, parent_expanded: bool) -> None:
        for node in pinned_first(nodes):
            if node.id in seen:
                continue
            if level > 0 and not parent_expanded:
                continue
            seen.add(node.id)
            if node.level != level:
                node = node.model_copy(update={"level": level})
            result.append(node)
            if node.id in expanded and node.children:
                visit(node.children, level + 1, True)

    visit(roots, 0, True)
    return result


def filter_tags(records: Iterable[TagRecord], term: str) -> List[TagRecord]:
    """Select the records to show for a search term.

    Included: every name containing ``term`` (case-insensitive); for each
    matching parent, its direct children; for each matching child, its
    parent. Grandchildren of a matching parent are not pulled in. Original
    order is kept. A blank term returns everything.
    """
    records = list(records)
    needle = (term or "").strip().casefold()
    if not needle:
        return records

    by_id = {r.id: r for r in records}
    matched = [r for r in records if needle in r.name.casefold()]
    included: Set[str] = {r.id for r in matched}

    for record in matched:
        if record.is_parent:
            included.update(r.id for r in records if r.parent_id == record.id)
        if record.parent_id is not None and record.parent_id in by_id:
            included.add(record.parent_id)

    return [r for r in records if r.id in included]


class VisibleWindow:
    """Page counter over a linearization.

    The visible window is the first ``page * page_size`` nodes. Pages only
    grow until ``reset`` starts a new search/filter session.
    """

    def __init__(self, page_size: int):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.page = 1

    @property
    def limit(self) -> int:
        return self.page * self.page_size

    def visible(self, sequence: Sequence[T]) -> List[T]:
        return list(sequence[: self.limit])

    def has_more(self, sequence: Sequence) -> bool:
        return len(sequence) > self.limit

    def load_more(self, sequence: Sequence) -> bool:
        """Reveal the next page if the sequence has unseen nodes."""
        if not self.has_more(sequence):
            return False
        self.page += 1
        return True

    def reset(self) -> None:
        self.page = 1
