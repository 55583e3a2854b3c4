"""Drag-and-drop restructuring rules for the tag tree.

``resolve`` only decides; it never writes. The service applies the
returned action and, for joins and detaches, re-reads the store.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Sequence, Tuple, Union

from tagtree_mcp.models.schema import TagRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinAsChild:
    """Make the dragged tag a child of ``parent_id``."""

    parent_id: str
    kind: Literal["join"] = "join"


@dataclass(frozen=True)
class Detach:
    """Make the dragged tag a root. The old parent keeps ``is_parent``."""

    kind: Literal["detach"] = "detach"


@dataclass(frozen=True)
class ReorderSiblings:
    """Move the dragged tag to the drop target's position."""

    kind: Literal["reorder"] = "reorder"


@dataclass(frozen=True)
class NoOp:
    """Rejected combination; nothing is written."""

    reason: str = "unsupported drop target"
    creates_cycle: bool = False
    kind: Literal["noop"] = "noop"


ReparentAction = Union[JoinAsChild, Detach, ReorderSiblings, NoOp]


def is_descendant(
    candidate_id: str, ancestor_id: str, records: Iterable[TagRecord]
) -> bool:
    """True if ``candidate_id`` sits somewhere below ``ancestor_id``."""
    parents = {r.id: r.parent_id for r in records}
    visited = set()
    current = parents.get(candidate_id)
    while current is not None and current not in visited:
        if current == ancestor_id:
            return True
        visited.add(current)
        current = parents.get(current)
    return False


def resolve(
    active: TagRecord,
    over: TagRecord,
    records: Optional[Sequence[TagRecord]] = None,
) -> ReparentAction:
    """Decide what dropping ``active`` onto ``over`` means.

    Rules are checked in order and the first match wins:

    1. ``over`` is a parent and not already ``active``'s parent: join it,
       unless ``over`` is ``active`` itself or one of its descendants.
    2. ``active`` has a parent and ``over`` is a root or not a parent: detach.
    3. Both share the same parent (or are both roots): reorder.
    4. Anything else: no-op.

    Args:
        active: The dragged tag.
        over: The tag it was dropped on.
        records: All tags, used for the cycle check. Without them only the
            direct self-drop is caught.
    """
    if over.is_parent and active.parent_id != over.id:
        if over.id == active.id:
            return NoOp("a tag cannot become its own child", creates_cycle=True)
        if records is not None and is_descendant(over.id, active.id, records):
            return NoOp(
                f"'{over.name}' is inside '{active.name}'", creates_cycle=True
            )
        return JoinAsChild(parent_id=over.id)

    if active.parent_id is not None and (over.parent_id is None or not over.is_parent):
        return Detach()

    if active.parent_id == over.parent_id:
        return ReorderSiblings()

    return NoOp(f"cannot drop '{active.name}' on '{over.name}'")


def reorder(
    sequence: Sequence[str], active_id: str, over_id: str
) -> List[Tuple[str, int]]:
    """Array-move ``active_id`` to ``over_id``'s index and number the result.

    Args:
        sequence: Tag IDs in their current display order.

    Returns:
        ``(tag_id, sort_order)`` for every ID, in the new order. Empty if
        either ID is not in the sequence.
    """
    ids = list(sequence)
    if active_id not in ids or over_id not in ids:
        return []
    old_index = ids.index(active_id)
    new_index = ids.index(over_id)
    ids.insert(new_index, ids.pop(old_index))
    return [(tag_id, position) for position, tag_id in enumerate(ids)]
