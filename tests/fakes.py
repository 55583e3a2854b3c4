"""In-memory tag store for testing.

FakeTagStore implements the TagStore protocol without a database and can be
told to fail specific writes, so tests can drive partial-failure paths that
are hard to reach against real SQLite.

Design principles:
- Same contract as SqlTagStore: returns copies, publishes after each write
- Deterministic: IDs are "t1", "t2", ... in creation order
- Inspectable: every write is appended to ``calls``
"""
from typing import Any, Dict, Iterable, List, Set, Tuple

from tagtree_mcp.exceptions import PersistenceError, TagValidationError
from tagtree_mcp.models.schema import (TagAction, TagApiResult, TagCreate,
                                       TagRecord, TagUpdate)
from tagtree_mcp.services.sync_bus import SyncBus, TagColorsChanged, TagsChanged


class FakeTagStore:
    """TagStore keeping tags in a list.

    Attributes:
        fail_update_ids: update_tag raises PersistenceError for these IDs.
        fail_all_writes: every write raises PersistenceError.
        calls: (method, argument) for every write attempted.
    """

    def __init__(self, bus: SyncBus, tags: Iterable[TagRecord] = ()):
        self.bus = bus
        self._tags: List[TagRecord] = [t.model_copy() for t in tags]
        self._colors: Dict[str, str] = {}
        self._next_id = len(self._tags) + 1
        self.fail_update_ids: Set[str] = set()
        self.fail_all_writes = False
        self.calls: List[Tuple[str, Any]] = []
        self.loaded = True
        self.load_count = 0

    def _check(self, method: str, arg: Any) -> None:
        self.calls.append((method, arg))
        if self.fail_all_writes:
            raise PersistenceError(f"Injected failure in {method}", operation=method)

    # ========== Reads ==========

    def get_tags(self) -> List[TagRecord]:
        return [t.model_copy() for t in sorted(self._tags, key=lambda t: t.sort_order)]

    def get_tag_colors(self) -> Dict[str, str]:
        return dict(self._colors)

    # ========== Writes ==========

    async def load_from_database(self) -> None:
        self.load_count += 1
        self.bus.publish(TagsChanged(action=TagAction.RELOADED, tags=self.get_tags()))

    async def add_tag(self, partial: TagCreate) -> TagRecord:
        self._check("add_tag", partial.name)
        if any(t.name_key == partial.name.strip().casefold() for t in self._tags):
            raise TagValidationError(f"Tag '{partial.name}' already exists", field="name")
        record = TagRecord(
            id=f"t{self._next_id}",
            sort_order=len(self._tags),
            **partial.model_dump(),
        )
        self._next_id += 1
        self._tags.append(record)
        self.bus.publish(TagsChanged(action=TagAction.CREATED, tag_name=record.name, tag=record))
        return record.model_copy()

    async def update_tag(self, tag_id: str, partial: TagUpdate) -> bool:
        self._check("update_tag", tag_id)
        if tag_id in self.fail_update_ids:
            raise PersistenceError(f"Injected failure updating {tag_id}", operation="update_tag")
        for i, tag in enumerate(self._tags):
            if tag.id == tag_id:
                self._tags[i] = tag.model_copy(update=partial.changes())
                self.bus.publish(
                    TagsChanged(action=TagAction.UPDATED, tag_name=self._tags[i].name, tag=self._tags[i])
                )
                return True
        return False

    async def delete_tag(self, tag_id: str) -> bool:
        self._check("delete_tag", tag_id)
        before = next((t for t in self._tags if t.id == tag_id), None)
        if before is None:
            return False
        self._tags.remove(before)
        self.bus.publish(TagsChanged(action=TagAction.DELETED, tag_name=before.name, tag=before))
        return True

    async def update_tag_order(self, orders: Iterable[Tuple[str, int]]) -> int:
        orders = dict(orders)
        self._check("update_tag_order", orders)
        for i, tag in enumerate(self._tags):
            if tag.id in orders:
                self._tags[i] = tag.model_copy(update={"sort_order": orders[tag.id]})
        self.bus.publish(TagsChanged(action=TagAction.REORDERED, tags=self.get_tags()))
        return len(orders)

    async def set_tag_color(self, tag_name: str, color: str) -> None:
        self._check("set_tag_color", tag_name)
        self._colors[tag_name] = color
        self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))

    async def remove_tag_color(self, tag_name: str) -> bool:
        self._check("remove_tag_color", tag_name)
        removed = self._colors.pop(tag_name, None) is not None
        if removed:
            self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))
        return removed

    async def move_tag_color(self, old_name: str, new_name: str) -> None:
        self._check("move_tag_color", old_name)
        if old_name in self._colors:
            self._colors[new_name] = self._colors.pop(old_name)
            self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))

    async def remove_tag_from_notes(self, tag_name: str) -> TagApiResult:
        self._check("remove_tag_from_notes", tag_name)
        return TagApiResult(success=True, message=f"Tag '{tag_name}' removed from 0 notes")

    async def delete_tag_with_notes(self, tag_name: str) -> TagApiResult:
        self._check("delete_tag_with_notes", tag_name)
        before = next((t for t in self._tags if t.name == tag_name), None)
        if before is None:
            return TagApiResult(success=False, message=f"Tag '{tag_name}' not found")
        self._tags.remove(before)
        self.bus.publish(TagsChanged(action=TagAction.DELETED, tag_name=tag_name, tag=before))
        return TagApiResult(success=True, message=f"Tag '{tag_name}' and 0 notes deleted")
