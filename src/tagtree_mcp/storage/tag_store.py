"""Persistence adapter: the only writer of authoritative tag state.

Every successful write is followed by a Sync Bus event. The in-memory list
held here is a cache of the backing repository; ``load_from_database``
replaces it wholesale.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from tagtree_mcp.colors import is_valid_color
from tagtree_mcp.exceptions import ErrorCode, TagValidationError
from tagtree_mcp.models.schema import (TagAction, TagApiResult, TagCreate,
                                       TagRecord, TagUpdate)
from tagtree_mcp.services.sync_bus import SyncBus, TagColorsChanged, TagsChanged
from tagtree_mcp.storage.tag_repository import TagRepository

logger = logging.getLogger(__name__)


class TagStore(Protocol):
    """What the tag engine needs from persistence."""

    async def add_tag(self, partial: TagCreate) -> TagRecord: ...

    async def update_tag(self, tag_id: str, partial: TagUpdate) -> bool: ...

    async def delete_tag(self, tag_id: str) -> bool: ...

    def get_tags(self) -> List[TagRecord]: ...

    def get_tag_colors(self) -> Dict[str, str]: ...

    async def set_tag_color(self, tag_name: str, color: str) -> None: ...

    async def load_from_database(self) -> None: ...

    async def update_tag_order(self, orders: Iterable[Tuple[str, int]]) -> int: ...

    async def remove_tag_color(self, tag_name: str) -> bool: ...

    async def move_tag_color(self, old_name: str, new_name: str) -> None: ...

    async def remove_tag_from_notes(self, tag_name: str) -> TagApiResult: ...

    async def delete_tag_with_notes(self, tag_name: str) -> TagApiResult: ...


def _as_update(partial: Union[TagUpdate, Dict[str, Any]]) -> TagUpdate:
    if isinstance(partial, TagUpdate):
        return partial
    try:
        return TagUpdate(**partial)
    except PydanticValidationError as e:
        raise TagValidationError(str(e.errors()[0]["msg"]), value=partial) from e


class SqlTagStore:
    """TagStore backed by TagRepository with a local cache."""

    def __init__(self, repository: TagRepository, bus: SyncBus):
        self.repository = repository
        self.bus = bus
        self._tags: List[TagRecord] = []
        self._colors: Dict[str, str] = {}
        self.loaded = False

    # ========== Reads (served from the cache) ==========

    def get_tags(self) -> List[TagRecord]:
        """Copies of every cached tag, in sort_order."""
        return [t.model_copy() for t in self._tags]

    def get_tag(self, tag_id: str) -> Optional[TagRecord]:
        for tag in self._tags:
            if tag.id == tag_id:
                return tag.model_copy()
        return None

    def find_by_name(self, name: str) -> Optional[TagRecord]:
        key = name.strip().casefold()
        for tag in self._tags:
            if tag.name_key == key:
                return tag.model_copy()
        return None

    def get_tag_colors(self) -> Dict[str, str]:
        return dict(self._colors)

    # ========== Writes ==========

    async def load_from_database(self) -> None:
        """Replace the cache with the backing store's current state."""
        self._tags = self.repository.get_all()
        self._colors = self.repository.get_colors()
        self.loaded = True
        logger.debug(f"Loaded {len(self._tags)} tags and {len(self._colors)} colors")
        self.bus.publish(TagsChanged(action=TagAction.RELOADED, tags=self.get_tags()))
        self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))

    async def add_tag(self, partial: Union[TagCreate, Dict[str, Any]]) -> TagRecord:
        """Create a tag; raises TagValidationError on a duplicate name."""
        if not isinstance(partial, TagCreate):
            try:
                partial = TagCreate(**partial)
            except PydanticValidationError as e:
                raise TagValidationError(str(e.errors()[0]["msg"]), value=partial) from e
        record = self.repository.create(partial)
        self._tags.append(record)
        self.bus.publish(
            TagsChanged(action=TagAction.CREATED, tag_name=record.name, tag=record)
        )
        return record.model_copy()

    async def update_tag(
        self, tag_id: str, partial: Union[TagUpdate, Dict[str, Any]]
    ) -> bool:
        """Apply a partial update. Returns False when the tag does not exist."""
        changes = _as_update(partial).changes()
        if not changes:
            return self.get_tag(tag_id) is not None
        before = self.get_tag(tag_id)
        updated = self.repository.update(tag_id, changes)
        if updated is None:
            logger.info(f"Update skipped, tag {tag_id} not found")
            self._drop_cached(tag_id)
            return False
        self._replace_cached(updated)

        action = TagAction.UPDATED
        if before is not None and before.name != updated.name:
            action = TagAction.RENAMED
        elif "parent_id" in changes:
            action = TagAction.MOVED
        self.bus.publish(TagsChanged(action=action, tag_name=updated.name, tag=updated))
        return True

    async def delete_tag(self, tag_id: str) -> bool:
        """Delete a tag. Returns False when the tag does not exist."""
        before = self.get_tag(tag_id)
        deleted = self.repository.delete(tag_id)
        self._drop_cached(tag_id)
        if not deleted:
            logger.info(f"Delete skipped, tag {tag_id} not found")
            return False
        self.bus.publish(
            TagsChanged(
                action=TagAction.DELETED,
                tag_name=before.name if before else None,
                tag=before,
            )
        )
        return True

    async def update_tag_order(self, orders: Iterable[Tuple[str, int]]) -> int:
        """Persist new sort_order values and re-sort the cache."""
        orders = list(orders)
        count = self.repository.update_order(orders)
        new_order = dict(orders)
        for i, tag in enumerate(self._tags):
            if tag.id in new_order:
                self._tags[i] = tag.model_copy(update={"sort_order": new_order[tag.id]})
        # Stable sort keeps insertion order among equal sort_order values
        self._tags.sort(key=lambda t: t.sort_order)
        self.bus.publish(TagsChanged(action=TagAction.REORDERED, tags=self.get_tags()))
        return count

    async def set_tag_color(self, tag_name: str, color: str) -> None:
        """Set the color for a tag name."""
        if not tag_name or not color:
            raise TagValidationError("Tag name and color are required", field="color")
        if not is_valid_color(color):
            raise TagValidationError(
                f"Unknown color '{color}'",
                field="color",
                value=color,
                code=ErrorCode.TAG_COLOR_INVALID,
            )
        self.repository.set_color(tag_name, color)
        self._colors[tag_name] = color
        self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))

    async def remove_tag_color(self, tag_name: str) -> bool:
        """Drop a color map entry."""
        removed = self.repository.delete_color(tag_name)
        had_entry = self._colors.pop(tag_name, None) is not None
        if removed or had_entry:
            self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))
        return removed

    async def move_tag_color(self, old_name: str, new_name: str) -> None:
        """Re-key a color map entry after a rename."""
        if old_name not in self._colors:
            return
        self.repository.rename_color(old_name, new_name)
        self._colors[new_name] = self._colors.pop(old_name)
        self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))

    # ========== By-name operations on notes ==========

    async def remove_tag_from_notes(self, tag_name: str) -> TagApiResult:
        """Strip a tag from every note through the backing store."""
        return self.repository.remove_from_all_notes(tag_name)

    async def delete_tag_with_notes(self, tag_name: str) -> TagApiResult:
        """Delete a tag and report its notes for deletion by the notes subsystem."""
        before = self.find_by_name(tag_name)
        result = self.repository.delete_with_notes(tag_name)
        if result.success and before is not None:
            self._drop_cached(before.id)
            self._colors.pop(tag_name, None)
            self.bus.publish(
                TagsChanged(action=TagAction.DELETED, tag_name=tag_name, tag=before)
            )
            self.bus.publish(TagColorsChanged(colors=self.get_tag_colors()))
        return result

    # ========== Export / import ==========

    def export_config(self) -> Dict[str, Any]:
        """Snapshot of tags and colors as plain data."""
        return {
            "tags": [t.model_dump() for t in self._tags],
            "tagColors": dict(self._colors),
        }

    async def import_config(self, data: Dict[str, Any]) -> int:
        """Create tags and colors from an export, skipping names that exist.

        Parent links are restored by ID only when the parent was imported too.
        Returns the number of tags created.
        """
        id_map: Dict[str, str] = {}
        pending: List[Tuple[str, Optional[str]]] = []
        created = 0
        for raw in data.get("tags", []):
            existing = self.find_by_name(raw["name"])
            if existing is not None:
                id_map[raw.get("id", existing.id)] = existing.id
                continue
            record = await self.add_tag(
                TagCreate(
                    name=raw["name"],
                    color=raw.get("color", "slate"),
                    is_parent=raw.get("is_parent", False),
                    is_pinned=raw.get("is_pinned", False),
                    is_favorite=raw.get("is_favorite", False),
                )
            )
            created += 1
            if raw.get("id"):
                id_map[raw["id"]] = record.id
            pending.append((record.id, raw.get("parent_id")))
        for new_id, old_parent in pending:
            if old_parent and old_parent in id_map:
                parent_id = id_map[old_parent]
                await self.update_tag(new_id, TagUpdate(parent_id=parent_id))
                parent = self.get_tag(parent_id)
                if parent is not None and not parent.is_parent:
                    await self.update_tag(parent_id, TagUpdate(is_parent=True))
        for name, color in data.get("tagColors", {}).items():
            if is_valid_color(color):
                await self.set_tag_color(name, color)
        logger.info(f"Imported {created} tags")
        return created

    # ========== Cache helpers ==========

    def _replace_cached(self, record: TagRecord) -> None:
        for i, tag in enumerate(self._tags):
            if tag.id == record.id:
                self._tags[i] = record
                return
        self._tags.append(record)

    def _drop_cached(self, tag_id: str) -> None:
        self._tags = [t for t in self._tags if t.id != tag_id]
