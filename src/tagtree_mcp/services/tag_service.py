"""Service layer for tag mutations.

Every public mutation returns a MutationResult and never raises for
validation, not-found or storage problems. Storage failures are logged and
passed to the notifier so the host can show a transient message.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from tagtree_mcp.config import config
from tagtree_mcp.exceptions import (
    ErrorCode,
    PersistenceError,
    StructuralConflict,
    TagNotFoundError,
    TagValidationError,
)
from tagtree_mcp.models.schema import (
    DeleteMode,
    TagCreate,
    TagRecord,
    TagUpdate,
    normalize_tag_name,
)
from tagtree_mcp.observability import timed_operation
from tagtree_mcp.services.propagation import AttributePropagator
from tagtree_mcp.services.reparent import (
    Detach,
    JoinAsChild,
    NoOp,
    ReorderSiblings,
    reorder,
    resolve,
)
from tagtree_mcp.services.sync_bus import SyncBus, TagFilterChanged
from tagtree_mcp.storage.favorites_repository import FavoritesRepository
from tagtree_mcp.storage.tag_store import TagStore

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


class MutationResult(BaseModel):
    """Outcome of a service mutation."""

    success: bool
    message: str
    tag: Optional[TagRecord] = None
    action: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class TagService:
    """Create, edit, restructure and delete tags through a TagStore."""

    def __init__(
        self,
        store: TagStore,
        bus: SyncBus,
        favorites: Optional[FavoritesRepository] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.bus = bus
        self.favorites = favorites
        self.notifier = notifier
        self.propagator = AttributePropagator(store, bus, favorites)

    # ========== Lookups ==========

    def get_tag(self, tag_id: str) -> Optional[TagRecord]:
        for tag in self.store.get_tags():
            if tag.id == tag_id:
                return tag
        return None

    def find_by_name(self, name: str) -> Optional[TagRecord]:
        key = normalize_tag_name(name)
        for tag in self.store.get_tags():
            if tag.name_key == key:
                return tag
        return None

    def children_of(self, tag_id: str) -> List[TagRecord]:
        return [t for t in self.store.get_tags() if t.parent_id == tag_id]

    def _require(self, tag_id: str) -> TagRecord:
        tag = self.get_tag(tag_id)
        if tag is None:
            raise TagNotFoundError(tag_id)
        return tag

    def list_favorites(self) -> List[str]:
        """Favorite tag names, from the persisted mirror when there is one."""
        if self.favorites is not None:
            return self.favorites.get_all()
        return self.propagator.favorite_names()

    # ========== Error handling ==========

    def _notify(self, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(message)
        except Exception as e:
            logger.error(f"Notifier failed: {e}")

    async def _guard(
        self,
        operation: str,
        work: Callable[[], Awaitable[MutationResult]],
        **context: Any,
    ) -> MutationResult:
        with timed_operation(operation, **context) as op:
            try:
                result = await work()
            except (TagValidationError, TagNotFoundError) as e:
                logger.info(f"{operation} rejected: {e}")
                result = MutationResult(
                    success=False, message=e.message, error=e.to_dict()
                )
            except PersistenceError as e:
                logger.error(f"{operation} failed: {e}")
                self._notify(e.message)
                result = MutationResult(
                    success=False, message=e.message, error=e.to_dict()
                )
            op["success"] = result.success
            return result

    # ========== Create / edit ==========

    async def create_tag(
        self,
        name: str,
        color: Optional[str] = None,
        parent_id: Optional[str] = None,
        is_parent: bool = False,
    ) -> MutationResult:
        """Create a tag. Names are unique case-insensitively."""

        async def work() -> MutationResult:
            if not name or not name.strip():
                raise TagValidationError(
                    "Tag name is required", field="name", code=ErrorCode.TAG_NAME_REQUIRED
                )
            if self.find_by_name(name) is not None:
                raise TagValidationError(
                    f"Tag '{name.strip()}' already exists",
                    field="name",
                    value=name,
                    code=ErrorCode.TAG_ALREADY_EXISTS,
                )
            parent = self._require(parent_id) if parent_id is not None else None
            try:
                data = TagCreate(
                    name=name,
                    color=color or config.default_color,
                    parent_id=parent_id,
                    is_parent=is_parent,
                )
            except ValueError as e:
                raise TagValidationError(str(e), field="name", value=name) from e
            record = await self.store.add_tag(data)
            if parent is not None and not parent.is_parent:
                # Placing a child under a tag makes it a parent
                await self.store.update_tag(parent.id, TagUpdate(is_parent=True))
            logger.info(f"Created tag '{record.name}' ({record.id})")
            return MutationResult(
                success=True, message=f"Tag '{record.name}' created", tag=record
            )

        return await self._guard("create_tag", work, name=name)

    async def rename_tag(self, tag_id: str, new_name: str) -> MutationResult:
        """Rename a tag; its color and favorites entries follow the new name."""

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            clash = self.find_by_name(new_name or "")
            if clash is not None and clash.id != tag_id:
                raise TagValidationError(
                    f"Tag '{new_name.strip()}' already exists",
                    field="name",
                    value=new_name,
                    code=ErrorCode.TAG_ALREADY_EXISTS,
                )
            try:
                update = TagUpdate(name=new_name)
            except ValueError as e:
                raise TagValidationError(str(e), field="name", value=new_name) from e
            if not await self.store.update_tag(tag_id, update):
                raise TagNotFoundError(tag_id)
            renamed = self._require(tag_id)
            await self.store.move_tag_color(tag.name, renamed.name)
            if renamed.is_favorite:
                self.propagator.refresh_favorites()
            return MutationResult(
                success=True,
                message=f"Renamed '{tag.name}' to '{renamed.name}'",
                tag=renamed,
            )

        return await self._guard("rename_tag", work, tag_id=tag_id)

    async def set_color(self, tag_id: str, color: str) -> MutationResult:
        """Recolor a tag on the record and in the color map."""

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            try:
                update = TagUpdate(color=color)
            except ValueError as e:
                raise TagValidationError(
                    str(e), field="color", value=color, code=ErrorCode.TAG_COLOR_INVALID
                ) from e
            await self.store.update_tag(tag_id, update)
            await self.store.set_tag_color(tag.name, color)
            return MutationResult(
                success=True,
                message=f"Tag '{tag.name}' is now {color}",
                tag=self.get_tag(tag_id),
            )

        return await self._guard("set_color", work, tag_id=tag_id, color=color)

    # ========== Delete ==========

    async def delete_tag(
        self, tag_id: str, mode: DeleteMode = DeleteMode.TAG_ONLY
    ) -> MutationResult:
        """Delete a tag.

        Direct children become roots first. The color map entry and the
        favorites entry are removed in every mode.
        """
        mode = DeleteMode(mode)

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            note_ids: List[str] = []

            if mode is DeleteMode.REMOVE_FROM_NOTES:
                result = await self.store.remove_tag_from_notes(tag.name)
                if not result.success:
                    return MutationResult(success=False, message=result.message)
                note_ids = result.note_ids

            for child in self.children_of(tag_id):
                await self.store.update_tag(child.id, TagUpdate(parent_id=None))

            if mode is DeleteMode.WITH_NOTES:
                result = await self.store.delete_tag_with_notes(tag.name)
                if not result.success:
                    return MutationResult(success=False, message=result.message)
                note_ids = result.note_ids
            elif not await self.store.delete_tag(tag_id):
                raise TagNotFoundError(tag_id)

            await self.store.remove_tag_color(tag.name)
            if self.favorites is not None:
                self.favorites.discard(tag.name)
            self.propagator.refresh_favorites()
            logger.info(f"Deleted tag '{tag.name}' ({mode.value})")
            return MutationResult(
                success=True,
                message=f"Tag '{tag.name}' deleted",
                tag=tag,
                data={"note_ids": note_ids, "mode": mode.value},
            )

        return await self._guard("delete_tag", work, tag_id=tag_id, mode=mode.value)

    # ========== Structure ==========

    async def promote_to_parent(self, tag_id: str) -> MutationResult:
        """Mark a tag as able to hold children."""

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            if not tag.is_parent:
                await self.store.update_tag(tag_id, TagUpdate(is_parent=True))
            return MutationResult(
                success=True,
                message=f"Tag '{tag.name}' is a parent",
                tag=self.get_tag(tag_id),
            )

        return await self._guard("promote_to_parent", work, tag_id=tag_id)

    async def dissolve_parent(self, tag_id: str) -> MutationResult:
        """Detach every direct child and clear ``is_parent``."""

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            children = self.children_of(tag_id)
            for child in children:
                await self.store.update_tag(child.id, TagUpdate(parent_id=None))
            await self.store.update_tag(tag_id, TagUpdate(is_parent=False))
            await self.store.load_from_database()
            return MutationResult(
                success=True,
                message=f"Dissolved '{tag.name}', {len(children)} tags detached",
                tag=self.get_tag(tag_id),
                data={"detached_ids": [c.id for c in children]},
            )

        return await self._guard("dissolve_parent", work, tag_id=tag_id)

    async def handle_drag_end(
        self,
        active_id: str,
        over_id: Optional[str],
        visible_ids: Optional[Sequence[str]] = None,
    ) -> MutationResult:
        """Apply a drop of ``active_id`` onto ``over_id``.

        Args:
            visible_ids: Display order used for reordering. Defaults to the
                store order.
        """
        if over_id is None or active_id == over_id:
            return MutationResult(success=True, message="Nothing to move", action="none")

        async def work() -> MutationResult:
            active = self._require(active_id)
            over = self._require(over_id)
            action = resolve(active, over, self.store.get_tags())

            if isinstance(action, JoinAsChild):
                if not await self.store.update_tag(
                    active_id, TagUpdate(parent_id=action.parent_id)
                ):
                    raise TagNotFoundError(active_id)
                await self.store.load_from_database()
                message = f"Moved '{active.name}' under '{over.name}'"
            elif isinstance(action, Detach):
                if not await self.store.update_tag(active_id, TagUpdate(parent_id=None)):
                    raise TagNotFoundError(active_id)
                await self.store.load_from_database()
                message = f"Moved '{active.name}' to the top level"
            elif isinstance(action, ReorderSiblings):
                sequence = (
                    list(visible_ids)
                    if visible_ids is not None
                    else [t.id for t in self.store.get_tags()]
                )
                orders = reorder(sequence, active_id, over_id)
                if not orders:
                    # Target hidden, e.g. filtered out by a search
                    return MutationResult(
                        success=False,
                        message=f"'{over.name}' is not in the visible list",
                        action="none",
                    )
                await self.store.update_tag_order(orders)
                message = f"Moved '{active.name}' to the position of '{over.name}'"
            else:
                cycle = isinstance(action, NoOp) and action.creates_cycle
                conflict = StructuralConflict(
                    action.reason if isinstance(action, NoOp) else "unsupported drop",
                    active_id=active_id,
                    over_id=over_id,
                    code=ErrorCode.STRUCTURE_CYCLE if cycle else ErrorCode.STRUCTURE_CONFLICT,
                )
                logger.info(f"Drop ignored: {conflict}")
                return MutationResult(
                    success=False,
                    message=conflict.message,
                    action=action.kind,
                    error=conflict.to_dict(),
                )

            return MutationResult(
                success=True,
                message=message,
                tag=self.get_tag(active_id),
                action=action.kind,
            )

        return await self._guard(
            "handle_drag_end", work, active_id=active_id, over_id=over_id
        )

    # ========== Attributes ==========

    async def toggle_favorite(self, tag_id: str) -> MutationResult:
        """Flip ``is_favorite``; a parent passes the value to its children."""

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            value = await self.propagator.toggle_favorite(tag)
            return MutationResult(
                success=True,
                message=f"Tag '{tag.name}' {'added to' if value else 'removed from'} favorites",
                tag=self.get_tag(tag_id),
                data={"favorite_tags": self.list_favorites()},
            )

        return await self._guard("toggle_favorite", work, tag_id=tag_id)

    async def toggle_pinned(self, tag_id: str) -> MutationResult:
        """Flip ``is_pinned``; a parent passes the value to its children."""

        async def work() -> MutationResult:
            tag = self._require(tag_id)
            value = await self.propagator.toggle_pinned(tag)
            return MutationResult(
                success=True,
                message=f"Tag '{tag.name}' {'pinned' if value else 'unpinned'}",
                tag=self.get_tag(tag_id),
            )

        return await self._guard("toggle_pinned", work, tag_id=tag_id)

    def select_tag(self, tag_id: Optional[str]) -> MutationResult:
        """Filter notes by a tag, or clear the filter with None."""
        if tag_id is None:
            self.bus.publish(TagFilterChanged(tag_name=None))
            return MutationResult(success=True, message="Tag filter cleared")
        tag = self.get_tag(tag_id)
        if tag is None:
            return MutationResult(success=False, message=f"Tag with ID '{tag_id}' not found")
        self.bus.publish(TagFilterChanged(tag_name=tag.name))
        return MutationResult(success=True, message=f"Filtering by '{tag.name}'", tag=tag)
