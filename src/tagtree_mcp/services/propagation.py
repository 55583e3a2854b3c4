"""Favorite/pinned toggles that cascade from a parent tag to its children."""
import logging
from typing import List, Optional

from tagtree_mcp.exceptions import CascadeError, PersistenceError, TagNotFoundError
from tagtree_mcp.models.schema import TagRecord, TagUpdate
from tagtree_mcp.services.sync_bus import FavoriteTagsUpdated, SyncBus
from tagtree_mcp.storage.favorites_repository import FavoritesRepository
from tagtree_mcp.storage.tag_store import TagStore

logger = logging.getLogger(__name__)

CASCADED_ATTRIBUTES = ("is_favorite", "is_pinned")


class AttributePropagator:
    """Toggles a boolean on a tag and copies the new value to its children.

    Only direct children receive the value, never grandchildren. Each write
    is its own persistence call: when one fails, earlier writes stay and a
    CascadeError reports which tags were updated. Nothing is retried.
    """

    def __init__(
        self,
        store: TagStore,
        bus: SyncBus,
        favorites: Optional[FavoritesRepository] = None,
    ):
        self.store = store
        self.bus = bus
        self.favorites = favorites

    async def toggle_favorite(self, tag: TagRecord) -> bool:
        """Flip ``is_favorite`` and refresh the favorites name list.

        The name list is rebuilt from the tag booleans even when the cascade
        fails partway, so both representations agree afterwards.
        """
        try:
            value = await self._toggle(tag, "is_favorite")
        except CascadeError:
            try:
                self.refresh_favorites()
            except PersistenceError as e:
                # Keep the CascadeError: it holds the updated and failed ids
                logger.error(f"Favorites mirror not rebuilt after partial cascade: {e}")
            raise
        self.refresh_favorites()
        return value

    async def toggle_pinned(self, tag: TagRecord) -> bool:
        """Flip ``is_pinned``."""
        return await self._toggle(tag, "is_pinned")

    def favorite_names(self) -> List[str]:
        """Favorite names derived from the cached tags."""
        return [t.name for t in self.store.get_tags() if t.is_favorite]

    def refresh_favorites(self) -> List[str]:
        """Rebuild the persisted mirror and announce the new list."""
        if self.favorites is not None:
            names = self.favorites.rebuild(self.store.get_tags())
        else:
            names = self.favorite_names()
        self.bus.publish(FavoriteTagsUpdated(favorite_tags=names))
        return names

    async def _toggle(self, tag: TagRecord, attribute: str) -> bool:
        if attribute not in CASCADED_ATTRIBUTES:
            raise ValueError(f"{attribute} does not cascade")
        new_value = not getattr(tag, attribute)
        update = TagUpdate(**{attribute: new_value})

        if not await self.store.update_tag(tag.id, update):
            raise TagNotFoundError(tag.id)
        if not tag.is_parent:
            return new_value

        children = [t for t in self.store.get_tags() if t.parent_id == tag.id]
        updated_ids = [tag.id]
        for child in children:
            try:
                await self.store.update_tag(child.id, update)
            except PersistenceError as e:
                logger.error(
                    f"Cascade of {attribute}={new_value} from '{tag.name}' stopped at "
                    f"'{child.name}' after {len(updated_ids)} writes"
                )
                raise CascadeError(
                    f"Could not update every child of '{tag.name}'",
                    attribute=attribute,
                    updated_ids=updated_ids,
                    failed_ids=[child.id],
                    original_error=e,
                ) from e
            updated_ids.append(child.id)
        logger.info(
            f"Set {attribute}={new_value} on '{tag.name}' and {len(children)} children"
        )
        return new_value
