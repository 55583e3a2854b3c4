"""One display surface of the tag tree, kept current by Sync Bus events."""
import logging
from typing import Callable, Dict, List, Optional, Set

from tagtree_mcp.colors import resolve_color
from tagtree_mcp.models.schema import HierarchyNode, TagAction, TagRecord
from tagtree_mcp.services.hierarchy import (
    Hierarchy,
    VisibleWindow,
    build_hierarchy,
    filter_tags,
    flatten,
)
from tagtree_mcp.services.sync_bus import (
    FavoriteTagsUpdated,
    SyncBus,
    TagColorsChanged,
    TagFilterChanged,
    TagsChanged,
    Topic,
)
from tagtree_mcp.storage.tag_store import TagStore

logger = logging.getLogger(__name__)


class TagTreeView:
    """Cached tags plus the view state of one surface.

    Tag deltas are applied by ID, last write wins. A deleted ID stays
    deleted until the next full reload, so a late update for it cannot
    bring it back. The tree itself is always rebuilt from the cache.
    """

    def __init__(self, store: TagStore, bus: SyncBus, page_size: int = 30):
        self.store = store
        self.bus = bus
        self.window = VisibleWindow(page_size)
        self.expanded: Set[str] = set()
        self.search_term = ""
        self.selected_tag: Optional[str] = None
        self._records: Dict[str, TagRecord] = {}
        self._deleted: Set[str] = set()
        self._colors: Dict[str, str] = {}
        self._favorites: List[str] = []
        self._unsubscribers: List[Callable[[], None]] = [
            bus.subscribe(Topic.TAGS_CHANGED, self._on_tags_changed),
            bus.subscribe(Topic.TAG_COLORS_CHANGED, self._on_colors_changed),
            bus.subscribe(Topic.FAVORITE_TAGS_UPDATED, self._on_favorites_updated),
            bus.subscribe(Topic.TAG_FILTER_CHANGED, self._on_filter_changed),
        ]

    def close(self) -> None:
        """Stop listening to the bus."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def refresh(self) -> None:
        """Re-read tags and colors from the store."""
        self._replace_all(self.store.get_tags())
        self._colors = self.store.get_tag_colors()

    # ========== Event handlers ==========

    def _on_tags_changed(self, event: TagsChanged) -> None:
        if event.tags is not None:
            self._replace_all(event.tags)
            return
        if event.tag is None:
            return
        if event.action is TagAction.DELETED:
            self._records.pop(event.tag.id, None)
            self._deleted.add(event.tag.id)
            self.expanded.discard(event.tag.id)
        elif event.tag.id not in self._deleted:
            self._records[event.tag.id] = event.tag

    def _on_colors_changed(self, event: TagColorsChanged) -> None:
        self._colors = dict(event.colors)

    def _on_favorites_updated(self, event: FavoriteTagsUpdated) -> None:
        self._favorites = list(event.favorite_tags)

    def _on_filter_changed(self, event: TagFilterChanged) -> None:
        self.selected_tag = event.tag_name

    def _replace_all(self, records: List[TagRecord]) -> None:
        self._records = {r.id: r for r in records}
        self._deleted = set()
        self.expanded &= set(self._records)

    # ========== Derived state ==========

    @property
    def records(self) -> List[TagRecord]:
        """Cached tags in sort_order."""
        return sorted(self._records.values(), key=lambda r: r.sort_order)

    @property
    def favorites(self) -> List[str]:
        return list(self._favorites)

    @property
    def colors(self) -> Dict[str, str]:
        return dict(self._colors)

    def hierarchy(self) -> Hierarchy:
        return build_hierarchy(filter_tags(self.records, self.search_term))

    def linearized(self) -> List[HierarchyNode]:
        """Every displayable node, before paging.

        While a search is active, parents in the result are shown expanded
        so their matching children stay visible.
        """
        tree = self.hierarchy()
        expanded = set(self.expanded)
        if self.search_term.strip():
            expanded.update(n.id for n in tree.hierarchy.values() if n.children)
        return flatten(tree.root_tags, expanded)

    def visible_nodes(self) -> List[HierarchyNode]:
        return self.window.visible(self.linearized())

    def has_more(self) -> bool:
        return self.window.has_more(self.linearized())

    def color_for(self, tag: TagRecord) -> str:
        return resolve_color(tag.name, self._colors, tag.color)

    # ========== View actions ==========

    def load_more(self) -> bool:
        """Reveal the next page; False when everything is already shown."""
        return self.window.load_more(self.linearized())

    def toggle_expanded(self, tag_id: str) -> bool:
        """Expand or collapse a tag. Returns the new expanded state."""
        if tag_id in self.expanded:
            self.expanded.discard(tag_id)
            return False
        self.expanded.add(tag_id)
        return True

    def set_search(self, term: Optional[str]) -> None:
        """Start a new search session; paging starts over."""
        self.search_term = (term or "").strip()
        self.window.reset()

    def render(self) -> str:
        """Visible nodes as indented text lines."""
        lines = []
        for node in self.visible_nodes():
            marker = "-"
            if node.children:
                marker = "v" if node.id in self.expanded or self.search_term else ">"
            flags = ""
            if node.is_pinned:
                flags += " [pinned]"
            if node.is_favorite:
                flags += " [favorite]"
            lines.append(
                f"{'  ' * node.level}{marker} {node.name} "
                f"({self.color_for(node.record)}, id: {node.id}){flags}"
            )
        if self.has_more():
            remaining = len(self.linearized()) - self.window.limit
            lines.append(f"... {remaining} more (use tt_load_more)")
        return "\n".join(lines)
