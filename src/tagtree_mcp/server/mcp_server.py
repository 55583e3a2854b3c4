"""MCP server exposing the tag tree."""

import json
import logging
import uuid
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from tagtree_mcp.colors import PRESET_COLORS
from tagtree_mcp.config import config
from tagtree_mcp.exceptions import TagTreeError
from tagtree_mcp.models.db_models import init_db
from tagtree_mcp.models.schema import DeleteMode
from tagtree_mcp.observability import metrics, timed_operation
from tagtree_mcp.services.sync_bus import SyncBus
from tagtree_mcp.services.tag_service import MutationResult, TagService
from tagtree_mcp.services.tag_view import TagTreeView
from tagtree_mcp.storage.favorites_repository import FavoritesRepository
from tagtree_mcp.storage.tag_repository import TagRepository
from tagtree_mcp.storage.tag_store import SqlTagStore

logger = logging.getLogger(__name__)


class TagTreeMcpServer:
    """MCP server for the tag tree."""

    def __init__(self, engine=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine shared by the
                    repositories. When None, one is created from config.
        """
        self.mcp = FastMCP(config.server_name, version=config.server_version)
        if engine is None:
            engine = init_db()
        self.bus = SyncBus()
        self.store = SqlTagStore(TagRepository(engine=engine), self.bus)
        self.favorites = FavoritesRepository(engine=engine)
        self.notices: List[str] = []
        self.service = TagService(
            self.store, self.bus, favorites=self.favorites, notifier=self.notices.append
        )
        self.view = TagTreeView(self.store, self.bus, page_size=config.page_size)
        self.initialize()
        self._register_tools()

    def initialize(self) -> None:
        """Initialize services."""
        logger.info("TagTree MCP server initialized")

    async def _ensure_loaded(self) -> None:
        if not self.store.loaded:
            await self.store.load_from_database()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, TagTreeError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _format_result(self, result: MutationResult) -> str:
        text = result.message if result.success else f"Error: {result.message}"
        if result.tag is not None and result.success:
            text += f" (id: {result.tag.id})"
        while self.notices:
            text += f"\nNotice: {self.notices.pop(0)}"
        return text

    def _resolve_tag_id(self, identifier: str) -> str:
        """Accept a tag ID or a tag name."""
        if self.service.get_tag(identifier) is not None:
            return identifier
        tag = self.service.find_by_name(identifier)
        return tag.id if tag is not None else identifier

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="tt_create_tag")
        async def tt_create_tag(
            name: str,
            color: Optional[str] = None,
            parent: Optional[str] = None,
            is_parent: bool = False,
        ) -> str:
            """Create a tag.
            Args:
                name: Tag name (unique, case-insensitive)
                color: Preset key (slate, green, red, ...) or hex value like #FF8800
                parent: ID or name of a parent tag (optional)
                is_parent: Whether the tag can hold children
            """
            with timed_operation("tt_create_tag", name=name[:30]) as op:
                try:
                    await self._ensure_loaded()
                    parent_id = self._resolve_tag_id(parent) if parent else None
                    result = await self.service.create_tag(
                        name, color=color, parent_id=parent_id, is_parent=is_parent
                    )
                    op["success"] = result.success
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_list_tags")
        async def tt_list_tags() -> str:
            """Show the visible page of the tag tree.

            Collapsed parents hide their children; use tt_toggle_expand to
            open them and tt_load_more for the next page.
            """
            with timed_operation("tt_list_tags") as op:
                try:
                    await self._ensure_loaded()
                    nodes = self.view.visible_nodes()
                    op["visible"] = len(nodes)
                    if not nodes:
                        return "No tags found."
                    header = "Tags"
                    if self.view.search_term:
                        header += f" matching '{self.view.search_term}'"
                    return f"{header}:\n{self.view.render()}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_search_tags")
        async def tt_search_tags(term: str = "") -> str:
            """Filter the tree by name. An empty term clears the search.
            Args:
                term: Case-insensitive substring of the tag name
            """
            with timed_operation("tt_search_tags", term=term[:30]) as op:
                try:
                    await self._ensure_loaded()
                    self.view.set_search(term)
                    nodes = self.view.visible_nodes()
                    op["visible"] = len(nodes)
                    if not nodes:
                        return f"No tags match '{term}'."
                    return self.view.render()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_load_more")
        async def tt_load_more() -> str:
            """Reveal the next page of the tag tree."""
            with timed_operation("tt_load_more") as op:
                try:
                    await self._ensure_loaded()
                    loaded = self.view.load_more()
                    op["loaded"] = loaded
                    if not loaded:
                        return "All tags are already shown."
                    return self.view.render()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_toggle_expand")
        async def tt_toggle_expand(tag: str) -> str:
            """Expand or collapse a parent tag.
            Args:
                tag: ID or name of the tag
            """
            with timed_operation("tt_toggle_expand", tag=tag[:30]):
                try:
                    await self._ensure_loaded()
                    tag_id = self._resolve_tag_id(tag)
                    if self.service.get_tag(tag_id) is None:
                        return f"Tag not found: {tag}"
                    expanded = self.view.toggle_expanded(tag_id)
                    state = "expanded" if expanded else "collapsed"
                    return f"Tag {state}.\n{self.view.render()}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_rename_tag")
        async def tt_rename_tag(tag: str, new_name: str) -> str:
            """Rename a tag. Its color and favorite status are kept.
            Args:
                tag: ID or name of the tag
                new_name: The new name
            """
            with timed_operation("tt_rename_tag", tag=tag[:30]):
                try:
                    await self._ensure_loaded()
                    result = await self.service.rename_tag(
                        self._resolve_tag_id(tag), new_name
                    )
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_set_color")
        async def tt_set_color(tag: str, color: str) -> str:
            """Set a tag's color.
            Args:
                tag: ID or name of the tag
                color: Preset key or hex value like #FF8800
            """
            with timed_operation("tt_set_color", tag=tag[:30], color=color):
                try:
                    await self._ensure_loaded()
                    result = await self.service.set_color(self._resolve_tag_id(tag), color)
                    if not result.success:
                        presets = ", ".join(p.value for p in PRESET_COLORS)
                        return f"{self._format_result(result)}\nPresets: {presets}"
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_delete_tag")
        async def tt_delete_tag(tag: str, mode: str = "tag_only") -> str:
            """Delete a tag. Its children move to the top level.
            Args:
                tag: ID or name of the tag
                mode: tag_only (default), remove_from_notes (strip from every
                      note first) or with_notes (also delete its notes)
            """
            with timed_operation("tt_delete_tag", tag=tag[:30], mode=mode) as op:
                try:
                    try:
                        delete_mode = DeleteMode(mode.lower())
                    except ValueError:
                        return f"Invalid mode: {mode}. Valid modes are: {', '.join(m.value for m in DeleteMode)}"
                    await self._ensure_loaded()
                    result = await self.service.delete_tag(
                        self._resolve_tag_id(tag), delete_mode
                    )
                    text = self._format_result(result)
                    note_ids = result.data.get("note_ids")
                    if note_ids:
                        op["note_count"] = len(note_ids)
                        text += f"\nAffected notes: {', '.join(note_ids)}"
                    return text
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_promote_tag")
        async def tt_promote_tag(tag: str) -> str:
            """Turn a tag into a parent so other tags can be dropped on it.
            Args:
                tag: ID or name of the tag
            """
            with timed_operation("tt_promote_tag", tag=tag[:30]):
                try:
                    await self._ensure_loaded()
                    result = await self.service.promote_to_parent(self._resolve_tag_id(tag))
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_dissolve_tag")
        async def tt_dissolve_tag(tag: str) -> str:
            """Move every child of a parent to the top level and unmark the parent.
            Args:
                tag: ID or name of the parent tag
            """
            with timed_operation("tt_dissolve_tag", tag=tag[:30]):
                try:
                    await self._ensure_loaded()
                    result = await self.service.dissolve_parent(self._resolve_tag_id(tag))
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_move_tag")
        async def tt_move_tag(tag: str, onto: str) -> str:
            """Drag a tag and drop it on another tag.

            Dropping on a parent nests it there; dropping a child on a plain
            or top-level tag moves it to the top level; dropping on a
            sibling takes the sibling's position.
            Args:
                tag: ID or name of the dragged tag
                onto: ID or name of the tag it is dropped on
            """
            with timed_operation("tt_move_tag", tag=tag[:30], onto=onto[:30]) as op:
                try:
                    await self._ensure_loaded()
                    visible_ids = [n.id for n in self.view.linearized()]
                    result = await self.service.handle_drag_end(
                        self._resolve_tag_id(tag),
                        self._resolve_tag_id(onto),
                        visible_ids=visible_ids,
                    )
                    op["action"] = result.action
                    if result.action in ("noop", "none"):
                        return f"No change: {result.message}"
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_toggle_favorite")
        async def tt_toggle_favorite(tag: str) -> str:
            """Add a tag to favorites or remove it. A parent passes this to its children.
            Args:
                tag: ID or name of the tag
            """
            with timed_operation("tt_toggle_favorite", tag=tag[:30]):
                try:
                    await self._ensure_loaded()
                    result = await self.service.toggle_favorite(self._resolve_tag_id(tag))
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_toggle_pinned")
        async def tt_toggle_pinned(tag: str) -> str:
            """Pin a tag above its siblings or unpin it. A parent passes this to its children.
            Args:
                tag: ID or name of the tag
            """
            with timed_operation("tt_toggle_pinned", tag=tag[:30]):
                try:
                    await self._ensure_loaded()
                    result = await self.service.toggle_pinned(self._resolve_tag_id(tag))
                    return self._format_result(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_select_tag")
        async def tt_select_tag(tag: Optional[str] = None) -> str:
            """Filter notes by a tag. Omit the tag to clear the filter.
            Args:
                tag: ID or name of the tag (optional)
            """
            with timed_operation("tt_select_tag"):
                try:
                    await self._ensure_loaded()
                    tag_id = self._resolve_tag_id(tag) if tag else None
                    return self._format_result(self.service.select_tag(tag_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_list_favorites")
        async def tt_list_favorites() -> str:
            """List favorite tags."""
            with timed_operation("tt_list_favorites") as op:
                try:
                    await self._ensure_loaded()
                    names = self.service.list_favorites()
                    op["count"] = len(names)
                    if not names:
                        return "No favorite tags."
                    return "Favorite tags:\n" + "\n".join(f"- {n}" for n in names)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_export_tags")
        async def tt_export_tags() -> str:
            """Export every tag and the color map as JSON."""
            with timed_operation("tt_export_tags"):
                try:
                    await self._ensure_loaded()
                    return json.dumps(self.store.export_config(), indent=2)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_import_tags")
        async def tt_import_tags(data: str) -> str:
            """Import tags and colors from tt_export_tags output.

            Tags whose names already exist are skipped.
            Args:
                data: The exported JSON
            """
            with timed_operation("tt_import_tags") as op:
                try:
                    payload = json.loads(data)
                    await self._ensure_loaded()
                    created = await self.store.import_config(payload)
                    op["created"] = created
                    return f"Imported {created} tags."
                except json.JSONDecodeError:
                    return "Error: data is not valid JSON"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="tt_metrics")
        def tt_metrics() -> str:
            """Show operation counts and timings for this server process."""
            summary = metrics.get_summary()
            return json.dumps(summary, indent=2, default=str)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
