"""Storage layer for the TagTree MCP server."""

from tagtree_mcp.storage.favorites_repository import FavoritesRepository
from tagtree_mcp.storage.tag_repository import TagRepository
from tagtree_mcp.storage.tag_store import SqlTagStore, TagStore

__all__ = [
    "FavoritesRepository",
    "SqlTagStore",
    "TagRepository",
    "TagStore",
]
