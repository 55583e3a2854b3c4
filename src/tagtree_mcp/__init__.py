"""
TagTree MCP - hierarchical tag management for a personal note-taking app.
This package builds a parent/child tag tree from flat persisted records,
linearizes it for paginated display, resolves drag-and-drop restructuring,
cascades favorite/pinned flags, and keeps several views consistent through
a typed publish/subscribe bus. It is served as an MCP server.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tagtree-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"
