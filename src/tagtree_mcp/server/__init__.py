"""MCP server for the tag tree."""
