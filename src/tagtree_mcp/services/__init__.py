"""Tag tree services."""
