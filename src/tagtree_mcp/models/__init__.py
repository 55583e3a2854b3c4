"""Data models for tags."""
