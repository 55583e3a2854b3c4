"""Configuration module for the TagTree MCP server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from tagtree_mcp import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside the database
_USER_ENV = Path.home() / ".tagtree" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Page sizes above this make the first render noticeably slow on the host
_PAGE_SIZE_WARN = 500


class TagTreeConfig(BaseModel):
    """Configuration for the TagTree server."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("TAGTREE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("TAGTREE_DATABASE_PATH", "data/db/tagtree.db")
        )
    )
    # Owner of the tag set; names are unique per user
    user_id: int = Field(
        default_factory=lambda: int(os.getenv("TAGTREE_USER_ID", "1"))
    )
    # Number of linearized nodes revealed per page
    page_size: int = Field(
        default_factory=lambda: int(os.getenv("TAGTREE_PAGE_SIZE", "30"))
    )
    # Preset key used when a tag has no saved color
    default_color: str = Field(
        default_factory=lambda: os.getenv("TAGTREE_DEFAULT_COLOR", "slate")
    )
    # Log directory (None means ~/.tagtree/logs)
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("TAGTREE_LOG_DIR")) if os.getenv("TAGTREE_LOG_DIR") else None
        )
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("TAGTREE_SERVER_NAME", "tagtree-mcp"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_view_config(self) -> "TagTreeConfig":
        """Validate paging limits."""
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.page_size > _PAGE_SIZE_WARN:
            logger.warning(
                "page_size=%d is large; the first page renders every node at once.",
                self.page_size,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = TagTreeConfig()
