#!/usr/bin/env python
"""Main entry point for the TagTree MCP server."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

from tagtree_mcp.config import config
from tagtree_mcp.exceptions import ConfigurationError
from tagtree_mcp.models.db_models import init_db
from tagtree_mcp.observability import configure_logging, metrics
from tagtree_mcp.server.mcp_server import TagTreeMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="TagTree MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("TAGTREE_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("TAGTREE_LOG_LEVEL", "INFO")
    )
    parser.add_argument(
        "--page-size",
        help="Number of tree rows shown per page",
        type=int,
        default=None
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.page_size is not None:
        if args.page_size < 1:
            raise ConfigurationError("--page-size must be >= 1", config_key="page_size")
        config.page_size = args.page_size


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def main():
    """Run the TagTree MCP server."""
    args = parse_args()
    try:
        update_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(2)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(config.log_dir, level=log_level, console=True)
    except Exception as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting TagTree MCP server")
        server = TagTreeMcpServer(engine=engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
