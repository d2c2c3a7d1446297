#!/usr/bin/env python
"""Main entry point for the Gravity notes engine."""
import argparse
import logging
import os
import sys
from pathlib import Path

from gravity_notes import __version__
from gravity_notes.config import config
from gravity_notes.exceptions import ConfigurationError, GravityError
from gravity_notes.observability import configure_logging
from gravity_notes.server.mcp_server import GravityMcpServer
from gravity_notes.services.lifecycle import CleanupScheduler
from gravity_notes.services.note_service import NoteService
from gravity_notes.storage.note_repository import NoteRepository


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Gravity notes engine (MCP server)")
    parser.add_argument(
        "--notes-dir",
        help="Directory for storing note files",
        type=str,
        default=os.environ.get("GRAVITY_NOTES_DIR")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite index file path (implies a file-backed index)",
        type=str,
        default=None
    )
    parser.add_argument(
        "--cleanup-interval",
        help="Seconds between background sweeps for empty notes",
        type=float,
        default=None
    )
    parser.add_argument(
        "--cleanup-max-age",
        help="Minutes an empty note may stay untouched before it is removed",
        type=int,
        default=None
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("GRAVITY_LOG_LEVEL", "INFO")
    )
    parser.add_argument("--version", action="version", version=__version__)
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.notes_dir:
        config.notes_dir = Path(args.notes_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
        config.in_memory_db = False
    if args.cleanup_interval is not None:
        if args.cleanup_interval <= 0:
            raise ConfigurationError(
                "Cleanup interval must be positive", config_key="cleanup_interval_seconds"
            )
        config.cleanup_interval_seconds = args.cleanup_interval
    if args.cleanup_max_age is not None:
        if args.cleanup_max_age < 0:
            raise ConfigurationError(
                "Cleanup max age cannot be negative", config_key="cleanup_max_age_minutes"
            )
        config.cleanup_max_age_minutes = args.cleanup_max_age


def main(argv=None):
    """Run the notes engine: background cleanup plus the MCP server."""
    args = parse_args(argv)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    try:
        update_config(args)
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(2)

    try:
        repository = NoteRepository()
    except GravityError as e:
        logger.error(f"Failed to open note store: {e}")
        sys.exit(1)

    service = NoteService(repository=repository)
    scheduler = CleanupScheduler(service.lifecycle)
    scheduler.start()

    try:
        logger.info("Starting Gravity notes MCP server")
        server = GravityMcpServer(service=service)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)
    finally:
        scheduler.stop()


if __name__ == "__main__":
    main()
