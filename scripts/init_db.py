#!/usr/bin/env python
"""
Initialize Database Script
Creates the target and stage tables.
"""

import argparse
import sys
from pathlib import Path

from sqlalchemy import inspect

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from jira_sync.config_manager import ConfigManager
from jira_sync.database.connection import DatabaseConnection
from jira_sync.utils.logger import setup_logging, get_logger


def main():
    """Main entry point for database initialization."""
    parser = argparse.ArgumentParser(description='Initialize sync tables')
    parser.add_argument(
        '--config-dir',
        default=None,
        help='Directory containing config.yaml'
    )

    args = parser.parse_args()

    manager = ConfigManager(args.config_dir)
    setup_logging(manager.get_logging_config())
    logger = get_logger(__name__)

    try:
        config = manager.build_sync_config()
        db = DatabaseConnection(config.database)

        if not db.check_connection():
            print("Error: Cannot connect to database")
            sys.exit(1)

        print("Database connection successful")

        logger.info("Creating tables")
        db.create_tables()

        print(f"\n{'='*50}")
        print("Database Initialized Successfully")
        print(f"{'='*50}")

        tables = inspect(db.engine).get_table_names()
        for table in sorted(tables):
            print(f"  - {table}")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
