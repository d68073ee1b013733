#!/usr/bin/env python
"""
Run Sync Script
Command-line entry point for one incremental sync run.
"""

import argparse
import json
import os
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from jira_sync.config_manager import ConfigManager, SyncConfig
from jira_sync.exceptions import ConfigurationError
from jira_sync.sync_pipeline import run_sync
from jira_sync.utils.logger import setup_logging, get_logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Sync recently updated Jira issues')
    parser.add_argument(
        '--since',
        default=os.getenv('SINCE') or None,
        help='ISO-8601 lower bound of the window (default: one hour ago; env SINCE)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=None,
        help='Wall-clock budget for the run in seconds (default: sync.run_timeout_seconds)'
    )
    parser.add_argument(
        '--config-dir',
        default=None,
        help='Directory containing config.yaml'
    )
    return parser.parse_args(argv)


def with_timeout(config: SyncConfig, timeout: Optional[float]) -> SyncConfig:
    """Override the configured run budget when one is given on the command line."""
    if timeout is None:
        return config
    return replace(config, sync=replace(config.sync, run_timeout_seconds=timeout))


def main():
    """Main entry point for sync script."""
    args = parse_args()

    manager = ConfigManager(args.config_dir)
    setup_logging(manager.get_logging_config())
    logger = get_logger(__name__)

    try:
        config = with_timeout(manager.build_sync_config(), args.timeout)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message} {e.context}")
        sys.exit(2)

    # Stop between pages when the job runner asks us to terminate
    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())

    logger.info(f"Starting sync: since={args.since or 'default'}")
    result = run_sync(config, since=args.since, stop_event=stop_event)

    print(json.dumps(result.to_dict(), indent=2, default=str))

    if not result.succeeded:
        sys.exit(1)


if __name__ == '__main__':
    main()
