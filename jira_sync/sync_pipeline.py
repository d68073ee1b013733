"""
Sync Pipeline Module
Orchestrates one incremental run: resolve the window, fetch pages, normalize
and stage each page, then merge the stage into the target table.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from jira_sync.config_manager import SyncConfig
from jira_sync.database.connection import DatabaseConnection
from jira_sync.database.merge import MergeExecutor
from jira_sync.database.stage import StageWriter
from jira_sync.exceptions import MergeFailed, RunCancelled, StageWriteFailed, SyncError
from jira_sync.jira_client import JiraClient, fetch_pages, search_fields
from jira_sync.normalizer import normalize_issue
from jira_sync.utils.helpers import utc_now
from jira_sync.utils.logger import get_logger, log_event
from jira_sync.watermark import SyncWindow, resolve_window

logger = get_logger(__name__)


class RunState(Enum):
    IDLE = 'idle'
    RESOLVING_WINDOW = 'resolving_window'
    FETCHING = 'fetching'
    STAGING = 'staging'
    MERGING = 'merging'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class RunOutcome(Enum):
    SUCCESS = 'success'
    PARTIAL = 'partial'  # merged, but records without a key or updated time were skipped
    FAILED = 'failed'


@dataclass
class Run:
    """State and counters of one invocation. Lives only as long as the run."""
    started_at: datetime
    state: RunState = RunState.IDLE
    window: Optional[SyncWindow] = None
    pages: int = 0
    fetched: int = 0
    staged: int = 0
    skipped: int = 0
    merged: int = 0
    inserted: int = 0
    updated: int = 0
    page_index: Optional[int] = None
    finished_at: Optional[datetime] = None

    def counters(self) -> Dict[str, Any]:
        counts = {
            'pages': self.pages,
            'fetched': self.fetched,
            'staged': self.staged,
            'skipped': self.skipped,
            'merged': self.merged,
        }
        if self.window:
            counts.update(self.window.to_dict())
        return counts


@dataclass
class RunResult:
    """Terminal outcome of a run plus a structured failure description."""
    outcome: RunOutcome
    run: Run
    failure: Optional[Dict[str, Any]] = field(default=None)

    @property
    def succeeded(self) -> bool:
        return self.outcome is not RunOutcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        run = self.run
        duration = None
        if run.finished_at:
            duration = round((run.finished_at - run.started_at).total_seconds(), 3)
        return {
            'outcome': self.outcome.value,
            'started_at': run.started_at.isoformat(),
            'finished_at': run.finished_at.isoformat() if run.finished_at else None,
            'duration_seconds': duration,
            'inserted': run.inserted,
            'updated': run.updated,
            **run.counters(),
            'failure': self.failure,
        }


class SyncOrchestrator:
    """
    Sequences one sync run.

    Fetching and staging are interleaved per page, so a failure at any point
    before the merge leaves the target table untouched. Only the per-page HTTP
    retry policy retries anything; a failed run is reported and left to the
    caller to re-invoke.
    """

    def __init__(
        self,
        config: SyncConfig,
        client: JiraClient,
        db: DatabaseConnection,
        stop_event: threading.Event = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config
        self.client = client
        self.db = db
        self.stage = StageWriter(db)
        self.merger = MergeExecutor(db)
        self.stop_event = stop_event or threading.Event()
        self._clock = clock

    def _transition(self, run: Run, state: RunState, **fields) -> None:
        run.state = state
        log_event(logger, logging.INFO, f"Sync run {state.value}", state=state.value, **run.counters(), **fields)

    def run(self, since: Optional[str] = None, now: datetime = None) -> RunResult:
        """
        Execute one run.

        Args:
            since: Optional ISO-8601 lower bound overriding the default window
            now: Current time, injectable for tests

        Returns:
            RunResult; sync errors are reported through it, not raised
        """
        run = Run(started_at=now or utc_now())

        try:
            self._execute(run, since, now)
        except SyncError as e:
            return self._fail(run, e)
        except Exception as e:
            logger.exception(f"Sync run aborted by unexpected error: {type(e).__name__}")
            self._discard_stage(run)
            raise
        finally:
            self.client.set_deadline(None)

        run.finished_at = utc_now()
        outcome = RunOutcome.PARTIAL if run.skipped else RunOutcome.SUCCESS
        self._transition(run, RunState.SUCCEEDED, outcome=outcome.value)
        return RunResult(outcome=outcome, run=run)

    def _execute(self, run: Run, since: Optional[str], now: Optional[datetime]) -> None:
        settings = self.config

        self._transition(run, RunState.RESOLVING_WINDOW)
        run.window = resolve_window(since, settings.sync, now=now)

        leftover = self.stage.clear()
        if leftover:
            log_event(logger, logging.WARNING, "Cleared rows left in stage by a previous run", rows=leftover)

        if settings.sync.run_timeout_seconds:
            self.client.set_deadline(self._clock() + settings.sync.run_timeout_seconds)

        self._transition(run, RunState.FETCHING)
        pages = fetch_pages(
            self.client,
            run.window,
            settings.jira.page_size,
            search_fields(settings.fields),
            settings.jira.jql_filter,
            settings.jira.timezone
        )

        for page in pages:
            run.page_index = page.index
            run.pages += 1
            run.fetched += len(page.issues)

            rows = [normalize_issue(issue, settings.fields) for issue in page.issues]
            # key and updated are required by the target table
            valid = [row for row in rows if row.key and row.updated]
            if len(valid) < len(rows):
                run.skipped += len(rows) - len(valid)
                logger.warning(f"Skipped {len(rows) - len(valid)} issues without a key or updated time on page {page.index}")

            run.state = RunState.STAGING
            run.staged += self.stage.append(valid, page_index=page.index)
            logger.debug(f"Page {page.index}: fetched {len(page.issues)}, staged {len(valid)}")

            if self.stop_event.is_set():
                raise RunCancelled("Stop requested", page_index=page.index)

            run.state = RunState.FETCHING

        self._transition(run, RunState.MERGING)
        result = self.merger.merge()
        run.merged = result.merged
        run.inserted = result.inserted
        run.updated = result.updated

    def _discard_stage(self, run: Run) -> None:
        """Best-effort removal of this run's staged rows."""
        try:
            removed = self.stage.clear()
            if removed:
                logger.info(f"Discarded {removed} staged rows")
        except StageWriteFailed as e:
            logger.warning(f"Could not clear stage after failure: {e.message}")

    def _fail(self, run: Run, error: SyncError) -> RunResult:
        run.finished_at = utc_now()
        failed_in = run.state

        # A failed merge keeps the stage for inspection and retry
        if not isinstance(error, MergeFailed):
            self._discard_stage(run)

        failure = {
            **error.to_dict(),
            'state': failed_in.value,
            'page_index': error.context.get('page_index', run.page_index),
            'counts': run.counters(),
        }
        run.state = RunState.FAILED
        log_event(
            logger,
            logging.ERROR,
            f"Sync run failed: {error.message}",
            state=RunState.FAILED.value,
            error_kind=error.kind,
            failed_in=failed_in.value,
            **run.counters()
        )
        return RunResult(outcome=RunOutcome.FAILED, run=run, failure=failure)


def run_sync(
    config: SyncConfig,
    since: Optional[str] = None,
    stop_event: threading.Event = None,
    db: DatabaseConnection = None
) -> RunResult:
    """
    Convenience function to run one sync with clients built from config.

    Args:
        config: Run configuration
        since: Optional ISO-8601 override for the window lower bound
        stop_event: Set to stop between pages
        db: Existing database connection to reuse

    Returns:
        RunResult
    """
    client = JiraClient(config.jira, config.retry)
    owns_db = db is None
    db = db or DatabaseConnection(config.database)

    try:
        return SyncOrchestrator(config, client, db, stop_event=stop_event).run(since=since)
    finally:
        client.close()
        if owns_db:
            db.dispose()
