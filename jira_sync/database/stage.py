"""
Stage Writer
Appends normalized rows to the per-run stage table.
"""

from typing import Iterable, List

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from jira_sync.database.connection import DatabaseConnection
from jira_sync.exceptions import StageWriteFailed
from jira_sync.normalizer import NormalizedRow
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)


class StageWriter:
    """Append-only writer for the stage table."""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self.table = db.tables.stage

    def append(self, rows: Iterable[NormalizedRow], page_index: int = None) -> int:
        """
        Append rows in insertion order, in one transaction.

        Args:
            rows: Normalized rows; every row must carry a key
            page_index: Page the rows came from, for error context

        Returns:
            Number of rows written

        Raises:
            StageWriteFailed: On any write error; nothing from this call is kept
        """
        records: List[dict] = [row.to_record() for row in rows]
        if not records:
            return 0

        try:
            with self.db.transaction() as conn:
                # executemany keeps list order, which stage_seq records
                conn.execute(self.table.insert(), records)
        except SQLAlchemyError as e:
            raise StageWriteFailed(
                f"Stage append failed: {getattr(e, 'orig', None) or e}",
                page_index=page_index,
                rows=len(records)
            ) from e

        logger.debug(f"Staged {len(records)} rows from page {page_index}")
        return len(records)

    def clear(self) -> int:
        """
        Delete every staged row.

        Returns:
            Number of rows removed

        Raises:
            StageWriteFailed: If the delete fails
        """
        try:
            with self.db.transaction() as conn:
                result = conn.execute(self.table.delete())
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StageWriteFailed(f"Stage clear failed: {type(e).__name__}") from e

    def count(self) -> int:
        """Number of staged rows."""
        with self.db.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(self.table)).scalar_one()
