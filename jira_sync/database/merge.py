"""
Merge Executor
Upserts the latest staged row per key into the target table and clears the
stage, all in one transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, and_, func, literal, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from jira_sync.database.connection import DatabaseConnection
from jira_sync.database.models import DATA_COLUMNS
from jira_sync.exceptions import MergeFailed
from jira_sync.utils.helpers import utc_now
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class MergeResult:
    """Counts from one merge."""
    staged: int = 0
    merged: int = 0
    inserted: int = 0
    updated: int = 0
    merged_at: Optional[datetime] = None


def _dialect_insert(dialect: str):
    """INSERT construct supporting ON CONFLICT for the given dialect."""
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise MergeFailed(f"Unsupported database dialect for merge: {dialect}")
    return insert


class MergeExecutor:
    """Reconciles the stage table into the target table keyed by `key`."""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self.target = db.tables.target
        self.stage = db.tables.stage

    def _latest_rows(self, merged_at: datetime):
        """Select the last-staged row per key, with `last_sync` set to merge time."""
        stage = self.stage
        latest = (
            select(stage.c.key, func.max(stage.c.stage_seq).label('stage_seq'))
            .group_by(stage.c.key)
            .subquery('latest')
        )
        return select(
            *[stage.c[name] for name in DATA_COLUMNS],
            literal(merged_at, type_=DateTime(timezone=True)).label('last_sync')
        ).where(
            and_(stage.c.key == latest.c.key, stage.c.stage_seq == latest.c.stage_seq)
        )

    def _upsert(self, conn: Connection, merged_at: datetime) -> None:
        insert = _dialect_insert(self.db.dialect)
        stmt = insert(self.target).from_select(
            DATA_COLUMNS + ['last_sync'],
            self._latest_rows(merged_at)
        )
        # Full overwrite of every non-key column
        set_ = {name: stmt.excluded[name] for name in DATA_COLUMNS if name != 'key'}
        set_['last_sync'] = stmt.excluded.last_sync
        conn.execute(stmt.on_conflict_do_update(index_elements=[self.target.c.key], set_=set_))

    def _count(self, conn: Connection, query) -> int:
        return conn.execute(query).scalar_one()

    def _clear_stage(self, conn: Connection) -> None:
        conn.execute(self.stage.delete())

    def merge(self, merged_at: datetime = None) -> MergeResult:
        """
        Upsert staged rows into the target and clear the stage.

        Running it again after a failure is safe: the upsert is idempotent and
        the stage still holds every row.

        Args:
            merged_at: Value for `last_sync`; defaults to now

        Returns:
            MergeResult

        Raises:
            MergeFailed: Nothing was applied and the stage is intact
        """
        merged_at = merged_at or utc_now()
        result = MergeResult(merged_at=merged_at)
        stage_keys = select(self.stage.c.key).distinct()

        try:
            with self.db.transaction() as conn:
                result.staged = self._count(conn, select(func.count()).select_from(self.stage))
                result.merged = self._count(
                    conn, select(func.count()).select_from(stage_keys.subquery())
                )
                result.updated = self._count(
                    conn,
                    select(func.count()).select_from(self.target).where(self.target.c.key.in_(stage_keys))
                )
                result.inserted = result.merged - result.updated

                if result.staged:
                    self._upsert(conn, merged_at)
                self._clear_stage(conn)
        except SQLAlchemyError as e:
            raise MergeFailed(
                f"Merge failed and was rolled back: {getattr(e, 'orig', None) or e}",
                staged=result.staged
            ) from e

        logger.info(
            f"Merged {result.merged} keys from {result.staged} staged rows "
            f"({result.inserted} inserted, {result.updated} updated)"
        )
        return result
