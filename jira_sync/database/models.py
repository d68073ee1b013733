"""
Table Definitions
The durable issue table and its per-run stage table share one column set.
"""

from dataclasses import dataclass
from typing import List

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Index, Integer, JSON, MetaData, String, Table, Text
)

from jira_sync.config_manager import DatabaseSettings


def issue_columns(keyed: bool = False) -> List[Column]:
    """The normalized issue columns, `last_sync` included."""
    return [
        Column('key', String(64), nullable=False, primary_key=keyed),
        Column('project', String(64)),
        Column('issue_type', String(255)),
        Column('summary', Text),
        Column('description', Text),
        Column('status', String(255)),
        Column('priority', String(255)),
        Column('resolution', String(255)),
        Column('assignee', String(255)),
        Column('reporter', String(255)),
        Column('created', DateTime(timezone=True)),
        Column('updated', DateTime(timezone=True), nullable=False),
        Column('resolved', DateTime(timezone=True)),
        Column('due_date', Date),
        Column('team', JSON, nullable=False, default=list),
        Column('filiale', JSON, nullable=False, default=list),
        Column('time_to_resolution', Text),
        Column('time_to_first_response', Text),
        Column('sla_breached', Boolean, nullable=False, default=False),
        Column('last_sync', DateTime(timezone=True)),
    ]


# Columns written by the normalizer; last_sync is set by the merge
DATA_COLUMNS = [c.name for c in issue_columns() if c.name != 'last_sync']


@dataclass
class SyncTables:
    """Target and stage tables bound to one MetaData."""
    metadata: MetaData
    target: Table
    stage: Table


def build_tables(settings: DatabaseSettings, metadata: MetaData = None) -> SyncTables:
    """
    Declare the target and stage tables under the configured names.

    The target is keyed by `key` and indexed on `updated`; on PostgreSQL the
    index is BRIN, which suits an append-mostly time column. The stage table
    carries an autoincrement `stage_seq` recording insertion order.
    """
    metadata = metadata or MetaData()
    target_name = settings.target_table
    stage_name = settings.stage_table

    target = Table(
        target_name,
        metadata,
        *issue_columns(keyed=True),
        Index(f'ix_{target_name}_updated', 'updated', postgresql_using='brin'),
    )

    stage = Table(
        stage_name,
        metadata,
        Column('stage_seq', Integer, primary_key=True, autoincrement=True),
        *issue_columns(),
    )

    return SyncTables(metadata=metadata, target=target, stage=stage)
