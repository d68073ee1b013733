"""
Shared test builders: configuration, an in-memory database and a scripted Jira client.
"""

from typing import Dict, List, Optional

from sqlalchemy import select

from jira_sync.config_manager import (
    DatabaseSettings, FieldMap, JiraSettings, RetrySettings, SyncConfig, SyncSettings
)
from jira_sync.database.connection import DatabaseConnection
from jira_sync.jira_client import IssuePage

FIELDS = FieldMap(
    team='customfield_team',
    filiale='customfield_filiale',
    time_to_resolution='customfield_ttr',
    time_to_first_response='customfield_ttfr'
)


def make_config(page_size: int = 100, **sync_overrides) -> SyncConfig:
    return SyncConfig(
        jira=JiraSettings(
            url='https://example.atlassian.net',
            username='bot@example.com',
            api_token='secret-token',
            page_size=page_size,
            requests_per_second=0
        ),
        database=DatabaseSettings(url='sqlite://'),
        retry=RetrySettings(max_attempts=3, backoff_base=1.0, backoff_max=30.0),
        sync=SyncSettings(**sync_overrides),
        fields=FIELDS,
        trigger_secret='trigger-secret'
    )


def make_db(config: SyncConfig = None) -> DatabaseConnection:
    config = config or make_config()
    db = DatabaseConnection(config.database)
    db.create_tables()
    return db


def make_issue(
    key: Optional[str],
    status: str = 'Open',
    team: Optional[List[str]] = None,
    updated: str = '2024-05-01T10:00:00.000+0000',
    **fields
) -> Dict:
    """Issue JSON as returned by the search endpoint."""
    issue_fields = {
        'summary': f"Issue {key}",
        'status': {'id': '1', 'name': status, 'statusCategory': {'key': 'new'}},
        'updated': updated,
        'created': '2024-04-30T08:00:00.000+0000',
    }
    if team is not None:
        issue_fields[FIELDS.team] = [{'id': str(i), 'value': name} for i, name in enumerate(team)]
    issue_fields.update(fields)
    issue = {'id': '10000', 'self': 'https://example.atlassian.net/rest/api/3/issue/10000', 'fields': issue_fields}
    if key is not None:
        issue['key'] = key
    return issue


def table_rows(db: DatabaseConnection, table) -> List[Dict]:
    """All rows of a table as dicts, ordered by key."""
    with db.engine.connect() as conn:
        rows = conn.execute(select(table)).mappings().all()
    return sorted((dict(row) for row in rows), key=lambda r: (r['key'], r.get('stage_seq', 0)))


class FakeJiraClient:
    """Serves scripted pages; each page but the last carries a cursor."""

    def __init__(self, pages: List[List[Dict]], error: Exception = None, error_at: int = None):
        self.pages = pages
        self.error = error
        self.error_at = error_at
        self.calls = []
        self.deadline = None

    def set_deadline(self, deadline):
        self.deadline = deadline

    def search_page(self, jql, fields, page_size, next_page_token=None, page_index=0):
        self.calls.append({'jql': jql, 'token': next_page_token, 'page_index': page_index})
        if self.error is not None and page_index == self.error_at:
            raise self.error
        issues = self.pages[page_index] if page_index < len(self.pages) else []
        token = f"cursor-{page_index + 1}" if page_index + 1 < len(self.pages) else None
        return IssuePage(index=page_index, issues=issues, next_page_token=token)
