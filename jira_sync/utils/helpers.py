"""
Helper Utilities Module
Common utility functions used across the application.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytz
from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def parse_jira_datetime(dt_string: Optional[str]) -> Optional[datetime]:
    """
    Parse Jira datetime string to an aware UTC datetime.

    Args:
        dt_string: Jira datetime string (ISO 8601 format, e.g. 2024-05-01T10:00:00.000+0200)

    Returns:
        datetime object or None if parsing fails
    """
    if not dt_string or not isinstance(dt_string, str):
        return None

    try:
        return ensure_utc(date_parser.isoparse(dt_string))
    except (ValueError, TypeError, OverflowError):
        pass

    try:
        return ensure_utc(date_parser.parse(dt_string))
    except (ValueError, TypeError, OverflowError):
        return None


def parse_jira_date(date_string: Optional[str]) -> Optional[date]:
    """
    Parse Jira date string (YYYY-MM-DD) to Python date.

    Args:
        date_string: Date string in YYYY-MM-DD format

    Returns:
        date object or None if parsing fails
    """
    if not date_string or not isinstance(date_string, str):
        return None

    try:
        return datetime.strptime(date_string[:10], '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None


def safe_get(data: Dict, *keys, default=None) -> Any:
    """
    Safely get nested dictionary value.

    Args:
        data: Dictionary to traverse
        *keys: Keys to follow
        default: Default value if key not found

    Returns:
        Value at path or default
    """
    result = data
    for key in keys:
        if isinstance(result, dict):
            result = result.get(key)
        else:
            return default
        if result is None:
            return default
    return result


def sanitize_string(text: Optional[str], max_length: int = None) -> Optional[str]:
    """
    Sanitize string for database storage.

    Args:
        text: Text to sanitize
        max_length: Maximum length (truncate if exceeded)

    Returns:
        Sanitized string
    """
    if text is None:
        return None

    text = str(text).replace('\x00', '')

    if max_length and len(text) > max_length:
        text = text[:max_length - 3] + '...'

    return text


# Block-level ADF node types that end a line of text
_BLOCK_NODES = {'paragraph', 'heading', 'blockquote', 'codeBlock', 'listItem', 'rule', 'panel', 'tableRow'}


def adf_to_text(node: Any) -> Optional[str]:
    """
    Flatten an Atlassian Document Format node tree to plain text.

    Plain strings are returned unchanged; anything that is not a document
    yields None.
    """
    if node is None:
        return None
    if isinstance(node, str):
        return node
    if not isinstance(node, dict):
        return None

    lines: List[str] = []
    current: List[str] = []

    def flush():
        if current:
            lines.append(''.join(current).strip())
            current.clear()

    def walk(item: Any) -> None:
        if not isinstance(item, dict):
            return
        node_type = item.get('type')
        if node_type == 'text':
            current.append(item.get('text', ''))
        elif node_type == 'hardBreak':
            flush()
        elif node_type in ('mention', 'emoji'):
            current.append(safe_get(item, 'attrs', 'text', default=''))
        elif node_type == 'inlineCard':
            current.append(safe_get(item, 'attrs', 'url', default=''))

        for child in item.get('content') or []:
            walk(child)

        if node_type in _BLOCK_NODES:
            flush()

    walk(node)
    flush()

    text = '\n'.join(line for line in lines if line)
    return text or None
