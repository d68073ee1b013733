"""
Watermark Resolver
Determines the half-open time window [since, now) a run fetches.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from dateutil import parser as date_parser

from jira_sync.config_manager import SyncSettings
from jira_sync.exceptions import InvalidWindow
from jira_sync.utils.helpers import ensure_utc, utc_now


@dataclass(frozen=True)
class SyncWindow:
    """Half-open interval [since, until) bounding the fetch."""
    since: datetime
    until: datetime
    overridden: bool = False

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        return self.since <= moment < self.until

    def to_dict(self) -> dict:
        return {
            'window_since': self.since.isoformat(),
            'window_until': self.until.isoformat(),
        }


def resolve_window(
    since: Optional[str],
    settings: SyncSettings,
    now: Optional[datetime] = None
) -> SyncWindow:
    """
    Resolve the sync window for a run.

    Args:
        since: Optional ISO-8601 override; used verbatim as the lower bound
        settings: Window defaults (lookback and clock-skew tolerance)
        now: Current time, injectable for tests

    Returns:
        SyncWindow

    Raises:
        InvalidWindow: If the override cannot be parsed or lies in the future
            beyond the clock-skew tolerance
    """
    now = ensure_utc(now) if now else utc_now()

    if since is None or not str(since).strip():
        return SyncWindow(
            since=now - timedelta(minutes=settings.default_lookback_minutes),
            until=now
        )

    raw = str(since).strip()
    try:
        parsed = date_parser.isoparse(raw)
    except (ValueError, OverflowError) as e:
        raise InvalidWindow(f"Cannot parse since override: {e}", since=raw) from e

    # Offset-less overrides are taken as UTC
    parsed = ensure_utc(parsed)

    if parsed > now + timedelta(seconds=settings.clock_skew_seconds):
        raise InvalidWindow(
            "Since override lies in the future",
            since=parsed.isoformat(),
            now=now.isoformat()
        )

    return SyncWindow(since=parsed, until=now, overridden=True)
