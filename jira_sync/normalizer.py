"""
Record Normalizer
Maps one Jira issue (nested JSON) to one flat row of the analytical schema.

Normalization is total and deterministic: malformed or missing values become
None (scalars) or empty tuples (collections), unknown fields are ignored, and
nothing here performs I/O or reads the clock.
"""

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from jira_sync.config_manager import FieldMap
from jira_sync.utils.helpers import (
    adf_to_text, parse_jira_date, parse_jira_datetime, safe_get, sanitize_string
)

# Keys that carry a human-readable label, in order of preference
LABEL_KEYS = ('value', 'name', 'displayName', 'title')


class FieldKind(Enum):
    """Shape of a Jira field value."""
    STRING = 'string'
    SELECT = 'select'
    MULTI_SELECT = 'multi_select'
    CASCADING_SELECT = 'cascading_select'
    USER = 'user'
    DATE = 'date'
    DATETIME = 'datetime'
    SLA = 'sla'


@dataclass(frozen=True)
class SlaValue:
    """Reduced SLA metric; `raw` is the serialized source object."""
    breached: bool
    raw: Optional[str] = None


@dataclass(frozen=True)
class FieldValue:
    """A field value tagged with the kind it was resolved as."""
    kind: FieldKind
    value: Any

    def as_tuple(self) -> Tuple[str, ...]:
        if self.kind is FieldKind.MULTI_SELECT:
            return tuple(self.value)
        if isinstance(self.value, str):
            return (self.value,)
        return ()


@dataclass(frozen=True)
class NormalizedRow:
    """Flat projection of one issue, as written to the stage table."""
    key: Optional[str]
    project: Optional[str] = None
    issue_type: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    resolution: Optional[str] = None
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    resolved: Optional[datetime] = None
    due_date: Optional[date] = None
    team: Tuple[str, ...] = ()
    filiale: Tuple[str, ...] = ()
    time_to_resolution: Optional[str] = None
    time_to_first_response: Optional[str] = None
    sla_breached: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'team', tuple(self.team))
        object.__setattr__(self, 'filiale', tuple(self.filiale))

    def to_record(self) -> Dict[str, Any]:
        """Column -> value mapping for insertion. `last_sync` is set at merge time."""
        record = asdict(self)
        record['team'] = list(self.team)
        record['filiale'] = list(self.filiale)
        return record


# ========================================
# Coercions per field kind
# ========================================

def _label(raw: Any) -> Optional[str]:
    """Display label of an option, status, priority or similar object."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw or None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    if isinstance(raw, dict):
        for key in LABEL_KEYS:
            value = raw.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def _coerce_string(raw: Any) -> Optional[str]:
    if isinstance(raw, dict):
        return adf_to_text(raw) if raw.get('type') == 'doc' else _label(raw)
    if isinstance(raw, (list, tuple)):
        return None
    return sanitize_string(raw) if raw is not None else None


def _coerce_select(raw: Any) -> Optional[str]:
    if isinstance(raw, (list, tuple)):
        labels = _coerce_multi_select(raw)
        return labels[0] if labels else None
    return _label(raw)


def _coerce_multi_select(raw: Any) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    labels = []
    for item in raw:
        label = _coerce_cascading_select(item) if isinstance(item, dict) and 'child' in item else _label(item)
        if label:
            labels.append(label)
    return labels


def _coerce_cascading_select(raw: Any) -> Optional[str]:
    parent = _label(raw)
    if parent is None:
        return None
    child = _label(raw.get('child')) if isinstance(raw, dict) else None
    return f"{parent} / {child}" if child else parent


def _coerce_user(raw: Any) -> Optional[str]:
    if isinstance(raw, dict):
        name = raw.get('displayName') or raw.get('name')
        return name if isinstance(name, str) and name else None
    if isinstance(raw, str):
        return raw or None
    return None


def _coerce_date(raw: Any) -> Optional[date]:
    return parse_jira_date(raw) if isinstance(raw, str) else None


def _coerce_datetime(raw: Any) -> Optional[datetime]:
    return parse_jira_datetime(raw) if isinstance(raw, str) else None


def _is_breached(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return False


def _coerce_sla(raw: Any) -> Optional[SlaValue]:
    """
    Reduce an SLA object.

    Understands the service-desk shape (ongoingCycle / completedCycles with
    breached, goalDuration, elapsedTime) and a flat {target, elapsed, breached}
    shape. Anything else is treated as absent.
    """
    if not isinstance(raw, dict):
        return None

    serialized = json.dumps(raw, sort_keys=True, default=str)

    if 'ongoingCycle' in raw or 'completedCycles' in raw:
        cycles = [c for c in raw.get('completedCycles') or [] if isinstance(c, dict)]
        ongoing = raw.get('ongoingCycle') if isinstance(raw.get('ongoingCycle'), dict) else None
        if ongoing:
            cycles.append(ongoing)
        breached = any(_is_breached(c.get('breached')) for c in cycles)
        return SlaValue(breached=breached, raw=serialized)

    return SlaValue(breached=_is_breached(raw.get('breached')), raw=serialized)


COERCERS: Dict[FieldKind, Callable[[Any], Any]] = {
    FieldKind.STRING: _coerce_string,
    FieldKind.SELECT: _coerce_select,
    FieldKind.MULTI_SELECT: _coerce_multi_select,
    FieldKind.CASCADING_SELECT: _coerce_cascading_select,
    FieldKind.USER: _coerce_user,
    FieldKind.DATE: _coerce_date,
    FieldKind.DATETIME: _coerce_datetime,
    FieldKind.SLA: _coerce_sla,
}


def resolve_field(kind: FieldKind, raw: Any) -> FieldValue:
    """Resolve a raw JSON value as the given kind. Never raises."""
    try:
        value = COERCERS[kind](raw)
    except (TypeError, ValueError, AttributeError):
        value = [] if kind is FieldKind.MULTI_SELECT else None
    return FieldValue(kind, value)


def _field_kind(name: str, default: FieldKind = FieldKind.MULTI_SELECT) -> FieldKind:
    try:
        return FieldKind(name)
    except ValueError:
        return default


# ========================================
# Issue normalization
# ========================================

def normalize_issue(issue: Any, field_map: FieldMap = None) -> NormalizedRow:
    """
    Normalize one issue returned by the search API.

    Args:
        issue: Issue JSON ({'key': ..., 'fields': {...}}); any shape is accepted
        field_map: Custom field ids for team, filiale and the SLA metrics

    Returns:
        NormalizedRow; `key` is None when the issue carries no usable key
    """
    field_map = field_map or FieldMap()
    if not isinstance(issue, dict):
        issue = {}
    fields = issue.get('fields')
    if not isinstance(fields, dict):
        fields = {}

    def get(kind: FieldKind, name: Optional[str]) -> FieldValue:
        return resolve_field(kind, fields.get(name) if name else None)

    key = issue.get('key')
    key = key.strip() if isinstance(key, str) and key.strip() else None

    ttr = get(FieldKind.SLA, field_map.time_to_resolution).value
    ttfr = get(FieldKind.SLA, field_map.time_to_first_response).value

    return NormalizedRow(
        key=key,
        project=_label(safe_get(fields, 'project', 'key')),
        issue_type=get(FieldKind.SELECT, 'issuetype').value,
        summary=get(FieldKind.STRING, 'summary').value,
        description=get(FieldKind.STRING, 'description').value,
        status=get(FieldKind.SELECT, 'status').value,
        priority=get(FieldKind.SELECT, 'priority').value,
        resolution=get(FieldKind.SELECT, 'resolution').value,
        assignee=get(FieldKind.USER, 'assignee').value,
        reporter=get(FieldKind.USER, 'reporter').value,
        created=get(FieldKind.DATETIME, 'created').value,
        updated=get(FieldKind.DATETIME, 'updated').value,
        resolved=get(FieldKind.DATETIME, 'resolutiondate').value,
        due_date=get(FieldKind.DATE, 'duedate').value,
        team=get(_field_kind(field_map.team_kind), field_map.team).as_tuple(),
        filiale=get(_field_kind(field_map.filiale_kind), field_map.filiale).as_tuple(),
        time_to_resolution=ttr.raw if ttr else None,
        time_to_first_response=ttfr.raw if ttfr else None,
        sla_breached=bool((ttr and ttr.breached) or (ttfr and ttfr.breached))
    )
