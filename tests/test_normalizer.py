"""
Unit Tests for the Record Normalizer
Exercises each field kind and the SLA reduction with realistic Jira payloads.
"""

import json
import unittest
from datetime import date, datetime

import pytz

from jira_sync.normalizer import FieldKind, NormalizedRow, normalize_issue, resolve_field

from fixtures import FIELDS, make_issue


def sla(breached, shape='cycles'):
    """SLA object in service-desk or flat shape."""
    if shape == 'flat':
        return {'target': 14400000, 'elapsed': 3600000, 'breached': breached}
    return {
        'id': '3',
        'name': 'Time to resolution',
        'completedCycles': [],
        'ongoingCycle': {
            'breached': breached,
            'paused': False,
            'goalDuration': {'millis': 14400000, 'friendly': '4h'},
            'elapsedTime': {'millis': 3600000, 'friendly': '1h'},
        },
    }


class TestNormalizeIssue(unittest.TestCase):
    """Test issue normalization."""

    def test_standard_fields(self):
        """Select-like fields project to display labels, people to display names."""
        issue = make_issue(
            'OPS-1',
            status='In Progress',
            priority={'id': '2', 'name': 'High'},
            resolution={'id': '10000', 'name': 'Done'},
            assignee={'accountId': 'abc', 'displayName': 'Ada Admin'},
            reporter={'accountId': 'def', 'displayName': 'Rita Reporter'},
            issuetype={'id': '10001', 'name': 'Incident'},
            project={'id': '100', 'key': 'OPS', 'name': 'Operations'},
            resolutiondate='2024-05-01T11:30:00.000+0200',
            duedate='2024-05-10'
        )

        row = normalize_issue(issue, FIELDS)

        self.assertEqual(row.key, 'OPS-1')
        self.assertEqual(row.status, 'In Progress')
        self.assertEqual(row.priority, 'High')
        self.assertEqual(row.resolution, 'Done')
        self.assertEqual(row.assignee, 'Ada Admin')
        self.assertEqual(row.reporter, 'Rita Reporter')
        self.assertEqual(row.issue_type, 'Incident')
        self.assertEqual(row.project, 'OPS')
        self.assertEqual(row.updated, datetime(2024, 5, 1, 10, 0, tzinfo=pytz.UTC))
        self.assertEqual(row.resolved, datetime(2024, 5, 1, 9, 30, tzinfo=pytz.UTC))
        self.assertEqual(row.due_date, date(2024, 5, 10))

    def test_missing_custom_fields(self):
        """No custom fields: empty collections, null scalars, no breach."""
        row = normalize_issue({'key': 'OPS-7', 'fields': {}}, FIELDS)

        self.assertEqual(row.key, 'OPS-7')
        self.assertEqual(row.team, ())
        self.assertEqual(row.filiale, ())
        self.assertIsNone(row.summary)
        self.assertIsNone(row.assignee)
        self.assertIsNone(row.updated)
        self.assertIsNone(row.time_to_resolution)
        self.assertIsNone(row.time_to_first_response)
        self.assertFalse(row.sla_breached)

    def test_malformed_input_never_fails(self):
        """Wrong shapes everywhere still normalize."""
        issue = {
            'key': 'OPS-8',
            'fields': {
                'status': ['not', 'an', 'object'],
                'assignee': 42,
                'created': 'not a date',
                'duedate': 20240510,
                FIELDS.team: 'SRE',
                FIELDS.filiale: {'unexpected': True},
                FIELDS.time_to_resolution: 'breached',
            }
        }

        row = normalize_issue(issue, FIELDS)

        self.assertEqual(row.status, 'not')
        self.assertIsNone(row.assignee)
        self.assertIsNone(row.created)
        self.assertIsNone(row.due_date)
        self.assertEqual(row.team, ('SRE',))
        self.assertEqual(row.filiale, ())
        self.assertFalse(row.sla_breached)

    def test_row_collections_are_immutable(self):
        row = NormalizedRow(key='OPS-1', team=['SRE'])

        self.assertEqual(row.team, ('SRE',))
        with self.assertRaises(AttributeError):
            row.team.append('DBA')
        self.assertEqual(row.to_record()['team'], ['SRE'])

    def test_non_dict_issue(self):
        for bad in (None, [], 'OPS-1', {'fields': None}):
            row = normalize_issue(bad, FIELDS)
            self.assertIsNone(row.key)
            self.assertEqual(row.team, ())

    def test_multi_select_keeps_order(self):
        row = normalize_issue(make_issue('OPS-2', team=['SRE', 'Network', 'DBA']), FIELDS)
        self.assertEqual(row.team, ('SRE', 'Network', 'DBA'))

    def test_unknown_fields_dropped(self):
        issue = make_issue('OPS-3', customfield_99999={'value': 'whatever'}, labels=['a'])
        record = normalize_issue(issue, FIELDS).to_record()
        self.assertNotIn('customfield_99999', record)
        self.assertNotIn('labels', record)

    def test_rich_text_description(self):
        """Document-format descriptions flatten to plain text."""
        description = {
            'type': 'doc',
            'version': 1,
            'content': [
                {'type': 'paragraph', 'content': [{'type': 'text', 'text': 'Disk full on '}, {'type': 'text', 'text': 'db-1'}]},
                {'type': 'bulletList', 'content': [
                    {'type': 'listItem', 'content': [{'type': 'paragraph', 'content': [{'type': 'text', 'text': 'rotate logs'}]}]},
                ]},
            ]
        }
        row = normalize_issue(make_issue('OPS-4', description=description), FIELDS)
        self.assertEqual(row.description, 'Disk full on db-1\nrotate logs')

    def test_cascading_select_filiale(self):
        issue = make_issue('OPS-5', **{FIELDS.filiale: {'value': 'France', 'child': {'value': 'Lyon'}}})
        row = normalize_issue(issue, FIELDS)
        self.assertEqual(row.filiale, ('France / Lyon',))

    def test_deterministic(self):
        issue = make_issue('OPS-6', team=['SRE'], **{FIELDS.time_to_resolution: sla(True)})
        self.assertEqual(normalize_issue(issue, FIELDS), normalize_issue(issue, FIELDS))

    def test_keyless_issue(self):
        row = normalize_issue(make_issue(None), FIELDS)
        self.assertIsNone(row.key)


class TestSlaReduction(unittest.TestCase):
    """Test SLA preservation and breach reduction."""

    def test_resolution_breach_wins(self):
        """A breached time-to-resolution flags the row whatever first response says."""
        for first_response in (sla(False), sla(True), None):
            fields = {FIELDS.time_to_resolution: sla(True)}
            if first_response is not None:
                fields[FIELDS.time_to_first_response] = first_response
            row = normalize_issue(make_issue('SUP-1', **fields), FIELDS)
            self.assertTrue(row.sla_breached)

    def test_first_response_breach(self):
        fields = {FIELDS.time_to_resolution: sla(False), FIELDS.time_to_first_response: sla(True, 'flat')}
        self.assertTrue(normalize_issue(make_issue('SUP-2', **fields), FIELDS).sla_breached)

    def test_both_absent(self):
        self.assertFalse(normalize_issue(make_issue('SUP-3'), FIELDS).sla_breached)

    def test_neither_breached(self):
        fields = {FIELDS.time_to_resolution: sla(False), FIELDS.time_to_first_response: sla(False, 'flat')}
        self.assertFalse(normalize_issue(make_issue('SUP-4', **fields), FIELDS).sla_breached)

    def test_completed_cycle_breach(self):
        value = {'completedCycles': [{'breached': True, 'goalDuration': {'millis': 1000}}], 'ongoingCycle': None}
        row = normalize_issue(make_issue('SUP-5', **{FIELDS.time_to_resolution: value}), FIELDS)
        self.assertTrue(row.sla_breached)

    def test_sla_preserved_serialized(self):
        """The original SLA object survives as JSON text."""
        value = sla(False)
        row = normalize_issue(make_issue('SUP-6', **{FIELDS.time_to_first_response: value}), FIELDS)
        self.assertEqual(json.loads(row.time_to_first_response), value)
        self.assertIsNone(row.time_to_resolution)


class TestResolveField(unittest.TestCase):
    """Test per-kind coercion."""

    def test_select_label_not_id(self):
        value = resolve_field(FieldKind.SELECT, {'id': '10020', 'value': 'Gold', 'self': 'https://x'})
        self.assertEqual(value.value, 'Gold')

    def test_multi_select_absent(self):
        self.assertEqual(resolve_field(FieldKind.MULTI_SELECT, None).as_tuple(), ())

    def test_single_select_as_collection(self):
        self.assertEqual(resolve_field(FieldKind.SELECT, {'value': 'Paris'}).as_tuple(), ('Paris',))

    def test_user_absent(self):
        self.assertIsNone(resolve_field(FieldKind.USER, None).value)

    def test_date_keeps_date_precision(self):
        self.assertEqual(resolve_field(FieldKind.DATE, '2024-02-29').value, date(2024, 2, 29))

    def test_sla_value(self):
        value = resolve_field(FieldKind.SLA, sla(True)).value
        self.assertTrue(value.breached)
        self.assertEqual(json.loads(value.raw), sla(True))


if __name__ == '__main__':
    unittest.main()
