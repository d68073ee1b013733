"""
Unit Tests for configuration loading
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from jira_sync.config_manager import ConfigManager, substitute_env_vars
from jira_sync.exceptions import ConfigurationError

CONFIG = """
jira:
  url: ${TEST_JIRA_URL}
  username: ${TEST_JIRA_USER}
  api_token: ${TEST_JIRA_TOKEN}
  timezone: ${TEST_JIRA_TZ:-UTC}
  page_size: 500
database:
  url: sqlite://
  target_table: issues
sync:
  default_lookback_minutes: 30
  run_timeout_seconds: ${TEST_TIMEOUT:-600}
  retry:
    max_attempts: 4
fields:
  team: customfield_20000
  filiale_kind: cascading_select
trigger:
  secret: ${TEST_TRIGGER_SECRET:-}
"""

ENV = {
    'TEST_JIRA_URL': 'https://acme.atlassian.net/',
    'TEST_JIRA_USER': 'bot@acme.test',
    'TEST_JIRA_TOKEN': 'tok',
}


class TestConfigManager(unittest.TestCase):
    """Test config file loading."""

    def setUp(self):
        self.config_dir = Path(tempfile.mkdtemp())
        (self.config_dir / 'config.yaml').write_text(CONFIG, encoding='utf-8')

    def tearDown(self):
        shutil.rmtree(self.config_dir)

    def test_build_sync_config(self):
        with patch.dict(os.environ, ENV):
            config = ConfigManager(self.config_dir).build_sync_config()

        self.assertEqual(config.jira.url, 'https://acme.atlassian.net')
        self.assertEqual(config.jira.page_size, 100)
        self.assertEqual(config.database.target_table, 'issues')
        self.assertEqual(config.database.stage_table, 'jira_issues_stage')
        self.assertEqual(config.sync.default_lookback_minutes, 30)
        self.assertEqual(config.sync.run_timeout_seconds, 600.0)
        self.assertEqual(config.retry.max_attempts, 4)
        self.assertEqual(config.fields.team, 'customfield_20000')
        self.assertEqual(config.fields.filiale_kind, 'cascading_select')
        self.assertEqual(config.trigger_secret, '')
        self.assertEqual(config.jira.timezone, 'UTC')

    def test_missing_credentials(self):
        env = {k: v for k, v in ENV.items() if k != 'TEST_JIRA_TOKEN'}
        with patch.dict(os.environ, env):
            os.environ.pop('TEST_JIRA_TOKEN', None)
            with self.assertRaises(ConfigurationError) as ctx:
                ConfigManager(self.config_dir).build_sync_config()

        self.assertEqual(ctx.exception.context['missing'], ['api_token'])

    def test_unknown_timezone_rejected(self):
        with patch.dict(os.environ, {**ENV, 'TEST_JIRA_TZ': 'Mars/Olympus'}):
            with self.assertRaises(ConfigurationError) as ctx:
                ConfigManager(self.config_dir).build_sync_config()

        self.assertEqual(ctx.exception.context['timezone'], 'Mars/Olympus')

    def test_config_is_immutable(self):
        with patch.dict(os.environ, ENV):
            config = ConfigManager(self.config_dir).build_sync_config()

        with self.assertRaises(AttributeError):
            config.jira.page_size = 5


class TestSubstituteEnvVars(unittest.TestCase):

    def test_default_and_missing(self):
        with patch.dict(os.environ, {'PRESENT': 'yes'}):
            os.environ.pop('ABSENT', None)
            text = substitute_env_vars('${PRESENT} ${ABSENT:-fallback} ${ABSENT}')

        self.assertEqual(text, 'yes fallback ${ABSENT}')


if __name__ == '__main__':
    unittest.main()
