# tests/test_settings.py
"""
Unit tests for ReceiptTracker.settings.lib
(covers helpers, validators, ConfigPaths, and SettingsAPI).

Run with:
    python -m unittest tests.test_settings
"""
import json
import os
import unittest
from typing import Any, Dict
from unittest.mock import patch

from ReceiptTracker.settings import lib
from ReceiptTracker.settings.lib import (
    API_URL_ENV_KEY,
    SETTINGS_SCHEMA,
    SettingsAPI,
    _validate_section,
    normalize_api_url,
)
from ReceiptTracker.status import status
from ReceiptTracker.ui.actions import signals
from tests.base import BaseTestCase

REMOTE_FIXTURE: Dict[str, Any] = {
    'url': 'https://receipts.example.test/',
    'timeout': 15,
    'pull_interval': 60,
}


class HelperTests(unittest.TestCase):

    def test_normalize_api_url(self):
        self.assertEqual(normalize_api_url(None), '')
        self.assertEqual(normalize_api_url(''), '')
        self.assertEqual(normalize_api_url('undefined'), '')
        self.assertEqual(normalize_api_url(' https://x.test/ '), 'https://x.test')
        self.assertEqual(normalize_api_url('https://x.test'), 'https://x.test')

    def test_validate_section_good(self):
        _validate_section('remote', REMOTE_FIXTURE, SETTINGS_SCHEMA['remote']['item_schema'])

    def test_validate_section_missing_field(self):
        data = dict(REMOTE_FIXTURE)
        del data['timeout']
        with self.assertRaises(ValueError):
            _validate_section('remote', data, SETTINGS_SCHEMA['remote']['item_schema'])

    def test_validate_section_wrong_type(self):
        with self.assertRaises(TypeError):
            _validate_section('remote', {**REMOTE_FIXTURE, 'timeout': '15'},
                              SETTINGS_SCHEMA['remote']['item_schema'])
        with self.assertRaises(TypeError):
            _validate_section('remote', {**REMOTE_FIXTURE, 'timeout': True},
                              SETTINGS_SCHEMA['remote']['item_schema'])

    def test_validate_section_minimum(self):
        with self.assertRaises(ValueError):
            _validate_section('remote', {**REMOTE_FIXTURE, 'timeout': 0},
                              SETTINGS_SCHEMA['remote']['item_schema'])
        _validate_section('remote', {**REMOTE_FIXTURE, 'pull_interval': 0},
                          SETTINGS_SCHEMA['remote']['item_schema'])

    def test_validate_section_allowed_values(self):
        with self.assertRaises(ValueError):
            _validate_section('analysis', {'language': 'xx'}, SETTINGS_SCHEMA['analysis']['item_schema'])


class ConfigPathsTests(BaseTestCase):

    def test_templates_exist(self):
        self.assertTrue(self.config_paths.settings_template.exists())

    def test_settings_copied_from_template(self):
        self.assertTrue(self.config_paths.settings_path.exists())
        with self.config_paths.settings_template.open('r', encoding='utf-8') as f:
            template = json.load(f)
        with self.config_paths.settings_path.open('r', encoding='utf-8') as f:
            current = json.load(f)
        self.assertEqual(template, current)

    def test_db_path_inside_config_dir(self):
        self.assertEqual(self.config_paths.db_path.parent, self.config_paths.db_dir)
        self.assertTrue(self.config_paths.db_dir.exists())

    def test_revert_settings_to_template(self):
        self.config_paths.settings_path.write_text('{}', encoding='utf-8')
        self.config_paths.revert_settings_to_template()
        data = json.loads(self.config_paths.settings_path.read_text(encoding='utf-8'))
        self.assertIn('remote', data)


class SettingsAPITests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.api: SettingsAPI = lib.settings

        env = patch.dict(os.environ)
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop(API_URL_ENV_KEY, None)

    def test_defaults(self):
        self.assertEqual(self.api.api_url, '')
        self.assertEqual(self.api.timeout, 30)
        self.assertEqual(self.api.pull_interval, 300)
        self.assertEqual(self.api.language, 'ja')

    def test_set_section_persists_and_signals(self):
        emitted = []

        def record(name: str) -> None:
            emitted.append(name)

        signals.configSectionChanged.connect(record)
        try:
            self.api.set_section('remote', dict(REMOTE_FIXTURE))
        finally:
            signals.configSectionChanged.disconnect(record)

        self.assertEqual(emitted, ['remote'])
        self.assertEqual(self.api.api_url, 'https://receipts.example.test')

        reloaded = SettingsAPI()
        self.assertEqual(reloaded.get_section('remote'), REMOTE_FIXTURE)

    def test_set_section_invalid_value_rollback(self):
        original = self.api.get_section('remote')
        with self.assertRaises(ValueError):
            self.api.set_section('remote', {**REMOTE_FIXTURE, 'timeout': -1})
        self.assertEqual(self.api.get_section('remote'), original)

    def test_set_section_unknown(self):
        with self.assertRaises(ValueError):
            self.api.set_section('nope', {})

    def test_save_section_unknown(self):
        with self.assertRaises(ValueError):
            self.api.save_section('nope')

    def test_revert_section(self):
        self.api.set_section('analysis', {'language': 'en'})
        self.assertEqual(self.api.language, 'en')
        self.api.revert_section('analysis')
        self.assertEqual(self.api.language, 'ja')
        self.assertEqual(SettingsAPI().language, 'ja')

    def test_env_overrides_settings_url(self):
        self.api.set_section('remote', dict(REMOTE_FIXTURE))
        os.environ[API_URL_ENV_KEY] = 'https://env.example.test/'
        self.assertEqual(self.api.api_url, 'https://env.example.test')
        os.environ[API_URL_ENV_KEY] = 'undefined'
        self.assertEqual(self.api.api_url, 'https://receipts.example.test')

    def test_load_invalid_json(self):
        self.api.settings_path.write_text('{not json', encoding='utf-8')
        with self.assertRaises(status.SettingsInvalidException):
            self.api.load_settings()

    def test_load_missing_section(self):
        self.api.settings_path.write_text(json.dumps({'remote': REMOTE_FIXTURE}), encoding='utf-8')
        with self.assertRaises(status.SettingsInvalidException):
            self.api.load_settings()

    def test_load_missing_file(self):
        self.api.settings_path.unlink()
        with self.assertRaises(status.SettingsNotFoundException):
            self.api.load_settings()
