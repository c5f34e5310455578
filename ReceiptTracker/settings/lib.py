"""Settings library for the sync server and analysis configuration.

Provides:
    - Schema validation and enforcement for settings.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Application paths for the settings file and the local cache database.
"""

import json
import logging
import os
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'ReceiptTracker'

API_URL_ENV_KEY: str = 'SYNC_API_URL'

SUPPORTED_LANGUAGES: List[str] = ['ja', 'en', 'zh-CN', 'zh-TW', 'de', 'es', 'it']

SETTINGS_SCHEMA: Dict[str, Any] = {
    'remote': {
        'type': dict,
        'required': True,
        'item_schema': {
            'url': {'type': str, 'required': True},
            'timeout': {'type': int, 'required': True, 'min': 1},
            'pull_interval': {'type': int, 'required': True, 'min': 0},
        }
    },
    'analysis': {
        'type': dict,
        'required': True,
        'item_schema': {
            'language': {'type': str, 'required': True, 'allowed_values': SUPPORTED_LANGUAGES},
        }
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one section of settings.json against its item schema.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section's data.
        item_schema: Mapping of field name to its type and constraints.

    Raises:
        ValueError: If a required field is missing or a value breaks a constraint.
        TypeError: If a field has the wrong type.
    """
    logging.debug(f'Validating "{section_name}" section.')
    for field, specs in item_schema.items():
        if field not in section:
            if specs.get('required'):
                msg: str = f'Section "{section_name}" is missing required field "{field}".'
                logging.error(msg)
                raise ValueError(msg)
            continue

        value = section[field]
        # bool is an int subclass, never accept it for numeric fields
        if not isinstance(value, specs['type']) or (specs['type'] is int and isinstance(value, bool)):
            msg = (
                f'Field "{section_name}.{field}" must be {specs["type"].__name__}, '
                f'got {type(value).__name__}.'
            )
            logging.error(msg)
            raise TypeError(msg)

        if 'min' in specs and value < specs['min']:
            msg = f'Field "{section_name}.{field}" must be >= {specs["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)

        if 'allowed_values' in specs and value not in specs['allowed_values']:
            msg = f'Field "{section_name}.{field}" must be one of {specs["allowed_values"]}, got "{value}".'
            logging.error(msg)
            raise ValueError(msg)


def normalize_api_url(url: Optional[str]) -> str:
    """Return a usable base URL or an empty string when the value is unset.

    Args:
        url: Raw URL from the settings file or the environment.

    Returns:
        str: The URL without a trailing slash, or '' for empty and 'undefined' values.
    """
    if not url:
        return ''
    url = url.strip()
    if not url or url == 'undefined':
        return ''
    return url[:-1] if url.endswith('/') else url


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    This class initializes paths for the settings template, the user settings file and
    the local cache database, creating missing directories and copying the default
    template into the user data directory.
    """

    def __init__(self) -> None:
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.settings_template: pathlib.Path = self.template_dir / 'settings.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.db_path: pathlib.Path = self.db_dir / 'cache.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the template exists and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If the settings template is missing.
        """
        logging.debug(f'Verifying required templates in {self.template_dir}')
        if not self.settings_template.exists():
            msg: str = f'Missing settings template: {self.settings_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        if not self.config_dir.exists():
            logging.debug(f'Creating config directory: {self.config_dir}')
            self.config_dir.mkdir(parents=True, exist_ok=True)

        if not self.db_dir.exists():
            logging.debug(f'Creating db directory: {self.db_dir}')
            self.db_dir.mkdir(parents=True, exist_ok=True)

        if not self.settings_path.exists():
            logging.debug(f'Copying default settings from template to {self.settings_path}')
            shutil.copy(self.settings_template, self.settings_path)

    def revert_settings_to_template(self) -> None:
        """Restore settings.json from the default template file.

        Raises:
            FileNotFoundError: If the settings template file is missing.
        """
        logging.debug(f'Reverting settings to template: {self.settings_template}')
        if not self.settings_template.exists():
            msg: str = f'Settings template not found: {self.settings_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        shutil.copy(self.settings_template, self.settings_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save settings.json sections.
    """

    def __init__(self, settings_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load the settings data.

        Args:
            settings_path: Optional path to a custom settings.json file.
        """
        super().__init__()

        self.settings_path: pathlib.Path = pathlib.Path(settings_path) if settings_path else self.settings_path

        self.settings_data: Dict[str, Any] = {}
        for k in SETTINGS_SCHEMA.keys():
            self.settings_data[k] = {}

        self.load_settings()

    @property
    def api_url(self) -> str:
        """Base URL of the sync server.

        The SYNC_API_URL environment variable takes precedence over the settings file.

        Returns:
            str: The base URL without trailing slash, or '' if not configured.
        """
        env_url = normalize_api_url(os.environ.get(API_URL_ENV_KEY))
        if env_url:
            return env_url
        return normalize_api_url(self.settings_data.get('remote', {}).get('url', ''))

    @property
    def timeout(self) -> int:
        """Per-request timeout in seconds."""
        return self.settings_data['remote']['timeout']

    @property
    def pull_interval(self) -> int:
        """Seconds between background pulls; 0 disables them."""
        return self.settings_data['remote']['pull_interval']

    @property
    def language(self) -> str:
        """Language code passed to the receipt analysis backend."""
        return self.settings_data['analysis']['language']

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk and validate against schema.

        Returns:
            The loaded settings dictionary.

        Raises:
            status.SettingsNotFoundException: If settings.json is missing.
            status.SettingsInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading settings from "{self.settings_path}"')
        if not self.settings_path.exists():
            raise status.SettingsNotFoundException

        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_settings_data(data)
        except status.SettingsInvalidException:
            raise
        except (ValueError, TypeError) as ex:
            raise status.SettingsInvalidException(str(ex)) from ex

        self.settings_data = data
        return self.settings_data

    def validate_settings_data(self, data: Dict[str, Any] = None) -> None:
        """Validate settings data against the defined SETTINGS_SCHEMA.

        Args:
            data (dict, optional): Settings data to validate. Defaults to self.settings_data.

        Raises:
            status.SettingsInvalidException: If a required section is missing or has the wrong type.
            ValueError, TypeError: If a field in a section fails validation.
        """
        if data is None:
            data = self.settings_data
        if not isinstance(data, dict) or not data:
            raise status.SettingsInvalidException('Settings data is empty.')

        logging.debug('Validating settings data against schema.')
        for field, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.SettingsInvalidException(f'Missing required section: {field}')

            if field not in data:
                continue

            if not isinstance(data[field], specs['type']):
                raise status.SettingsInvalidException(
                    f'Section "{field}" must be {specs["type"]}, got {type(data[field])}.'
                )
            _validate_section(field, data[field], specs['item_schema'])

        logging.debug('Settings data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of a settings section.

        Raises:
            KeyError: If section_name is not in settings_data.
        """
        return self.settings_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace, validate and persist a settings section.

        The previous value is restored if validation fails.

        Args:
            section_name: Section to update.
            new_data: New data dict for the section.

        Raises:
            ValueError: If section_name is unrecognized or the data is invalid.
            TypeError: If a field has the wrong type.
        """
        from ..ui.actions import signals

        if section_name not in self.settings_data:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.settings_data[section_name].copy()

        self.settings_data[section_name] = new_data
        try:
            self.validate_settings_data()
        except (ValueError, TypeError, status.SettingsInvalidException) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.settings_data[section_name] = current_section_data
            raise

        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a settings section to its template default and save.

        Raises:
            ValueError: If section_name is invalid or not present in the template.
        """
        from ..ui.actions import signals

        if section_name not in self.settings_data:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        if section_name not in template_data:
            msg = f'No template-based revert logic for section "{section_name}".'
            logging.error(msg)
            raise ValueError(msg)

        self.settings_data[section_name] = template_data[section_name]
        self.save_section(section_name)

        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single settings section to settings.json.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name not in self.settings_data:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.settings_data[section_name]

        with self.settings_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)


settings: SettingsAPI = SettingsAPI()
