"""Application state owned by the sync engine.

Holds the category list, reimbursement member names, display settings and the session
role, and persists them through an injected store.
"""
import dataclasses
import enum
import logging
from typing import Any, Dict, List, Optional

from .database import Key
from .receipt import DEFAULT_CATEGORIES

DEFAULT_APP_NAME: str = 'Receipt Pocket'


class Role(enum.StrEnum):
    """Session roles. A signed-out session has no role."""
    Admin = 'admin'
    Viewer = 'viewer'


@dataclasses.dataclass
class AppSettings:
    """Local-only display settings."""
    app_name: str = DEFAULT_APP_NAME
    auto_delete_months: int = 0
    fiscal_year_start_month: int = 4

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AppSettings':
        if not isinstance(data, dict):
            return cls()
        settings = cls()
        if data.get('appName'):
            settings.app_name = str(data['appName'])
        try:
            settings.auto_delete_months = max(int(data.get('autoDeleteMonths', 0)), 0)
        except (TypeError, ValueError):
            logging.warning(f'Invalid autoDeleteMonths value: {data.get("autoDeleteMonths")!r}')
        try:
            month = int(data.get('fiscalYearStartMonth', 4))
            if 1 <= month <= 12:
                settings.fiscal_year_start_month = month
        except (TypeError, ValueError):
            logging.warning(f'Invalid fiscalYearStartMonth value: {data.get("fiscalYearStartMonth")!r}')
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appName': self.app_name,
            'autoDeleteMonths': self.auto_delete_months,
            'fiscalYearStartMonth': self.fiscal_year_start_month,
        }


def _str_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value if v is not None and str(v) != '']


@dataclasses.dataclass
class AppState:
    """Explicit application state.

    Attributes:
        categories: Expense categories offered when editing a receipt.
        reimbursement_names: Members that can be reimbursed.
        settings: Local display settings.
        role: The session role, or None when signed out.
    """
    categories: List[str] = dataclasses.field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    reimbursement_names: List[str] = dataclasses.field(default_factory=list)
    settings: AppSettings = dataclasses.field(default_factory=AppSettings)
    role: Optional[Role] = None

    @classmethod
    def load(cls, store: Any) -> 'AppState':
        """Read the persisted state from ``store``, falling back to defaults."""
        state = cls()

        categories = _str_list(store.get(Key.Categories))
        if categories:
            state.categories = categories

        names = _str_list(store.get(Key.ReimbursementNames))
        if names is not None:
            state.reimbursement_names = names

        state.settings = AppSettings.from_dict(store.get(Key.AppSettings))

        role = store.get(Key.SessionRole)
        if role:
            try:
                state.role = Role(role)
            except ValueError:
                logging.warning(f'Ignoring unknown persisted session role "{role}".')
        return state

    def save(self, store: Any) -> None:
        """Persist every part of the state to ``store``."""
        store.set(Key.Categories, self.categories)
        store.set(Key.ReimbursementNames, self.reimbursement_names)
        store.set(Key.AppSettings, self.settings.to_dict())
        if self.role is None:
            store.remove(Key.SessionRole)
        else:
            store.set(Key.SessionRole, self.role.value)

    def apply_remote_config(self, config: Dict[str, Any]) -> List[str]:
        """Overwrite local lists with the values present in a remote config.

        Args:
            config: The remote config mapping (``categories``, ``reimbursementNames``).

        Returns:
            List[str]: Names of the state fields that were replaced.
        """
        changed = []
        categories = _str_list(config.get('categories'))
        if categories is not None:
            self.categories = categories
            changed.append('categories')

        names = _str_list(config.get('reimbursementNames'))
        if names is not None:
            self.reimbursement_names = names
            changed.append('reimbursement_names')
        return changed

    @property
    def is_signed_in(self) -> bool:
        return self.role is not None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.Admin
