"""
Local SQLite cache for receipts and application state.

This module provides a small versioned key-value store backed by SQLite. Values are
stored as JSON under fixed key names (see :class:`Key`). A metadata table carries the
schema version, the last sync timestamp and the cache state. On open, older schema
versions are migrated through :data:`MIGRATIONS`; unknown or newer versions cause the
store to be recreated empty.
"""

import datetime
import enum
import json
import logging
import pathlib
import sqlite3
import time
from typing import Any, Callable, Dict, List, Optional

from PySide6 import QtCore

from .receipt import Receipt, sort_receipts
from ..settings import lib
from ..status import status

SCHEMA_VERSION: int = 2

# Define the expected schema for the metadata table
META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'schema_version': 'INTEGER',
    'last_sync': 'TEXT',
    'state': 'TEXT',
}

STORE_SCHEMA: Dict[str, str] = {
    'key': 'TEXT PRIMARY KEY',
    'value': 'TEXT',
}


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'metatable'
    Store = 'store'


class Key(enum.StrEnum):
    """Fixed key names of the persisted values."""
    Receipts = 'receipts'
    Categories = 'categories'
    ReimbursementNames = 'reimbursement_names'
    AppSettings = 'app_settings'
    SessionRole = 'session_role'


class CacheState(enum.StrEnum):
    """Enum for cache state values."""
    Uninitialized = 'cache is uninitialized'
    Empty = 'cache is empty'
    Error = 'cache has error'
    Valid = 'cache is valid'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _migrate_1_to_2(conn: sqlite3.Connection) -> None:
    """Rewrite stored receipts through the typed model.

    Version 1 stored the remote rows verbatim, with 0/1 reimbursement flags and
    stale ``reimbursedBy`` values on non-reimbursement records.
    """
    row = conn.execute(f'SELECT value FROM {Table.Store.value} WHERE key=?', (Key.Receipts.value,)).fetchone()
    if not row or not row[0]:
        return

    records = json.loads(row[0])
    receipts = []
    for record in records:
        try:
            receipts.append(Receipt.from_dict(record))
        except (ValueError, TypeError) as ex:
            logging.warning(f'Dropping unreadable receipt during migration: {ex}')

    value = json.dumps([r.to_dict() for r in sort_receipts(receipts)], ensure_ascii=False)
    conn.execute(f'UPDATE {Table.Store.value} SET value=? WHERE key=?', (value, Key.Receipts.value))


# Maps a schema version to the callable upgrading it to the next version
MIGRATIONS: Dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _migrate_1_to_2,
}


class DatabaseAPI(QtCore.QObject):
    """Versioned key-value store for the receipt list and the application state.

    Args:
        db_path: Optional path to the database file. Defaults to the configured cache path.
    """

    def __init__(self, db_path: Optional[str] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.db_path: pathlib.Path = pathlib.Path(db_path) if db_path else lib.settings.db_path
        self._initialize_schema_if_needed()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the cache database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    @staticmethod
    def _table_exists_in_conn(conn: sqlite3.Connection, table_name: str) -> bool:
        """Check if a table exists using an existing connection."""
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    def _read_schema_version(self, conn: sqlite3.Connection) -> Optional[int]:
        """Return the stored schema version, or None if the metatable is missing or malformed."""
        if not self._table_exists_in_conn(conn, Table.Meta.value):
            logging.warning(f'Metadata table "{Table.Meta.value}" is missing.')
            return None
        if not self._table_exists_in_conn(conn, Table.Store.value):
            logging.warning(f'Store table "{Table.Store.value}" is missing.')
            return None

        cursor = conn.execute(f'PRAGMA table_info({Table.Meta.value})')
        current_columns = {row[1] for row in cursor.fetchall()}
        if not set(META_SCHEMA.keys()).issubset(current_columns):
            missing_cols = set(META_SCHEMA.keys()) - current_columns
            logging.warning(f'Metadata table schema is invalid. Missing columns: {missing_cols}.')
            return None

        row = conn.execute(f'SELECT schema_version FROM {Table.Meta.value} WHERE meta_id=1').fetchone()
        if not row or row[0] is None:
            logging.warning('Metadata row is missing a schema version.')
            return None
        return int(row[0])

    def _recreate_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(f'DROP TABLE IF EXISTS {Table.Meta.value}')
        conn.execute(f'DROP TABLE IF EXISTS {Table.Store.value}')

        meta_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in META_SCHEMA.items())
        conn.execute(f'CREATE TABLE {Table.Meta.value} ({meta_cols_sql})')
        store_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in STORE_SCHEMA.items())
        conn.execute(f'CREATE TABLE {Table.Store.value} ({store_cols_sql})')

        conn.execute(
            f'INSERT INTO {Table.Meta.value} (meta_id, schema_version, last_sync, state) VALUES (1, ?, ?, ?)',
            (SCHEMA_VERSION, None, CacheState.Uninitialized.name)
        )
        conn.commit()
        logging.info(f'Database schema recreated at version {SCHEMA_VERSION}.')

    def _migrate(self, conn: sqlite3.Connection, version: int) -> None:
        """Run the migration chain from ``version`` up to :data:`SCHEMA_VERSION`."""
        while version < SCHEMA_VERSION:
            migration = MIGRATIONS[version]
            logging.info(f'Migrating local cache from schema version {version} to {version + 1}.')
            migration(conn)
            version += 1
            conn.execute(f'UPDATE {Table.Meta.value} SET schema_version=? WHERE meta_id=1', (version,))
        conn.commit()

    def _can_migrate(self, version: int) -> bool:
        return all(v in MIGRATIONS for v in range(version, SCHEMA_VERSION))

    def _initialize_schema_if_needed(self) -> None:
        """
        Ensures the database file and schema are valid and current.

        A missing or malformed schema is recreated. Older versions are migrated; unknown
        or newer versions are recreated empty.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            version = self._read_schema_version(conn)

            if version is None:
                logging.info('Creating local cache schema.')
                self._recreate_schema(conn)
            elif version == SCHEMA_VERSION:
                logging.debug(f'Local cache schema is current (version {version}).')
            elif version < SCHEMA_VERSION and self._can_migrate(version):
                self._migrate(conn, version)
            else:
                logging.warning(
                    f'Local cache schema version {version} is not supported '
                    f'(expected {SCHEMA_VERSION}). Recreating an empty cache.'
                )
                self._recreate_schema(conn)

        except (sqlite3.Error, json.JSONDecodeError) as e:
            logging.error(f'Error during schema initialization: {e}. Attempting recovery.', exc_info=True)
            if conn:
                conn.close()
                conn = None

            try:
                self.delete()
                conn = self.connection()
                self._recreate_schema(conn)
                logging.info('Database schema forcefully recreated after an error and delete.')
            except sqlite3.Error as final_e:
                logging.critical(f'Failed to recover database schema even after delete: {final_e}', exc_info=True)
                raise status.CacheInvalidException(f'Unrecoverable DB schema error: {final_e}') from final_e
        finally:
            if conn:
                conn.close()

    def schema_version(self) -> Optional[int]:
        """Return the schema version recorded in the metadata table."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            return self._read_schema_version(conn)
        finally:
            if conn:
                conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded JSON value stored under ``key``.

        Args:
            key: One of :class:`Key`.
            default: Returned when the key is absent or its value cannot be decoded.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(f'SELECT value FROM {Table.Store.value} WHERE key=?', (str(key),)).fetchone()
        except sqlite3.Error as e:
            raise status.CacheInvalidException(f'Could not read "{key}": {e}') from e
        finally:
            if conn:
                conn.close()

        if not row or row[0] is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logging.warning(f'Stored value for "{key}" is not valid JSON, using default: {e}')
            return default

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` as JSON under ``key``.

        Raises:
            status.CacheInvalidException: If the value cannot be written.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(
                f'INSERT INTO {Table.Store.value} (key, value) VALUES (?, ?) '
                f'ON CONFLICT(key) DO UPDATE SET value=excluded.value',
                (str(key), json.dumps(value, ensure_ascii=False))
            )
            conn.commit()
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            raise status.CacheInvalidException(f'Could not write "{key}": {e}') from e
        finally:
            if conn:
                conn.close()

    def remove(self, key: str) -> None:
        """Remove the value stored under ``key``."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'DELETE FROM {Table.Store.value} WHERE key=?', (str(key),))
            conn.commit()
        finally:
            if conn:
                conn.close()

    def clear(self) -> None:
        """Remove every stored value and reset the metadata row."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'DELETE FROM {Table.Store.value}')
            conn.execute(
                f'UPDATE {Table.Meta.value} SET last_sync=NULL, state=? WHERE meta_id=1',
                (CacheState.Uninitialized.name,)
            )
            conn.commit()
            logging.debug('Local cache cleared.')
        finally:
            if conn:
                conn.close()

    def get_receipts(self) -> List[Receipt]:
        """Return the persisted receipt list in canonical order.

        Records that cannot be read are skipped with a warning.
        """
        records = self.get(Key.Receipts, [])
        if not isinstance(records, list):
            logging.warning('Stored receipts are not a list, ignoring them.')
            return []

        receipts = []
        for record in records:
            try:
                receipts.append(Receipt.from_dict(record))
            except (ValueError, TypeError, AttributeError) as ex:
                logging.warning(f'Skipping unreadable cached receipt: {ex}')
        return sort_receipts(receipts)

    def set_receipts(self, receipts: List[Receipt]) -> None:
        """Persist the receipt list in canonical order and update the cache state."""
        ordered = sort_receipts(receipts)
        self.set(Key.Receipts, [r.to_dict() for r in ordered])
        self.set_state(CacheState.Valid if ordered else CacheState.Empty)
        logging.debug(f'Persisted {len(ordered)} receipts.')

    def stamp(self) -> None:
        """Record the current time as the last successful sync."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'UPDATE {Table.Meta.value} SET last_sync=? WHERE meta_id=1', (now_str(),))
            conn.commit()
        finally:
            if conn:
                conn.close()

    def get_stamp(self) -> Optional[datetime.datetime]:
        """Retrieve the last synchronization timestamp.

        Returns:
            Optional[datetime.datetime]: Last sync datetime object, or None if not set/invalid.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(f'SELECT last_sync FROM {Table.Meta.value} WHERE meta_id=1').fetchone()
        finally:
            if conn:
                conn.close()

        if row and row[0]:
            try:
                return datetime.datetime.fromisoformat(row[0])
            except ValueError:
                logging.warning(f'Invalid last sync date format in DB: {row[0]}.')
        return None

    def set_state(self, state: CacheState) -> None:
        """Update the cache state in the metadata table."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'UPDATE {Table.Meta.value} SET state=? WHERE meta_id=1', (state.name,))
            conn.commit()
        finally:
            if conn:
                conn.close()

    def get_state(self) -> CacheState:
        """Retrieve the current cache state, or CacheState.Error if unable to determine."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(f'SELECT state FROM {Table.Meta.value} WHERE meta_id=1').fetchone()
        except sqlite3.Error as e:
            logging.error(f'Could not read cache state: {e}')
            return CacheState.Error
        finally:
            if conn:
                conn.close()

        if row and row[0]:
            try:
                return CacheState[row[0]]
            except KeyError:
                logging.warning(f'Invalid state value "{row[0]}" found in database.')
        return CacheState.Error

    def delete(self) -> None:
        """Delete the local cache database file, retrying on failure.

        Raises:
            status.CacheInvalidException: If unable to remove the database file after retries.
        """
        if not self.db_path.exists():
            logging.debug('No cache database found to delete.')
            return

        max_attempts = 5
        wait_seconds = 0.5

        for attempt in range(1, max_attempts + 1):
            try:
                self.db_path.unlink()
                logging.info(f'Cache database removed: {self.db_path}')
                return
            except OSError as ex:
                logging.error(f'Error removing cache DB (attempt {attempt}/{max_attempts}): {ex}')
                if attempt == max_attempts:
                    raise status.CacheInvalidException(
                        f'Failed to remove cache DB {self.db_path} after {max_attempts} attempts: {ex}'
                    ) from ex
                time.sleep(wait_seconds)
                wait_seconds *= 1.5


database: DatabaseAPI = DatabaseAPI()
