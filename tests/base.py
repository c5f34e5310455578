"""Unittest base class for creating a clean test environment."""
import logging
import shutil
import unittest
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from PySide6 import QtCore

from ReceiptTracker.core import database
from ReceiptTracker.core import service
from ReceiptTracker.core.receipt import Receipt, is_data_uri
from ReceiptTracker.core.sync import SyncAPI
from ReceiptTracker.settings import lib
from ReceiptTracker.status import status

REMOTE_ORIGIN = 'https://receipts.example.test'


def make_receipt(receipt_id: str, date: str = '2024-05-01', created_at: str = '2024-05-01T10:00:00.000Z',
                 **kwargs: Any) -> Receipt:
    """Return a receipt with sensible test defaults."""
    kwargs.setdefault('vendor', f'Vendor {receipt_id}')
    kwargs.setdefault('amount', 1000)
    kwargs.setdefault('category', '消耗品費')
    kwargs.setdefault('synced', True)
    return Receipt(id=receipt_id, date=date, created_at=created_at, **kwargs)


@contextmanager
def mute_ui_signals():
    from ReceiptTracker.ui.actions import signals
    blocker = QtCore.QSignalBlocker(signals)  # blocks every signal in `signals`
    try:
        yield
    finally:
        del blocker


class FakeRemote:
    """In-memory stand-in for :class:`ReceiptTracker.core.service.RemoteStoreAPI`.

    Records every call in :attr:`calls`. Method names added to :attr:`fail` raise
    :class:`status.ServiceUnavailableException`. Callables in :attr:`hooks`, keyed by
    method name, run before the failure check.
    """

    def __init__(self) -> None:
        self.receipts: Dict[str, Receipt] = {}
        self.config: Dict[str, Any] = {}
        self.blobs: Dict[str, bytes] = {}
        self.analysis: Dict[str, Any] = {}
        self.calls: List[str] = []
        self.fail: Set[str] = set()
        self.reject_upsert: bool = False
        self.hooks: Dict[str, Callable[[], None]] = {}

    def seed(self, *receipts: Receipt) -> None:
        for r in receipts:
            self.receipts[r.id] = r.copy(synced=True)

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.hooks:
            self.hooks[name]()
        if name in self.fail:
            raise status.ServiceUnavailableException(f'{name} failed')

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def upsert(self, receipt: Receipt) -> service.UpsertResult:
        self._call('upsert')
        if self.reject_upsert:
            return service.UpsertResult(success=False)

        url = f'{REMOTE_ORIGIN}/view/{receipt.id}' if is_data_uri(receipt.image_url) else None
        evidence_url = f'{REMOTE_ORIGIN}/view/evidence-{receipt.id}' if is_data_uri(receipt.evidence_url) else None
        self.receipts[receipt.id] = receipt.copy(
            image_url=url or receipt.image_url,
            evidence_url=evidence_url or receipt.evidence_url,
            synced=True,
        )
        return service.UpsertResult(success=True, url=url, evidence_url=evidence_url)

    def list_receipts(self) -> List[Receipt]:
        self._call('list_receipts')
        return [r.copy(synced=True) for r in self.receipts.values()]

    def delete(self, receipt_id: str) -> bool:
        self._call('delete')
        self.receipts.pop(receipt_id, None)
        return True

    def get_config(self) -> Dict[str, Any]:
        self._call('get_config')
        return dict(self.config)

    def set_config(self, key: str, value: Any) -> bool:
        self._call('set_config')
        self.config[key] = value
        return True

    def read_blob(self, blob_id: str) -> bytes:
        self._call('read_blob')
        if blob_id not in self.blobs:
            raise status.RemoteRequestFailedException(f'No blob {blob_id}', status_code=404)
        return self.blobs[blob_id]

    blob_id_from_url = staticmethod(service.RemoteStoreAPI.blob_id_from_url)

    def analyze(self, base64_data: str, mime_type: str, categories: List[str], language: str) -> Dict[str, Any]:
        self._call('analyze')
        return dict(self.analysis)


class BaseTestCase(unittest.TestCase):
    """Base test case that starts from an empty config directory and fresh APIs."""

    config_paths: lib.ConfigPaths

    def setUp(self) -> None:
        """Set up a clean config directory and reinitialize all APIs."""
        # Ensure a Qt application is available for timers and event loops
        if not QtCore.QCoreApplication.instance():
            QtCore.QCoreApplication([])
            logging.debug('QtCore.QCoreApplication initialized for tests.')

        self.config_paths = lib.ConfigPaths()
        config_dir: Path = self.config_paths.config_dir
        if config_dir.exists():
            shutil.rmtree(config_dir)
            logging.debug(f'Removed test config directory {config_dir}')

        # Reinitialize settings API
        lib.settings = lib.SettingsAPI()
        logging.debug('SettingsAPI reinitialized.')

        # Reinitialize database API
        database.database = database.DatabaseAPI()
        logging.debug('DatabaseAPI reinitialized.')

        service.remote = service.RemoteStoreAPI()

    def tearDown(self) -> None:
        config_dir: Path = self.config_paths.config_dir
        if config_dir.exists():
            shutil.rmtree(config_dir)


class BaseSyncTestCase(BaseTestCase):
    """Base test case providing an admin engine wired to a :class:`FakeRemote`."""

    def setUp(self) -> None:
        super().setUp()
        self.store = database.database
        self.remote = FakeRemote()
        self.engine = self.make_engine()
        with mute_ui_signals():
            self.engine.set_role('admin')

    def make_engine(self, store: Optional[Any] = None) -> SyncAPI:
        return SyncAPI(store=store or self.store, remote=self.remote)

    def tearDown(self) -> None:
        self.engine.stop_auto_sync()
        super().tearDown()

    def assertSorted(self, receipts: List[Receipt]) -> None:
        keys = [(r.date, r.created_at) for r in receipts]
        self.assertEqual(keys, sorted(keys, reverse=True), 'Receipts are not in canonical order.')

    def ids(self, receipts: Optional[List[Receipt]] = None) -> List[str]:
        return [r.id for r in (self.engine.receipts if receipts is None else receipts)]
