"""Local receipt cache and merge engine.

Local mutations are applied optimistically to memory and storage, then pushed to the
remote store best-effort. :meth:`SyncAPI.reconcile` pulls the remote snapshot and merges
it with the persisted list:

- remote records win for every id they contain, and are marked synced
- ids deleted on this device (tombstones) are never resurrected by a lagging snapshot
- local records that were never confirmed by the remote are kept unless the snapshot
  already has them

There are no server-side versions, retries or outbox. Remote calls may run in a worker
thread (see :attr:`SyncAPI.asynchronous`) while the Qt event loop keeps dispatching
events, so a reconcile can be requested while another is in flight. A single-flight
flag makes the second request a no-op.
"""
import logging
import random
import string
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from PySide6 import QtCore

from . import database
from . import service
from .receipt import Receipt, decode_data_uri, is_data_uri, sort_receipts
from .state import AppSettings, AppState, Role
from ..settings import lib
from ..status import status
from ..ui.actions import signals, NotificationLevel


def merge_receipts(local: Iterable[Receipt], remote: Iterable[Receipt], deleted_ids: Set[str]) -> List[Receipt]:
    """Merge the persisted local list with a remote snapshot.

    Args:
        local: The locally persisted receipts.
        remote: The remote snapshot.
        deleted_ids: Ids deleted on this device.

    Returns:
        List[Receipt]: Remote records (minus tombstoned ids, each marked synced) plus the
        unsynced local records the snapshot does not contain, in canonical order.
    """
    unsynced = [r for r in local if not r.synced]

    merged: Dict[str, Receipt] = {}
    for r in remote:
        if r.id in deleted_ids:
            continue
        merged[r.id] = r.copy(synced=True)

    for r in unsynced:
        if r.id not in merged and r.id not in deleted_ids:
            merged[r.id] = r

    return sort_receipts(merged.values())


class SyncAPI(QtCore.QObject):
    """Owns the receipt list, the tombstone set and the application state of this device.

    Args:
        store: Persistence capability. Defaults to the module-level :class:`~ReceiptTracker.core.database.DatabaseAPI`.
        remote: Remote store client. Defaults to the module-level :class:`~ReceiptTracker.core.service.RemoteStoreAPI`.
    """

    def __init__(self, store: Any = None, remote: Any = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)

        self._store = store if store is not None else database.database
        self._remote = remote if remote is not None else service.remote

        self._state: AppState = AppState.load(self._store)
        self._receipts: List[Receipt] = self._store.get_receipts()
        self._tombstones: Set[str] = set()

        self._is_pulling: bool = False
        self._sync_count: int = 0

        #: Run remote calls in a worker thread through :func:`service.start_asynchronous`
        self.asynchronous: bool = False

        self._auto_sync_timer = QtCore.QTimer(self)
        self._auto_sync_timer.setSingleShot(False)
        self._auto_sync_timer.timeout.connect(self._on_auto_sync)

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def receipts(self) -> List[Receipt]:
        """A copy of the local receipt list in canonical order."""
        return list(self._receipts)

    @property
    def tombstones(self) -> Set[str]:
        return set(self._tombstones)

    @property
    def is_pulling(self) -> bool:
        return self._is_pulling

    @property
    def sync_count(self) -> int:
        return self._sync_count

    def build_id(self) -> str:
        """Return a display build identifier seeded by the sync counter."""
        suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=5))
        return f'SN-{self._sync_count}-{suffix}'

    def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        for r in self._receipts:
            if r.id == receipt_id:
                return r
        return None

    def _notify(self, message: str, level: NotificationLevel = NotificationLevel.Success) -> None:
        logging.info(f'[{level.value}] {message}')
        signals.notify.emit(message, level.value)

    def _set_pulling(self, value: bool) -> None:
        self._is_pulling = value
        signals.pullingChanged.emit(value)

    def _require_admin(self) -> None:
        """
        Raises:
            status.PermissionDeniedException: If the session is not an admin session.
        """
        if not self._state.is_admin:
            raise status.PermissionDeniedException(f'Role "{self._state.role}" cannot modify receipts.')

    def _require_signed_in(self) -> None:
        if not self._state.is_signed_in:
            raise status.PermissionDeniedException('Not signed in.')

    def _call_remote(self, func: Callable[..., Any], *args: Any) -> Any:
        """Call a remote client method, in a worker thread when running asynchronously."""
        if self.asynchronous:
            return service.start_asynchronous(func, *args, total_timeout=service.TOTAL_TIMEOUT)
        return func(*args)

    def _commit(self, receipts: Iterable[Receipt]) -> None:
        """Sort, persist and publish the receipt list."""
        self._receipts = sort_receipts(receipts)
        self._store.set_receipts(self._receipts)
        signals.receiptsChanged.emit(list(self._receipts))

    def apply_create(self, receipt: Receipt) -> bool:
        """Push a new receipt and insert it locally once the remote confirms it.

        Creating a receipt whose id is already present is an idempotent no-op.

        Returns:
            bool: True if the receipt is present locally afterwards.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        receipt = receipt.copy()
        if self.get_receipt(receipt.id) is not None:
            logging.debug(f'Receipt {receipt.id} already exists.')
            self._notify('This receipt is already registered.', NotificationLevel.Info)
            return True

        try:
            result = self._call_remote(self._remote.upsert, receipt)
        except status.BaseStatusException as ex:
            logging.error(f'Could not save receipt {receipt.id}: {ex}')
            self._notify('Network error, the receipt was not saved.', NotificationLevel.Error)
            return False

        if not result.success:
            self._notify('Could not save the receipt.', NotificationLevel.Error)
            return False

        saved = receipt.copy(
            image_url=result.url or receipt.image_url,
            evidence_url=result.evidence_url or receipt.evidence_url,
            synced=True,
        )
        self._commit([r for r in self._receipts if r.id != saved.id] + [saved])
        self._notify('Saved to the cloud.')
        return True

    def apply_update(self, receipt: Receipt) -> bool:
        """Apply an edit locally, then push it.

        The local value is kept when the push fails. No rollback, no retry. Only
        receipts present in the local list can be updated.

        Returns:
            bool: True if the push succeeded.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        existing = self.get_receipt(receipt.id)
        if existing is None:
            logging.warning(f'Receipt {receipt.id} is not in the local list, ignoring the update.')
            return False

        updated = receipt.copy(synced=existing.synced)
        self._commit([r for r in self._receipts if r.id != updated.id] + [updated])

        try:
            result = self._call_remote(self._remote.upsert, updated)
        except status.BaseStatusException as ex:
            logging.error(f'Could not push update of {updated.id}: {ex}')
            self._notify('The change was kept locally but could not be synced.', NotificationLevel.Error)
            return False

        if not result.success:
            self._notify('The change was kept locally but could not be synced.', NotificationLevel.Error)
            return False

        if updated.id in self._tombstones:
            return True

        confirmed = updated.copy(
            image_url=result.url or updated.image_url,
            evidence_url=result.evidence_url or updated.evidence_url,
            synced=True,
        )
        self._commit([r for r in self._receipts if r.id != confirmed.id] + [confirmed])
        return True

    def _delete_ids(self, ids: List[str]) -> bool:
        """Tombstone, remove locally, then delete remotely one by one."""
        self._tombstones.update(ids)
        id_set = set(ids)
        self._commit([r for r in self._receipts if r.id not in id_set])

        failed = []
        for receipt_id in ids:
            try:
                self._call_remote(self._remote.delete, receipt_id)
            except status.BaseStatusException as ex:
                logging.warning(f'Remote delete of {receipt_id} failed: {ex}')
                failed.append(receipt_id)
        return not failed

    def apply_delete(self, receipt_id: str) -> bool:
        """Delete one receipt locally and remotely.

        Returns:
            bool: True if the remote delete succeeded.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        ok = self._delete_ids([receipt_id])
        if ok:
            self._notify('Deleted.')
        else:
            self._notify('Deleted locally, but the cloud copy could not be removed.', NotificationLevel.Info)
        return ok

    def apply_delete_many(self, receipt_ids: Iterable[str]) -> bool:
        """Delete several receipts locally and remotely.

        Returns:
            bool: True if every remote delete succeeded.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        ids = list(dict.fromkeys(receipt_ids))
        ok = self._delete_ids(ids)
        self._notify(
            f'Deleted {len(ids)} receipts.' if ok else
            f'Deleted {len(ids)} receipts locally, some cloud copies could not be removed.',
            NotificationLevel.Success if ok else NotificationLevel.Info
        )
        return ok

    def apply_delete_by_month(self, month: str) -> bool:
        """Delete every receipt whose date starts with ``month`` ('YYYY-MM').

        Returns:
            bool: True if every remote delete succeeded.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        if not month:
            logging.warning('No month given, nothing to delete.')
            return True

        ids = [r.id for r in self._receipts if r.date.startswith(month)]
        ok = self._delete_ids(ids)
        self._notify(
            f'Deleted {len(ids)} receipts of {month}.' if ok else
            f'Deleted {len(ids)} receipts of {month} locally, some cloud copies could not be removed.',
            NotificationLevel.Success if ok else NotificationLevel.Info
        )
        return ok

    @QtCore.Slot(bool)
    def reconcile(self, manual: bool = False) -> bool:
        """Pull the remote snapshot and config and merge them into local state.

        Args:
            manual: Whether the pull was requested by the user. Manual pulls notify
                about the outcome, background pulls only log failures.

        Returns:
            bool: True if the reconcile ran and succeeded.
        """
        if not self._state.is_signed_in:
            logging.debug('Not signed in, skipping reconcile.')
            return False
        if self._is_pulling:
            logging.debug('A reconcile is already in flight, skipping.')
            return False

        self._set_pulling(True)
        try:
            remote_receipts = self._call_remote(self._remote.list_receipts)
            config = self._call_remote(self._remote.get_config)

            local = self._store.get_receipts()
            self._commit(merge_receipts(local, remote_receipts, self._tombstones))
            self._apply_remote_config(config)
            self._store.stamp()
        except status.BaseStatusException as ex:
            logging.warning(f'Reconcile failed: {ex}')
            if manual:
                self._notify('Sync failed.', NotificationLevel.Error)
            return False
        finally:
            self._set_pulling(False)

        self._sync_count += 1
        signals.syncCountChanged.emit(self._sync_count)
        logging.info(f'Reconciled {len(self._receipts)} receipts (sync #{self._sync_count}).')
        if manual:
            self._notify('Synced with the cloud.')
        return True

    def _apply_remote_config(self, config: Dict[str, Any]) -> None:
        changed = self._state.apply_remote_config(config or {})
        if 'categories' in changed:
            self._store.set(database.Key.Categories, self._state.categories)
            signals.categoriesChanged.emit(list(self._state.categories))
        if 'reimbursement_names' in changed:
            self._store.set(database.Key.ReimbursementNames, self._state.reimbursement_names)
            signals.reimbursementNamesChanged.emit(list(self._state.reimbursement_names))

    def full_local_reset(self) -> bool:
        """Discard the local list and tombstones and reload everything from the remote.

        The local list stays empty if the fetch fails.

        Returns:
            bool: True if the remote snapshot was loaded.
        """
        if self._is_pulling:
            logging.debug('A reconcile is already in flight, skipping reset.')
            return False

        self._set_pulling(True)
        try:
            self._tombstones.clear()
            self._commit([])

            remote_receipts = self._call_remote(self._remote.list_receipts)
            self._commit(r.copy(synced=True) for r in remote_receipts)
            self._store.stamp()
        except status.BaseStatusException as ex:
            logging.error(f'Local reset failed: {ex}')
            self._notify('Reset failed.', NotificationLevel.Error)
            return False
        finally:
            self._set_pulling(False)

        self._notify('Local data was reset.')
        return True

    @QtCore.Slot()
    def load_local(self) -> None:
        """Reload the receipt list and the application state from the store and publish them.

        Tombstones and the session role are left untouched.
        """
        role = self._state.role
        self._state = AppState.load(self._store)
        self._state.role = role
        self._receipts = self._store.get_receipts()
        logging.debug(f'Loaded {len(self._receipts)} cached receipts.')

        signals.receiptsChanged.emit(list(self._receipts))
        signals.categoriesChanged.emit(list(self._state.categories))
        signals.reimbursementNamesChanged.emit(list(self._state.reimbursement_names))
        signals.appSettingsChanged.emit(self._state.settings)

    def set_role(self, role: Optional[str]) -> None:
        """Set the session role. ``None`` or '' signs out.

        Raises:
            ValueError: If ``role`` is not a known role.
        """
        self._state.role = Role(role) if role else None
        if self._state.role is None:
            self._store.remove(database.Key.SessionRole)
        else:
            self._store.set(database.Key.SessionRole, self._state.role.value)
        logging.info(f'Session role set to "{self._state.role}".')
        signals.roleChanged.emit(self._state.role.value if self._state.role else '')

    def update_app_settings(self, settings: AppSettings) -> None:
        """Replace the local display settings."""
        self._state.settings = settings
        self._store.set(database.Key.AppSettings, settings.to_dict())
        signals.appSettingsChanged.emit(settings)

    def _push_config(self, key: str, value: Any) -> bool:
        try:
            return bool(self._call_remote(self._remote.set_config, key, value))
        except status.BaseStatusException as ex:
            logging.warning(f'Could not push config "{key}": {ex}')
            return False

    def set_categories(self, categories: List[str]) -> bool:
        """Replace the category list locally and publish it to the remote.

        Returns:
            bool: True if the remote accepted the list.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        self._state.categories = [c for c in categories if c]
        self._store.set(database.Key.Categories, self._state.categories)
        signals.categoriesChanged.emit(list(self._state.categories))
        return self._push_config('categories', self._state.categories)

    def rename_category(self, old_name: str, new_name: str) -> bool:
        """Rename a category and relabel the local receipts using it.

        The rename is applied locally even when the new list cannot be published.

        Returns:
            bool: True if the remote accepted the new category list.
        """
        if not self._state.is_admin or not new_name:
            return False

        categories = [new_name if c == old_name else c for c in self._state.categories]
        pushed = self.set_categories(categories)
        self._commit(r.copy(category=new_name) if r.category == old_name else r for r in self._receipts)
        return pushed

    def remove_category(self, name: str) -> bool:
        """Remove a category from the list. Receipts keep their label.

        Returns:
            bool: True if the remote accepted the new category list.
        """
        return self.set_categories([c for c in self._state.categories if c != name])

    def set_reimbursement_names(self, names: List[str]) -> bool:
        """Replace the reimbursement member list locally and publish it to the remote.

        Returns:
            bool: True if the remote accepted the list.
        """
        try:
            self._require_admin()
        except status.PermissionDeniedException:
            return False

        self._state.reimbursement_names = [n for n in names if n]
        self._store.set(database.Key.ReimbursementNames, self._state.reimbursement_names)
        signals.reimbursementNamesChanged.emit(list(self._state.reimbursement_names))
        return self._push_config('reimbursementNames', self._state.reimbursement_names)

    def load_asset(self, receipt: Receipt, evidence: bool = False) -> Optional[bytes]:
        """Return the bytes of a receipt's main or evidence file.

        Data URIs are decoded locally, remote URLs are read through the blob route.

        Returns:
            Optional[bytes]: The file content, or None if unavailable.
        """
        url = receipt.evidence_url if evidence else receipt.image_url
        if not url:
            return None

        if is_data_uri(url):
            try:
                return decode_data_uri(url)[1]
            except ValueError as ex:
                logging.warning(f'Could not decode attached file of {receipt.id}: {ex}')
                return None

        blob_id = self._remote.blob_id_from_url(url)
        if not blob_id:
            logging.warning(f'Not a blob URL: {url}')
            return None

        try:
            self._require_signed_in()
            return self._call_remote(self._remote.read_blob, blob_id)
        except status.BaseStatusException as ex:
            logging.warning(f'Could not load file of {receipt.id}: {ex}')
            return None

    def start_auto_sync(self, interval: Optional[int] = None) -> None:
        """Start periodic background reconciles.

        Args:
            interval: Seconds between pulls. Defaults to ``remote.pull_interval``; 0 disables.
        """
        interval = lib.settings.pull_interval if interval is None else interval
        if interval <= 0:
            logging.debug('Background sync is disabled.')
            self.stop_auto_sync()
            return
        logging.debug(f'Starting background sync every {interval} seconds.')
        self._auto_sync_timer.start(interval * 1000)

    def stop_auto_sync(self) -> None:
        self._auto_sync_timer.stop()

    @property
    def is_auto_syncing(self) -> bool:
        return self._auto_sync_timer.isActive()

    @QtCore.Slot()
    def _on_auto_sync(self) -> None:
        self.reconcile(False)


sync: SyncAPI = SyncAPI()
signals.reconcileRequested.connect(sync.reconcile)
signals.initializationRequested.connect(sync.load_local)
