"""
ReceiptTracker: business receipt tracking core with a local cache and best-effort cloud sync.

This package provides:

- :mod:`ReceiptTracker.core` – Receipt model, versioned local store, remote store client, the cache and merge engine, and receipt analysis.
- :mod:`ReceiptTracker.data` – Report filtering and aggregation (:func:`ReceiptTracker.data.data.filter_receipts`, :func:`ReceiptTracker.data.data.category_summary`).
- :mod:`ReceiptTracker.settings` – Settings management and schema validation.
- :mod:`ReceiptTracker.status` – Status codes and exceptions.
- :mod:`ReceiptTracker.log` – Logging setup with an in-memory log tank.
- :mod:`ReceiptTracker.ui` – The application-wide signal hub a front-end binds to.

Use :func:`ReceiptTracker.exec_` to run the headless sync service.
"""

import sys

from PySide6 import QtCore

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ReceiptTracker requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'ReceiptTracker: business receipt tracking with a local cache and best-effort cloud sync.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run the headless sync service and enter its event loop.

    Starts background reconciles at the configured pull interval, reconciles once on
    start-up and whenever a session signs in.
    """
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv)

    from .core import sync
    from .ui.actions import signals

    signals.roleChanged.connect(lambda role: role and sync.sync.reconcile(False))
    sync.sync.start_auto_sync()

    # Ask components to load their data
    QtCore.QTimer.singleShot(100, signals.initializationRequested)
    QtCore.QTimer.singleShot(100, lambda: sync.sync.reconcile(False))

    sys.exit(app.exec())


if __name__ == '__main__':
    exec_()
