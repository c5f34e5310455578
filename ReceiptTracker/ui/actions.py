"""Application-wide Qt signals for ReceiptTracker.

This module provides:
    - NotificationLevel: levels of the transient, auto-dismissing user notifications.
    - Signals: custom Qt signals for configuration changes, the receipt list, the pull
      lifecycle, session role changes and notifications.
"""
import enum
import logging

from PySide6 import QtCore


class NotificationLevel(enum.StrEnum):
    """Levels of a transient user notification."""
    Success = 'success'
    Info = 'info'
    Error = 'error'


class Signals(QtCore.QObject):
    """Centralized Qt signals for application config, data, and session events."""
    initializationRequested = QtCore.Signal()

    configSectionChanged = QtCore.Signal(str)

    receiptsChanged = QtCore.Signal(list)
    categoriesChanged = QtCore.Signal(list)
    reimbursementNamesChanged = QtCore.Signal(list)
    appSettingsChanged = QtCore.Signal(object)
    roleChanged = QtCore.Signal(str)

    reconcileRequested = QtCore.Signal(bool)  # manual
    pullingChanged = QtCore.Signal(bool)
    syncCountChanged = QtCore.Signal(int)

    notify = QtCore.Signal(str, str)  # message, level

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        @QtCore.Slot(str, str)
        def log_notification(message: str, level: str) -> None:
            logging.debug(f'Notification [{level}]: {message}')

        self.notify.connect(log_notification)


signals = Signals()
