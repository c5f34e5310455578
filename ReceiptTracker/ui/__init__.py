"""
UI-facing package: the application-wide signal hub a front-end binds to.

This package provides:

- :mod:`ReceiptTracker.ui.actions` – Application-wide Qt signals for receipts, sync state, config and notifications.
"""
