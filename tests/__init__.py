"""Test package for ReceiptTracker.

Qt standard-path test mode is enabled before the application modules are imported, so
the settings file and the local cache live in a throwaway directory.
"""
from PySide6 import QtCore

QtCore.QStandardPaths.setTestModeEnabled(True)
