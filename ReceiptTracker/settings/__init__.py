"""
Settings package: configuration API and schema validation.

This package provides:

- :mod:`ReceiptTracker.settings.lib` – Application paths, settings.json loading, validation and persistence.
"""
