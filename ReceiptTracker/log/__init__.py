"""
Logging subsystem for ReceiptTracker.

Modules:

- :mod:`ReceiptTracker.log.log` – Root logger setup, Qt message bridge and the in-memory log tank.
"""
