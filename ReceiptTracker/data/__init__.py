"""
ReceiptTracker data package: reporting and analytics.

This package provides:

- :mod:`ReceiptTracker.data.data` – pandas-based filtering and aggregation of receipts for reports (month ranges, report types, members, totals, category summaries and monthly trends).
"""
