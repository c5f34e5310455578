"""
Core package for ReceiptTracker providing essential functionality.

This package includes:

- :mod:`ReceiptTracker.core.receipt` – Typed receipt record, normalisation, deterministic ids and ordering.
- :mod:`ReceiptTracker.core.database` – Versioned local SQLite store for receipts and application state.
- :mod:`ReceiptTracker.core.state` – Application state: categories, reimbursement members, display settings and session role.
- :mod:`ReceiptTracker.core.service` – HTTP client for the remote receipt store with asynchronous operations.
- :mod:`ReceiptTracker.core.sync` – Local cache and merge engine reconciling local state with the remote store.
- :mod:`ReceiptTracker.core.analysis` – Receipt file loading, field suggestions and building final records from drafts.
"""
