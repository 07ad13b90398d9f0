"""Business logic layer for files app.

This package contains all business logic for file operations:
- Ingestion: stream, hash, deduplicate, thumbnail, commit
- Retrieval: metadata, original and thumbnail streams, delete
- Reconciliation: sweeping blobs no record points at

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
