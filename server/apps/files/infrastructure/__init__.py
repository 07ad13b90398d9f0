"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Blob storage backends (local filesystem, S3/MinIO/R2)
- Streaming checksum computation
- Thumbnail rendering with Pillow
- Filename and MIME type helpers

Keep infrastructure concerns separate from business logic.
"""
