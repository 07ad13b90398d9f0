"""Signal handlers for files app."""

import logging
from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete
from django.dispatch import receiver

from server.apps.files.infrastructure.storage import get_blob_storage
from server.apps.files.models import FileRecord

logger = logging.getLogger(__name__)


@receiver(post_delete, sender=FileRecord)
def delete_blobs_from_storage(
    sender: type[FileRecord],
    instance: FileRecord,
    **kwargs: object,
) -> None:
    """Delete the original and thumbnail blobs once the row is gone.

    Cleanup is deferred with ``transaction.on_commit``: blobs are removed
    only after the delete committed, so a rolled back delete never leaves
    a record pointing at missing bytes.

    Args:
        sender: The FileRecord model class.
        instance: The FileRecord instance being deleted.
        **kwargs: Additional signal arguments.
    """
    keys = [instance.file_path]
    if instance.thumbnail_path:
        keys.append(instance.thumbnail_path)

    transaction.on_commit(
        partial(_delete_blobs, instance.storage_type, keys, str(instance.id)),
    )


def _delete_blobs(storage_type: str, keys: list[str], file_id: str) -> None:
    storage = get_blob_storage(storage_type)
    for key in keys:
        try:
            if storage.delete(key):
                logger.info('Blob deleted after record delete: %s', key)
            else:
                logger.warning(
                    'Blob not found in storage (already deleted?): %s',
                    key,
                )
        except Exception:
            # Row is already gone; the orphan sweep reclaims the blob
            logger.exception(
                'Failed to delete blob of file %s (orphaned): %s',
                file_id,
                key,
            )
