"""Business logic for reclaiming orphan blobs.

Ingestion writes blobs before their record, and deletion removes records
before their blobs. Both leave blobs without a record when a step fails
halfway. This sweep finds and deletes them.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import batched
from typing import Final

from django.db.models import Q
from django.utils import timezone

from server.apps.files.infrastructure.storage import BlobStorage, StoredBlob
from server.apps.files.models import FileRecord

logger = logging.getLogger(__name__)

_LOOKUP_BATCH_SIZE: Final = 500


@dataclass(slots=True)
class SweepReport:
    """Counters of a sweep run."""

    scanned: int = 0
    orphaned: int = 0
    deleted: int = 0
    failed: int = 0


def find_orphan_blobs(
    storage: BlobStorage,
    grace: timedelta,
    now: datetime | None = None,
    report: SweepReport | None = None,
) -> Iterator[StoredBlob]:
    """Yield blobs no record of this backend references.

    Blobs modified within ``grace`` are skipped: an ingestion in flight has
    written its blob but not yet committed the record.

    Args:
        storage: Backend to scan.
        grace: Minimum blob age.
        now: Reference time, defaults to the current time.
        report: Optional report whose ``scanned`` counter is updated.

    Yields:
        Orphan blobs.
    """
    cutoff = (now or timezone.now()) - grace
    old_blobs = (
        blob for blob in _counted(storage.iter_blobs(), report)
        if blob.modified_at <= cutoff
    )
    for batch in batched(old_blobs, _LOOKUP_BATCH_SIZE):
        referenced = _referenced_keys(storage.storage_type, batch)
        for blob in batch:
            if blob.key not in referenced:
                yield blob


def sweep_orphan_blobs(
    storage: BlobStorage,
    grace: timedelta,
    dry_run: bool = False,
) -> SweepReport:
    """Delete every orphan blob in a backend.

    Args:
        storage: Backend to clean.
        grace: Minimum blob age before deletion.
        dry_run: Only count orphans, delete nothing.

    Returns:
        SweepReport with counts.
    """
    report = SweepReport()
    for blob in find_orphan_blobs(storage, grace, report=report):
        report.orphaned += 1
        if dry_run:
            logger.info('Would delete orphan blob: %s', blob.key)
            continue
        try:
            storage.delete(blob.key)
        except Exception:
            logger.exception('Failed to delete orphan blob: %s', blob.key)
            report.failed += 1
        else:
            logger.info('Deleted orphan blob: %s', blob.key)
            report.deleted += 1

    logger.info(
        'Orphan sweep of %s storage: %d blobs, %d orphans, %d deleted, %d failed',
        storage.storage_type,
        report.scanned,
        report.orphaned,
        report.deleted,
        report.failed,
    )
    return report


def _referenced_keys(storage_type: str, batch: Iterable[StoredBlob]) -> set[str]:
    keys = [blob.key for blob in batch]
    rows = FileRecord.objects.filter(
        Q(file_path__in=keys) | Q(thumbnail_path__in=keys),
        storage_type=storage_type,
    ).values_list('file_path', 'thumbnail_path')
    referenced: set[str] = set()
    for file_path, thumbnail_path in rows:
        referenced.add(file_path)
        if thumbnail_path:
            referenced.add(thumbnail_path)
    return referenced


def _counted(
    blobs: Iterable[StoredBlob],
    report: SweepReport | None,
) -> Iterator[StoredBlob]:
    for blob in blobs:
        if report is not None:
            report.scanned += 1
        yield blob
