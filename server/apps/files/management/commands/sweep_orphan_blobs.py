"""Management command to delete blobs no file record references."""

import logging
from datetime import timedelta
from typing import Any, final, override

from django.core.management.base import BaseCommand, CommandError

from server.apps.files.config import FileServiceConfig
from server.apps.files.exceptions import BackendUnavailableError
from server.apps.files.infrastructure.storage import STORAGE_TYPES, get_blob_storage
from server.apps.files.logic.reconciliation import sweep_orphan_blobs

logger = logging.getLogger(__name__)


@final
class Command(BaseCommand):
    """Delete orphan blobs left behind by failed uploads and deletes."""

    help = 'Delete blobs in storage that no file record references'

    @override
    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--backend',
            choices=sorted(STORAGE_TYPES),
            default=None,
            help='Storage backend to sweep (default: FILE_STORAGE_BACKEND)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )
        parser.add_argument(
            '--grace-minutes',
            type=int,
            default=None,
            help='Skip blobs younger than this (default: FILE_ORPHAN_GRACE_MINUTES)',
        )

    @override
    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the sweep.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        config = FileServiceConfig.from_settings()
        backend = options['backend'] or config.storage_type
        grace = config.orphan_grace
        if options['grace_minutes'] is not None:
            grace = timedelta(minutes=options['grace_minutes'])
        dry_run = options['dry_run']

        self.stdout.write(
            f'Sweeping {backend} storage for orphan blobs older than {grace}',
        )

        try:
            report = sweep_orphan_blobs(
                get_blob_storage(backend),
                grace,
                dry_run=dry_run,
            )
        except BackendUnavailableError as exc:
            logger.exception('Orphan sweep aborted: %s storage unavailable', backend)
            raise CommandError(str(exc)) from exc

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Would delete {report.orphaned} orphan blobs '
                    f'({report.scanned} scanned)',
                ),
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Deleted {report.deleted} orphan blobs, '
                    f'{report.failed} failed ({report.scanned} scanned)',
                ),
            )
