from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from credentials.print_batches import cleanup_old_batches


class Command(BaseCommand):
    help = "Archive old print batches and delete their PDF files."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=None,
            help="Archive ready/failed batches created more than N days ago.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report candidates without deleting files or archiving batches.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        if days is None:
            days = int(settings.PRINT_BATCH_RETENTION_DAYS)
        dry_run = bool(options["dry_run"])
        if days < 1:
            raise CommandError("--days must be >= 1.")

        result = cleanup_old_batches(days_old=days, dry_run=dry_run)
        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"Dry run complete: {result['total_processed']} candidate(s), "
                    f"{result['cleaned_files']} file(s) would be deleted."
                )
            )
            return

        self.stdout.write(
            self.style.SUCCESS(
                f"Archived {result['archived_batches']} batch(es), deleted {result['cleaned_files']} "
                f"file(s) (scanned {result['total_processed']} candidate(s))."
            )
        )
