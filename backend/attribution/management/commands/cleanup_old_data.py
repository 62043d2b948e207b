from django.core.management.base import BaseCommand

from attribution.maintenance import cleanup_old_data


class Command(BaseCommand):
    help = "Clean up old offers of closed attributions and responses of expired ones."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=30,
            help="Delete records older than this many days (default: 30).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        counts = cleanup_old_data(days=days, dry_run=dry_run)

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {counts['offers']} offers and "
                    f"{counts['responses']} responses older than {days} days."
                )
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Deleted {counts['offers']} old offers and "
                    f"{counts['responses']} old responses older than {days} days."
                )
            )
