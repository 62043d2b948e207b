from django.core.management.base import BaseCommand
from django.conf import settings

from attribution.maintenance import expire_stale_attributions


class Command(BaseCommand):
    help = "Expire open attributions that nobody accepted in time."

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=settings.ATTRIBUTION_STALE_AFTER_MINUTES,
            help="Expire attributions last broadcast more than this many minutes ago.",
        )

    def handle(self, *args, **options):
        minutes = options["minutes"]
        expired = expire_stale_attributions(minutes=minutes)

        if expired:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Expired {len(expired)} attributions older than {minutes} minutes: "
                    f"{', '.join(str(pk) for pk in expired)}"
                )
            )
        else:
            self.stdout.write(f"No stale attributions older than {minutes} minutes.")
