from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from credentials.print_batches import get_batch_stats
from credentials.services import get_event_credential_stats, invalidate_event_credentials
from events.models import Event


class Command(BaseCommand):
    help = "Inspect credential status for an event or expire all of its credentials."

    def add_arguments(self, parser):
        parser.add_argument("action", choices=["status", "expire-event"])
        parser.add_argument("--event", type=int, required=True, help="Event id.")
        parser.add_argument(
            "--force",
            action="store_true",
            help="Required to expire credentials.",
        )

    def handle(self, *args, **options):
        event = Event.objects.filter(id=options["event"]).first()
        if event is None:
            raise CommandError(f"Event {options['event']} does not exist.")

        if options["action"] == "status":
            stats = get_event_credential_stats(event.id)
            self.stdout.write(f"Event: {event.name} (id={event.id})")
            for key in ("total", "active", "printed", "pending", "generating", "ready", "failed"):
                self.stdout.write(f"  {key}: {stats[key]}")
            batch_stats = get_batch_stats(event_id=event.id)
            self.stdout.write(
                f"  batches: {batch_stats['total']} "
                f"(ready={batch_stats['ready']}, failed={batch_stats['failed']}, "
                f"archived={batch_stats['archived']})"
            )
            return

        if not options["force"]:
            raise CommandError("Expiring credentials requires --force.")
        expired = invalidate_event_credentials(event)
        self.stdout.write(self.style.SUCCESS(f"Expired {expired} credential(s) for event {event.name}."))
