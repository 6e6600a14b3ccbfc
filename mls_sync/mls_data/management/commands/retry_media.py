from django.core.management.base import BaseCommand

from mls_data.services.media import MediaPipeline


class Command(BaseCommand):
    help = "Reprocess failed and degraded property media"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument("--provider", default=None, help="Only retry media for this provider id.")
        parser.add_argument("--limit", type=int, default=None, help="Maximum number of media rows to retry.")

    def handle(self, *args, **options) -> None:
        _ = args
        counts = MediaPipeline().retry_failed(provider_id=options["provider"], limit=options["limit"])
        message = f"Retried media: processed={counts['processed']} failed={counts['failed']}"
        style = self.style.SUCCESS if not counts["failed"] else self.style.WARNING
        self.stdout.write(style(message))
