import logging
import signal

from django.core.management.base import BaseCommand

from mls_api.config import settings
from mls_data.services.scheduler import Scheduler

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Run the MLS sync scheduler until interrupted"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument(
            "--tick-seconds",
            type=float,
            default=None,
            help=f"Seconds between scheduler ticks (default {settings.sync.tick_seconds}).",
        )
        parser.add_argument("--once", action="store_true", help="Run a single tick, wait for it and exit.")

    def handle(self, *args, **options) -> None:
        _ = args
        scheduler = Scheduler()

        if options["once"]:
            triggered = scheduler.tick()
            scheduler.wait()
            scheduler.executor.shutdown(wait=True)
            self.stdout.write(self.style.SUCCESS(f"Triggered {len(triggered)} provider(s): {', '.join(triggered) or '-'}"))
            return

        def _stop(signum, _frame) -> None:  # type: ignore[no-untyped-def]
            logger.info("Received signal %s; stopping scheduler after in-flight runs", signum)
            scheduler.stop()

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)
        scheduler.run_forever(options["tick_seconds"])
