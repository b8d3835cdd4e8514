from django.core.management.base import BaseCommand

from core import container as composition_root


class Command(BaseCommand):
    help = (
        "Fail orders stuck in pending_payment longer than the TTL and cancel abandoned created orders. "
        "Safe to run repeatedly (cron)."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than-minutes",
            type=int,
            default=None,
            help="Override PAYMENTS['PENDING_ORDER_TTL_MINUTES'].",
        )

    def handle(self, *args, **options):
        expired = composition_root.get_container().lifecycle.expire_stale(older_than_minutes=options["older_than_minutes"])

        for order in expired:
            self.stdout.write(f"{order.public_id} -> {order.status}")
        self.stdout.write(self.style.SUCCESS(f"Expired {len(expired)} order(s)."))
