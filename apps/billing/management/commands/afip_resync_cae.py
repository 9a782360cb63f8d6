"""
Retry CAE requests for vouchers left pending or in error.

Usage:
    python manage.py afip_resync_cae
    python manage.py afip_resync_cae --tenant acme --limit 20
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandParser

from apps.billing.afip.service import VoucherAuthorizationService


class Command(BaseCommand):
    help = "Retry CAE authorization for pending vouchers"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument("--tenant", default=None, help="Only vouchers of this tenant")
        parser.add_argument("--limit", type=int, default=None, help="Maximum vouchers to process")

    def handle(self, *args: object, **options: object) -> None:
        summary = VoucherAuthorizationService().resync_pending(
            tenant_id=options.get("tenant"),  # type: ignore[arg-type]
            limit=options.get("limit"),  # type: ignore[arg-type]
        )
        for result in summary.results:
            if result.get("cae"):
                self.stdout.write(self.style.SUCCESS(f"✅ {result['number']}: CAE {result['cae']}"))
            else:
                error = result.get("error") or {}
                self.stdout.write(self.style.ERROR(f"❌ {result['number']}: {error.get('message', 'failed')}"))

        self.stdout.write(
            f"Processed {summary.processed}: {summary.successful} authorized, {summary.failed} failed"
        )
