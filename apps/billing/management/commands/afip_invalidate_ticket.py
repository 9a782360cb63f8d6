"""
Drop the cached WSAA access ticket of an AFIP connection.

Usage:
    python manage.py afip_invalidate_ticket <connection_id>
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError, CommandParser

from apps.billing.afip.models import AfipConnection
from apps.billing.afip.service import VoucherAuthorizationService


class Command(BaseCommand):
    help = "Invalidate the cached AFIP access ticket so the next request logs in again"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument("connection_id", help="UUID of the AFIP connection")

    def handle(self, *args: object, **options: object) -> None:
        connection_id = str(options["connection_id"])
        if not AfipConnection.objects.filter(pk=connection_id).exists():
            raise CommandError(f"AFIP connection {connection_id} not found")

        VoucherAuthorizationService().invalidate_ticket(connection_id)
        self.stdout.write(self.style.SUCCESS(f"✅ Ticket invalidated for connection {connection_id}"))
