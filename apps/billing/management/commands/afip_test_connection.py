"""
Run the AFIP connection diagnostics (credentials, WSAA login, WSFEv1 status).

Usage:
    python manage.py afip_test_connection <connection_id>
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError, CommandParser

from apps.billing.afip.service import VoucherAuthorizationService


class Command(BaseCommand):
    help = "Test an AFIP connection end to end"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument("connection_id", help="UUID of the AFIP connection")

    def handle(self, *args: object, **options: object) -> None:
        result = VoucherAuthorizationService().test_connection(str(options["connection_id"]))
        if result.is_err():
            raise CommandError(result.unwrap_err().message)

        diagnostics = result.unwrap()
        for step in diagnostics.steps:
            style = self.style.SUCCESS if step["success"] else self.style.ERROR
            marker = "✅" if step["success"] else "❌"
            self.stdout.write(style(f"{marker} {step['step']}: {step['message']}"))

        if not diagnostics.success:
            raise CommandError("AFIP connection test failed")
        self.stdout.write(self.style.SUCCESS("AFIP connection OK"))
