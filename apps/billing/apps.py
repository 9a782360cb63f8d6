"""
Django app configuration for Billing app
"""

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class BillingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.billing"
    verbose_name = "Billing"

    def ready(self) -> None:
        """Schedule the AFIP CAE resync when enabled."""
        from django.conf import settings

        if getattr(settings, "AFIP_AUTO_RESYNC_ENABLED", False):
            from django.db import DatabaseError

            from apps.billing.afip.tasks import schedule_afip_tasks  # noqa: PLC0415

            try:
                schedule_afip_tasks()
            except DatabaseError:
                logger.warning("⚠️ [Billing] Failed to schedule AFIP tasks during startup")
