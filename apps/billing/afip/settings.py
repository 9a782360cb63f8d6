"""
AFIP settings and protocol constants.

Values fixed by AFIP's WSAA/WSFEv1 protocol live here as constants; values an
operator may tune are read lazily from Django settings through ``AfipSettings``
so ``override_settings`` applies in tests.

Usage:
    from apps.billing.afip.settings import afip_settings

    margin = afip_settings.ticket_safety_margin
"""

from __future__ import annotations

import logging
import zoneinfo
from datetime import timedelta
from decimal import Decimal
from enum import IntEnum, StrEnum
from typing import Any

from django.conf import settings as django_settings

logger = logging.getLogger(__name__)


# ===============================================================================
# CONSTANTS - Fixed by the AFIP web services
# ===============================================================================

# Login request document and ticket response formats
TRA_VERSION = "1.0"
TRA_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

# WSFEv1 date format (CbteFch, CAEFchVto)
WSFE_DATE_FORMAT = "%Y%m%d"

# Voucher number layout: "PPPPP-NNNNNNNN"
SALES_POINT_DIGITS = 5
SEQUENCE_DIGITS = 8
MAX_SALES_POINT = 99_999
MAX_SEQUENCE = 99_999_999

# Single-voucher request constants
CONCEPT_GOODS = 1
CURRENCY_PESOS = "PES"
CURRENCY_RATE = Decimal("1")
RESULT_APPROVED = "A"

# Buyer defaults: "Consumidor Final" with no identification
DEFAULT_DOC_TYPE = 99
DEFAULT_DOC_NUMBER = "0"
DEFAULT_VAT_CONDITION = 5

QR_BASE_URL = "https://www.afip.gob.ar/fe/qr/"
QR_VERSION = 1
QR_AUTH_CODE_TYPE = "E"


class AfipEnvironment(StrEnum):
    """AFIP web service environments."""

    TESTING = "testing"
    PRODUCTION = "production"

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(env.value, env.name.title()) for env in cls]

    @property
    def wsaa_url(self) -> str:
        urls = {
            "testing": "https://wsaahomo.afip.gov.ar/ws/services/LoginCms?WSDL",
            "production": "https://wsaa.afip.gov.ar/ws/services/LoginCms?WSDL",
        }
        return urls[self.value]

    @property
    def wsfe_url(self) -> str:
        urls = {
            "testing": "https://wswhomo.afip.gov.ar/wsfev1/service.asmx?WSDL",
            "production": "https://servicios1.afip.gov.ar/wsfev1/service.asmx?WSDL",
        }
        return urls[self.value]


class VatBucket(IntEnum):
    """AFIP VAT rate identifiers (AlicIva.Id)."""

    RATE_0 = 3
    RATE_10_5 = 4
    RATE_21 = 5
    RATE_27 = 6
    RATE_5 = 8
    RATE_2_5 = 9

    @property
    def rate(self) -> Decimal:
        return VAT_BUCKET_RATES[self]

    @classmethod
    def for_rate(cls, rate: Decimal | float | int | str) -> VatBucket | None:
        value = Decimal(str(rate)).normalize()
        for bucket, bucket_rate in VAT_BUCKET_RATES.items():
            if bucket_rate.normalize() == value:
                return bucket
        return None


VAT_BUCKET_RATES: dict[VatBucket, Decimal] = {
    VatBucket.RATE_0: Decimal("0"),
    VatBucket.RATE_10_5: Decimal("10.5"),
    VatBucket.RATE_21: Decimal("21"),
    VatBucket.RATE_27: Decimal("27"),
    VatBucket.RATE_5: Decimal("5"),
    VatBucket.RATE_2_5: Decimal("2.5"),
}


class ConflictPolicy(StrEnum):
    """What to do when AFIP is ahead of the local numbering."""

    BLOCK = "block"
    ADVANCE = "advance"


# ===============================================================================
# DEFAULTS
# ===============================================================================

AFIP_DEFAULTS: dict[str, Any] = {
    "AFIP_SERVICE_NAME": "wsfe",
    "AFIP_TIMEZONE": "America/Argentina/Buenos_Aires",
    "AFIP_DEFAULT_TIMEOUT_SECONDS": 30,
    "AFIP_TICKET_SAFETY_MARGIN_SECONDS": 300,
    "AFIP_TICKET_VALIDITY_HOURS": 12,
    "AFIP_SEQUENCE_CONFLICT_POLICY": ConflictPolicy.BLOCK.value,
    "AFIP_LEGACY_TLS": True,
    "AFIP_RESYNC_BATCH_SIZE": 50,
    "AFIP_AUTO_RESYNC_ENABLED": False,
    "AFIP_RESYNC_INTERVAL_MINUTES": 15,
    "AFIP_METRICS_ENABLED": False,
    "AFIP_METRICS_PREFIX": "afip",
}


class AfipSettings:
    """Lazy accessor for AFIP Django settings."""

    def _get(self, key: str) -> Any:
        return getattr(django_settings, key, AFIP_DEFAULTS[key])

    @property
    def service_name(self) -> str:
        return str(self._get("AFIP_SERVICE_NAME"))

    @property
    def timezone(self) -> zoneinfo.ZoneInfo:
        return zoneinfo.ZoneInfo(self._get("AFIP_TIMEZONE"))

    @property
    def default_timeout(self) -> int:
        return int(self._get("AFIP_DEFAULT_TIMEOUT_SECONDS"))

    @property
    def ticket_safety_margin(self) -> timedelta:
        return timedelta(seconds=int(self._get("AFIP_TICKET_SAFETY_MARGIN_SECONDS")))

    @property
    def ticket_validity(self) -> timedelta:
        return timedelta(hours=int(self._get("AFIP_TICKET_VALIDITY_HOURS")))

    @property
    def conflict_policy(self) -> ConflictPolicy:
        value = str(self._get("AFIP_SEQUENCE_CONFLICT_POLICY")).lower()
        try:
            return ConflictPolicy(value)
        except ValueError:
            logger.warning(f"⚠️ [AFIP] Unknown sequence conflict policy '{value}', using 'block'")
            return ConflictPolicy.BLOCK

    @property
    def legacy_tls(self) -> bool:
        return bool(self._get("AFIP_LEGACY_TLS"))

    @property
    def resync_batch_size(self) -> int:
        return int(self._get("AFIP_RESYNC_BATCH_SIZE"))

    @property
    def auto_resync_enabled(self) -> bool:
        return bool(self._get("AFIP_AUTO_RESYNC_ENABLED"))

    @property
    def resync_interval_minutes(self) -> int:
        return int(self._get("AFIP_RESYNC_INTERVAL_MINUTES"))

    @property
    def metrics_enabled(self) -> bool:
        return bool(self._get("AFIP_METRICS_ENABLED"))

    @property
    def metrics_prefix(self) -> str:
        return str(self._get("AFIP_METRICS_PREFIX"))


afip_settings = AfipSettings()
