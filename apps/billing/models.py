"""
Billing models.

AFIP models live in ``apps.billing.afip.models`` and are re-exported here so
Django registers them with the billing app.
"""

from .afip.models import (  # noqa: F401
    AfipConnection,
    AuthorizationAttempt,
    AuthorizationStatus,
    FiscalVoucher,
    VoucherSequence,
)

__all__ = [
    "AfipConnection",
    "AuthorizationAttempt",
    "AuthorizationStatus",
    "FiscalVoucher",
    "VoucherSequence",
]
