"""
AFIP models: connections, voucher sequences, fiscal vouchers and
authorization attempts.

Lifecycle of a fiscal voucher:
reserve number → (reconcile with AFIP) → request CAE → authorized / rejected / error
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from django.db import models

from .errors import AfipErrorKind
from .settings import DEFAULT_DOC_NUMBER, DEFAULT_DOC_TYPE, DEFAULT_VAT_CONDITION, AfipEnvironment

if TYPE_CHECKING:
    from .wsaa import AccessTicket


class AuthorizationStatus(StrEnum):
    """CAE authorization status of a fiscal voucher."""

    NOT_REQUIRED = "not_required"  # Voucher type does not need a CAE
    PENDING = "pending"  # Number reserved, CAE not requested yet
    AUTHORIZED = "authorized"  # CAE granted
    REJECTED = "rejected"  # AFIP refused the voucher (terminal)
    ERROR = "error"  # Technical failure, may be retried
    SKIPPED = "skipped"  # Saved without CAE by operator override

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(s.value, s.name.replace("_", " ").title()) for s in cls]

    @classmethod
    def terminal_statuses(cls) -> set[str]:
        return {cls.NOT_REQUIRED.value, cls.AUTHORIZED.value, cls.REJECTED.value}

    @classmethod
    def retryable_statuses(cls) -> set[str]:
        return {cls.PENDING.value, cls.ERROR.value, cls.SKIPPED.value}

    @classmethod
    def resync_statuses(cls) -> set[str]:
        """Statuses picked up by the background resync."""
        return {cls.PENDING.value, cls.ERROR.value}


class AfipConnection(models.Model):
    """
    Per-tenant AFIP web service configuration.

    Holds the certificate/key pair used to sign WSAA login requests and the
    cached access ticket. Only the ticket authority writes the ``ta_*`` fields.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.CharField(max_length=64, db_index=True, help_text="Owning tenant")
    branch_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Branch this connection is scoped to (empty for tenant-wide)",
    )
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True, default="")

    cuit = models.CharField(max_length=11, help_text="Taxpayer identifier (11 digits)")
    environment = models.CharField(
        max_length=20,
        choices=AfipEnvironment.choices(),
        default=AfipEnvironment.TESTING.value,
    )
    wsaa_url = models.URLField(max_length=255, blank=True, default="", help_text="Override for the WSAA WSDL")
    wsfe_url = models.URLField(max_length=255, blank=True, default="", help_text="Override for the WSFEv1 WSDL")

    certificate = models.TextField(blank=True, default="", help_text="PEM certificate issued by AFIP")
    private_key = models.TextField(blank=True, default="", help_text="PEM private key for the certificate")
    timeout_seconds = models.PositiveIntegerField(default=30)

    # Cached access ticket
    ta_token = models.TextField(blank=True, default="")
    ta_sign = models.TextField(blank=True, default="")
    ta_expires_at = models.DateTimeField(null=True, blank=True)

    # Diagnostics
    last_test_at = models.DateTimeField(null=True, blank=True)
    last_test_status = models.CharField(max_length=20, blank=True, default="")

    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "billing"
        db_table = "afip_connections"
        verbose_name = "AFIP Connection"
        verbose_name_plural = "AFIP Connections"
        indexes = [
            models.Index(fields=["tenant_id", "is_active"], name="afip_conn_tenant_active_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.cuit}, {self.environment})"

    @property
    def afip_environment(self) -> AfipEnvironment:
        return AfipEnvironment(self.environment)

    @property
    def wsaa_endpoint(self) -> str:
        return self.wsaa_url or self.afip_environment.wsaa_url

    @property
    def wsfe_endpoint(self) -> str:
        return self.wsfe_url or self.afip_environment.wsfe_url

    @property
    def has_credentials(self) -> bool:
        return bool(self.certificate.strip() and self.private_key.strip())

    @property
    def cached_ticket(self) -> AccessTicket | None:
        from .wsaa import AccessTicket  # noqa: PLC0415

        if not (self.ta_token and self.ta_sign and self.ta_expires_at):
            return None
        return AccessTicket(token=self.ta_token, sign=self.ta_sign, expires_at=self.ta_expires_at)


class VoucherSequence(models.Model):
    """
    Numbering state for one voucher type at one tenant branch.

    ``next_number`` only moves forward: through the allocator's atomic
    increment or an explicit reconciliation advance.
    """

    tenant_id = models.CharField(max_length=64, db_index=True)
    voucher_type_code = models.PositiveSmallIntegerField(help_text="AFIP CbteTipo (1 = Factura A, 6 = Factura B...)")
    branch_id = models.CharField(max_length=64, blank=True, default="")
    sales_point = models.PositiveIntegerField(help_text="AFIP PtoVta (1-99999)")
    next_number = models.PositiveBigIntegerField(default=1)
    requires_cae = models.BooleanField(default=True)
    afip_connection = models.ForeignKey(
        AfipConnection,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sequences",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "billing"
        db_table = "afip_voucher_sequences"
        verbose_name = "Voucher Sequence"
        verbose_name_plural = "Voucher Sequences"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "voucher_type_code", "branch_id"],
                name="unique_voucher_sequence_per_branch",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.tenant_id} type {self.voucher_type_code} @ {self.sales_point:05d} (next {self.next_number})"


class FiscalVoucher(models.Model):
    """A sale's fiscal voucher and its CAE authorization outcome."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.CharField(max_length=64, db_index=True)
    sequence = models.ForeignKey(VoucherSequence, on_delete=models.PROTECT, related_name="vouchers")
    sale_reference = models.CharField(max_length=100, blank=True, default="", help_text="Identifier of the sale")

    voucher_type_code = models.PositiveSmallIntegerField()
    sales_point = models.PositiveIntegerField()
    number = models.CharField(max_length=14, help_text="Formatted as PPPPP-NNNNNNNN")
    document_date = models.DateField()

    customer_doc_type = models.PositiveSmallIntegerField(default=DEFAULT_DOC_TYPE)
    customer_doc_number = models.CharField(max_length=20, default=DEFAULT_DOC_NUMBER)
    customer_vat_condition = models.PositiveSmallIntegerField(default=DEFAULT_VAT_CONDITION)

    net_amount = models.DecimalField(max_digits=14, decimal_places=2)
    vat_amount = models.DecimalField(max_digits=14, decimal_places=2)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2)
    lines = models.JSONField(default=list, blank=True, help_text="Line snapshot used for the VAT breakdown")

    authorization_status = models.CharField(
        max_length=20,
        choices=AuthorizationStatus.choices(),
        default=AuthorizationStatus.PENDING.value,
        db_index=True,
    )
    cae = models.CharField(max_length=14, blank=True, default="")
    cae_expiration = models.DateField(null=True, blank=True)
    authorized_at = models.DateTimeField(null=True, blank=True)

    error_kind = models.CharField(max_length=40, choices=AfipErrorKind.choices(), blank=True, default="")
    error_code = models.CharField(max_length=20, blank=True, default="")
    error_message = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "billing"
        db_table = "afip_fiscal_vouchers"
        verbose_name = "Fiscal Voucher"
        verbose_name_plural = "Fiscal Vouchers"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "voucher_type_code", "number"],
                name="unique_fiscal_voucher_number",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "number"], name="afip_voucher_tenant_num_idx"),
            models.Index(fields=["authorization_status", "created_at"], name="afip_voucher_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.voucher_type_code} {self.number} ({self.authorization_status})"

    @property
    def is_authorized(self) -> bool:
        return self.authorization_status == AuthorizationStatus.AUTHORIZED.value

    @property
    def can_retry(self) -> bool:
        return self.authorization_status in AuthorizationStatus.retryable_statuses()


class AuthorizationAttempt(models.Model):
    """One CAE request made for a fiscal voucher."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    voucher = models.ForeignKey(FiscalVoucher, on_delete=models.CASCADE, related_name="attempts")

    voucher_number = models.CharField(max_length=14)
    sales_point = models.PositiveIntegerField()
    succeeded = models.BooleanField(default=False)

    cae = models.CharField(max_length=14, blank=True, default="")
    cae_expiration = models.DateField(null=True, blank=True)

    error_kind = models.CharField(max_length=40, choices=AfipErrorKind.choices(), blank=True, default="")
    error_code = models.CharField(max_length=20, blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    raw_message = models.TextField(blank=True, default="")
    observations = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        app_label = "billing"
        db_table = "afip_authorization_attempts"
        verbose_name = "Authorization Attempt"
        verbose_name_plural = "Authorization Attempts"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        outcome = f"CAE {self.cae}" if self.succeeded else self.error_kind or "failed"
        return f"{self.voucher_number}: {outcome}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "voucher_number": self.voucher_number,
            "succeeded": self.succeeded,
            "cae": self.cae,
            "cae_expiration": self.cae_expiration.isoformat() if self.cae_expiration else None,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


def ticket_fields(token: str, sign: str, expires_at: datetime | None) -> dict[str, Any]:
    """Field values for writing (or clearing) a cached ticket."""
    return {"ta_token": token, "ta_sign": sign, "ta_expires_at": expires_at}
