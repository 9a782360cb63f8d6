"""
Persistence collaborator for the AFIP components.

``AfipStore`` is the only place the signer-independent components touch the
database. It is passed into the ticket authority, the allocator and the
service so tests can swap it for an in-memory double.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from django.core.exceptions import ValidationError
from django.db import connections, transaction
from django.db.models import F
from django.utils import timezone

from .errors import AfipError, AfipErrorKind
from .models import (
    AfipConnection,
    AuthorizationAttempt,
    AuthorizationStatus,
    FiscalVoucher,
    VoucherSequence,
    ticket_fields,
)

if TYPE_CHECKING:
    from .wsaa import AccessTicket

logger = logging.getLogger(__name__)


class TicketStore(Protocol):
    """Persistence needed by the ticket authority."""

    def get_connection(self, connection_id: Any) -> AfipConnection: ...

    def save_ticket(self, connection_id: Any, ticket: AccessTicket) -> None: ...

    def clear_ticket(self, connection_id: Any) -> None: ...


class SequenceStore(Protocol):
    """Persistence needed by the sequence allocator."""

    def atomic(self) -> AbstractContextManager[Any]: ...

    def advisory_lock(self, key: int) -> None: ...

    def highest_voucher_number(self, tenant_id: str, prefix: str) -> str | None: ...

    def increment_sequence(self, sequence: VoucherSequence) -> int: ...


class AfipStore:
    """Django ORM implementation of the AFIP persistence collaborator."""

    def __init__(self, using: str = "default"):
        self.using = using

    # ===============================================================================
    # TRANSACTIONS AND LOCKS
    # ===============================================================================

    def atomic(self) -> AbstractContextManager[Any]:
        return transaction.atomic(using=self.using)

    def in_transaction(self) -> bool:
        return connections[self.using].in_atomic_block

    def advisory_lock(self, key: int) -> None:
        """
        Take a transaction-scoped lock on ``key``.

        PostgreSQL releases ``pg_advisory_xact_lock`` at commit/rollback. SQLite
        serializes writers on its own, so the lock is a no-op there.
        """
        if not self.in_transaction():
            raise RuntimeError("advisory_lock() must be called inside a transaction")

        connection = connections[self.using]
        if connection.vendor != "postgresql":
            logger.debug(f"🔒 [AFIP Store] Advisory lock {key} skipped on {connection.vendor}")
            return

        with connection.cursor() as cursor:
            cursor.execute("SELECT pg_advisory_xact_lock(%s)", [key])

    # ===============================================================================
    # CONNECTIONS AND TICKETS
    # ===============================================================================

    def get_connection(self, connection_id: Any) -> AfipConnection:
        try:
            return AfipConnection.objects.using(self.using).get(pk=connection_id, is_active=True)
        except (AfipConnection.DoesNotExist, ValidationError, ValueError) as e:
            raise AfipError(
                AfipErrorKind.CONFIGURATION_MISSING,
                f"AFIP connection {connection_id} not found or inactive",
            ) from e

    def get_connection_for(self, tenant_id: str, branch_id: str = "") -> AfipConnection | None:
        """Active connection for a branch, falling back to the tenant-wide one."""
        queryset = AfipConnection.objects.using(self.using).filter(tenant_id=tenant_id, is_active=True)
        if branch_id:
            branch_connection = queryset.filter(branch_id=branch_id).first()
            if branch_connection is not None:
                return branch_connection
        return queryset.filter(branch_id="").first()

    def save_ticket(self, connection_id: Any, ticket: AccessTicket) -> None:
        AfipConnection.objects.using(self.using).filter(pk=connection_id).update(
            **ticket_fields(ticket.token, ticket.sign, ticket.expires_at),
            updated_at=timezone.now(),
        )

    def clear_ticket(self, connection_id: Any) -> None:
        AfipConnection.objects.using(self.using).filter(pk=connection_id).update(
            **ticket_fields("", "", None),
            updated_at=timezone.now(),
        )

    def record_connection_test(self, connection_id: Any, status: str, tested_at: datetime) -> None:
        AfipConnection.objects.using(self.using).filter(pk=connection_id).update(
            last_test_at=tested_at,
            last_test_status=status,
        )

    # ===============================================================================
    # SEQUENCES
    # ===============================================================================

    def lock_sequence(self, tenant_id: str, voucher_type_code: int, branch_id: str = "") -> VoucherSequence:
        try:
            return (
                VoucherSequence.objects.using(self.using)
                .select_for_update(of=("self",))
                .select_related("afip_connection")
                .get(tenant_id=tenant_id, voucher_type_code=voucher_type_code, branch_id=branch_id)
            )
        except VoucherSequence.DoesNotExist as e:
            raise AfipError(
                AfipErrorKind.CONFIGURATION_MISSING,
                f"No voucher sequence for tenant {tenant_id}, type {voucher_type_code}, branch '{branch_id}'",
            ) from e

    def highest_voucher_number(self, tenant_id: str, prefix: str) -> str | None:
        # Fixed-width zero padding makes the lexical max the numeric max
        return (
            FiscalVoucher.objects.using(self.using)
            .filter(tenant_id=tenant_id, number__startswith=prefix)
            .order_by("-number")
            .values_list("number", flat=True)
            .first()
        )

    def increment_sequence(self, sequence: VoucherSequence) -> int:
        """Atomically bump ``next_number`` and return the value it had."""
        VoucherSequence.objects.using(self.using).filter(pk=sequence.pk).update(
            next_number=F("next_number") + 1,
            updated_at=timezone.now(),
        )
        sequence.refresh_from_db(using=self.using, fields=["next_number"])
        return sequence.next_number - 1

    def advance_sequence(self, sequence: VoucherSequence, next_number: int) -> None:
        """Move ``next_number`` forward; never backwards."""
        updated = (
            VoucherSequence.objects.using(self.using)
            .filter(pk=sequence.pk, next_number__lt=next_number)
            .update(next_number=next_number, updated_at=timezone.now())
        )
        if updated:
            sequence.refresh_from_db(using=self.using, fields=["next_number"])

    # ===============================================================================
    # VOUCHERS AND ATTEMPTS
    # ===============================================================================

    def create_voucher(self, **fields: Any) -> FiscalVoucher:
        return FiscalVoucher.objects.using(self.using).create(**fields)

    def get_voucher(self, voucher_id: Any) -> FiscalVoucher:
        return FiscalVoucher.objects.using(self.using).select_related("sequence__afip_connection").get(pk=voucher_id)

    def lock_voucher(self, voucher_id: Any) -> FiscalVoucher:
        """Re-read a voucher and hold its row until the transaction ends."""
        try:
            return (
                FiscalVoucher.objects.using(self.using)
                .select_for_update(of=("self",))
                .select_related("sequence__afip_connection")
                .get(pk=voucher_id)
            )
        except FiscalVoucher.DoesNotExist as e:
            raise AfipError(AfipErrorKind.INVALID_VOUCHER, f"Voucher {voucher_id} not found") from e

    def update_voucher(self, voucher: FiscalVoucher, **fields: Any) -> FiscalVoucher:
        for name, value in fields.items():
            setattr(voucher, name, value)
        voucher.save(using=self.using, update_fields=[*fields.keys(), "updated_at"])
        return voucher

    def record_attempt(self, voucher: FiscalVoucher, **fields: Any) -> AuthorizationAttempt:
        return AuthorizationAttempt.objects.using(self.using).create(
            voucher=voucher,
            voucher_number=voucher.number,
            sales_point=voucher.sales_point,
            **fields,
        )

    def pending_vouchers(self, tenant_id: str | None = None, limit: int = 50) -> list[FiscalVoucher]:
        queryset = FiscalVoucher.objects.using(self.using).filter(
            authorization_status__in=AuthorizationStatus.resync_statuses()
        )
        if tenant_id:
            queryset = queryset.filter(tenant_id=tenant_id)
        return list(queryset.order_by("created_at")[:limit])

