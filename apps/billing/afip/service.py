"""
Voucher authorization service.

Orchestrates one sale's fiscal voucher:

    lock sequence → reconcile with AFIP → reserve number → persist → request CAE

All of it runs in one transaction holding the (tenant, sales point) lock.
A failed CAE request never rolls back the sale: the voucher keeps its number
and is stored as ``error`` (retryable) or ``rejected`` (terminal).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from django.utils import timezone

from apps.common.types import Err, Ok, Result

from .errors import AfipError, AfipErrorKind, AfipFailure, SequenceConflict
from .models import AfipConnection, AuthorizationStatus, FiscalVoucher, VoucherSequence
from .observer import AfipObserver
from .reconciler import SequenceReconciler, SyncCheck
from .sequence import SequenceAllocator, parse_voucher_number
from .settings import (
    DEFAULT_DOC_NUMBER,
    DEFAULT_DOC_TYPE,
    DEFAULT_VAT_CONDITION,
    ConflictPolicy,
    afip_settings,
)
from .store import AfipStore
from .wsfe import AuthorizationClient, ServerStatus, VoucherDetails, VoucherLine, build_vat_breakdown

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoucherRequest:
    """A sale to be issued as a fiscal voucher."""

    tenant_id: str
    voucher_type_code: int
    document_date: date
    net_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    lines: tuple[VoucherLine, ...] = ()
    branch_id: str = ""
    sale_reference: str = ""
    customer_doc_type: int = DEFAULT_DOC_TYPE
    customer_doc_number: str = DEFAULT_DOC_NUMBER
    customer_vat_condition: int = DEFAULT_VAT_CONDITION


@dataclass(frozen=True)
class IssueOutcome:
    """Persisted voucher plus what happened while authorizing it."""

    voucher: FiscalVoucher
    sync: SyncCheck | None = None
    failure: AfipFailure | None = None

    @property
    def authorized(self) -> bool:
        return self.voucher.is_authorized


@dataclass
class ResyncSummary:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "results": self.results,
        }


@dataclass
class ConnectionDiagnostics:
    success: bool = True
    steps: list[dict[str, Any]] = field(default_factory=list)
    server_status: ServerStatus | None = None

    def add_step(self, step: str, success: bool, message: str) -> None:
        self.steps.append({"step": step, "success": success, "message": message})
        self.success = self.success and success

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "steps": self.steps,
            "server_status": self.server_status.to_dict() if self.server_status else None,
        }


class VoucherAuthorizationService:
    """Issues, retries and resynchronizes CAE authorizations."""

    def __init__(
        self,
        store: AfipStore | None = None,
        client: AuthorizationClient | None = None,
        allocator: SequenceAllocator | None = None,
        reconciler: SequenceReconciler | None = None,
        observer: AfipObserver | None = None,
    ):
        self.store = store or AfipStore()
        self.observer = observer or AfipObserver()
        self.client = client or AuthorizationClient(observer=self.observer)
        self.allocator = allocator or SequenceAllocator(store=self.store, observer=self.observer)
        self.reconciler = reconciler or SequenceReconciler(client=self.client, observer=self.observer)

    # ===============================================================================
    # ISSUE
    # ===============================================================================

    def issue(
        self,
        request: VoucherRequest,
        *,
        force_without_cae: bool = False,
    ) -> Result[IssueOutcome, AfipFailure | SequenceConflict]:
        """
        Persist a fiscal voucher for ``request`` and try to authorize it.

        Returns ``Err(SequenceConflict)`` when AFIP is ahead of the local
        numbering and neither the override nor the advance policy applies;
        nothing is persisted in that case. With ``force_without_cae`` the
        voucher is stored as ``skipped`` and no CAE is requested.
        """
        with self.store.atomic():
            try:
                sequence = self.store.lock_sequence(request.tenant_id, request.voucher_type_code, request.branch_id)
            except AfipError as e:
                return Err(e.to_failure())

            if not sequence.requires_cae:
                number = self.allocator.next_number(request.tenant_id, sequence.sales_point)
                voucher = self._create_voucher(request, sequence, number, AuthorizationStatus.NOT_REQUIRED)
                return Ok(IssueOutcome(voucher=voucher))

            connection = self._connection_for(sequence)
            if connection is None:
                return Err(
                    AfipFailure(
                        kind=AfipErrorKind.CONFIGURATION_MISSING,
                        message=f"No active AFIP connection for tenant {request.tenant_id}",
                    )
                )

            try:
                build_vat_breakdown(request.lines)
            except AfipError as e:
                return Err(e.to_failure())

            self.allocator.acquire(request.tenant_id, sequence.sales_point)
            check = self.reconciler.check(
                connection, sequence.sales_point, sequence.voucher_type_code, sequence.next_number
            )

            skip_authorization = False
            proceed = check.can_proceed
            if check.is_out_of_sync:
                assert check.authority_last is not None
                if afip_settings.conflict_policy == ConflictPolicy.ADVANCE:
                    logger.warning(
                        f"⚠️ [AFIP Service] Advancing sequence {sequence.pk} to {check.authority_last + 1}"
                    )
                    self.store.advance_sequence(sequence, check.authority_last + 1)
                    proceed = True
                elif force_without_cae:
                    skip_authorization = True
                else:
                    return Err(
                        SequenceConflict(
                            authority_last=check.authority_last,
                            local_next=check.local_next,
                            sales_point=sequence.sales_point,
                            voucher_type_code=sequence.voucher_type_code,
                        )
                    )

            number = self.allocator.reserve(sequence)

            if skip_authorization:
                voucher = self._create_voucher(request, sequence, number, AuthorizationStatus.SKIPPED)
                logger.warning(f"⚠️ [AFIP Service] Voucher {number} saved without CAE by operator override")
                return Ok(IssueOutcome(voucher=voucher, sync=check))

            voucher = self._create_voucher(request, sequence, number, AuthorizationStatus.PENDING)

            if not proceed and check.failure is not None:
                self._record_failure(voucher, connection, check.failure, submitted=False)
                return Ok(IssueOutcome(voucher=voucher, sync=check, failure=check.failure))

            failure = self._authorize(voucher, connection)
            return Ok(IssueOutcome(voucher=voucher, sync=check, failure=failure))

    # ===============================================================================
    # RETRY AND RESYNC
    # ===============================================================================

    def retry_authorization(self, voucher: FiscalVoucher) -> Result[IssueOutcome, AfipFailure]:
        """
        Request a CAE again for an existing voucher, keeping its number.

        The voucher is re-read under the sales point lock, so a caller holding
        a stale copy never resubmits a number another worker already authorized.
        """
        with self.store.atomic():
            self.allocator.acquire(voucher.tenant_id, voucher.sales_point)
            try:
                voucher = self.store.lock_voucher(voucher.pk)
            except AfipError as e:
                return Err(e.to_failure())

            if voucher.is_authorized:
                return Ok(IssueOutcome(voucher=voucher))

            if voucher.authorization_status == AuthorizationStatus.NOT_REQUIRED.value:
                return Err(
                    AfipFailure(
                        kind=AfipErrorKind.INVALID_VOUCHER, message=f"Voucher {voucher.number} does not need a CAE"
                    )
                )

            if not voucher.can_retry:
                return Err(
                    AfipFailure(
                        kind=AfipErrorKind.BUSINESS_REJECTION,
                        message=f"Voucher {voucher.number} was rejected by AFIP and cannot be retried",
                        code=voucher.error_code,
                        raw_message=voucher.error_message,
                    )
                )

            connection = self._connection_for(voucher.sequence)
            if connection is None:
                return Err(
                    AfipFailure(
                        kind=AfipErrorKind.CONFIGURATION_MISSING,
                        message=f"No active AFIP connection for tenant {voucher.tenant_id}",
                    )
                )

            failure = self._authorize(voucher, connection)
            return Ok(IssueOutcome(voucher=voucher, failure=failure))

    def resync_pending(self, tenant_id: str | None = None, limit: int | None = None) -> ResyncSummary:
        """Retry vouchers left in ``pending`` or ``error``, oldest first."""
        batch_size = limit or afip_settings.resync_batch_size
        summary = ResyncSummary()

        for voucher in self.store.pending_vouchers(tenant_id=tenant_id, limit=batch_size):
            summary.processed += 1
            result = self.retry_authorization(voucher)
            outcome = result.unwrap() if result.is_ok() else None

            if outcome is not None and outcome.authorized:
                summary.successful += 1
                summary.results.append(
                    {"voucher_id": str(voucher.pk), "number": voucher.number, "cae": outcome.voucher.cae}
                )
                continue

            summary.failed += 1
            failure = outcome.failure if outcome is not None else result.unwrap_err()
            summary.results.append(
                {
                    "voucher_id": str(voucher.pk),
                    "number": voucher.number,
                    "error": failure.to_dict() if failure else None,
                }
            )

        logger.info(
            f"✅ [AFIP Service] Resync processed {summary.processed}: "
            f"{summary.successful} authorized, {summary.failed} failed"
        )
        return summary

    # ===============================================================================
    # CONNECTION OPERATIONS
    # ===============================================================================

    def test_connection(self, connection_id: Any) -> Result[ConnectionDiagnostics, AfipFailure]:
        """Check credentials, WSAA login and WSFEv1 availability for a connection."""
        try:
            connection = self.store.get_connection(connection_id)
        except AfipError as e:
            return Err(e.to_failure())

        diagnostics = ConnectionDiagnostics()
        if connection.has_credentials:
            diagnostics.add_step("credentials", True, "Certificate and private key present")
        else:
            diagnostics.add_step("credentials", False, AfipErrorKind.CONFIGURATION_MISSING.user_message)

        if diagnostics.success:
            try:
                ticket = self.client.tickets.get_ticket(connection.pk)
                diagnostics.add_step("wsaa", True, f"Access ticket valid until {ticket.expires_at.isoformat()}")
            except AfipError as e:
                if e.kind == AfipErrorKind.TICKET_ALREADY_VALID:
                    self.client.tickets.invalidate_ticket(connection.pk)
                diagnostics.add_step("wsaa", False, e.message)

        if diagnostics.success:
            try:
                status = self.client.server_status(connection)
                diagnostics.server_status = status
                diagnostics.add_step(
                    "wsfe",
                    status.is_healthy,
                    f"AppServer={status.app_server} DbServer={status.db_server} AuthServer={status.auth_server}",
                )
            except AfipError as e:
                diagnostics.add_step("wsfe", False, e.message)

        self.store.record_connection_test(
            connection.pk, "success" if diagnostics.success else "failed", timezone.now()
        )
        return Ok(diagnostics)

    def server_status(self, connection_id: Any) -> Result[ServerStatus, AfipFailure]:
        try:
            connection = self.store.get_connection(connection_id)
            return Ok(self.client.server_status(connection))
        except AfipError as e:
            return Err(e.to_failure())

    def invalidate_ticket(self, connection_id: Any) -> None:
        self.client.tickets.invalidate_ticket(connection_id)

    # ===============================================================================
    # HELPERS
    # ===============================================================================

    def _connection_for(self, sequence: VoucherSequence) -> AfipConnection | None:
        connection = sequence.afip_connection
        if connection is not None and connection.is_active:
            return connection
        return self.store.get_connection_for(sequence.tenant_id, sequence.branch_id)

    def _create_voucher(
        self,
        request: VoucherRequest,
        sequence: VoucherSequence,
        number: str,
        status: AuthorizationStatus,
    ) -> FiscalVoucher:
        return self.store.create_voucher(
            tenant_id=request.tenant_id,
            sequence=sequence,
            sale_reference=request.sale_reference,
            voucher_type_code=sequence.voucher_type_code,
            sales_point=sequence.sales_point,
            number=number,
            document_date=request.document_date,
            customer_doc_type=request.customer_doc_type,
            customer_doc_number=request.customer_doc_number,
            customer_vat_condition=request.customer_vat_condition,
            net_amount=request.net_amount,
            vat_amount=request.vat_amount,
            total_amount=request.total_amount,
            lines=[line.to_dict() for line in request.lines],
            authorization_status=status.value,
        )

    def _authorize(self, voucher: FiscalVoucher, connection: AfipConnection) -> AfipFailure | None:
        details = VoucherDetails.from_voucher(voucher, parse_voucher_number(voucher.number))
        try:
            result = self.client.request_cae(connection, details)
        except AfipError as e:
            failure = e.to_failure()
            self._record_failure(voucher, connection, failure)
            return failure

        self.store.update_voucher(
            voucher,
            authorization_status=AuthorizationStatus.AUTHORIZED.value,
            cae=result.cae,
            cae_expiration=result.cae_expiration,
            authorized_at=timezone.now(),
            error_kind="",
            error_code="",
            error_message="",
        )
        self.store.record_attempt(
            voucher,
            succeeded=True,
            cae=result.cae,
            cae_expiration=result.cae_expiration,
            observations=result.observations,
        )
        return None

    def _record_failure(
        self,
        voucher: FiscalVoucher,
        connection: AfipConnection,
        failure: AfipFailure,
        *,
        submitted: bool = True,
    ) -> None:
        if failure.kind == AfipErrorKind.TICKET_ALREADY_VALID:
            self.client.tickets.invalidate_ticket(connection.pk)

        status = (
            AuthorizationStatus.REJECTED
            if submitted and failure.kind == AfipErrorKind.BUSINESS_REJECTION
            else AuthorizationStatus.ERROR
        )
        self.store.update_voucher(
            voucher,
            authorization_status=status.value,
            error_kind=failure.kind.value,
            error_code=failure.code,
            error_message=failure.message,
        )
        self.store.record_attempt(
            voucher,
            succeeded=False,
            error_kind=failure.kind.value,
            error_code=failure.code,
            error_message=failure.message,
            raw_message=failure.raw_message,
            observations=failure.details,
        )
