"""
Pre-flight comparison of local numbering with AFIP's last authorized number.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .errors import AfipError, AfipFailure
from .models import AfipConnection
from .observer import AfipObserver
from .wsfe import AuthorizationClient


class SyncState(StrEnum):
    IN_SYNC = "in_sync"
    OUT_OF_SYNC = "out_of_sync"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SyncCheck:
    """Outcome of a reconciliation check."""

    state: SyncState
    sales_point: int
    voucher_type_code: int
    local_next: int
    authority_last: int | None = None
    failure: AfipFailure | None = None

    @property
    def is_out_of_sync(self) -> bool:
        return self.state == SyncState.OUT_OF_SYNC

    @property
    def can_proceed(self) -> bool:
        """Whether the CAE request may go ahead without operator action."""
        if self.state == SyncState.IN_SYNC:
            return True
        if self.state == SyncState.UNKNOWN:
            return self.failure is None or self.failure.kind.is_transient
        return False


class SequenceReconciler:
    """Compares ``local_next`` against AFIP's counter for a sales point and type."""

    def __init__(self, client: AuthorizationClient | None = None, observer: AfipObserver | None = None):
        self.observer = observer or AfipObserver()
        self.client = client or AuthorizationClient(observer=self.observer)

    def check(
        self,
        connection: AfipConnection,
        sales_point: int,
        voucher_type_code: int,
        local_next: int,
    ) -> SyncCheck:
        try:
            authority_last = self.client.last_authorized_number(connection, sales_point, voucher_type_code)
        except AfipError as e:
            result = SyncCheck(
                state=SyncState.UNKNOWN,
                sales_point=sales_point,
                voucher_type_code=voucher_type_code,
                local_next=local_next,
                failure=e.to_failure(),
            )
        else:
            state = SyncState.IN_SYNC if authority_last < local_next else SyncState.OUT_OF_SYNC
            result = SyncCheck(
                state=state,
                sales_point=sales_point,
                voucher_type_code=voucher_type_code,
                local_next=local_next,
                authority_last=authority_last,
            )

        self.observer.sequence_checked(result)
        return result
