"""
Voucher number allocation.

Numbers are ``PPPPP-NNNNNNNN`` (sales point, sequence). Allocation happens
inside the caller's transaction while holding an advisory lock keyed on
(tenant, sales point), so concurrent sales never share or skip a number.
"""

from __future__ import annotations

from typing import Any

from .observer import AfipObserver
from .settings import MAX_SALES_POINT, MAX_SEQUENCE, SALES_POINT_DIGITS, SEQUENCE_DIGITS
from .store import AfipStore, SequenceStore

LOCK_KEY_MASK = 0x7FFFFFFF


def lock_key(tenant_id: str, sales_point: int) -> int:
    """31-bit rolling hash of tenant id and sales point."""
    value = 0
    for char in f"{tenant_id}{sales_point}":
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    return value & LOCK_KEY_MASK


def format_voucher_number(sales_point: int, sequence: int) -> str:
    if not 1 <= sales_point <= MAX_SALES_POINT:
        raise ValueError(f"Sales point {sales_point} outside 1-{MAX_SALES_POINT}")
    if not 1 <= sequence <= MAX_SEQUENCE:
        raise ValueError(f"Sequence {sequence} outside 1-{MAX_SEQUENCE}")
    return f"{sales_point:0{SALES_POINT_DIGITS}d}-{sequence:0{SEQUENCE_DIGITS}d}"


def sales_point_prefix(sales_point: int) -> str:
    return f"{sales_point:0{SALES_POINT_DIGITS}d}-"


def parse_voucher_number(number: str) -> int:
    """Sequence part of a formatted number (text after the last dash)."""
    _, _, suffix = number.rpartition("-")
    if not suffix.isdigit():
        raise ValueError(f"Malformed voucher number: {number!r}")
    return int(suffix)


class SequenceAllocator:
    """Hands out voucher numbers under a per-(tenant, sales point) lock."""

    def __init__(self, store: SequenceStore | None = None, observer: AfipObserver | None = None):
        self.store = store or AfipStore()
        self.observer = observer or AfipObserver()

    def acquire(self, tenant_id: str, sales_point: int) -> None:
        """Take the allocation lock for the rest of the current transaction."""
        self.store.advisory_lock(lock_key(tenant_id, sales_point))

    def next_number(self, tenant_id: str, sales_point: int) -> str:
        """
        Next number after the highest one already stored for the sales point.

        Must run inside a transaction; the new voucher has to be inserted in
        that same transaction for the lock to cover it.
        """
        self.acquire(tenant_id, sales_point)
        last = self.store.highest_voucher_number(tenant_id, sales_point_prefix(sales_point))
        sequence = parse_voucher_number(last) + 1 if last else 1
        number = format_voucher_number(sales_point, sequence)
        self.observer.number_allocated(tenant_id, sales_point, number)
        return number

    def reserve(self, sequence: Any) -> str:
        """Consume ``sequence.next_number`` when AFIP numbering is managed by the sequence row."""
        self.acquire(sequence.tenant_id, sequence.sales_point)
        value = self.store.increment_sequence(sequence)
        number = format_voucher_number(sequence.sales_point, value)
        self.observer.number_allocated(sequence.tenant_id, sequence.sales_point, number)
        return number
