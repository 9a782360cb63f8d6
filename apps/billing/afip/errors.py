"""
Error taxonomy for the AFIP authorization subsystem.

Every failure raised by the signer, the ticket authority and the invoicing
client is an ``AfipError`` carrying an ``AfipErrorKind``. The orchestration
layer turns them into ``AfipFailure`` values inside ``Err`` results so callers
can branch on the kind without catching exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class AfipErrorKind(StrEnum):
    """Failure kinds shared by all AFIP components."""

    CONFIGURATION_MISSING = "configuration_missing"
    SIGNING_FAILURE = "signing_failure"
    TICKET_ALREADY_VALID = "ticket_already_valid"
    CERTIFICATE_EXPIRED = "certificate_expired"
    CERTIFICATE_INVALID = "certificate_invalid"
    CLOCK_DESYNC = "clock_desync"
    IDENTIFIER_NOT_AUTHORIZED = "identifier_not_authorized"
    SERVICE_UNREACHABLE = "service_unreachable"
    TIMEOUT = "timeout"
    BUSINESS_REJECTION = "business_rejection"
    SEQUENCE_CONFLICT = "sequence_conflict"
    INVALID_VOUCHER = "invalid_voucher"
    UNKNOWN = "unknown"

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(kind.value, kind.name.replace("_", " ").title()) for kind in cls]

    @classmethod
    def transient_kinds(cls) -> set[str]:
        """Kinds that may succeed on a later attempt without operator action."""
        return {cls.SERVICE_UNREACHABLE.value, cls.TIMEOUT.value, cls.UNKNOWN.value}

    @property
    def is_transient(self) -> bool:
        return self.value in self.transient_kinds()

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self]


USER_MESSAGES: dict[AfipErrorKind, str] = {
    AfipErrorKind.CONFIGURATION_MISSING: "The AFIP connection is missing its certificate, private key or settings.",
    AfipErrorKind.SIGNING_FAILURE: "The login request could not be signed. Check the certificate and private key.",
    AfipErrorKind.TICKET_ALREADY_VALID: (
        "AFIP already issued a valid access ticket for this certificate. Wait a few minutes and retry."
    ),
    AfipErrorKind.CERTIFICATE_EXPIRED: "The AFIP certificate has expired. Generate a new one.",
    AfipErrorKind.CERTIFICATE_INVALID: "The AFIP certificate is not valid for this environment.",
    AfipErrorKind.CLOCK_DESYNC: "The server clock is out of sync with AFIP.",
    AfipErrorKind.IDENTIFIER_NOT_AUTHORIZED: "The CUIT is not authorized for the electronic invoicing service.",
    AfipErrorKind.SERVICE_UNREACHABLE: "AFIP could not be reached. Try again later.",
    AfipErrorKind.TIMEOUT: "AFIP did not answer in time. Try again later.",
    AfipErrorKind.BUSINESS_REJECTION: "AFIP rejected the voucher.",
    AfipErrorKind.SEQUENCE_CONFLICT: "The local voucher numbering is behind AFIP's last authorized number.",
    AfipErrorKind.INVALID_VOUCHER: "The voucher cannot be expressed in AFIP terms.",
    AfipErrorKind.UNKNOWN: "The AFIP request failed.",
}


# ===============================================================================
# FAULT CLASSIFICATION TABLE
# ===============================================================================


@dataclass(frozen=True)
class FaultRule:
    """Maps a substring of an AFIP fault message to an error kind."""

    pattern: str
    kind: AfipErrorKind

    def matches(self, message: str) -> bool:
        return self.pattern.lower() in message.lower()


# Evaluated in order, first match wins
FAULT_RULES: tuple[FaultRule, ...] = (
    FaultRule("coe.alreadyAuthenticated", AfipErrorKind.TICKET_ALREADY_VALID),
    FaultRule("cert.expired", AfipErrorKind.CERTIFICATE_EXPIRED),
    FaultRule("cert.invalid", AfipErrorKind.CERTIFICATE_INVALID),
    FaultRule("generationTime", AfipErrorKind.CLOCK_DESYNC),
    FaultRule("cuit", AfipErrorKind.IDENTIFIER_NOT_AUTHORIZED),
    FaultRule("WSDL", AfipErrorKind.SERVICE_UNREACHABLE),
    FaultRule("timeout", AfipErrorKind.TIMEOUT),
)


def classify_fault(message: str, default: AfipErrorKind = AfipErrorKind.UNKNOWN) -> AfipErrorKind:
    """Return the kind of the first rule whose pattern occurs in ``message``."""
    for rule in FAULT_RULES:
        if rule.matches(message or ""):
            return rule.kind
    return default


# ===============================================================================
# EXCEPTIONS AND RESULT PAYLOADS
# ===============================================================================


@dataclass(frozen=True)
class AfipFailure:
    """Failure value carried by ``Err`` results and persisted on vouchers."""

    kind: AfipErrorKind
    message: str
    code: str = ""
    raw_message: str = ""
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def user_message(self) -> str:
        return self.kind.user_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "code": self.code,
            "raw_message": self.raw_message,
            "details": self.details,
        }


@dataclass(frozen=True)
class SequenceConflict:
    """Local numbering is at or behind the authority's last authorized number."""

    authority_last: int
    local_next: int
    sales_point: int
    voucher_type_code: int

    kind = AfipErrorKind.SEQUENCE_CONFLICT

    @property
    def message(self) -> str:
        return (
            f"AFIP last authorized number is {self.authority_last} but the local next number is "
            f"{self.local_next} for sales point {self.sales_point}, voucher type {self.voucher_type_code}"
        )

    @property
    def user_message(self) -> str:
        return self.kind.user_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "authority_last": self.authority_last,
            "local_next": self.local_next,
            "sales_point": self.sales_point,
            "voucher_type_code": self.voucher_type_code,
        }


class AfipError(Exception):
    """Base exception for AFIP component errors."""

    def __init__(
        self,
        kind: AfipErrorKind,
        message: str = "",
        *,
        code: str = "",
        raw_message: str = "",
        details: list[dict[str, Any]] | None = None,
    ):
        self.kind = kind
        self.message = message or kind.user_message
        self.code = code
        self.raw_message = raw_message
        self.details = details or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"

    def to_failure(self) -> AfipFailure:
        return AfipFailure(
            kind=self.kind,
            message=self.message,
            code=self.code,
            raw_message=self.raw_message,
            details=list(self.details),
        )

    @classmethod
    def from_fault(cls, raw_message: str, *, context: str = "AFIP request failed") -> AfipError:
        """Build an error from a raw SOAP fault message using ``FAULT_RULES``."""
        kind = classify_fault(raw_message)
        if kind == AfipErrorKind.UNKNOWN:
            message = f"{context}: {raw_message}"
        else:
            message = kind.user_message
        return cls(kind, message, raw_message=raw_message)


class SigningError(AfipError):
    """The login request document could not be signed."""

    def __init__(self, message: str = ""):
        super().__init__(AfipErrorKind.SIGNING_FAILURE, message)
