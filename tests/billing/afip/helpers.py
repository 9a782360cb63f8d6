"""
Shared builders and in-memory doubles for the AFIP tests.
"""

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from functools import lru_cache

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from apps.billing.afip.errors import AfipError, AfipErrorKind
from apps.billing.afip.models import AfipConnection, FiscalVoucher, VoucherSequence
from apps.billing.afip.wsfe import VoucherLine


@lru_cache(maxsize=2)
def make_credentials(common_name: str = "afip-test") -> tuple[str, str]:
    """Self-signed certificate and matching RSA key, both PEM."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.SERIAL_NUMBER, "CUIT 20123456789"),
        ]
    )
    now = datetime.now(UTC)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM).decode()
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return cert_pem, key_pem


def create_connection(**overrides) -> AfipConnection:
    cert_pem, key_pem = make_credentials()
    fields = {
        "tenant_id": "tenant-1",
        "name": "Main",
        "cuit": "20123456789",
        "environment": "testing",
        "certificate": cert_pem,
        "private_key": key_pem,
    }
    fields.update(overrides)
    return AfipConnection.objects.create(**fields)


def create_sequence(connection: AfipConnection | None = None, **overrides) -> VoucherSequence:
    fields = {
        "tenant_id": "tenant-1",
        "voucher_type_code": 6,
        "sales_point": 1,
        "next_number": 1,
        "requires_cae": True,
        "afip_connection": connection,
    }
    fields.update(overrides)
    return VoucherSequence.objects.create(**fields)


def sample_lines() -> tuple[VoucherLine, ...]:
    return (
        VoucherLine(
            description="Coffee beans",
            quantity=Decimal("2"),
            unit_price=Decimal("605.00"),
            line_total=Decimal("1210.00"),
            vat_rate=Decimal("21"),
            vat_amount=Decimal("210.00"),
        ),
    )


def approved_cae_response(number: int, cae: str = "74123456789012", expiration: str = "20261029") -> dict:
    return {
        "FeCabResp": {"Resultado": "A"},
        "FeDetResp": {
            "FECAEDetResponse": [
                {
                    "CbteDesde": number,
                    "CbteHasta": number,
                    "Resultado": "A",
                    "CAE": cae,
                    "CAEFchVto": expiration,
                    "Observaciones": None,
                }
            ]
        },
        "Errors": None,
    }


def login_response_xml(token: str = "TOKEN", sign: str = "SIGN", expires: str = "2026-10-20T08:00:00-03:00") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<loginTicketResponse version="1.0">'
        "<header><source>CN=wsaahomo</source><destination>SERIALNUMBER=CUIT 20123456789</destination>"
        "<uniqueId>1</uniqueId><generationTime>2026-10-19T20:00:00-03:00</generationTime>"
        f"<expirationTime>{expires}</expirationTime></header>"
        f"<credentials><token>{token}</token><sign>{sign}</sign></credentials>"
        "</loginTicketResponse>"
    )


# ===============================================================================
# IN-MEMORY STORES FOR THREADED TESTS
# ===============================================================================


class InMemoryTicketStore:
    """Ticket persistence backed by a single unsaved connection instance."""

    def __init__(self, connection: AfipConnection):
        self._connection = connection
        self._mutex = threading.Lock()
        self.saves = 0

    def get_connection(self, connection_id):
        if str(connection_id) != str(self._connection.pk):
            raise AfipError(AfipErrorKind.CONFIGURATION_MISSING, "not found")
        with self._mutex:
            return copy.copy(self._connection)

    def save_ticket(self, connection_id, ticket):
        with self._mutex:
            self._connection.ta_token = ticket.token
            self._connection.ta_sign = ticket.sign
            self._connection.ta_expires_at = ticket.expires_at
            self.saves += 1

    def clear_ticket(self, connection_id):
        with self._mutex:
            self._connection.ta_token = ""
            self._connection.ta_sign = ""
            self._connection.ta_expires_at = None


class InMemorySequenceStore:
    """
    Sequence persistence with real per-key locks held until ``atomic()`` exits,
    mimicking transaction-scoped advisory locks.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._locks: dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._local = threading.local()
        self.numbers: dict[str, list[str]] = defaultdict(list)

    @contextmanager
    def atomic(self):
        self._local.held = []
        try:
            yield
        finally:
            for key in reversed(self._local.held):
                self._locks[key].release()
            self._local.held = None

    def advisory_lock(self, key: int) -> None:
        held = getattr(self._local, "held", None)
        if held is None:
            raise RuntimeError("advisory_lock() must be called inside a transaction")
        if key in held:
            return
        with self._mutex:
            lock = self._locks[key]
        lock.acquire()
        held.append(key)

    def highest_voucher_number(self, tenant_id: str, prefix: str) -> str | None:
        with self._mutex:
            candidates = [n for n in self.numbers[tenant_id] if n.startswith(prefix)]
        return max(candidates, default=None)

    def increment_sequence(self, sequence) -> int:
        with self._mutex:
            previous = sequence.next_number
            sequence.next_number += 1
        return previous

    def insert(self, tenant_id: str, number: str) -> None:
        with self._mutex:
            self.numbers[tenant_id].append(number)


def create_voucher(sequence: VoucherSequence, **overrides) -> FiscalVoucher:
    fields = {
        "tenant_id": sequence.tenant_id,
        "sequence": sequence,
        "voucher_type_code": sequence.voucher_type_code,
        "sales_point": sequence.sales_point,
        "number": "00001-00000001",
        "document_date": date(2026, 10, 19),
        "net_amount": Decimal("1000.00"),
        "vat_amount": Decimal("210.00"),
        "total_amount": Decimal("1210.00"),
        "lines": [line.to_dict() for line in sample_lines()],
    }
    fields.update(overrides)
    return FiscalVoucher.objects.create(**fields)
