"""
WSFEv1 authorization client.

Operations used:
- FECompUltimoAutorizado: last voucher number AFIP authorized for a sales point/type
- FECAESolicitar: request a CAE for a single voucher
- FEDummy: infrastructure status (diagnostics)
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .errors import AfipError, AfipErrorKind
from .models import AfipConnection, FiscalVoucher
from .observer import AfipObserver
from .settings import (
    CONCEPT_GOODS,
    CURRENCY_PESOS,
    CURRENCY_RATE,
    DEFAULT_DOC_NUMBER,
    DEFAULT_DOC_TYPE,
    DEFAULT_VAT_CONDITION,
    RESULT_APPROVED,
    WSFE_DATE_FORMAT,
    VatBucket,
)
from .soap import SoapClientFactory
from .wsaa import TicketAuthority

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def money(value: Decimal | float | int | str) -> Decimal:
    """Round to cents the way AFIP validates amounts."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ===============================================================================
# REQUEST / RESPONSE TYPES
# ===============================================================================


@dataclass(frozen=True)
class VoucherLine:
    """A voucher line: ``line_total`` includes VAT."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    vat_rate: Decimal
    vat_amount: Decimal

    @property
    def taxable_base(self) -> Decimal:
        return money(self.line_total) - money(self.vat_amount)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VoucherLine:
        return cls(
            description=str(data.get("description", "")),
            quantity=Decimal(str(data.get("quantity", "1"))),
            unit_price=Decimal(str(data.get("unit_price", "0"))),
            line_total=Decimal(str(data["line_total"])),
            vat_rate=Decimal(str(data.get("vat_rate", "0"))),
            vat_amount=Decimal(str(data.get("vat_amount", "0"))),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
            "vat_rate": str(self.vat_rate),
            "vat_amount": str(self.vat_amount),
        }


@dataclass(frozen=True)
class VatTotal:
    """Aggregated amounts for one AFIP VAT bucket."""

    bucket: VatBucket
    base: Decimal
    amount: Decimal

    def to_afip(self) -> dict[str, Any]:
        return {"Id": int(self.bucket), "BaseImp": float(self.base), "Importe": float(self.amount)}


@dataclass(frozen=True)
class VoucherDetails:
    """Everything AFIP needs to authorize one voucher."""

    sales_point: int
    voucher_type_code: int
    number: int
    document_date: date
    net_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    lines: tuple[VoucherLine, ...] = ()
    customer_doc_type: int = DEFAULT_DOC_TYPE
    customer_doc_number: str = DEFAULT_DOC_NUMBER
    customer_vat_condition: int = DEFAULT_VAT_CONDITION

    @property
    def formatted_number(self) -> str:
        return f"{self.sales_point:05d}-{self.number:08d}"

    @classmethod
    def from_voucher(cls, voucher: FiscalVoucher, number: int) -> VoucherDetails:
        return cls(
            sales_point=voucher.sales_point,
            voucher_type_code=voucher.voucher_type_code,
            number=number,
            document_date=voucher.document_date,
            net_amount=Decimal(voucher.net_amount),
            vat_amount=Decimal(voucher.vat_amount),
            total_amount=Decimal(voucher.total_amount),
            lines=tuple(VoucherLine.from_dict(line) for line in voucher.lines or []),
            customer_doc_type=voucher.customer_doc_type,
            customer_doc_number=voucher.customer_doc_number,
            customer_vat_condition=voucher.customer_vat_condition,
        )


@dataclass(frozen=True)
class CAEAuthorization:
    """Successful FECAESolicitar outcome."""

    cae: str
    cae_expiration: date
    observations: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ServerStatus:
    """FEDummy response."""

    app_server: str
    db_server: str
    auth_server: str

    @property
    def is_healthy(self) -> bool:
        return all(value.upper() == "OK" for value in (self.app_server, self.db_server, self.auth_server))

    def to_dict(self) -> dict[str, str]:
        return {"app_server": self.app_server, "db_server": self.db_server, "auth_server": self.auth_server}


def build_vat_breakdown(lines: tuple[VoucherLine, ...] | list[VoucherLine]) -> list[VatTotal]:
    """
    Group lines into AFIP VAT buckets.

    Lines without VAT fall into the 0% bucket. A positive VAT amount at a rate
    AFIP has no bucket for is an ``INVALID_VOUCHER`` error.
    """
    totals: OrderedDict[VatBucket, tuple[Decimal, Decimal]] = OrderedDict()
    for line in lines:
        if money(line.vat_amount) == 0:
            bucket = VatBucket.RATE_0
        else:
            bucket = VatBucket.for_rate(line.vat_rate)
            if bucket is None:
                raise AfipError(
                    AfipErrorKind.INVALID_VOUCHER,
                    f"VAT rate {line.vat_rate}% on '{line.description}' has no AFIP equivalent",
                )
        base, amount = totals.get(bucket, (Decimal("0"), Decimal("0")))
        totals[bucket] = (base + line.taxable_base, amount + money(line.vat_amount))

    return [VatTotal(bucket=bucket, base=money(base), amount=money(amount)) for bucket, (base, amount) in totals.items()]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _messages(container: Any, key: str) -> list[dict[str, Any]]:
    """Flatten ``{"Err": [...]}`` / ``{"Obs": [...]}`` blocks into code/message dicts."""
    if not container:
        return []
    return [
        {"code": str(item.get("Code", "")), "message": str(item.get("Msg", ""))}
        for item in _as_list(container.get(key))
        if item
    ]


# ===============================================================================
# CLIENT
# ===============================================================================


class AuthorizationClient:
    """WSFEv1 client; every call authenticates through the ticket authority."""

    def __init__(
        self,
        tickets: TicketAuthority | None = None,
        soap: SoapClientFactory | None = None,
        observer: AfipObserver | None = None,
    ):
        self.observer = observer or AfipObserver()
        self.soap = soap or SoapClientFactory()
        self.tickets = tickets or TicketAuthority(soap=self.soap, observer=self.observer)

    def _auth(self, connection: AfipConnection) -> dict[str, Any]:
        ticket = self.tickets.get_ticket(connection.pk)
        return {"Token": ticket.token, "Sign": ticket.sign, "Cuit": int(connection.cuit)}

    def _call(self, connection: AfipConnection, operation: str, **params: Any) -> dict[str, Any]:
        started = time.monotonic()
        try:
            response = self.soap.call(connection.wsfe_endpoint, connection.timeout_seconds, operation, **params)
        finally:
            self.observer.call_completed(operation, time.monotonic() - started)
        return response or {}

    def last_authorized_number(self, connection: AfipConnection, sales_point: int, voucher_type_code: int) -> int:
        """Last voucher number AFIP authorized for the sales point and type (0 if none)."""
        response = self._call(
            connection,
            "FECompUltimoAutorizado",
            Auth=self._auth(connection),
            PtoVta=sales_point,
            CbteTipo=voucher_type_code,
        )
        errors = _messages(response.get("Errors"), "Err")
        if errors:
            raise AfipError(
                AfipErrorKind.BUSINESS_REJECTION,
                f"AFIP refused the last-number query: {errors[0]['message']}",
                code=errors[0]["code"],
                raw_message=errors[0]["message"],
                details=errors,
            )
        return int(response.get("CbteNro") or 0)

    def request_cae(self, connection: AfipConnection, details: VoucherDetails) -> CAEAuthorization:
        """
        Request a CAE for a single voucher.

        Raises:
            AfipError: BUSINESS_REJECTION when AFIP does not approve the voucher,
                transport kinds on network failures
        """
        request = self.build_cae_request(details)
        try:
            response = self._call(
                connection,
                "FECAESolicitar",
                Auth=self._auth(connection),
                FeCAEReq=request,
            )
            result = self._parse_cae_response(response)
        except AfipError as e:
            self.observer.cae_failed(connection, details, e)
            raise

        self.observer.cae_authorized(connection, details, result)
        return result

    def server_status(self, connection: AfipConnection) -> ServerStatus:
        response = self._call(connection, "FEDummy")
        return ServerStatus(
            app_server=str(response.get("AppServer", "")),
            db_server=str(response.get("DbServer", "")),
            auth_server=str(response.get("AuthServer", "")),
        )

    def build_cae_request(self, details: VoucherDetails) -> dict[str, Any]:
        vat_totals = build_vat_breakdown(details.lines)
        detail: dict[str, Any] = {
            "Concepto": CONCEPT_GOODS,
            "DocTipo": details.customer_doc_type,
            "DocNro": int("".join(ch for ch in details.customer_doc_number if ch.isdigit()) or 0),
            "CbteDesde": details.number,
            "CbteHasta": details.number,
            "CbteFch": details.document_date.strftime(WSFE_DATE_FORMAT),
            "ImpTotal": float(money(details.total_amount)),
            "ImpTotConc": 0,
            "ImpNeto": float(money(details.net_amount)),
            "ImpOpEx": 0,
            "ImpIVA": float(money(details.vat_amount)),
            "ImpTrib": 0,
            "MonId": CURRENCY_PESOS,
            "MonCotiz": float(CURRENCY_RATE),
            "CondicionIVAReceptorId": details.customer_vat_condition,
        }
        if vat_totals:
            detail["Iva"] = {"AlicIva": [total.to_afip() for total in vat_totals]}

        return {
            "FeCabReq": {"CantReg": 1, "PtoVta": details.sales_point, "CbteTipo": details.voucher_type_code},
            "FeDetReq": {"FECAEDetRequest": [detail]},
        }

    def _parse_cae_response(self, response: dict[str, Any]) -> CAEAuthorization:
        det_responses = _as_list((response.get("FeDetResp") or {}).get("FECAEDetResponse"))
        errors = _messages(response.get("Errors"), "Err")
        detail = det_responses[0] if det_responses else {}
        observations = _messages(detail.get("Observaciones"), "Obs")

        if detail.get("Resultado") == RESULT_APPROVED and detail.get("CAE"):
            return CAEAuthorization(
                cae=str(detail["CAE"]),
                cae_expiration=datetime.strptime(str(detail["CAEFchVto"]), WSFE_DATE_FORMAT).date(),
                observations=observations,
            )

        reasons = observations or errors
        first = reasons[0] if reasons else {"code": "", "message": "AFIP did not approve the voucher"}
        raise AfipError(
            AfipErrorKind.BUSINESS_REJECTION,
            f"AFIP rejected the voucher: {first['message']}",
            code=first["code"],
            raw_message=first["message"],
            details=observations + errors,
        )
