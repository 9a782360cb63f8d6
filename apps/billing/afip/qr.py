"""
AFIP QR code payload for authorized vouchers (RG 4291).
"""

from __future__ import annotations

import base64
import json
from decimal import Decimal

from .models import FiscalVoucher
from .sequence import parse_voucher_number
from .settings import CURRENCY_PESOS, CURRENCY_RATE, QR_AUTH_CODE_TYPE, QR_BASE_URL, QR_VERSION


def build_qr_payload(cuit: str, voucher: FiscalVoucher) -> dict[str, object]:
    return {
        "ver": QR_VERSION,
        "fecha": voucher.document_date.isoformat(),
        "cuit": int(cuit),
        "ptoVta": voucher.sales_point,
        "tipoCmp": voucher.voucher_type_code,
        "nroCmp": parse_voucher_number(voucher.number),
        # Amount in cents
        "importe": int((Decimal(voucher.total_amount) * 100).to_integral_value()),
        "moneda": CURRENCY_PESOS,
        "ctz": int(CURRENCY_RATE),
        "tipoDocRec": voucher.customer_doc_type,
        "nroDocRec": int("".join(ch for ch in voucher.customer_doc_number if ch.isdigit()) or 0),
        "tipoCodAut": QR_AUTH_CODE_TYPE,
        "codAut": int(voucher.cae),
    }


def build_qr_url(cuit: str, voucher: FiscalVoucher) -> str | None:
    """URL to encode in the voucher's QR code, or None when it has no CAE."""
    if not voucher.is_authorized or not voucher.cae:
        return None
    payload = json.dumps(build_qr_payload(cuit, voucher), separators=(",", ":"))
    encoded = base64.b64encode(payload.encode()).decode("ascii")
    return f"{QR_BASE_URL}?p={encoded}"
