# ===============================================================================
# AFIP QR PAYLOAD TESTS
# ===============================================================================

import base64
import json
from datetime import date
from urllib.parse import parse_qs, urlparse

from django.test import TestCase

from apps.billing.afip.models import AuthorizationStatus
from apps.billing.afip.qr import build_qr_payload, build_qr_url

from .helpers import create_connection, create_sequence, create_voucher


class QrPayloadTests(TestCase):
    def setUp(self):
        self.sequence = create_sequence(create_connection())
        self.voucher = create_voucher(
            self.sequence,
            number="00001-00000042",
            customer_doc_type=80,
            customer_doc_number="20-12345678-9",
            authorization_status=AuthorizationStatus.AUTHORIZED.value,
            cae="74123456789012",
            cae_expiration=date(2026, 10, 29),
        )

    def test_payload(self):
        payload = build_qr_payload("20123456789", self.voucher)

        self.assertEqual(payload["ver"], 1)
        self.assertEqual(payload["fecha"], "2026-10-19")
        self.assertEqual(payload["cuit"], 20123456789)
        self.assertEqual(payload["ptoVta"], 1)
        self.assertEqual(payload["tipoCmp"], 6)
        self.assertEqual(payload["nroCmp"], 42)
        self.assertEqual(payload["importe"], 121000)
        self.assertEqual(payload["moneda"], "PES")
        self.assertEqual(payload["tipoDocRec"], 80)
        self.assertEqual(payload["nroDocRec"], 20123456789)
        self.assertEqual(payload["tipoCodAut"], "E")
        self.assertEqual(payload["codAut"], 74123456789012)

    def test_url_encodes_payload(self):
        url = build_qr_url("20123456789", self.voucher)

        parsed = urlparse(url)
        self.assertEqual(f"{parsed.scheme}://{parsed.netloc}{parsed.path}", "https://www.afip.gob.ar/fe/qr/")
        encoded = parse_qs(parsed.query)["p"][0]
        self.assertEqual(json.loads(base64.b64decode(encoded)), build_qr_payload("20123456789", self.voucher))

    def test_no_url_without_cae(self):
        self.voucher.authorization_status = AuthorizationStatus.ERROR.value
        self.voucher.cae = ""
        self.assertIsNone(build_qr_url("20123456789", self.voucher))
