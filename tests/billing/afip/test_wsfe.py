# ===============================================================================
# WSFEv1 AUTHORIZATION CLIENT TESTS
# ===============================================================================

from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import Mock

from django.test import SimpleTestCase

from apps.billing.afip.errors import AfipError, AfipErrorKind
from apps.billing.afip.models import AfipConnection
from apps.billing.afip.settings import VatBucket
from apps.billing.afip.wsaa import AccessTicket
from apps.billing.afip.wsfe import (
    AuthorizationClient,
    VoucherDetails,
    VoucherLine,
    build_vat_breakdown,
    money,
)

from .helpers import approved_cae_response, sample_lines


def line(total: str, rate: str, vat: str, description: str = "Item") -> VoucherLine:
    return VoucherLine(
        description=description,
        quantity=Decimal("1"),
        unit_price=Decimal(total),
        line_total=Decimal(total),
        vat_rate=Decimal(rate),
        vat_amount=Decimal(vat),
    )


def details(number: int = 4, **overrides) -> VoucherDetails:
    fields = {
        "sales_point": 1,
        "voucher_type_code": 6,
        "number": number,
        "document_date": date(2026, 10, 19),
        "net_amount": Decimal("1000.00"),
        "vat_amount": Decimal("210.00"),
        "total_amount": Decimal("1210.00"),
        "lines": sample_lines(),
    }
    fields.update(overrides)
    return VoucherDetails(**fields)


class VatBreakdownTests(SimpleTestCase):
    """Grouping voucher lines into AFIP VAT buckets"""

    def test_groups_by_rate(self):
        totals = build_vat_breakdown(
            [
                line("121.00", "21", "21.00"),
                line("242.00", "21", "42.00"),
                line("110.50", "10.5", "10.50"),
                line("50.00", "0", "0"),
            ]
        )
        by_bucket = {total.bucket: total for total in totals}

        self.assertEqual([total.bucket for total in totals], [VatBucket.RATE_21, VatBucket.RATE_10_5, VatBucket.RATE_0])
        self.assertEqual(by_bucket[VatBucket.RATE_21].base, Decimal("300.00"))
        self.assertEqual(by_bucket[VatBucket.RATE_21].amount, Decimal("63.00"))
        self.assertEqual(by_bucket[VatBucket.RATE_10_5].base, Decimal("100.00"))
        self.assertEqual(by_bucket[VatBucket.RATE_0].base, Decimal("50.00"))

    def test_all_afip_rates_supported(self):
        for rate, bucket in (("27", 6), ("5", 8), ("2.5", 9), ("21.00", 5)):
            with self.subTest(rate=rate):
                totals = build_vat_breakdown([line("100.00", rate, "1.00")])
                self.assertEqual(int(totals[0].bucket), bucket)

    def test_unknown_rate_with_vat_is_invalid(self):
        with self.assertRaises(AfipError) as ctx:
            build_vat_breakdown([line("115.00", "15", "15.00", description="Odd rate")])
        self.assertEqual(ctx.exception.kind, AfipErrorKind.INVALID_VOUCHER)
        self.assertIn("Odd rate", ctx.exception.message)

    def test_unknown_rate_without_vat_is_exempt(self):
        totals = build_vat_breakdown([line("115.00", "15", "0")])
        self.assertEqual(totals[0].bucket, VatBucket.RATE_0)

    def test_to_afip(self):
        total = build_vat_breakdown([line("1210.00", "21", "210.00")])[0]
        self.assertEqual(total.to_afip(), {"Id": 5, "BaseImp": 1000.0, "Importe": 210.0})

    def test_money_rounds_half_up(self):
        self.assertEqual(money("2.345"), Decimal("2.35"))
        self.assertEqual(money(1), Decimal("1.00"))


class AuthorizationClientTests(SimpleTestCase):
    """WSFEv1 operations over a mocked SOAP factory"""

    def setUp(self):
        self.connection = AfipConnection(tenant_id="tenant-1", name="Main", cuit="20123456789", environment="testing")
        self.tickets = Mock()
        self.tickets.get_ticket.return_value = AccessTicket(
            token="TOKEN", sign="SIGN", expires_at=datetime(2026, 10, 20, 11, 0, tzinfo=UTC)
        )
        self.soap = Mock()
        self.observer = Mock()
        self.client = AuthorizationClient(tickets=self.tickets, soap=self.soap, observer=self.observer)

    def test_last_authorized_number(self):
        self.soap.call.return_value = {"PtoVta": 1, "CbteTipo": 6, "CbteNro": 41, "Errors": None}

        self.assertEqual(self.client.last_authorized_number(self.connection, 1, 6), 41)

        args, kwargs = self.soap.call.call_args
        self.assertEqual(args[0], self.connection.wsfe_endpoint)
        self.assertEqual(args[2], "FECompUltimoAutorizado")
        self.assertEqual(kwargs["Auth"], {"Token": "TOKEN", "Sign": "SIGN", "Cuit": 20123456789})
        self.assertEqual(kwargs["PtoVta"], 1)
        self.assertEqual(kwargs["CbteTipo"], 6)

    def test_last_authorized_number_none_yet(self):
        self.soap.call.return_value = {"CbteNro": None}
        self.assertEqual(self.client.last_authorized_number(self.connection, 1, 6), 0)

    def test_last_authorized_number_errors(self):
        self.soap.call.return_value = {
            "CbteNro": 0,
            "Errors": {"Err": [{"Code": 600, "Msg": "ValidacionDeToken: No validaron las credenciales"}]},
        }
        with self.assertRaises(AfipError) as ctx:
            self.client.last_authorized_number(self.connection, 1, 6)
        self.assertEqual(ctx.exception.kind, AfipErrorKind.BUSINESS_REJECTION)
        self.assertEqual(ctx.exception.code, "600")

    def test_cae_request_shape(self):
        request = self.client.build_cae_request(details(customer_doc_type=80, customer_doc_number="20-12345678-9"))

        self.assertEqual(request["FeCabReq"], {"CantReg": 1, "PtoVta": 1, "CbteTipo": 6})
        detail = request["FeDetReq"]["FECAEDetRequest"][0]
        self.assertEqual(detail["Concepto"], 1)
        self.assertEqual(detail["DocTipo"], 80)
        self.assertEqual(detail["DocNro"], 20123456789)
        self.assertEqual(detail["CbteDesde"], 4)
        self.assertEqual(detail["CbteHasta"], 4)
        self.assertEqual(detail["CbteFch"], "20261019")
        self.assertEqual(detail["ImpTotal"], 1210.0)
        self.assertEqual(detail["ImpNeto"], 1000.0)
        self.assertEqual(detail["ImpIVA"], 210.0)
        self.assertEqual(detail["MonId"], "PES")
        self.assertEqual(detail["MonCotiz"], 1.0)
        self.assertEqual(detail["Iva"], {"AlicIva": [{"Id": 5, "BaseImp": 1000.0, "Importe": 210.0}]})

    def test_final_consumer_defaults(self):
        detail = self.client.build_cae_request(details())["FeDetReq"]["FECAEDetRequest"][0]
        self.assertEqual(detail["DocTipo"], 99)
        self.assertEqual(detail["DocNro"], 0)
        self.assertEqual(detail["CondicionIVAReceptorId"], 5)

    def test_request_cae_approved(self):
        self.soap.call.return_value = approved_cae_response(4)

        result = self.client.request_cae(self.connection, details())

        self.assertEqual(result.cae, "74123456789012")
        self.assertEqual(result.cae_expiration, date(2026, 10, 29))
        self.assertEqual(self.soap.call.call_args.args[2], "FECAESolicitar")
        self.observer.cae_authorized.assert_called_once()

    def test_request_cae_rejected_with_observations(self):
        self.soap.call.return_value = {
            "FeCabResp": {"Resultado": "R"},
            "FeDetResp": {
                "FECAEDetResponse": [
                    {
                        "Resultado": "R",
                        "CAE": None,
                        "Observaciones": {
                            "Obs": [{"Code": 10016, "Msg": "El numero o fecha del comprobante no se corresponde"}]
                        },
                    }
                ]
            },
            "Errors": None,
        }
        with self.assertRaises(AfipError) as ctx:
            self.client.request_cae(self.connection, details())

        self.assertEqual(ctx.exception.kind, AfipErrorKind.BUSINESS_REJECTION)
        self.assertEqual(ctx.exception.code, "10016")
        self.assertEqual(ctx.exception.raw_message, "El numero o fecha del comprobante no se corresponde")
        self.observer.cae_failed.assert_called_once()

    def test_request_cae_rejected_with_errors_only(self):
        self.soap.call.return_value = {
            "FeDetResp": None,
            "Errors": {"Err": {"Code": 10015, "Msg": "Campo DocNro invalido"}},
        }
        with self.assertRaises(AfipError) as ctx:
            self.client.request_cae(self.connection, details())
        self.assertEqual(ctx.exception.code, "10015")

    def test_request_cae_transport_failure_propagates(self):
        self.soap.call.side_effect = AfipError(AfipErrorKind.TIMEOUT, "FECAESolicitar failed: request timed out")
        with self.assertRaises(AfipError) as ctx:
            self.client.request_cae(self.connection, details())
        self.assertEqual(ctx.exception.kind, AfipErrorKind.TIMEOUT)
        self.observer.cae_failed.assert_called_once()

    def test_server_status(self):
        self.soap.call.return_value = {"AppServer": "OK", "DbServer": "OK", "AuthServer": "OK"}
        status = self.client.server_status(self.connection)
        self.assertTrue(status.is_healthy)
        self.tickets.get_ticket.assert_not_called()

    def test_server_status_degraded(self):
        self.soap.call.return_value = {"AppServer": "OK", "DbServer": "DOWN", "AuthServer": "OK"}
        self.assertFalse(self.client.server_status(self.connection).is_healthy)
