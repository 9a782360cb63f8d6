# ===============================================================================
# SOAP TRANSPORT TESTS
# ===============================================================================

from unittest.mock import Mock, patch

import requests
from django.test import SimpleTestCase
from zeep.exceptions import Fault, TransportError

from apps.billing.afip.errors import AfipError, AfipErrorKind
from apps.billing.afip.soap import LegacyTLSAdapter, SoapClientFactory, translate_exception

WSDL = "https://wswhomo.afip.gov.ar/wsfev1/service.asmx?WSDL"


class TranslateExceptionTests(SimpleTestCase):
    """Transport and SOAP exceptions become AfipError kinds"""

    def test_afip_error_passes_through(self):
        error = AfipError(AfipErrorKind.TIMEOUT, "slow")
        self.assertIs(translate_exception(error, "FEDummy failed"), error)

    def test_timeout(self):
        error = translate_exception(requests.Timeout("read timed out"), "FEDummy failed")
        self.assertEqual(error.kind, AfipErrorKind.TIMEOUT)

    def test_fault_is_classified(self):
        error = translate_exception(Fault("ns1:cms.cert.expired", code="soapenv:Server"), "loginCms failed")
        self.assertEqual(error.kind, AfipErrorKind.CERTIFICATE_EXPIRED)
        self.assertEqual(error.code, "soapenv:Server")
        self.assertEqual(error.raw_message, "ns1:cms.cert.expired")

    def test_unmatched_fault_keeps_raw_text(self):
        error = translate_exception(Fault("Internal error 42"), "loginCms failed")
        self.assertEqual(error.kind, AfipErrorKind.UNKNOWN)
        self.assertEqual(error.message, "loginCms failed: Internal error 42")

    def test_connection_error_is_unreachable(self):
        error = translate_exception(requests.ConnectionError("Max retries exceeded"), "FEDummy failed")
        self.assertEqual(error.kind, AfipErrorKind.SERVICE_UNREACHABLE)

    def test_transport_error_is_unreachable(self):
        error = translate_exception(TransportError("Server returned 502"), "FEDummy failed")
        self.assertEqual(error.kind, AfipErrorKind.SERVICE_UNREACHABLE)

    def test_other_exception_is_unknown(self):
        error = translate_exception(ValueError("weird"), "FEDummy failed")
        self.assertEqual(error.kind, AfipErrorKind.UNKNOWN)


@patch("apps.billing.afip.soap.Transport")
@patch("apps.billing.afip.soap.Client")
class SoapClientFactoryTests(SimpleTestCase):
    """Client caching and response serialization"""

    def test_client_is_cached_per_wsdl_and_timeout(self, client_cls, transport_cls):
        client_cls.return_value.service.FEDummy.return_value = {"AppServer": "OK"}
        factory = SoapClientFactory(legacy_tls=False)

        self.assertEqual(factory.call(WSDL, 30, "FEDummy"), {"AppServer": "OK"})
        factory.call(WSDL, 30, "FEDummy")
        self.assertEqual(client_cls.call_count, 1)

        factory.call(WSDL, 10, "FEDummy")
        self.assertEqual(client_cls.call_count, 2)

    def test_failure_drops_cached_client(self, client_cls, transport_cls):
        client_cls.return_value.service.FEDummy.side_effect = requests.ConnectionError("refused")
        factory = SoapClientFactory(legacy_tls=False)

        with self.assertRaises(AfipError) as ctx:
            factory.call(WSDL, 30, "FEDummy")
        self.assertEqual(ctx.exception.kind, AfipErrorKind.SERVICE_UNREACHABLE)

        client_cls.return_value.service.FEDummy.side_effect = None
        client_cls.return_value.service.FEDummy.return_value = {"AppServer": "OK"}
        factory.call(WSDL, 30, "FEDummy")
        self.assertEqual(client_cls.call_count, 2)

    def test_wsdl_load_failure_is_translated(self, client_cls, transport_cls):
        client_cls.side_effect = requests.ConnectionError("Failed to load WSDL")
        factory = SoapClientFactory(legacy_tls=False)
        with self.assertRaises(AfipError) as ctx:
            factory.call(WSDL, 30, "FEDummy")
        self.assertEqual(ctx.exception.kind, AfipErrorKind.SERVICE_UNREACHABLE)

    def test_legacy_tls_mounts_adapter(self, client_cls, transport_cls):
        factory = SoapClientFactory(legacy_tls=True)
        factory.get_client(WSDL, 30)
        session = transport_cls.call_args.kwargs["session"]
        self.assertIsInstance(session.get_adapter("https://wswhomo.afip.gov.ar"), LegacyTLSAdapter)

    def test_operation_params_are_forwarded(self, client_cls, transport_cls):
        operation = Mock(return_value={"CbteNro": 7})
        client_cls.return_value.service.FECompUltimoAutorizado = operation
        factory = SoapClientFactory(legacy_tls=False)

        result = factory.call(WSDL, 30, "FECompUltimoAutorizado", PtoVta=1, CbteTipo=6)

        operation.assert_called_once_with(PtoVta=1, CbteTipo=6)
        self.assertEqual(result, {"CbteNro": 7})
