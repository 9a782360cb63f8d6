"""
SOAP transport shared by the WSAA and WSFEv1 clients.

Wraps ``zeep`` over a ``requests`` session and translates transport and
fault exceptions into ``AfipError`` kinds.
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Any

import requests
from lxml import etree
from requests.adapters import HTTPAdapter
from zeep import Client, Settings
from zeep.exceptions import Fault, TransportError
from zeep.helpers import serialize_object
from zeep.transports import Transport

from .errors import AfipError, AfipErrorKind, classify_fault
from .settings import afip_settings

logger = logging.getLogger(__name__)


class LegacyTLSAdapter(HTTPAdapter):
    """AFIP endpoints still negotiate DH keys rejected at the default security level."""

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> Any:
        ctx = ssl.create_default_context()
        ctx.set_ciphers("DEFAULT:@SECLEVEL=1")
        kwargs["ssl_context"] = ctx
        return super().init_poolmanager(*args, **kwargs)


def translate_exception(exc: Exception, context: str) -> AfipError:
    """Map a transport or SOAP exception onto the AFIP error taxonomy."""
    if isinstance(exc, AfipError):
        return exc

    if isinstance(exc, requests.Timeout):
        return AfipError(AfipErrorKind.TIMEOUT, f"{context}: request timed out", raw_message=str(exc))

    if isinstance(exc, Fault):
        raw = str(exc.message or exc)
        code = str(exc.code or "")
        kind = classify_fault(raw)
        message = f"{context}: {raw}" if kind == AfipErrorKind.UNKNOWN else kind.user_message
        return AfipError(kind, message, code=code, raw_message=raw)

    if isinstance(exc, requests.ConnectionError | TransportError | etree.XMLSyntaxError):
        raw = str(exc)
        kind = classify_fault(raw, default=AfipErrorKind.SERVICE_UNREACHABLE)
        return AfipError(kind, f"{context}: {raw}", raw_message=raw)

    raw = str(exc)
    kind = classify_fault(raw)
    return AfipError(kind, f"{context}: {raw}", raw_message=raw)


class SoapClientFactory:
    """Builds and caches zeep clients per WSDL and timeout."""

    def __init__(self, legacy_tls: bool | None = None):
        self.legacy_tls = afip_settings.legacy_tls if legacy_tls is None else legacy_tls
        self._clients: dict[tuple[str, int], Client] = {}

    def _session(self) -> requests.Session:
        session = requests.Session()
        if self.legacy_tls:
            session.mount("https://", LegacyTLSAdapter())
        return session

    def get_client(self, wsdl_url: str, timeout: int) -> Client:
        key = (wsdl_url, timeout)
        client = self._clients.get(key)
        if client is None:
            transport = Transport(session=self._session(), timeout=timeout, operation_timeout=timeout)
            client = Client(wsdl_url, transport=transport, settings=Settings(strict=False, xml_huge_tree=True))
            self._clients[key] = client
        return client

    def call(self, wsdl_url: str, timeout: int, operation: str, **params: Any) -> Any:
        """
        Invoke ``operation`` and return the response as plain dicts/lists.

        Raises:
            AfipError: transport failures, timeouts and SOAP faults
        """
        started = time.monotonic()
        try:
            client = self.get_client(wsdl_url, timeout)
            response = getattr(client.service, operation)(**params)
        except Exception as e:
            # WSDL fetch failures must not poison the cache
            self._clients.pop((wsdl_url, timeout), None)
            raise translate_exception(e, f"{operation} failed") from e
        finally:
            logger.debug(f"🌐 [AFIP SOAP] {operation} took {time.monotonic() - started:.2f}s")
        return serialize_object(response, dict)
