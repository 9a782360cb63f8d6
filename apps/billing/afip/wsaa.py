"""
WSAA ticket authority.

Obtains and caches the token/sign pair AFIP requires on every WSFEv1 call:

    no ticket ──► login request ──► cached ──► (within safety margin) ──► login request

The login request (TRA) is a small XML document signed as CMS and sent to
``loginCms``. Tickets are cached on the ``AfipConnection`` row and reused
until ``expires_at - AFIP_TICKET_SAFETY_MARGIN_SECONDS``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from lxml import etree

from .errors import AfipError, AfipErrorKind
from .models import AfipConnection
from .observer import AfipObserver
from .settings import TRA_DATETIME_FORMAT, TRA_VERSION, afip_settings
from .signer import CMSSigner
from .soap import SoapClientFactory
from .store import AfipStore, TicketStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessTicket:
    """Short-lived WSAA credential."""

    token: str
    sign: str
    expires_at: datetime

    def is_usable(self, now: datetime, margin: Any) -> bool:
        return self.expires_at > now + margin


def build_login_request(service: str, now: datetime, validity: Any, tz: Any) -> bytes:
    """Build the ``loginTicketRequest`` document for ``service``."""
    local_now = timezone.localtime(now, tz)
    root = etree.Element("loginTicketRequest", version=TRA_VERSION)
    header = etree.SubElement(root, "header")
    etree.SubElement(header, "uniqueId").text = str(int(now.timestamp()))
    etree.SubElement(header, "generationTime").text = local_now.strftime(TRA_DATETIME_FORMAT)
    etree.SubElement(header, "expirationTime").text = (local_now + validity).strftime(TRA_DATETIME_FORMAT)
    etree.SubElement(root, "service").text = service
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8")


def parse_login_response(xml_text: str, tz: Any) -> AccessTicket:
    """Extract token, sign and expiration from a ``loginTicketResponse``."""
    try:
        root = etree.fromstring(xml_text.encode() if isinstance(xml_text, str) else xml_text)
    except etree.XMLSyntaxError as e:
        raise AfipError(
            AfipErrorKind.UNKNOWN,
            f"Ticket request failed: unreadable login response ({e})",
            raw_message=str(xml_text)[:500],
        ) from e

    token = root.findtext("credentials/token")
    sign = root.findtext("credentials/sign")
    expiration_text = root.findtext("header/expirationTime")
    expires_at = parse_datetime(expiration_text.strip()) if expiration_text else None

    if not token or not sign or expires_at is None:
        raise AfipError(
            AfipErrorKind.UNKNOWN,
            "Ticket request failed: login response is missing token, sign or expirationTime",
            raw_message=str(xml_text)[:500],
        )

    if timezone.is_naive(expires_at):
        expires_at = timezone.make_aware(expires_at, tz)
    return AccessTicket(token=token.strip(), sign=sign.strip(), expires_at=expires_at)


class TicketAuthority:
    """Issues and caches WSAA access tickets per connection."""

    def __init__(
        self,
        store: TicketStore | None = None,
        signer: CMSSigner | None = None,
        soap: SoapClientFactory | None = None,
        observer: AfipObserver | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store or AfipStore()
        self.signer = signer or CMSSigner()
        self.soap = soap or SoapClientFactory()
        self.observer = observer or AfipObserver()
        self.clock = clock
        self._refresh_locks: dict[str, threading.Lock] = {}
        self._refresh_locks_guard = threading.Lock()

    def get_ticket(self, connection_id: Any) -> AccessTicket:
        """
        Return a usable ticket, requesting a new one when the cache is empty
        or inside the safety margin.

        Raises:
            AfipError: configuration, signing, certificate, clock, identifier,
                transport and unclassified login failures
        """
        connection = self.store.get_connection(connection_id)
        now = self.clock()

        cached = connection.cached_ticket
        if cached is not None and cached.is_usable(now, afip_settings.ticket_safety_margin):
            self.observer.ticket_cached(connection, cached)
            return cached

        with self._refresh_lock(connection.pk):
            # Another thread may have refreshed while we waited
            connection = self.store.get_connection(connection_id)
            cached = connection.cached_ticket
            if cached is not None and cached.is_usable(self.clock(), afip_settings.ticket_safety_margin):
                self.observer.ticket_cached(connection, cached)
                return cached

            try:
                ticket = self._request_ticket(connection, self.clock())
            except AfipError as e:
                self.observer.ticket_failed(connection, e)
                raise

            self.store.save_ticket(connection.pk, ticket)
        self.observer.ticket_issued(connection, ticket)
        return ticket

    def invalidate_ticket(self, connection_id: Any) -> None:
        """Drop the cached ticket so the next ``get_ticket`` logs in again."""
        self.store.clear_ticket(connection_id)
        self.observer.ticket_invalidated(connection_id)

    def _refresh_lock(self, connection_id: Any) -> threading.Lock:
        with self._refresh_locks_guard:
            return self._refresh_locks.setdefault(str(connection_id), threading.Lock())

    def _request_ticket(self, connection: AfipConnection, now: datetime) -> AccessTicket:
        if not connection.has_credentials:
            raise AfipError(
                AfipErrorKind.CONFIGURATION_MISSING,
                f"AFIP connection '{connection.name}' has no certificate or private key",
            )

        tz = afip_settings.timezone
        document = build_login_request(afip_settings.service_name, now, afip_settings.ticket_validity, tz)
        cms = self.signer.sign(document, connection.certificate, connection.private_key)

        started = time.monotonic()
        try:
            response = self.soap.call(connection.wsaa_endpoint, connection.timeout_seconds, "loginCms", in0=cms)
        except AfipError as e:
            if e.kind == AfipErrorKind.UNKNOWN:
                raise AfipError(
                    e.kind,
                    f"Ticket request failed: {e.raw_message}",
                    code=e.code,
                    raw_message=e.raw_message,
                ) from e
            raise
        finally:
            self.observer.call_completed("loginCms", time.monotonic() - started)

        return parse_login_response(str(response), tz)
