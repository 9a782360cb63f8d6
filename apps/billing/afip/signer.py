"""
CMS (PKCS#7 SignedData) signing of WSAA login request documents.

AFIP's ``loginCms`` expects the login request embedded in the CMS structure,
signed with SHA-256, the signing certificate attached and the standard
authenticated attributes (content type, message digest, signing time).
"""

from __future__ import annotations

import base64
import logging

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from .errors import SigningError

logger = logging.getLogger(__name__)


class CMSSigner:
    """Produces base64-encoded DER CMS signatures."""

    def sign(self, document: bytes, certificate_pem: str, private_key_pem: str) -> str:
        """
        Sign ``document`` and return the base64 DER CMS SignedData.

        Raises:
            SigningError: malformed certificate, malformed key or signing failure
        """
        try:
            certificate = x509.load_pem_x509_certificate(certificate_pem.encode())
        except (ValueError, TypeError) as e:
            raise SigningError(f"Invalid certificate: {e}") from e

        try:
            private_key = serialization.load_pem_private_key(private_key_pem.encode(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Invalid private key: {e}") from e

        if _public_key_der(certificate.public_key()) != _public_key_der(private_key.public_key()):
            raise SigningError("Private key does not match the certificate")

        try:
            signature = (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(document)
                .add_signer(certificate, private_key, hashes.SHA256())  # type: ignore[arg-type]
                .sign(serialization.Encoding.DER, [])
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to sign login request: {e}") from e

        return base64.b64encode(signature).decode("ascii")


def _public_key_der(public_key: object) -> bytes:
    return public_key.public_bytes(  # type: ignore[attr-defined]
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
