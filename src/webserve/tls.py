"""
=============================================================================
TLS MATERIAL
=============================================================================

When key + certificate (or a PKCS#12 bundle) are configured, the listening
socket speaks HTTPS instead of plain HTTP.

ACCEPTED INPUTS
───────────────
    key="server.key.pem", cert="server.crt.pem"   PEM files
    key="bundle.pfx"                                PKCS#12 bundle
    key="LS0tLS1CRUdJTi...", cert="LS0tLS1..."      base64 text

Base64 text decodes to the bytes of a PEM file, a DER blob, or a PKCS#12
bundle. Non-PEM material is converted to PEM with the `cryptography`
package, because ssl.SSLContext only loads PEM files from disk.

=============================================================================
"""

import base64
import binascii
import logging
import os
import re
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12


logger = logging.getLogger(__name__)

_BASE64_TEXT = re.compile(r"^[A-Za-z0-9+/=\s]+$")
_PEM_MARKER = b"-----BEGIN"
_PFX_SUFFIXES = (".pfx", ".p12")


@dataclass(frozen=True)
class TLSMaterial:
    """Credentials for the HTTPS listener. Either key+cert or pfx is set."""

    key: Optional[bytes] = None
    cert: Optional[bytes] = None
    pfx: Optional[bytes] = None
    passphrase: Optional[bytes] = None

    @property
    def is_bundle(self) -> bool:
        return self.pfx is not None


def _read_source(value: str) -> bytes:
    """
    Turn one configured value into raw bytes.

    Raises:
        ValueError: if the value is neither an existing .pem/.pfx path nor
                    base64 text.
    """
    path = Path(value)
    if path.suffix.lower() in (".pem",) + _PFX_SUFFIXES:
        if not path.is_file():
            raise ValueError(f"TLS file not found: {value}")
        return path.read_bytes()

    if _BASE64_TEXT.match(value):
        try:
            return base64.b64decode("".join(value.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"TLS material is not valid base64: {e}")

    raise ValueError(f"TLS material must be base64 text or a .pem/.pfx path: {value!r}")


def load_tls_material(
    key: str,
    cert: Optional[str] = None,
    passphrase: Optional[str] = None,
) -> TLSMaterial:
    """
    Load TLS credentials from configuration values.

    A single `.pfx`/`.p12` path (or base64 text with no certificate) is
    treated as a PKCS#12 bundle.

    Raises:
        ValueError: on unreadable or malformed material.
    """
    if not key:
        raise ValueError("TLS key is required")

    secret = passphrase.encode("utf-8") if passphrase else None
    key_bytes = _read_source(key)

    if cert is None:
        if key_bytes.startswith(_PEM_MARKER):
            raise ValueError("A PEM key needs a certificate")
        return TLSMaterial(pfx=key_bytes, passphrase=secret)

    return TLSMaterial(key=key_bytes, cert=_read_source(cert), passphrase=secret)


def _pem_pair(material: TLSMaterial) -> Tuple[bytes, bytes]:
    """Convert any accepted material into (key PEM, certificate chain PEM)."""
    plain = serialization.NoEncryption()

    if material.is_bundle:
        private_key, certificate, extra = pkcs12.load_key_and_certificates(
            material.pfx, material.passphrase
        )
        if private_key is None or certificate is None:
            raise ValueError("PKCS#12 bundle lacks a key or certificate")
        key_pem = private_key.private_bytes(
            serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, plain
        )
        chain = [certificate, *(extra or [])]
        cert_pem = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in chain)
        return key_pem, cert_pem

    key_pem = material.key
    if not key_pem.startswith(_PEM_MARKER):
        private_key = serialization.load_der_private_key(key_pem, material.passphrase)
        key_pem = private_key.private_bytes(
            serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, plain
        )
    elif material.passphrase:
        private_key = serialization.load_pem_private_key(key_pem, material.passphrase)
        key_pem = private_key.private_bytes(
            serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, plain
        )

    cert_pem = material.cert
    if not cert_pem.startswith(_PEM_MARKER):
        certificate = x509.load_der_x509_certificate(cert_pem)
        cert_pem = certificate.public_bytes(serialization.Encoding.PEM)

    return key_pem, cert_pem


def create_ssl_context(material: TLSMaterial) -> ssl.SSLContext:
    """
    Build a server-side SSLContext from loaded material.

    The PEM data is written to a private temporary directory only for the
    duration of load_cert_chain().
    """
    key_pem, cert_pem = _pem_pair(material)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    with tempfile.TemporaryDirectory(prefix="webserve-tls-") as workdir:
        key_file = os.path.join(workdir, "key.pem")
        cert_file = os.path.join(workdir, "cert.pem")
        Path(key_file).write_bytes(key_pem)
        Path(cert_file).write_bytes(cert_pem)
        os.chmod(key_file, 0o600)
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)

    logger.debug("TLS context ready")
    return context
