"""
Unit tests for TLS material loading.
"""

import base64
import datetime as dt
import ssl

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from webserve.tls import TLSMaterial, create_ssl_context, load_tls_material


@pytest.fixture(scope="module")
def key_and_cert():
    """A throwaway self-signed certificate for localhost."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = dt.datetime.now(dt.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(minutes=1))
        .not_valid_after(now + dt.timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False)
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def pem_files(tmp_path, key_and_cert):
    key, cert = key_and_cert
    key_file = tmp_path / "server.key.pem"
    cert_file = tmp_path / "server.cert.pem"
    key_file.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return key_file, cert_file


class TestLoadTLSMaterial:
    """Tests for load_tls_material()."""

    def test_pem_files(self, pem_files):
        """Test loading a key and certificate from .pem paths."""
        key_file, cert_file = pem_files
        material = load_tls_material(str(key_file), str(cert_file))

        assert material.key == key_file.read_bytes()
        assert material.cert == cert_file.read_bytes()
        assert material.is_bundle is False

    def test_base64_text(self, pem_files):
        """Test loading base64-encoded PEM text."""
        key_file, cert_file = pem_files
        key_text = base64.b64encode(key_file.read_bytes()).decode()
        cert_text = base64.b64encode(cert_file.read_bytes()).decode()

        material = load_tls_material(key_text, cert_text)

        assert material.key == key_file.read_bytes()

    def test_pfx_bundle(self, tmp_path, key_and_cert):
        """Test that a lone .pfx path is treated as a bundle."""
        key, cert = key_and_cert
        bundle = tmp_path / "server.pfx"
        bundle.write_bytes(pkcs12.serialize_key_and_certificates(
            b"webserve", key, cert, None, serialization.BestAvailableEncryption(b"secret"),
        ))

        material = load_tls_material(str(bundle), passphrase="secret")

        assert material.is_bundle is True
        assert material.passphrase == b"secret"

    def test_missing_file(self, tmp_path):
        """Test that missing .pem paths are rejected."""
        with pytest.raises(ValueError):
            load_tls_material(str(tmp_path / "nope.pem"), str(tmp_path / "nope.pem"))

    def test_not_a_source(self):
        """Test that values that are neither paths nor base64 are rejected."""
        with pytest.raises(ValueError):
            load_tls_material("server.key", "server.crt")

    def test_pem_key_needs_certificate(self, pem_files):
        """Test that a PEM key alone is not a bundle."""
        key_file, _ = pem_files

        with pytest.raises(ValueError):
            load_tls_material(str(key_file))


class TestCreateSSLContext:
    """Tests for create_ssl_context()."""

    def test_from_pem(self, pem_files):
        """Test a server context from PEM material."""
        key_file, cert_file = pem_files
        context = create_ssl_context(load_tls_material(str(key_file), str(cert_file)))

        assert isinstance(context, ssl.SSLContext)
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_from_der(self, key_and_cert):
        """Test that DER key and certificate are converted."""
        key, cert = key_and_cert
        material = TLSMaterial(
            key=key.private_bytes(
                serialization.Encoding.DER,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
            cert=cert.public_bytes(serialization.Encoding.DER),
        )

        assert isinstance(create_ssl_context(material), ssl.SSLContext)

    def test_from_bundle(self, key_and_cert):
        """Test a context from an encrypted PKCS#12 bundle."""
        key, cert = key_and_cert
        pfx = pkcs12.serialize_key_and_certificates(
            b"webserve", key, cert, None, serialization.BestAvailableEncryption(b"secret"),
        )

        context = create_ssl_context(TLSMaterial(pfx=pfx, passphrase=b"secret"))

        assert isinstance(context, ssl.SSLContext)

    def test_wrong_passphrase(self, key_and_cert):
        """Test that a bundle with the wrong password fails."""
        key, cert = key_and_cert
        pfx = pkcs12.serialize_key_and_certificates(
            b"webserve", key, cert, None, serialization.BestAvailableEncryption(b"secret"),
        )

        with pytest.raises(ValueError):
            create_ssl_context(TLSMaterial(pfx=pfx, passphrase=b"wrong"))
