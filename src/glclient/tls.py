"""TLS identity used to authenticate against the scheduler.

A TlsConfig carries an optional client certificate/key pair and an
optional CA bundle, all PEM encoded. Without a CA the system trust
roots are used; without an identity the client connects anonymously.
"""

import logging
import os
import ssl
import tempfile
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from glclient.config import get_settings
from glclient.errors import TlsError

logger = logging.getLogger(__name__)

MAX_CN_LEN = 64


def _read_pem(path: str, what: str) -> bytes:
    try:
        return Path(path).expanduser().read_bytes()
    except OSError as e:
        raise TlsError(f"Cannot read {what} from {path}: {e}") from e


def _check_cert(pem: bytes, what: str = "certificate") -> None:
    try:
        x509.load_pem_x509_certificates(pem)
    except ValueError as e:
        raise TlsError(f"Invalid {what}: {e}") from e


def _check_key(pem: bytes) -> None:
    try:
        serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as e:
        raise TlsError(f"Invalid private key: {e}") from e


class TlsConfig:
    """Client TLS identity and trust root.

    Usage:
        tls = TlsConfig()                        # default (nobody) identity
        tls = tls.identity(cert_pem, key_pem)    # device identity
        tls = tls.with_ca_certificate(ca_pem)
        ctx = tls.ssl_context()
    """

    def __init__(
        self,
        cert: Optional[bytes] = None,
        key: Optional[bytes] = None,
        ca: Optional[bytes] = None,
        load_defaults: bool = True,
    ):
        """Initialize TLS config.

        Args:
            cert: Client certificate chain (PEM)
            key: Client private key (PEM)
            ca: CA bundle used to verify the server (PEM)
            load_defaults: Fill missing parts from GL_NOBODY_CRT,
                GL_NOBODY_KEY and GL_CA_CRT
        """
        if load_defaults:
            settings = get_settings()
            if cert is None and key is None and settings.has_nobody_identity:
                cert = _read_pem(settings.nobody_crt, "client certificate")
                key = _read_pem(settings.nobody_key, "client key")
                logger.debug(f"Loaded default client identity from {settings.nobody_crt}")
            if ca is None and settings.ca_crt:
                ca = _read_pem(settings.ca_crt, "CA bundle")

        if (cert is None) != (key is None):
            raise TlsError("Client certificate and key must be given together")

        if cert is not None:
            _check_cert(cert)
            _check_key(key)
        if ca is not None:
            _check_cert(ca, "CA bundle")

        self.cert = cert
        self.key = key
        self.ca = ca

    @property
    def has_identity(self) -> bool:
        return self.cert is not None

    def identity(self, cert: bytes, key: bytes) -> "TlsConfig":
        """Return a copy using the given client identity."""
        return TlsConfig(cert=cert, key=key, ca=self.ca, load_defaults=False)

    def with_ca_certificate(self, ca: bytes) -> "TlsConfig":
        """Return a copy trusting the given CA bundle instead of system roots."""
        return TlsConfig(cert=self.cert, key=self.key, ca=ca, load_defaults=False)

    def ssl_context(self) -> ssl.SSLContext:
        """Build an SSL context for the HTTP client.

        Returns:
            Client-side SSLContext with hostname verification enabled
        """
        if self.ca is not None:
            ctx = ssl.create_default_context(cadata=self.ca.decode())
        else:
            ctx = ssl.create_default_context()

        if self.cert is not None:
            # load_cert_chain only accepts file paths
            with tempfile.TemporaryDirectory(prefix="glclient-") as tmp:
                cert_path = os.path.join(tmp, "client.crt")
                key_path = os.path.join(tmp, "client.key")
                Path(cert_path).write_bytes(self.cert)
                fd = os.open(key_path, os.O_WRONLY | os.O_CREAT, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(self.key)
                try:
                    ctx.load_cert_chain(cert_path, key_path)
                except ssl.SSLError as e:
                    raise TlsError(f"Client certificate does not match key: {e}") from e

        return ctx

    @staticmethod
    def generate_csr(common_name: str, uri: Optional[str] = None) -> tuple[bytes, bytes]:
        """Generate a fresh P-256 key and a CSR for it.

        X.509 limits the CN to 64 characters, so anything longer (such as
        the full node path) belongs in the subjectAltName URI.

        Args:
            common_name: Subject CN, e.g. the device name
            uri: Optional subjectAltName URI, e.g. "gl:/users/<node id hex>/default"

        Returns:
            Tuple of (CSR PEM, private key PEM)

        Raises:
            TlsError: If the CN is empty or longer than 64 characters
        """
        if not 1 <= len(common_name) <= MAX_CN_LEN:
            raise TlsError(f"Common name must be 1-{MAX_CN_LEN} characters, got {len(common_name)}")

        key = ec.generate_private_key(ec.SECP256R1())
        builder = x509.CertificateSigningRequestBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        )
        if uri is not None:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.UniformResourceIdentifier(uri)]),
                critical=False,
            )
        csr = builder.sign(key, hashes.SHA256())
        key_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        return csr.public_bytes(serialization.Encoding.PEM), key_pem

    def __repr__(self) -> str:
        return (
            f"TlsConfig(identity={'yes' if self.has_identity else 'no'}, "
            f"ca={'custom' if self.ca else 'system'})"
        )
