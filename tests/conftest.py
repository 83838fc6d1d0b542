"""Pytest configuration and fixtures."""

import ipaddress
import json
import os
import ssl
import threading
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

# Set test environment
os.environ["GL_SCHEDULER_GRPC_URI"] = "https://scheduler.test:443"
os.environ["GL_RETRY_BASE_DELAY"] = "0"
for var in ("GL_CA_CRT", "GL_NOBODY_CRT", "GL_NOBODY_KEY", "GL_HSMD_MODULE"):
    os.environ.pop(var, None)

from glclient.config import get_settings
from glclient.credentials import device_uri
from glclient.hsmd.factory import reset_backend_cache
from glclient.signer import Signer
from glclient.tls import TlsConfig

ZERO_SEED = b"\x00" * 32
GRPC_URI = "https://node-0.test:6019"


def _key_pem(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def issue_cert(
    subject: x509.Name,
    public_key,
    issuer: x509.Name,
    issuer_key,
    is_ca: bool = False,
    san: Optional[list] = None,
) -> bytes:
    """Build a short-lived certificate and return it as PEM.

    CA certificates get the constraints OpenSSL insists on in strict mode;
    leaves are usable for both server and client authentication.
    """
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=not is_ca,
                key_cert_sign=is_ca,
                crl_sign=is_ca,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
            critical=False,
        )
    )
    if not is_ca:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
    if san:
        builder = builder.add_extension(x509.SubjectAlternativeName(san), critical=False)

    cert = builder.sign(issuer_key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM)


class Authority:
    """Throwaway CA issuing leaf certificates and signing CSRs."""

    def __init__(self, common_name: str = "GL Test CA"):
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.name = _name(common_name)
        self.cert_pem = issue_cert(self.name, self.key.public_key(), self.name, self.key, is_ca=True)

    def issue(self, common_name: str, san: Optional[list] = None) -> tuple[bytes, bytes]:
        """New (cert PEM, key PEM) pair signed by this CA."""
        key = ec.generate_private_key(ec.SECP256R1())
        cert = issue_cert(_name(common_name), key.public_key(), self.name, self.key, san=san)
        return cert, _key_pem(key)

    def sign_csr(self, csr_pem: bytes) -> bytes:
        """Issue a certificate for a CSR, keeping its subjectAltName."""
        csr = x509.load_pem_x509_csr(csr_pem)
        try:
            san = list(csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value)
        except x509.ExtensionNotFound:
            san = None
        return issue_cert(csr.subject, csr.public_key(), self.name, self.key, san=san)


@pytest.fixture(autouse=True)
def clean_caches():
    """Reload settings and backend modules for every test."""
    get_settings.cache_clear()
    reset_backend_cache()
    yield
    get_settings.cache_clear()
    reset_backend_cache()


@pytest.fixture
def make_identity():
    """Factory for self-signed (cert PEM, key PEM) pairs.

    Passing node_id adds the device URI the scheduler puts in issued
    certificates.
    """

    def _make(common_name: str = "/users/nobody", node_id: Optional[bytes] = None):
        key = ec.generate_private_key(ec.SECP256R1())
        san = [x509.UniformResourceIdentifier(device_uri(node_id))] if node_id else None
        name = _name(common_name)
        return issue_cert(name, key.public_key(), name, key, san=san), _key_pem(key)

    return _make


@pytest.fixture
def authority() -> Authority:
    return Authority()


@pytest.fixture
def ca(authority):
    """Test CA: (cert PEM, issuing function for CSRs)."""
    return authority.cert_pem, authority.sign_csr


@pytest.fixture
def bare_tls() -> TlsConfig:
    """TLS config with no identity and system roots."""
    return TlsConfig(load_defaults=False)


@pytest.fixture
def signer(bare_tls) -> Signer:
    return Signer(ZERO_SEED, "regtest", bare_tls)


class _SchedulerHandler(BaseHTTPRequestHandler):
    """Answers Schedule calls by echoing the node id."""

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = json.loads(self.rfile.read(length) or b"{}")
        self.server.requests.append((self.path, body))

        doc = json.dumps({"node_id": body.get("node_id"), "grpc_uri": GRPC_URI}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(doc)))
        self.end_headers()
        self.wfile.write(doc)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def tls_scheduler(tmp_path, monkeypatch):
    """Start a loopback HTTPS scheduler requiring client certificates.

    Returns a factory ``start(server_ca, client_ca) -> (uri, server)``:
    the server presents a certificate from server_ca and only accepts
    clients whose certificate chains to client_ca.
    """
    for var in ("HTTPS_PROXY", "https_proxy", "ALL_PROXY", "all_proxy"):
        monkeypatch.delenv(var, raising=False)

    servers = []

    def start(server_ca: Authority, client_ca: Authority):
        cert, key = server_ca.issue(
            "localhost",
            san=[
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ],
        )
        cert_path = tmp_path / f"server-{len(servers)}.crt"
        key_path = tmp_path / f"server-{len(servers)}.key"
        cert_path.write_bytes(cert)
        key_path.write_bytes(key)

        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(str(cert_path), str(key_path))
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.load_verify_locations(cadata=client_ca.cert_pem.decode())

        server = ThreadingHTTPServer(("127.0.0.1", 0), _SchedulerHandler)
        server.requests = []
        server.socket = ctx.wrap_socket(server.socket, server_side=True)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)

        host, port = server.server_address[:2]
        return f"https://{host}:{port}", server

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()
