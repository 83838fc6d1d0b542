"""Scheduler-issued credentials.

Two kinds exist:
- nobody: the shared, unauthenticated TLS identity, only good for
  registering or recovering a node
- device: a per-device certificate/key pair plus the rune authorizing
  node RPCs, issued by register/recover

Device credentials serialize to a small JSON document so they can be
stored next to the seed and reloaded later.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from cryptography import x509
from cryptography.x509.oid import NameOID

from glclient.errors import CredentialsError, TlsError
from glclient.tls import TlsConfig

if TYPE_CHECKING:
    from glclient.scheduler import Scheduler
    from glclient.signer import Signer

logger = logging.getLogger(__name__)

CREDENTIALS_VERSION = 1

DEVICE_URI_SCHEME = "gl:"
DEFAULT_DEVICE = "default"


def device_uri(node_id: bytes, device: str = DEFAULT_DEVICE) -> str:
    """subjectAltName URI naming a device of a node."""
    return f"{DEVICE_URI_SCHEME}/users/{node_id.hex()}/{device}"


class CredentialsKind(str, Enum):
    NOBODY = "nobody"
    DEVICE = "device"


class Credentials:
    """Nobody or device credentials.

    Usage:
        creds = Credentials()                          # nobody
        creds = Credentials.from_parts(cert, key, rune)
        Path("credentials.gfs").write_bytes(creds.to_bytes())
        creds = Credentials.from_path("credentials.gfs")
        creds = creds.upgrade(scheduler, signer)       # fresh device identity
    """

    def __init__(self, tls: Optional[TlsConfig] = None):
        """Create nobody credentials from the default TLS identity."""
        self.kind = CredentialsKind.NOBODY
        self._tls = tls if tls is not None else TlsConfig()
        self.rune: Optional[str] = None
        logger.debug("Created nobody credentials")

    @classmethod
    def nobody_with(cls, cert: bytes, key: bytes) -> "Credentials":
        """Create nobody credentials from an explicit identity."""
        return cls(TlsConfig(cert=cert, key=key))

    @classmethod
    def from_parts(
        cls, cert: bytes, key: bytes, rune: str, ca: Optional[bytes] = None
    ) -> "Credentials":
        """Create device credentials.

        Raises:
            CredentialsError: If the certificate or key cannot be parsed
        """
        try:
            tls = TlsConfig(cert=cert, key=key, ca=ca, load_defaults=ca is None)
        except TlsError as e:
            raise CredentialsError(f"Invalid device identity: {e}") from e

        creds = cls.__new__(cls)
        creds.kind = CredentialsKind.DEVICE
        creds._tls = tls
        creds.rune = rune
        logger.debug("Created device credentials")
        return creds

    @classmethod
    def from_bytes(cls, data: bytes) -> "Credentials":
        """Load device credentials produced by to_bytes()."""
        try:
            doc = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise CredentialsError(f"Malformed credentials: {e}") from e

        if not isinstance(doc, dict) or doc.get("version") != CREDENTIALS_VERSION:
            raise CredentialsError("Unsupported credentials format")

        try:
            cert = doc["cert"].encode()
            key = doc["key"].encode()
            rune = doc["rune"]
        except (KeyError, AttributeError) as e:
            raise CredentialsError(f"Credentials missing field: {e}") from e

        ca = doc.get("ca")
        return cls.from_parts(cert, key, rune, ca=ca.encode() if ca else None)

    @classmethod
    def from_path(cls, path: str) -> "Credentials":
        try:
            data = Path(path).expanduser().read_bytes()
        except OSError as e:
            raise CredentialsError(f"Cannot read credentials from {path}: {e}") from e
        return cls.from_bytes(data)

    def to_bytes(self) -> bytes:
        self.ensure_device()
        tls = self._tls
        doc = {
            "version": CREDENTIALS_VERSION,
            "cert": tls.cert.decode(),
            "key": tls.key.decode(),
            "ca": tls.ca.decode() if tls.ca else None,
            "rune": self.rune,
        }
        return json.dumps(doc, indent=2).encode()

    def ensure_nobody(self) -> None:
        if self.kind is not CredentialsKind.NOBODY:
            raise CredentialsError("credentials are not of type nobody")

    def ensure_device(self) -> None:
        if self.kind is not CredentialsKind.DEVICE:
            raise CredentialsError("credentials are not of type device")

    def _device_path(self) -> tuple[bytes, str]:
        """Node id and device name the certificate was issued for."""
        self.ensure_device()
        cert = x509.load_pem_x509_certificate(self._tls.cert)

        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            uris = san.value.get_values_for_type(x509.UniformResourceIdentifier)
        except x509.ExtensionNotFound:
            uris = []
        paths = [u[len(DEVICE_URI_SCHEME):] for u in uris if u.startswith(DEVICE_URI_SCHEME)]

        # Certificates issued before the SAN URI carry the path in the CN
        if not paths:
            attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
            paths = [str(a.value) for a in attrs]

        for path in paths:
            parts = path.strip("/").split("/")
            if len(parts) < 2 or parts[0] != "users":
                continue
            try:
                node_id = bytes.fromhex(parts[1])
            except ValueError as e:
                raise CredentialsError(f"Certificate has invalid node id: {e}") from e
            return node_id, "/".join(parts[2:])

        raise CredentialsError("Device certificate does not name a node")

    def node_id(self) -> bytes:
        """Node id the device certificate was issued for.

        Read from the ``gl:/users/<node id hex>/<device>`` subjectAltName
        URI, or from a CN of the same shape on older certificates.
        """
        return self._device_path()[0]

    def device_name(self) -> str:
        return self._device_path()[1]

    def upgrade(self, scheduler: "Scheduler", signer: "Signer") -> "Credentials":
        """Re-issue device credentials through the scheduler.

        A fresh key and certificate are obtained for the same node and
        device. The current rune and CA are kept when the scheduler does
        not hand out new ones.

        Raises:
            CredentialsError: For nobody credentials or a foreign scheduler
        """
        if self.kind is CredentialsKind.NOBODY:
            raise CredentialsError("can not upgrade nobody credentials")

        node_id, device = self._device_path()
        if node_id != scheduler.node_id:
            raise CredentialsError(
                f"Credentials are for node {node_id.hex()}, scheduler for {scheduler.node_id.hex()}"
            )

        logger.info(f"Upgrading device credentials for {node_id.hex()}")
        result = scheduler.recover(signer, device=device or DEFAULT_DEVICE)
        return Credentials.from_parts(
            result.device_cert,
            result.device_key,
            result.rune or self.rune,
            ca=result.credentials.tls_config().ca or self._tls.ca,
        )

    def with_ca(self, ca: bytes) -> "Credentials":
        """Return a copy trusting the given CA bundle."""
        creds = self.__class__.__new__(self.__class__)
        creds.kind = self.kind
        creds._tls = self._tls.with_ca_certificate(ca)
        creds.rune = self.rune
        return creds

    def tls_config(self) -> TlsConfig:
        return self._tls

    def __repr__(self) -> str:
        return f"Credentials(kind={self.kind.value})"
