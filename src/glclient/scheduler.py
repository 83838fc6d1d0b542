"""Scheduler client.

The scheduler assigns a node to infrastructure and issues device
credentials. Calls are JSON documents POSTed over HTTPS to

    {GL_SCHEDULER_GRPC_URI}/scheduler.Scheduler/<Method>

with all byte fields hex encoded. Every call is a single blocking
round-trip; retrying is the caller's decision (see ``glclient.retry``).
"""

import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from glclient.config import get_settings
from glclient.credentials import DEFAULT_DEVICE, Credentials, device_uri
from glclient.errors import (
    AuthError,
    SchedulerConnectionError,
    SchedulerError,
    ServiceUnavailable,
)
from glclient.network import Network
from glclient.signer import Signer
from glclient.tls import TlsConfig

logger = logging.getLogger(__name__)

SERVICE_PATH = "scheduler.Scheduler"

AUTH_STATUSES = (401, 403)
UNAVAILABLE_STATUSES = (502, 503, 504)

# OpenSSL error reasons meaning one side refused the other's certificate
TLS_AUTH_REASONS = ("CERTIFICATE", "UNKNOWN_CA", "ACCESS_DENIED", "HANDSHAKE_FAILURE")


class ChallengeScope(str, Enum):
    REGISTER = "REGISTER"
    RECOVER = "RECOVER"


@dataclass
class ScheduleResult:
    """Where a node is running.

    Attributes:
        node_id: 33-byte node public key
        grpc_uri: URI of the node's RPC endpoint
    """
    node_id: bytes
    grpc_uri: str


@dataclass
class RegistrationResult:
    """Device identity issued by register/recover."""
    device_cert: bytes
    device_key: bytes
    rune: str
    credentials: Credentials


def _caused_by_cert_failure(exc: BaseException) -> bool:
    """Walk the exception chain looking for a TLS certificate rejection.

    Covers local verification failures as well as alerts sent by the
    server, e.g. TLSV1_ALERT_UNKNOWN_CA or TLSV13_ALERT_CERTIFICATE_REQUIRED
    when it does not accept the client certificate.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, ssl.SSLCertVerificationError):
            return True
        if isinstance(exc, ssl.SSLError):
            reason = str(getattr(exc, "reason", "") or exc).upper()
            if any(marker in reason for marker in TLS_AUTH_REASONS):
                return True
        exc = exc.__cause__ or exc.__context__
    return False


def _unhex(doc: dict, field: str) -> bytes:
    value = doc.get(field)
    if not isinstance(value, str):
        raise SchedulerError(f"Scheduler response missing {field}")
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise SchedulerError(f"Scheduler response has invalid {field}: {e}") from e


class Scheduler:
    """Client for the scheduler service.

    Usage:
        scheduler = Scheduler(signer.node_id(), "regtest")
        result = scheduler.schedule()
        print(result.grpc_uri)
    """

    def __init__(
        self,
        node_id: bytes,
        network: "str | Network",
        tls: Optional[TlsConfig] = None,
        uri: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize scheduler client.

        Args:
            node_id: 33-byte node public key
            network: Network the node runs on
            tls: TLS identity (defaults to TlsConfig())
            uri: Scheduler endpoint (defaults to GL_SCHEDULER_GRPC_URI)
            timeout: Default per-request timeout in seconds
            client: Preconfigured HTTP client (mainly for testing)
        """
        if not isinstance(node_id, (bytes, bytearray)) or len(node_id) != 33:
            raise ValueError("node_id must be a 33-byte compressed public key")

        settings = get_settings()
        self.node_id = bytes(node_id)
        self.network = Network.parse(network)
        self.tls = tls if tls is not None else TlsConfig()
        self.uri = (uri or settings.scheduler_grpc_uri).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(verify=self.tls.ssl_context(), timeout=self.timeout)
        return self._client

    def close(self):
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "Scheduler":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _call(self, method: str, payload: dict, timeout: Optional[float] = None) -> dict[str, Any]:
        """POST one request and decode the response.

        Raises:
            SchedulerConnectionError: Endpoint unreachable or timed out
            AuthError: TLS identity rejected in either direction
            ServiceUnavailable: Scheduler answered 502/503/504
            SchedulerError: Any other failure
        """
        url = f"{self.uri}/{SERVICE_PATH}/{method}"
        client = self._get_client()

        try:
            response = client.post(
                url,
                json=payload,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SchedulerConnectionError(f"{method} timed out: {e}") from e
        except httpx.TransportError as e:
            if _caused_by_cert_failure(e):
                raise AuthError(f"TLS authentication failed for {self.uri}: {e}") from e
            raise SchedulerConnectionError(f"Cannot reach scheduler at {self.uri}: {e}") from e

        status = response.status_code
        if status in AUTH_STATUSES:
            raise AuthError(f"{method} rejected: {response.text}", status_code=status)
        if status in UNAVAILABLE_STATUSES:
            raise ServiceUnavailable(f"{method}: scheduler unavailable ({status})", status_code=status)
        if status >= 400:
            raise SchedulerError(f"{method} failed ({status}): {response.text}", status_code=status)

        try:
            doc = response.json()
        except ValueError as e:
            raise SchedulerError(f"{method} returned invalid JSON: {e}", status_code=status) from e

        if not isinstance(doc, dict):
            raise SchedulerError(f"{method} returned unexpected body", status_code=status)
        return doc

    def _node_info(self, doc: dict) -> ScheduleResult:
        grpc_uri = doc.get("grpc_uri")
        if not isinstance(grpc_uri, str) or not grpc_uri:
            raise SchedulerError("Scheduler returned no node location")

        node_id = _unhex(doc, "node_id") if "node_id" in doc else self.node_id
        if node_id != self.node_id:
            raise SchedulerError(
                f"Scheduler returned location for {node_id.hex()}, asked for {self.node_id.hex()}"
            )
        return ScheduleResult(node_id=node_id, grpc_uri=grpc_uri)

    def schedule(self, timeout: Optional[float] = None) -> ScheduleResult:
        """Ask the scheduler to start the node and return its location.

        Args:
            timeout: Request timeout override in seconds

        Returns:
            ScheduleResult with a non-empty grpc_uri
        """
        logger.info(f"Scheduling node {self.node_id.hex()} on {self.network.value}")
        doc = self._call("Schedule", {"node_id": self.node_id.hex()}, timeout=timeout)
        result = self._node_info(doc)
        logger.info(f"Node {self.node_id.hex()} scheduled at {result.grpc_uri}")
        return result

    def get_node_info(self, wait: bool = False, timeout: Optional[float] = None) -> ScheduleResult:
        """Look up where the node runs without starting it.

        Args:
            wait: Block server-side until the node is scheduled
            timeout: Request timeout override in seconds
        """
        doc = self._call(
            "GetNodeInfo",
            {"node_id": self.node_id.hex(), "wait": wait},
            timeout=timeout,
        )
        return self._node_info(doc)

    def _get_challenge(self, scope: ChallengeScope) -> bytes:
        doc = self._call("GetChallenge", {"node_id": self.node_id.hex(), "scope": scope.value})
        challenge = _unhex(doc, "challenge")
        if not challenge:
            raise SchedulerError("Scheduler returned an empty challenge")
        return challenge

    def _check_signer(self, signer: Signer) -> None:
        if signer.node_id() != self.node_id:
            raise ValueError("Signer does not belong to this scheduler's node")
        if signer.network is not self.network:
            raise ValueError(
                f"Signer is for {signer.network.value}, scheduler for {self.network.value}"
            )

    def _device_csr(self, device: str) -> tuple[bytes, bytes]:
        # The node path does not fit the 64 character CN limit
        return TlsConfig.generate_csr(device, uri=device_uri(self.node_id, device))

    def _registration_result(self, doc: dict, key_pem: bytes) -> RegistrationResult:
        cert = doc.get("device_cert")
        rune = doc.get("rune")
        if not isinstance(cert, str) or not cert:
            raise SchedulerError("Scheduler response missing device_cert")
        if not isinstance(rune, str):
            raise SchedulerError("Scheduler response missing rune")

        # A returned key means the scheduler generated the identity itself
        # instead of signing our CSR, so the certificate matches its key
        key = doc.get("device_key") or key_pem.decode()

        creds = Credentials.from_parts(cert.encode(), key.encode(), rune, ca=self.tls.ca)
        return RegistrationResult(
            device_cert=cert.encode(),
            device_key=key.encode(),
            rune=rune,
            credentials=creds,
        )

    def register(
        self,
        signer: Signer,
        invite_code: Optional[str] = None,
        device: str = DEFAULT_DEVICE,
    ) -> RegistrationResult:
        """Register a new node with the scheduler.

        Args:
            signer: Signer holding the node's seed
            invite_code: Optional invite code required by some deployments
            device: Device name embedded in the issued certificate

        Returns:
            RegistrationResult with device credentials
        """
        self._check_signer(signer)
        logger.info(f"Registering node {self.node_id.hex()} on {self.network.value}")

        csr, key_pem = self._device_csr(device)
        challenge = self._get_challenge(ChallengeScope.REGISTER)
        signature = signer.sign_challenge(challenge)

        payload = {
            "node_id": self.node_id.hex(),
            "bip32_key": signer.bip32_ext_key(),
            "network": self.network.value,
            "challenge": challenge.hex(),
            "signature": signature.hex(),
            "csr": csr.decode(),
            "signer_version": signer.version(),
        }
        if invite_code:
            payload["invite_code"] = invite_code

        doc = self._call("Register", payload)
        result = self._registration_result(doc, key_pem)
        logger.info(f"Registered node {self.node_id.hex()}")
        return result

    def recover(self, signer: Signer, device: str = DEFAULT_DEVICE) -> RegistrationResult:
        """Recover device credentials for an already registered node."""
        self._check_signer(signer)
        logger.info(f"Recovering node {self.node_id.hex()}")

        csr, key_pem = self._device_csr(device)
        challenge = self._get_challenge(ChallengeScope.RECOVER)
        signature = signer.sign_challenge(challenge)

        doc = self._call(
            "Recover",
            {
                "node_id": self.node_id.hex(),
                "challenge": challenge.hex(),
                "signature": signature.hex(),
                "csr": csr.decode(),
            },
        )
        result = self._registration_result(doc, key_pem)
        logger.info(f"Recovered node {self.node_id.hex()}")
        return result

    def __repr__(self) -> str:
        return f"Scheduler(node_id={self.node_id.hex()}, network={self.network.value}, uri={self.uri})"
