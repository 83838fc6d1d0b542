"""Node signer.

Holds a node's seed for one network and answers identity and challenge
requests. All key material operations are delegated to the hsmd backend
(see ``glclient.hsmd``); the Signer itself only validates input and
keeps the seed out of logs and reprs.
"""

import hashlib
import logging
from typing import Optional

from glclient.errors import InvalidSeed
from glclient.hsmd import load_backend
from glclient.hsmd.base import SEED_LEN
from glclient.network import Network
from glclient.tls import TlsConfig

logger = logging.getLogger(__name__)


class Signer:
    """Signer for a single node.

    Example:
        signer = Signer(b"\\x00" * 32, "regtest", TlsConfig())
        node_id = signer.node_id()
    """

    def __init__(
        self,
        seed: bytes,
        network: "str | Network",
        tls: Optional[TlsConfig] = None,
        hsmd_module: Optional[str] = None,
    ):
        """Initialize signer.

        Args:
            seed: 32-byte secret
            network: Network name ("bitcoin", "regtest", ...)
            tls: TLS identity the signer presents to the node
            hsmd_module: Backend module override (defaults to GL_HSMD_MODULE)

        Raises:
            InvalidSeed: If seed is not 32 bytes
            ValueError: If network is unknown
        """
        if not isinstance(seed, (bytes, bytearray)):
            raise InvalidSeed(f"seed must be bytes, got {type(seed).__name__}")
        if len(seed) != SEED_LEN:
            raise InvalidSeed(f"seed must be {SEED_LEN} bytes, got {len(seed)}")

        self.network = Network.parse(network)
        self.tls = tls if tls is not None else TlsConfig()
        self._hsmd = load_backend(bytes(seed), self.network, hsmd_module)

        logger.debug(f"Signer ready for node {self.node_id().hex()} on {self.network.value}")

    def node_id(self) -> bytes:
        """Return the 33-byte node public key. No I/O."""
        return self._hsmd.node_id()

    def bip32_ext_key(self) -> str:
        """Return the wallet's extended public key."""
        return self._hsmd.bip32_ext_key()

    def sign_challenge(self, challenge: bytes) -> bytes:
        """Sign a scheduler challenge to prove ownership of the node key.

        Args:
            challenge: Opaque challenge bytes from the scheduler

        Returns:
            64-byte compact signature over sha256(challenge)
        """
        if not challenge:
            raise ValueError("challenge must not be empty")
        return self._hsmd.sign_message_hash(hashlib.sha256(challenge).digest())

    def version(self) -> str:
        from glclient import __version__

        return __version__

    def __repr__(self) -> str:
        return f"Signer(network={self.network.value}, node_id={self.node_id().hex()})"
