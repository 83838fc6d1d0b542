"""Base interface for low-level signing backends.

A backend owns the seed for one node and answers key material requests
from the Signer. Backends never hand out the seed itself; the node secret
is exposed only to the signing routines in this package.
"""

import logging
from abc import ABC, abstractmethod

from glclient.network import Network

logger = logging.getLogger(__name__)

SEED_LEN = 32


class HsmdBackend(ABC):
    """Abstract base class for hsmd backends.

    Implementations must be pure functions of (seed, network): the same
    inputs always produce the same node id and extended key.
    """

    def __init__(self, network: Network):
        self.network = network

    @abstractmethod
    def node_secret(self) -> bytes:
        """Return the 32-byte node private key."""
        pass

    @abstractmethod
    def node_id(self) -> bytes:
        """Return the 33-byte compressed node public key."""
        pass

    @abstractmethod
    def bip32_ext_key(self) -> str:
        """Return the base58 extended public key for the wallet root."""
        pass

    @abstractmethod
    def sign_message_hash(self, message_hash: bytes) -> bytes:
        """Sign a 32-byte hash with the node key.

        Args:
            message_hash: SHA256 digest to sign

        Returns:
            64-byte compact signature (r || s), low-s normalized
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(network={self.network.value})"
