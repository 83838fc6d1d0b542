"""Software hsmd backend.

Derives the node key the same way Core Lightning's hsmd does:

    node_secret = HKDF-SHA256(ikm=seed, salt=le32(counter), info="nodeid")

starting with counter 0 and bumping it until the result is a valid
secp256k1 scalar. The wallet root is the plain BIP32 master key of the
seed, serialized with the version bytes of the configured network.
"""

import logging
import struct

from bip_utils import Bip32Secp256k1
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from glclient.hsmd.base import SEED_LEN, HsmdBackend
from glclient.network import Network

logger = logging.getLogger(__name__)

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
NODE_ID_INFO = b"nodeid"


def derive_node_secret(seed: bytes) -> bytes:
    """Derive the node private key from a seed.

    Args:
        seed: 32-byte seed

    Returns:
        32-byte secret that is a valid secp256k1 private key
    """
    salt = 0
    while True:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=struct.pack("<I", salt),
            info=NODE_ID_INFO,
        )
        secret = hkdf.derive(seed)
        if 0 < int.from_bytes(secret, "big") < SECP256K1_ORDER:
            return secret
        salt += 1


class SoftwareHsmd(HsmdBackend):
    """In-process backend keeping the seed in memory.

    Example:
        hsmd = SoftwareHsmd(b"\\x00" * 32, Network.REGTEST)
        hsmd.node_id().hex()  # "02..." or "03..."
    """

    def __init__(self, seed: bytes, network: Network):
        super().__init__(network)
        if len(seed) != SEED_LEN:
            raise ValueError(f"seed must be {SEED_LEN} bytes, got {len(seed)}")
        self._seed = bytes(seed)
        self._secret = derive_node_secret(self._seed)
        self._private_key = ec.derive_private_key(
            int.from_bytes(self._secret, "big"), ec.SECP256K1()
        )
        self._node_id = self._private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.CompressedPoint,
        )

    def node_secret(self) -> bytes:
        return self._secret

    def node_id(self) -> bytes:
        return self._node_id

    def bip32_ext_key(self) -> str:
        ctx = Bip32Secp256k1.FromSeed(self._seed, self.network.key_net_versions)
        return ctx.PublicKey().ToExtended()

    def sign_message_hash(self, message_hash: bytes) -> bytes:
        if len(message_hash) != 32:
            raise ValueError("message hash must be 32 bytes")

        der = self._private_key.sign(message_hash, ec.ECDSA(Prehashed(hashes.SHA256())))
        r, s = decode_dss_signature(der)

        # Low-s form, as required by BIP62/secp256k1 verifiers
        if s > SECP256K1_ORDER // 2:
            s = SECP256K1_ORDER - s

        return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def create_backend(seed: bytes, network: Network) -> HsmdBackend:
    """Entry point used by the backend loader."""
    return SoftwareHsmd(seed, network)
