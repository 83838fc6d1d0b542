"""Supported Bitcoin networks and their BIP32 version bytes."""

from enum import Enum

from bip_utils import Bip32KeyNetVersions

# xpub/xprv and tpub/tprv
MAINNET_KEY_NET_VER = Bip32KeyNetVersions(b"\x04\x88\xb2\x1e", b"\x04\x88\xad\xe4")
TESTNET_KEY_NET_VER = Bip32KeyNetVersions(b"\x04\x35\x87\xcf", b"\x04\x35\x83\x94")


class Network(str, Enum):
    """Network a node runs on."""
    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @classmethod
    def parse(cls, value: "str | Network") -> "Network":
        """Parse a network name (case-insensitive).

        Raises:
            ValueError: If the name is not a supported network
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(n.value for n in cls)
            raise ValueError(f"Unknown network {value!r}, expected one of: {valid}")

    @property
    def is_mainnet(self) -> bool:
        return self is Network.BITCOIN

    @property
    def key_net_versions(self) -> Bip32KeyNetVersions:
        return MAINNET_KEY_NET_VER if self.is_mainnet else TESTNET_KEY_NET_VER
