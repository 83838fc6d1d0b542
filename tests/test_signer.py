"""Tests for the Signer and the software hsmd backend."""

import hashlib
from unittest.mock import MagicMock, patch

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from glclient.errors import InvalidSeed
from glclient.hsmd.software import SECP256K1_ORDER, SoftwareHsmd, derive_node_secret
from glclient.network import Network
from glclient.signer import Signer


def verify_compact(node_id: bytes, digest: bytes, signature: bytes) -> None:
    """Raise InvalidSignature unless signature is valid for node_id."""
    public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), node_id)
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    public_key.verify(encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(hashes.SHA256())))


class TestNodeId:
    """NodeId derivation."""

    def test_node_id_is_compressed_pubkey(self, signer):
        node_id = signer.node_id()

        assert len(node_id) == 33
        assert node_id[0] in (2, 3)

    def test_node_id_stable_across_calls(self, signer):
        assert signer.node_id() == signer.node_id() == signer.node_id()

    @pytest.mark.parametrize("fill", [b"\x00", b"\x01", b"\x7f", b"\xff"])
    def test_node_id_deterministic_across_instances(self, bare_tls, fill):
        seed = fill * 32
        a = Signer(seed, "regtest", bare_tls)
        b = Signer(seed, "regtest", bare_tls)

        assert a.node_id() == b.node_id()

    def test_different_seeds_give_different_ids(self, bare_tls):
        a = Signer(b"\x00" * 32, "regtest", bare_tls)
        b = Signer(b"\x01" * 32, "regtest", bare_tls)

        assert a.node_id() != b.node_id()

    def test_node_id_does_not_depend_on_network(self, bare_tls):
        seed = b"\x42" * 32
        regtest = Signer(seed, "regtest", bare_tls)
        mainnet = Signer(seed, "bitcoin", bare_tls)

        assert regtest.node_id() == mainnet.node_id()

    def test_node_id_needs_no_network_access(self, signer):
        with patch("httpx.Client") as client_cls:
            signer.node_id()
        client_cls.assert_not_called()


class TestSeedValidation:
    """InvalidSeed on malformed seeds."""

    @pytest.mark.parametrize("length", [0, 16, 31, 33, 64])
    def test_wrong_length_raises_invalid_seed(self, bare_tls, length):
        with pytest.raises(InvalidSeed):
            Signer(b"\x00" * length, "regtest", bare_tls)

    def test_non_bytes_seed_rejected(self, bare_tls):
        with pytest.raises(InvalidSeed):
            Signer("0" * 32, "regtest", bare_tls)

    def test_invalid_seed_is_a_value_error(self, bare_tls):
        with pytest.raises(ValueError):
            Signer(b"short", "regtest", bare_tls)

    def test_unknown_network_rejected(self, bare_tls):
        with pytest.raises(ValueError, match="Unknown network"):
            Signer(b"\x00" * 32, "moonnet", bare_tls)

    def test_repr_does_not_leak_seed(self, bare_tls):
        seed = bytes(range(32))
        signer = Signer(seed, "regtest", bare_tls)

        text = repr(signer)
        assert seed.hex() not in text
        assert signer.node_id().hex() in text


class TestChallengeSigning:
    """sign_challenge produces verifiable low-s signatures."""

    def test_signature_verifies_against_node_id(self, signer):
        challenge = b"scheduler-challenge"
        signature = signer.sign_challenge(challenge)

        assert len(signature) == 64
        verify_compact(signer.node_id(), hashlib.sha256(challenge).digest(), signature)

    def test_signature_is_low_s(self, signer):
        for i in range(8):
            signature = signer.sign_challenge(f"challenge-{i}".encode())
            assert int.from_bytes(signature[32:], "big") <= SECP256K1_ORDER // 2

    def test_empty_challenge_rejected(self, signer):
        with pytest.raises(ValueError):
            signer.sign_challenge(b"")


class TestBip32:
    def test_regtest_uses_testnet_versions(self, signer):
        assert signer.bip32_ext_key().startswith("tpub")

    def test_mainnet_uses_mainnet_versions(self, bare_tls):
        signer = Signer(b"\x00" * 32, Network.BITCOIN, bare_tls)
        assert signer.bip32_ext_key().startswith("xpub")

    def test_version_reported(self, signer):
        from glclient import __version__

        assert signer.version() == __version__


class TestSoftwareHsmd:
    """Low-level backend behaviour."""

    def test_node_secret_is_valid_scalar(self):
        secret = derive_node_secret(b"\x00" * 32)

        assert len(secret) == 32
        assert 0 < int.from_bytes(secret, "big") < SECP256K1_ORDER

    def test_derivation_bumps_salt_for_invalid_scalar(self):
        hkdf_instances = [MagicMock(), MagicMock()]
        hkdf_instances[0].derive.return_value = b"\x00" * 32  # zero is not a valid key
        hkdf_instances[1].derive.return_value = b"\x01" * 32

        with patch("glclient.hsmd.software.HKDF", side_effect=hkdf_instances) as hkdf_cls:
            secret = derive_node_secret(b"\x09" * 32)

        assert secret == b"\x01" * 32
        salts = [c.kwargs["salt"] for c in hkdf_cls.call_args_list]
        assert salts == [b"\x00\x00\x00\x00", b"\x01\x00\x00\x00"]
        assert all(c.kwargs["info"] == b"nodeid" for c in hkdf_cls.call_args_list)

    def test_backend_rejects_bad_hash_length(self):
        hsmd = SoftwareHsmd(b"\x00" * 32, Network.REGTEST)

        with pytest.raises(ValueError):
            hsmd.sign_message_hash(b"\x00" * 20)

    def test_backend_repr(self):
        hsmd = SoftwareHsmd(b"\x00" * 32, Network.SIGNET)
        assert repr(hsmd) == "SoftwareHsmd(network=signet)"
