"""Tests for key exchange and session secrets."""

import pytest

from serial_signer.core import crypto
from serial_signer.core.errors import ProtocolError, SecureSessionError
from serial_signer.core.models import SessionState
from serial_signer.core.session_manager import SignerSessionManager

from .conftest import establish_secret


def test_prepare_key_exchange_returns_public_key_hex(session_manager):
    """Test the handshake value and state."""
    public_key_hex = session_manager.prepare_key_exchange()

    assert len(public_key_hex) == 128
    assert session_manager.session.state == SessionState.KEY_EXCHANGING
    assert session_manager.session.private_key is not None
    assert not session_manager.session.has_shared_secret()


def test_key_exchange_is_symmetric(session_manager, device):
    """Test that host and device derive the same key."""
    establish_secret(session_manager, device)

    assert bytes(session_manager.session.shared_secret) == device.shared_secret
    assert session_manager.session.state == SessionState.AUTHENTICATING
    assert not session_manager.session.authenticated


def test_complete_key_exchange_drops_private_key(session_manager, device):
    """Test that the ephemeral key is not kept after the exchange."""
    establish_secret(session_manager, device)

    assert session_manager.session.private_key is None


@pytest.mark.parametrize("peer_key", ["", "not hex", "ab" * 32])
def test_malformed_peer_key_leaves_no_secret(session_manager, peer_key):
    """Test that a bad device key aborts the exchange."""
    session_manager.prepare_key_exchange()

    with pytest.raises(ProtocolError):
        session_manager.complete_key_exchange(peer_key)

    assert not session_manager.session.has_shared_secret()
    assert not session_manager.session.is_authenticated()
    assert session_manager.session.state == SessionState.KEY_EXCHANGING


def test_complete_without_prepare_fails(session_manager, device):
    """Test that a stray handshake reply is rejected."""
    with pytest.raises(ProtocolError):
        session_manager.complete_key_exchange(device.public_key_hex)


def test_invalidate_session_zeroes_secret(session_manager, device):
    """Test that disconnecting wipes the key material."""
    establish_secret(session_manager, device)
    secret = session_manager.session.shared_secret
    session_manager.set_authenticated(True)

    session_manager.invalidate_session()

    assert secret == bytearray(32)
    assert session_manager.session.shared_secret is None
    assert session_manager.session.private_key is None
    assert not session_manager.session.authenticated
    assert session_manager.session.state == SessionState.DISCONNECTED


def test_new_key_exchange_clears_previous_session(session_manager, device):
    """Test that re-initiating starts from an unauthenticated session."""
    establish_secret(session_manager, device)
    session_manager.set_authenticated(True)

    session_manager.prepare_key_exchange()

    assert not session_manager.session.has_shared_secret()
    assert not session_manager.session.authenticated


def test_encrypt_uses_fresh_iv_from_random_source(device):
    """Test the frame layout and the injected random source."""
    draws = []

    def random_bytes(size: int) -> bytes:
        value = bytes([len(draws) + 1]) * size
        draws.append(value)
        return value

    manager = SignerSessionManager(random_bytes=random_bytes)
    establish_secret(manager, device)

    frame = manager.encrypt("HELP")

    assert frame.endswith(draws[-1].hex())
    assert len(frame) == 32 + 32
    assert device.decrypt_line(frame) == "HELP"


def test_encrypt_decrypt_roundtrip_with_device(session_manager, device):
    """Test that frames from the device decrypt with the host's secret."""
    establish_secret(session_manager, device)
    line = device.encrypt_line("XPUB 1 xpub6C a1b2c3d4").decode().strip()

    plaintext = session_manager.decrypt(
        bytes.fromhex(line[:-32]), bytes.fromhex(line[-32:])
    )

    assert plaintext == "XPUB 1 xpub6C a1b2c3d4"


def test_encrypt_without_secret_fails(session_manager):
    """Test that encrypting before the exchange raises."""
    with pytest.raises(SecureSessionError):
        session_manager.encrypt("HELP")


def test_decrypt_without_secret_fails(session_manager):
    """Test that decrypting before the exchange raises."""
    with pytest.raises(SecureSessionError):
        session_manager.decrypt(b"\x00" * 16, b"\x00" * crypto.IV_SIZE)


def test_resting_state_follows_login(session_manager, device):
    """Test where finished sub-flows return to."""
    establish_secret(session_manager, device)
    assert session_manager.session.resting_state() == SessionState.AUTHENTICATING

    session_manager.set_authenticated(True)

    assert session_manager.session.state == SessionState.AUTHENTICATED
    assert session_manager.session.is_authenticated()
