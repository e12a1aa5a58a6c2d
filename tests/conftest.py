"""Shared fixtures for the serial signer tests."""

from __future__ import annotations

import asyncio
import secrets

import pytest

from serial_signer.coordinator import SerialSignerCoordinator
from serial_signer.core import crypto
from serial_signer.core.errors import TransportError
from serial_signer.core.protocol import IV_HEX_LENGTH
from serial_signer.core.session_manager import SignerSessionManager
from serial_signer.core.transport import SignerTransport
from serial_signer.notifier import SignerNotifier


class FakeTransport(SignerTransport):
    """In-memory transport: records writes and replays fed chunks."""

    def __init__(self) -> None:
        self.connected = False
        self.written: list[bytes] = []
        self.fail_open = False
        self.fail_write = False
        self._chunks: asyncio.Queue[bytes | Exception] = asyncio.Queue()

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def open(self) -> None:
        if self.fail_open:
            raise TransportError("port busy")
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        self._chunks.put_nowait(b"")

    async def write(self, data: bytes) -> None:
        if self.fail_write:
            raise TransportError("write failed")
        self.written.append(data)

    async def read(self) -> bytes:
        chunk = await self._chunks.get()
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def fail_read(self, error: Exception) -> None:
        self._chunks.put_nowait(error)

    def lines(self) -> list[str]:
        return [chunk.decode().rstrip("\n") for chunk in self.written]


class FakeDevice:
    """The signing device side of the protocol."""

    def __init__(self) -> None:
        self.private_key, self.public_key = crypto.generate_key_pair()
        self.shared_secret: bytes | None = None

    @property
    def public_key_hex(self) -> str:
        return crypto.public_key_to_hex(self.public_key)

    def accept_key_exchange(self, host_public_key_hex: str) -> None:
        self.shared_secret = crypto.compute_shared_secret(
            self.private_key, crypto.public_key_from_hex(host_public_key_hex)
        )

    def handshake_line(self) -> bytes:
        return f"DH_EXCHANGE {self.public_key_hex}\n".encode()

    def encrypt_line(self, message: str) -> bytes:
        iv = secrets.token_bytes(crypto.IV_SIZE)
        ciphertext = crypto.encode_message(self.shared_secret, message, iv)
        return (ciphertext.hex() + iv.hex() + "\n").encode()

    def decrypt_line(self, line: str) -> str:
        ciphertext = bytes.fromhex(line[:-IV_HEX_LENGTH])
        iv = bytes.fromhex(line[-IV_HEX_LENGTH:])
        return crypto.decode_message(self.shared_secret, ciphertext, iv)


class RecordingNotifier(SignerNotifier):
    """Notifier that keeps every event for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str | None]] = []

    def success(self, message: str, caption: str | None = None) -> None:
        self.events.append(("success", message, caption))

    def warning(self, message: str, caption: str | None = None) -> None:
        self.events.append(("warning", message, caption))

    def messages(self, level: str) -> list[str]:
        return [message for kind, message, _ in self.events if kind == level]


async def settle() -> None:
    """Let the read loop process everything fed so far."""
    for _ in range(10):
        await asyncio.sleep(0)


def establish_secret(manager: SignerSessionManager, device: FakeDevice) -> None:
    """Run a key exchange between a session manager and a fake device."""
    host_public_key_hex = manager.prepare_key_exchange()
    device.accept_key_exchange(host_public_key_hex)
    manager.complete_key_exchange(device.public_key_hex)


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session_manager() -> SignerSessionManager:
    return SignerSessionManager()


@pytest.fixture
async def coordinator(
    transport: FakeTransport,
    session_manager: SignerSessionManager,
    notifier: RecordingNotifier,
    device: FakeDevice,
) -> SerialSignerCoordinator:
    """A coordinator connected to the fake device with a secure session."""
    coordinator = SerialSignerCoordinator(transport, session_manager, notifier)
    assert await coordinator.connect()

    handshake = transport.lines()[-1]
    device.accept_key_exchange(handshake.split(" ")[1])
    transport.feed(device.handshake_line())
    assert await coordinator.wait_for_secure_session()

    yield coordinator

    await coordinator.disconnect()
