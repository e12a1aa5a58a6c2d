from __future__ import annotations

import logging
import secrets
from collections.abc import Callable

from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict

from .crypto import (
    IV_SIZE,
    compute_shared_secret,
    decode_message,
    encode_message,
    generate_key_pair,
    public_key_from_hex,
    public_key_to_hex,
)
from .errors import ProtocolError, SecureSessionError
from .models import SessionState

_LOGGER = logging.getLogger(__name__)


class SignerSession(BaseModel):
    """Secret material and state for one open transport connection."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: SessionState = SessionState.DISCONNECTED
    authenticated: bool = False
    shared_secret: bytearray | None = None
    private_key: ec.EllipticCurvePrivateKey | None = None

    def has_shared_secret(self) -> bool:
        """Check if a key exchange has completed for this session."""
        return self.shared_secret is not None

    def is_authenticated(self) -> bool:
        """Check if the user has logged in to the device."""
        return self.authenticated and self.has_shared_secret()

    def resting_state(self) -> SessionState:
        """The state a finished sub-flow returns to."""
        if self.authenticated:
            return SessionState.AUTHENTICATED
        if self.has_shared_secret():
            return SessionState.AUTHENTICATING
        return SessionState.KEY_EXCHANGING

    def wipe_secrets(self) -> None:
        """Overwrite the shared secret and drop the ephemeral private key."""
        if self.shared_secret is not None:
            for index in range(len(self.shared_secret)):
                self.shared_secret[index] = 0
        self.shared_secret = None
        self.private_key = None


class SignerSessionManager:
    """Manages the key exchange and encryption state for a signing device."""

    def __init__(
        self, random_bytes: Callable[[int], bytes] = secrets.token_bytes
    ) -> None:
        """Initialize the session manager.

        Args:
            random_bytes: Source of randomness for private scalars and IVs.
        """
        self._random_bytes = random_bytes
        self._session = SignerSession()

    @property
    def session(self) -> SignerSession:
        """Get the current session."""
        return self._session

    def set_state(self, state: SessionState) -> None:
        """Move the session to a new state."""
        if self._session.state != state:
            _LOGGER.debug("Session state %s -> %s", self._session.state.name, state.name)
        self._session.state = state

    def set_authenticated(self, authenticated: bool) -> None:
        """Record the login state reported by the device."""
        self._session.authenticated = authenticated
        self.set_state(self._session.resting_state())

    def invalidate_session(self) -> None:
        """Clear all secret material and return to the disconnected state."""
        _LOGGER.info("Invalidating signer session")
        self._session.wipe_secrets()
        self._session.authenticated = False
        self.set_state(SessionState.DISCONNECTED)

    def prepare_key_exchange(self) -> str:
        """Start a key exchange with a fresh ephemeral key pair.

        Any previous secret is wiped first, so the session is unauthenticated
        until the device answers.

        Returns:
            The public key hex to send in the DH_EXCHANGE line.
        """
        self._session.wipe_secrets()
        self._session.authenticated = False

        private_key, public_key_bytes = generate_key_pair(self._random_bytes)
        self._session.private_key = private_key
        self.set_state(SessionState.KEY_EXCHANGING)

        return public_key_to_hex(public_key_bytes)

    def complete_key_exchange(self, peer_public_key_hex: str) -> None:
        """Derive the shared secret from the device's public key.

        Args:
            peer_public_key_hex: The device public key without its 04 prefix.

        Raises:
            ProtocolError: If the key is missing or malformed, or no exchange
                was started. The session is left without a shared secret.
        """
        session = self._session
        if session.private_key is None:
            raise ProtocolError("No key exchange in progress")
        if not peer_public_key_hex:
            raise ProtocolError("Device did not send a public key")

        peer_public_key = public_key_from_hex(peer_public_key_hex)
        shared_secret = compute_shared_secret(session.private_key, peer_public_key)

        session.wipe_secrets()
        session.shared_secret = bytearray(shared_secret)
        session.authenticated = False
        self.set_state(SessionState.AUTHENTICATING)

        _LOGGER.info("Secure session established")

    def encrypt(self, message: str) -> str:
        """Encrypt a command message into a hex frame.

        Args:
            message: The command message.

        Returns:
            The ciphertext hex followed by the 32 hex characters of the IV.
        """
        if not self._session.has_shared_secret():
            raise SecureSessionError()

        iv = self._random_bytes(IV_SIZE)
        ciphertext = encode_message(self._session.shared_secret, message, iv)
        return ciphertext.hex() + iv.hex()

    def decrypt(self, ciphertext: bytes, iv: bytes) -> str:
        """Decrypt a frame received from the device."""
        if not self._session.has_shared_secret():
            raise SecureSessionError()

        return decode_message(self._session.shared_secret, ciphertext, iv)
