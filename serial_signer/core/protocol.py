from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Final

from .errors import ProtocolError, SecureSessionError
from .framer import LineFramer
from .models import (
    ERROR_COMMAND,
    PLAINTEXT_COMMANDS,
    CommandTag,
    DecodedCommand,
    SignerCommand,
)

if TYPE_CHECKING:
    from .session_manager import SignerSessionManager

_LOGGER = logging.getLogger(__name__)

IV_HEX_LENGTH: Final = 32


def split_command(message: str) -> DecodedCommand:
    """Split a message into its leading command token and trimmed data."""
    message = message.strip()
    command, _, data = message.partition(" ")
    return DecodedCommand(command=command, data=data.strip())


class SignerProtocol:
    """Command channel: framing and encryption of signer commands."""

    def __init__(
        self, session_manager: SignerSessionManager, framer: LineFramer
    ) -> None:
        """Initialize the protocol handler.

        Args:
            session_manager: The session manager holding the shared secret.
            framer: The line framer for the open transport.
        """
        self._session_manager = session_manager
        self._framer = framer

    # --- OUTBOUND ---

    def encode_command(self, command: SignerCommand) -> str:
        """Build the wire line for a command, without its terminator.

        DH_EXCHANGE is sent as plaintext; every other command is encrypted.
        """
        message = command.to_message()
        if command.tag == CommandTag.DH_EXCHANGE:
            return message
        return self._session_manager.encrypt(message)

    async def send(self, tag: CommandTag, args: Iterable[object] = ()) -> None:
        """Send a command with optional arguments to the device.

        Raises:
            SecureSessionError: If no shared secret has been established.
            TransportError: If the write fails.
        """
        command = SignerCommand(tag=tag, args=tuple(str(arg) for arg in args))
        line = self.encode_command(command)
        _LOGGER.debug("Sending %s", tag.value)
        await self._framer.write_line(line)

    async def send_key_exchange(self) -> None:
        """Generate a fresh key pair and send the unencrypted handshake line."""
        public_key_hex = self._session_manager.prepare_key_exchange()
        await self.send(CommandTag.DH_EXCHANGE, [public_key_hex])

    # --- INBOUND ---

    def decode(self, line: str) -> DecodedCommand:
        """Decode a line received from the device.

        Handshake and log lines are returned as they are. Anything else is
        treated as an encrypted frame. Failures never raise; they come back as
        the error pseudo-command with a readable message.
        """
        plain = split_command(line)
        if plain.command in PLAINTEXT_COMMANDS:
            return plain

        try:
            return split_command(self._decrypt_frame(line.strip()))
        except SecureSessionError as err:
            _LOGGER.warning("Dropping encrypted frame: %s", err)
            return DecodedCommand(command=ERROR_COMMAND, data=str(err))
        except ProtocolError as err:
            _LOGGER.warning("Failed to decrypt message from device: %s", err)
            return DecodedCommand(
                command=ERROR_COMMAND, data="Failed to decrypt message from device!"
            )

    def _decrypt_frame(self, frame: str) -> str:
        """Split a hex frame into ciphertext and IV and decrypt it."""
        if not self._session_manager.session.has_shared_secret():
            raise SecureSessionError()
        if len(frame) <= IV_HEX_LENGTH:
            raise ProtocolError(f"Frame too short: {len(frame)} characters")

        try:
            ciphertext = bytes.fromhex(frame[:-IV_HEX_LENGTH])
            iv = bytes.fromhex(frame[-IV_HEX_LENGTH:])
        except ValueError as err:
            raise ProtocolError(f"Frame is not valid hex: {err}") from err

        return self._session_manager.decrypt(ciphertext, iv)
