"""Session state machine for a serial signing device."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import SecretStr

from .const import DEFAULT_NETWORK, FIRST_SEED_WORD, RESPONSE_OK
from .core.errors import ProtocolError, SerialSignerError, TransportError
from .core.framer import LineFramer
from .core.models import (
    ERROR_COMMAND,
    CommandTag,
    Credentials,
    PendingKind,
    SessionState,
    SigningFlow,
    SignResult,
    Transaction,
    XpubResult,
)
from .core.pending import PendingRequests
from .core.protocol import SignerProtocol
from .core.session_manager import SignerSessionManager
from .core.transport import SignerTransport
from .notifier import LoggingNotifier, SignerNotifier

_LOGGER = logging.getLogger(__name__)

# Responses that may carry secrets are never logged
_SECRET_RESPONSES = frozenset({CommandTag.SEED.value})


class SerialSignerCoordinator:
    """Drives the protocol with one signing device over one connection.

    Responses arrive on a read loop started by connect(). Requests that wait
    for an answer (key exchange, login, PSBT acknowledgment, xpub) use one
    pending slot per kind, so a second request of the same kind is rejected
    until the first is answered.
    """

    def __init__(
        self,
        transport: SignerTransport,
        session_manager: SignerSessionManager | None = None,
        notifier: SignerNotifier | None = None,
        network: str = DEFAULT_NETWORK,
    ) -> None:
        """Initialize the coordinator.

        Args:
            transport: The byte transport to the device.
            session_manager: Holds the session secrets. A new one is created
                if None.
            notifier: Receives user-facing events. Defaults to logging them.
            network: Bitcoin network name sent with PSBT and xpub requests.
        """
        self.transport = transport
        self.session_manager = session_manager or SignerSessionManager()
        self.notifier = notifier or LoggingNotifier()
        self.network = network
        self.framer = LineFramer(transport)
        self.protocol = SignerProtocol(self.session_manager, self.framer)

        self.signing_flow = SigningFlow()
        self.seed_word_position = FIRST_SEED_WORD

        self._credentials = Credentials()
        self._pending = PendingRequests()
        self._read_task: asyncio.Task[None] | None = None
        self._signed_psbt_callbacks: list[Callable[[str], None]] = []
        self._seed_word_callbacks: list[Callable[[str], None]] = []

        self._handlers: dict[str, Callable[[str], Any]] = {
            CommandTag.SIGN_PSBT.value: self.handle_sign_response,
            CommandTag.PASSWORD.value: self.handle_login_response,
            CommandTag.PASSWORD_CLEAR.value: self.handle_logout_response,
            CommandTag.SEND_PSBT.value: self.handle_send_psbt_response,
            CommandTag.WIPE.value: self.handle_wipe_response,
            CommandTag.RESTORE.value: self.handle_restore_response,
            CommandTag.XPUB.value: self.handle_xpub_response,
            CommandTag.SEED.value: self.handle_seed_response,
            CommandTag.DH_EXCHANGE.value: self.handle_key_exchange_response,
            CommandTag.LOG.value: self.handle_log,
        }

    # --- QUERIES ---

    @property
    def state(self) -> SessionState:
        """Current protocol state."""
        return self.session_manager.session.state

    def is_connected(self) -> bool:
        """Check if the transport is open."""
        return self.transport.is_connected

    def is_authenticated(self) -> bool:
        """Check if the user is logged in to the device."""
        return self.session_manager.session.is_authenticated()

    async def is_authenticating(self) -> bool:
        """Wait for the next login answer.

        Returns False right away when already logged in, otherwise the login
        result once the device answers.
        """
        if self.is_authenticated():
            return False
        return await asyncio.shield(self._pending.observe(PendingKind.LOGIN))

    async def is_sending_psbt(self) -> bool:
        """Wait for the device to acknowledge a PSBT being sent.

        Returns False right away when no PSBT is being sent.
        """
        if not self.signing_flow.sending:
            return False
        return await asyncio.shield(self._pending.observe(PendingKind.SEND_PSBT))

    async def is_fetching_xpub(self) -> XpubResult:
        """Wait for the next xpub answer."""
        return await asyncio.shield(self._pending.observe(PendingKind.XPUB))

    async def wait_for_secure_session(self) -> bool:
        """Wait until the key exchange started by connect() completes.

        Returns:
            True once a shared secret exists, False if the exchange failed.
        """
        if self.session_manager.session.has_shared_secret():
            return True
        if not self.is_connected():
            return False
        return await asyncio.shield(self._pending.observe(PendingKind.KEY_EXCHANGE))

    # --- CALLBACKS ---

    def register_signed_psbt_callback(self, callback: Callable[[str], None]) -> None:
        """Register a callback receiving each signed PSBT (base64)."""
        self._signed_psbt_callbacks.append(callback)

    def register_seed_word_callback(self, callback: Callable[[str], None]) -> None:
        """Register a callback receiving each seed word shown by the device."""
        self._seed_word_callbacks.append(callback)

    # --- CONNECTION ---

    async def connect(self) -> bool:
        """Open the transport, start reading and begin the key exchange.

        Returns:
            True if the transport is open, False if it could not be opened.
        """
        if self.is_connected():
            self.notifier.warning("Already connected. Disconnect first!")
            return True

        try:
            await self.transport.open()
        except TransportError as err:
            _LOGGER.error("Cannot open serial port: %s", err)
            self.notifier.warning("Cannot open serial port!", str(err))
            return False

        self._read_task = asyncio.create_task(self._read_loop())
        await self._start_key_exchange()
        return True

    async def disconnect(self) -> None:
        """Stop reading, close the transport and wipe the session."""
        await self._stop_reading()
        try:
            await self.transport.close()
            self.notifier.success("Serial port disconnected!")
        except TransportError as err:
            _LOGGER.warning("Error closing serial port: %s", err)
            self.notifier.warning("Cannot close serial port!", str(err))
        finally:
            self._reset()

    async def _start_key_exchange(self) -> None:
        self._pending.claim(PendingKind.KEY_EXCHANGE)
        try:
            await self.protocol.send_key_exchange()
        except SerialSignerError as err:
            _LOGGER.warning("Failed to send DH public key: %s", err)
            self.notifier.warning("Failed to send DH Public Key to device!", str(err))
            self._pending.resolve(PendingKind.KEY_EXCHANGE, False)
            return
        self.notifier.success("Starting secure session!")

    async def _read_loop(self) -> None:
        try:
            async for line in self.framer.read_lines():
                self.handle_line(line)
        except TransportError as err:
            _LOGGER.error("Serial port communication error: %s", err)
            self.notifier.warning("Serial port communication error!", str(err))
        else:
            _LOGGER.info("Serial port closed")

        # The transport is gone either way; the caller has to connect again
        self._read_task = None
        try:
            await self.transport.close()
        except TransportError as err:
            _LOGGER.warning("Error closing serial port: %s", err)
        self._reset()
        self.notifier.warning("Disconnected from Serial Port!")

    async def _stop_reading(self) -> None:
        task, self._read_task = self._read_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _reset(self) -> None:
        self._pending.cancel_all()
        self._credentials.clear()
        self.session_manager.invalidate_session()
        self.signing_flow = SigningFlow()
        self.seed_word_position = FIRST_SEED_WORD

    # --- INBOUND ---

    def handle_line(self, line: str) -> None:
        """Decode a line from the device and dispatch it.

        A line that cannot be handled is logged and dropped; the read loop
        keeps running.
        """
        decoded = self.protocol.decode(line)
        try:
            self.handle_command(decoded.command, decoded.data)
        except Exception:  # pylint: disable=broad-except
            _LOGGER.exception(
                "Error handling %s from device, line dropped", decoded.command
            )

    def handle_command(self, command: str, data: str) -> None:
        """Dispatch a decoded command to its response handler.

        Unknown and error commands are logged and otherwise ignored, so a
        corrupted frame never ends the session.
        """
        self._log_response(command, data)

        handler = self._handlers.get(command)
        if handler is None:
            _LOGGER.warning("Unexpected message from device: %s %s", command, data)
            if command == ERROR_COMMAND:
                self.notifier.warning(data or "Unexpected message from device!")
            return

        try:
            handler(data)
        except ProtocolError as err:
            _LOGGER.warning("Malformed %s response: %s", command, err)
            self.notifier.warning("Invalid response from device!", str(err))

    def _log_response(self, command: str, data: str) -> None:
        if command == CommandTag.LOG.value:
            return
        if command in _SECRET_RESPONSES:
            _LOGGER.debug("Received %s <redacted>", command)
        else:
            _LOGGER.debug("Received %s %s", command, data)

    def handle_log(self, data: str) -> None:
        """Write a device log line to the library log."""
        _LOGGER.info("Device: %s", data)

    def handle_key_exchange_response(self, data: str) -> bool:
        """Complete the key exchange with the device's public key."""
        public_key_hex = data.strip().split(" ")[0]
        try:
            self.session_manager.complete_key_exchange(public_key_hex)
        except ProtocolError as err:
            _LOGGER.warning("Key exchange failed: %s", err)
            self.notifier.warning("Failed to exchange DH secret!", data or str(err))
            self._pending.resolve(PendingKind.KEY_EXCHANGE, False)
            return False

        self.notifier.success("Secure session created!")
        self._pending.resolve(PendingKind.KEY_EXCHANGE, True)
        return True

    def handle_login_response(self, data: str) -> bool:
        """Record the login result and release anyone waiting for it."""
        authenticated = data.strip() == RESPONSE_OK
        self.session_manager.set_authenticated(authenticated)
        self._pending.resolve(PendingKind.LOGIN, authenticated)

        if authenticated:
            _LOGGER.info("Logged in to signing device")
            self.notifier.success("Login successful!")
        else:
            self.notifier.warning("Wrong password, try again!")
        return authenticated

    def handle_logout_response(self, data: str) -> bool:
        """Record the logout result. A refused logout keeps the session."""
        if data.strip() != RESPONSE_OK:
            self.notifier.warning("Failed to logout from Hardware Wallet")
            return False

        _LOGGER.info("Logged out from signing device")
        self.session_manager.set_authenticated(False)
        return True

    def handle_send_psbt_response(self, data: str) -> bool:
        """Handle the device accepting or refusing a PSBT."""
        flow = self.signing_flow
        flow.sending = False
        accepted = data.strip() == RESPONSE_OK
        try:
            if not accepted:
                self.notifier.warning("Failed to send PSBT!", data)
                return False

            flow.confirmed_output_index = 0
            flow.fee_confirmation_pending = False
            self.session_manager.set_state(SessionState.SIGNING)
            return True
        finally:
            self._pending.resolve(PendingKind.SEND_PSBT, accepted)

    def handle_sign_response(self, data: str) -> SignResult:
        """Parse ``<signed count> <psbt>`` and emit the signed PSBT."""
        tokens = data.strip().split(" ")
        count = tokens[0]
        psbt = tokens[1] if len(tokens) > 1 else ""

        self.signing_flow = SigningFlow()
        self._finish(SessionState.SIGNING)

        if not psbt or not (count.isascii() and count.isdigit()) or int(count) == 0:
            self.notifier.warning("No input signed!", "Are you using the right seed?")
            return SignResult()

        result = SignResult(signed_count=int(count), psbt=psbt)
        _LOGGER.info("Device signed %d inputs", result.signed_count)
        self._emit(self._signed_psbt_callbacks, psbt)
        self.notifier.success("Transaction Signed", f"Inputs signed: {count}")
        return result

    def handle_xpub_response(self, data: str) -> XpubResult:
        """Parse ``1 <xpub> <fingerprint>`` and release the xpub waiter."""
        args = data.strip().split(" ")
        if len(args) < 3 or args[0] != RESPONSE_OK:
            self.notifier.warning("Failed to fetch XPub!", data)
            result = XpubResult()
        else:
            result = XpubResult(xpub=args[1], fingerprint=args[2])

        self._finish(SessionState.FETCHING_XPUB)
        self._pending.resolve(PendingKind.XPUB, result)
        return result

    def handle_seed_response(self, data: str) -> str | None:
        """Accept ``1 <word...>`` and pass the word on; reject anything else."""
        status, _, word = data.strip().partition(" ")
        word = word.strip()
        if status != RESPONSE_OK or not word:
            self.notifier.warning("Failed to show seed!")
            return None

        self._emit(self._seed_word_callbacks, word)
        return word

    def handle_wipe_response(self, data: str) -> bool:
        """Report the wipe result."""
        wiped = data.strip() == RESPONSE_OK
        self._finish(SessionState.WIPING)
        if wiped:
            self.notifier.success("Wallet wiped!")
        else:
            self.notifier.warning("Failed to wipe wallet!", data)
        return wiped

    def handle_restore_response(self, data: str) -> bool:
        """Report the restore result; the login answer follows separately."""
        restored = data.strip() == RESPONSE_OK
        if restored:
            self.notifier.success("Wallet restored!")
        else:
            self._finish(SessionState.RESTORING)
            self.notifier.warning("Failed to restore from seed!", data)
        return restored

    def _finish(self, state: SessionState) -> None:
        """Leave a sub-flow, unless the session already moved elsewhere."""
        session = self.session_manager.session
        if session.state == state:
            self.session_manager.set_state(session.resting_state())

    @staticmethod
    def _emit(callbacks: Iterable[Callable[[str], None]], value: str) -> None:
        for callback in callbacks:
            try:
                callback(value)
            except Exception:  # pylint: disable=broad-except
                _LOGGER.exception("Error in signer callback %s", callback)

    # --- OUTBOUND ---

    async def _send(
        self, tag: CommandTag, args: Iterable[object] = (), failure: str = ""
    ) -> bool:
        """Send a command, turning errors into a user warning."""
        try:
            await self.protocol.send(tag, args)
        except SerialSignerError as err:
            _LOGGER.warning("Failed to send %s: %s", tag.value, err)
            self.notifier.warning(failure or f"Failed to send {tag.value}!", str(err))
            return False
        return True

    async def show_password_prompt(self) -> None:
        """Ask the device to show its password screen."""
        await self._send(CommandTag.PASSWORD, failure="Failed to connect to Hardware Wallet!")

    async def login(self, password: str) -> bool:
        """Send the password and wait for the device's answer.

        Raises:
            RequestInProgressError: If a previous login has not been answered.
        """
        future = self._pending.claim(PendingKind.LOGIN)
        self._credentials.password = SecretStr(password)
        try:
            sent = await self._send(
                CommandTag.PASSWORD,
                [self._credentials.password.get_secret_value()],
                failure="Failed to send password to Hardware Wallet!",
            )
        finally:
            self._credentials.clear()

        if not sent:
            self._pending.resolve(PendingKind.LOGIN, False)
        return await asyncio.shield(future)

    async def logout(self) -> None:
        """Ask the device to forget the password."""
        await self._send(
            CommandTag.PASSWORD_CLEAR, failure="Failed to logout from Hardware Wallet!"
        )

    async def send_psbt(
        self, psbt_base64: str, transaction: Transaction, network: str | None = None
    ) -> bool:
        """Send a PSBT for review and wait for the device to accept it.

        Args:
            psbt_base64: The unsigned PSBT.
            transaction: Outputs the user will confirm one by one.
            network: Network name, defaults to the coordinator's network.

        Returns:
            True if the device accepted the PSBT and confirmation started.

        Raises:
            RequestInProgressError: If a previous PSBT has not been answered.
        """
        future = self._pending.claim(PendingKind.SEND_PSBT)
        self.signing_flow = SigningFlow(transaction=transaction, sending=True)

        if await self._send(
            CommandTag.SEND_PSBT,
            [network or self.network, psbt_base64],
            failure="Failed to send data to serial port!",
        ):
            self.notifier.success("Data sent to serial port device!")
        else:
            self.signing_flow.sending = False
            self._pending.resolve(PendingKind.SEND_PSBT, False)
        return await asyncio.shield(future)

    async def confirm_next(self) -> None:
        """Confirm the current output; after the last one the fee is shown.

        The command is always sent. Output and fee progress is only tracked
        while a transaction is loaded.
        """
        flow = self.signing_flow
        if flow.transaction is None:
            _LOGGER.debug("No transaction loaded, not tracking confirmation")
        else:
            flow.confirmed_output_index += 1
            if flow.confirmed_output_index >= len(flow.transaction.outputs):
                flow.fee_confirmation_pending = True
        await self._send(CommandTag.CONFIRM_NEXT, failure="Failed to confirm output!")

    async def sign_psbt(self) -> None:
        """Ask the device to sign the confirmed PSBT."""
        self.signing_flow.signing = True
        self.session_manager.set_state(SessionState.SIGNING)
        if not await self._send(CommandTag.SIGN_PSBT, failure="Failed to sign PSBT!"):
            self.signing_flow.signing = False

    async def cancel(self) -> None:
        """Ask the device to abort the current operation.

        Local state is left alone; the device is expected to return to its
        logged-in screen.
        """
        await self._send(CommandTag.CANCEL, failure="Failed to send cancel!")

    async def fetch_xpub(
        self, derivation_path: str, network: str | None = None
    ) -> XpubResult:
        """Ask the device for the xpub at a derivation path.

        Returns:
            The xpub and master fingerprint, or an empty result on failure.

        Raises:
            RequestInProgressError: If a previous xpub request has not been
                answered.
        """
        future = self._pending.claim(PendingKind.XPUB)
        self.session_manager.set_state(SessionState.FETCHING_XPUB)
        if not await self._send(
            CommandTag.XPUB,
            [network or self.network, derivation_path],
            failure="Failed to fetch XPub!",
        ):
            self._finish(SessionState.FETCHING_XPUB)
            self._pending.resolve(PendingKind.XPUB, XpubResult())
        return await asyncio.shield(future)

    async def show_seed(self) -> None:
        """Start showing seed words from the first one."""
        self.seed_word_position = FIRST_SEED_WORD
        self.session_manager.set_state(SessionState.SHOWING_SEED)
        await self._send_seed_position()

    async def next_seed_word(self) -> None:
        self.seed_word_position += 1
        await self._send_seed_position()

    async def prev_seed_word(self) -> None:
        self.seed_word_position = max(FIRST_SEED_WORD, self.seed_word_position - 1)
        await self._send_seed_position()

    def hide_seed(self) -> None:
        """Stop showing seed words."""
        self.seed_word_position = FIRST_SEED_WORD
        self._finish(SessionState.SHOWING_SEED)

    async def _send_seed_position(self) -> None:
        await self._send(
            CommandTag.SEED, [self.seed_word_position], failure="Failed to show seed!"
        )

    async def show_wipe_prompt(self) -> None:
        """Ask the device to show its wipe screen."""
        await self._send(CommandTag.WIPE, failure="Failed to connect to Hardware Wallet!")

    async def wipe(self, password: str) -> None:
        """Wipe the device, protecting the new wallet with a password."""
        self._credentials.password = SecretStr(password)
        self.session_manager.set_state(SessionState.WIPING)
        try:
            if not await self._send(
                CommandTag.WIPE,
                [self._credentials.password.get_secret_value()],
                failure="Failed to wipe wallet!",
            ):
                self._finish(SessionState.WIPING)
        finally:
            self._credentials.clear()

    async def restore(self, mnemonic: str, password: str) -> None:
        """Restore the device from a mnemonic, then log in with the password."""
        self._credentials.mnemonic = SecretStr(mnemonic)
        self._credentials.password = SecretStr(password)
        self.session_manager.set_state(SessionState.RESTORING)
        try:
            sent = await self._send(
                CommandTag.RESTORE,
                [self._credentials.mnemonic.get_secret_value()],
                failure="Failed to restore from seed!",
            ) and await self._send(
                CommandTag.PASSWORD,
                [self._credentials.password.get_secret_value()],
                failure="Failed to restore from seed!",
            )
            if not sent:
                self._finish(SessionState.RESTORING)
        finally:
            self._credentials.clear()

    async def help(self) -> None:
        """Ask the device to show its help text."""
        if await self._send(CommandTag.HELP, failure="Failed to ask for help!"):
            self.notifier.success("Check display or console for details!")
