"""Host-side protocol for serial hardware signing devices."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .config import validate_config
from .const import CONF_NETWORK
from .coordinator import SerialSignerCoordinator
from .core.session_manager import SignerSessionManager
from .notifier import LoggingNotifier, SignerNotifier
from .serial_client import SerialPortTransport

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "LoggingNotifier",
    "SerialPortTransport",
    "SerialSignerCoordinator",
    "SignerNotifier",
    "async_connect",
]


async def async_connect(
    config: Mapping[str, Any], notifier: SignerNotifier | None = None
) -> SerialSignerCoordinator:
    """Open a serial signer connection from user settings.

    The key exchange is started but not awaited; use
    ``coordinator.wait_for_secure_session()`` before sending commands.

    Args:
        config: Serial settings, see ``serial_signer.config.CONFIG_SCHEMA``.
        notifier: Receives user-facing events.

    Returns:
        The coordinator, connected unless the port could not be opened.
    """
    validated = validate_config(config)

    session_manager = SignerSessionManager()
    transport = SerialPortTransport.from_config(validated)

    coordinator = SerialSignerCoordinator(
        transport,
        session_manager,
        notifier=notifier,
        network=validated[CONF_NETWORK],
    )

    if not await coordinator.connect():
        _LOGGER.error("Failed to connect to signer on %s", transport.port)

    return coordinator
