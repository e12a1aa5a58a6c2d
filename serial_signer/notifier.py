"""User notification seam for signer events."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)


class SignerNotifier(ABC):
    """Receives user-facing success and warning events.

    Implementations are fire-and-forget: nothing they return changes
    the protocol state.
    """

    @abstractmethod
    def success(self, message: str, caption: str | None = None) -> None:
        """Report a successful outcome."""

    @abstractmethod
    def warning(self, message: str, caption: str | None = None) -> None:
        """Report a failure or a negative answer from the device."""


class LoggingNotifier(SignerNotifier):
    """Notifier that writes events to the library logger."""

    def success(self, message: str, caption: str | None = None) -> None:
        if caption:
            _LOGGER.info("%s (%s)", message, caption)
        else:
            _LOGGER.info("%s", message)

    def warning(self, message: str, caption: str | None = None) -> None:
        if caption:
            _LOGGER.warning("%s (%s)", message, caption)
        else:
            _LOGGER.warning("%s", message)
