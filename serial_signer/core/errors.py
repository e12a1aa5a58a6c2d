"""Errors raised by the serial signer protocol layer."""

from __future__ import annotations


class SerialSignerError(Exception):
    """Base class for serial signer errors."""


class TransportError(SerialSignerError):
    """Raised when the serial transport fails to open, close, read or write."""


class ProtocolError(SerialSignerError):
    """Raised for malformed frames, bad keys and decryption failures."""


class SecureSessionError(ProtocolError):
    """Raised when an encrypted operation runs without a shared secret."""

    def __init__(self, message: str = "Secure session not established!") -> None:
        super().__init__(message)


class RequestInProgressError(SerialSignerError):
    """Raised when a request of the same kind is still awaiting its response."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"A {kind} request is already in progress")
