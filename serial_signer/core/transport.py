"""Interface for the byte transport between host and signing device."""

from abc import ABC, abstractmethod


class SignerTransport(ABC):
    """Abstract base class for signer transports."""

    @abstractmethod
    async def open(self) -> None:
        """Open the connection to the device.

        Raises:
            TransportError: If the connection cannot be opened.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection to the device.

        Raises:
            TransportError: If the connection cannot be closed cleanly.
        """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is currently open."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write raw bytes to the device.

        Args:
            data: The bytes to write.

        Raises:
            TransportError: If the write fails.
        """

    @abstractmethod
    async def read(self) -> bytes:
        """Read the next chunk of bytes from the device.

        Returns:
            The bytes received, or an empty bytes object once the connection
            has been closed.

        Raises:
            TransportError: If the read fails.
        """
