"""Newline framing on top of a signer transport."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Final

from .transport import SignerTransport

_LOGGER = logging.getLogger(__name__)

LINE_TERMINATOR: Final = b"\n"
ENCODING: Final = "utf-8"


class LineFramer:
    """Turns transport bytes into text lines and text lines into transport bytes."""

    def __init__(self, transport: SignerTransport) -> None:
        """Initialize the framer.

        Args:
            transport: The transport carrying the line-oriented protocol.
        """
        self._transport = transport

    async def write_line(self, text: str) -> None:
        """Terminate a line and send it to the device."""
        await self._transport.write(text.encode(ENCODING) + LINE_TERMINATOR)

    async def read_lines(self) -> AsyncIterator[str]:
        """Yield complete lines received from the device.

        Partial data is buffered across reads. The terminator and a trailing
        carriage return are stripped and empty lines are skipped. The iteration
        ends when the transport reports it has been closed; a TransportError
        raised while reading propagates and ends it as well.
        """
        buffer = bytearray()
        while True:
            chunk = await self._transport.read()
            if not chunk:
                if buffer:
                    _LOGGER.debug(
                        "Discarding %d bytes of unterminated data", len(buffer)
                    )
                return

            buffer.extend(chunk)
            while (index := buffer.find(LINE_TERMINATOR)) != -1:
                raw = bytes(buffer[:index]).rstrip(b"\r")
                del buffer[: index + 1]
                if raw:
                    yield raw.decode(ENCODING, errors="replace")
