"""pyserial implementation of the signer transport."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Final

import serial

from .const import (
    CONF_BAUD_RATE,
    CONF_BUFFER_SIZE,
    CONF_DATA_BITS,
    CONF_FLOW_CONTROL,
    CONF_PARITY,
    CONF_PORT,
    CONF_STOP_BITS,
    DEFAULT_BAUD_RATE,
    DEFAULT_BUFFER_SIZE,
)
from .core.errors import TransportError
from .core.transport import SignerTransport

_LOGGER = logging.getLogger(__name__)

# Read timeout so a blocked reader notices when the port is closed
READ_TIMEOUT: Final = 0.1

_PARITY = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
}
_STOP_BITS = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}
_DATA_BITS = {7: serial.SEVENBITS, 8: serial.EIGHTBITS}


class SerialPortTransport(SignerTransport):
    """Serial port transport backed by pyserial.

    pyserial is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        data_bits: int = 8,
        stop_bits: int = 1,
        parity: str = "none",
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        hardware_flow_control: bool = False,
    ) -> None:
        """Initialize the transport.

        Args:
            port: The serial device, e.g. ``/dev/ttyUSB0`` or ``COM5``.
            baud_rate: Line speed.
            data_bits: 7 or 8.
            stop_bits: 1 or 2.
            parity: ``none``, ``even`` or ``odd``.
            buffer_size: Largest chunk returned by a single read.
            hardware_flow_control: Enable RTS/CTS.
        """
        self._port = port
        self._baud_rate = baud_rate
        self._data_bits = data_bits
        self._stop_bits = stop_bits
        self._parity = parity
        self._buffer_size = buffer_size
        self._hardware_flow_control = hardware_flow_control
        self._serial: serial.Serial | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> SerialPortTransport:
        """Build a transport from validated serial settings."""
        return cls(
            port=config[CONF_PORT],
            baud_rate=config[CONF_BAUD_RATE],
            data_bits=config[CONF_DATA_BITS],
            stop_bits=config[CONF_STOP_BITS],
            parity=config[CONF_PARITY],
            buffer_size=config[CONF_BUFFER_SIZE],
            hardware_flow_control=config[CONF_FLOW_CONTROL] == "hardware",
        )

    @property
    def port(self) -> str:
        """The serial device name."""
        return self._port

    @property
    def is_connected(self) -> bool:
        """Check if the serial port is open."""
        return self._serial is not None and self._serial.is_open

    async def open(self) -> None:
        """Open the serial port."""
        if self.is_connected:
            return

        _LOGGER.debug("Opening serial port %s at %d baud", self._port, self._baud_rate)
        try:
            self._serial = await asyncio.to_thread(
                serial.Serial,
                self._port,
                baudrate=self._baud_rate,
                bytesize=_DATA_BITS[self._data_bits],
                parity=_PARITY[self._parity],
                stopbits=_STOP_BITS[self._stop_bits],
                timeout=READ_TIMEOUT,
                rtscts=self._hardware_flow_control,
            )
        except (serial.SerialException, ValueError) as err:
            self._serial = None
            raise TransportError(f"Cannot open serial port {self._port}: {err}") from err

        _LOGGER.info("Opened serial port %s", self._port)

    async def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            return

        _LOGGER.debug("Closing serial port %s", self._port)
        port, self._serial = self._serial, None
        try:
            await asyncio.to_thread(port.close)
        except serial.SerialException as err:
            raise TransportError(f"Cannot close serial port {self._port}: {err}") from err

    async def write(self, data: bytes) -> None:
        """Write bytes to the serial port and flush them."""
        port = self._serial
        if port is None or not port.is_open:
            raise TransportError("Cannot write: serial port is not open")

        try:
            await asyncio.to_thread(self._write_blocking, port, data)
        except serial.SerialException as err:
            raise TransportError(f"Error writing to serial port: {err}") from err

    async def read(self) -> bytes:
        """Wait for the next chunk of bytes, or return b"" once closed."""
        try:
            return await asyncio.to_thread(self._read_blocking)
        except serial.SerialException as err:
            raise TransportError(f"Error reading from serial port: {err}") from err

    @staticmethod
    def _write_blocking(port: serial.Serial, data: bytes) -> None:
        port.write(data)
        port.flush()

    def _read_blocking(self) -> bytes:
        while (port := self._serial) is not None and port.is_open:
            chunk = port.read(min(max(port.in_waiting, 1), self._buffer_size))
            if chunk:
                return chunk
        return b""
