"""Tests for serial port settings."""

import pytest
import serial
import voluptuous as schemas

from serial_signer.config import validate_config
from serial_signer.const import (
    CONF_BAUD_RATE,
    CONF_FLOW_CONTROL,
    CONF_NETWORK,
    CONF_PARITY,
    CONF_PORT,
)
from serial_signer.core.errors import TransportError
from serial_signer.serial_client import SerialPortTransport


def test_defaults():
    """Test that only the port is required."""
    config = validate_config({CONF_PORT: "/dev/ttyUSB0"})

    assert config == {
        "port": "/dev/ttyUSB0",
        "baud_rate": 9600,
        "data_bits": 8,
        "stop_bits": 1,
        "parity": "none",
        "buffer_size": 255,
        "flow_control": "none",
        "network": "Mainnet",
    }


def test_numeric_strings_are_coerced():
    """Test values typed into a form."""
    config = validate_config({CONF_PORT: "COM5", CONF_BAUD_RATE: "115200"})

    assert config[CONF_BAUD_RATE] == 115200


@pytest.mark.parametrize(
    "config",
    [
        {},
        {CONF_PORT: ""},
        {CONF_PORT: "COM5", CONF_BAUD_RATE: 0},
        {CONF_PORT: "COM5", "data_bits": 6},
        {CONF_PORT: "COM5", "stop_bits": 3},
        {CONF_PORT: "COM5", CONF_PARITY: "mark"},
        {CONF_PORT: "COM5", CONF_FLOW_CONTROL: "software"},
        {CONF_PORT: "COM5", CONF_NETWORK: "Regtest"},
        {CONF_PORT: "COM5", "unknown": 1},
    ],
)
def test_invalid_config(config):
    """Test rejected settings."""
    with pytest.raises(schemas.Invalid):
        validate_config(config)


def test_transport_from_config():
    """Test building a transport without opening the port."""
    config = validate_config(
        {CONF_PORT: "/dev/ttyACM0", CONF_PARITY: "even", CONF_FLOW_CONTROL: "hardware"}
    )

    transport = SerialPortTransport.from_config(config)

    assert transport.port == "/dev/ttyACM0"
    assert not transport.is_connected


async def test_transport_write_when_closed_fails():
    """Test that writes before open are rejected."""
    transport = SerialPortTransport("/dev/ttyACM0")

    with pytest.raises(TransportError):
        await transport.write(b"HELP\n")


async def test_transport_read_when_closed_returns_eof():
    """Test that a closed port reads as end of stream."""
    transport = SerialPortTransport("/dev/ttyACM0")

    assert await transport.read() == b""


async def test_transport_open_failure(monkeypatch):
    """Test that pyserial errors surface as TransportError."""

    def fail(*args, **kwargs):
        raise serial.SerialException("could not open port")

    monkeypatch.setattr(serial, "Serial", fail)
    transport = SerialPortTransport("/dev/does-not-exist")

    with pytest.raises(TransportError):
        await transport.open()

    assert not transport.is_connected
