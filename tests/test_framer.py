"""Tests for newline framing over the transport."""

import pytest

from serial_signer.core.errors import TransportError
from serial_signer.core.framer import LineFramer

from .conftest import FakeTransport


async def collect(framer: LineFramer) -> list[str]:
    return [line async for line in framer.read_lines()]


async def test_write_line_appends_terminator():
    """Test that outgoing lines end with a newline."""
    transport = FakeTransport()
    framer = LineFramer(transport)

    await framer.write_line("DH_EXCHANGE abcd")

    assert transport.written == [b"DH_EXCHANGE abcd\n"]


async def test_read_lines_buffers_across_chunks():
    """Test that lines split over several reads are reassembled."""
    transport = FakeTransport()
    for chunk in (b"LOG he", b"llo\nLOG wor", b"ld\n", b"LOG a\nLOG b\n", b""):
        transport.feed(chunk)

    assert await collect(LineFramer(transport)) == [
        "LOG hello",
        "LOG world",
        "LOG a",
        "LOG b",
    ]


async def test_read_lines_strips_carriage_return_and_skips_blank_lines():
    """Test CRLF endings and empty lines."""
    transport = FakeTransport()
    transport.feed(b"LOG one\r\n\r\n\nLOG two\r\n")
    transport.feed(b"")

    assert await collect(LineFramer(transport)) == ["LOG one", "LOG two"]


async def test_read_lines_ends_on_close_and_drops_partial_line():
    """Test that closing the transport ends the sequence without error."""
    transport = FakeTransport()
    transport.feed(b"LOG done\nLOG unterminated")
    transport.feed(b"")

    assert await collect(LineFramer(transport)) == ["LOG done"]


async def test_read_lines_propagates_transport_errors():
    """Test that a read failure ends the sequence with TransportError."""
    transport = FakeTransport()
    transport.feed(b"LOG before\n")
    transport.fail_read(TransportError("device unplugged"))
    lines = []

    with pytest.raises(TransportError):
        async for line in LineFramer(transport).read_lines():
            lines.append(line)

    assert lines == ["LOG before"]


async def test_read_lines_replaces_invalid_utf8():
    """Test that undecodable bytes do not break the stream."""
    transport = FakeTransport()
    transport.feed(b"LOG \xff\n")
    transport.feed(b"")

    assert await collect(LineFramer(transport)) == ["LOG �"]
