"""
Unit tests for the chunked transport.

Tests the double base64 framing, sequential write-without-response delivery,
abort-on-failure behavior and transport statistics.
"""

import base64
from unittest.mock import AsyncMock, Mock, patch

import pytest

from waypoint_link.chunked_transport import (
    ChunkedTransport,
    encode_chunk,
    frame_payload,
    reassemble_frames,
    split_payload,
)
from waypoint_link.errors import ChunkWriteFailed
from waypoint_link.radio_driver import CharacteristicRef, DeviceDescriptor


EXAMPLE_WIRE = "WP1:37.78825,-122.4324;WP2:37.789,-122.4325"
EXAMPLE_PAYLOAD = base64.b64encode(EXAMPLE_WIRE.encode()).decode()


@pytest.fixture
def characteristic():
    return CharacteristicRef("svc", "char", writable_without_response=True)


@pytest.fixture
def handle():
    h = Mock()
    h.device = DeviceDescriptor("AA:BB:CC:DD:EE:01", "LoRaV32")
    h.raw = Mock()
    return h


@pytest.fixture
def stack():
    s = Mock()
    s.driver = Mock()
    s.driver.write_without_response = AsyncMock()
    return s


class TestFraming:

    def test_split_payload(self):
        assert split_payload("a" * 45) == ["a" * 20, "a" * 20, "a" * 5]

    def test_split_exact_multiple(self):
        assert split_payload("b" * 40) == ["b" * 20, "b" * 20]

    def test_split_empty(self):
        assert split_payload("") == []

    def test_split_rejects_bad_size(self):
        with pytest.raises(ValueError):
            split_payload("abc", 0)

    def test_chunk_is_base64_of_chunk_text(self):
        assert encode_chunk("V1AxOjM3Ljc4ODI1LC0x") == b"VjFBeE9qTTNMamM0T0RJMUxDMHg="

    def test_frame_payload(self):
        frames = frame_payload(EXAMPLE_PAYLOAD)

        assert len(frames) == -(-len(EXAMPLE_PAYLOAD) // 20)
        assert all(isinstance(f, bytes) for f in frames)
        assert base64.b64decode(frames[0]).decode() == EXAMPLE_PAYLOAD[:20]

    def test_reassemble_frames(self):
        assert reassemble_frames(frame_payload(EXAMPLE_PAYLOAD)) == EXAMPLE_WIRE

    def test_reassemble_accepts_text_frames(self):
        frames = [f.decode("ascii") for f in frame_payload(EXAMPLE_PAYLOAD)]
        assert reassemble_frames(frames) == EXAMPLE_WIRE


class TestChunkedTransport:

    @pytest.mark.asyncio
    async def test_writes_every_chunk_in_order(self, stack, handle, characteristic):
        transport = ChunkedTransport(stack, chunk_size=20, chunk_delay=0)

        count = await transport.transmit(handle, characteristic, EXAMPLE_PAYLOAD)

        calls = stack.driver.write_without_response.await_args_list
        assert count == len(calls) == len(frame_payload(EXAMPLE_PAYLOAD))
        for call, frame in zip(calls, frame_payload(EXAMPLE_PAYLOAD)):
            assert call.args == (handle.raw, "svc", "char", frame)

    @pytest.mark.asyncio
    async def test_delay_between_writes(self, stack, handle, characteristic):
        transport = ChunkedTransport(stack, chunk_size=20, chunk_delay=0.05)

        with patch("waypoint_link.chunked_transport.asyncio.sleep", new=AsyncMock()) as sleep:
            count = await transport.transmit(handle, characteristic, EXAMPLE_PAYLOAD)

        assert sleep.await_count == count
        sleep.assert_awaited_with(0.05)

    @pytest.mark.asyncio
    async def test_write_failure_aborts(self, stack, handle, characteristic):
        stack.driver.write_without_response.side_effect = [None, OSError("link lost"), None]
        transport = ChunkedTransport(stack, chunk_size=20, chunk_delay=0)

        with pytest.raises(ChunkWriteFailed) as exc_info:
            await transport.transmit(handle, characteristic, EXAMPLE_PAYLOAD)

        assert exc_info.value.index == 1
        assert "chunk 2/" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)
        # Nothing is written after the failed chunk
        assert stack.driver.write_without_response.await_count == 2

    @pytest.mark.asyncio
    async def test_statistics(self, stack, handle, characteristic):
        transport = ChunkedTransport(stack, chunk_size=20, chunk_delay=0)
        await transport.transmit(handle, characteristic, EXAMPLE_PAYLOAD)

        stack.driver.write_without_response.side_effect = OSError("boom")
        with pytest.raises(ChunkWriteFailed):
            await transport.transmit(handle, characteristic, EXAMPLE_PAYLOAD)

        stats = transport.get_statistics()
        frames = frame_payload(EXAMPLE_PAYLOAD)
        assert stats["transmissions"] == 1
        assert stats["failures"] == 1
        assert stats["chunks_sent"] == len(frames)
        assert stats["bytes_sent"] == sum(len(f) for f in frames)

    @pytest.mark.asyncio
    async def test_uses_current_driver(self, stack, handle, characteristic):
        """The stack may be recreated between operations; writes go to the live driver."""
        transport = ChunkedTransport(stack, chunk_size=20, chunk_delay=0)
        old_driver = stack.driver

        stack.driver = Mock()
        stack.driver.write_without_response = AsyncMock()
        await transport.transmit(handle, characteristic, "short")

        old_driver.write_without_response.assert_not_awaited()
        stack.driver.write_without_response.assert_awaited_once()
