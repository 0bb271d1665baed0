"""Tests for the link reader and writer."""

import asyncio

import pytest

from modules.espflash.errors import ReadTimeoutOrError, WriteFailure, WriteTimeout
from modules.espflash.link import LinkReader, LinkWriter

from conftest import FakeTransport


class TestLinkWriter:
    """Deadlines and classification on writes."""

    @pytest.mark.asyncio
    async def test_write_counts_bytes(self):
        transport = FakeTransport()
        writer = LinkWriter(transport, write_timeout=1.0)

        await writer.write(b"\xc0\x00")
        await writer.write(b"abc")

        assert transport.writes == [b"\xc0\x00", b"abc"]
        assert writer.bytes_written == 5

    @pytest.mark.asyncio
    async def test_deadline_raises_write_timeout(self):
        transport = FakeTransport()
        transport.hold_writes()
        writer = LinkWriter(transport, write_timeout=0.01)

        with pytest.raises(WriteTimeout):
            await writer.write(b"x")

        assert writer.bytes_written == 0

    @pytest.mark.asyncio
    async def test_transport_error_becomes_write_failure(self):
        writer = LinkWriter(FakeTransport(fail_on_write=1, write_error=OSError("EIO")))

        with pytest.raises(WriteFailure) as exc_info:
            await writer.write(b"x")

        assert isinstance(exc_info.value.original_error, OSError)

    @pytest.mark.asyncio
    async def test_closed_writer_refuses_writes(self):
        transport = FakeTransport()
        writer = LinkWriter(transport)

        await writer.close()
        await writer.close()

        assert writer.closed
        assert transport.calls == ["flush"]
        with pytest.raises(WriteFailure):
            await writer.write(b"x")


class TestLinkReader:
    """Timeouts and the drain loop."""

    @pytest.mark.asyncio
    async def test_read_returns_data(self):
        transport = FakeTransport()
        transport.feed(b"hello")

        assert await LinkReader(transport).read() == b"hello"

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        reader = LinkReader(FakeTransport(), read_timeout=0.01)

        with pytest.raises(ReadTimeoutOrError) as exc_info:
            await reader.read()

        assert exc_info.value.timed_out
        assert exc_info.value.timeout_seconds == 0.01

    @pytest.mark.asyncio
    async def test_read_error(self):
        transport = FakeTransport()
        transport.feed_error(OSError("device lost"))

        with pytest.raises(ReadTimeoutOrError) as exc_info:
            await LinkReader(transport).read()

        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_drain_skips_timeouts_until_error(self):
        transport = FakeTransport()
        reader = LinkReader(transport, read_timeout=0.01)
        errors = []
        task = asyncio.create_task(reader.drain(errors.append))

        await asyncio.sleep(0.05)
        transport.feed(b"abcd")
        transport.feed(b"")
        transport.feed_error(OSError("gone"))
        await asyncio.wait_for(task, 1.0)

        assert reader.bytes_received == 4
        assert len(errors) == 1
        assert str(errors[0].original_error) == "gone"

    @pytest.mark.asyncio
    async def test_drain_stops_on_cancel(self):
        reader = LinkReader(FakeTransport())
        task = asyncio.create_task(reader.drain(lambda e: None))
        await asyncio.sleep(0)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
