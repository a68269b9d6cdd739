"""
Unit tests for the client connection wrapper
"""
import asyncio
import pytest
from unittest.mock import Mock, AsyncMock

from relay_server.connection import Connection


def make_writer():
    writer = Mock()
    writer.get_extra_info.return_value = ('127.0.0.1', 1678)
    writer.drain = AsyncMock()
    writer.is_closing.return_value = False
    writer.wait_closed = AsyncMock()
    return writer


def make_reader(*lines):
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data(line)
    reader.feed_eof()
    return reader


@pytest.mark.fast
def test_format_addr():
    connection = Connection(Mock(), make_writer())
    assert connection.format_addr() == "127.0.0.1:1678"


@pytest.mark.fast
@pytest.mark.asyncio
async def test_read_line_drops_only_line_terminator():
    connection = Connection(make_reader(b"alice\r\n", b"  hi there \n", b"exit \n"), make_writer())
    assert await connection.read_line() == "alice"
    assert await connection.read_line() == "  hi there "
    assert await connection.read_line() == "exit "
    assert await connection.read_line() is None


@pytest.mark.fast
@pytest.mark.asyncio
async def test_sender_writes_lines_in_order():
    writer = make_writer()
    connection = Connection(Mock(), writer)
    connection.start()
    assert await connection.send("Valid")
    assert await connection.send("alice connected.")
    await asyncio.wait_for(connection.queue.join(), timeout=1.0)
    assert [c.args[0] for c in writer.write.call_args_list] == [b"Valid\n", b"alice connected.\n"]
    await connection.close()


@pytest.mark.fast
@pytest.mark.asyncio
async def test_write_error_marks_connection_broken():
    writer = make_writer()
    writer.drain = AsyncMock(side_effect=BrokenPipeError("gone"))
    connection = Connection(Mock(), writer)
    task = connection.start()
    await connection.send("hello")
    await asyncio.wait_for(task, timeout=1.0)
    assert connection.broken
    writer.close.assert_called()
    assert not await connection.send("again")


@pytest.mark.fast
@pytest.mark.asyncio
async def test_send_times_out_on_full_queue():
    connection = Connection(Mock(), make_writer(), queue_size=1)
    # no sender task, nothing drains the queue
    assert await connection.send("one", timeout=0.1)
    assert not await connection.send("two", timeout=0.1)


@pytest.mark.fast
@pytest.mark.asyncio
async def test_close_flushes_pending_lines_and_is_idempotent():
    writer = make_writer()
    connection = Connection(Mock(), writer)
    connection.start()
    await connection.send("bye")
    await connection.close()
    await connection.close()
    writer.write.assert_called_once_with(b"bye\n")
    writer.close.assert_called_once()
    assert connection.sender_task.done()
    assert not await connection.send("late")


@pytest.mark.fast
@pytest.mark.asyncio
async def test_close_with_full_queue_cancels_sender():
    writer = make_writer()
    stalled = asyncio.Event()

    async def never_drains():
        await stalled.wait()

    writer.drain = never_drains
    connection = Connection(Mock(), writer, queue_size=1)
    connection.start()
    await connection.send("first")
    await asyncio.sleep(0.05)
    await connection.send("second", timeout=0.1)
    await asyncio.wait_for(connection.close(), timeout=2.0)
    assert connection.sender_task.cancelled()
