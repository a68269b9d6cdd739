"""
Client connection management.

Wraps one accepted stream pair: line-based reads, and an outbound queue
drained by a dedicated sender task so a stalled peer only ever blocks
its own writes.
"""

import asyncio
import logging
from typing import Optional

from relay_server.protocol import decode_line, encode_line

logger = logging.getLogger(__name__)

WRITE_ERRORS = (ConnectionResetError, BrokenPipeError, ConnectionAbortedError, OSError)


class Connection:
    """
    Represents a single accepted TCP connection.

    Manages:
    - Line reads from the stream reader
    - Outbound queue and sender task
    - Closing the transport
    """

    def __init__(self, reader, writer, queue_size=500):
        """
        Initialize connection.

        Args:
            reader: asyncio StreamReader for this client
            writer: asyncio StreamWriter for this client
            queue_size: Maximum number of lines waiting to be written
        """
        self.reader = reader
        self.writer = writer
        self.addr = writer.get_extra_info("peername")
        self.queue = asyncio.Queue(maxsize=queue_size)
        self.sender_task: Optional[asyncio.Task] = None
        self.broken = False
        self.closed = False

    def format_addr(self):
        """Format address as IP:Port string."""
        if not self.addr:
            return "unknown"
        return f"{self.addr[0]}:{self.addr[1]}"

    def start(self):
        """Spawn the sender task."""
        if self.sender_task is None:
            self.sender_task = asyncio.create_task(self.sender())
        return self.sender_task

    async def read_line(self) -> Optional[str]:
        """
        Read the next line from the peer.

        Returns:
            The decoded line without surrounding whitespace, or None on EOF.
        """
        data = await self.reader.readline()
        if not data:
            return None
        return decode_line(data)

    async def send(self, line, timeout=None) -> bool:
        """
        Queue one line for the sender task.

        Returns False when the connection is closed or broken, or when the
        queue stays full for longer than `timeout` seconds.
        """
        if self.closed or self.broken:
            return False
        try:
            await asyncio.wait_for(self.queue.put(line), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Outbound queue full for {self.format_addr()}")
            return False
        return True

    async def sender(self):
        """
        Main sender loop.

        Pulls lines from the queue and writes them to the peer until the
        poison pill (None) is processed or a write fails.
        """
        try:
            while True:
                line = await self.queue.get()
                if line is None:
                    self.queue.task_done()
                    break
                try:
                    self.writer.write(encode_line(line))
                    await self.writer.drain()
                except WRITE_ERRORS as e:
                    logger.error(f"Error@{self.format_addr()} in sender(): {e}")
                    self.broken = True
                    self.queue.task_done()
                    # the reader sees EOF once the transport is gone
                    self.writer.close()
                    break
                self.queue.task_done()
        finally:
            logger.debug(f"Sender cleanup for {self.format_addr()}")

    async def close(self, timeout=5.0):
        """
        Flush pending lines and close the transport. Safe to call more than once.
        """
        if self.closed:
            return
        self.closed = True
        task = self.sender_task
        if task is not None and not task.done():
            try:
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.warning(f"Queue full for {self.format_addr()}, dropping pending lines")
                task.cancel()
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                task.cancel()
                await asyncio.wait({task})
            if task.cancelled():
                # peer is not reading, a graceful close would wait on the unsent buffer
                self.writer.transport.abort()
                return

        if not self.writer.is_closing():
            self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out closing {self.format_addr()}, aborting transport")
            self.writer.transport.abort()
        except WRITE_ERRORS as e:
            logger.debug(f"Error while closing {self.format_addr()}: {e}")
