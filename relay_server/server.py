"""
Main chat server implementation.

Accepts connections, runs one session task per client, and owns the
shared name and session registries.
"""

import argparse
import asyncio
import logging
import sys

from relay_server.connection import Connection
from relay_server.registry import NameRegistry, SessionRegistry
from relay_server.session import Session

logger = logging.getLogger(__name__)

DEFAULT_PORT = 12001


class Server:
    """
    Async chat relay server.

    Features:
    - Unique name per connection
    - Broadcast of every chat line to all named clients
    - Eviction of clients whose outbound channel fails
    """

    def __init__(self, port=DEFAULT_PORT, host="0.0.0.0", queue_size=500, send_timeout=2.0,
                 max_name_attempts=None):
        """
        Initialize server.

        Args:
            port: Port to listen on (0 picks a free one)
            host: Interface to bind
            queue_size: Outbound queue size per client
            send_timeout: Seconds a broadcast waits on one client's full queue
            max_name_attempts: Rejected names allowed per handshake (None = unbounded)
        """
        self.host = host
        self.port = port
        self.queue_size = queue_size
        self.max_name_attempts = max_name_attempts
        self.names = NameRegistry()
        self.sessions = SessionRegistry(self.names, send_timeout=send_timeout)
        self.workers = set()
        self.address = None
        self._server = None
        self._stopped = None

    async def client_handler(self, reader, writer):
        """Handle a single client connection."""
        task = asyncio.current_task()
        self.workers.add(task)
        try:
            connection = Connection(reader, writer, queue_size=self.queue_size)
            logger.info(f"Client Connected: {connection.format_addr()}")
            connection.start()
            session = Session(connection, self.names, self.sessions,
                              max_name_attempts=self.max_name_attempts)
            await session.run()
        except Exception as e:
            logger.error(f"ERROR: Unexpected error: {e}")
            writer.close()
        finally:
            self.workers.discard(task)

    async def start(self):
        """Bind the listening socket. Raises OSError if the address is unavailable."""
        self._stopped = asyncio.Event()
        self._server = await asyncio.start_server(
            self.client_handler,
            self.host,
            self.port
        )
        self.address = self._server.sockets[0].getsockname()
        logger.info(f"Server running on {self.address}")
        return self.address

    async def stop(self):
        """Stop listening and end every running session."""
        server, self._server = self._server, None
        if server is None:
            return
        self._stopped.set()
        server.close()
        workers = list(self.workers)
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        await asyncio.gather(*list(self.sessions.background_tasks), return_exceptions=True)
        await server.wait_closed()
        logger.info("Server stopped")

    async def run_server(self):
        await self.start()
        try:
            # serve_forever() waits for open client connections when cancelled,
            # stop() has to end the sessions first
            await self._stopped.wait()
        finally:
            await self.stop()


def main():
    """Entry point for server"""
    parser = argparse.ArgumentParser(description="Chat Relay Server")
    parser.add_argument('--host', default='0.0.0.0', help='Interface to bind')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help='Port to listen on')
    parser.add_argument('--queue-size', type=int, default=500, help='Outbound queue size per client')
    parser.add_argument('--send-timeout', type=float, default=2.0,
                        help='Seconds to wait on a full client queue before evicting it')
    parser.add_argument('--max-name-attempts', type=int, default=None,
                        help='Rejected names allowed per handshake (default: unbounded)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    # setup logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    server = Server(
        args.port,
        host=args.host,
        queue_size=args.queue_size,
        send_timeout=args.send_timeout,
        max_name_attempts=args.max_name_attempts,
    )
    try:
        asyncio.run(server.run_server())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except OSError as e:
        logger.critical(f"Could not listen on {args.host}:{args.port}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
