"""
Per-connection session: name handshake, message relay and teardown.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from relay_server import protocol

logger = logging.getLogger(__name__)

# failures of a single connection; they end the session and nothing else.
# readline() raises ValueError for lines over the stream limit
SESSION_ERRORS = (ConnectionError, OSError, ValueError)


class SessionState(Enum):
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Session:
    """
    Drives one connection through its lifecycle.

    CONNECTING -> HANDSHAKING -> ACTIVE -> CLOSING -> CLOSED

    The session owns its Connection. The name and session registries are
    shared with every other session.
    """

    def __init__(self, connection, names, sessions, max_name_attempts=None):
        """
        Initialize session.

        Args:
            connection: Connection for the accepted client
            names: Shared NameRegistry
            sessions: Shared SessionRegistry
            max_name_attempts: Rejected names allowed before giving up (None = unbounded)
        """
        self.connection = connection
        self.names = names
        self.sessions = sessions
        self.max_name_attempts = max_name_attempts
        self.name: Optional[str] = None
        self.state = SessionState.CONNECTING

    def __repr__(self):
        return f"<Session {self.name or self.connection.format_addr()} {self.state.value}>"

    async def deliver(self, line, timeout=None) -> bool:
        """Queue one line for this session's client."""
        return await self.connection.send(line, timeout=timeout)

    async def drop(self):
        """Close the connection; the read loop then ends and teardown follows."""
        await self.connection.close()

    async def run(self):
        """Run the session to completion. Never raises for connection failures."""
        try:
            if await self.handshake():
                await self.activate()
                await self.relay()
        except SESSION_ERRORS as e:
            logger.error(f"ERROR: {self!r} has connection error: {e}")
        finally:
            await self.teardown()

    async def handshake(self) -> bool:
        """
        Negotiate a unique name. Replies Invalid for every rejected proposal.

        Returns:
            True once a name was claimed, False if the client went away first.
        """
        self.state = SessionState.HANDSHAKING
        rejected = 0
        while True:
            proposed = await self.connection.read_line()
            if proposed is None:
                logger.info(f"{self.connection.format_addr()} disconnected during handshake")
                return False
            if protocol.is_acceptable_name(proposed) and await self.names.try_claim(proposed, owner=self):
                self.name = proposed
                await self.connection.send(protocol.VALID)
                return True

            logger.debug(f"Rejected name {proposed!r} from {self.connection.format_addr()}")
            if not await self.connection.send(protocol.INVALID):
                return False
            rejected += 1
            if self.max_name_attempts is not None and rejected >= self.max_name_attempts:
                logger.info(f"{self.connection.format_addr()} ran out of name attempts")
                return False

    async def activate(self):
        """Register and announce the session."""
        self.state = SessionState.ACTIVE
        await self.sessions.add(self)
        notice = protocol.connected_notice(self.name)
        logger.info(notice)
        await self.sessions.broadcast(notice)

    async def relay(self):
        """Broadcast every line until exit or EOF. The sender gets its own echo."""
        while True:
            line = await self.connection.read_line()
            if line is None:
                logger.info(f"{self.name} disconnected (EOF)")
                break
            if line == protocol.EXIT:
                break
            if not line:
                continue
            message = protocol.chat_line(self.name, line)
            logger.info(message)
            await self.sessions.broadcast(message)

    async def teardown(self):
        """Leave both registries, announce departure and close. Runs once."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self.state = SessionState.CLOSING
        # a cancellation here (server shutdown) must not skip the release
        leave = asyncio.ensure_future(self._leave())
        try:
            await asyncio.shield(leave)
        finally:
            if not leave.done():
                await asyncio.wait({leave})
            await self.connection.close()
            self.state = SessionState.CLOSED

    async def _leave(self):
        await self.sessions.remove(self)
        if self.name is not None:
            await self.names.release(self.name, owner=self)
            notice = protocol.disconnected_notice(self.name)
            logger.info(notice)
            await self.sessions.broadcast(notice)
