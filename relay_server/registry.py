"""
Shared membership state: claimed names and live sessions.

Both registries are shared by every session task, so all mutation happens
under an asyncio.Lock.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class NameRegistry:
    """Names currently in use, each mapped to the session that claimed it."""

    def __init__(self):
        self._owners = {}  # name: owner
        self._lock = asyncio.Lock()

    def __contains__(self, name):
        return name in self._owners

    def __len__(self):
        return len(self._owners)

    async def try_claim(self, name, owner=None) -> bool:
        """Record `name` as in use and return True, unless it is already taken."""
        async with self._lock:
            if name in self._owners:
                return False
            self._owners[name] = owner
            return True

    async def release(self, name, owner=None) -> bool:
        """
        Free `name`. Releasing an unknown name is a no-op.

        When `owner` is given the name is only freed if that owner still
        holds it, so a late release cannot free a name claimed since.
        """
        async with self._lock:
            if name not in self._owners:
                return False
            if owner is not None and self._owners[name] is not owner:
                return False
            del self._owners[name]
            return True


class SessionRegistry:
    """
    Live sessions and the broadcast fan-out.

    Features:
    - Atomic add/remove
    - Snapshot-based broadcast, delivered to all recipients concurrently
    - Eviction of recipients whose delivery fails
    """

    def __init__(self, names, send_timeout=2.0):
        """
        Initialize registry.

        Args:
            names: NameRegistry holding the names of the registered sessions
            send_timeout: Seconds a broadcast waits on one recipient's full queue
        """
        self.names = names
        self.send_timeout = send_timeout
        self._sessions = {}  # session: None, kept as an insertion-ordered set
        self._lock = asyncio.Lock()
        self.background_tasks = set()

    def __contains__(self, session):
        return session in self._sessions

    def __len__(self):
        return len(self._sessions)

    async def add(self, session):
        async with self._lock:
            self._sessions[session] = None

    async def remove(self, session) -> bool:
        async with self._lock:
            if session in self._sessions:
                del self._sessions[session]
                return True
        return False

    async def snapshot(self):
        async with self._lock:
            return list(self._sessions)

    async def _deliver(self, session, message):
        try:
            return session, await session.deliver(message, timeout=self.send_timeout)
        except Exception as e:
            logger.error(f"Delivery to {session.name} failed: {e}")
            return session, False

    async def broadcast(self, message, exclude=None) -> int:
        """
        Deliver `message` to every registered session except `exclude`.

        Returns:
            Number of sessions the message was delivered to
        """
        recipients = [s for s in await self.snapshot() if s is not exclude]
        logger.debug(f"broadcast(): {message}")
        results = await asyncio.gather(*(self._deliver(s, message) for s in recipients))

        failed = [session for session, ok in results if not ok]
        for session in failed:
            await self.evict(session)
        return len(results) - len(failed)

    async def evict(self, session):
        """Drop a session whose outbound channel failed and close its connection."""
        if not await self.remove(session):
            return
        logger.warning(f"Evicting {session.name}: outbound channel failed")
        if session.name is not None:
            await self.names.release(session.name, owner=session)
        task = asyncio.create_task(session.drop())
        self.background_tasks.add(task)
        task.add_done_callback(self._task_done_callback)

    def _task_done_callback(self, task):
        """Called when background task completes"""
        self.background_tasks.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Background task failed: {e}")
