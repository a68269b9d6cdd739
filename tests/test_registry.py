"""
Unit tests for the name and session registries
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from relay_server.registry import NameRegistry, SessionRegistry


class FakeSession:
    def __init__(self, name, ok=True):
        self.name = name
        self.received = []
        self.ok = ok
        self.drop = AsyncMock()

    async def deliver(self, line, timeout=None):
        if self.ok:
            self.received.append(line)
        return self.ok


@pytest.mark.fast
@pytest.mark.asyncio
async def test_claim_and_release():
    names = NameRegistry()
    assert await names.try_claim("alice")
    assert not await names.try_claim("alice")
    assert "alice" in names
    assert await names.release("alice")
    assert "alice" not in names
    assert await names.try_claim("alice")


@pytest.mark.fast
@pytest.mark.asyncio
async def test_names_are_case_sensitive():
    names = NameRegistry()
    assert await names.try_claim("alice")
    assert await names.try_claim("Alice")
    assert len(names) == 2


@pytest.mark.fast
@pytest.mark.asyncio
async def test_release_is_idempotent():
    names = NameRegistry()
    assert not await names.release("nobody")
    await names.try_claim("bob")
    assert await names.release("bob")
    assert not await names.release("bob")


@pytest.mark.fast
@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner():
    names = NameRegistry()
    results = await asyncio.gather(*(names.try_claim("carol", owner=object()) for _ in range(50)))
    assert results.count(True) == 1


@pytest.mark.fast
@pytest.mark.asyncio
async def test_release_by_stale_owner_keeps_new_claim():
    names = NameRegistry()
    old, new = object(), object()
    await names.try_claim("dave", owner=old)
    await names.release("dave", owner=old)
    await names.try_claim("dave", owner=new)
    assert not await names.release("dave", owner=old)
    assert "dave" in names


@pytest.mark.fast
@pytest.mark.asyncio
async def test_add_remove():
    sessions = SessionRegistry(NameRegistry())
    alice = FakeSession("alice")
    await sessions.add(alice)
    assert alice in sessions
    assert await sessions.remove(alice)
    assert not await sessions.remove(alice)
    assert len(sessions) == 0


@pytest.mark.fast
@pytest.mark.asyncio
async def test_broadcast_reaches_everyone_and_honours_exclude():
    sessions = SessionRegistry(NameRegistry())
    alice, bob = FakeSession("alice"), FakeSession("bob")
    await sessions.add(alice)
    await sessions.add(bob)

    assert await sessions.broadcast("alice said : hi") == 2
    assert await sessions.broadcast("only bob", exclude=alice) == 1
    assert alice.received == ["alice said : hi"]
    assert bob.received == ["alice said : hi", "only bob"]


@pytest.mark.fast
@pytest.mark.asyncio
async def test_failed_recipient_is_evicted():
    names = NameRegistry()
    sessions = SessionRegistry(names)
    alice, bob = FakeSession("alice"), FakeSession("bob", ok=False)
    for session in (alice, bob):
        await names.try_claim(session.name, owner=session)
        await sessions.add(session)

    delivered = await sessions.broadcast("hello")
    await asyncio.sleep(0.05)

    assert delivered == 1
    assert alice.received == ["hello"]
    assert bob not in sessions
    assert "bob" not in names
    assert "alice" in names
    bob.drop.assert_awaited_once()


@pytest.mark.fast
@pytest.mark.asyncio
async def test_delivery_exception_is_contained():
    sessions = SessionRegistry(NameRegistry())
    alice, bob = FakeSession("alice"), FakeSession("bob")
    bob.deliver = AsyncMock(side_effect=RuntimeError("boom"))
    await sessions.add(alice)
    await sessions.add(bob)

    assert await sessions.broadcast("hello") == 1
    assert alice.received == ["hello"]
    assert bob not in sessions


@pytest.mark.fast
@pytest.mark.asyncio
async def test_eviction_of_already_removed_session_is_noop():
    names = NameRegistry()
    sessions = SessionRegistry(names)
    bob = FakeSession("bob")
    await names.try_claim("bob", owner=bob)
    await sessions.evict(bob)
    assert "bob" in names
    bob.drop.assert_not_awaited()
