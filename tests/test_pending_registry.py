import asyncio

import pytest

from ddpclient.core.MessageTypes import MessageKind
from ddpclient.core.PendingRegistry import PendingRegistry
from shared.errors import DuplicateRegistration, PreconditionViolation, TransportFailed


def new_sink():
    return asyncio.get_running_loop().create_future()


@pytest.mark.asyncio
async def test_resolve_is_single_fire():
    registry = PendingRegistry()
    entry = registry.register(MessageKind.RESULT, "4", new_sink())

    assert registry.resolve_matching("result", "4") is entry
    assert registry.resolve_matching("result", "4") is None
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_same_id_is_disambiguated_by_kind():
    registry = PendingRegistry()
    method = registry.register(MessageKind.RESULT, "2", new_sink())
    sub_ready = registry.register(MessageKind.ADDED, "2", new_sink())

    assert registry.resolve_matching("added", "2") is sub_ready
    assert registry.resolve_matching("result", "2") is method


@pytest.mark.asyncio
async def test_wrong_id_does_not_match():
    registry = PendingRegistry()
    registry.register(MessageKind.RESULT, "7", new_sink())

    assert registry.resolve_matching("result", "8") is None
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_inbound_without_id_matches_first_of_kind():
    registry = PendingRegistry(duplicate_policy="queue")
    first = registry.register(MessageKind.CONNECTED, None, new_sink())
    second = registry.register(MessageKind.CONNECTED, None, new_sink())

    assert registry.resolve_matching("connected", None) is first
    assert registry.resolve_matching("connected", None) is second


@pytest.mark.asyncio
async def test_duplicate_registration_rejected_by_default():
    registry = PendingRegistry()
    registry.register(MessageKind.CONNECTED, None, new_sink())

    with pytest.raises(DuplicateRegistration):
        registry.register(MessageKind.CONNECTED, None, new_sink())
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_queue_policy_matches_in_registration_order():
    registry = PendingRegistry(duplicate_policy="queue")
    first = registry.register(MessageKind.UPDATED, "3", new_sink())
    second = registry.register(MessageKind.UPDATED, "3", new_sink())

    assert registry.resolve_matching("updated", "3") is first
    assert registry.resolve_matching("updated", "3") is second


@pytest.mark.asyncio
async def test_correlation_id_required_except_for_handshake():
    registry = PendingRegistry()
    with pytest.raises(PreconditionViolation):
        registry.register(MessageKind.RESULT, None, new_sink())
    with pytest.raises(PreconditionViolation):
        registry.register(MessageKind.PING, "1", new_sink())


def test_unknown_policy_is_refused():
    with pytest.raises(ValueError):
        PendingRegistry(duplicate_policy="ignore")


@pytest.mark.asyncio
async def test_fulfill_and_reject_fire_once():
    registry = PendingRegistry()
    entry = registry.register(MessageKind.RESULT, "1", new_sink())

    assert entry.fulfill({"ok": True}) is True
    assert entry.reject(RuntimeError("late")) is False
    assert await entry.sink == {"ok": True}


@pytest.mark.asyncio
async def test_reject_all_clears_and_fails_every_sink():
    registry = PendingRegistry()
    a = registry.register(MessageKind.RESULT, "1", new_sink())
    b = registry.register(MessageKind.ADDED, "2", new_sink())

    assert registry.reject_all(TransportFailed("gone")) == 2
    assert len(registry) == 0
    for entry in (a, b):
        with pytest.raises(TransportFailed):
            await entry.sink


@pytest.mark.asyncio
async def test_discard_removes_specific_entry():
    registry = PendingRegistry()
    a = registry.register(MessageKind.RESULT, "1", new_sink())
    b = registry.register(MessageKind.RESULT, "2", new_sink())

    assert registry.discard(a) is True
    assert registry.discard(a) is False
    assert a not in registry
    assert registry.pending() == [b]
