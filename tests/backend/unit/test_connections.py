from datetime import datetime, timezone
from uuid import uuid4

from banhammer.backend.addresses import parse_host
from banhammer.backend.connections import LiveConnectionRegistry
from banhammer.backend.models import Identity, LiveSession


def _identity(key) -> Identity:
    return Identity(key=key, name=None, created_at=datetime.now(timezone.utc))


def test_join_and_leave_track_online_identities() -> None:
    registry = LiveConnectionRegistry()
    key = uuid4()
    registry.join(LiveSession(identity_key=key, name="Steve", address=parse_host("203.0.113.5")))

    assert registry.is_connected(_identity(key)) is True
    assert [live.identity_key for live in registry.connected()] == [key]
    assert registry.live_session(key).name == "Steve"
    assert registry.leave(key) is True
    assert registry.leave(key) is False
    assert registry.connected() == []


def test_disconnect_queues_a_kick_and_drops_connection() -> None:
    registry = LiveConnectionRegistry()
    key = uuid4()
    registry.join(LiveSession(identity_key=key, name=None, address=parse_host("203.0.113.5")))

    registry.disconnect(_identity(key), "spam")

    assert registry.is_connected(_identity(key)) is False
    kicks = registry.drain_kicks()
    assert [(kick.identity_key, kick.message) for kick in kicks] == [(key, "spam")]
    assert registry.drain_kicks() == []


def test_disconnect_of_departed_identity_is_a_no_op() -> None:
    registry = LiveConnectionRegistry()

    registry.disconnect(_identity(uuid4()), "spam")

    assert registry.drain_kicks() == []


def test_requeued_kicks_come_back_before_newer_ones() -> None:
    registry = LiveConnectionRegistry()
    first, second = uuid4(), uuid4()
    for key in (first, second):
        registry.join(LiveSession(identity_key=key, name=None, address=parse_host("203.0.113.5")))

    registry.disconnect(_identity(first), "spam")
    undelivered = registry.drain_kicks()
    registry.disconnect(_identity(second), "spam")
    registry.requeue_kicks(undelivered)

    assert [kick.identity_key for kick in registry.pending_kicks()] == [first, second]
    assert [kick.identity_key for kick in registry.drain_kicks()] == [first, second]
    assert registry.pending_kicks() == []
