"""Tests for session events, stats, the outbox and the in-memory channel."""

import pytest

from agentbridge.agents.messages import ModelOutput, TokenCount
from agentbridge.session.channel import MOBILE, InMemoryChannel, RemoteChannel, presence_event
from agentbridge.session.events import SessionEventEmitter, SessionEventType
from agentbridge.session.outbox import Outbox
from agentbridge.session.stats import SessionStats


def _snapshot(input_tokens, output_tokens, cost_usd):
    return TokenCount(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cost_usd=cost_usd,
    )


class TestSessionStats:
    """Tests for SessionStats snapshot handling."""

    def test_snapshot_overwrites(self):
        stats = SessionStats()
        stats.apply_snapshot(_snapshot(100, 10, 0.5))
        stats.apply_snapshot(_snapshot(150, 20, 0.75))

        assert (stats.input_tokens, stats.output_tokens, stats.cost_usd) == (150, 20, 0.75)
        assert stats.total_tokens == 170

    def test_repeated_snapshot_is_not_double_counted(self):
        stats = SessionStats()
        stats.apply_snapshot(_snapshot(100, 10, 0.5))
        stats.apply_snapshot(_snapshot(100, 10, 0.5))

        assert stats.input_tokens == 100

    def test_vendor_reset_is_accumulated(self):
        """A snapshot lower than the last one starts a new contribution."""
        stats = SessionStats()
        stats.apply_snapshot(_snapshot(100, 10, 0.5))
        stats.apply_snapshot(_snapshot(20, 2, 0.1))

        assert (stats.input_tokens, stats.output_tokens) == (120, 12)
        assert stats.cost_usd == pytest.approx(0.6)

        stats.apply_snapshot(_snapshot(30, 3, 0.2))

        assert (stats.input_tokens, stats.output_tokens) == (130, 13)
        assert stats.cost_usd == pytest.approx(0.7)

    def test_totals_never_decrease(self):
        stats = SessionStats()
        previous = 0
        for snapshot in [_snapshot(5, 1, 0.01), _snapshot(50, 5, 0.1), _snapshot(0, 0, 0.0), _snapshot(7, 0, 0.01)]:
            stats.apply_snapshot(snapshot)
            assert stats.total_tokens >= previous
            previous = stats.total_tokens

    def test_to_dict(self):
        stats = SessionStats(prompts=2, tool_calls=3)
        stats.files_edited.update({"b.py", "a.py"})
        stats.apply_snapshot(_snapshot(10, 5, 0.0012345678))

        data = stats.to_dict()

        assert data["totalTokens"] == 15
        assert data["costUsd"] == 0.001235
        assert data["filesEdited"] == ["a.py", "b.py"]
        assert data["prompts"] == 2
        assert data["permissionsTimedOut"] == 0


class TestOutbox:
    """Tests for the bounded outbox."""

    def test_keeps_order(self):
        outbox = Outbox(limit=10)
        for i in range(3):
            outbox.push({"type": "agent_message", "n": i})

        assert [e["n"] for e in outbox.drain()] == [0, 1, 2]
        assert len(outbox) == 0

    def test_drops_oldest_when_full(self):
        outbox = Outbox(limit=3)
        for i in range(5):
            outbox.push({"type": "agent_message", "n": i})

        assert [e["n"] for e in outbox.drain()] == [2, 3, 4]
        assert outbox.dropped == 2

    def test_push_front_restores_order(self):
        outbox = Outbox(limit=10)
        outbox.push({"n": 3})
        outbox.push_front([{"n": 1}, {"n": 2}])

        assert [e["n"] for e in outbox.drain()] == [1, 2, 3]

    def test_push_front_respects_limit(self):
        outbox = Outbox(limit=2)
        outbox.push({"n": 3})
        outbox.push_front([{"n": 1}, {"n": 2}])

        assert [e["n"] for e in outbox.drain()] == [2, 3]
        assert outbox.dropped == 1


class TestInMemoryChannel:
    """Tests for InMemoryChannel."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryChannel(), RemoteChannel)

    @pytest.mark.asyncio
    async def test_send_records_events(self):
        channel = InMemoryChannel()
        await channel.send({"type": "cost_update"})
        await channel.send({"type": "agent_message"})

        assert channel.sent_of_type("cost_update") == [{"type": "cost_update"}]

    def test_presence_changes_are_announced(self):
        channel = InMemoryChannel()
        received = []
        channel.on_event(received.append)

        channel.set_peer_online(MOBILE, True)
        assert channel.is_peer_online(MOBILE)
        channel.set_peer_online(MOBILE, False)

        assert not channel.is_peer_online()
        assert received == [presence_event(MOBILE, True), presence_event(MOBILE, False)]
        assert received[0] == {"type": "presence", "event": "join", "device_type": "mobile"}

    def test_failing_handler_is_isolated(self):
        channel = InMemoryChannel()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        channel.on_event(broken)
        channel.on_event(received.append)
        channel.deliver({"type": "chat", "text": "hi"})

        assert received == [{"type": "chat", "text": "hi"}]

    def test_off_event(self):
        channel = InMemoryChannel()
        received = []
        channel.on_event(received.append)
        channel.off_event(received.append)
        channel.off_event(received.append)

        channel.deliver({"type": "chat"})

        assert received == []


class TestSessionEventEmitter:
    """Tests for SessionEventEmitter."""

    def test_delivers_in_order(self):
        emitter = SessionEventEmitter()
        received = []
        emitter.subscribe(received.append)

        emitter.emit(SessionEventType.STATE_CHANGED, {"state": "running"})
        emitter.emit(SessionEventType.STATS_UPDATED)

        assert [e.type for e in received] == [SessionEventType.STATE_CHANGED, SessionEventType.STATS_UPDATED]
        assert received[1].data == {}

    def test_failing_subscriber_is_isolated(self):
        emitter = SessionEventEmitter()
        received = []

        def broken(event):
            raise ValueError("subscriber bug")

        emitter.subscribe(broken)
        emitter.subscribe(received.append)
        emitter.emit(SessionEventType.STATE_CHANGED)

        assert len(received) == 1

    def test_unsubscribe_and_clear(self):
        emitter = SessionEventEmitter()
        emitter.subscribe(print)
        emitter.subscribe(repr)
        emitter.unsubscribe(print)
        assert emitter.subscriber_count == 1
        emitter.clear()
        assert emitter.subscriber_count == 0

    def test_to_dict_serializes_messages(self):
        event = SessionEventEmitter().emit(
            SessionEventType.AGENT_MESSAGE,
            {"message": ModelOutput(text_delta="hi")},
        )

        data = event.to_dict()

        assert data["type"] == "agent_message"
        assert data["message"] == {"type": "model-output", "textDelta": "hi"}
        assert "timestamp" in data
