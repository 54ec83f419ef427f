# tests/services/test_broadcaster.py
"""
Тесты для Broadcaster и каналов доставки.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.common.constants import EventType
from src.services.realtime_ws.channels import (
    ChannelClosedError,
    QueueChannel,
    WebSocketChannel,
    format_sse,
)
from src.services.realtime_ws.connection_manager import Broadcaster
from src.shared.events import RelayEvent


def notification(user_id: str = "1") -> RelayEvent:
    return RelayEvent.notification(user_id, "hello")


class TestSubscribe:
    """Регистрация каналов."""

    def test_subscribe_and_unsubscribe(self, broadcaster, channel_factory) -> None:
        channel = channel_factory()
        broadcaster.subscribe(1, channel)

        assert broadcaster.has_live_channel("1")
        assert broadcaster.unsubscribe(channel) is True
        assert broadcaster.has_live_channel(1) is False
        assert broadcaster.unsubscribe(channel) is False

    def test_global_scope(self, broadcaster, channel_factory) -> None:
        channel = channel_factory()
        broadcaster.subscribe(None, channel)

        stats = broadcaster.get_stats()
        assert stats["global_channels"] == 1
        assert stats["users_connected"] == 0


class TestPublish:
    """Рассылка событий."""

    @pytest.mark.asyncio
    async def test_fan_out_to_all_user_channels(self, broadcaster, channel_factory) -> None:
        channels = [channel_factory() for _ in range(3)]
        for channel in channels:
            broadcaster.subscribe(1, channel)

        report = await broadcaster.publish(1, notification())

        assert report.delivered == 3
        assert report.queued is False
        assert all(c.types == ["notification"] for c in channels)

    @pytest.mark.asyncio
    async def test_failing_channel_removed_others_receive(self, broadcaster, channel_factory) -> None:
        good_a, bad, good_b = channel_factory(), channel_factory(fail=True), channel_factory()
        for channel in (good_a, bad, good_b):
            broadcaster.subscribe(1, channel)

        report = await broadcaster.publish(1, notification())

        assert report.delivered == 2
        assert report.failed == 1
        assert report.removed == [bad.channel_id]
        assert len(good_a.messages) == len(good_b.messages) == 1
        assert bad not in broadcaster.channels_for(1)
        assert broadcaster.get_stats()["total_failed_sends"] == 1

    @pytest.mark.asyncio
    async def test_no_live_channel_queues_event(self, broadcaster) -> None:
        event = notification()
        report = await broadcaster.publish(1, event)

        assert report.queued is True
        assert broadcaster.drain_queue(1) == [event.to_message()]
        assert broadcaster.drain_queue(1) == []

    @pytest.mark.asyncio
    async def test_queue_is_bounded(self) -> None:
        broadcaster = Broadcaster(pending_queue_max=3)
        for n in range(5):
            await broadcaster.publish(1, RelayEvent.notification("1", f"m{n}"))

        items = broadcaster.drain_queue(1)
        assert [i["data"]["message"] for i in items] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_user_events_do_not_reach_other_users(self, broadcaster, channel_factory) -> None:
        other = channel_factory()
        broadcaster.subscribe(2, other)

        await broadcaster.publish(1, notification())

        assert other.messages == []
        assert broadcaster.pending_count(1) == 1

    @pytest.mark.asyncio
    async def test_include_global(self, broadcaster, channel_factory) -> None:
        user, glob = channel_factory(), channel_factory()
        broadcaster.subscribe(1, user)
        broadcaster.subscribe(None, glob)

        await broadcaster.publish(1, notification(), include_global=True)

        assert user.types == glob.types == ["notification"]

    @pytest.mark.asyncio
    async def test_publish_global_only_global(self, broadcaster, channel_factory) -> None:
        user, glob = channel_factory(), channel_factory()
        broadcaster.subscribe(1, user)
        broadcaster.subscribe(None, glob)

        report = await broadcaster.publish_global(RelayEvent.data_update("reviews", count=1))

        assert report.delivered == 1
        assert user.messages == []
        assert glob.messages[0]["data"] == {"category": "reviews", "count": 1}

    @pytest.mark.asyncio
    async def test_publish_requires_user(self, broadcaster) -> None:
        with pytest.raises(ValueError):
            await broadcaster.publish(None, notification())


class TestClose:
    """Закрытие каналов."""

    @pytest.mark.asyncio
    async def test_close_user(self, broadcaster, channel_factory) -> None:
        a, b, other = channel_factory(), channel_factory(), channel_factory()
        broadcaster.subscribe(1, a)
        broadcaster.subscribe(1, b)
        broadcaster.subscribe(2, other)

        assert await broadcaster.close_user(1) == 2
        assert a.closed and b.closed
        assert not other.closed
        assert broadcaster.has_live_channel(1) is False

    @pytest.mark.asyncio
    async def test_close_all(self, broadcaster, channel_factory) -> None:
        for uid in (1, 2, None):
            broadcaster.subscribe(uid, channel_factory())

        assert await broadcaster.close_all() == 3
        assert broadcaster.get_stats()["active_channels"] == 0

    @pytest.mark.asyncio
    async def test_discard_queue(self, broadcaster) -> None:
        await broadcaster.publish(1, notification())
        assert broadcaster.discard_queue(1) == 1
        assert broadcaster.pending_count(1) == 0


class TestChannels:
    """Тесты транспортов."""

    @pytest.mark.asyncio
    async def test_queue_channel_overflow_is_failure(self) -> None:
        channel = QueueChannel(maxsize=1)
        await channel.send({"type": "a"})
        with pytest.raises(asyncio.QueueFull):
            await channel.send({"type": "b"})

    @pytest.mark.asyncio
    async def test_queue_channel_close_sentinel(self) -> None:
        channel = QueueChannel(maxsize=1)
        await channel.send({"type": "a"})
        await channel.close()

        assert await channel.get() is None
        with pytest.raises(ChannelClosedError):
            await channel.send({"type": "b"})

    @pytest.mark.asyncio
    async def test_slow_sse_client_removed(self, broadcaster) -> None:
        channel = QueueChannel(maxsize=1)
        broadcaster.subscribe(1, channel)

        await broadcaster.publish(1, notification())
        report = await broadcaster.publish(1, notification())

        assert report.failed == 1
        assert broadcaster.has_live_channel(1) is False

    @pytest.mark.asyncio
    async def test_websocket_channel_sends_json(self) -> None:
        websocket = MagicMock()
        websocket.send_json = AsyncMock()
        websocket.close = AsyncMock()
        channel = WebSocketChannel(websocket)

        await channel.send({"type": "pong"})
        await channel.close()
        await channel.close()

        websocket.send_json.assert_awaited_once_with({"type": "pong"})
        websocket.close.assert_awaited_once()

    def test_format_sse(self) -> None:
        frame = format_sse({"type": "connected", "data": {"текст": 1}})
        assert frame.startswith("event: connected\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1]) == {"type": "connected", "data": {"текст": 1}}

    def test_event_message_shape(self) -> None:
        message = RelayEvent.connected("1", "sse").to_message()
        assert message["type"] == EventType.CONNECTED.value
        assert message["timestamp"].endswith("Z")
        assert set(message) == {"type", "event_id", "timestamp", "user_id", "data"}
