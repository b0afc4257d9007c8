"""Tests for EventBus and event types."""

from __future__ import annotations

import dataclasses
import logging

import pytest

from strongroom.events import EventBus, EventType, FileEvent

# =========================================================================
# Helpers
# =========================================================================


async def _collecting_handler(events: list[FileEvent], event: FileEvent) -> None:
    """Append event to a list for assertion."""
    events.append(event)


async def _failing_handler(event: FileEvent) -> None:
    """Handler that always raises."""
    raise RuntimeError(f"boom on {event.path}")


# =========================================================================
# EventType / FileEvent
# =========================================================================


class TestEventType:
    def test_member_count(self) -> None:
        assert len(EventType) == 9

    def test_unique_values(self) -> None:
        values = [et.value for et in EventType]
        assert len(values) == len(set(values))


class TestFileEvent:
    def test_defaults(self) -> None:
        ev = FileEvent(event_type=EventType.ITEM_TRASHED, path="a.txt")
        assert ev.old_path is None
        assert ev.item_id is None
        assert ev.user_id is None

    def test_item_kind(self) -> None:
        assert FileEvent(EventType.SHARE_CREATED, "a", item_id="tok").item_kind == "share"
        assert FileEvent(EventType.ITEM_TRASHED, "a", item_id="t1").item_kind == "trash"
        assert FileEvent(EventType.VERSION_RESTORED, "a", item_id="v1").item_kind == "version"
        assert FileEvent(EventType.ITEM_PURGED, "a").item_kind is None
        assert FileEvent(EventType.FILE_WRITTEN, "a", item_id="x").item_kind is None

    def test_frozen(self) -> None:
        ev = FileEvent(event_type=EventType.ITEM_MOVED, path="b", old_path="a")
        with pytest.raises(dataclasses.FrozenInstanceError):
            ev.path = "c"  # type: ignore[misc]


# =========================================================================
# EventBus
# =========================================================================


class TestEventBus:
    async def test_dispatch_in_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        async def first(event: FileEvent) -> None:
            seen.append("first")

        async def second(event: FileEvent) -> None:
            seen.append("second")

        bus.register(EventType.ITEM_TRASHED, first)
        bus.register(EventType.ITEM_TRASHED, second)
        await bus.emit(FileEvent(event_type=EventType.ITEM_TRASHED, path="a"))
        assert seen == ["first", "second"]

    async def test_only_matching_type(self) -> None:
        bus = EventBus()
        events: list[FileEvent] = []
        bus.register(EventType.SHARE_CREATED, lambda e: _collecting_handler(events, e))
        await bus.emit(FileEvent(event_type=EventType.ITEM_TRASHED, path="a"))
        assert events == []

    async def test_register_all(self) -> None:
        bus = EventBus()
        events: list[FileEvent] = []
        bus.register_all(lambda e: _collecting_handler(events, e))
        assert bus.handler_count == 1
        for et in EventType:
            await bus.emit(FileEvent(event_type=et, path="a"))
        assert [e.event_type for e in events] == list(EventType)

    async def test_failing_handler_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = EventBus()
        events: list[FileEvent] = []
        bus.register(EventType.ITEM_PURGED, _failing_handler)
        bus.register(EventType.ITEM_PURGED, lambda e: _collecting_handler(events, e))

        with caplog.at_level(logging.WARNING, logger="strongroom.events"):
            await bus.emit(FileEvent(event_type=EventType.ITEM_PURGED, path="x.txt"))

        assert len(events) == 1
        assert "failed for item_purged on x.txt" in caplog.text

    def test_unregister_and_clear(self) -> None:
        bus = EventBus()
        bus.register(EventType.ITEM_MOVED, _failing_handler)
        assert bus.unregister(EventType.ITEM_MOVED, _failing_handler) is True
        assert bus.unregister(EventType.ITEM_MOVED, _failing_handler) is False
        bus.register_all(_failing_handler)
        bus.clear()
        assert bus.handler_count == 0

    async def test_subscribe_returns_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[EventType] = []
        stop = bus.subscribe(
            lambda e: seen.append(e.event_type), EventType.ITEM_MOVED, EventType.ITEM_PURGED
        )
        stop_all = bus.subscribe(lambda e: seen.append(e.event_type))
        assert bus.handler_count == 3

        await bus.emit(FileEvent(event_type=EventType.ITEM_MOVED, path="a"))
        assert seen == [EventType.ITEM_MOVED, EventType.ITEM_MOVED]

        stop()
        stop_all()
        assert bus.handler_count == 0
        assert await bus.emit(FileEvent(event_type=EventType.ITEM_PURGED, path="a")) == 0

    async def test_sync_handlers_and_delivery_count(self) -> None:
        bus = EventBus()
        seen: list[str] = []
        bus.register(EventType.FILE_WRITTEN, lambda e: seen.append(e.path))
        bus.register(EventType.FILE_WRITTEN, _failing_handler)
        bus.register_all(lambda e: _collecting_handler([], e))

        delivered = await bus.emit(FileEvent(event_type=EventType.FILE_WRITTEN, path="a.txt"))

        assert seen == ["a.txt"]
        assert delivered == 2

    async def test_catch_all_runs_after_specific(self) -> None:
        bus = EventBus()
        order: list[str] = []
        bus.register_all(lambda e: order.append("all"))
        bus.register(EventType.SHARE_CREATED, lambda e: order.append("specific"))
        await bus.emit(FileEvent(event_type=EventType.SHARE_CREATED, path="a"))
        assert order == ["specific", "all"]
