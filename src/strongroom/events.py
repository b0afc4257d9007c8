"""EventBus and event types for notifying the outside world of state changes."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of storage events published to listeners."""

    FILE_WRITTEN = "file_written"
    ITEM_MOVED = "item_moved"
    ITEM_TRASHED = "item_trashed"
    ITEM_RESTORED = "item_restored"
    ITEM_PURGED = "item_purged"
    VERSION_RESTORED = "version_restored"
    SHARE_CREATED = "share_created"
    SHARE_DELETED = "share_deleted"
    SHARE_DOWNLOADED = "share_downloaded"


# What FileEvent.item_id refers to, per event type
_ITEM_KINDS: dict[EventType, str] = {
    EventType.ITEM_TRASHED: "trash",
    EventType.ITEM_RESTORED: "trash",
    EventType.ITEM_PURGED: "trash",
    EventType.VERSION_RESTORED: "version",
    EventType.SHARE_CREATED: "share",
    EventType.SHARE_DELETED: "share",
    EventType.SHARE_DOWNLOADED: "share",
}


@dataclass(frozen=True, slots=True)
class FileEvent:
    """Immutable record of a storage mutation.

    Attributes:
        event_type: The kind of mutation that occurred.
        path: Relative path of the affected item (destination for moves).
        old_path: Previous path (moves and renamed restores only).
        item_id: Trash id, version id or share id, when one applies.
        user_id: Acting user, when known.
    """

    event_type: EventType
    path: str
    old_path: str | None = None
    item_id: str | None = None
    user_id: str | None = None

    @property
    def item_kind(self) -> str | None:
        """``"trash"``, ``"version"`` or ``"share"`` when ``item_id`` is set."""
        if self.item_id is None:
            return None
        return _ITEM_KINDS.get(self.event_type)


class EventBus:
    """Publishes storage events to listeners.

    Listeners subscribe to specific event types, or to everything.
    A listener may be a plain function or a coroutine function. Each
    event goes to the type-specific listeners first, then to the
    catch-all ones, in subscription order. A listener that raises is
    logged and skipped; the storage operation that published the event
    has already happened and is never undone.
    """

    def __init__(self) -> None:
        self._by_type: dict[EventType, list[Callable[[FileEvent], Any]]] = {
            et: [] for et in EventType
        }
        self._catch_all: list[Callable[[FileEvent], Any]] = []

    def subscribe(
        self, handler: Callable[[FileEvent], Any], *event_types: EventType
    ) -> Callable[[], None]:
        """Subscribe *handler* to *event_types* (every event when none given).

        Returns a callable that removes exactly this subscription.
        """
        if not event_types:
            self._catch_all.append(handler)
            return lambda: _discard(self._catch_all, handler)

        for event_type in event_types:
            self._by_type[event_type].append(handler)

        def unsubscribe() -> None:
            for event_type in event_types:
                _discard(self._by_type[event_type], handler)

        return unsubscribe

    def register(self, event_type: EventType, handler: Callable[[FileEvent], Any]) -> None:
        self._by_type[event_type].append(handler)

    def register_all(self, handler: Callable[[FileEvent], Any]) -> None:
        """Subscribe *handler* to every event type."""
        self._catch_all.append(handler)

    def unregister(self, event_type: EventType, handler: Callable[[FileEvent], Any]) -> bool:
        """Remove the first type-specific subscription of *handler*. True if found."""
        return _discard(self._by_type[event_type], handler)

    async def emit(self, event: FileEvent) -> int:
        """Deliver *event*. Returns how many listeners handled it without error."""
        delivered = 0
        for handler in [*self._by_type[event.event_type], *self._catch_all]:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on %s",
                    handler,
                    event.event_type.value,
                    event.path,
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered

    @property
    def handler_count(self) -> int:
        """Number of subscriptions; a catch-all listener counts once."""
        return sum(len(h) for h in self._by_type.values()) + len(self._catch_all)

    def clear(self) -> None:
        for handlers in self._by_type.values():
            handlers.clear()
        self._catch_all.clear()


def _discard(
    handlers: list[Callable[[FileEvent], Any]], handler: Callable[[FileEvent], Any]
) -> bool:
    try:
        handlers.remove(handler)
    except ValueError:
        return False
    return True
