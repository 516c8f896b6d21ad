"""
Domain events emitted while keys and addresses are materialized.

The scanner and key loader append events to an outbox instead of calling
persistence hooks directly. The key manager forwards them to the registered
callbacks once its lock is released. Callers that register no callbacks
``drain()`` the outbox themselves.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from kmwallet.models import RawKeys

NewAddressCallback = Callable[[str, str, str], None]
NewKeyCallback = Callable[[RawKeys], None]


@dataclass(frozen=True)
class NewAddressEvent:
    script_hash: str
    address: str
    path: str


@dataclass(frozen=True)
class NewKeysEvent:
    keys: RawKeys


Event = NewAddressEvent | NewKeysEvent


def _nop(*args: object) -> None:
    pass


class EventOutbox:
    """
    Pending events for one key manager.

    With callbacks registered, ``deliver()`` hands every event over and forgets
    it. Without callbacks, events stay queued until the caller ``drain()``s them.
    """

    def __init__(
        self,
        on_new_address: NewAddressCallback | None = None,
        on_new_key: NewKeyCallback | None = None,
    ):
        self.polling = on_new_address is None and on_new_key is None
        self.on_new_address = on_new_address or _nop
        self.on_new_key = on_new_key or _nop
        self._events: list[Event] = []

    def push(self, event: Event) -> None:
        self._events.append(event)

    def __len__(self) -> int:
        return len(self._events)

    def drain(self) -> list[Event]:
        """Return and forget every queued event."""
        events, self._events = self._events, []
        return events

    def deliver(self) -> None:
        """
        Feed queued events to the callbacks, in order, then forget them.

        Key cache write failures are logged and dropped: keys can always be
        re-derived. Address callback failures propagate to the caller.
        """
        if self.polling:
            return
        while self._events:
            event = self._events.pop(0)
            if isinstance(event, NewAddressEvent):
                self.on_new_address(event.script_hash, event.address, event.path)
                continue
            try:
                self.on_new_key(event.keys)
            except Exception as e:
                logger.warning(f"Failed to cache wallet keys: {e}")
