"""Push channel for inserts/updates to a candidate's feed rows.

The backing store announces row changes per candidate. :class:`LocalChannel`
is the in-process implementation used by the CLI and the tests; a hosted
database channel only has to offer the same ``subscribe`` call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol

from jobfeed.log import get_logger

log = get_logger(__name__)

RowHandler = Callable[[dict], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class RealtimeChannel(Protocol):
    def subscribe(self, candidate_id: str, on_insert: RowHandler, on_update: RowHandler) -> Subscription: ...


@dataclass(eq=False)
class _Listener:
    candidate_id: str
    on_insert: RowHandler
    on_update: RowHandler
    channel: LocalChannel = field(repr=False)
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.channel._remove(self)


class LocalChannel:
    def __init__(self) -> None:
        self._listeners: list[_Listener] = []

    def subscribe(self, candidate_id: str, on_insert: RowHandler, on_update: RowHandler) -> _Listener:
        listener = _Listener(candidate_id, on_insert, on_update, channel=self)
        self._listeners.append(listener)
        return listener

    def publish_insert(self, candidate_id: str, row: dict) -> int:
        return self._dispatch(candidate_id, row, "insert")

    def publish_update(self, candidate_id: str, row: dict) -> int:
        return self._dispatch(candidate_id, row, "update")

    def subscriber_count(self, candidate_id: str | None = None) -> int:
        if candidate_id is None:
            return len(self._listeners)
        return sum(1 for lst in self._listeners if lst.candidate_id == candidate_id)

    def _dispatch(self, candidate_id: str, row: dict, event: str) -> int:
        delivered = 0
        for listener in list(self._listeners):
            if listener.candidate_id != candidate_id or not listener.active:
                continue
            handler = listener.on_insert if event == "insert" else listener.on_update
            handler(row)
            delivered += 1
        log.debug("Delivered %s for %s to %d subscriber(s)", event, candidate_id, delivered)
        return delivered

    def _remove(self, listener: _Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
