"""Periodic feed refresh with pause/resume and a seconds-until countdown.

Two tasks run against the injected clock: the periodic trigger, which
asks listeners for a refresh every ``interval_minutes``, and a one-second
countdown tick that only updates ``seconds_until_refresh``. Whether a
refresh is running is reported by the caller through
:meth:`RefreshScheduler.set_refreshing`; the scheduler never runs one itself.
"""
from __future__ import annotations

import asyncio
import math
from dataclasses import asdict, replace
from datetime import datetime, timedelta
from typing import Callable

from jobfeed.clock import Clock, SystemClock
from jobfeed.log import get_logger
from jobfeed.models import RefreshConfig, RefreshState
from jobfeed.store import REFRESH_CONFIG_KEY, Store, StoreError

log = get_logger(__name__)

COUNTDOWN_TICK_SECONDS = 1

TriggerListener = Callable[[], None]
StateListener = Callable[[RefreshState], None]


def _valid_interval(minutes) -> bool:
    return isinstance(minutes, int) and not isinstance(minutes, bool) and minutes > 0


def format_countdown(seconds: int) -> str:
    if seconds <= 0:
        return "now"
    mins, secs = divmod(int(seconds), 60)
    if mins > 0:
        return f"{mins}m {secs}s"
    return f"{secs}s"


class RefreshScheduler:
    def __init__(self, store: Store, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._config = self._load_config()
        self._state = RefreshState()
        self._tasks: list[asyncio.Task] = []
        self._trigger_listeners: list[TriggerListener] = []
        self._state_listeners: list[StateListener] = []

    def get_state(self) -> RefreshState:
        return self._state

    def get_config(self) -> RefreshConfig:
        return self._config

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def on_trigger(self, listener: TriggerListener) -> Callable[[], None]:
        self._trigger_listeners.append(listener)
        return lambda: self._trigger_listeners.remove(listener)

    def on_state(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener)

    # --- Timers -------------------------------------------------------------------

    def start(self) -> None:
        """(Re-)arm both timers. Must be called from inside the event loop."""
        self.stop()
        if not self._config.enabled:
            log.info("Auto-refresh disabled — timers not started")
            return

        self._update(next_refresh_time=self._next_time(), is_paused=False)
        self._tasks = [
            asyncio.create_task(self._periodic_loop(self._config.interval_minutes)),
            asyncio.create_task(self._countdown_loop()),
        ]
        log.info("Auto-refresh every %d min", self._config.interval_minutes)

    def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks = []

    async def close(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _periodic_loop(self, interval_minutes: int) -> None:
        while True:
            await self._clock.sleep(interval_minutes * 60)
            if not self._state.is_paused:
                self._trigger()

    async def _countdown_loop(self) -> None:
        while True:
            await self._clock.sleep(COUNTDOWN_TICK_SECONDS)
            self._update_countdown()

    def _update_countdown(self) -> None:
        state = self._state
        if state.next_refresh_time is None or state.is_paused:
            self._update(seconds_until_refresh=0)
            return
        remaining = (state.next_refresh_time - self._clock.now()).total_seconds()
        self._update(seconds_until_refresh=max(0, math.floor(remaining)))

    # --- Controls -------------------------------------------------------------------

    def pause(self) -> None:
        self._update(is_paused=True)
        log.info("Auto-refresh paused")

    def resume(self) -> None:
        self._update(is_paused=False, next_refresh_time=self._next_time())
        log.info("Auto-refresh resumed")

    def toggle_pause(self) -> None:
        if self._state.is_paused:
            self.resume()
        else:
            self.pause()

    def manual_refresh(self) -> None:
        self._trigger()

    def set_refreshing(self, is_refreshing: bool) -> None:
        if is_refreshing:
            self._update(is_refreshing=True)
        else:
            self._update(
                is_refreshing=False,
                last_refresh_time=self._clock.now(),
                next_refresh_time=self._next_time(),
            )

    def update_config(self, **changes) -> RefreshConfig:
        """Apply and persist *changes*; raises ValueError on a non-positive interval."""
        config = replace(self._config, **changes)
        if not _valid_interval(config.interval_minutes):
            raise ValueError(f"interval_minutes must be a positive integer, got {config.interval_minutes!r}")
        rearm = "enabled" in changes or "interval_minutes" in changes
        if rearm and config.enabled:
            # Timers need a running loop; fail before anything is saved.
            asyncio.get_running_loop()

        self._config = config
        self._save_config()
        if rearm:
            if self._config.enabled:
                self.start()
            else:
                self.stop()
                self._update(next_refresh_time=None, seconds_until_refresh=0)
        return self._config

    def countdown_label(self) -> str:
        if self._state.is_paused:
            return "Paused"
        if self._state.is_refreshing:
            return "Refreshing..."
        return format_countdown(self._state.seconds_until_refresh)

    format_countdown = staticmethod(format_countdown)

    # --- Internals ------------------------------------------------------------------

    def _next_time(self) -> datetime:
        return self._clock.now() + timedelta(minutes=self._config.interval_minutes)

    def _trigger(self) -> None:
        if self._state.is_refreshing:
            log.debug("Refresh already running — trigger ignored")
            return
        for listener in list(self._trigger_listeners):
            try:
                listener()
            except Exception:
                log.exception("Refresh trigger listener %r failed", listener)

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._state_listeners):
            try:
                listener(self._state)
            except Exception:
                log.exception("Refresh state listener %r failed", listener)

    def _load_config(self) -> RefreshConfig:
        raw = self._store.load(REFRESH_CONFIG_KEY)
        try:
            config = RefreshConfig.from_dict(raw)
        except (TypeError, AttributeError, ValueError) as exc:
            log.warning("Discarding malformed refresh config: %s", exc)
            return RefreshConfig()
        if not _valid_interval(config.interval_minutes):
            log.warning("Invalid refresh interval %r — using defaults", config.interval_minutes)
            return RefreshConfig()
        return config

    def _save_config(self) -> None:
        try:
            self._store.save(REFRESH_CONFIG_KEY, asdict(self._config))
        except StoreError as exc:
            log.warning("Refresh config not persisted: %s", exc)
