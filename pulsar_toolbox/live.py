"""
Live tail of one broker topic.

:class:`LiveTopicController` owns the active topic, the bounded message
window and the connection status shown to the operator. Selecting a
topic takes a tail snapshot (read from the earliest offset, keep the
newest ``capacity``), after which an :class:`~pulsar_toolbox.poller.AsyncPoller`
keeps merging "latest" batches into the window.

State machine::

    Idle --select_topic--> Connecting --snapshot ok, live on--> Live
                                      --snapshot ok, live off-> Paused
                                      --snapshot failed-------> Paused (disconnected)
    Live <--toggle_live--> Paused
    any  --clear--> Idle        any --close--> Closed

Every write to the window happens from this instance's own callbacks; a
topic switch or :meth:`LiveTopicController.clear` bumps a generation
counter so results belonging to an older selection are dropped.
"""

from __future__ import annotations

import logging
from typing import Any

from pulsar_toolbox.broker import BrokerClient
from pulsar_toolbox.cancellation import CANCELLED, CancelSlot, cancellable
from pulsar_toolbox.events import StateEvents
from pulsar_toolbox.expiring import ExpiringKeySet
from pulsar_toolbox.messages import merge_unique_newest_first, message_key, sort_newest_first
from pulsar_toolbox.poller import AsyncPoller
from pulsar_toolbox.types import (
    ConnectionStatus,
    Host,
    LiveConfig,
    Message,
    PollerStatus,
    TopicRef,
    TopicTarget,
)

logger = logging.getLogger(__name__)


class LiveTopicController:
    """Owns the live window for the currently selected topic."""

    def __init__(
        self,
        broker: BrokerClient,
        config: LiveConfig | None = None,
        *,
        events: StateEvents | None = None,
    ) -> None:
        self._broker = broker
        self._config = config or LiveConfig()
        self._events = events or StateEvents()

        self._active_topic: TopicTarget | None = None
        self._window: list[Message] = []
        self._status: ConnectionStatus = "disconnected"
        self._capacity = self._config.default_capacity
        self._live = self._config.live_by_default
        self._loading = False
        self._closed = False

        self._poller: AsyncPoller[list[Message]] | None = None
        self._poll_slot = CancelSlot()
        self._select_slot = CancelSlot()
        self._snapshot_slot = CancelSlot()
        self._generation = 0
        self._fresh = ExpiringKeySet(self._config.fresh_highlight_ms)

    # ---- Observable state ----

    @property
    def events(self) -> StateEvents:
        return self._events

    @property
    def config(self) -> LiveConfig:
        return self._config

    @property
    def active_topic(self) -> TopicTarget | None:
        return self._active_topic

    @property
    def window(self) -> list[Message]:
        """Newest-first copy of the current window."""
        return list(self._window)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def is_live_updating(self) -> bool:
        return self._live

    @property
    def is_polling(self) -> bool:
        return self._poller is not None and self._poller.running

    @property
    def fresh_keys(self) -> frozenset[str]:
        """Keys of messages that arrived through polling within the highlight period."""
        return self._fresh.active_keys

    def is_displaying(self, target: TopicTarget) -> bool:
        return target.same_as(self._active_topic)

    # ---- Commands ----

    async def select_topic(self, host: Host, topic: TopicRef) -> None:
        """Switch the window to *topic* on *host* and load its tail."""
        self._ensure_open()
        self._stop_polling()
        self._select_slot.cancel()
        self._snapshot_slot.cancel()
        self._generation += 1
        generation = self._generation
        self._fresh.clear()

        target = TopicTarget(host=host, topic=topic)
        self._active_topic = target
        self._events.emit("topic", topic=target.topic.full_name, host=host.id)
        self._set_window([])
        self._set_status("connecting")
        self._set_loading(True)
        logger.info("Selected %s on %s", topic.full_name, host.id)

        try:
            tail = await self._snapshot_tail(target, self._capacity, self._select_slot)
        except Exception as exc:
            if generation != self._generation:
                return
            logger.warning("Tail snapshot of %s failed: %s", topic.full_name, exc)
            self._set_window([])
            self._set_status("disconnected")
            self._set_loading(False)
            return

        if generation != self._generation or tail is CANCELLED:
            return
        self._set_window(merge_unique_newest_first(self._window, tail, self._capacity))
        self._set_loading(False)

        if self._live and self._broker.is_polled_source_available():
            self._set_status("connected")
            self._start_polling()
        else:
            self._set_status("disconnected")

    def toggle_live(self, on: bool) -> bool:
        """Turn live polling on or off. Returns the resulting live flag."""
        self._ensure_open()
        if on and not self._broker.is_polled_source_available():
            logger.warning("Live polling is not available with this broker client")
            on = False

        if not on:
            was_live = self._live
            self._live = False
            self._stop_polling()
            self._fresh.clear()
            self._set_status("disconnected")
            if was_live:
                self._events.emit("live", enabled=False)
            return False

        if not self._live:
            self._live = True
            self._events.emit("live", enabled=True)
        if self._active_topic is not None and self._poller is None:
            self._set_status("connecting")
            self._start_polling()
        return True

    async def set_capacity(self, capacity: int) -> None:
        """Resize the window; growing it fetches a larger tail."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._ensure_open()
        previous = self._capacity
        if capacity == previous:
            return
        self._capacity = capacity
        self._events.emit("capacity", capacity=capacity)

        if self._active_topic is None:
            return
        if capacity < previous:
            self._set_window(self._window[:capacity])
        if self._poller is not None:
            self._start_polling()
        if capacity < previous:
            return

        target = self._active_topic
        generation = self._generation
        self._set_loading(True)
        try:
            tail = await self._snapshot_tail(target, capacity)
        except Exception as exc:
            logger.debug("Tail snapshot for capacity %d failed: %s", capacity, exc)
            return
        finally:
            if generation == self._generation:
                self._set_loading(False)
        if generation != self._generation or tail is CANCELLED:
            return
        self._set_window(merge_unique_newest_first(self._window, tail, self._capacity))

    async def refresh(self, show_spinner: bool = True) -> None:
        """Merge a fresh tail snapshot into the window, leaving the poller alone."""
        target = self._active_topic
        if self._closed or target is None:
            return
        generation = self._generation
        if show_spinner:
            self._set_loading(True)
        try:
            tail = await self._snapshot_tail(target, self._capacity)
        except Exception as exc:
            logger.debug("Refresh of %s failed: %s", target.topic.full_name, exc)
            return
        finally:
            if show_spinner and generation == self._generation:
                self._set_loading(False)
        if generation != self._generation or tail is CANCELLED:
            return
        self._set_window(merge_unique_newest_first(self._window, tail, self._capacity))

    def clear(self) -> None:
        """Drop the active topic and everything in flight for it."""
        self._stop_polling()
        self._select_slot.cancel()
        self._snapshot_slot.cancel()
        self._generation += 1
        self._fresh.clear()
        if self._active_topic is not None:
            self._active_topic = None
            self._events.emit("topic", topic=None, host=None)
        self._live = self._config.live_by_default
        self._set_window([])
        self._set_status("disconnected")
        self._set_loading(False)

    def close(self) -> None:
        """Tear down; the controller accepts no further commands."""
        if self._closed:
            return
        self.clear()
        self._closed = True
        logger.debug("Live topic controller closed")

    # ---- Internal ----

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("LiveTopicController is closed")

    async def _snapshot_tail(
        self, target: TopicTarget, target_max: int, slot: CancelSlot | None = None
    ) -> Any:
        """Read the topic from the earliest offset and keep the newest *target_max*.

        Selection snapshots use their own slot so a refresh or resize of the
        same topic never cancels the initial history load.
        """
        limit = max(target_max * self._config.history_scan_factor, target_max)
        batch = await cancellable(
            slot or self._snapshot_slot,
            lambda: self._broker.read_messages(
                target,
                start="earliest",
                limit=limit,
                timeout_ms=self._config.history_timeout_ms,
            ),
        )
        if batch is CANCELLED:
            return CANCELLED
        return sort_newest_first(batch)[:target_max]

    async def _fetch_latest(self, target: TopicTarget, limit: int) -> list[Message]:
        batch = await cancellable(
            self._poll_slot,
            lambda: self._broker.read_messages(
                target,
                start="latest",
                limit=limit,
                timeout_ms=self._config.poll_timeout_ms,
            ),
        )
        return [] if batch is CANCELLED else batch

    def _start_polling(self) -> None:
        self._stop_polling()
        target = self._active_topic
        if target is None:
            return
        limit = self._capacity
        poller: AsyncPoller[list[Message]] = AsyncPoller(
            self._config.poll_interval_ms,
            lambda: self._fetch_latest(target, limit),
            lambda batch: self._on_batch(batch, limit),
            on_error=self._on_poll_error,
            on_status_change=self._on_poll_status,
        )
        self._poller = poller
        poller.start()
        logger.debug("Polling %s every %dms", target.topic.full_name, self._config.poll_interval_ms)

    def _stop_polling(self) -> None:
        if self._poller is not None:
            self._poller.stop()
            self._poller = None
        self._poll_slot.cancel()

    def _on_batch(self, batch: list[Message], limit: int) -> None:
        if not batch:
            return
        seen = {message_key(message) for message in self._window}
        merged = merge_unique_newest_first(batch, self._window, limit)
        self._set_window(merged)
        fresh = [key for key in map(message_key, merged) if key not in seen]
        if fresh:
            self._fresh.add(fresh)

    def _on_poll_error(self, error: BaseException) -> None:
        target = self._active_topic
        logger.debug("Poll of %s failed: %s", target.topic.full_name if target else "?", error)

    def _on_poll_status(self, status: PollerStatus) -> None:
        if status == "connecting" and self._status == "connected":
            return
        self._set_status("disconnected" if status == "error" else status)

    def _set_window(self, messages: list[Message]) -> None:
        if not messages and not self._window:
            return
        self._window = messages
        self._events.emit("window", size=len(messages))

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._events.emit("status", status=status)

    def _set_loading(self, loading: bool) -> None:
        if loading == self._loading:
            return
        self._loading = loading
        self._events.emit("loading", loading=loading)
