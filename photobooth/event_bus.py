"""
In-process event bus for the photobooth service.

Dialogue handlers, the command channel and the upload pipeline publish events
here; the API server subscribes and forwards them to WebSocket clients.
"""

import queue
import threading
import time
import traceback
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from photobooth.utils import booth_log


class EventType(Enum):
    """Service event types."""
    # Dialogue
    INTENT_RECEIVED = auto()
    RESPONSE_SENT = auto()
    STATE_CHANGED = auto()

    # Command channel
    COMMAND_SENT = auto()
    COMMAND_FAILED = auto()
    COMMAND_SCHEDULED = auto()

    # Upload pipeline
    PHOTO_UPLOADED = auto()
    PHOTO_SHORTENED = auto()
    PHOTO_POSTED = auto()

    # System
    SYSTEM_STARTUP = auto()
    SYSTEM_SHUTDOWN = auto()


@dataclass
class Event:
    """A single published event."""
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str = "unknown"

    def get(self, key: str, default=None):
        return self.payload.get(key, default)

    def __repr__(self):
        return f"Event({self.type.name}, id={self.event_id}, src={self.source})"


class EventHandler:
    """Subscriber callback with priority and an optional filter."""

    def __init__(
        self,
        callback: Callable[[Event], None],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ):
        self.callback = callback
        self.priority = priority
        self.filter_func = filter_func
        self.call_count = 0

    def can_handle(self, event: Event) -> bool:
        if self.filter_func is None:
            return True
        try:
            return self.filter_func(event)
        except Exception as e:
            booth_log("EVENT_BUS", f"Filter error: {e}", level="ERROR")
            return False

    def handle(self, event: Event):
        try:
            self.callback(event)
        except Exception as e:
            booth_log("EVENT_BUS", f"Handler error: {e}", level="ERROR")
            traceback.print_exc()
        finally:
            self.call_count += 1


class EventBus:
    """
    Pub/sub bus with a worker pool.

    ``publish(..., wait=True)`` dispatches on the caller's thread; otherwise the
    event is queued for the workers and dropped if the queue is full.
    """

    def __init__(self, max_queue_size: int = 1000, num_workers: int = 1):
        self._handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)
        self._event_queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._worker_threads: List[threading.Thread] = []
        self._num_workers = num_workers
        self._running = False
        self._stop_event = threading.Event()

        self._events_published = 0
        self._events_processed = 0
        self._events_dropped = 0

        self._history: List[Event] = []
        self._max_history = 100

        self._lock = threading.RLock()

    def start(self):
        if self._running:
            return

        self._running = True
        self._stop_event.clear()

        for i in range(self._num_workers):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"EventWorker-{i}",
                daemon=True,
            )
            worker.start()
            self._worker_threads.append(worker)

        booth_log("EVENT_BUS", f"Started with {self._num_workers} workers")

    def stop(self):
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        # Unblock workers waiting on the queue
        for _ in range(self._num_workers):
            try:
                self._event_queue.put(None, block=False)
            except queue.Full:
                pass

        for worker in self._worker_threads:
            worker.join(timeout=2.0)

        self._worker_threads.clear()
        booth_log("EVENT_BUS", "Stopped")

    def _worker_loop(self):
        while not self._stop_event.is_set():
            try:
                event = self._event_queue.get(timeout=0.1)
                if event is None:
                    break
                self._process_event(event)
            except queue.Empty:
                continue
            except Exception as e:
                booth_log("EVENT_BUS", f"Worker error: {e}", level="ERROR")

    def _process_event(self, event: Event):
        with self._lock:
            handlers = list(self._handlers.get(event.type, []))

        handlers.sort(key=lambda h: h.priority, reverse=True)
        for handler in handlers:
            if handler.can_handle(event):
                handler.handle(event)

        with self._lock:
            self._events_processed += 1
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

    def publish(
        self,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
        source: str = "unknown",
        wait: bool = False,
    ) -> Optional[Event]:
        """Publish an event; returns it, or None when it was dropped."""
        event = Event(type=event_type, payload=payload or {}, source=source)

        with self._lock:
            self._events_published += 1

        if wait or not self._running:
            self._process_event(event)
            return event

        try:
            self._event_queue.put(event, block=False)
            return event
        except queue.Full:
            with self._lock:
                self._events_dropped += 1
            booth_log("EVENT_BUS", f"Queue full, event dropped: {event_type.name}", level="WARNING")
            return None

    def subscribe(
        self,
        event_type: EventType,
        callback: Callable[[Event], None],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> str:
        """Subscribe a callback; returns a subscription id for ``unsubscribe``."""
        handler = EventHandler(callback, priority, filter_func)
        with self._lock:
            self._handlers[event_type].append(handler)
        return f"{event_type.name}_{id(handler)}"

    def unsubscribe(self, event_type: EventType, handler_id: str) -> bool:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            for handler in handlers:
                if f"{event_type.name}_{id(handler)}" == handler_id:
                    handlers.remove(handler)
                    return True
        return False

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "events_published": self._events_published,
                "events_processed": self._events_processed,
                "events_dropped": self._events_dropped,
                "queue_size": self._event_queue.qsize(),
            }

    def get_recent_events(self, count: int = 10) -> List[Event]:
        with self._lock:
            return self._history[-count:]


_event_bus_instance: Optional[EventBus] = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Process-wide event bus (singleton)."""
    global _event_bus_instance

    if _event_bus_instance is None:
        with _event_bus_lock:
            if _event_bus_instance is None:
                _event_bus_instance = EventBus()

    return _event_bus_instance
