#!/usr/bin/env python3
"""
Booth command channel.

Commands are short tokens published as ``{"cmd": <token>}`` to a single topic
the booth subscribes to. Publishing is fire-and-forget: failures are logged and
never retried. Delayed commands (the capture timed to the shutter sound) go
through CommandScheduler, which keeps pending entries on disk so a restart does
not lose them.
"""

import heapq
import itertools
import json
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import paho.mqtt.client as mqtt

from photobooth.event_bus import EventBus, EventType
from photobooth.utils import booth_log

KEY_FOR_COMMAND = "cmd"
DEFAULT_TOPIC = "io-photobooth"


class Command(str, Enum):
    """Tokens understood by the booth."""
    CAPTURE = "capture"
    STYLE = "style"
    FINISH = "finish"
    FINISH_AND_SHARE = "finish_and_share"
    START_OVER = "startover"
    PREVIEW = "preview"


def command_payload(command: Command) -> str:
    return json.dumps({KEY_FOR_COMMAND: Command(command).value})


class CommandPublisher:
    """Publishes booth commands over MQTT.

    Connects lazily on the first send; a broker that is down only costs the
    commands sent while it is unreachable.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 1883,
        topic: str = DEFAULT_TOPIC,
        client_id: str = "",
        username: str = "",
        password: str = "",
        tls: bool = False,
        qos: int = 1,
        event_bus: Optional[EventBus] = None,
        client: Optional[Any] = None,
    ):
        self.host = host
        self.port = port
        self.topic = topic
        self.client_id = client_id or f"photobooth-{uuid.uuid4().hex[:8]}"
        self.username = username
        self.password = password
        self.tls = tls
        self.qos = qos
        self.event_bus = event_bus
        self._client = client
        self._connected = client is not None
        self._lock = threading.Lock()
        self.sent_count = 0
        self.failed_count = 0

    def _connect(self) -> bool:
        with self._lock:
            if self._connected:
                return True
            if self._client is None:
                client_kwargs: Dict[str, Any] = {"client_id": self.client_id}
                if hasattr(mqtt, "CallbackAPIVersion"):
                    client_kwargs["callback_api_version"] = mqtt.CallbackAPIVersion.VERSION2
                self._client = mqtt.Client(**client_kwargs)
                if self.username or self.password:
                    self._client.username_pw_set(self.username or None, self.password or None)
                if self.tls:
                    self._client.tls_set()
            try:
                self._client.connect(self.host, self.port, keepalive=60)
                self._client.loop_start()
            except Exception as e:
                booth_log("CMD", f"MQTT connect to {self.host}:{self.port} failed: {e}", level="ERROR")
                return False
            self._connected = True
            booth_log("CMD", f"MQTT connected to {self.host}:{self.port}, topic '{self.topic}'")
            return True

    def send(self, command: Command) -> bool:
        """Publish one command; returns False (after logging) on failure."""
        command = Command(command)
        if not self._connect():
            self._record_failure(command, "not connected")
            return False

        try:
            info = self._client.publish(self.topic, command_payload(command), qos=self.qos, retain=False)
        except Exception as e:
            self._record_failure(command, str(e))
            return False

        rc = getattr(info, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            self._record_failure(command, mqtt.error_string(rc))
            return False

        self.sent_count += 1
        booth_log("CMD", f'Sent "{KEY_FOR_COMMAND}: {command.value}" to topic {self.topic}')
        if self.event_bus:
            self.event_bus.publish(EventType.COMMAND_SENT, {"cmd": command.value, "topic": self.topic}, source="commands")
        return True

    def _record_failure(self, command: Command, reason: str):
        self.failed_count += 1
        booth_log("CMD", f'Error sending "{KEY_FOR_COMMAND}: {command.value}" to topic {self.topic}: {reason}', level="ERROR")
        if self.event_bus:
            self.event_bus.publish(
                EventType.COMMAND_FAILED,
                {"cmd": command.value, "topic": self.topic, "reason": reason},
                source="commands",
            )

    def close(self):
        with self._lock:
            if self._client is not None and self._connected:
                try:
                    self._client.loop_stop()
                    self._client.disconnect()
                except Exception as e:
                    booth_log("CMD", f"MQTT disconnect error: {e}", level="WARNING")
            self._connected = False


@dataclass(order=True)
class ScheduledCommand:
    """A pending command; ordered by due time, then by scheduling order."""
    due: float
    seq: int
    command: Command = field(compare=False)
    entry_id: str = field(compare=False, default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.entry_id, "cmd": self.command.value, "due": self.due}


class CommandScheduler:
    """Fires commands after a delay on a worker thread.

    When ``store_path`` is set, pending entries are written to that JSON file
    after every change and reloaded by ``start()``; entries already overdue fire
    right away.
    """

    def __init__(self, publisher: CommandPublisher, store_path: Optional[str] = None,
                 event_bus: Optional[EventBus] = None):
        self.publisher = publisher
        self.store_path = store_path
        self.event_bus = event_bus
        self._queue: List[ScheduledCommand] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def start(self):
        if self._running:
            return
        self._load()
        self._running = True
        self._thread = threading.Thread(target=self._worker_loop, daemon=True, name="booth-scheduler")
        self._thread.start()
        booth_log("SCHED", f"Started ({len(self._queue)} pending)")

    def stop(self):
        """Stop the worker; pending entries stay in the store for the next start."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        booth_log("SCHED", "Stopped")

    def schedule(self, command: Command, delay_ms: float) -> ScheduledCommand:
        entry = ScheduledCommand(
            due=time.time() + max(0.0, float(delay_ms)) / 1000.0,
            seq=next(self._seq),
            command=Command(command),
        )
        with self._cond:
            heapq.heappush(self._queue, entry)
            self._save()
            self._cond.notify_all()
        booth_log("SCHED", f"'{entry.command.value}' scheduled in {delay_ms:.0f} ms")
        if self.event_bus:
            self.event_bus.publish(
                EventType.COMMAND_SCHEDULED,
                {"cmd": entry.command.value, "delay_ms": delay_ms},
                source="scheduler",
            )
        return entry

    def pending(self) -> List[ScheduledCommand]:
        with self._cond:
            return sorted(self._queue)

    def cancel_all(self) -> int:
        with self._cond:
            count = len(self._queue)
            self._queue.clear()
            self._save()
        if count:
            booth_log("SCHED", f"Cancelled {count} pending commands", level="WARNING")
        return count

    def _worker_loop(self):
        while True:
            with self._cond:
                while self._running and (not self._queue or self._queue[0].due > time.time()):
                    timeout = self._queue[0].due - time.time() if self._queue else None
                    self._cond.wait(timeout)
                if not self._running:
                    return
                entry = heapq.heappop(self._queue)
                self._save()
            try:
                self.publisher.send(entry.command)
            except Exception as e:
                booth_log("SCHED", f"Dispatch of '{entry.command.value}' crashed: {e}", level="ERROR")

    def _save(self):
        if not self.store_path:
            return
        try:
            tmp_path = self.store_path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump([e.to_dict() for e in sorted(self._queue)], f)
            os.replace(tmp_path, self.store_path)
        except OSError as e:
            booth_log("SCHED", f"Failed to persist schedule: {e}", level="ERROR")

    def _load(self):
        if not self.store_path or not os.path.exists(self.store_path):
            return
        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                raw_entries = json.load(f) or []
        except (OSError, ValueError) as e:
            booth_log("SCHED", f"Failed to load schedule {self.store_path}: {e}", level="WARNING")
            return

        with self._cond:
            # Entries still queued from before a stop() are already in memory
            known = {entry.entry_id for entry in self._queue}
            for raw in raw_entries:
                if isinstance(raw, dict) and raw.get("id") in known:
                    continue
                try:
                    entry = ScheduledCommand(
                        due=float(raw["due"]),
                        seq=next(self._seq),
                        command=Command(raw["cmd"]),
                        entry_id=str(raw.get("id") or uuid.uuid4().hex[:12]),
                    )
                except (KeyError, TypeError, ValueError):
                    booth_log("SCHED", f"Skipping invalid schedule entry: {raw!r}", level="WARNING")
                    continue
                heapq.heappush(self._queue, entry)
