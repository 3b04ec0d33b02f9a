"""HTTP server for the photobooth assistant.

Provides the conversational-platform webhook, the storage-event endpoint for
new photo uploads, status/config endpoints and a WebSocket endpoint streaming
service events. Runs in a background thread within the main service.
"""

import asyncio
import json
import threading
import time
from datetime import datetime
from typing import Any, Optional

from aiohttp import web

from photobooth.conversation import Conversation
from photobooth.event_bus import EventType
from photobooth.uploads import StorageEvent, UploadError
from photobooth.utils import booth_log


def _json_response(data: Any, status: int = 200) -> web.Response:
    """Create a JSON response with proper content type."""
    return web.Response(
        text=json.dumps(data, ensure_ascii=False, default=str),
        status=status,
        content_type="application/json",
    )


def _error_response(message: str, status: int = 400) -> web.Response:
    """Create a JSON error response."""
    return _json_response({"error": message}, status=status)


class BoothAPI:
    """HTTP API server for the photobooth service."""

    def __init__(self, service: Any, host: str = "0.0.0.0", port: int = 8080):
        """
        Args:
            service: BoothService instance (config, controller, notifier, scheduler, event bus)
            host: Bind address
            port: Bind port
        """
        self.service = service
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ws_clients: list = []
        self._start_time: float = time.time()
        self._event_sub_ids: list = []
        self.turns_handled = 0
        self.uploads_handled = 0

    def start(self):
        """Start the API server in a background thread."""
        self._thread = threading.Thread(target=self._run, daemon=True, name="booth-api")
        self._thread.start()
        booth_log("API", f"Server starting on http://{self.host}:{self.port}")

    def stop(self):
        self._teardown_event_forwarding()

        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        booth_log("API", "Server stopped")

    def _run(self):
        """Background thread entry point."""
        try:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self._start_server())
            self._loop.run_forever()
        except Exception as e:
            booth_log("API", f"Server thread error: {e}", level="ERROR")
        finally:
            if self._runner:
                try:
                    self._loop.run_until_complete(self._runner.cleanup())
                except Exception as e:
                    booth_log("API", f"Cleanup error: {e}", level="WARNING")

    async def _start_server(self):
        app = self.create_app()
        self._setup_event_forwarding()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        booth_log("API", f"Server listening on http://{self.host}:{self.port}")

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes registered."""
        app = web.Application()
        router = app.router
        router.add_post("/webhook", self._handle_webhook)
        router.add_post("/storage", self._handle_storage_event)
        router.add_get("/api/status", self._handle_status)
        router.add_get("/api/config", self._handle_get_config)
        router.add_get("/api/prompts", self._handle_get_prompts)
        router.add_get("/api/schedule", self._handle_get_schedule)
        router.add_get("/api/events", self._handle_ws_events)
        return app

    def _setup_event_forwarding(self):
        """Subscribe to EventBus events and forward them to WebSocket clients."""
        bus = getattr(self.service, "event_bus", None)
        if bus is None:
            return
        self._teardown_event_forwarding()
        for event_type in EventType:
            sub_id = bus.subscribe(event_type, self._on_event_bus_event, priority=-10)
            self._event_sub_ids.append((event_type, sub_id))

    def _teardown_event_forwarding(self):
        bus = getattr(self.service, "event_bus", None)
        if bus:
            for event_type, sub_id in self._event_sub_ids:
                bus.unsubscribe(event_type, sub_id)
        self._event_sub_ids.clear()

    def _on_event_bus_event(self, event):
        """Forward an EventBus event to all connected WebSocket clients."""
        if not self._ws_clients or not self._loop:
            return

        msg = json.dumps(
            {
                "event": event.type.name,
                "data": event.payload,
                "timestamp": datetime.fromtimestamp(event.timestamp).isoformat(),
                "source": event.source,
            },
            ensure_ascii=False,
            default=str,
        )
        for ws in list(self._ws_clients):
            try:
                asyncio.run_coroutine_threadsafe(ws.send_str(msg), self._loop)
            except RuntimeError as e:
                booth_log("API", f"WebSocket forward failed: {e}", level="DEBUG")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def _handle_turn(self, body: dict) -> dict:
        conv = Conversation(body)
        booth_log("API", f"Action '{conv.action}' (session {conv.session_id or '-'})")
        if conv.query:
            booth_log("API", f"Heard: {conv.query!r}", level="DEBUG")
        return self.service.controller.handle(conv)

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """POST /webhook - Conversational platform fulfillment."""
        try:
            body = await request.json()
        except Exception:
            return _error_response("Invalid JSON body")
        if not isinstance(body, dict):
            return _error_response("Request body must be a JSON object")

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(None, self._handle_turn, body)
            self.turns_handled += 1
            return _json_response(response)
        except Exception as e:
            booth_log("API", f"Error in /webhook: {e!r}", level="ERROR")
            return _error_response(str(e), status=500)

    async def _handle_storage_event(self, request: web.Request) -> web.Response:
        """POST /storage - Storage object change notification."""
        notifier = getattr(self.service, "notifier", None)
        if notifier is None:
            return _error_response("Upload processing disabled", status=503)

        try:
            body = await request.json()
            event = StorageEvent.from_payload(body)
        except Exception as e:
            return _error_response(f"Invalid storage event: {e}")

        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, notifier.handle_storage_event, event)
        except UploadError as e:
            booth_log("UPLOAD", f"Processing {event.name} failed: {e}", level="ERROR")
            return _error_response(str(e), status=502)
        except Exception as e:
            booth_log("API", f"Error in /storage: {e!r}", level="ERROR")
            return _error_response(str(e), status=500)

        self.uploads_handled += 1
        if result is None:
            return _json_response({"status": "ignored", "name": event.name})
        return _json_response({
            "status": "processed",
            "name": result.name,
            "short_url": result.short_url,
            "database_path": result.database_path,
            "tweet_id": result.tweet_id,
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /api/status - Return current service state."""
        try:
            publisher = self.service.publisher
            scheduler = self.service.scheduler
            bus = getattr(self.service, "event_bus", None)
            data = {
                "flow": self.service.config.flow,
                "uptime_seconds": round(time.time() - self._start_time, 1),
                "turns_handled": self.turns_handled,
                "uploads_handled": self.uploads_handled,
                "commands_sent": publisher.sent_count,
                "commands_failed": publisher.failed_count,
                "commands_pending": len(scheduler.pending()),
                "events": bus.get_stats() if bus else None,
            }
            return _json_response(data)
        except Exception as e:
            booth_log("API", f"Error in /api/status: {e}", level="ERROR")
            return _error_response(str(e), status=500)

    async def _handle_get_config(self, request: web.Request) -> web.Response:
        """GET /api/config - Return current config (safe fields only, no secrets)."""
        try:
            cfg = self.service.config
            data = {
                "flow": cfg.flow,
                "retake_limit": cfg.retake_limit,
                "last_chance_at": cfg.last_chance_at,
                "cursor_scope": cfg.cursor_scope,
                "context_lifespan": cfg.context_lifespan,
                "command_topic": cfg.command_topic,
                "mqtt_host": cfg.mqtt_host,
                "mqtt_port": cfg.mqtt_port,
                "uploads_enabled": cfg.uploads_enabled,
                "tweet_enabled": cfg.tweet_enabled,
                "twitter_configured": cfg.twitter_configured,
                "api_host": cfg.api_host,
                "api_port": cfg.api_port,
            }
            return _json_response(data)
        except Exception as e:
            booth_log("API", f"Error in /api/config: {e}", level="ERROR")
            return _error_response(str(e), status=500)

    async def _handle_get_prompts(self, request: web.Request) -> web.Response:
        """GET /api/prompts - Prompt names with variant counts."""
        catalog = self.service.planner.catalog
        return _json_response({
            "prompts": {
                name: {"variants": len(catalog.variants(name)), "delayed": catalog.is_delayed(name)}
                for name in catalog.names()
            }
        })

    async def _handle_get_schedule(self, request: web.Request) -> web.Response:
        """GET /api/schedule - Pending delayed commands."""
        return _json_response({"pending": [e.to_dict() for e in self.service.scheduler.pending()]})

    async def _handle_ws_events(self, request: web.Request) -> web.WebSocketResponse:
        """GET /api/events - WebSocket endpoint for real-time event streaming."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._ws_clients.append(ws)
        booth_log("API", f"WebSocket client connected (total: {len(self._ws_clients)})")

        try:
            await ws.send_json({
                "event": "CONNECTED",
                "data": {"flow": self.service.config.flow},
                "timestamp": datetime.now().isoformat(),
            })

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    try:
                        client_msg = json.loads(msg.data)
                    except (json.JSONDecodeError, TypeError):
                        continue
                    if isinstance(client_msg, dict) and client_msg.get("type") == "ping":
                        await ws.send_json({"event": "pong", "timestamp": datetime.now().isoformat()})
                elif msg.type == web.WSMsgType.ERROR:
                    booth_log("API", f"WebSocket error: {ws.exception()}", level="ERROR")
                    break
        finally:
            self._ws_clients.remove(ws)
            booth_log("API", f"WebSocket client disconnected (remaining: {len(self._ws_clients)})")

        return ws
