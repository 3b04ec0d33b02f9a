#!/usr/bin/env python3
"""Photobooth assistant service: wires the dialogue, command channel, upload
pipeline and HTTP server together and keeps them running."""

import os
import time
import traceback
from typing import Optional

from dotenv import load_dotenv

from photobooth import PROJECT_ROOT, __version__

load_dotenv(os.path.join(PROJECT_ROOT, '.env'))

from photobooth.api.server import BoothAPI
from photobooth.catalog import PromptCatalog
from photobooth.commands import CommandPublisher, CommandScheduler
from photobooth.config_loader import BoothConfig, load_config_yaml
from photobooth.dialogue import DialogueController
from photobooth.event_bus import EventBus, EventType, get_event_bus
from photobooth.response_planner import ResponsePlanner
from photobooth.uploads import UploadNotifier
from photobooth.utils import booth_log, setup_crash_protection


class BoothService:
    """Owns every long-lived component of the assistant."""

    def __init__(self, config: BoothConfig, event_bus: Optional[EventBus] = None,
                 publisher: Optional[CommandPublisher] = None):
        self.config = config
        self.event_bus = event_bus or get_event_bus()

        self.catalog = PromptCatalog.load(config.prompts_path)
        self.planner = ResponsePlanner(self.catalog)

        self.publisher = publisher or CommandPublisher(
            host=config.mqtt_host,
            port=config.mqtt_port,
            topic=config.command_topic,
            client_id=config.mqtt_client_id,
            username=config.mqtt_username,
            password=config.mqtt_password,
            tls=config.mqtt_tls,
            event_bus=self.event_bus,
        )
        self.scheduler = CommandScheduler(self.publisher, store_path=config.schedule_store, event_bus=self.event_bus)
        self.controller = DialogueController.from_config(
            config, self.planner, self.publisher, self.scheduler, event_bus=self.event_bus
        )
        self.notifier: Optional[UploadNotifier] = None
        if config.uploads_enabled:
            self.notifier = UploadNotifier.from_config(config, event_bus=self.event_bus)

        self.api = BoothAPI(self, host=config.api_host, port=config.api_port)
        self._running = False

    def start(self):
        self.event_bus.start()
        self.scheduler.start()
        self.api.start()
        self._running = True
        self.event_bus.publish(
            EventType.SYSTEM_STARTUP,
            {"version": __version__, "flow": self.config.flow},
            source="service",
        )

    def stop(self):
        if not self._running:
            return
        self._running = False
        self.event_bus.publish(EventType.SYSTEM_SHUTDOWN, {}, source="service", wait=True)
        self.api.stop()
        self.scheduler.stop()
        self.publisher.close()
        self.event_bus.stop()

    @property
    def is_running(self) -> bool:
        return self._running


def main():
    setup_crash_protection()

    service = None
    try:
        yaml_config = load_config_yaml(os.getenv("BOOTH_CONFIG", "config.yaml"))
        config = BoothConfig.from_yaml(yaml_config)
        config.print_config_banner()

        service = BoothService(config)
        service.start()
        booth_log("BOOTH", f"Service started (v{__version__}), Ctrl+C to stop")

        # Watchdog loop
        while True:
            time.sleep(1)
            thread = service.api._thread
            if thread is not None and not thread.is_alive():
                booth_log("WATCHDOG", "API thread died! Restarting...", level="ERROR")
                service.api.start()

    except KeyboardInterrupt:
        booth_log("BOOTH", "Stopping...")
        if service:
            service.stop()
    except Exception as e:
        booth_log("CRITICAL", f"Unhandled exception in main: {e}", level="ERROR")
        booth_log("CRITICAL", traceback.format_exc(), level="ERROR")
        if service:
            service.stop()
        raise


if __name__ == "__main__":
    main()
