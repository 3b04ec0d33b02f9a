#!/usr/bin/env python3
"""Configuration loader for the photobooth assistant."""

import os
from dataclasses import dataclass
from typing import Optional

from photobooth.utils import booth_log, parse_bool

FLOW_STANDARD = "standard"
FLOW_SHARE = "share"

CURSOR_SCOPE_PROCESS = "process"
CURSOR_SCOPE_SESSION = "session"


def load_config_yaml(config_path: str = "config.yaml") -> dict:
    """Load configuration from a YAML file."""
    import yaml
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except Exception as e:
            booth_log("CONFIG", f"Warning: Failed to load {config_path}: {e}", level="WARNING")
    return {}


@dataclass
class BoothConfig:
    """Photobooth service configuration."""
    # Account id of the booth device; empty rejects every caller unless allow_any_caller is set
    authorized_user_id: str = ""
    allow_any_caller: bool = False

    # Dialogue
    flow: str = FLOW_STANDARD
    retake_limit: int = 6
    last_chance_at: int = 5
    cursor_scope: str = CURSOR_SCOPE_PROCESS
    context_lifespan: int = 3

    # Prompt catalog (None = bundled responses.yaml)
    prompts_path: Optional[str] = None

    # Command channel
    command_topic: str = "io-photobooth"
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    mqtt_client_id: str = ""
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_tls: bool = False
    schedule_store: Optional[str] = None

    # Upload pipeline
    uploads_enabled: bool = True
    shortener_url: str = "https://www.googleapis.com/urlshortener/v1/url"
    shortener_api_key: str = ""
    database_url: str = ""
    storage_base_url: str = "https://firebasestorage.googleapis.com/v0"
    tweet_enabled: bool = True
    tweet_message: str = "Hey! Here's your photo: {url}"
    twitter_consumer_key: str = ""
    twitter_consumer_secret: str = ""
    twitter_access_token_key: str = ""
    twitter_access_token_secret: str = ""
    http_timeout: float = 15.0

    # HTTP server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    @classmethod
    def from_yaml(cls, yaml_config: dict) -> "BoothConfig":
        """Create config from YAML + env vars."""
        config = cls()
        yaml_config = yaml_config or {}

        assistant_cfg = yaml_config.get("assistant", {}) or {}
        dialogue_cfg = yaml_config.get("dialogue", {}) or {}
        prompts_cfg = yaml_config.get("prompts", {}) or {}
        commands_cfg = yaml_config.get("commands", {}) or {}
        mqtt_cfg = commands_cfg.get("mqtt", {}) if isinstance(commands_cfg.get("mqtt", {}), dict) else {}
        uploads_cfg = yaml_config.get("uploads", {}) or {}
        twitter_cfg = uploads_cfg.get("twitter", {}) if isinstance(uploads_cfg.get("twitter", {}), dict) else {}
        api_cfg = yaml_config.get("api", {}) or {}

        config.authorized_user_id = str(
            assistant_cfg.get("photobooth_id", config.authorized_user_id) or ""
        ).strip()
        config.allow_any_caller = parse_bool(assistant_cfg.get("allow_any_caller"), config.allow_any_caller)

        config.flow = str(dialogue_cfg.get("flow", config.flow)).strip().lower()
        config.retake_limit = int(dialogue_cfg.get("retake_limit", config.retake_limit))
        config.last_chance_at = int(dialogue_cfg.get("last_chance_at", config.last_chance_at))
        config.cursor_scope = str(dialogue_cfg.get("cursor_scope", config.cursor_scope)).strip().lower()
        config.context_lifespan = int(dialogue_cfg.get("context_lifespan", config.context_lifespan))

        config.prompts_path = prompts_cfg.get("path", config.prompts_path)

        config.command_topic = str(commands_cfg.get("topic", config.command_topic)).strip()
        config.schedule_store = commands_cfg.get("schedule_store", config.schedule_store)
        config.mqtt_host = str(mqtt_cfg.get("host", config.mqtt_host)).strip()
        config.mqtt_port = int(mqtt_cfg.get("port", config.mqtt_port))
        config.mqtt_client_id = str(mqtt_cfg.get("client_id", config.mqtt_client_id) or "").strip()
        config.mqtt_username = str(mqtt_cfg.get("username", config.mqtt_username) or "")
        config.mqtt_password = str(mqtt_cfg.get("password", config.mqtt_password) or "")
        config.mqtt_tls = parse_bool(mqtt_cfg.get("tls"), config.mqtt_tls)

        config.uploads_enabled = parse_bool(uploads_cfg.get("enabled"), config.uploads_enabled)
        config.shortener_url = str(uploads_cfg.get("shortener_url", config.shortener_url)).strip()
        config.shortener_api_key = str(uploads_cfg.get("shortener_api_key", config.shortener_api_key) or "")
        config.database_url = str(uploads_cfg.get("database_url", config.database_url) or "").strip().rstrip("/")
        config.storage_base_url = str(uploads_cfg.get("storage_base_url", config.storage_base_url)).strip().rstrip("/")
        config.tweet_enabled = parse_bool(uploads_cfg.get("tweet_enabled"), config.tweet_enabled)
        config.tweet_message = str(uploads_cfg.get("tweet_message", config.tweet_message))
        config.http_timeout = float(uploads_cfg.get("http_timeout", config.http_timeout))
        config.twitter_consumer_key = str(twitter_cfg.get("consumer_key", config.twitter_consumer_key) or "")
        config.twitter_consumer_secret = str(twitter_cfg.get("consumer_secret", config.twitter_consumer_secret) or "")
        config.twitter_access_token_key = str(twitter_cfg.get("access_token_key", config.twitter_access_token_key) or "")
        config.twitter_access_token_secret = str(
            twitter_cfg.get("access_token_secret", config.twitter_access_token_secret) or ""
        )

        config.api_host = str(api_cfg.get("host", config.api_host)).strip()
        config.api_port = int(api_cfg.get("port", config.api_port))

        # Env var overrides
        if os.getenv("BOOTH_PHOTOBOOTH_ID"):
            config.authorized_user_id = os.getenv("BOOTH_PHOTOBOOTH_ID").strip()
        if os.getenv("BOOTH_ALLOW_ANY_CALLER"):
            config.allow_any_caller = parse_bool(os.getenv("BOOTH_ALLOW_ANY_CALLER"))
        if os.getenv("BOOTH_FLOW"):
            config.flow = os.getenv("BOOTH_FLOW").strip().lower()
        if os.getenv("BOOTH_CURSOR_SCOPE"):
            config.cursor_scope = os.getenv("BOOTH_CURSOR_SCOPE").strip().lower()
        if os.getenv("BOOTH_PROMPTS_PATH"):
            config.prompts_path = os.getenv("BOOTH_PROMPTS_PATH").strip()
        if os.getenv("BOOTH_COMMAND_TOPIC"):
            config.command_topic = os.getenv("BOOTH_COMMAND_TOPIC").strip()
        if os.getenv("BOOTH_SCHEDULE_STORE"):
            config.schedule_store = os.getenv("BOOTH_SCHEDULE_STORE").strip()
        if os.getenv("MQTT_HOST"):
            config.mqtt_host = os.getenv("MQTT_HOST").strip()
        if os.getenv("MQTT_PORT"):
            config.mqtt_port = int(os.getenv("MQTT_PORT"))
        if os.getenv("MQTT_CLIENT_ID"):
            config.mqtt_client_id = os.getenv("MQTT_CLIENT_ID").strip()
        if os.getenv("MQTT_USERNAME"):
            config.mqtt_username = os.getenv("MQTT_USERNAME")
        if os.getenv("MQTT_PASSWORD"):
            config.mqtt_password = os.getenv("MQTT_PASSWORD")
        if os.getenv("MQTT_TLS"):
            config.mqtt_tls = parse_bool(os.getenv("MQTT_TLS"))
        if os.getenv("URL_SHORTENER_API_KEY"):
            config.shortener_api_key = os.getenv("URL_SHORTENER_API_KEY").strip()
        if os.getenv("BOOTH_DATABASE_URL"):
            config.database_url = os.getenv("BOOTH_DATABASE_URL").strip().rstrip("/")
        if os.getenv("BOOTH_TWEET_ENABLED"):
            config.tweet_enabled = parse_bool(os.getenv("BOOTH_TWEET_ENABLED"))
        if os.getenv("TWITTER_CONSUMER_KEY"):
            config.twitter_consumer_key = os.getenv("TWITTER_CONSUMER_KEY").strip()
        if os.getenv("TWITTER_CONSUMER_SECRET"):
            config.twitter_consumer_secret = os.getenv("TWITTER_CONSUMER_SECRET").strip()
        if os.getenv("TWITTER_ACCESS_TOKEN_KEY"):
            config.twitter_access_token_key = os.getenv("TWITTER_ACCESS_TOKEN_KEY").strip()
        if os.getenv("TWITTER_ACCESS_TOKEN_SECRET"):
            config.twitter_access_token_secret = os.getenv("TWITTER_ACCESS_TOKEN_SECRET").strip()
        if os.getenv("BOOTH_API_HOST"):
            config.api_host = os.getenv("BOOTH_API_HOST").strip()
        if os.getenv("BOOTH_API_PORT"):
            config.api_port = int(os.getenv("BOOTH_API_PORT"))

        flow_aliases = {
            "print": FLOW_STANDARD,
            "default": FLOW_STANDARD,
            "share_enabled": FLOW_SHARE,
            "sharing": FLOW_SHARE,
        }
        config.flow = flow_aliases.get(config.flow, config.flow)
        if config.flow not in {FLOW_STANDARD, FLOW_SHARE}:
            booth_log("CONFIG", f"Unknown dialogue.flow='{config.flow}', fallback to {FLOW_STANDARD}", level="WARNING")
            config.flow = FLOW_STANDARD
        if config.cursor_scope not in {CURSOR_SCOPE_PROCESS, CURSOR_SCOPE_SESSION}:
            booth_log("CONFIG", f"Unknown dialogue.cursor_scope='{config.cursor_scope}', fallback to {CURSOR_SCOPE_PROCESS}", level="WARNING")
            config.cursor_scope = CURSOR_SCOPE_PROCESS
        if config.retake_limit < 0:
            config.retake_limit = 0
        if config.allow_any_caller:
            booth_log("CONFIG", "assistant.allow_any_caller is on: every caller can start the booth", level="WARNING")
        elif not config.authorized_user_id:
            booth_log("CONFIG", "assistant.photobooth_id is not set: every caller will be rejected", level="WARNING")

        return config

    @property
    def twitter_configured(self) -> bool:
        return all((
            self.twitter_consumer_key,
            self.twitter_consumer_secret,
            self.twitter_access_token_key,
            self.twitter_access_token_secret,
        ))

    def print_config_banner(self):
        """Print a startup summary with ASCII-safe formatting."""
        line = "=" * 58
        print("\n" + line)
        print("PHOTOBOOTH ASSISTANT")
        print(line)
        print(f"Flow    : {self.flow} (retake limit: {self.retake_limit or 'off'})")
        print(f"Cursor  : {self.cursor_scope}")
        if self.allow_any_caller:
            booth_id = "(any caller)"
        else:
            booth_id = self.authorized_user_id or "(not set, rejecting all callers)"
        print(f"Booth ID: {booth_id}")
        print(f"MQTT    : {self.mqtt_host}:{self.mqtt_port} -> {self.command_topic}")
        print(f"Uploads : {'on' if self.uploads_enabled else 'off'}")
        print(f"\t\tDatabase: {self.database_url or '(not set)'}")
        print(f"\t\tTwitter : {'configured' if self.twitter_configured else 'not configured'}")
        print(f"API     : http://{self.api_host}:{self.api_port}")
        print(line + "\n")
