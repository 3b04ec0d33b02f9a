#!/usr/bin/env python3
"""Photo upload notifier.

Reacts to storage change events for new booth photos: builds the public
download URL, shortens it, records the short URL in the realtime database and,
when the photo's metadata asks for it, tweets the photo with the short link.
No retries; a failing stage abandons the rest of the event.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
from requests_oauthlib import OAuth1

from photobooth.config_loader import BoothConfig
from photobooth.event_bus import EventBus, EventType
from photobooth.utils import booth_log, parse_bool

TWITTER_MEDIA_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TWITTER_TWEET_URL = "https://api.twitter.com/2/tweets"

# Characters encodeURIComponent leaves alone besides alphanumerics and -_.~
_URI_COMPONENT_SAFE = "!*'()"


class UploadError(Exception):
    """A stage of the upload pipeline failed."""


@dataclass
class StorageEvent:
    """A storage object change notification."""
    bucket: str
    name: str
    resource_state: str = "exists"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StorageEvent":
        """Parse a notification body, bare or wrapped in ``{"data": ...}``."""
        if not isinstance(payload, dict):
            raise ValueError("Storage event must be a JSON object")
        obj = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        bucket = obj.get("bucket")
        name = obj.get("name")
        if not bucket or not name:
            raise ValueError("Storage event requires 'bucket' and 'name'")
        state = obj.get("resourceState", obj.get("resource_state", "exists"))
        return cls(
            bucket=str(bucket),
            name=str(name),
            resource_state=str(state),
            metadata=dict(obj.get("metadata") or {}),
        )

    @property
    def tweet_requested(self) -> bool:
        return parse_bool(self.metadata.get("tweetme"))


@dataclass
class UploadResult:
    name: str
    public_url: str
    short_url: str
    database_path: str
    tweet_id: Optional[str] = None


class UploadNotifier:
    """Shortens, records and optionally tweets newly uploaded booth photos."""

    def __init__(
        self,
        shortener_url: str,
        shortener_api_key: str = "",
        database_url: str = "",
        storage_base_url: str = "https://firebasestorage.googleapis.com/v0",
        tweet_enabled: bool = True,
        tweet_message: str = "Hey! Here's your photo: {url}",
        twitter_auth: Optional[OAuth1] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.shortener_url = shortener_url
        self.shortener_api_key = shortener_api_key
        self.database_url = database_url.rstrip("/")
        self.storage_base_url = storage_base_url.rstrip("/")
        self.tweet_enabled = tweet_enabled
        self.tweet_message = tweet_message
        self.twitter_auth = twitter_auth
        self.timeout = timeout
        self.session = session or requests.Session()
        self.event_bus = event_bus

    @classmethod
    def from_config(cls, config: BoothConfig, event_bus: Optional[EventBus] = None) -> "UploadNotifier":
        twitter_auth = None
        if config.twitter_configured:
            twitter_auth = OAuth1(
                config.twitter_consumer_key,
                client_secret=config.twitter_consumer_secret,
                resource_owner_key=config.twitter_access_token_key,
                resource_owner_secret=config.twitter_access_token_secret,
            )
        return cls(
            shortener_url=config.shortener_url,
            shortener_api_key=config.shortener_api_key,
            database_url=config.database_url,
            storage_base_url=config.storage_base_url,
            tweet_enabled=config.tweet_enabled,
            tweet_message=config.tweet_message,
            twitter_auth=twitter_auth,
            timeout=config.http_timeout,
            event_bus=event_bus,
        )

    def _emit(self, event_type: EventType, payload: Dict[str, Any]):
        if self.event_bus:
            self.event_bus.publish(event_type, payload, source="uploads")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def handle_storage_event(self, event: StorageEvent) -> Optional[UploadResult]:
        """Process one storage event; returns None for events that are ignored."""
        if event.resource_state != "exists":
            booth_log("UPLOAD", f"File deleted at path: {event.name}")
            return None

        self._emit(EventType.PHOTO_UPLOADED, {"name": event.name, "bucket": event.bucket})
        public_url = self.public_url(event)
        booth_log("UPLOAD", f"Public URL: {public_url}")

        short_url = self.shorten_url(public_url)
        booth_log("UPLOAD", f"Short URL: {short_url}")
        self._emit(EventType.PHOTO_SHORTENED, {"name": event.name, "short_url": short_url})

        tweet_me = event.tweet_requested and self.tweet_enabled
        if tweet_me and self.twitter_auth is None:
            booth_log("UPLOAD", "Tweet requested but Twitter is not configured, skipping", level="WARNING")
            tweet_me = False

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="upload") as pool:
            db_future = pool.submit(self.write_short_url, event, short_url)
            tweet_future = pool.submit(self.tweet_image, event, short_url) if tweet_me else None
            database_path = db_future.result()
            tweet_id = tweet_future.result() if tweet_future else None

        return UploadResult(
            name=event.name,
            public_url=public_url,
            short_url=short_url,
            database_path=database_path,
            tweet_id=tweet_id,
        )

    def public_url(self, event: StorageEvent) -> str:
        """Public download URL of a storage object."""
        encoded_path = quote(event.name, safe=_URI_COMPONENT_SAFE)
        url = f"{self.storage_base_url}/b/{event.bucket}/o/{encoded_path}?alt=media"
        token = event.metadata.get("firebaseStorageDownloadTokens")
        if token:
            url += f"&token={token}"
        return url

    def shorten_url(self, long_url: str) -> str:
        """POST ``{"longUrl": ...}`` to the shortener; returns the ``id`` field."""
        params = {"key": self.shortener_api_key} if self.shortener_api_key else None
        try:
            response = self.session.post(
                self.shortener_url,
                params=params,
                json={"longUrl": long_url},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UploadError(f"URL shortener request failed: {e}") from e

        if response.status_code != 200:
            raise UploadError(f"Status Code: {response.status_code}")
        try:
            return str(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise UploadError(f"Unexpected URL shortener response: {response.text[:200]}") from e

    @staticmethod
    def database_path(name: str) -> str:
        """Database path for an object: images/foo.jpg -> /links/images/foo."""
        stem = name.rsplit(".", 1)[0] if "." in name else name
        return "/links/" + stem.lstrip("/")

    def write_short_url(self, event: StorageEvent, short_url: str) -> str:
        path = self.database_path(event.name)
        if not self.database_url:
            booth_log("UPLOAD", f"No database URL configured, not recording {path}", level="WARNING")
            return path
        try:
            response = self.session.put(f"{self.database_url}{path}.json", json=short_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UploadError(f"Database write to {path} failed: {e}") from e
        booth_log("UPLOAD", f"Recorded {short_url} at {path}")
        return path

    # ------------------------------------------------------------------
    # Twitter
    # ------------------------------------------------------------------

    def download_image(self, event: StorageEvent) -> bytes:
        try:
            response = self.session.get(self.public_url(event), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UploadError(f"Download of {event.name} failed: {e}") from e
        booth_log("UPLOAD", f"Image downloaded ({len(response.content)} bytes)")
        return response.content

    def upload_media(self, data: bytes) -> str:
        """Upload image bytes; returns the media id string."""
        try:
            response = self.session.post(
                TWITTER_MEDIA_UPLOAD_URL,
                files={"media": data},
                auth=self.twitter_auth,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return str(response.json()["media_id_string"])
        except requests.RequestException as e:
            raise UploadError(f"Twitter media upload failed: {e}") from e
        except (ValueError, KeyError) as e:
            raise UploadError("Twitter media upload returned no media id") from e

    def post_status(self, status: str, media_id: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"text": status}
        if media_id:
            payload["media"] = {"media_ids": [media_id]}
        try:
            response = self.session.post(
                TWITTER_TWEET_URL,
                json=payload,
                auth=self.twitter_auth,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise UploadError(f"Tweet failed: {e}") from e
        except ValueError as e:
            raise UploadError("Tweet response was not JSON") from e

    def tweet_image(self, event: StorageEvent, short_url: str) -> Optional[str]:
        """Tweet the photo with its short link; returns the tweet id."""
        message = self.tweet_message.replace("{url}", short_url)
        media_id = self.upload_media(self.download_image(event))
        tweet = self.post_status(message, media_id)
        tweet_id = (tweet.get("data") or {}).get("id")
        booth_log("UPLOAD", f"Tweeted {event.name} (id={tweet_id})")
        self._emit(EventType.PHOTO_POSTED, {"name": event.name, "tweet_id": tweet_id})
        return tweet_id
