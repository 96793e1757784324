"""Webhook alerts for origin reachability and cache lifecycle changes."""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

import requests

from .config import AlertsConfig, WebhookConfig
from .host import ACTIVATE_COMPLETE, INSTALL_FAILED
from .models import LifecycleEvent

logger = logging.getLogger(__name__)

ORIGIN_DOWN = "origin_down"
ORIGIN_UP = "origin_up"
CACHE_INSTALL_FAILED = "cache_install_failed"
CACHE_ACTIVATED = "cache_activated"

_FAILURE_EVENTS = frozenset({ORIGIN_DOWN, CACHE_INSTALL_FAILED})


@dataclass
class StateTracker:
    """Track origin state and alert cooldowns."""

    origin_online: bool | None = None
    last_alert_time: dict[tuple[str, str], float] = field(default_factory=dict)  # {(url, event): timestamp}


class Alerter:
    """Sends webhook alerts when the origin goes down or comes back, and on cache changes."""

    def __init__(self, config: AlertsConfig, origin_url: str, max_retries: int = 3, retry_delay: int = 2):
        """Initialize alerter with configuration.

        Args:
            config: Alerts configuration with webhooks
            origin_url: Origin the gateway fronts, included in every payload
            max_retries: Maximum number of retry attempts for failed webhooks
            retry_delay: Base delay in seconds between retries (increases exponentially)
        """
        self._config = config
        self._origin_url = origin_url
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._state_tracker = StateTracker()
        self._lock = threading.Lock()

    def process_connectivity_change(self, online: bool) -> None:
        """Alert on origin state transitions. The first known state is not alerted."""
        with self._lock:
            previous = self._state_tracker.origin_online
            self._state_tracker.origin_online = online
            if previous is None or previous == online:
                return
            self._dispatch(ORIGIN_UP if online else ORIGIN_DOWN, version=None, detail={})

    def process_lifecycle_event(self, event: LifecycleEvent) -> None:
        """Alert on failed installs and on activation of a new cache version."""
        if event.name == INSTALL_FAILED:
            name = CACHE_INSTALL_FAILED
        elif event.name == ACTIVATE_COMPLETE:
            name = CACHE_ACTIVATED
        else:
            return

        with self._lock:
            self._dispatch(name, version=event.version, detail=dict(event.detail))

    def _dispatch(self, event: str, version: str | None, detail: dict) -> None:
        is_failure = event in _FAILURE_EVENTS
        for webhook in self._config.webhooks:
            if not webhook.enabled:
                continue
            if is_failure and not webhook.on_failure:
                continue
            if not is_failure and not webhook.on_recovery:
                continue

            if not self._is_cooldown_expired(webhook.url, event, webhook.cooldown_seconds):
                logger.debug("Webhook cooldown active for %s to %s, skipping", event, webhook.url)
                continue

            self._send_webhook(webhook, self._build_payload(event, version, detail))

    def _is_cooldown_expired(self, url: str, event: str, cooldown_seconds: int) -> bool:
        last_alert = self._state_tracker.last_alert_time.get((url, event))
        if last_alert is None:
            return True
        return time.time() - last_alert >= cooldown_seconds

    def _build_payload(self, event: str, version: str | None, detail: dict) -> dict:
        return {
            "event": event,
            "origin": self._origin_url,
            "cache_version": version,
            "detail": detail,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def _send_webhook(self, webhook: WebhookConfig, payload: dict) -> None:
        """Send a webhook alert (with retries)."""
        event = payload["event"]
        retry_count = 0

        while retry_count <= self._max_retries:
            try:
                response = requests.post(webhook.url, json=payload, timeout=10)
                response.raise_for_status()

                logger.info("Webhook sent successfully for %s to %s", event, webhook.url)
                self._state_tracker.last_alert_time[(webhook.url, event)] = time.time()
                return

            except requests.RequestException as e:
                retry_count += 1
                if retry_count <= self._max_retries:
                    delay = self._retry_delay * (2 ** (retry_count - 1))
                    logger.warning(
                        "Webhook failed for %s (attempt %d/%d, retrying in %ds): %s",
                        event,
                        retry_count,
                        self._max_retries + 1,
                        delay,
                        e,
                    )
                    time.sleep(delay)
                else:
                    logger.error("Webhook failed for %s after %d attempts: %s", event, retry_count, e)

    def test_webhooks(self) -> dict[str, bool]:
        """Send a test payload to every configured webhook.

        Returns:
            Dictionary mapping webhook URLs to success status
        """
        results = {}

        for webhook in self._config.webhooks:
            if not webhook.enabled:
                results[webhook.url] = False
                continue

            try:
                response = requests.post(
                    webhook.url,
                    json=self._build_payload("test", version=None, detail={}),
                    timeout=10,
                )
                response.raise_for_status()
                results[webhook.url] = True
                logger.info("Test webhook sent successfully to %s", webhook.url)

            except requests.RequestException as e:
                results[webhook.url] = False
                logger.error("Test webhook failed for %s: %s", webhook.url, e)

        return results
