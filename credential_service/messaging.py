"""Fire-and-forget delivery of mail notifications to the mail-dispatch worker."""

from __future__ import annotations

import json
import logging
from typing import Protocol
from urllib.parse import urlencode

from redis import Redis
from redis.exceptions import RedisError

from .config import Settings
from .domain.notifications import Notification, NotificationKind

logger = logging.getLogger(__name__)

_LINK_PATHS = {
    NotificationKind.verification: "/api/auth/verify",
    NotificationKind.password_reset: "/api/auth/password-reset",
}


class NotificationPublisher(Protocol):
    def publish(self, notification: Notification) -> None: ...


def build_message(notification: Notification, base_url: str) -> dict[str, str]:
    """Render the wire payload consumed by the mail sender."""
    link = f"{base_url.rstrip('/')}{_LINK_PATHS[notification.kind]}?{urlencode({'token': notification.token})}"
    return {
        "to": notification.to,
        "kind": notification.kind.value,
        "token": notification.token,
        "displayName": notification.display_name,
        "link": link,
    }


class RedisNotificationPublisher:
    """Pushes JSON notifications onto a Redis list drained by the mail worker."""

    def __init__(self, client: Redis, *, queue: str, base_url: str) -> None:
        self._client = client
        self._queue = queue
        self._base_url = base_url

    def publish(self, notification: Notification) -> None:
        """Enqueue the notification; delivery problems are logged, never raised."""
        payload = json.dumps(build_message(notification, self._base_url))
        try:
            self._client.rpush(self._queue, payload)
        except RedisError as exc:
            logger.warning(
                "failed to enqueue %s notification for %s: %s",
                notification.kind.value,
                notification.to,
                exc,
            )


class LoggingNotificationPublisher:
    """Publisher used when no broker is configured; records the dispatch only."""

    def publish(self, notification: Notification) -> None:
        logger.info(
            "mail dispatch skipped (no broker): %s notification for %s",
            notification.kind.value,
            notification.to,
        )


def build_publisher(settings: Settings) -> NotificationPublisher:
    """Instantiate the configured publisher, preferring Redis when reachable."""
    if settings.notification_backend == "redis" and settings.redis_url:
        try:
            client = Redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("notifications configured for redis queue %s", settings.notification_queue)
            return RedisNotificationPublisher(
                client,
                queue=settings.notification_queue,
                base_url=settings.public_base_url,
            )
        except (RedisError, ValueError) as exc:
            # ValueError: malformed REDIS_URL
            logger.warning("redis unavailable, notifications will only be logged: %s", exc)

    logger.info("notifications using logging publisher")
    return LoggingNotificationPublisher()
