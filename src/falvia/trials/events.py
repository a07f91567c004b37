"""Trial change feed over Redis pub/sub.

Every trial state change is published on ``pubsub:trial:<account_id>``.
``TrialChangeFeed.subscribe`` returns a handle whose ``unsubscribe()``
stops the listener and releases the pub/sub connection.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from redis.exceptions import RedisError

from falvia.db.models import TrialRecord
from falvia.time_utils import as_utc

logger = logging.getLogger(__name__)
feed_logger = structlog.get_logger()

TRIAL_CHANNEL = "pubsub:trial:{account_id}"

TrialCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


def trial_payload(record: TrialRecord, event: str) -> dict[str, Any]:
    """Serialise a trial record for subscribers."""
    return {
        "event": event,
        "account_id": record.account_id,
        "status": record.status,
        "start_date": as_utc(record.start_date).isoformat(),
        "end_date": as_utc(record.end_date).isoformat(),
        "ended_at": as_utc(record.ended_at).isoformat() if record.ended_at else None,
    }


async def publish_trial_change(redis: object, record: TrialRecord, event: str) -> None:
    """Publish a trial change. Delivery is best effort."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[attr-defined]
            TRIAL_CHANNEL.format(account_id=record.account_id),
            json.dumps(trial_payload(record, event)),
        )
    except Exception:
        logger.warning("Failed to publish trial %s event", event, exc_info=True)


class TrialSubscription:
    """Handle for one subscription. Inactive once unsubscribed or once the listener dies."""

    def __init__(self, pubsub: Any, task: asyncio.Task[None], channel: str) -> None:  # noqa: ANN401
        self._pubsub = pubsub
        self._task = task
        self._closed = False
        self.channel = channel

    @property
    def active(self) -> bool:
        return not self._closed and not self._task.done()

    async def unsubscribe(self) -> None:
        """Stop listening and release the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        await self._pubsub.unsubscribe(self.channel)
        await self._pubsub.close()
        feed_logger.info("trial_feed_stopped", channel=self.channel)


class TrialChangeFeed:
    """Subscribe callbacks to one account's trial changes."""

    def __init__(self, redis_client: Any) -> None:  # noqa: ANN401
        self.redis = redis_client

    async def subscribe(self, account_id: int, callback: TrialCallback) -> TrialSubscription:
        channel = TRIAL_CHANNEL.format(account_id=account_id)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)
        task = asyncio.create_task(self._listen(pubsub, channel, callback))
        feed_logger.info("trial_feed_started", channel=channel)
        return TrialSubscription(pubsub, task, channel)

    async def _listen(self, pubsub: Any, channel: str, callback: TrialCallback) -> None:  # noqa: ANN401
        while True:
            try:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisError, OSError) as exc:
                feed_logger.error("trial_feed_failed", channel=channel, error=str(exc))
                return
            if message is None:
                continue

            data = message.get("data", b"")
            if isinstance(data, bytes):
                data = data.decode()
            try:
                payload = json.loads(data)
            except (json.JSONDecodeError, TypeError):
                feed_logger.warning("trial_feed_invalid_message", channel=channel)
                continue

            try:
                outcome = callback(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Trial change callback failed on %s", channel)
