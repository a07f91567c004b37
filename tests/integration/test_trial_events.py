"""Tests for the trial change feed over Redis pub/sub (Redis mocked)."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from falvia.db.models import TrialRecord, TrialStatus
from falvia.trials.events import TrialChangeFeed, publish_trial_change, trial_payload
from tests.conftest import NOW


def _record() -> TrialRecord:
    return TrialRecord(
        account_id=3,
        start_date=NOW,
        end_date=NOW + timedelta(days=3),
        status=TrialStatus.ACTIVE.value,
    )


def _mock_redis(messages: list[dict]) -> tuple[MagicMock, AsyncMock]:
    pubsub = AsyncMock()

    async def get_message(**_kwargs):
        if messages:
            return messages.pop(0)
        await asyncio.sleep(0.01)
        return None

    pubsub.get_message = get_message
    redis = MagicMock()
    redis.pubsub.return_value = pubsub
    return redis, pubsub


async def _wait_for(received: list, count: int) -> None:
    for _ in range(100):
        if len(received) >= count:
            return
        await asyncio.sleep(0.01)


class TestPublish:
    """Publishing is best effort."""

    def test_payload(self):
        payload = trial_payload(_record(), "trial_started")
        assert payload["event"] == "trial_started"
        assert payload["status"] == "ACTIVE"
        assert payload["end_date"] == "2026-03-13T12:00:00+00:00"
        assert payload["ended_at"] is None

    @pytest.mark.asyncio
    async def test_publish_channel(self):
        redis = AsyncMock()
        await publish_trial_change(redis, _record(), "trial_started")
        channel, payload = redis.publish.await_args.args
        assert channel == "pubsub:trial:3"
        assert json.loads(payload)["event"] == "trial_started"

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("down")
        await publish_trial_change(redis, _record(), "trial_started")

    @pytest.mark.asyncio
    async def test_no_redis(self):
        await publish_trial_change(None, _record(), "trial_started")


class TestTrialChangeFeed:
    """Subscribe, receive, unsubscribe."""

    @pytest.mark.asyncio
    async def test_delivers_to_async_callback(self):
        event = trial_payload(_record(), "trial_started")
        redis, pubsub = _mock_redis([{"type": "message", "data": json.dumps(event)}])
        received: list[dict] = []

        async def on_change(payload):
            received.append(payload)

        subscription = await TrialChangeFeed(redis).subscribe(3, on_change)
        await _wait_for(received, 1)
        await subscription.unsubscribe()

        assert received == [event]
        pubsub.subscribe.assert_awaited_once_with("pubsub:trial:3")
        pubsub.unsubscribe.assert_awaited_once_with("pubsub:trial:3")
        pubsub.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_callback_and_bad_json(self):
        redis, _ = _mock_redis([
            {"type": "message", "data": b"not json"},
            {"type": "message", "data": b'{"event": "trial_expired"}'},
        ])
        received: list[dict] = []

        subscription = await TrialChangeFeed(redis).subscribe(3, received.append)
        await _wait_for(received, 1)
        await subscription.unsubscribe()

        assert received == [{"event": "trial_expired"}]

    @pytest.mark.asyncio
    async def test_unsubscribe_twice(self):
        redis, pubsub = _mock_redis([])
        subscription = await TrialChangeFeed(redis).subscribe(3, lambda _p: None)

        await subscription.unsubscribe()
        await subscription.unsubscribe()

        assert subscription.active is False
        pubsub.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_listener_failure_marks_inactive(self):
        redis, pubsub = _mock_redis([])
        pubsub.get_message = AsyncMock(side_effect=RedisConnectionError("connection lost"))

        subscription = await TrialChangeFeed(redis).subscribe(3, lambda _p: None)
        for _ in range(100):
            if not subscription.active:
                break
            await asyncio.sleep(0.01)

        assert subscription.active is False
        await subscription.unsubscribe()
        pubsub.unsubscribe.assert_awaited_once_with("pubsub:trial:3")
        pubsub.close.assert_awaited_once()
