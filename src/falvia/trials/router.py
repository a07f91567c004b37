"""Trial endpoints, the admin expiry sweep and the trial change socket."""

from __future__ import annotations

from dataclasses import asdict

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.db.models import TrialRecord
from falvia.dependencies import get_db, get_redis_dep
from falvia.redis_client import get_redis_or_none
from falvia.schemas import Envelope, ok
from falvia.time_utils import as_utc
from falvia.trials.events import TrialChangeFeed
from falvia.trials.schemas import (
    EndTrialRequest,
    ExpireTrialsResponse,
    StartTrialResponse,
    TrialRecordResponse,
    TrialStatusResponse,
)
from falvia.trials.trial_service import (
    auto_expire_trials,
    check_trial_status,
    end_trial,
    get_trial_history,
    start_trial,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["Trials"])


def _record_response(record: TrialRecord) -> TrialRecordResponse:
    return TrialRecordResponse(
        status=record.status,
        start_date=as_utc(record.start_date),
        end_date=as_utc(record.end_date),
        ended_at=as_utc(record.ended_at) if record.ended_at else None,
    )


@router.get("/accounts/{account_id}/trial", response_model=Envelope[TrialStatusResponse])
async def trial_status(account_id: int, db: AsyncSession = Depends(get_db)):
    """Eligibility and remaining time."""
    view = await check_trial_status(db, account_id)
    return ok(TrialStatusResponse(**asdict(view)))


@router.post("/accounts/{account_id}/trial/start", response_model=Envelope[StartTrialResponse])
async def trial_start(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Start the one free trial."""
    record = await start_trial(db, redis, account_id)
    return ok(StartTrialResponse(trial_end_date=as_utc(record.end_date)))


@router.post("/accounts/{account_id}/trial/end", response_model=Envelope[TrialRecordResponse])
async def trial_end(
    account_id: int,
    body: EndTrialRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """End an active trial as expired, converted or cancelled."""
    record = await end_trial(db, redis, account_id, body.reason)
    return ok(_record_response(record))


@router.get("/accounts/{account_id}/trial/history", response_model=Envelope[TrialRecordResponse | None])
async def trial_history(account_id: int, db: AsyncSession = Depends(get_db)):
    """The account's trial record, if it ever started one."""
    record = await get_trial_history(db, account_id)
    return ok(_record_response(record) if record else None)


@router.post("/admin/trials/expire", response_model=Envelope[ExpireTrialsResponse])
async def expire_trials(
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Run the expiry sweep now."""
    return ok(ExpireTrialsResponse(expired=await auto_expire_trials(db, redis)))


@router.websocket("/accounts/{account_id}/trial/changes")
async def trial_changes(websocket: WebSocket, account_id: int) -> None:
    """Push every trial state change for the account as JSON."""
    redis = get_redis_or_none()
    await websocket.accept()
    if redis is None:
        await websocket.close(code=1011, reason="Trial feed unavailable")
        return

    subscription = await TrialChangeFeed(redis).subscribe(account_id, websocket.send_json)
    try:
        while True:
            # Client messages are ignored; this only detects disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("trial_socket_disconnected", account_id=account_id)
    finally:
        await subscription.unsubscribe()
