"""作业接口：发布请求、查询历史与活跃作业、推导作业状态并订阅观测事件。"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from dvm_gateway.api.v1.errors import to_http_error
from dvm_gateway.api.v1.schemas import (
    JobCreateRequest,
    JobCreateResponse,
    JobHistoryItem,
    JobRequestModel,
    JobStateResponse,
    RawEventModel,
)
from dvm_gateway.application.container import get_reconciler_service
from dvm_gateway.application.reconciler import ReconcilerService
from dvm_gateway.config import get_settings
from dvm_gateway.domain.codec import decode_job_request
from dvm_gateway.domain.enums import ACTIVE_STATUSES, JobStatus, PollScope
from dvm_gateway.domain.polling import next_poll_delay
from dvm_gateway.infra.logging.context import bind_log_context
from dvm_gateway.infra.relay.client import RelayError

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


def _service() -> ReconcilerService:
    return get_reconciler_service()


@router.post("/jobs", response_model=JobCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    payload: JobCreateRequest,
    reconciler: ReconcilerService = Depends(_service),
) -> JobCreateResponse:
    """校验并发布作业请求，随后开始跟踪。"""
    logger.info(
        "create_job requested",
        extra={
            "event": "job.create.requested",
            "kind": payload.kind,
            "payload_preview": {"inputs": len(payload.inputs), "params": len(payload.params)},
        },
    )
    try:
        event = await reconciler.create_job(payload.to_domain())
    except (ValueError, RelayError) as exc:
        raise to_http_error(exc) from exc
    return JobCreateResponse(job_id=event.id, status=JobStatus.pending.value, event=RawEventModel.from_event(event))


@router.get("/jobs", response_model=list[JobHistoryItem])
async def list_jobs(
    pubkey: str = Query(..., min_length=1),
    reconciler: ReconcilerService = Depends(_service),
) -> list[JobHistoryItem]:
    """指定身份的作业请求历史，按时间倒序。"""
    try:
        with bind_log_context(pubkey=pubkey):
            events = await reconciler.list_job_history(pubkey)
    except RelayError as exc:
        raise to_http_error(exc) from exc
    items: list[JobHistoryItem] = []
    for event in events:
        request = JobRequestModel.from_domain(decode_job_request(event))
        items.append(
            JobHistoryItem(
                job_id=event.id,
                kind=event.kind,
                kind_name=request.kind_name,
                created_at=event.created_at,
                request=request,
            )
        )
    return items


@router.get("/jobs/active", response_model=list[JobStateResponse])
async def list_active_jobs(
    pubkey: str = Query(..., min_length=1),
    reconciler: ReconcilerService = Depends(_service),
) -> list[JobStateResponse]:
    """最近时间窗口内仍在进行中的作业。"""
    try:
        with bind_log_context(pubkey=pubkey):
            states = await reconciler.list_active_jobs(pubkey)
    except RelayError as exc:
        raise to_http_error(exc) from exc
    return [
        JobStateResponse.from_state(
            state,
            next_poll_delay(
                state.status,
                PollScope.active_list,
                job_interval=settings.job_poll_seconds,
                active_list_interval=settings.active_jobs_poll_seconds,
            ),
        )
        for state in states
    ]


@router.get("/jobs/{job_id}", response_model=JobStateResponse)
async def get_job(
    job_id: str,
    reconciler: ReconcilerService = Depends(_service),
) -> JobStateResponse:
    """实时拉取并推导作业状态，附带建议的下次轮询间隔。"""
    try:
        with bind_log_context(job_id=job_id):
            state = await reconciler.get_job_state(job_id)
    except (KeyError, RelayError) as exc:
        raise to_http_error(exc) from exc
    delay = next_poll_delay(
        state.status,
        PollScope.job,
        job_interval=settings.job_poll_seconds,
        active_list_interval=settings.active_jobs_poll_seconds,
    )
    return JobStateResponse.from_state(state, delay)


@router.get("/jobs/{job_id}/events")
async def job_events(
    request: Request,
    job_id: str,
    reconciler: ReconcilerService = Depends(_service),
) -> StreamingResponse:
    """通过 SSE 推送跟踪作业的观测事件，作业进入终态后结束连接。"""
    try:
        await asyncio.to_thread(reconciler.get_tracked_job, job_id)
    except KeyError as exc:
        raise to_http_error(exc) from exc

    active_values = {item.value for item in ACTIVE_STATUSES}

    async def event_stream() -> Any:
        """增量读取事件并输出 keep-alive 帧。"""
        last_id = 0
        idle_ticks = 0
        while True:
            if await request.is_disconnected():
                break
            events = await asyncio.to_thread(reconciler.list_job_events, job_id, last_id, 200)
            if events:
                idle_ticks = 0
            for event in events:
                last_id = max(last_id, int(event["id"]))
                payload = {
                    "job_id": event["job_id"],
                    "status": event["status"],
                    "source": event["source"],
                    "event_type": event["event_type"],
                    "message": event["message"],
                    "payload": event["payload"],
                    "created_at": event["created_at"].isoformat() if event["created_at"] else None,
                }
                yield f"event: {event['event_type']}\n"
                yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
            if not events:
                idle_ticks += 1
                yield ": keep-alive\n\n"

            job = await asyncio.to_thread(reconciler.get_tracked_job, job_id)
            if job.status not in active_values and idle_ticks >= 2:
                break
            await asyncio.sleep(1)

    return StreamingResponse(event_stream(), media_type="text/event-stream")