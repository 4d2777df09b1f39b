"""对账服务门面：组织中继查询，完成响应关联、状态推导、服务方目录与作业发布。"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from dvm_gateway.config import Settings
from dvm_gateway.domain.codec import build_request_draft, validate_job_request
from dvm_gateway.domain.correlation import build_correlation_index
from dvm_gateway.domain.enums import FeedbackStatus
from dvm_gateway.domain.kinds import (
    PROVIDER_ANNOUNCEMENT_KIND,
    is_request_kind,
    known_request_kinds,
    known_response_kinds,
)
from dvm_gateway.domain.models import JobLifecycleState, JobRequest, Provider, RawEvent
from dvm_gateway.domain.providers import dedupe_providers, filter_providers, latest_provider
from dvm_gateway.domain.status import derive_job_lifecycle_state
from dvm_gateway.infra.db.models import JobEventORM, TrackedJobORM
from dvm_gateway.infra.db.repository import TrackedJobRepository
from dvm_gateway.infra.logging.context import bind_log_context
from dvm_gateway.infra.relay.client import EventFilter, RelayClient

logger = logging.getLogger(__name__)


class JobRequestNotVisible(KeyError):
    """中继暂未返回作业请求事件；刚发布的作业在最终一致的网络中属于正常的瞬时状态。"""


@dataclass(slots=True)
class ProviderJobsView:
    """服务方视角的作业列表，包含统计与未能关联的响应数量。"""
    pubkey: str
    jobs: list[JobLifecycleState]
    unresolved_count: int = 0

    @property
    def completed_count(self) -> int:
        return sum(1 for job in self.jobs if job.results)

    @property
    def processing_count(self) -> int:
        return sum(
            1
            for job in self.jobs
            if not job.results
            and job.latest_feedback is not None
            and job.latest_feedback.status == FeedbackStatus.processing
        )


class ReconcilerService:
    """对账服务门面，每次调用都基于新拉取的记录重新计算，不依赖缓存状态。"""
    def __init__(
        self,
        *,
        settings: Settings,
        relay: RelayClient,
        repository: TrackedJobRepository,
    ) -> None:
        self._settings = settings
        self._relay = relay
        self._repository = repository

    async def list_providers(
        self,
        *,
        kinds: list[int] | None = None,
        tags: list[str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[Provider]:
        """查询服务方目录；过滤条件下推到中继，再在本地复核。"""
        query_tags: dict[str, list[str]] = {}
        if kinds:
            query_tags["k"] = [str(kind) for kind in kinds]
        if tags:
            query_tags["t"] = list(tags)
        events = await self._relay.query(
            [EventFilter(kinds=[PROVIDER_ANNOUNCEMENT_KIND], tags=query_tags)],
            timeout=self._settings.provider_list_timeout_seconds,
            cancel=cancel,
            op="providers.list",
        )
        return filter_providers(dedupe_providers(events), kinds=kinds, tags=tags)

    async def get_provider(self, pubkey: str, *, cancel: asyncio.Event | None = None) -> Provider:
        """返回指定身份最新的服务方声明。"""
        events = await self._relay.query(
            [EventFilter(kinds=[PROVIDER_ANNOUNCEMENT_KIND], authors=[pubkey])],
            timeout=self._settings.provider_get_timeout_seconds,
            cancel=cancel,
            op="providers.get",
        )
        provider = latest_provider(events, pubkey)
        if provider is None:
            raise KeyError(f"provider not found: {pubkey}")
        return provider

    async def get_job_state(self, job_id: str, *, cancel: asyncio.Event | None = None) -> JobLifecycleState:
        """并发拉取请求与其响应，推导当前生命周期状态。"""
        timeout = self._settings.job_query_timeout_seconds
        # 按引用查询时不限定 kind，关联只认 `e` 标签，不依赖 kind 推算。
        requests, responses = await asyncio.gather(
            self._relay.query([EventFilter(ids=[job_id])], timeout=timeout, cancel=cancel, op="jobs.request"),
            self._relay.query(
                [EventFilter(referenced_ids=[job_id])], timeout=timeout, cancel=cancel, op="jobs.responses"
            ),
        )
        request = next((event for event in requests if event.id == job_id and is_request_kind(event.kind)), None)
        if request is None:
            raise JobRequestNotVisible(f"job request not found: {job_id}")
        return derive_job_lifecycle_state(request, build_correlation_index([request], responses).responses_for(job_id))

    async def list_job_history(self, pubkey: str, *, cancel: asyncio.Event | None = None) -> list[RawEvent]:
        """返回指定身份发布的作业请求，按创建时间倒序。"""
        events = await self._relay.query(
            [
                EventFilter(
                    kinds=known_request_kinds(),
                    authors=[pubkey],
                    limit=self._settings.job_history_limit,
                )
            ],
            timeout=self._settings.job_query_timeout_seconds,
            cancel=cancel,
            op="jobs.history",
        )
        requests = [event for event in events if is_request_kind(event.kind)]
        return sorted(requests, key=lambda event: event.created_at, reverse=True)

    async def list_active_jobs(
        self,
        pubkey: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[JobLifecycleState]:
        """返回最近时间窗口内仍处于活跃状态的作业。"""
        timeout = self._settings.job_query_timeout_seconds
        since = int(time.time()) - self._settings.active_jobs_window_hours * 3600
        requests = await self._relay.query(
            [
                EventFilter(
                    kinds=known_request_kinds(),
                    authors=[pubkey],
                    limit=self._settings.active_jobs_limit,
                    since=since,
                )
            ],
            timeout=timeout,
            cancel=cancel,
            op="jobs.active.requests",
        )
        requests = [event for event in requests if is_request_kind(event.kind)]
        if not requests:
            return []
        responses = await self._relay.query(
            [EventFilter(referenced_ids=[event.id for event in requests])],
            timeout=timeout,
            cancel=cancel,
            op="jobs.active.responses",
        )
        index = build_correlation_index(requests, responses)
        return [state for state in index.states() if state.is_active]

    async def list_provider_jobs(
        self,
        pubkey: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ProviderJobsView:
        """服务方视角的作业列表。

        首轮并发拉取“点名该服务方的请求”与“该服务方发出的响应”；
        响应引用了首轮未拉到的请求时，再针对这些 ID 发起一次补充查询。
        """
        timeout = self._settings.provider_jobs_timeout_seconds
        limit = self._settings.provider_jobs_limit
        targeted, responses = await asyncio.gather(
            self._relay.query(
                [EventFilter(kinds=known_request_kinds(), pubkeys=[pubkey], limit=limit)],
                timeout=timeout,
                cancel=cancel,
                op="provider_jobs.targeted",
            ),
            self._relay.query(
                [EventFilter(kinds=known_response_kinds(), authors=[pubkey], limit=limit)],
                timeout=timeout,
                cancel=cancel,
                op="provider_jobs.responses",
            ),
        )
        index = build_correlation_index([event for event in targeted if is_request_kind(event.kind)], responses)
        if index.missing_request_ids:
            backfill = await self._relay.query(
                [EventFilter(ids=list(index.missing_request_ids))],
                timeout=timeout,
                cancel=cancel,
                op="provider_jobs.backfill",
            )
            index = index.with_requests(event for event in backfill if is_request_kind(event.kind))
            logger.info(
                "provider jobs backfilled",
                extra={
                    "event": "provider_jobs.backfill.completed",
                    "op": "provider_jobs.backfill",
                    "payload_preview": {
                        "missing": len(index.missing_request_ids),
                        "requested": len(backfill),
                    },
                },
            )
        return ProviderJobsView(pubkey=pubkey, jobs=index.states(), unresolved_count=len(index.unresolved))

    async def create_job(self, request: JobRequest, *, cancel: asyncio.Event | None = None) -> RawEvent:
        """校验、编码并发布作业请求，随后登记跟踪并投递轮询任务。"""
        validate_job_request(request)
        draft = build_request_draft(request)
        event = await self._relay.publish(
            draft,
            timeout=self._settings.job_query_timeout_seconds,
            cancel=cancel,
        )
        with bind_log_context(job_id=event.id, pubkey=event.pubkey):
            logger.info(
                "job request published",
                extra={
                    "event": "job.published",
                    "kind": event.kind,
                    "payload_preview": {"tags": len(event.tags)},
                },
            )
            await asyncio.to_thread(
                self._repository.track_job,
                job_id=event.id,
                requester=event.pubkey,
                kind=event.kind,
                request_created_at=event.created_at,
            )
            # 投递与写库均为阻塞调用，移出事件循环。
            await asyncio.to_thread(self._schedule_poll, event.id)
        return event

    def _schedule_poll(self, job_id: str) -> None:
        """投递单作业轮询任务；投递失败时由活跃列表定时任务兜底。"""
        from dvm_gateway.worker.tasks import poll_job_task

        if poll_job_task.app.conf.task_always_eager:
            # eager 模式会在当前事件循环内同步执行任务，改由调用方主动刷新。
            logger.debug("job poll enqueue skipped in eager mode", extra={"event": "job.poll.skipped.debug", "job_id": job_id})
            return
        try:
            task = poll_job_task.apply_async((job_id,), countdown=self._settings.job_poll_seconds)
        except Exception as exc:
            logger.warning(
                "job poll enqueue failed",
                extra={
                    "event": "job.poll.enqueue_failed",
                    "job_id": job_id,
                    "external_service": "redis",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            self._repository.add_event(
                job_id,
                source="api",
                event_type="job.poll.enqueue_failed",
                message=str(exc),
            )
            return
        self._repository.add_event(
            job_id,
            source="api",
            event_type="job.poll.enqueued",
            message=task.id,
            payload={"task_id": task.id},
        )

    async def refresh_tracked_job(self, job_id: str) -> JobLifecycleState:
        """重新拉取并推导单个跟踪作业的状态，写入观测记录。"""
        job = await asyncio.to_thread(self._repository.get_job, job_id)
        if job is None:
            raise KeyError(f"job not tracked: {job_id}")
        with bind_log_context(job_id=job_id, pubkey=job.requester):
            state = await self.get_job_state(job_id)
            await asyncio.to_thread(self._repository.record_state, state)
        return state

    async def refresh_active_jobs(self) -> list[JobLifecycleState]:
        """批量刷新全部活跃跟踪作业：一次请求查询加一次响应查询。"""
        tracked = await asyncio.to_thread(self._repository.list_jobs, active_only=True)
        if not tracked:
            return []
        job_ids = [job.id for job in tracked]
        timeout = self._settings.job_query_timeout_seconds
        requests, responses = await asyncio.gather(
            self._relay.query([EventFilter(ids=job_ids)], timeout=timeout, op="tracked.requests"),
            self._relay.query([EventFilter(referenced_ids=job_ids)], timeout=timeout, op="tracked.responses"),
        )
        index = build_correlation_index([event for event in requests if is_request_kind(event.kind)], responses)
        states: list[JobLifecycleState] = []
        for job_id in job_ids:
            if job_id not in index.requests:
                logger.warning(
                    "tracked job request not returned by relays",
                    extra={"event": "tracked.request.missing", "job_id": job_id},
                )
                continue
            state = index.state_for(job_id)
            await asyncio.to_thread(self._repository.record_state, state)
            states.append(state)
        return states

    def get_tracked_job(self, job_id: str) -> TrackedJobORM:
        """按请求 ID 读取跟踪作业记录。"""
        job = self._repository.get_job(job_id)
        if job is None:
            raise KeyError(f"job not tracked: {job_id}")
        return job

    def list_job_events(self, job_id: str, after_id: int = 0, limit: int = 200) -> list[dict[str, Any]]:
        """按游标分页返回跟踪作业的观测事件。"""
        events: list[JobEventORM] = self._repository.list_events(job_id, after_id=after_id, limit=limit)
        return [
            {
                "id": event.id,
                "job_id": event.job_id,
                "status": event.status,
                "source": event.source,
                "event_type": event.event_type,
                "message": event.message,
                "payload": event.payload,
                "created_at": event.created_at,
            }
            for event in events
        ]
