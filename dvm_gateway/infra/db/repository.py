"""仓储实现：封装跟踪作业登记、状态观测与事件流持久化操作。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from dvm_gateway.domain.enums import ACTIVE_STATUSES, JobStatus
from dvm_gateway.domain.models import JobLifecycleState
from dvm_gateway.infra.db.models import JobEventORM, TrackedJobORM


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackedJobRepository:
    """跟踪作业仓储实现，仅记录观测结果，不作为状态推导的数据来源。"""
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_job(self, job_id: str) -> TrackedJobORM | None:
        """按请求事件 ID 查询跟踪作业。"""
        with self._session_factory() as db:
            return db.get(TrackedJobORM, job_id)

    def track_job(self, *, job_id: str, requester: str, kind: int, request_created_at: int) -> TrackedJobORM:
        """登记需要跟踪的作业；重复登记直接返回已有记录。"""
        with self._session_factory.begin() as db:
            existing = db.get(TrackedJobORM, job_id)
            if existing is not None:
                return existing
            job = TrackedJobORM(
                id=job_id,
                requester=requester,
                kind=kind,
                status=JobStatus.pending.value,
                request_created_at=request_created_at,
            )
            db.add(job)
            db.flush()
            db.add(
                JobEventORM(
                    job_id=job.id,
                    status=JobStatus.pending.value,
                    source="api",
                    event_type="job.tracked",
                    message="job tracked",
                    payload={"kind": kind, "requester": requester},
                )
            )
            db.flush()
            return job

    def list_jobs(
        self,
        *,
        active_only: bool = False,
        requester: str | None = None,
        limit: int = 200,
    ) -> list[TrackedJobORM]:
        """按请求创建时间倒序列出跟踪作业。"""
        with self._session_factory() as db:
            stmt = select(TrackedJobORM)
            if active_only:
                stmt = stmt.where(TrackedJobORM.status.in_([status.value for status in ACTIVE_STATUSES]))
            if requester:
                stmt = stmt.where(TrackedJobORM.requester == requester)
            stmt = stmt.order_by(TrackedJobORM.request_created_at.desc()).limit(limit)
            return list(db.execute(stmt).scalars().all())

    def record_state(self, state: JobLifecycleState) -> bool:
        """写入最新一次推导结果；仅当状态变化时追加状态变更事件。"""
        with self._session_factory.begin() as db:
            job = db.get(TrackedJobORM, state.job_id)
            if job is None:
                raise KeyError(f"job not tracked: {state.job_id}")
            previous = job.status
            changed = previous != state.status.value
            job.status = state.status.value
            job.provider = state.provider
            job.result_count = len(state.results)
            job.feedback_count = len(state.feedback)
            job.last_polled_at = utcnow()
            job.updated_at = utcnow()
            db.add(job)
            if changed:
                latest = state.latest_feedback
                db.add(
                    JobEventORM(
                        job_id=job.id,
                        status=state.status.value,
                        source="relay",
                        event_type="job.status.changed",
                        message=f"{previous} -> {state.status.value}",
                        payload={
                            "previous": previous,
                            "provider": state.provider,
                            "extra_info": latest.extra_info if latest else None,
                            "amount": latest.amount if latest else None,
                        },
                    )
                )
            return changed

    def add_event(
        self,
        job_id: str,
        *,
        source: str,
        event_type: str,
        status: str | None = None,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> JobEventORM:
        """写入单条作业事件。"""
        with self._session_factory.begin() as db:
            event = JobEventORM(
                job_id=job_id,
                status=status,
                source=source,
                event_type=event_type,
                message=message,
                payload=payload,
            )
            db.add(event)
            db.flush()
            db.refresh(event)
            return event

    def list_events(self, job_id: str, after_id: int = 0, limit: int = 200) -> list[JobEventORM]:
        """按游标分页查询事件流。"""
        with self._session_factory() as db:
            stmt = (
                select(JobEventORM)
                .where(JobEventORM.job_id == job_id, JobEventORM.id > after_id)
                .order_by(JobEventORM.id.asc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars().all())
