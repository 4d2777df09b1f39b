"""跟踪作业仓储测试：基于临时 SQLite 验证幂等登记、状态变更事件与游标分页。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from dvm_gateway.domain.enums import JobStatus
from dvm_gateway.domain.models import RawEvent
from dvm_gateway.domain.status import derive_job_lifecycle_state
from dvm_gateway.infra.db.repository import TrackedJobRepository
from dvm_gateway.infra.db.session import build_engine, init_db

REQUEST = RawEvent(id="req-1", kind=5001, content="x", created_at=100, pubkey="alice")


def _repo(tmp_path: Path) -> TrackedJobRepository:
    engine = build_engine(f"sqlite:///{tmp_path / 'repo.db'}")
    init_db(engine)
    return TrackedJobRepository(
        sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)
    )


def _feedback(event_id: str, status: str, created_at: int) -> RawEvent:
    return RawEvent(
        id=event_id,
        kind=7000,
        content="",
        created_at=created_at,
        pubkey="prov-1",
        tags=(("status", status, "working on it"), ("e", REQUEST.id)),
    )


def _result(event_id: str, created_at: int) -> RawEvent:
    return RawEvent(
        id=event_id,
        kind=6001,
        content="done",
        created_at=created_at,
        pubkey="prov-1",
        tags=(("request", json.dumps(REQUEST.to_dict())), ("e", REQUEST.id)),
    )


def test_track_job_is_idempotent(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    first = repo.track_job(job_id="req-1", requester="alice", kind=5001, request_created_at=100)
    second = repo.track_job(job_id="req-1", requester="alice", kind=5001, request_created_at=100)

    assert first.id == second.id == "req-1"
    assert first.status == JobStatus.pending.value
    assert [event.event_type for event in repo.list_events("req-1")] == ["job.tracked"]


def test_record_state_only_logs_changes(tmp_path: Path) -> None:
    """只有状态发生变化时才追加 job.status.changed 事件。"""
    repo = _repo(tmp_path)
    repo.track_job(job_id="req-1", requester="alice", kind=5001, request_created_at=100)

    processing = derive_job_lifecycle_state(REQUEST, [_feedback("fb-1", "processing", 110)])
    assert repo.record_state(processing) is True
    assert repo.record_state(processing) is False

    completed = derive_job_lifecycle_state(REQUEST, [_feedback("fb-1", "processing", 110), _result("res-1", 120)])
    assert repo.record_state(completed) is True

    job = repo.get_job("req-1")
    assert job is not None
    assert job.status == JobStatus.completed.value
    assert job.provider == "prov-1"
    assert job.result_count == 1
    assert job.feedback_count == 1
    assert job.last_polled_at is not None

    changes = [event for event in repo.list_events("req-1") if event.event_type == "job.status.changed"]
    assert [event.message for event in changes] == ["pending -> processing", "processing -> completed"]
    assert changes[0].payload["extra_info"] == "working on it"


def test_record_state_requires_tracked_job(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    with pytest.raises(KeyError):
        repo.record_state(derive_job_lifecycle_state(REQUEST, []))


def test_list_jobs_filters_active_and_requester(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    repo.track_job(job_id="req-1", requester="alice", kind=5001, request_created_at=100)
    repo.track_job(job_id="req-2", requester="alice", kind=5001, request_created_at=200)
    repo.track_job(job_id="req-3", requester="bob", kind=5002, request_created_at=300)
    repo.record_state(derive_job_lifecycle_state(REQUEST, [_result("res-1", 120)]))

    assert [job.id for job in repo.list_jobs()] == ["req-3", "req-2", "req-1"]
    assert [job.id for job in repo.list_jobs(active_only=True)] == ["req-3", "req-2"]
    assert [job.id for job in repo.list_jobs(requester="alice")] == ["req-2", "req-1"]


def test_list_events_cursor(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    repo.track_job(job_id="req-1", requester="alice", kind=5001, request_created_at=100)
    repo.add_event("req-1", source="api", event_type="job.poll.enqueued", message="task-1")
    repo.add_event("req-1", source="worker", event_type="job.poll.relay_failed")

    first_page = repo.list_events("req-1", after_id=0, limit=2)
    second_page = repo.list_events("req-1", after_id=first_page[-1].id)

    assert [event.event_type for event in first_page] == ["job.tracked", "job.poll.enqueued"]
    assert [event.event_type for event in second_page] == ["job.poll.relay_failed"]
