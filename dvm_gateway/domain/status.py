"""作业状态推导：由请求的结果集与反馈集计算唯一的生命周期状态。"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from dvm_gateway.domain.codec import decode_job_feedback, decode_job_request, decode_job_result
from dvm_gateway.domain.enums import ACTIVE_STATUSES, FeedbackStatus, JobStatus
from dvm_gateway.domain.kinds import is_feedback_kind, is_result_kind
from dvm_gateway.domain.models import JobFeedback, JobLifecycleState, JobResult, RawEvent


def _chronological_key(event: RawEvent) -> tuple[int, str]:
    # 同一秒内的多条事件按 ID 排序，保证重复计算结果稳定。
    return event.created_at, event.id


def is_active_status(status: JobStatus) -> bool:
    """活跃状态值得继续轮询；error/success/completed 为轮询终态。"""
    return status in ACTIVE_STATUSES


def derive_status(results: Sequence[JobResult], feedback: Sequence[JobFeedback]) -> JobStatus:
    """按优先级推导状态。

    1. 存在结果：completed；若时间上最新的反馈为 success 则为 success。
    2. 仅有反馈：取时间上最新反馈的状态。
    3. 都没有：pending。
    """
    latest_feedback = max(feedback, key=lambda item: _chronological_key(item.event), default=None)
    if results:
        if latest_feedback is not None and latest_feedback.status == FeedbackStatus.success:
            return JobStatus.success
        return JobStatus.completed
    if latest_feedback is not None:
        return JobStatus(latest_feedback.status.value)
    return JobStatus.pending


def derive_job_lifecycle_state(request: RawEvent, responses: Iterable[RawEvent]) -> JobLifecycleState:
    """解码、去重并排序响应，推导出作业的生命周期视图。

    无法解码的响应直接丢弃；同一事件 ID 多次出现只计一次。
    """
    unique: dict[str, RawEvent] = {}
    for event in responses:
        unique.setdefault(event.id, event)
    ordered = sorted(unique.values(), key=_chronological_key)

    results: list[JobResult] = []
    feedback: list[JobFeedback] = []
    for event in ordered:
        if is_result_kind(event.kind):
            result = decode_job_result(event)
            if result is not None:
                results.append(result)
        elif is_feedback_kind(event.kind):
            item = decode_job_feedback(event)
            if item is not None:
                feedback.append(item)

    if results:
        provider: str | None = results[-1].event.pubkey
    elif feedback:
        provider = feedback[-1].event.pubkey
    else:
        provider = None

    return JobLifecycleState(
        request=request,
        job=decode_job_request(request),
        status=derive_status(results, feedback),
        feedback=tuple(feedback),
        results=tuple(results),
        provider=provider,
    )
