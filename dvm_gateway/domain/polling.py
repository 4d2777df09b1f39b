"""轮询策略：根据推导状态决定是否继续查询以及查询间隔。"""

from __future__ import annotations

from dvm_gateway.domain.enums import JobStatus, PollScope
from dvm_gateway.domain.status import is_active_status

JOB_POLL_INTERVAL_SECONDS = 5.0
ACTIVE_LIST_POLL_INTERVAL_SECONDS = 10.0


def next_poll_delay(
    status: JobStatus,
    scope: PollScope = PollScope.job,
    *,
    job_interval: float = JOB_POLL_INTERVAL_SECONDS,
    active_list_interval: float = ACTIVE_LIST_POLL_INTERVAL_SECONDS,
) -> float | None:
    """活跃状态返回下次轮询的秒数，终态返回 None 表示停止。"""
    if not is_active_status(status):
        return None
    if scope == PollScope.active_list:
        return active_list_interval
    return job_interval
