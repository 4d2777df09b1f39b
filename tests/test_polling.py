"""轮询策略测试：活跃状态返回间隔，终态停止轮询。"""

from __future__ import annotations

from dvm_gateway.domain.enums import JobStatus, PollScope
from dvm_gateway.domain.polling import next_poll_delay


def test_active_statuses_keep_polling() -> None:
    for status in (JobStatus.pending, JobStatus.processing, JobStatus.payment_required, JobStatus.partial):
        assert next_poll_delay(status) == 5.0
        assert next_poll_delay(status, PollScope.active_list) == 10.0


def test_terminal_statuses_stop() -> None:
    for status in (JobStatus.error, JobStatus.success, JobStatus.completed):
        assert next_poll_delay(status) is None
        assert next_poll_delay(status, PollScope.active_list) is None


def test_intervals_are_configurable() -> None:
    assert next_poll_delay(JobStatus.pending, job_interval=1.5) == 1.5
    assert next_poll_delay(JobStatus.pending, PollScope.active_list, active_list_interval=30) == 30
