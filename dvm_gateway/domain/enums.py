"""领域枚举定义：统一作业状态、反馈状态、输入类型与事件类别取值。"""

from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    """作业生命周期状态枚举。"""
    pending = "pending"
    processing = "processing"
    payment_required = "payment-required"
    partial = "partial"
    error = "error"
    success = "success"
    completed = "completed"


class FeedbackStatus(str, Enum):
    """服务方反馈事件中 status 标签的合法取值。"""
    payment_required = "payment-required"
    processing = "processing"
    error = "error"
    success = "success"
    partial = "partial"


class InputType(str, Enum):
    """作业输入类型枚举。"""
    url = "url"
    event = "event"
    job = "job"
    text = "text"


class KindClass(str, Enum):
    """事件 kind 分类枚举。"""
    request = "request"
    result = "result"
    feedback = "feedback"
    provider_announcement = "provider-announcement"
    other = "other"


class PollScope(str, Enum):
    """轮询粒度：单个作业详情或活跃作业列表。"""
    job = "job"
    active_list = "active_list"


ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.pending, JobStatus.processing, JobStatus.payment_required, JobStatus.partial}
)
