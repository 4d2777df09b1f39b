"""领域数据结构定义：原始事件、作业请求/结果/反馈、服务方与作业生命周期视图。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dvm_gateway.domain.enums import ACTIVE_STATUSES, FeedbackStatus, InputType, JobStatus

Tag = tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RawEvent:
    """中继返回的原始事件记录，标签为字符串序列的序列。"""
    id: str
    kind: int
    content: str
    created_at: int
    pubkey: str
    tags: tuple[Tag, ...] = ()
    sig: str | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> RawEvent:
        """从传输层 JSON 构造事件；结构不合法时抛出 ValueError。"""
        if not isinstance(payload, dict):
            raise ValueError("event payload must be an object")
        for key in ("id", "kind", "pubkey", "created_at"):
            if payload.get(key) in (None, ""):
                raise ValueError(f"event payload missing {key}")
        raw_tags = payload.get("tags") or []
        if not isinstance(raw_tags, list) or not all(isinstance(item, list) for item in raw_tags):
            raise ValueError("event tags must be a list of lists")
        try:
            kind = int(payload["kind"])
            created_at = int(payload["created_at"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"event kind/created_at must be integers: {exc}") from exc
        content = payload.get("content")
        sig = payload.get("sig")
        return cls(
            id=str(payload["id"]),
            kind=kind,
            content="" if content is None else str(content),
            created_at=created_at,
            pubkey=str(payload["pubkey"]),
            tags=tuple(tuple(str(value) for value in item) for item in raw_tags),
            sig=str(sig) if sig else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """序列化为 NIP-01 事件 JSON 结构。"""
        payload: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "content": self.content,
            "created_at": self.created_at,
            "pubkey": self.pubkey,
            "tags": [list(tag) for tag in self.tags],
        }
        if self.sig:
            payload["sig"] = self.sig
        return payload


@dataclass(frozen=True, slots=True)
class JobInput:
    """作业输入条目（`i` 标签）。"""
    data: str
    type: InputType = InputType.text
    relay: str | None = None
    marker: str | None = None


@dataclass(frozen=True, slots=True)
class JobParam:
    """作业参数条目（`param` 标签），键允许重复。"""
    key: str
    value: str


@dataclass(frozen=True, slots=True)
class JobRequest:
    """结构化作业请求，kind 位于 [5000, 6000)。"""
    kind: int
    content: str = ""
    inputs: tuple[JobInput, ...] = ()
    params: tuple[JobParam, ...] = ()
    output: str | None = None
    bid: int | None = None
    relays: tuple[str, ...] | None = None
    service_providers: tuple[str, ...] = ()
    encrypted: bool = False


@dataclass(frozen=True, slots=True)
class JobResult:
    """服务方针对某个请求返回的结果。"""
    event: RawEvent
    request_id: str
    request_event: RawEvent
    payload: str
    amount: int | None = None
    bolt11: str | None = None
    encrypted: bool = False


@dataclass(frozen=True, slots=True)
class JobFeedback:
    """服务方的中间状态反馈。"""
    event: RawEvent
    request_id: str | None
    status: FeedbackStatus
    extra_info: str | None = None
    amount: int | None = None
    bolt11: str | None = None
    partial_result: str | None = None


@dataclass(frozen=True, slots=True)
class Provider:
    """服务方自我声明（kind 31990）。"""
    pubkey: str
    event: RawEvent
    created_at: int
    name: str | None = None
    about: str | None = None
    picture: str | None = None
    nip05: str | None = None
    lud16: str | None = None
    supported_kinds: tuple[int, ...] = ()
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class JobLifecycleState:
    """某个作业请求在当前批次数据下推导出的生命周期视图。"""
    request: RawEvent
    job: JobRequest
    status: JobStatus
    feedback: tuple[JobFeedback, ...] = ()
    results: tuple[JobResult, ...] = ()
    provider: str | None = None

    @property
    def job_id(self) -> str:
        return self.request.id

    @property
    def created_at(self) -> int:
        return self.request.created_at

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def latest_result(self) -> JobResult | None:
        return self.results[-1] if self.results else None

    @property
    def latest_feedback(self) -> JobFeedback | None:
        return self.feedback[-1] if self.feedback else None
