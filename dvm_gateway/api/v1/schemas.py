"""API 请求/响应数据模型定义，约束作业、服务方与 kind 目录接口的结构。"""

from __future__ import annotations

from pydantic import BaseModel, Field

from dvm_gateway.domain.enums import InputType
from dvm_gateway.domain.kinds import job_kind_info
from dvm_gateway.domain.models import (
    JobFeedback,
    JobInput,
    JobLifecycleState,
    JobParam,
    JobRequest,
    JobResult,
    Provider,
    RawEvent,
)


class RawEventModel(BaseModel):
    """原始事件响应模型。"""
    id: str
    kind: int
    content: str
    created_at: int
    pubkey: str
    tags: list[list[str]]
    sig: str | None = None

    @classmethod
    def from_event(cls, event: RawEvent) -> RawEventModel:
        return cls(**event.to_dict())


class JobInputModel(BaseModel):
    """作业输入条目模型。"""
    data: str
    type: InputType = InputType.text
    relay: str | None = None
    marker: str | None = None


class JobParamModel(BaseModel):
    """作业参数条目模型。"""
    key: str
    value: str = ""


class JobCreateRequest(BaseModel):
    """创建作业接口请求模型。"""
    kind: int
    content: str = ""
    inputs: list[JobInputModel] = Field(default_factory=list)
    params: list[JobParamModel] = Field(default_factory=list)
    output: str | None = None
    bid: int | None = None
    relays: list[str] | None = None
    service_providers: list[str] = Field(default_factory=list)
    encrypted: bool = False

    def to_domain(self) -> JobRequest:
        return JobRequest(
            kind=self.kind,
            content=self.content,
            inputs=tuple(JobInput(data=item.data, type=item.type, relay=item.relay, marker=item.marker) for item in self.inputs),
            params=tuple(JobParam(key=item.key, value=item.value) for item in self.params),
            output=self.output or None,
            bid=self.bid,
            relays=tuple(self.relays) if self.relays else None,
            service_providers=tuple(self.service_providers),
            encrypted=self.encrypted,
        )


class JobRequestModel(BaseModel):
    """解码后的作业请求模型。"""
    kind: int
    kind_name: str
    content: str
    inputs: list[JobInputModel]
    params: list[JobParamModel]
    output: str | None
    bid: int | None
    relays: list[str] | None
    service_providers: list[str]
    encrypted: bool

    @classmethod
    def from_domain(cls, request: JobRequest) -> JobRequestModel:
        return cls(
            kind=request.kind,
            kind_name=job_kind_info(request.kind).name,
            content=request.content,
            inputs=[JobInputModel(data=item.data, type=item.type, relay=item.relay, marker=item.marker) for item in request.inputs],
            params=[JobParamModel(key=item.key, value=item.value) for item in request.params],
            output=request.output,
            bid=request.bid,
            relays=list(request.relays) if request.relays is not None else None,
            service_providers=list(request.service_providers),
            encrypted=request.encrypted,
        )


class JobResultModel(BaseModel):
    """作业结果模型。"""
    event_id: str
    provider: str
    kind: int
    created_at: int
    payload: str
    amount: int | None
    bolt11: str | None
    encrypted: bool

    @classmethod
    def from_domain(cls, result: JobResult) -> JobResultModel:
        return cls(
            event_id=result.event.id,
            provider=result.event.pubkey,
            kind=result.event.kind,
            created_at=result.event.created_at,
            payload=result.payload,
            amount=result.amount,
            bolt11=result.bolt11,
            encrypted=result.encrypted,
        )


class JobFeedbackModel(BaseModel):
    """作业反馈模型。"""
    event_id: str
    provider: str
    created_at: int
    status: str
    extra_info: str | None
    amount: int | None
    bolt11: str | None
    partial_result: str | None

    @classmethod
    def from_domain(cls, feedback: JobFeedback) -> JobFeedbackModel:
        return cls(
            event_id=feedback.event.id,
            provider=feedback.event.pubkey,
            created_at=feedback.event.created_at,
            status=feedback.status.value,
            extra_info=feedback.extra_info,
            amount=feedback.amount,
            bolt11=feedback.bolt11,
            partial_result=feedback.partial_result,
        )


class JobStateResponse(BaseModel):
    """作业生命周期视图响应模型。"""
    job_id: str
    requester: str
    created_at: int
    status: str
    is_active: bool
    provider: str | None
    request: JobRequestModel
    feedback: list[JobFeedbackModel]
    results: list[JobResultModel]
    next_poll_seconds: float | None = None

    @classmethod
    def from_state(cls, state: JobLifecycleState, next_poll_seconds: float | None = None) -> JobStateResponse:
        return cls(
            job_id=state.job_id,
            requester=state.request.pubkey,
            created_at=state.created_at,
            status=state.status.value,
            is_active=state.is_active,
            provider=state.provider,
            request=JobRequestModel.from_domain(state.job),
            feedback=[JobFeedbackModel.from_domain(item) for item in state.feedback],
            results=[JobResultModel.from_domain(item) for item in state.results],
            next_poll_seconds=next_poll_seconds,
        )


class JobCreateResponse(BaseModel):
    """创建作业接口响应模型。"""
    job_id: str
    status: str
    event: RawEventModel


class JobHistoryItem(BaseModel):
    """历史作业条目模型。"""
    job_id: str
    kind: int
    kind_name: str
    created_at: int
    request: JobRequestModel


class ProviderJobsResponse(BaseModel):
    """服务方视角作业列表响应模型。"""
    pubkey: str
    jobs: list[JobStateResponse]
    completed_count: int
    processing_count: int
    unresolved_count: int


class ProviderResponse(BaseModel):
    """服务方声明响应模型。"""
    pubkey: str
    event_id: str
    created_at: int
    name: str | None
    about: str | None
    picture: str | None
    nip05: str | None
    lud16: str | None
    supported_kinds: list[int]
    tags: list[str]

    @classmethod
    def from_domain(cls, provider: Provider) -> ProviderResponse:
        return cls(
            pubkey=provider.pubkey,
            event_id=provider.event.id,
            created_at=provider.created_at,
            name=provider.name,
            about=provider.about,
            picture=provider.picture,
            nip05=provider.nip05,
            lud16=provider.lud16,
            supported_kinds=list(provider.supported_kinds),
            tags=list(provider.tags),
        )


class JobKindResponse(BaseModel):
    """作业类型目录条目模型。"""
    kind: int
    result_kind: int
    name: str
    description: str

