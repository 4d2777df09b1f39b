"""关联索引：将结果与反馈按引用标签归组到原始请求，并找出需要回填的请求 ID。

服务方视角（“该身份最近回应了什么”）与请求方视角（“我的请求怎样了”）是分别查询的，
两批数据需要事后拼接：首轮只按已知请求归组，引用了未知请求的响应暂存在 unresolved，
并汇总出 missing_request_ids 供调用方发起一次补充查询，再用 with_requests 合并。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from dvm_gateway.domain.codec import referenced_request_id
from dvm_gateway.domain.kinds import is_response_kind
from dvm_gateway.domain.models import JobLifecycleState, RawEvent
from dvm_gateway.domain.status import derive_job_lifecycle_state


@dataclass(frozen=True, slots=True)
class CorrelationIndex:
    """一次查询周期内的请求 → 响应分组快照。"""
    requests: dict[str, RawEvent] = field(default_factory=dict)
    responses: dict[str, tuple[RawEvent, ...]] = field(default_factory=dict)
    unresolved: tuple[RawEvent, ...] = ()
    missing_request_ids: tuple[str, ...] = ()

    def responses_for(self, request_id: str) -> tuple[RawEvent, ...]:
        return self.responses.get(request_id, ())

    def all_responses(self) -> list[RawEvent]:
        """返回索引内全部响应（已归组与未归组）。"""
        grouped = [event for events in self.responses.values() for event in events]
        return grouped + list(self.unresolved)

    def with_requests(self, requests: Iterable[RawEvent]) -> CorrelationIndex:
        """合并回填的请求，生成新的索引；原索引保持不变。"""
        return build_correlation_index([*self.requests.values(), *requests], self.all_responses())

    def state_for(self, request_id: str) -> JobLifecycleState:
        request = self.requests.get(request_id)
        if request is None:
            raise KeyError(f"job request not found: {request_id}")
        return derive_job_lifecycle_state(request, self.responses_for(request_id))

    def states(self) -> list[JobLifecycleState]:
        """按请求创建时间倒序返回全部作业视图。"""
        states = [
            derive_job_lifecycle_state(request, self.responses_for(request_id))
            for request_id, request in self.requests.items()
        ]
        return sorted(states, key=lambda state: (state.created_at, state.job_id), reverse=True)


def build_correlation_index(requests: Iterable[RawEvent], responses: Iterable[RawEvent]) -> CorrelationIndex:
    """单次遍历响应，按第一个 `e` 标签归组。

    - 请求与响应都按事件 ID 去重；
    - 非结果/反馈 kind 的记录不参与关联；
    - 无引用或引用未知请求的响应进入 unresolved；
    - 引用未知请求的 ID 按首次出现顺序进入 missing_request_ids。
    """
    request_map: dict[str, RawEvent] = {}
    for request in requests:
        request_map.setdefault(request.id, request)

    grouped: dict[str, list[RawEvent]] = {}
    unresolved: list[RawEvent] = []
    missing: dict[str, None] = {}
    seen: set[str] = set()
    for event in responses:
        if event.id in seen or not is_response_kind(event.kind):
            continue
        seen.add(event.id)
        request_id = referenced_request_id(event)
        if request_id is not None and request_id in request_map:
            grouped.setdefault(request_id, []).append(event)
            continue
        unresolved.append(event)
        if request_id is not None:
            missing.setdefault(request_id, None)

    return CorrelationIndex(
        requests=request_map,
        responses={request_id: tuple(events) for request_id, events in grouped.items()},
        unresolved=tuple(unresolved),
        missing_request_ids=tuple(missing),
    )
