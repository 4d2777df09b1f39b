"""标签编解码：在通用标签数组与作业请求/结果/反馈/服务方声明之间双向转换。

解码函数对外是“全函数”：遇到缺失必需标签、内嵌 JSON 无法解析或数值非法时返回 None，
绝不把异常抛出到调用方，确保单条坏记录不会中断整批处理。编码只服务于作业请求，
结果、反馈与服务方声明由远端服务方生成，本地不需要编码。
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from dvm_gateway.domain.enums import FeedbackStatus, InputType
from dvm_gateway.domain.kinds import is_provider_announcement_kind, is_request_kind
from dvm_gateway.domain.models import (
    JobFeedback,
    JobInput,
    JobParam,
    JobRequest,
    JobResult,
    Provider,
    RawEvent,
    Tag,
)

logger = logging.getLogger(__name__)

_PROVIDER_METADATA_FIELDS = ("name", "about", "picture", "nip05", "lud16")
# 只接受十进制整数字面量，拒绝 "1_000"、"+5" 这类 int() 宽松写法。
_INT_PATTERN = re.compile(r"-?[0-9]+")


def first_tag(event: RawEvent, name: str) -> Tag | None:
    """返回第一个名为 name 的标签。"""
    return next((tag for tag in event.tags if tag and tag[0] == name), None)


def tag_values(event: RawEvent, name: str) -> list[str]:
    """返回所有名为 name 的标签的首个取值。"""
    return [tag[1] for tag in event.tags if len(tag) > 1 and tag[0] == name]


def referenced_request_id(event: RawEvent) -> str | None:
    """响应事件中第一个 `e` 标签指向的请求 ID。"""
    tag = first_tag(event, "e")
    if tag is None or len(tag) < 2 or not tag[1]:
        return None
    return tag[1]


def _position(tag: Tag | None, index: int) -> str | None:
    """按位置读取标签字段，越界或空串视为缺失。"""
    if tag is None or len(tag) <= index:
        return None
    return tag[index] or None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    text = value.strip()
    if _INT_PATTERN.fullmatch(text) is None:
        return None
    try:
        return int(text)
    except ValueError:
        # 超出解释器整数位数上限。
        return None


def _has_tag(event: RawEvent, name: str) -> bool:
    return any(tag and tag[0] == name for tag in event.tags)


def _parse_amount(event: RawEvent) -> tuple[int | None, str | None]:
    """解析 `amount` 标签：位置 2 为毫聪金额，位置 3 为不透明支付句柄。"""
    tag = first_tag(event, "amount")
    return _parse_int(_position(tag, 1)), _position(tag, 2)


def _input_type(value: str | None) -> InputType:
    if not value:
        return InputType.text
    try:
        return InputType(value)
    except ValueError:
        return InputType.text


def decode_inputs(event: RawEvent) -> list[JobInput]:
    """解析全部 `i` 标签，类型缺省为 text。"""
    inputs: list[JobInput] = []
    for tag in event.tags:
        if not tag or tag[0] != "i":
            continue
        data = _position(tag, 1)
        if data is None:
            continue
        inputs.append(
            JobInput(
                data=data,
                type=_input_type(_position(tag, 2)),
                relay=_position(tag, 3),
                marker=_position(tag, 4),
            )
        )
    return inputs


def decode_params(event: RawEvent) -> list[JobParam]:
    """解析全部 `param` 标签，保持原始顺序。"""
    params: list[JobParam] = []
    for tag in event.tags:
        if not tag or tag[0] != "param":
            continue
        key = _position(tag, 1)
        if key is None:
            continue
        params.append(JobParam(key=key, value=tag[2] if len(tag) > 2 else ""))
    return params


def decode_job_request(event: RawEvent) -> JobRequest:
    """将请求事件解析为结构化作业请求。"""
    relays_tag = first_tag(event, "relays")
    output_tag = first_tag(event, "output")
    return JobRequest(
        kind=event.kind,
        content=event.content,
        inputs=tuple(decode_inputs(event)),
        params=tuple(decode_params(event)),
        # 标签存在即保留原值（含空串），与编码侧对称。
        output=output_tag[1] if output_tag is not None and len(output_tag) > 1 else None,
        bid=_parse_int(_position(first_tag(event, "bid"), 1)),
        relays=tuple(relays_tag[1:]) if relays_tag is not None else None,
        service_providers=tuple(value for value in tag_values(event, "p") if value),
        encrypted=_has_tag(event, "encrypted"),
    )


def decode_job_result(event: RawEvent) -> JobResult | None:
    """解析结果事件；缺少可解析的 `request` 标签时整条结果不可用。"""
    request_json = _position(first_tag(event, "request"), 1)
    if request_json is None:
        logger.debug(
            "result without request tag skipped",
            extra={"event": "codec.result.invalid.debug", "payload_preview": {"id": event.id}},
        )
        return None
    try:
        request_event = RawEvent.from_dict(json.loads(request_json))
    except (json.JSONDecodeError, ValueError, RecursionError) as exc:
        logger.debug(
            "result with unparseable request tag skipped",
            extra={
                "event": "codec.result.invalid.debug",
                "error": str(exc),
                "payload_preview": {"id": event.id},
            },
        )
        return None

    amount, bolt11 = _parse_amount(event)
    return JobResult(
        event=event,
        request_id=referenced_request_id(event) or request_event.id,
        request_event=request_event,
        payload=event.content,
        amount=amount,
        bolt11=bolt11,
        encrypted=_has_tag(event, "encrypted"),
    )


def decode_job_feedback(event: RawEvent) -> JobFeedback | None:
    """解析反馈事件；缺少或无法识别 `status` 标签时返回 None。"""
    status_tag = first_tag(event, "status")
    status_text = _position(status_tag, 1)
    try:
        status = FeedbackStatus(status_text) if status_text else None
    except ValueError:
        status = None
    if status is None:
        logger.debug(
            "feedback without valid status skipped",
            extra={
                "event": "codec.feedback.invalid.debug",
                "payload_preview": {"id": event.id, "status": status_text},
            },
        )
        return None

    amount, bolt11 = _parse_amount(event)
    return JobFeedback(
        event=event,
        request_id=referenced_request_id(event),
        status=status,
        extra_info=_position(status_tag, 2),
        amount=amount,
        bolt11=bolt11,
        partial_result=event.content or None,
    )


def _parse_metadata(content: str) -> dict[str, Any]:
    """服务方描述 JSON 容错解析，非法内容回退为空字典。"""
    if not content:
        return {}
    try:
        metadata = json.loads(content)
    except (json.JSONDecodeError, RecursionError):
        return {}
    return metadata if isinstance(metadata, dict) else {}


def decode_provider(event: RawEvent) -> Provider | None:
    """解析服务方声明事件，仅接受 kind 31990。"""
    if not is_provider_announcement_kind(event.kind):
        return None
    metadata = _parse_metadata(event.content)
    fields = {
        key: metadata[key]
        for key in _PROVIDER_METADATA_FIELDS
        if isinstance(metadata.get(key), str) and metadata[key]
    }
    supported_kinds = tuple(
        kind for kind in (_parse_int(value) for value in tag_values(event, "k")) if kind is not None
    )
    return Provider(
        pubkey=event.pubkey,
        event=event,
        created_at=event.created_at,
        supported_kinds=supported_kinds,
        tags=tuple(value for value in tag_values(event, "t") if value),
        **fields,
    )


def encode_input_tags(inputs: tuple[JobInput, ...] | list[JobInput]) -> list[list[str]]:
    tags: list[list[str]] = []
    for item in inputs:
        tag = ["i", item.data, item.type.value]
        # relay 为空但 marker 存在时需要占位，保证位置语义不偏移。
        if item.relay or item.marker:
            tag.append(item.relay or "")
        if item.marker:
            tag.append(item.marker)
        tags.append(tag)
    return tags


def encode_param_tags(params: tuple[JobParam, ...] | list[JobParam]) -> list[list[str]]:
    return [["param", param.key, param.value] for param in params]


def encode_job_request(request: JobRequest) -> list[list[str]]:
    """按 i、param、output、bid、relays、p 的顺序生成请求标签。"""
    tags = encode_input_tags(request.inputs)
    tags.extend(encode_param_tags(request.params))
    if request.output is not None:
        tags.append(["output", request.output])
    if request.bid is not None:
        tags.append(["bid", str(request.bid)])
    if request.relays is not None:
        tags.append(["relays", *request.relays])
    for pubkey in request.service_providers:
        tags.append(["p", pubkey])
    if request.encrypted:
        # 仅标记；内容加密由签名方负责。
        tags.append(["encrypted"])
    return tags


def build_request_draft(request: JobRequest) -> dict[str, Any]:
    """生成待签名发布的请求草稿。"""
    return {"kind": request.kind, "content": request.content, "tags": encode_job_request(request)}


def validate_job_request(request: JobRequest) -> None:
    """发布前校验：kind 必须位于请求区间，且至少包含一个输入或非空正文。"""
    if not is_request_kind(request.kind):
        raise ValueError(f"kind {request.kind} is not a job request kind")
    if not request.inputs and not request.content.strip():
        raise ValueError("job request needs at least one input or non-empty content")
