"""标签编解码测试：覆盖请求往返、结果/反馈容错解析与服务方声明解析。"""

from __future__ import annotations

import json

import pytest

from dvm_gateway.domain.codec import (
    build_request_draft,
    decode_inputs,
    decode_job_feedback,
    decode_job_request,
    decode_job_result,
    decode_params,
    decode_provider,
    encode_job_request,
    validate_job_request,
)
from dvm_gateway.domain.enums import FeedbackStatus, InputType
from dvm_gateway.domain.correlation import build_correlation_index
from dvm_gateway.domain.enums import JobStatus
from dvm_gateway.domain.models import JobInput, JobParam, JobRequest, RawEvent
from dvm_gateway.domain.providers import dedupe_providers
from dvm_gateway.domain.status import derive_job_lifecycle_state

# 嵌套层数远超解释器递归上限的 JSON 数组。
DEEPLY_NESTED = "[" * 100000 + "]" * 100000


def _event(event_id: str, kind: int, tags: list[list[str]], *, content: str = "", created_at: int = 100, pubkey: str = "pk") -> RawEvent:
    return RawEvent(
        id=event_id,
        kind=kind,
        content=content,
        created_at=created_at,
        pubkey=pubkey,
        tags=tuple(tuple(tag) for tag in tags),
    )


def _request_json(event_id: str = "req-1") -> str:
    return json.dumps({"id": event_id, "kind": 5001, "content": "", "created_at": 90, "pubkey": "alice", "tags": []})


def test_job_request_round_trip() -> None:
    """编码后再解码应得到相同的作业请求。"""
    request = JobRequest(
        kind=5001,
        content="please summarize",
        inputs=(
            JobInput(data="https://example.com/a.txt", type=InputType.url),
            JobInput(data="evt-1", type=InputType.event, relay="wss://relay.example", marker="source"),
            JobInput(data="job-9", type=InputType.job, marker="chain"),
        ),
        params=(JobParam("lang", "en"), JobParam("lang", "de"), JobParam("max_tokens", "256")),
        output="text/plain",
        bid=0,
        relays=("wss://a.example", "wss://b.example"),
        service_providers=("prov-1", "prov-2"),
        encrypted=True,
    )
    draft = build_request_draft(request)
    event = _event("req-1", draft["kind"], draft["tags"], content=draft["content"])

    assert decode_job_request(event) == request


def test_encode_job_request_orders_tags() -> None:
    request = JobRequest(
        kind=5100,
        inputs=(JobInput(data="hi"),),
        params=(JobParam("model", "x"),),
        output="text/plain",
        bid=1000,
        relays=("wss://a.example",),
        service_providers=("prov-1",),
    )

    names = [tag[0] for tag in encode_job_request(request)]

    assert names == ["i", "param", "output", "bid", "relays", "p"]


def test_encode_input_keeps_marker_position_without_relay() -> None:
    tags = encode_job_request(JobRequest(kind=5001, inputs=(JobInput(data="x", type=InputType.job, marker="m"),)))

    assert tags == [["i", "x", "job", "", "m"]]


def test_decode_inputs_defaults_and_skips() -> None:
    """类型缺失或未知时回退为 text，无数据的 `i` 标签被跳过。"""
    event = _event("req-1", 5001, [["i", "a"], ["i", "b", "weird"], ["i"], ["i", "", "url"], ["i", "c", "url"]])

    inputs = decode_inputs(event)

    assert [(item.data, item.type) for item in inputs] == [
        ("a", InputType.text),
        ("b", InputType.text),
        ("c", InputType.url),
    ]


def test_decode_params_preserves_order_and_missing_value() -> None:
    event = _event("req-1", 5001, [["param", "k", "1"], ["param"], ["param", "k"], ["param", "z", "2"]])

    assert [(item.key, item.value) for item in decode_params(event)] == [("k", "1"), ("k", ""), ("z", "2")]


def test_decode_job_request_non_numeric_bid_is_none() -> None:
    request = decode_job_request(_event("req-1", 5001, [["bid", "lots"], ["output", "text/plain"]]))

    assert request.bid is None
    assert request.output == "text/plain"
    assert request.relays is None
    assert request.encrypted is False


def test_decode_job_result_requires_parseable_request_tag() -> None:
    missing = _event("res-1", 6001, [["e", "req-1"]])
    broken = _event("res-2", 6001, [["e", "req-1"], ["request", "{not json"]])
    not_event = _event("res-3", 6001, [["e", "req-1"], ["request", json.dumps({"kind": 5001})]])

    assert decode_job_result(missing) is None
    assert decode_job_result(broken) is None
    assert decode_job_result(not_event) is None


def test_decode_job_result_reads_amount_and_reference() -> None:
    event = _event(
        "res-1",
        6001,
        [["request", _request_json()], ["e", "req-1"], ["amount", "2100", "lnbc1invoice"], ["encrypted"]],
        content="the summary",
        pubkey="prov-1",
    )

    result = decode_job_result(event)

    assert result is not None
    assert result.request_id == "req-1"
    assert result.request_event.pubkey == "alice"
    assert result.payload == "the summary"
    assert result.amount == 2100
    assert result.bolt11 == "lnbc1invoice"
    assert result.encrypted is True


def test_decode_job_result_falls_back_to_embedded_request_id() -> None:
    result = decode_job_result(_event("res-1", 6001, [["request", _request_json("req-7")]]))

    assert result is not None
    assert result.request_id == "req-7"


def test_decode_job_feedback_fields() -> None:
    event = _event(
        "fb-1",
        7000,
        [["status", "payment-required", "pay first"], ["e", "req-1"], ["amount", "500"]],
        content="partial text",
    )

    feedback = decode_job_feedback(event)

    assert feedback is not None
    assert feedback.status == FeedbackStatus.payment_required
    assert feedback.extra_info == "pay first"
    assert feedback.amount == 500
    assert feedback.bolt11 is None
    assert feedback.partial_result == "partial text"
    assert feedback.request_id == "req-1"


def test_decode_job_feedback_rejects_missing_or_unknown_status() -> None:
    assert decode_job_feedback(_event("fb-1", 7000, [["e", "req-1"]])) is None
    assert decode_job_feedback(_event("fb-2", 7000, [["status"], ["e", "req-1"]])) is None
    assert decode_job_feedback(_event("fb-3", 7000, [["status", "thinking"], ["e", "req-1"]])) is None


def test_batch_with_malformed_responses_decodes_the_rest() -> None:
    """10 条响应中 3 条缺少必需标签：解码出 7 条且不抛异常。"""
    events: list[RawEvent] = []
    for index in range(4):
        events.append(_event(f"res-{index}", 6001, [["request", _request_json()], ["e", "req-1"]]))
    for index in range(3):
        events.append(_event(f"fb-{index}", 7000, [["status", "processing"], ["e", "req-1"]]))
    events.append(_event("bad-1", 6001, [["e", "req-1"]]))
    events.append(_event("bad-2", 6001, [["e", "req-1"], ["request", "oops"]]))
    events.append(_event("bad-3", 7000, [["e", "req-1"]]))

    decoded = [
        decode_job_result(event) if event.kind != 7000 else decode_job_feedback(event)
        for event in events
    ]

    assert sum(1 for item in decoded if item is not None) == 7


def test_decode_provider_metadata_is_lenient() -> None:
    content = json.dumps({"name": "Summarizer", "about": 42, "picture": "", "lud16": "pay@example.com"})
    event = _event("ann-1", 31990, [["k", "5001"], ["k", "abc"], ["k", "5002"], ["t", "ai"]], content=content, pubkey="prov-1")

    provider = decode_provider(event)

    assert provider is not None
    assert provider.name == "Summarizer"
    assert provider.about is None
    assert provider.picture is None
    assert provider.lud16 == "pay@example.com"
    assert provider.supported_kinds == (5001, 5002)
    assert provider.tags == ("ai",)


def test_decode_provider_invalid_json_and_wrong_kind() -> None:
    provider = decode_provider(_event("ann-1", 31990, [["k", "5001"]], content="{nope"))

    assert provider is not None
    assert provider.name is None
    assert decode_provider(_event("ann-2", 1, [["k", "5001"]])) is None


def test_validate_job_request() -> None:
    validate_job_request(JobRequest(kind=5001, content="text only"))
    validate_job_request(JobRequest(kind=5001, inputs=(JobInput(data="x"),)))

    with pytest.raises(ValueError):
        validate_job_request(JobRequest(kind=6001, content="hello"))
    with pytest.raises(ValueError):
        validate_job_request(JobRequest(kind=5001, content="   "))


def test_empty_relays_and_output_round_trip() -> None:
    """空 relays 与空 output 编码后仍解码为原值，不退化为 None。"""
    request = JobRequest(kind=5001, content="x", output="", relays=())
    draft = build_request_draft(request)

    assert ["relays"] in draft["tags"]
    assert decode_job_request(_event("req-1", draft["kind"], draft["tags"], content=draft["content"])) == request


def test_absent_relays_and_output_stay_none() -> None:
    draft = build_request_draft(JobRequest(kind=5001, content="x"))

    decoded = decode_job_request(_event("req-1", draft["kind"], draft["tags"], content=draft["content"]))

    assert draft["tags"] == []
    assert decoded.relays is None
    assert decoded.output is None


@pytest.mark.parametrize("raw", ["1_000", "+5", " ", "1e3", "0x10", "١٢"])
def test_lenient_integer_literals_are_rejected(raw: str) -> None:
    """bid 与 amount 只接受十进制整数字面量。"""
    request = decode_job_request(_event("req-1", 5001, [["bid", raw]]))
    feedback = decode_job_feedback(_event("fb-1", 7000, [["status", "payment-required"], ["amount", raw]]))

    assert request.bid is None
    assert feedback is not None
    assert feedback.amount is None


def test_strict_integers_still_parse() -> None:
    request = decode_job_request(_event("req-1", 5001, [["bid", " 2100 "]]))
    provider = decode_provider(_event("ann-1", 31990, [["k", "-5"], ["k", "5001"], ["k", "5_002"]]))

    assert request.bid == 2100
    assert provider is not None
    assert provider.supported_kinds == (-5, 5001)


def test_oversized_integer_is_rejected() -> None:
    request = decode_job_request(_event("req-1", 5001, [["bid", "9" * 5000]]))

    assert request.bid is None


def test_deeply_nested_request_tag_is_dropped() -> None:
    """内嵌请求 JSON 嵌套过深时结果解码为 None，同批其余响应照常参与状态推导。"""
    request = _event("req-1", 5001, [], created_at=90, pubkey="alice")
    poisoned = _event("res-bad", 6001, [["request", DEEPLY_NESTED], ["e", "req-1"]], created_at=300)
    feedback = _event("fb-1", 7000, [["status", "processing"], ["e", "req-1"]], created_at=200)

    assert decode_job_result(poisoned) is None

    state = derive_job_lifecycle_state(request, [poisoned, feedback])
    assert state.status == JobStatus.processing
    assert state.results == ()

    states = build_correlation_index([request], [poisoned, feedback]).states()
    assert [item.status for item in states] == [JobStatus.processing]


def test_deeply_nested_provider_metadata_is_ignored() -> None:
    poisoned = _event("ann-bad", 31990, [["k", "5001"]], content=DEEPLY_NESTED, created_at=100, pubkey="prov-1")
    healthy = _event(
        "ann-ok", 31990, [["k", "5002"]], content=json.dumps({"name": "Translator"}), created_at=100, pubkey="prov-2"
    )

    provider = decode_provider(poisoned)
    providers = dedupe_providers([poisoned, healthy])

    assert provider is not None
    assert provider.name is None
    assert {item.pubkey: item.name for item in providers} == {"prov-1": None, "prov-2": "Translator"}
