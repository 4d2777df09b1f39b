"""kind 分类测试：验证区间划分互斥且完备，以及作业类型目录的回退描述。"""

from __future__ import annotations

from dvm_gateway.domain.enums import KindClass
from dvm_gateway.domain.kinds import (
    FEEDBACK_KIND,
    classify_kind,
    is_feedback_kind,
    is_provider_announcement_kind,
    is_request_kind,
    is_result_kind,
    job_kind_info,
    known_request_kinds,
    known_response_kinds,
    result_kind_for,
)


def test_classifier_is_total_and_exclusive() -> None:
    """[0, 10000) 内每个 kind 恰好落入一个分类。"""
    for kind in range(0, 10000):
        hits = [is_request_kind(kind), is_result_kind(kind), is_feedback_kind(kind), is_provider_announcement_kind(kind)]
        assert sum(hits) <= 1
        expected = KindClass.other
        if hits[0]:
            expected = KindClass.request
        elif hits[1]:
            expected = KindClass.result
        elif hits[2]:
            expected = KindClass.feedback
        assert classify_kind(kind) == expected


def test_boundaries() -> None:
    assert classify_kind(4999) == KindClass.other
    assert classify_kind(5000) == KindClass.request
    assert classify_kind(5999) == KindClass.request
    assert classify_kind(6000) == KindClass.result
    assert classify_kind(6999) == KindClass.result
    assert classify_kind(7000) == KindClass.feedback
    assert classify_kind(7001) == KindClass.other
    assert classify_kind(31990) == KindClass.provider_announcement


def test_result_kind_hint() -> None:
    assert result_kind_for(5001) == 6001


def test_job_kind_info_fallback() -> None:
    assert job_kind_info(5002).name == "Translation"
    unknown = job_kind_info(5777)
    assert unknown.name == "Kind 5777"
    assert unknown.description == "Custom DVM job"


def test_known_kinds_for_filters() -> None:
    requests = known_request_kinds()
    responses = known_response_kinds()

    assert requests == sorted(requests)
    assert all(is_request_kind(kind) for kind in requests)
    assert FEEDBACK_KIND in responses
    assert {result_kind_for(kind) for kind in requests} <= set(responses)
