"""事件 kind 分类：划分请求、结果、反馈与服务方声明区间，并维护已知作业类型目录。"""

from __future__ import annotations

from dataclasses import dataclass

from dvm_gateway.domain.enums import KindClass

REQUEST_KIND_MIN = 5000
REQUEST_KIND_MAX = 6000
RESULT_KIND_MIN = 6000
RESULT_KIND_MAX = 7000
FEEDBACK_KIND = 7000
PROVIDER_ANNOUNCEMENT_KIND = 31990
RESULT_KIND_OFFSET = 1000


@dataclass(frozen=True, slots=True)
class JobKindInfo:
    """作业类型名称与描述。"""
    kind: int
    name: str
    description: str


JOB_KINDS: dict[int, JobKindInfo] = {
    item.kind: item
    for item in (
        JobKindInfo(5000, "Text Extraction", "Extract text from various inputs"),
        JobKindInfo(5001, "Summarization", "Summarize text content"),
        JobKindInfo(5002, "Translation", "Translate text to different languages"),
        JobKindInfo(5050, "Text to Speech", "Convert text to audio"),
        JobKindInfo(5100, "Text Generation", "Generate text using AI"),
        JobKindInfo(5200, "Image Generation", "Generate images using AI"),
        JobKindInfo(5201, "Image Upscaling", "Upscale image resolution"),
        JobKindInfo(5202, "Image Manipulation", "Modify or edit images"),
        JobKindInfo(5250, "Video Generation", "Generate video content"),
        JobKindInfo(5300, "Discovery", "Discover content based on criteria"),
        JobKindInfo(5301, "Search", "Search for content"),
        JobKindInfo(5302, "People Discovery", "Find people/profiles"),
        JobKindInfo(5303, "Content Discovery", "Discover interesting content"),
        JobKindInfo(5400, "Timestamping", "Timestamp verification"),
        JobKindInfo(5500, "NIP-05", "NIP-05 verification service"),
        JobKindInfo(5900, "Generic", "Generic computation task"),
        JobKindInfo(5901, "Web Scraping", "Scrape web content"),
        JobKindInfo(5905, "Nostr Event Fetch", "Fetch Nostr events"),
        JobKindInfo(5970, "Lightning Invoice", "Generate Lightning invoices"),
    )
}


def is_request_kind(kind: int) -> bool:
    return REQUEST_KIND_MIN <= kind < REQUEST_KIND_MAX


def is_result_kind(kind: int) -> bool:
    return RESULT_KIND_MIN <= kind < RESULT_KIND_MAX


def is_feedback_kind(kind: int) -> bool:
    return kind == FEEDBACK_KIND


def is_provider_announcement_kind(kind: int) -> bool:
    return kind == PROVIDER_ANNOUNCEMENT_KIND


def is_response_kind(kind: int) -> bool:
    """结果与反馈统一视为响应，用于关联请求。"""
    return is_result_kind(kind) or is_feedback_kind(kind)


def classify_kind(kind: int) -> KindClass:
    """将 kind 映射到唯一的分类。"""
    if is_request_kind(kind):
        return KindClass.request
    if is_result_kind(kind):
        return KindClass.result
    if is_feedback_kind(kind):
        return KindClass.feedback
    if is_provider_announcement_kind(kind):
        return KindClass.provider_announcement
    return KindClass.other


def result_kind_for(request_kind: int) -> int:
    """请求对应的约定结果 kind，仅作查询提示，不参与关联。"""
    return request_kind + RESULT_KIND_OFFSET


def job_kind_info(kind: int) -> JobKindInfo:
    """返回已知作业类型信息；未知类型给出通用描述。"""
    return JOB_KINDS.get(kind) or JobKindInfo(kind, f"Kind {kind}", "Custom DVM job")


def known_request_kinds() -> list[int]:
    # 中继不支持区间过滤，只能枚举已知 kind。
    return sorted(JOB_KINDS)


def known_response_kinds() -> list[int]:
    return [result_kind_for(kind) for kind in known_request_kinds()] + [FEEDBACK_KIND]
