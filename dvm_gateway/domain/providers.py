"""服务方目录：按身份去重服务方声明，只保留最新的有效声明。"""

from __future__ import annotations

from collections.abc import Iterable

from dvm_gateway.domain.codec import decode_provider
from dvm_gateway.domain.kinds import is_request_kind
from dvm_gateway.domain.models import Provider, RawEvent


def is_job_provider(provider: Provider) -> bool:
    """至少声明一个请求区间内的 kind 才算作业服务方。"""
    return any(is_request_kind(kind) for kind in provider.supported_kinds)


def _decode_job_providers(events: Iterable[RawEvent]) -> list[Provider]:
    decoded = (decode_provider(event) for event in events)
    return [provider for provider in decoded if provider is not None and is_job_provider(provider)]


def dedupe_providers(events: Iterable[RawEvent]) -> list[Provider]:
    """同一身份的多条声明只保留 created_at 最大的一条，结果按时间倒序。"""
    latest: dict[str, Provider] = {}
    for provider in _decode_job_providers(events):
        existing = latest.get(provider.pubkey)
        # 时间戳相同保留先到的一条，避免结果随中继返回顺序抖动。
        if existing is None or provider.created_at > existing.created_at:
            latest[provider.pubkey] = provider
    return sorted(latest.values(), key=lambda item: item.created_at, reverse=True)


def filter_providers(
    providers: Iterable[Provider],
    *,
    kinds: Iterable[int] | None = None,
    tags: Iterable[str] | None = None,
) -> list[Provider]:
    """本地复核查询边界上的 kind/tag 过滤条件（任一命中即保留）。"""
    wanted_kinds = set(kinds or ())
    wanted_tags = set(tags or ())
    selected: list[Provider] = []
    for provider in providers:
        if wanted_kinds and wanted_kinds.isdisjoint(provider.supported_kinds):
            continue
        if wanted_tags and wanted_tags.isdisjoint(provider.tags):
            continue
        selected.append(provider)
    return selected


def latest_provider(events: Iterable[RawEvent], pubkey: str) -> Provider | None:
    """返回指定身份最新的一条有效声明，不存在时返回 None。"""
    candidates = [provider for provider in _decode_job_providers(events) if provider.pubkey == pubkey]
    if not candidates:
        return None
    return max(candidates, key=lambda item: item.created_at)
