"""服务方目录接口：按 kind/标签列出服务方、查询单个服务方及其作业。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from dvm_gateway.api.v1.errors import to_http_error
from dvm_gateway.api.v1.schemas import JobStateResponse, ProviderJobsResponse, ProviderResponse
from dvm_gateway.application.container import get_reconciler_service
from dvm_gateway.application.reconciler import ReconcilerService
from dvm_gateway.infra.logging.context import bind_log_context
from dvm_gateway.infra.relay.client import RelayError

router = APIRouter()


def _service() -> ReconcilerService:
    return get_reconciler_service()


@router.get("/providers", response_model=list[ProviderResponse])
async def list_providers(
    kind: list[int] | None = Query(default=None),
    tag: list[str] | None = Query(default=None),
    reconciler: ReconcilerService = Depends(_service),
) -> list[ProviderResponse]:
    """按可选 kind 与标签过滤服务方，最新声明在前。"""
    try:
        providers = await reconciler.list_providers(kinds=kind, tags=tag)
    except RelayError as exc:
        raise to_http_error(exc) from exc
    return [ProviderResponse.from_domain(item) for item in providers]


@router.get("/providers/{pubkey}", response_model=ProviderResponse)
async def get_provider(
    pubkey: str,
    reconciler: ReconcilerService = Depends(_service),
) -> ProviderResponse:
    try:
        with bind_log_context(pubkey=pubkey):
            provider = await reconciler.get_provider(pubkey)
    except (KeyError, RelayError) as exc:
        raise to_http_error(exc) from exc
    return ProviderResponse.from_domain(provider)


@router.get("/providers/{pubkey}/jobs", response_model=ProviderJobsResponse)
async def list_provider_jobs(
    pubkey: str,
    reconciler: ReconcilerService = Depends(_service),
) -> ProviderJobsResponse:
    """服务方处理过或被点名的作业，含已完成与处理中统计。"""
    try:
        with bind_log_context(pubkey=pubkey):
            view = await reconciler.list_provider_jobs(pubkey)
    except RelayError as exc:
        raise to_http_error(exc) from exc
    return ProviderJobsResponse(
        pubkey=view.pubkey,
        jobs=[JobStateResponse.from_state(state) for state in view.jobs],
        completed_count=view.completed_count,
        processing_count=view.processing_count,
        unresolved_count=view.unresolved_count,
    )
