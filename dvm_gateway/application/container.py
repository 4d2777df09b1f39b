"""依赖容器模块，负责单例化创建仓储、中继客户端与对账服务对象。"""

from __future__ import annotations

from functools import lru_cache

from dvm_gateway.application.reconciler import ReconcilerService
from dvm_gateway.config import get_settings
from dvm_gateway.infra.db.repository import TrackedJobRepository
from dvm_gateway.infra.db.session import SessionLocal
from dvm_gateway.infra.relay.client import RelayClient, RelayCredentials


@lru_cache(maxsize=1)
def get_repository() -> TrackedJobRepository:
    """获取跟踪作业仓储单例。"""
    return TrackedJobRepository(SessionLocal)


@lru_cache(maxsize=1)
def get_relay_credentials() -> RelayCredentials:
    """获取中继网关认证信息单例。"""
    return RelayCredentials(token=get_settings().relay_auth_token)


def create_relay_client() -> RelayClient:
    """创建新的中继客户端；Worker 每次任务在独立事件循环中使用，不能复用单例。"""
    settings = get_settings()
    return RelayClient(
        settings.relay_urls_list(),
        get_relay_credentials(),
        timeout_seconds=settings.relay_request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_relay_client() -> RelayClient:
    """获取 API 进程共享的中继客户端单例。"""
    return create_relay_client()


@lru_cache(maxsize=1)
def get_reconciler_service() -> ReconcilerService:
    """获取对账服务单例。"""
    return ReconcilerService(
        settings=get_settings(),
        relay=get_relay_client(),
        repository=get_repository(),
    )


def build_reconciler_service(relay: RelayClient) -> ReconcilerService:
    """使用指定中继客户端构建对账服务，供 Worker 任务内部使用。"""
    return ReconcilerService(settings=get_settings(), relay=relay, repository=get_repository())


def reset_container() -> None:
    # 按依赖顺序清理缓存，确保后续调用可重新构建全新实例。
    for provider in (
        get_reconciler_service,
        get_relay_client,
        get_relay_credentials,
        get_repository,
    ):
        provider.cache_clear()


async def shutdown_container_resources() -> None:
    """关闭共享中继客户端并清理依赖容器缓存。"""
    if get_relay_client.cache_info().currsize:
        await get_relay_client().aclose()
    reset_container()
