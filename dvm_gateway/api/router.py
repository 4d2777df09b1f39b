"""API 总路由配置，按业务域注册 jobs、providers 与 kinds 子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from dvm_gateway.api.v1.jobs import router as jobs_router
from dvm_gateway.api.v1.kinds import router as kinds_router
from dvm_gateway.api.v1.providers import router as providers_router
from dvm_gateway.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(jobs_router, tags=["jobs"])
api_router.include_router(providers_router, tags=["providers"])
api_router.include_router(kinds_router, tags=["kinds"])
