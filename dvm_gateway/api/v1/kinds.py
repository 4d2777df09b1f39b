"""作业类型目录接口：列出已知作业 kind 及其约定结果 kind。"""

from __future__ import annotations

from fastapi import APIRouter

from dvm_gateway.api.v1.schemas import JobKindResponse
from dvm_gateway.domain.kinds import job_kind_info, known_request_kinds, result_kind_for

router = APIRouter()


@router.get("/kinds", response_model=list[JobKindResponse])
def list_kinds() -> list[JobKindResponse]:
    items: list[JobKindResponse] = []
    for kind in known_request_kinds():
        info = job_kind_info(kind)
        items.append(
            JobKindResponse(kind=kind, result_kind=result_kind_for(kind), name=info.name, description=info.description)
        )
    return items
