"""接口层异常映射：将领域与中继异常统一转换为 HTTP 错误。"""

from __future__ import annotations

from fastapi import HTTPException

from dvm_gateway.infra.relay.client import RelayError, RelayQueryTimeout


def to_http_error(exc: KeyError | ValueError | RelayError) -> HTTPException:
    """KeyError→404，ValueError→400，中继超时→504，其余中继错误→503。"""
    if isinstance(exc, KeyError):
        # KeyError 的 str() 会带引号，取原始参数。
        return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "not found")
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RelayQueryTimeout):
        return HTTPException(status_code=504, detail=str(exc))
    return HTTPException(status_code=503, detail=f"relay unavailable: {exc}")
