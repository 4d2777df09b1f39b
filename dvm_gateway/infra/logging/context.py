"""日志上下文：基于 contextvars 透传请求、作业、身份公钥与任务标识。

- request_id：HTTP 请求入口分配的 X-Request-Id；
- job_id：作业请求事件 ID；
- pubkey：当前操作涉及的请求方或服务方公钥；
- task_id：Celery 任务 ID。

asyncio.gather 创建的子任务与 asyncio.to_thread 都会复制当前上下文，
因此在入口绑定一次即可覆盖中继扇出与仓储线程中的日志。
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

LOG_CONTEXT_KEYS = ("request_id", "job_id", "pubkey", "task_id")

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    key: ContextVar(f"log_{key}", default=None) for key in LOG_CONTEXT_KEYS
}


def get_log_context() -> dict[str, str | None]:
    """返回当前协程/线程下的日志上下文字段。"""
    return {key: var.get() for key, var in _CONTEXT_VARS.items()}


@contextmanager
def bind_log_context(**fields: str | None) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。

    只接受 LOG_CONTEXT_KEYS 中的字段名；显式传入 None 会在范围内清空该字段。
    """
    unknown = set(fields) - set(LOG_CONTEXT_KEYS)
    if unknown:
        raise TypeError(f"unknown log context fields: {', '.join(sorted(unknown))}")
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = [
        (_CONTEXT_VARS[key], _CONTEXT_VARS[key].set(value)) for key, value in fields.items()
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
