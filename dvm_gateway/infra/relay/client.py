"""中继 HTTP 网关客户端：并发扇出查询、合并去重、超时与外部取消信号控制。"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

from dvm_gateway.domain.models import RawEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RelayError(RuntimeError):
    """中继查询或发布失败的基类。"""


class RelayUnavailableError(RelayError):
    """所有中继均不可用。"""


class RelayQueryTimeout(RelayError):
    """查询超过时限被放弃。"""


class RelayQueryCancelled(RelayError):
    """调用方取消了查询。"""


@dataclass(slots=True)
class RelayCredentials:
    """中继网关认证凭据对象。"""
    token: str | None = None


@dataclass(slots=True)
class EventFilter:
    """NIP-01 风格的事件过滤条件。"""
    kinds: list[int] | None = None
    authors: list[str] | None = None
    ids: list[str] | None = None
    referenced_ids: list[str] | None = None
    pubkeys: list[str] | None = None
    tags: dict[str, list[str]] = field(default_factory=dict)
    limit: int | None = None
    since: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """转换为中继可识别的过滤 JSON，空字段不输出。"""
        payload: dict[str, Any] = {}
        if self.kinds:
            payload["kinds"] = list(self.kinds)
        if self.authors:
            payload["authors"] = list(self.authors)
        if self.ids:
            payload["ids"] = list(self.ids)
        if self.referenced_ids:
            payload["#e"] = list(self.referenced_ids)
        if self.pubkeys:
            payload["#p"] = list(self.pubkeys)
        for name, values in self.tags.items():
            if values:
                payload[f"#{name}"] = list(values)
        if self.limit is not None:
            payload["limit"] = self.limit
        if self.since is not None:
            payload["since"] = self.since
        return payload


class RelayClient:
    """中继网关异步客户端，向全部网关并发查询并按事件 ID 合并结果。"""

    def __init__(
        self,
        relay_urls: Sequence[str],
        credentials: RelayCredentials,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not relay_urls:
            raise ValueError("at least one relay url is required")
        self._relay_urls = [url.rstrip("/") for url in relay_urls]
        self._credentials = credentials
        self._closed = False
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=self._headers(),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            transport=transport,
        )

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    @property
    def relay_urls(self) -> list[str]:
        return list(self._relay_urls)

    def _headers(self) -> dict[str, str]:
        """仅在配置了令牌时附加 Bearer 认证头。"""
        if self._credentials.token:
            return {"Authorization": f"Bearer {self._credentials.token}"}
        return {}

    def _client_or_raise(self) -> httpx.AsyncClient:
        """返回可用客户端；若已关闭则抛出异常。"""
        if self._closed:
            raise RuntimeError("RelayClient is already closed")
        return self._client

    async def aclose(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        await self._client.aclose()
        self._closed = True

    async def _request(
        self,
        *,
        url: str,
        op: str,
        json_body: dict[str, Any],
        payload_preview: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """发送 HTTP 请求并记录结构化日志。"""
        started = time.perf_counter()
        try:
            response = await self._client_or_raise().post(url, json=json_body)
            response.raise_for_status()
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            status_code = None
            if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
                status_code = exc.response.status_code
            logger.error(
                "relay request failed",
                extra={
                    "event": "relay.request.failed",
                    "external_service": "relay",
                    "op": op,
                    "duration_ms": duration_ms,
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "relay": url,
                    "payload_preview": payload_preview,
                },
            )
            raise
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(
            "relay request completed",
            extra={
                "event": "relay.request.completed.debug",
                "external_service": "relay",
                "relay": url,
                "op": op,
                "duration_ms": duration_ms,
                "status_code": response.status_code,
            },
        )
        return response

    async def _bounded(self, awaitable: Awaitable[T], *, timeout: float, cancel: asyncio.Event | None, op: str) -> T:
        """以超时与外部取消信号中先触发者为准，结束或放弃一次查询。"""
        task = asyncio.ensure_future(awaitable)
        cancel_waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        waiters = {task} if cancel_waiter is None else {task, cancel_waiter}
        try:
            done, _pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
        if task in done:
            return task.result()
        if cancel_waiter is not None and cancel_waiter in done:
            logger.info("relay query cancelled", extra={"event": "relay.query.cancelled", "op": op})
            raise RelayQueryCancelled(f"{op} cancelled by caller")
        logger.warning(
            "relay query timed out",
            extra={"event": "relay.query.timeout", "external_service": "relay", "op": op, "duration_ms": timeout * 1000},
        )
        raise RelayQueryTimeout(f"{op} timed out after {timeout:.1f}s")

    @staticmethod
    def _parse_events(payload: Any, *, relay: str) -> list[RawEvent]:
        """解析中继返回的事件列表，跳过结构不合法的记录。"""
        items = payload.get("events") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise RelayError(f"unexpected query response from {relay}")
        events: list[RawEvent] = []
        for item in items:
            try:
                events.append(RawEvent.from_dict(item))
            except ValueError as exc:
                logger.warning(
                    "malformed relay event skipped",
                    extra={
                        "event": "relay.event.invalid",
                        "external_service": "relay",
                        "error": str(exc),
                        "relay": relay,
                        "payload_preview": {"item": item},
                    },
                )
        return events

    async def _query_relay(self, url: str, filters: list[dict[str, Any]], op: str) -> list[RawEvent]:
        response = await self._request(
            url=f"{url}/query",
            op=op,
            json_body={"filters": filters},
            payload_preview={"filters": filters},
        )
        return self._parse_events(response.json(), relay=url)

    async def _fan_out(self, filters: list[dict[str, Any]], op: str) -> list[RawEvent]:
        """并发查询全部中继，合并并按事件 ID 去重；全部失败时抛出异常。"""
        outcomes = await asyncio.gather(
            *(self._query_relay(url, filters, op) for url in self._relay_urls),
            return_exceptions=True,
        )
        merged: dict[str, RawEvent] = {}
        failures: list[BaseException] = []
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                failures.append(outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            for event in outcome:
                merged.setdefault(event.id, event)
        if failures and len(failures) == len(outcomes):
            raise RelayUnavailableError(f"all relays failed for {op}: {failures[0]}") from failures[0]
        if failures:
            logger.warning(
                "relay query partially failed",
                extra={
                    "event": "relay.query.partial",
                    "external_service": "relay",
                    "op": op,
                    "payload_preview": {"failed": len(failures), "total": len(outcomes)},
                },
            )
        return list(merged.values())

    async def query(
        self,
        filters: Sequence[EventFilter],
        *,
        timeout: float,
        cancel: asyncio.Event | None = None,
        op: str = "relay.query",
    ) -> list[RawEvent]:
        """按过滤条件查询事件，结果可能少于实际存在的事件。"""
        payload = [item.to_payload() for item in filters]
        started = time.perf_counter()
        events = await self._bounded(self._fan_out(payload, op), timeout=timeout, cancel=cancel, op=op)
        logger.info(
            "relay query completed",
            extra={
                "event": "relay.query.completed",
                "external_service": "relay",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"filters": payload, "events": len(events)},
            },
        )
        return events

    async def publish(
        self,
        draft: dict[str, Any],
        *,
        timeout: float,
        cancel: asyncio.Event | None = None,
    ) -> RawEvent:
        """将草稿交给网关签名发布，返回第一个接受的中继给出的已签名事件。"""

        async def _publish_first() -> RawEvent:
            last_error: Exception | None = None
            for url in self._relay_urls:
                try:
                    response = await self._request(
                        url=f"{url}/publish",
                        op="relay.publish",
                        json_body=draft,
                        payload_preview={"kind": draft.get("kind"), "tags": len(draft.get("tags") or [])},
                    )
                    return RawEvent.from_dict(response.json())
                except (httpx.HTTPError, ValueError) as exc:
                    last_error = exc
            raise RelayUnavailableError(f"no relay accepted the event: {last_error}") from last_error

        return await self._bounded(_publish_first(), timeout=timeout, cancel=cancel, op="relay.publish")
