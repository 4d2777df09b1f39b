"""中继客户端测试：使用 httpx.MockTransport 验证扇出合并、部分失败、超时与取消。"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from dvm_gateway.infra.relay.client import (
    EventFilter,
    RelayClient,
    RelayCredentials,
    RelayQueryCancelled,
    RelayQueryTimeout,
    RelayUnavailableError,
)


def _raw(event_id: str, kind: int = 5001) -> dict[str, object]:
    return {"id": event_id, "kind": kind, "content": "", "created_at": 100, "pubkey": "alice", "tags": []}


def test_event_filter_payload() -> None:
    payload = EventFilter(
        kinds=[5001],
        authors=["alice"],
        referenced_ids=["req-1"],
        pubkeys=["prov-1"],
        tags={"k": ["5001"], "t": []},
        limit=20,
        since=0,
    ).to_payload()

    assert payload == {
        "kinds": [5001],
        "authors": ["alice"],
        "#e": ["req-1"],
        "#p": ["prov-1"],
        "#k": ["5001"],
        "limit": 20,
        "since": 0,
    }


def test_query_merges_relays_by_event_id() -> None:
    """多个中继返回重叠结果时按事件 ID 合并，并携带认证头。"""
    seen_auth: list[str | None] = []
    seen_bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_auth.append(request.headers.get("Authorization"))
        seen_bodies.append(json.loads(request.content))
        if request.url.host == "relay-a":
            return httpx.Response(200, json=[_raw("e1"), _raw("e2")])
        return httpx.Response(200, json={"events": [_raw("e2"), _raw("e3"), {"kind": 1}]})

    async def run() -> list[str]:
        async with RelayClient(
            ["http://relay-a", "http://relay-b/"],
            RelayCredentials(token="secret"),
            transport=httpx.MockTransport(handler),
        ) as client:
            events = await client.query([EventFilter(ids=["e1"])], timeout=2)
        return sorted(event.id for event in events)

    assert asyncio.run(run()) == ["e1", "e2", "e3"]
    assert seen_auth == ["Bearer secret", "Bearer secret"]
    assert seen_bodies[0] == {"filters": [{"ids": ["e1"]}]}


def test_query_tolerates_partial_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "relay-a":
            return httpx.Response(503)
        return httpx.Response(200, json=[_raw("e1")])

    async def run() -> list[str]:
        async with RelayClient(
            ["http://relay-a", "http://relay-b"], RelayCredentials(), transport=httpx.MockTransport(handler)
        ) as client:
            return [event.id for event in await client.query([EventFilter(kinds=[5001])], timeout=2)]

    assert asyncio.run(run()) == ["e1"]


def test_query_fails_when_every_relay_fails() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async def run() -> None:
        async with RelayClient(
            ["http://relay-a", "http://relay-b"], RelayCredentials(), transport=httpx.MockTransport(handler)
        ) as client:
            await client.query([EventFilter(kinds=[5001])], timeout=2)

    with pytest.raises(RelayUnavailableError):
        asyncio.run(run())


def test_query_timeout() -> None:
    async def handler(_request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json=[])

    async def run() -> None:
        async with RelayClient(["http://relay-a"], RelayCredentials(), transport=httpx.MockTransport(handler)) as client:
            await client.query([EventFilter(kinds=[5001])], timeout=0.05)

    with pytest.raises(RelayQueryTimeout):
        asyncio.run(run())


def test_query_cancelled_by_caller() -> None:
    async def handler(_request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json=[])

    async def run() -> None:
        cancel = asyncio.Event()
        async with RelayClient(["http://relay-a"], RelayCredentials(), transport=httpx.MockTransport(handler)) as client:
            query = asyncio.ensure_future(client.query([EventFilter(kinds=[5001])], timeout=5, cancel=cancel))
            await asyncio.sleep(0.01)
            cancel.set()
            await query

    with pytest.raises(RelayQueryCancelled):
        asyncio.run(run())


def test_publish_uses_first_accepting_relay() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        if request.url.host == "relay-a":
            return httpx.Response(502)
        draft = json.loads(request.content)
        return httpx.Response(200, json={**_raw("signed-1", draft["kind"]), "tags": draft["tags"], "sig": "ff"})

    async def run():
        async with RelayClient(
            ["http://relay-a", "http://relay-b", "http://relay-c"],
            RelayCredentials(),
            transport=httpx.MockTransport(handler),
        ) as client:
            return await client.publish({"kind": 5001, "content": "", "tags": [["i", "x", "text"]]}, timeout=2)

    event = asyncio.run(run())

    assert event.id == "signed-1"
    assert event.tags == (("i", "x", "text"),)
    assert calls == ["relay-a", "relay-b"]


def test_client_requires_relays() -> None:
    with pytest.raises(ValueError):
        RelayClient([], RelayCredentials())
