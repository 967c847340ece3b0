"""Tests for documentation enrichment."""

from __future__ import annotations

import asyncio
import json

import httpx

from repoaudit.docs import DocsClient, DocSnippet


def _tool_result(request_id, content):
    return {"jsonrpc": "2.0", "id": request_id, "result": {"content": content}}


def _handler(snippet_count: int = 2, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if calls is not None:
            calls.append((body["params"]["name"], body["params"]["arguments"], request.headers.get("Authorization")))
        if body["params"]["name"] == "resolve-library-id":
            return httpx.Response(200, json=_tool_result(body["id"], [{"type": "text", "text": "/vercel/next.js"}]))
        docs = [
            {"title": f"Routing {index}", "url": f"https://nextjs.org/docs/{index}", "snippet": "export default"}
            for index in range(snippet_count)
        ]
        return httpx.Response(200, json=_tool_result(body["id"], [{"type": "text", "text": json.dumps(docs)}]))

    return handler


def _run(handler, libraries, api_key=None):
    async def _inner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            docs = DocsClient("https://context.test/mcp", api_key, client=client)
            return await docs.gather(libraries)

    return asyncio.run(_inner())


def test_unconfigured_client_returns_nothing() -> None:
    docs = DocsClient(None)
    assert docs.configured is False
    assert asyncio.run(docs.gather(["Next.js"])) == []


def test_lookup_resolves_then_fetches_docs() -> None:
    calls = []

    snippets = _run(_handler(calls=calls), ["Next.js"], api_key="ctx-secret")

    assert snippets == [
        DocSnippet("Routing 0", "https://nextjs.org/docs/0", "export default"),
        DocSnippet("Routing 1", "https://nextjs.org/docs/1", "export default"),
    ]
    assert calls == [
        ("resolve-library-id", {"libraryName": "Next.js"}, "Bearer ctx-secret"),
        ("get-library-docs", {"libraryId": "/vercel/next.js"}, "Bearer ctx-secret"),
    ]


def test_gather_caps_snippets_per_library() -> None:
    snippets = _run(_handler(snippet_count=8), ["Next.js", "React"])
    assert len(snippets) == 10


def test_http_errors_yield_no_snippets() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    assert _run(handler, ["Next.js"]) == []


def test_tool_errors_yield_no_snippets() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"message": "unknown tool"}})

    assert _run(handler, ["Next.js"]) == []
