"""Optional documentation enrichment over a JSON-RPC tool endpoint."""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .logging import get_logger, mask_secret

logger = get_logger("docs")

SNIPPETS_PER_LIBRARY = 5


@dataclass(frozen=True)
class DocSnippet:
    title: str
    url: str
    snippet: str


class DocsClient:
    """Resolves library names to documentation snippets; unconfigured means no snippets."""

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str] = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self._client = client
        self._timeout = timeout
        self._ids = itertools.count(1)

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def gather(self, libraries: Sequence[str]) -> List[DocSnippet]:
        snippets: List[DocSnippet] = []
        for library in libraries:
            snippets.extend((await self.lookup(library))[:SNIPPETS_PER_LIBRARY])
        return snippets

    async def lookup(self, library: str) -> List[DocSnippet]:
        if not self.configured:
            return []
        try:
            resolved = await self._call_tool("resolve-library-id", {"libraryName": library})
            library_id = _first_text(resolved)
            if not library_id:
                return []
            docs = await self._call_tool("get-library-docs", {"libraryId": library_id})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Documentation lookup for %s failed: %s", library, exc)
            return []
        return _snippets(docs)

    async def _call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            logger.debug("Calling %s with key %s", name, mask_secret(self.api_key))
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        url = str(self.url)
        if self._client is not None:
            response = await self._client.post(url, json=body, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=body, headers=headers)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("tool response was not an object")
        if payload.get("error"):
            raise ValueError(f"tool {name} returned an error: {payload['error']}")
        result = payload.get("result")
        return result if isinstance(result, dict) else {}


def _first_text(result: Dict[str, Any]) -> Optional[str]:
    content = result.get("content") or []
    if not content or not isinstance(content[0], dict):
        return None
    first = content[0]
    text = first.get("text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    data = first.get("json")
    if isinstance(data, dict) and isinstance(data.get("id"), str):
        return data["id"]
    return None


def _snippets(result: Dict[str, Any]) -> List[DocSnippet]:
    items: List[DocSnippet] = []
    for part in result.get("content") or []:
        if not isinstance(part, dict):
            continue
        data = part.get("json")
        if part.get("type") == "text" and isinstance(part.get("text"), str):
            try:
                data = json.loads(part["text"])
            except json.JSONDecodeError:
                continue
        if not isinstance(data, list):
            continue
        for entry in data:
            if isinstance(entry, dict) and entry.get("title") and entry.get("url") and entry.get("snippet"):
                items.append(DocSnippet(str(entry["title"]), str(entry["url"]), str(entry["snippet"])))
    return items


__all__ = ["DocSnippet", "DocsClient"]
