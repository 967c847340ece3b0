"""Helper utilities for constructing in-memory repository snapshots in tests."""

from __future__ import annotations

import io
import tarfile
import textwrap
from typing import Any, Callable, Dict, List, Mapping, Type

from pydantic import BaseModel

from repoaudit.models import RepoFile


class RepoBuilder:
    """Collects `path -> contents` entries and emits RepoFiles or a GitHub-style tarball."""

    def __init__(self, prefix: str = "octo-demo-1a2b3c4") -> None:
        self.prefix = prefix
        self._entries: Dict[str, bytes] = {}

    def write(self, files: Mapping[str, str | bytes]) -> "RepoBuilder":
        for relative, content in files.items():
            if isinstance(content, str):
                content = textwrap.dedent(content).lstrip("\n").encode("utf-8")
            self._entries[relative] = content
        return self

    def files(self) -> List[RepoFile]:
        return [text_file(path, data.decode("utf-8")) for path, data in self._entries.items()]

    def tarball(self) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            for relative, data in self._entries.items():
                info = tarfile.TarInfo(name=f"{self.prefix}/{relative}")
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        return buffer.getvalue()


def text_file(path: str, text: str) -> RepoFile:
    data = text.encode("utf-8")
    return RepoFile(path=path, size=len(data), is_binary=False, content=data)


def binary_file(path: str, size: int = 2048) -> RepoFile:
    return RepoFile(path=path, size=size, is_binary=True, content=None)


Handler = Callable[[str, str, Type[BaseModel]], Any]


class ScriptedRunner:
    """Stands in for LLMRunner; ``handler`` returns entries or raises."""

    def __init__(self, handler: Handler | None = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self._handler = handler or (lambda instructions, payload, schema: [])

    async def generate(self, instructions: str, payload: str, schema: Type[BaseModel]) -> Any:
        self.calls.append({"instructions": instructions, "payload": payload, "schema": schema})
        return self._handler(instructions, payload, schema)


class FakeFetcher:
    """In-memory stand-in for SourceFetcher serving one prebuilt archive."""

    def __init__(
        self,
        archive: bytes = b"",
        *,
        revision: str | None = "abc123",
        error: Exception | None = None,
        max_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self.archive = archive
        self.revision = revision
        self.error = error
        self.max_bytes = max_bytes
        self.downloads = 0
        self.tokens: List[str | None] = []

    async def resolve_revision(self, repo: Any, token: str | None = None) -> str | None:
        self.tokens.append(token)
        return self.revision

    async def download(self, repo: Any, token: str | None = None) -> bytes:
        self.downloads += 1
        if self.error is not None:
            raise self.error
        return self.archive


__all__ = ["FakeFetcher", "RepoBuilder", "ScriptedRunner", "binary_file", "text_file"]
