"""Repository snapshot retrieval and extraction."""

from __future__ import annotations

import io
import tarfile
from pathlib import PurePosixPath
from typing import Iterable, List, Optional
from urllib.parse import quote, unquote, urlparse

import httpx

from .logging import get_logger, mask_secret
from .models import RepoFile, RepoRef

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".next",
    ".venv",
    "node_modules",
    "__pycache__",
    "dist",
    "build",
    "out",
}

_EXCLUDED_FILES = {
    ".DS_Store",
    "Thumbs.db",
}

_BINARY_SUFFIXES = {
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico", ".bmp", ".tiff", ".avif",
    ".pdf", ".zip", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".jar", ".war",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp3", ".mp4", ".mov", ".avi", ".webm", ".wav", ".ogg", ".flac",
    ".exe", ".dll", ".so", ".dylib", ".bin", ".class", ".o", ".a", ".pyc",
    ".sqlite", ".db", ".wasm",
}

_TEXT_SUFFIXES = {
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".json", ".md", ".mdx", ".txt",
    ".py", ".css", ".scss", ".html", ".svg", ".yml", ".yaml", ".toml", ".prisma",
    ".sql", ".sh", ".env", ".xml", ".csv",
}

_SNIFF_BYTES = 8192
_API_HEADERS = {
    "User-Agent": "repoaudit",
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
}

logger = get_logger("fetcher")


class FetchError(RuntimeError):
    """Raised when a repository snapshot cannot be retrieved."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ArchiveTooLargeError(FetchError):
    """Raised when the decompressed archive exceeds the configured ceiling."""


def is_ignored(path: str) -> bool:
    parts = PurePosixPath(path).parts
    if not parts:
        return True
    if parts[-1] in _EXCLUDED_FILES:
        return True
    return any(part in _EXCLUDED_DIRS for part in parts[:-1])


def is_binary(path: str, data: bytes) -> bool:
    """Classify content using its extension first and a byte sniff otherwise."""
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in _BINARY_SUFFIXES:
        return True
    sample = data[:_SNIFF_BYTES]
    if b"\x00" in sample:
        return True
    if suffix in _TEXT_SUFFIXES or not sample:
        return False
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut by the sniff window is still text.
        if exc.start < len(sample) - 4:
            return True
    control = sum(1 for byte in sample if byte < 32 and byte not in (9, 10, 12, 13))
    return control / len(sample) > 0.3


def extract_files(archive: bytes, *, max_bytes: int = 100 * 1024 * 1024) -> List[RepoFile]:
    """Return files from a gzip tarball, dropping the leading archive directory."""
    files: List[RepoFile] = []
    total = 0
    try:
        tar = tarfile.open(fileobj=io.BytesIO(archive), mode="r:*")
    except (tarfile.TarError, OSError) as exc:
        raise FetchError(f"Repository archive could not be opened: {exc}") from exc

    with tar:
        for member in tar:
            if not member.isfile():
                continue
            path = "/".join(member.name.split("/")[1:])
            if not path or is_ignored(path):
                continue
            total += member.size
            if total > max_bytes:
                raise ArchiveTooLargeError(
                    f"Repository archive exceeds {max_bytes} decompressed bytes"
                )
            handle = tar.extractfile(member)
            if handle is None:
                continue
            data = handle.read()
            binary = is_binary(path, data)
            files.append(
                RepoFile(
                    path=path,
                    size=len(data),
                    is_binary=binary,
                    content=None if binary else data,
                )
            )
    logger.info("Extracted %d files (%d bytes)", len(files), total)
    return files


class SourceFetcher:
    """Downloads repository snapshots from the GitHub API."""

    def __init__(
        self,
        *,
        api_base: str = "https://api.github.com",
        max_bytes: int = 100 * 1024 * 1024,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.max_bytes = max_bytes
        self._client = client
        self._timeout = timeout

    async def resolve_revision(self, repo: RepoRef, token: str | None = None) -> Optional[str]:
        """Return the commit sha for the reference, or None when it cannot be resolved."""
        ref = repo.ref or "HEAD"
        url = f"{self.api_base}/repos/{repo.owner}/{repo.name}/commits/{quote(ref, safe='')}"
        logger.debug("Resolving revision for %s@%s", repo.slug, ref)
        try:
            async with self._session() as client:
                response = await client.get(
                    url, headers=self._headers(token), follow_redirects=True
                )
        except httpx.HTTPError as exc:
            logger.warning("Revision lookup for %s failed: %s", repo.slug, exc)
            return None
        if response.status_code != 200:
            logger.warning(
                "Revision lookup for %s returned status %s", repo.slug, response.status_code
            )
            return None
        try:
            sha = response.json().get("sha")
        except ValueError:
            return None
        if not isinstance(sha, str) or not sha:
            return None
        logger.debug("Resolved %s@%s to %s", repo.slug, ref, sha[:8])
        return sha

    async def download(self, repo: RepoRef, token: str | None = None) -> bytes:
        ref = quote(repo.ref, safe="") if repo.ref else "HEAD"
        url = f"{self.api_base}/repos/{repo.owner}/{repo.name}/tarball/{ref}"
        logger.info(
            "Requesting tarball for %s@%s (token=%s)",
            repo.slug,
            repo.ref or "HEAD",
            mask_secret(token),
        )
        try:
            async with self._session() as client:
                async with client.stream(
                    "GET", url, headers=self._headers(token), follow_redirects=True
                ) as response:
                    if response.status_code != 200:
                        snippet = (await response.aread())[:4096].decode("utf-8", errors="replace")
                        logger.error(
                            "Tarball request for %s failed with status %s: %s",
                            repo.slug,
                            response.status_code,
                            snippet.strip(),
                        )
                        raise FetchError(
                            f"GitHub tarball request failed: {response.status_code}",
                            status=response.status_code,
                        )
                    return await self._read_limited(response.aiter_bytes())
        except httpx.HTTPError as exc:
            raise FetchError(f"GitHub tarball request failed: {exc}") from exc

    async def fetch(self, repo: RepoRef, token: str | None = None) -> List[RepoFile]:
        """Download and extract the repository snapshot."""
        archive = await self.download(repo, token)
        return extract_files(archive, max_bytes=self.max_bytes)

    async def _read_limited(self, chunks) -> bytes:  # type: ignore[no-untyped-def]
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
            if len(buffer) > self.max_bytes:
                raise ArchiveTooLargeError(
                    f"Repository archive exceeds {self.max_bytes} bytes"
                )
        return bytes(buffer)

    def _session(self) -> "_ClientSession":
        return _ClientSession(self._client, self._timeout)

    @staticmethod
    def _headers(token: str | None) -> dict[str, str]:
        headers = dict(_API_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers


class _ClientSession:
    """Yields the injected client or a short-lived one that is closed afterwards."""

    def __init__(self, client: httpx.AsyncClient | None, timeout: float) -> None:
        self._client = client
        self._timeout = timeout
        self._owned: httpx.AsyncClient | None = None

    async def __aenter__(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._owned = httpx.AsyncClient(follow_redirects=True, timeout=self._timeout)
        return self._owned

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        if self._owned is not None:
            await self._owned.aclose()
            self._owned = None


def parse_repo_url(repo_url: str, ref: str | None = None) -> RepoRef:
    """Parse a GitHub URL (optionally with /tree/<ref>) into a RepoRef."""
    cleaned = repo_url.strip()
    if not cleaned:
        raise ValueError("Invalid GitHub URL")
    if "://" not in cleaned:
        cleaned = f"https://{cleaned}"
    parsed = urlparse(cleaned)
    segments = [unquote(part) for part in parsed.path.strip("/").split("/") if part]
    if not parsed.hostname or len(segments) < 2:
        raise ValueError("Invalid GitHub URL")
    owner, name = segments[0], segments[1]
    if name.lower().endswith(".git"):
        name = name[:-4]
    if not owner or not name:
        raise ValueError("Invalid GitHub URL")
    explicit_ref = ref.strip() if ref and ref.strip() else None
    if explicit_ref is None and len(segments) >= 4 and segments[2] == "tree":
        explicit_ref = "/".join(segments[3:])
    return RepoRef(owner=owner, name=name, ref=explicit_ref)


def find_schema_artifact(files: Iterable[RepoFile]) -> Optional[str]:
    """Return the text of the first Prisma schema in the collection."""
    for repo_file in files:
        if repo_file.path.endswith("prisma/schema.prisma") and not repo_file.is_binary:
            return repo_file.text()
    return None


__all__ = [
    "ArchiveTooLargeError",
    "FetchError",
    "SourceFetcher",
    "extract_files",
    "find_schema_artifact",
    "is_binary",
    "is_ignored",
    "parse_repo_url",
]
