"""Audit orchestration: fetch, scan, sample, chunk, analyze, merge and cache."""

from __future__ import annotations

import asyncio
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import timedelta
from functools import partial
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Set,
    TypeVar,
)

from .analyzers import RemediationPlanner, discover_analyzers
from .analyzers.base import Analyzer, AnalyzerContext, StructuredRunner
from .cache import ScanCache
from .chunker import Chunker
from .config import AuditConfig, ProviderConfig, default_doc_libraries, resolve_provider
from .docs import DocsClient, DocSnippet
from .fetcher import FetchError, SourceFetcher, extract_files, find_schema_artifact
from .heuristics import HeuristicScanner
from .llm.runner import LLMRunner
from .logging import get_logger
from .merger import ResultMerger, utc_now
from .models import Finding, RepoFile, RepoRef, ScanReport
from .pool import AnalyzerPool
from .progress import ProgressEvent, ProgressPublisher, calculate_progress
from .sampler import Sampler

logger = get_logger("pipeline")

T = TypeVar("T")

RunnerFactory = Callable[[ProviderConfig], StructuredRunner]


class AuditError(RuntimeError):
    """Raised when a run fails for a reason other than fetching."""


class AuditTimeoutError(AuditError):
    """Raised when a run exceeds the configured ceiling."""


@dataclass
class AuditOptions:
    """Per-run overrides; unset fields fall back to the auditor's configuration."""

    provider: Optional[ProviderConfig] = None
    max_files: Optional[int] = None
    schema_artifact: Optional[str] = None
    doc_libraries: Optional[Sequence[str]] = None


@dataclass
class AuditOutcome:
    report: ScanReport
    from_cache: bool = False
    revision: Optional[str] = None


class Auditor:
    """Runs audits; every dependency is injectable for tests and embedding."""

    def __init__(
        self,
        config: AuditConfig | None = None,
        *,
        fetcher: SourceFetcher | None = None,
        scanner: HeuristicScanner | None = None,
        sampler: Sampler | None = None,
        chunker: Chunker | None = None,
        analyzers: Sequence[Analyzer] | None = None,
        planner: Analyzer | None = None,
        runner_factory: RunnerFactory | None = None,
        cache: ScanCache | None = None,
        docs_client: DocsClient | None = None,
        merger: ResultMerger | None = None,
    ) -> None:
        self.config = config or AuditConfig(root=Path.cwd())
        self.fetcher = fetcher or SourceFetcher(
            api_base=self.config.fetch.api_base,
            max_bytes=self.config.fetch.max_bytes,
        )
        self.scanner = scanner or HeuristicScanner()
        self.sampler = sampler or Sampler(self.config.sampling.max_files)
        self.chunker = chunker or Chunker()
        self.analyzers: List[Analyzer] = (
            list(analyzers)
            if analyzers is not None
            else discover_analyzers(self.config.analysis.enabled or None)
        )
        self.planner = planner or RemediationPlanner()
        self.runner_factory: RunnerFactory = runner_factory or LLMRunner
        if cache is None and self.config.cache.enabled:
            cache = ScanCache(self.config.cache.path)
        self.cache = cache
        self.docs_client = docs_client or DocsClient(self.config.docs.url, self.config.docs.api_key)
        self.merger = merger or ResultMerger()
        self._background: Set[asyncio.Task] = set()
        # One worker: lookups and stats queue behind writes still in flight.
        self._cache_io = ThreadPoolExecutor(max_workers=1, thread_name_prefix="repoaudit-cache")

    def default_provider(self) -> ProviderConfig:
        return resolve_provider(self.config.provider)

    async def cache_stats(self) -> Optional[Dict[str, Any]]:
        """Aggregate cache statistics, or None when caching is disabled."""
        if self.cache is None:
            return None
        return await self._cache_call(self.cache.stats)

    async def _cache_call(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.wrap_future(self._cache_io.submit(fn, *args))

    async def run_audit(
        self,
        repo: RepoRef,
        files: Sequence[RepoFile],
        options: AuditOptions | None = None,
        progress: ProgressPublisher | None = None,
    ) -> ScanReport:
        """Audit an already-fetched file collection and return the final report."""
        publisher = progress or ProgressPublisher()
        publisher.stage(
            "initializing",
            calculate_progress("initializing", 0),
            f"Preparing analysis of {len(files)} files in {repo.slug}",
        )
        report = await self._guarded(
            self._analyse(repo, files, options or AuditOptions(), publisher), repo, publisher
        )
        publisher.complete(report, f"Found {len(report.issues)} issues")
        return report

    async def audit_repository(
        self,
        repo: RepoRef,
        *,
        token: str | None = None,
        provider: ProviderConfig | None = None,
        force_refresh: bool = False,
        options: AuditOptions | None = None,
        progress: ProgressPublisher | None = None,
    ) -> AuditOutcome:
        """Resolve, consult the cache, fetch and audit a remote repository."""
        publisher = progress or ProgressPublisher()
        run_options = options or AuditOptions()
        if provider is not None:
            run_options = replace(run_options, provider=provider)
        credential = token or os.getenv("GITHUB_TOKEN") or None
        outcome = await self._guarded(
            self._ingest(repo, credential, run_options, force_refresh, publisher), repo, publisher
        )
        message = "Loaded cached audit" if outcome.from_cache else f"Found {len(outcome.report.issues)} issues"
        publisher.complete(outcome.report, message)
        return outcome

    async def stream_audit(self, repo: RepoRef, **kwargs) -> AsyncIterator[ProgressEvent]:  # type: ignore[no-untyped-def]
        """Yield progress events until exactly one terminal event has been yielded.

        Closing the iterator early stops consumption only; the run finishes in the
        background and its result is discarded.
        """
        publisher = ProgressPublisher()
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        publisher.subscribe(queue.put_nowait)
        task = asyncio.create_task(self.audit_repository(repo, progress=publisher, **kwargs))
        self._background.add(task)
        task.add_done_callback(self._discard_background)
        task.add_done_callback(partial(_close_stream, publisher))
        try:
            while True:
                event = await queue.get()
                yield event
                if event.terminal:
                    break
        finally:
            if not task.done():
                logger.info("Stream consumer for %s went away; run continues in background", repo.slug)

    async def _ingest(
        self,
        repo: RepoRef,
        token: str | None,
        options: AuditOptions,
        force_refresh: bool,
        publisher: ProgressPublisher,
    ) -> AuditOutcome:
        started_at = utc_now()
        provider = options.provider or self.default_provider()
        options = replace(options, provider=provider)
        publisher.stage(
            "initializing",
            calculate_progress("initializing", 0),
            f"Starting audit of {repo.slug}",
            {"provider": provider.name, "model": provider.model},
        )
        revision = await self.fetcher.resolve_revision(repo, token)
        if self.cache is not None and not force_refresh:
            cached = await self._cache_call(
                self.cache.lookup,
                repo.owner,
                repo.name,
                revision,
                provider.name,
                provider.model,
                timedelta(days=self.config.cache.max_age_days),
            )
            if cached is not None:
                return AuditOutcome(report=cached, from_cache=True, revision=revision)

        publisher.stage("downloading", calculate_progress("downloading", 0), f"Downloading {repo.slug}")
        archive = await self.fetcher.download(repo, token)
        publisher.stage(
            "downloading",
            calculate_progress("downloading", 100),
            f"Downloaded {len(archive) // 1024} KiB",
            {"bytes": len(archive)},
        )
        publisher.stage("extracting", calculate_progress("extracting", 0), "Extracting archive")
        files = extract_files(archive, max_bytes=self.fetcher.max_bytes)
        publisher.stage(
            "extracting",
            calculate_progress("extracting", 100),
            f"Extracted {len(files)} files",
            {"files": len(files)},
        )

        report = await self._analyse(repo, files, options, publisher, started_at)
        if self.cache is not None:
            write = self._cache_io.submit(self.cache.store, report, revision)
            write.add_done_callback(_report_store_failure)
        return AuditOutcome(report=report, from_cache=False, revision=revision)

    async def _analyse(
        self,
        repo: RepoRef,
        files: Sequence[RepoFile],
        options: AuditOptions,
        publisher: ProgressPublisher,
        started_at: str | None = None,
    ) -> ScanReport:
        started_at = started_at or utc_now()
        provider = options.provider or self.default_provider()
        logger.info("Auditing %s with %s/%s", repo.slug, provider.name, provider.model)
        publisher.stage("heuristics", calculate_progress("heuristics", 0), "Running heuristic rules")
        hits = self.scanner.scan(files)
        publisher.stage(
            "heuristics",
            calculate_progress("heuristics", 100),
            f"Found {len(hits)} heuristic hits",
            {"heuristics": len(hits)},
        )

        publisher.stage("sampling", calculate_progress("sampling", 0), "Prioritizing files")
        sampled = self.sampler.sample(files, hits, options.max_files)
        publisher.stage(
            "sampling",
            calculate_progress("sampling", 100),
            f"Selected {len(sampled)} of {len(files)} files",
            {"sampled_files": len(sampled)},
        )

        publisher.stage("parsing", calculate_progress("parsing", 0), "Building code chunks")
        chunks = self.chunker.chunk(sampled)
        publisher.stage(
            "parsing",
            calculate_progress("parsing", 100),
            f"Created {len(chunks)} code chunks",
            {"chunks": len(chunks)},
        )

        findings: List[Finding] = []
        warnings: List[str] = []
        analyzers_run = 0
        if sampled:
            snippets = await self._gather_docs(options, provider)
            context = AnalyzerContext(
                summary=f"Files: {len(files)}, Chunks: {len(chunks)}, Heuristics: {len(hits)}",
                chunks=chunks,
                rule_hits=hits,
                schema_artifact=options.schema_artifact or find_schema_artifact(files),
                max_context_chars=self.config.analysis.max_context_chars,
            )
            runner = self.runner_factory(provider)
            pool = AnalyzerPool(self.analyzers, concurrency=self.config.analysis.concurrency)
            publisher.stage(
                "analyzing",
                calculate_progress("analyzing", 0),
                f"Running {len(self.analyzers)} analyzers",
                {"total_analyzers": len(self.analyzers), "analyzers_complete": 0},
            )
            results = await pool.run(context, runner, publisher)
            analyzers_run = len(results)

            publisher.stage("synthesizing", calculate_progress("synthesizing", 0), "Merging analyzer results")
            findings, warnings = self.merger.merge_findings(results)
            self.merger.attach_references(findings, snippets)
            if findings:
                plan = await pool.run_dependent(self.planner, replace(context, findings=findings), runner)
                warnings.extend(plan.warnings)
                self.merger.apply_remediations(findings, plan.entries)
        else:
            logger.info("No text files to analyse in %s; skipping analyzers", repo.slug)

        stats = {
            "files": len(files),
            "chunks": len(chunks),
            "heuristics": len(hits),
            "analyzers": analyzers_run,
            "sampled_files": len(sampled),
        }
        report = self.merger.build_report(
            repo,
            started_at=started_at,
            findings=findings,
            warnings=warnings,
            stats=stats,
            provider=provider,
        )
        publisher.stage(
            "synthesizing",
            calculate_progress("synthesizing", 100),
            f"Found {len(report.issues)} issues",
            {"issues": len(report.issues)},
        )
        if warnings:
            logger.warning("Audit of %s completed with %d warnings", repo.slug, len(warnings))
        return report

    async def _gather_docs(self, options: AuditOptions, provider: ProviderConfig) -> List[DocSnippet]:
        if not self.docs_client.configured:
            return []
        libraries = options.doc_libraries or self.config.docs.libraries or default_doc_libraries(provider)
        try:
            return await self.docs_client.gather(libraries)
        except Exception as exc:
            logger.warning("Documentation enrichment failed: %s", exc)
            return []

    async def _guarded(self, work: Awaitable[T], repo: RepoRef, publisher: ProgressPublisher) -> T:
        """Bound ``work`` by the run ceiling and publish a terminal error on failure."""
        timeout = self.config.timeout_seconds
        try:
            return await asyncio.wait_for(work, timeout=timeout)
        except asyncio.TimeoutError as exc:
            message = f"Audit of {repo.slug} exceeded {timeout:.0f}s"
            logger.error(message)
            publisher.error(message)
            raise AuditTimeoutError(message) from exc
        except (FetchError, AuditError) as exc:
            logger.error("Audit of %s failed: %s", repo.slug, exc)
            publisher.error(str(exc))
            raise
        except Exception as exc:
            logger.exception("Audit of %s failed unexpectedly", repo.slug)
            publisher.error(f"Audit failed: {exc}")
            raise AuditError(f"Audit failed: {exc}") from exc

    def _discard_background(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Background audit ended with %s", exc)


def _report_store_failure(write: Future) -> None:
    if write.cancelled():
        return
    exc = write.exception()
    if exc is not None:
        logger.warning("Background cache write failed: %s", exc)


def _close_stream(publisher: ProgressPublisher, task: asyncio.Task) -> None:
    """Publish an error when the run ended without a terminal event."""
    if publisher.finished:
        return
    if task.cancelled():
        publisher.error("Audit was cancelled")
        return
    exc = task.exception()
    publisher.error(f"Audit failed: {exc}" if exc is not None else "Audit ended without a result")


__all__ = [
    "AuditError",
    "AuditOptions",
    "AuditOutcome",
    "AuditTimeoutError",
    "Auditor",
    "RunnerFactory",
]
