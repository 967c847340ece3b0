"""End-to-end tests for the audit orchestrator."""

from __future__ import annotations

import asyncio
import threading

import pytest

from repoaudit.analyzers.schemas import RemediationsArray
from repoaudit.cache import ScanCache
from repoaudit.config import AuditConfig, ProviderConfig, ProviderSettings
from repoaudit.fetcher import FetchError
from repoaudit.models import RepoRef
from repoaudit.pipeline import AuditError, AuditOptions, AuditTimeoutError, Auditor
from repoaudit.progress import ProgressPublisher
from repoaudit.report import EMPTY_MESSAGE
from tests._fixtures.repo_builder import FakeFetcher, RepoBuilder, ScriptedRunner, text_file

REPO = RepoRef("octo", "demo", "main")

_FILES = {
    "app/page.tsx": """
        export default function Page() {
          return <main>Hello</main>
        }
    """,
    "src/run.ts": """
        export function run(input: string) {
          return eval(input)
        }
    """,
    "lib/db.ts": """
        export const db = { url: process.env.DATABASE_URL }
    """,
}


def _audit_handler(instructions, payload, schema):
    if schema is RemediationsArray:
        return [
            {
                "issueTitle": "Unsafe eval",
                "codemod": {
                    "name": "no-eval",
                    "command": "npx jscodeshift -t transforms/no-eval.ts src",
                    "description": "Replaces eval with JSON.parse",
                },
            }
        ]
    if "# RULE-HITS" in payload and "no-eval src/run.ts:2" in payload:
        return [
            {
                "title": "Unsafe eval",
                "description": "User input reaches eval",
                "severity": "critical",
                "file": "src/run.ts",
                "line": 2,
            }
        ]
    return []


def _auditor(config: AuditConfig, runner, **overrides) -> Auditor:
    return Auditor(config, runner_factory=lambda provider: runner, **overrides)


def _record(publisher: ProgressPublisher):
    events = []
    publisher.subscribe(events.append)
    return events


def test_run_audit_end_to_end(audit_config: AuditConfig, provider: ProviderConfig, repo_builder: RepoBuilder) -> None:
    files = repo_builder.write(_FILES).files()
    runner = ScriptedRunner(_audit_handler)
    publisher = ProgressPublisher()
    events = _record(publisher)

    report = asyncio.run(
        _auditor(audit_config, runner).run_audit(REPO, files, AuditOptions(provider=provider), publisher)
    )

    assert report.stats["files"] == 3
    assert report.stats["heuristics"] == 1
    assert report.stats["analyzers"] == 6
    assert [(issue.type, issue.severity, issue.title) for issue in report.issues] == [
        ("security", "critical", "Unsafe eval")
    ]
    assert report.issues[0].remediation is not None
    assert report.issues[0].remediation.name == "no-eval"
    assert report.warnings == []
    assert report.provider == "vercel"
    assert "### SECURITY (1)" in report.rendered_summary
    assert len(runner.calls) == 7

    assert [event.kind for event in events].count("complete") == 1
    assert events[-1].kind == "complete"
    progress = [event.progress for event in events]
    assert progress == sorted(progress)
    assert progress[-1] == 100


def test_run_audit_empty_collection(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    runner = ScriptedRunner()

    report = asyncio.run(_auditor(audit_config, runner).run_audit(REPO, [], AuditOptions(provider=provider)))

    assert report.issues == []
    assert report.stats["files"] == 0
    assert report.stats["analyzers"] == 0
    assert EMPTY_MESSAGE in report.rendered_summary
    assert runner.calls == []


def test_planner_skipped_without_findings(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    runner = ScriptedRunner()
    files = [text_file("app/page.tsx", "export default function Page() { return null }\n")]

    report = asyncio.run(_auditor(audit_config, runner).run_audit(REPO, files, AuditOptions(provider=provider)))

    assert report.issues == []
    assert len(runner.calls) == 6
    assert all(call["schema"] is not RemediationsArray for call in runner.calls)


def test_analyzer_failures_become_warning_finding(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    def handler(instructions, payload, schema):
        if payload.startswith("# CODE SAMPLES"):
            raise RuntimeError("gateway reset")
        return []

    files = [text_file("app/page.tsx", "export default function Page() { return null }\n")]
    report = asyncio.run(
        _auditor(audit_config, ScriptedRunner(handler)).run_audit(REPO, files, AuditOptions(provider=provider))
    )

    assert report.warnings == ["lint: analyzer failed (gateway reset)"]
    assert [(issue.type, issue.severity, issue.title) for issue in report.issues] == [
        ("general", "low", "Agent response warnings")
    ]


def test_audit_repository_uses_cache(
    audit_config: AuditConfig, provider: ProviderConfig, repo_builder: RepoBuilder
) -> None:
    fetcher = FakeFetcher(repo_builder.write(_FILES).tarball())
    runner = ScriptedRunner(_audit_handler)
    auditor = _auditor(audit_config, runner, fetcher=fetcher, cache=ScanCache(audit_config.cache.path))

    async def _twice():
        first = await auditor.audit_repository(REPO, token="ghp_test", provider=provider)
        second = await auditor.audit_repository(REPO, token="ghp_test", provider=provider)
        return first, second

    first, second = asyncio.run(_twice())

    assert first.from_cache is False
    assert first.revision == "abc123"
    assert second.from_cache is True
    assert second.report == first.report
    assert fetcher.downloads == 1
    assert fetcher.tokens == ["ghp_test", "ghp_test"]
    assert len(runner.calls) == 7

    refreshed = asyncio.run(auditor.audit_repository(REPO, provider=provider, force_refresh=True))
    assert refreshed.from_cache is False
    assert fetcher.downloads == 2


def test_unresolved_revision_is_not_cached(
    audit_config: AuditConfig, provider: ProviderConfig, repo_builder: RepoBuilder
) -> None:
    fetcher = FakeFetcher(repo_builder.write(_FILES).tarball(), revision=None)
    auditor = _auditor(audit_config, ScriptedRunner(), fetcher=fetcher, cache=ScanCache(audit_config.cache.path))

    async def _twice():
        await auditor.audit_repository(REPO, provider=provider)
        return await auditor.audit_repository(REPO, provider=provider)

    assert asyncio.run(_twice()).from_cache is False
    assert fetcher.downloads == 2
    assert not audit_config.cache.path.exists()


def test_fetch_error_publishes_terminal_error(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    fetcher = FakeFetcher(error=FetchError("Repository octo/demo not found", status=404))
    publisher = ProgressPublisher()
    events = _record(publisher)

    with pytest.raises(FetchError):
        asyncio.run(
            _auditor(audit_config, ScriptedRunner(), fetcher=fetcher).audit_repository(
                REPO, provider=provider, progress=publisher
            )
        )

    assert events[-1].kind == "error"
    assert events[-1].error == "Repository octo/demo not found"
    assert [event.kind for event in events].count("error") == 1


def test_unexpected_failure_wrapped_as_audit_error(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    class _BrokenScanner:
        def scan(self, files):
            raise KeyError("rules")

    with pytest.raises(AuditError, match="Audit failed"):
        asyncio.run(
            _auditor(audit_config, ScriptedRunner(), scanner=_BrokenScanner()).run_audit(
                REPO, [], AuditOptions(provider=provider)
            )
        )


def test_run_timeout(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    class _StalledRunner:
        async def generate(self, instructions, payload, schema):
            await asyncio.sleep(5)
            return []

    audit_config.timeout_seconds = 0.05
    publisher = ProgressPublisher()
    events = _record(publisher)
    files = [text_file("app/page.tsx", "export default function Page() { return null }\n")]

    with pytest.raises(AuditTimeoutError):
        asyncio.run(
            _auditor(audit_config, _StalledRunner()).run_audit(REPO, files, AuditOptions(provider=provider), publisher)
        )

    assert events[-1].kind == "error"
    assert "exceeded" in events[-1].message


def test_stream_audit_ends_with_one_terminal_event(
    audit_config: AuditConfig, provider: ProviderConfig, repo_builder: RepoBuilder
) -> None:
    fetcher = FakeFetcher(repo_builder.write(_FILES).tarball())
    auditor = _auditor(audit_config, ScriptedRunner(_audit_handler), fetcher=fetcher)

    async def _collect():
        return [event async for event in auditor.stream_audit(REPO, provider=provider)]

    events = asyncio.run(_collect())

    stages = [event.stage for event in events]
    assert stages[0] == "initializing"
    assert "downloading" in stages
    assert "analyzing" in stages
    assert [event.terminal for event in events] == [False] * (len(events) - 1) + [True]
    assert events[-1].kind == "complete"
    assert events[-1].report is not None
    assert events[-1].report.stats["heuristics"] == 1


def test_stream_audit_reports_errors(audit_config: AuditConfig, provider: ProviderConfig) -> None:
    fetcher = FakeFetcher(error=FetchError("GitHub returned 502", status=502))
    auditor = _auditor(audit_config, ScriptedRunner(), fetcher=fetcher)

    async def _collect():
        return [event async for event in auditor.stream_audit(REPO, provider=provider)]

    events = asyncio.run(_collect())

    assert events[-1].kind == "error"
    assert sum(1 for event in events if event.terminal) == 1


def test_stream_audit_reports_provider_resolution_failure(audit_config: AuditConfig) -> None:
    audit_config.provider = ProviderSettings(name="bogus")
    auditor = _auditor(audit_config, ScriptedRunner(), fetcher=FakeFetcher())

    async def _collect():
        return [event async for event in auditor.stream_audit(REPO)]

    events = asyncio.run(asyncio.wait_for(_collect(), 5))

    assert [event.kind for event in events] == ["error"]
    assert events[0].error == "Audit failed: Unknown provider 'bogus'"


def test_stream_audit_closes_when_run_dies_without_terminal_event(audit_config: AuditConfig) -> None:
    class _CrashingAuditor(Auditor):
        async def audit_repository(self, repo, **kwargs):
            raise RuntimeError("worker crashed")

    auditor = _CrashingAuditor(audit_config, runner_factory=lambda provider: ScriptedRunner())

    async def _collect():
        return [event async for event in auditor.stream_audit(REPO)]

    events = asyncio.run(asyncio.wait_for(_collect(), 5))

    assert len(events) == 1
    assert events[0].kind == "error"
    assert events[0].error == "Audit failed: worker crashed"


class _GatedCache(ScanCache):
    """Holds every write until ``release`` is set."""

    def __init__(self, path) -> None:
        super().__init__(path)
        self.release = threading.Event()

    def store(self, report, revision) -> None:
        self.release.wait(timeout=5)
        super().store(report, revision)


def test_cache_write_does_not_hold_up_the_result(
    audit_config: AuditConfig, provider: ProviderConfig, repo_builder: RepoBuilder
) -> None:
    fetcher = FakeFetcher(repo_builder.write(_FILES).tarball())
    cache = _GatedCache(audit_config.cache.path)
    auditor = _auditor(audit_config, ScriptedRunner(_audit_handler), fetcher=fetcher, cache=cache)

    async def _twice():
        first = await auditor.audit_repository(REPO, provider=provider)
        pending = audit_config.cache.path.exists()
        cache.release.set()
        second = await auditor.audit_repository(REPO, provider=provider)
        return first, pending, second

    first, pending, second = asyncio.run(_twice())

    assert first.from_cache is False
    assert pending is False
    assert second.from_cache is True
    assert fetcher.downloads == 1
