"""Merges normalized analyzer output into one report."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .config import ProviderConfig
from .logging import get_logger
from .models import (
    FINDING_TYPES,
    Finding,
    Reference,
    Remediation,
    RepoRef,
    ScanReport,
    coerce_severity,
)
from .pool import AnalyzerResult
from .report import ReportRenderer

logger = get_logger("merger")

MAX_SHARED_REFERENCES = 3
WARNINGS_TITLE = "Agent response warnings"


def _random_suffix() -> str:
    return secrets.token_hex(3)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResultMerger:
    """Concatenates findings, attaches shared artifacts and builds the ScanReport."""

    def __init__(
        self,
        renderer: ReportRenderer | None = None,
        *,
        suffix_factory: Callable[[], str] = _random_suffix,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.renderer = renderer or ReportRenderer()
        self._suffix = suffix_factory
        self._clock = clock

    def merge_findings(self, results: Sequence[AnalyzerResult]) -> Tuple[List[Finding], List[str]]:
        """Return findings in analyzer order plus every warning the analyzers produced."""
        findings: List[Finding] = []
        warnings: List[str] = []
        used: Set[str] = set()
        for result in results:
            warnings.extend(result.warnings)
            for entry in result.entries:
                finding = self._to_finding(result.category, entry, used)
                if finding is not None:
                    findings.append(finding)
        return findings, warnings

    def attach_references(self, findings: Iterable[Finding], snippets: Sequence[Any]) -> None:
        shared = [
            Reference(title=str(snippet.title), url=str(snippet.url))
            for snippet in snippets[:MAX_SHARED_REFERENCES]
        ]
        if not shared:
            return
        for finding in findings:
            finding.references.extend(shared)

    def apply_remediations(self, findings: Sequence[Finding], entries: Iterable[Any]) -> int:
        """Attach transforms by exact title; the first finding with that title wins."""
        applied = 0
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            title = entry.get("issueTitle")
            codemod = entry.get("codemod")
            if not isinstance(title, str) or not isinstance(codemod, Mapping):
                continue
            target = next((finding for finding in findings if finding.title == title), None)
            if target is None:
                continue
            target.remediation = Remediation(
                name=str(codemod.get("name", "")),
                command=str(codemod.get("command", "")),
                description=str(codemod.get("description", "")),
                transform=codemod.get("transform"),
            )
            applied += 1
        logger.debug("Applied %d remediation transforms", applied)
        return applied

    def build_report(
        self,
        repo: RepoRef,
        *,
        started_at: str,
        findings: List[Finding],
        warnings: List[str],
        stats: Dict[str, int],
        provider: ProviderConfig,
    ) -> ScanReport:
        issues = list(findings)
        if warnings:
            used = {finding.id for finding in issues}
            issues.append(
                Finding(
                    id=self._new_id("general", used),
                    type="general",
                    severity="low",
                    title=WARNINGS_TITLE,
                    description="; ".join(warnings),
                    recommendation="Review model outputs or rerun the audit after the provider stabilises.",
                )
            )
        report = ScanReport(
            repo=repo,
            started_at=started_at,
            finished_at=self._clock(),
            stats=dict(stats),
            issues=issues,
            provider=provider.name,
            model=provider.model,
            routed_provider=provider.routed_provider,
            warnings=list(warnings),
        )
        report.rendered_summary = self.renderer.render(report)
        return report

    def _to_finding(self, category: str, entry: Any, used: Set[str]) -> Optional[Finding]:
        if not isinstance(entry, Mapping):
            logger.debug("Skipping non-object %s entry: %r", category, entry)
            return None
        kind = category if category in FINDING_TYPES else "general"
        return Finding(
            id=self._new_id(kind, used),
            type=kind,
            severity=coerce_severity(entry.get("severity")),
            title=str(entry.get("title") or "Issue"),
            description=str(entry.get("description") or ""),
            file=_optional_str(entry.get("file")),
            line=_optional_int(entry.get("line")),
            recommendation=_optional_str(entry.get("recommendation")),
            references=_references(entry.get("docs")),
            evidence=_evidence(entry.get("evidence")),
        )

    def _new_id(self, kind: str, used: Set[str]) -> str:
        while True:
            candidate = f"{kind}-{self._suffix()}"
            if candidate not in used:
                used.add(candidate)
                return candidate


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _references(value: Any) -> List[Reference]:
    if not isinstance(value, list):
        return []
    refs: List[Reference] = []
    for item in value:
        if isinstance(item, Mapping) and item.get("title") and item.get("url"):
            refs.append(Reference(title=str(item["title"]), url=str(item["url"])))
    return refs


def _evidence(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    return []


__all__ = ["MAX_SHARED_REFERENCES", "ResultMerger", "WARNINGS_TITLE", "utc_now"]
