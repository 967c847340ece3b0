"""Core data models shared across repoaudit components."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

FINDING_TYPES = ("security", "performance", "backend", "ux", "db", "lint", "general")
SEVERITIES = ("critical", "high", "medium", "low", "info")
DEFAULT_SEVERITY = "medium"

_SEVERITY_RANK = {name: len(SEVERITIES) - index for index, name in enumerate(SEVERITIES)}


def severity_rank(severity: str) -> int:
    """Return a sortable rank where higher values are more severe."""
    return _SEVERITY_RANK.get(severity, 0)


def coerce_severity(value: object) -> str:
    if isinstance(value, str) and value.strip().lower() in _SEVERITY_RANK:
        return value.strip().lower()
    return DEFAULT_SEVERITY


@dataclass(frozen=True)
class RepoRef:
    """Identifies the repository snapshot being audited."""

    owner: str
    name: str
    ref: Optional[str] = None

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class RepoFile:
    """A single file extracted from a repository snapshot."""

    path: str
    size: int
    is_binary: bool
    content: Optional[bytes] = None

    def text(self) -> str:
        if self.is_binary or self.content is None:
            return ""
        return self.content.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class RuleHit:
    """Match emitted by a heuristic rule for one file."""

    rule_id: str
    file: str
    line: int
    message: str
    evidence: Optional[str] = None

    def describe(self) -> str:
        return f"{self.rule_id} {self.file}:{self.line}"


@dataclass
class PrioritizedFile:
    """Text file annotated with its sampling score and reason tags."""

    file: RepoFile
    score: int
    reason_tags: List[str]

    @property
    def path(self) -> str:
        return self.file.path

    @property
    def primary_reason(self) -> str:
        return self.reason_tags[0]


@dataclass(frozen=True)
class CodeChunk:
    """Position-addressed code unit handed to analyzers."""

    id: str
    file: str
    kind: str
    text: str
    start_line: int
    end_line: int
    name: Optional[str] = None

    def excerpt(self) -> str:
        return f"// {self.file}:{self.start_line}-{self.end_line}\n{self.text}"


@dataclass(frozen=True)
class Reference:
    """Documentation link attached to a finding."""

    title: str
    url: str


@dataclass(frozen=True)
class Remediation:
    """Automatable transform proposed for a finding."""

    name: str
    command: str
    description: str
    transform: Optional[str] = None


@dataclass
class Finding:
    """One reported issue in a scan report."""

    id: str
    type: str
    severity: str
    title: str
    description: str
    file: Optional[str] = None
    line: Optional[int] = None
    recommendation: Optional[str] = None
    remediation: Optional[Remediation] = None
    references: List[Reference] = field(default_factory=list)
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Finding":
        remediation = payload.get("remediation")
        return cls(
            id=str(payload["id"]),
            type=str(payload.get("type", "general")),
            severity=coerce_severity(payload.get("severity")),
            title=str(payload.get("title", "")),
            description=str(payload.get("description", "")),
            file=payload.get("file"),
            line=payload.get("line"),
            recommendation=payload.get("recommendation"),
            remediation=Remediation(**remediation) if isinstance(remediation, dict) else None,
            references=[Reference(**ref) for ref in payload.get("references") or []],
            evidence=list(payload.get("evidence") or []),
        )


@dataclass
class ScanReport:
    """Final, immutable result of one audit run."""

    repo: RepoRef
    started_at: str
    finished_at: str
    stats: Dict[str, int]
    issues: List[Finding]
    provider: str
    model: str
    routed_provider: Optional[str] = None
    rendered_summary: str = ""
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo": asdict(self.repo),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stats": dict(self.stats),
            "issues": [issue.to_dict() for issue in self.issues],
            "provider": self.provider,
            "model": self.model,
            "routed_provider": self.routed_provider,
            "rendered_summary": self.rendered_summary,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScanReport":
        repo = payload.get("repo") or {}
        return cls(
            repo=RepoRef(owner=repo["owner"], name=repo["name"], ref=repo.get("ref")),
            started_at=str(payload["started_at"]),
            finished_at=str(payload["finished_at"]),
            stats={str(key): int(value) for key, value in (payload.get("stats") or {}).items()},
            issues=[Finding.from_dict(item) for item in payload.get("issues") or []],
            provider=str(payload.get("provider", "")),
            model=str(payload.get("model", "")),
            routed_provider=payload.get("routed_provider"),
            rendered_summary=str(payload.get("rendered_summary", "")),
            warnings=[str(item) for item in payload.get("warnings") or []],
        )


__all__ = [
    "CodeChunk",
    "DEFAULT_SEVERITY",
    "FINDING_TYPES",
    "Finding",
    "PrioritizedFile",
    "Reference",
    "Remediation",
    "RepoFile",
    "RepoRef",
    "RuleHit",
    "SEVERITIES",
    "ScanReport",
    "coerce_severity",
    "severity_rank",
]
