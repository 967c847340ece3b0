"""Deterministic Markdown rendering of scan reports."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence

from jinja2 import Environment, FileSystemLoader

from .models import FINDING_TYPES, Finding, ScanReport, severity_rank

EMPTY_MESSAGE = (
    "No issues were detected in the analysed samples. Consider increasing "
    "sampling parameters or rerunning if this is unexpected."
)

_TEMPLATES_DIR = Path(__file__).with_name("templates")


@dataclass(frozen=True)
class FindingGroup:
    type: str
    issues: List[Finding]


def group_findings(issues: Sequence[Finding]) -> List[FindingGroup]:
    """Group by type in fixed category order; severity-descending, stable within a group."""
    buckets: Dict[str, List[Finding]] = {}
    for issue in issues:
        buckets.setdefault(issue.type, []).append(issue)
    order = {name: index for index, name in enumerate(FINDING_TYPES)}
    ordered_types = sorted(buckets, key=lambda name: order.get(name, len(order)))
    return [
        FindingGroup(
            type=name,
            issues=sorted(buckets[name], key=lambda issue: severity_rank(issue.severity), reverse=True),
        )
        for name in ordered_types
    ]


class ReportRenderer:
    """Renders a ScanReport through the bundled Jinja template."""

    def __init__(self, templates_dir: Path | None = None) -> None:
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir or _TEMPLATES_DIR)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, report: ScanReport) -> str:
        template = self._env.get_template("report.md.j2")
        rendered = template.render(
            report=report,
            groups=group_findings(report.issues),
            empty_message=EMPTY_MESSAGE,
        )
        return _tidy(rendered)


def render_markdown(report: ScanReport) -> str:
    return ReportRenderer().render(report)


def _tidy(markdown: str) -> str:
    """Collapse runs of blank lines outside code fences and trim trailing space."""
    cleaned: List[str] = []
    in_code = False
    previous_blank = False
    for line in markdown.replace("\r\n", "\n").split("\n"):
        stripped = line.rstrip()
        if stripped.startswith("```"):
            in_code = not in_code
        elif not in_code and not stripped:
            if previous_blank:
                continue
            previous_blank = True
            cleaned.append("")
            continue
        cleaned.append(stripped)
        previous_blank = False
    while cleaned and cleaned[-1] == "":
        cleaned.pop()
    return "\n".join(cleaned) + "\n"


__all__ = ["EMPTY_MESSAGE", "FindingGroup", "ReportRenderer", "group_findings", "render_markdown"]
