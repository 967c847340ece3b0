"""Remediation planner: proposes automatable transforms for merged findings."""

from __future__ import annotations

import json

from .base import Analyzer, AnalyzerContext
from .schemas import RemediationsArray

MAX_PLANNED_ISSUES = 20
MAX_DESCRIPTION_CHARS = 200


class RemediationPlanner(Analyzer):
    """Runs after every category analyzer; its input is the merged findings."""

    name = "remediation"
    category = "general"
    schema = RemediationsArray
    instructions = (
        "You are a codemod author. For each issue that is mechanical, repetitive "
        "and safe to automate, propose a non-destructive transform: a short "
        "kebab-case name, an executable command (for example "
        "`npx jscodeshift -t transforms/<name>.ts src`), a description of what it "
        "changes and, when applicable, the transform file path. Reference each "
        "issue by its exact title. Skip issues that need human judgement."
    )

    def build_payload(self, context: AnalyzerContext) -> str:
        issues = [
            {
                "title": finding.title,
                "description": finding.description[:MAX_DESCRIPTION_CHARS],
                "type": finding.type,
            }
            for finding in context.findings[:MAX_PLANNED_ISSUES]
        ]
        return f"# ISSUES TO ADDRESS\n{json.dumps(issues, indent=2)}"


__all__ = ["MAX_PLANNED_ISSUES", "RemediationPlanner"]
