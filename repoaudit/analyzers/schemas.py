"""Structured output contracts shared by every analyzer."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import coerce_severity


class DocLink(BaseModel):
    title: str
    url: str


class IssueOutput(BaseModel):
    """One proposed finding as returned by an analyzer."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(description="Short, descriptive title of the issue")
    description: str = Field(description="Detailed explanation of the problem")
    severity: str = Field(default="medium", description="One of critical, high, medium, low, info")
    recommendation: Optional[str] = Field(default=None, description="Actionable steps to fix the issue")
    file: Optional[str] = Field(default=None, description="File path where the issue was found")
    line: Optional[int] = Field(default=None, description="Line number where the issue was found")
    evidence: Optional[List[str]] = Field(default=None, description="Code snippets or specific examples")
    docs: Optional[List[DocLink]] = Field(default=None, description="Links to relevant documentation")

    @field_validator("severity", mode="before")
    @classmethod
    def _known_severity(cls, value: object) -> str:
        return coerce_severity(value)


class IssuesArray(BaseModel):
    """Root object wrapping the issues list; JSON mode requires an object root."""

    issues: List[IssueOutput] = Field(description="Array of issues found during analysis")

    def entries(self) -> List[IssueOutput]:
        return list(self.issues)


class CodemodSpec(BaseModel):
    name: str = Field(description="Name of the codemod transform")
    command: str = Field(description="Command to run the codemod")
    description: str = Field(description="What the codemod does")
    transform: Optional[str] = Field(default=None, description="Path to transform file if applicable")


class RemediationOutput(BaseModel):
    """Maps one issue title to an automatable transform."""

    model_config = ConfigDict(populate_by_name=True)

    issue_title: str = Field(alias="issueTitle", description="Title of the issue this codemod addresses")
    codemod: CodemodSpec


class RemediationsArray(BaseModel):
    codemods: List[RemediationOutput] = Field(description="Array of codemods to apply")

    def entries(self) -> List[RemediationOutput]:
        return list(self.codemods)


__all__ = [
    "CodemodSpec",
    "DocLink",
    "IssueOutput",
    "IssuesArray",
    "RemediationOutput",
    "RemediationsArray",
]
