"""Base classes for analyzer plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Type

from pydantic import BaseModel

from ..models import CodeChunk, Finding, RuleHit
from .schemas import IssuesArray


class StructuredRunner(Protocol):
    async def generate(
        self, instructions: str, payload: str, schema: Type[BaseModel]
    ) -> List[Dict[str, Any]]: ...


@dataclass
class AnalyzerContext:
    """Shared, read-only input handed to every analyzer in one run."""

    summary: str
    chunks: List[CodeChunk] = field(default_factory=list)
    rule_hits: List[RuleHit] = field(default_factory=list)
    schema_artifact: Optional[str] = None
    max_context_chars: int = 120_000
    findings: List[Finding] = field(default_factory=list)

    def code_samples(self, limit: int | None = None) -> List[str]:
        """Chunk excerpts in order, bounded by count and by the character budget."""
        samples: List[str] = []
        budget = self.max_context_chars
        for chunk in self.chunks if limit is None else self.chunks[:limit]:
            excerpt = chunk.excerpt()
            if len(excerpt) > budget:
                break
            samples.append(excerpt)
            budget -= len(excerpt)
        return samples


class Analyzer(ABC):
    """Contract for category analyzers that propose findings from shared context."""

    name: str = ""
    category: str = "general"
    instructions: str = ""
    schema: Type[BaseModel] = IssuesArray

    @abstractmethod
    def build_payload(self, context: AnalyzerContext) -> str:
        """Render the context section of the prompt for this analyzer."""

    async def analyze(self, context: AnalyzerContext, runner: StructuredRunner) -> List[Dict[str, Any]]:
        return await runner.generate(self.instructions, self.build_payload(context), self.schema)


__all__ = ["Analyzer", "AnalyzerContext", "StructuredRunner"]
