"""Bounded-concurrency fan-out over the category analyzers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Union

from .analyzers.base import Analyzer, AnalyzerContext, StructuredRunner
from .llm.runner import StructuredOutputError
from .logging import get_logger
from .normalizer import FINDINGS, REMEDIATIONS, OutputNormalizer, OutputShape
from .progress import ProgressPublisher, calculate_progress

logger = get_logger("pool")

RawOutput = Union[List[Any], str, None]


@dataclass
class AnalyzerResult:
    """Normalized contribution of one analyzer; ``failed`` marks an invocation error."""

    name: str
    category: str
    entries: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failed: bool = False


class AnalyzerPool:
    """Runs independent analyzers with at most ``concurrency`` calls in flight."""

    def __init__(
        self,
        analyzers: Sequence[Analyzer],
        *,
        concurrency: int = 3,
        normalizer: OutputNormalizer | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.analyzers = list(analyzers)
        self.concurrency = concurrency
        self.normalizer = normalizer or OutputNormalizer()

    async def run(
        self,
        context: AnalyzerContext,
        runner: StructuredRunner,
        progress: Optional[ProgressPublisher] = None,
    ) -> List[AnalyzerResult]:
        """Return one result per analyzer, in analyzer order."""
        semaphore = asyncio.Semaphore(self.concurrency)
        total = len(self.analyzers)
        completed = 0

        async def _invoke(analyzer: Analyzer) -> AnalyzerResult:
            nonlocal completed
            async with semaphore:
                result = await self._execute(analyzer, context, runner, FINDINGS)
            completed += 1
            if progress is not None:
                progress.stage(
                    "analyzing",
                    calculate_progress("analyzing", completed / total * 100),
                    f"Completed {analyzer.name} analyzer ({completed}/{total})",
                    {
                        "total_analyzers": total,
                        "analyzers_complete": completed,
                        "current_analyzer": analyzer.name,
                    },
                )
            return result

        if total == 0:
            return []
        return list(await asyncio.gather(*(_invoke(analyzer) for analyzer in self.analyzers)))

    async def run_dependent(
        self,
        planner: Analyzer,
        context: AnalyzerContext,
        runner: StructuredRunner,
    ) -> AnalyzerResult:
        """Run the remediation planner; callers invoke this only after ``run`` has joined."""
        return await self._execute(planner, context, runner, REMEDIATIONS)

    async def _execute(
        self,
        analyzer: Analyzer,
        context: AnalyzerContext,
        runner: StructuredRunner,
        shape: OutputShape,
    ) -> AnalyzerResult:
        raw: RawOutput
        try:
            raw = await analyzer.analyze(context, runner)
        except StructuredOutputError as exc:
            logger.warning("%s analyzer returned non-conforming output; attempting recovery", analyzer.name)
            raw = exc.text
        except Exception as exc:
            logger.warning("%s analyzer failed: %s", analyzer.name, exc)
            return AnalyzerResult(
                name=analyzer.name,
                category=analyzer.category,
                warnings=[f"{analyzer.name}: analyzer failed ({exc})"],
                failed=True,
            )
        entries, warnings = self.normalizer.normalize(analyzer.name, raw, shape)
        return AnalyzerResult(
            name=analyzer.name,
            category=analyzer.category,
            entries=entries,
            warnings=warnings,
        )


__all__ = ["AnalyzerPool", "AnalyzerResult"]
