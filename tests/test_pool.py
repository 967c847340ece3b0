"""Tests for the bounded analyzer pool."""

from __future__ import annotations

import asyncio

import pytest

from repoaudit.analyzers.base import Analyzer, AnalyzerContext
from repoaudit.llm import InferenceError, StructuredOutputError
from repoaudit.pool import AnalyzerPool
from repoaudit.progress import ProgressPublisher
from tests._fixtures.repo_builder import ScriptedRunner


class _Stub(Analyzer):
    def __init__(self, name: str, category: str = "general") -> None:
        self.name = name
        self.category = category

    def build_payload(self, context: AnalyzerContext) -> str:
        return self.name


class _SlowRunner:
    def __init__(self) -> None:
        self.in_flight = 0
        self.peak = 0

    async def generate(self, instructions, payload, schema):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return [{"title": payload, "description": "d"}]


_NAMES = ["ux", "backend", "database", "security", "performance", "lint"]


def _context() -> AnalyzerContext:
    return AnalyzerContext(summary="Files: 3, Chunks: 3, Heuristics: 1")


def test_failed_analyzer_does_not_abort_the_batch() -> None:
    def handler(instructions, payload, schema):
        if payload == "performance":
            raise InferenceError("gateway exploded", status=502)
        return [{"title": f"{payload} issue", "description": "d"}]

    pool = AnalyzerPool([_Stub(name) for name in _NAMES])
    results = asyncio.run(pool.run(_context(), ScriptedRunner(handler)))

    assert [result.name for result in results] == _NAMES
    assert sum(1 for result in results if not result.failed) == 5
    failed = [result for result in results if result.failed]
    assert len(failed) == 1
    assert failed[0].entries == []
    warnings = [warning for result in results for warning in result.warnings]
    assert warnings == ["performance: analyzer failed (gateway exploded)"]


def test_concurrency_is_bounded() -> None:
    runner = _SlowRunner()
    pool = AnalyzerPool([_Stub(name) for name in _NAMES], concurrency=2)

    results = asyncio.run(pool.run(_context(), runner))

    assert runner.peak == 2
    assert [result.entries[0]["title"] for result in results] == _NAMES


def test_structured_output_error_falls_back_to_text_recovery() -> None:
    def handler(instructions, payload, schema):
        raise StructuredOutputError(
            "bad shape", text='Findings: [{"title": "Open redirect", "description": "d"}] done'
        )

    (result,) = asyncio.run(AnalyzerPool([_Stub("security", "security")]).run(_context(), ScriptedRunner(handler)))

    assert result.failed is False
    assert result.entries == [{"title": "Open redirect", "description": "d", "severity": "medium"}]
    assert result.warnings == ["security: parsed text response after array-slice recovery"]


def test_progress_events_count_completions() -> None:
    publisher = ProgressPublisher()
    events = []
    publisher.subscribe(events.append)
    pool = AnalyzerPool([_Stub(name) for name in _NAMES[:3]])

    asyncio.run(pool.run(_context(), ScriptedRunner(), publisher))

    assert [event.details["analyzers_complete"] for event in events] == [1, 2, 3]
    assert events[-1].details["total_analyzers"] == 3
    assert events[-1].progress == 85
    assert all(event.stage == "analyzing" for event in events)


def test_run_dependent_uses_remediation_shape() -> None:
    def handler(instructions, payload, schema):
        raise StructuredOutputError(
            "bad",
            text=(
                '{"codemods": [{"issueTitle": "t", "codemod": '
                '{"name": "n", "command": "npx fix", "description": "d"}}, '
                '{"issueTitle": "u", "codemod": {}}]}'
            ),
        )

    result = asyncio.run(
        AnalyzerPool([]).run_dependent(_Stub("remediation"), _context(), ScriptedRunner(handler))
    )

    assert result.entries == [
        {"issueTitle": "t", "codemod": {"name": "n", "command": "npx fix", "description": "d"}}
    ]
    assert result.warnings[-1] == "remediation: dropped 1 of 2 recovered remediations missing required fields"


def test_recovered_entries_must_carry_required_fields() -> None:
    def handler(instructions, payload, schema):
        raise StructuredOutputError(
            "bad shape",
            text='Here: [1, "oops", {"severity": "bogus"}, {"title": "XSS", "description": "d", "severity": "HIGH"}] end',
        )

    (result,) = asyncio.run(AnalyzerPool([_Stub("security", "security")]).run(_context(), ScriptedRunner(handler)))

    assert result.entries == [{"title": "XSS", "description": "d", "severity": "high"}]
    assert result.warnings == [
        "security: parsed text response after array-slice recovery",
        "security: dropped 3 of 4 recovered findings missing required fields",
    ]


def test_empty_pool_returns_nothing() -> None:
    assert asyncio.run(AnalyzerPool([]).run(_context(), ScriptedRunner())) == []


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AnalyzerPool([], concurrency=0)
