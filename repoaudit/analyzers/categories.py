"""The six category analyzers fanned out for every audit."""

from __future__ import annotations

from .base import Analyzer, AnalyzerContext

_SAMPLE_LIMIT = 6
_LINT_FILE_LIMIT = 8
_LINT_CHARS_PER_FILE = 2000

_FINDING_FORMAT = (
    "For each issue provide a clear title and description, a severity "
    "(critical, high, medium, low or info), the file and line when known, "
    "and a concrete recommendation."
)


def _section(title: str, body: str) -> str:
    return f"# {title}\n{body}"


class UXAnalyzer(Analyzer):
    name = "ux"
    category = "ux"
    instructions = (
        "You are a UI/UX engineer reviewing a web application's rendering code.\n"
        "Look for accessibility gaps (missing alt text, labels, keyboard focus), "
        "layout shift, missing loading and error states, inconsistent interaction "
        "feedback and forms without validation messages.\n" + _FINDING_FORMAT
    )

    def build_payload(self, context: AnalyzerContext) -> str:
        samples = context.code_samples(_SAMPLE_LIMIT)
        return "\n".join(
            [
                _section("SUMMARY", context.summary),
                _section("SAMPLES", "\n\n---\n".join(samples) or "(No code samples)"),
            ]
        )


class BackendAnalyzer(UXAnalyzer):
    name = "backend"
    category = "backend"
    instructions = (
        "You are a senior backend engineer auditing server routes and handlers.\n"
        "Look for missing input validation, inconsistent error handling, blocking "
        "work on the request path, missing timeouts on outbound calls, unbounded "
        "responses and unclear caching semantics.\n" + _FINDING_FORMAT
    )


class PerformanceAnalyzer(UXAnalyzer):
    name = "performance"
    category = "performance"
    instructions = (
        "You are a performance engineer for server-rendered web applications.\n"
        "Look for render-blocking imports, heavy client bundles, serial data-fetch "
        "waterfalls, avoidable re-renders, unoptimized images, long lists without "
        "virtualization and expensive work on the main thread.\n" + _FINDING_FORMAT
    )


class SecurityAnalyzer(Analyzer):
    name = "security"
    category = "security"
    instructions = (
        "You are an application security engineer.\n"
        "Use the heuristic rule hits as evidence and identify vulnerabilities such "
        "as XSS, injection, SSRF, hardcoded secrets, missing security headers, "
        "insecure cookies, path traversal and missing rate limiting.\n"
        + _FINDING_FORMAT
        + " Ground each finding in the rule hits where possible."
    )

    def build_payload(self, context: AnalyzerContext) -> str:
        hits = "\n".join(hit.describe() for hit in context.rule_hits)
        return "\n".join(
            [
                _section("SUMMARY", context.summary),
                _section("RULE-HITS", hits or "(No heuristic hits found)"),
            ]
        )


class DatabaseAnalyzer(Analyzer):
    name = "database"
    category = "db"
    instructions = (
        "You are a database engineer reviewing a data model and its access patterns.\n"
        "Look for missing indexes, N+1 queries, unbounded result sets, unsafe raw "
        "SQL, missing unique constraints and missing cascade rules.\n" + _FINDING_FORMAT
    )

    def build_payload(self, context: AnalyzerContext) -> str:
        return "\n".join(
            [
                _section("SUMMARY", context.summary),
                _section("SCHEMA", context.schema_artifact or "(No schema provided)"),
            ]
        )


class LintAnalyzer(Analyzer):
    name = "lint"
    category = "lint"
    instructions = (
        "You are a code quality engineer.\n"
        "Look for loose typing, missing error handling in async code, misuse of "
        "framework hooks, leftover debug logging, unused code, magic numbers and "
        "overly complex functions.\n" + _FINDING_FORMAT
    )

    def build_payload(self, context: AnalyzerContext) -> str:
        samples = [
            f"// FILE: {chunk.file}\n{chunk.text[:_LINT_CHARS_PER_FILE]}"
            for chunk in context.chunks[:_LINT_FILE_LIMIT]
        ]
        return _section("CODE SAMPLES", "\n\n".join(samples) or "(No code samples)")


__all__ = [
    "BackendAnalyzer",
    "DatabaseAnalyzer",
    "LintAnalyzer",
    "PerformanceAnalyzer",
    "SecurityAnalyzer",
    "UXAnalyzer",
]
