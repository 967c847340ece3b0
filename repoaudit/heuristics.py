"""Fast local pattern rules run over every text file."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from .logging import get_logger
from .models import RepoFile, RuleHit

logger = get_logger("heuristics")

_EVAL = re.compile(r"\beval\s*\(")
_NEW_FUNCTION = re.compile(r"\bnew\s+Function\s*\(")
_INLINE_MAP = re.compile(r"map\(\([^)]*\)\s*=>\s*<\w+")
_CACHE_DIRECTIVE = re.compile(r"revalidate|cache-control|headers\(\)\.set\(['\"]cache-control", re.IGNORECASE)
_ROUTE_HANDLER = re.compile(r"^app/(.+/)?route\.(ts|js)$")
_PUBLIC_ASSET = re.compile(r"\.(png|jpe?g|gif|webp|svg)$", re.IGNORECASE)

LARGE_COMPONENT_CHARS = 5000
LARGE_ASSET_BYTES = 100 * 1024


@dataclass(frozen=True)
class _Source:
    path: str
    text: str
    size: int

    def line_at(self, offset: int) -> int:
        return self.text.count("\n", 0, offset) + 1

    def find(self, needle: str) -> Optional[int]:
        offset = self.text.find(needle)
        return None if offset < 0 else self.line_at(offset)

    def search(self, pattern: re.Pattern[str]) -> Optional[int]:
        match = pattern.search(self.text)
        return None if match is None else self.line_at(match.start())


@dataclass(frozen=True)
class Rule:
    """One heuristic rule; ``check`` returns the 1-based line of the first match."""

    rule_id: str
    message: str
    check: Callable[[_Source], Optional[int]]
    evidence: Optional[str] = None

    def apply(self, source: _Source) -> Optional[RuleHit]:
        line = self.check(source)
        if line is None:
            return None
        return RuleHit(
            rule_id=self.rule_id,
            file=source.path,
            line=line,
            message=self.message,
            evidence=self.evidence,
        )


def _raw_html(source: _Source) -> Optional[int]:
    return source.find("dangerouslySetInnerHTML")


def _eval(source: _Source) -> Optional[int]:
    return source.search(_EVAL)


def _new_function(source: _Source) -> Optional[int]:
    return source.search(_NEW_FUNCTION)


def _public_asset(source: _Source) -> Optional[int]:
    if "/public/" not in f"/{source.path}" or not _PUBLIC_ASSET.search(source.path):
        return None
    return 1 if source.size > LARGE_ASSET_BYTES else None


def _inline_map(source: _Source) -> Optional[int]:
    if len(source.text) <= LARGE_COMPONENT_CHARS:
        return None
    return source.search(_INLINE_MAP)


def _missing_cache(source: _Source) -> Optional[int]:
    if not _ROUTE_HANDLER.match(source.path) or _CACHE_DIRECTIVE.search(source.text):
        return None
    return source.find("export async function GET")


DEFAULT_RULES: Sequence[Rule] = (
    Rule(
        rule_id="react-dangerouslySetInnerHTML",
        message="Use of dangerouslySetInnerHTML detected. Ensure sanitization.",
        check=_raw_html,
        evidence="dangerouslySetInnerHTML",
    ),
    Rule(
        rule_id="no-eval",
        message="Use of eval is dangerous and should be removed.",
        check=_eval,
    ),
    Rule(
        rule_id="no-new-function",
        message="new Function() compiles strings at runtime; treat it like eval.",
        check=_new_function,
    ),
    Rule(
        rule_id="large-asset-public",
        message="Large asset under public/. Prefer a CDN or optimized image delivery.",
        check=_public_asset,
    ),
    Rule(
        rule_id="inline-component-in-map",
        message="Rendering JSX in array.map in a large component. Consider memoization or virtualization.",
        check=_inline_map,
    ),
    Rule(
        rule_id="api-no-cache-control",
        message="API route missing explicit caching. Add Cache-Control or revalidate where appropriate.",
        check=_missing_cache,
    ),
)


class HeuristicScanner:
    """Applies an ordered rule battery to each text file, one hit per rule per file."""

    def __init__(self, rules: Sequence[Rule] | None = None) -> None:
        self.rules = tuple(rules) if rules is not None else tuple(DEFAULT_RULES)

    def scan(self, files: Iterable[RepoFile]) -> List[RuleHit]:
        hits: List[RuleHit] = []
        for repo_file in files:
            if repo_file.is_binary or repo_file.content is None:
                continue
            source = _Source(path=repo_file.path, text=repo_file.text(), size=repo_file.size)
            for rule in self.rules:
                hit = rule.apply(source)
                if hit is not None:
                    hits.append(hit)
        logger.debug("Heuristic scan produced %d hits", len(hits))
        return hits


__all__ = ["DEFAULT_RULES", "HeuristicScanner", "Rule"]
