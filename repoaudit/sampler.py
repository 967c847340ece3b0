"""Priority-weighted, quota-stratified file sampling."""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Set

from .logging import get_logger
from .models import PrioritizedFile, RepoFile, RuleHit

logger = get_logger("sampler")

HEURISTIC_HIT = "heuristic-hit"
STANDARD = "standard"


@dataclass(frozen=True)
class Category:
    """Path-based scoring category; a match adds ``weight`` and records ``tag``."""

    tag: str
    weight: int
    patterns: Sequence[re.Pattern[str]]

    def matches(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self.patterns)


def _compile(*patterns: str, ignore_case: bool = False) -> tuple[re.Pattern[str], ...]:
    flags = re.IGNORECASE if ignore_case else 0
    return tuple(re.compile(pattern, flags) for pattern in patterns)


# Ordered: the first matching tag is a file's primary reason for quota purposes.
_PATH_CATEGORIES: Sequence[Category] = (
    Category(
        "api-route",
        8,
        _compile(
            r"(^|/)app/(.+/)?route\.(ts|js)$",
            r"(^|/)pages/api/.+",
            r"(^|/)(routes|handlers)/.+\.(py|ts|js)$",
            r"(^|/)(urls|views)\.py$",
        ),
    ),
    Category(
        "page-component",
        7,
        _compile(r"(^|/)app/(.+/)?page\.(tsx|jsx)$", r"(^|/)pages/.+\.tsx$"),
    ),
    Category(
        "layout",
        6,
        _compile(r"(^|/)app/(.+/)?layout\.(tsx|jsx)$", r"(^|/)app/layout\.[^/]+$"),
    ),
    Category(
        "auth-security",
        9,
        _compile(r"(auth|login|password|token|session)[^/]*$", ignore_case=True),
    ),
    Category(
        "data-access",
        7,
        _compile(
            r"(^|/)prisma/.+",
            r"(^|/)lib/db/.+",
            r"database[^/]*$",
            r"query[^/]*$",
            r"(^|/)models?\.py$",
            ignore_case=True,
        ),
    ),
    Category(
        "middleware",
        8,
        _compile(r"(^|/)_?middleware\.[^/]+$"),
    ),
    Category(
        "config",
        5,
        _compile(
            r"(^|/)next\.config\.[^/]+$",
            r"(^|/)tailwind\.config\.[^/]+$",
            r"(^|/)tsconfig\.json$",
            r"(^|/)pyproject\.toml$",
        ),
    ),
)

_TRAILING_CATEGORIES: Sequence[Category] = (
    Category("lib-util", 4, _compile(r"(^|/)(lib|utils)/.+\.(ts|py)$")),
    Category("component", 3, _compile(r"(^|/)components/.+\.(tsx|jsx)$")),
)

LARGE_FILE_TAG = "large-file"
_MAX_SIZE_BONUS = 5


def category_quotas(max_files: int) -> Dict[str, float]:
    return {
        "api-route": math.floor(max_files * 0.25),
        "page-component": math.floor(max_files * 0.20),
        "auth-security": math.floor(max_files * 0.15),
        "data-access": math.floor(max_files * 0.10),
        "middleware": 2,
        "layout": 2,
        HEURISTIC_HIT: math.inf,
    }


class Sampler:
    """Selects a bounded, high-signal subset of text files for expensive analysis."""

    def __init__(self, max_files: int = 900) -> None:
        self.max_files = max_files

    def score(self, files: Iterable[RepoFile], hits: Iterable[RuleHit]) -> List[PrioritizedFile]:
        """Score every text file; binary files are dropped before scoring."""
        flagged = {hit.file for hit in hits}
        scored: List[PrioritizedFile] = []
        for repo_file in files:
            if repo_file.is_binary or repo_file.content is None:
                continue
            path = repo_file.path
            score = 0
            tags: List[str] = []
            if path in flagged:
                score += 10
                tags.append(HEURISTIC_HIT)
            for category in _PATH_CATEGORIES:
                if category.matches(path):
                    score += category.weight
                    tags.append(category.tag)
            size_kb = len(repo_file.content) / 1024
            if size_kb > 10:
                bonus = min(_MAX_SIZE_BONUS, int(size_kb // 10))
                score += bonus
                tags.append(f"{LARGE_FILE_TAG}-{int(size_kb)}kb")
            for category in _TRAILING_CATEGORIES:
                if category.matches(path):
                    score += category.weight
                    tags.append(category.tag)
            scored.append(PrioritizedFile(file=repo_file, score=score, reason_tags=tags or [STANDARD]))
        # sorted() is stable, so equal scores keep their input order.
        return sorted(scored, key=lambda item: item.score, reverse=True)

    def sample(
        self,
        files: Sequence[RepoFile],
        hits: Sequence[RuleHit],
        max_files: int | None = None,
    ) -> List[PrioritizedFile]:
        cap = self.max_files if max_files is None else max_files
        scored = self.score(files, hits)
        quotas = category_quotas(cap)

        flagged_total = sum(1 for item in scored if item.primary_reason == HEURISTIC_HIT)
        effective_cap = max(cap, flagged_total)
        # Non-flagged quota picks may only use the room left after every flagged file.
        open_slots = max(cap - flagged_total, 0)

        selected: List[PrioritizedFile] = []
        chosen: Set[int] = set()
        tag_counts: Counter[str] = Counter()
        quota_picks = 0

        for index, item in enumerate(scored):
            primary = item.primary_reason
            if primary != HEURISTIC_HIT:
                if quota_picks >= open_slots:
                    continue
                if tag_counts[primary] >= quotas.get(primary, 0):
                    continue
                quota_picks += 1
            selected.append(item)
            chosen.add(index)
            tag_counts.update(set(_base_tags(item.reason_tags)))

        for index, item in enumerate(scored):
            if len(selected) >= effective_cap:
                break
            if index not in chosen:
                selected.append(item)
                chosen.add(index)

        logger.info(
            "Selected %d of %d files (cap=%d, flagged=%d)",
            len(selected),
            len(files),
            cap,
            flagged_total,
        )
        logger.debug(
            "Sampling distribution: %s",
            dict(Counter(item.primary_reason for item in selected)),
        )
        return selected


def _base_tags(tags: Iterable[str]) -> Iterable[str]:
    for tag in tags:
        yield LARGE_FILE_TAG if tag.startswith(f"{LARGE_FILE_TAG}-") else tag


__all__ = ["HEURISTIC_HIT", "STANDARD", "Sampler", "category_quotas"]
