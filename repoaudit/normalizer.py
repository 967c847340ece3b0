"""Turns structured or degraded text analyzer output into mergeable entries."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple, Type

from pydantic import BaseModel, ValidationError

from .analyzers.schemas import IssueOutput, RemediationOutput
from .logging import get_logger

logger = get_logger("normalizer")

_FENCE = re.compile(r"^```[\w-]*\s*\n(.*?)\n?```$", re.DOTALL)


class NormalizationFailure(ValueError):
    """Raised when no recovery step produced a JSON array."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class OutputShape:
    """Target shape; ``wrapper_key`` names the list inside an object root and
    ``entry_model`` is the contract every recovered entry must satisfy."""

    name: str
    wrapper_key: str
    entry_model: Type[BaseModel]


FINDINGS = OutputShape("findings", "issues", IssueOutput)
REMEDIATIONS = OutputShape("remediations", "codemods", RemediationOutput)


@dataclass(frozen=True)
class Recovery:
    entries: List[Any]
    step: str


def recover_array(text: str, shape: OutputShape = FINDINGS) -> Recovery:
    """Parse ``text`` into a list, trying the whole text and then the outermost array."""
    trimmed = text.strip()
    if not trimmed:
        raise NormalizationFailure("empty response from model")

    attempts: List[Tuple[str, str]] = [("full-text", trimmed)]
    fenced = _FENCE.match(trimmed)
    if fenced:
        attempts.append(("code-fence", fenced.group(1).strip()))
    start = trimmed.find("[")
    end = trimmed.rfind("]")
    if start != -1 and end > start:
        sliced = trimmed[start : end + 1]
        if sliced != trimmed:
            attempts.append(("array-slice", sliced))

    last_error: Exception | None = None
    for step, candidate in attempts:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
            continue
        if isinstance(parsed, dict) and isinstance(parsed.get(shape.wrapper_key), list):
            parsed = parsed[shape.wrapper_key]
        if isinstance(parsed, list):
            return Recovery(entries=parsed, step=step)
        raise NormalizationFailure(
            f"parsed JSON was not an array (received {type(parsed).__name__})"
        )
    raise NormalizationFailure(f"failed to parse JSON ({last_error or 'unknown error'})")


class OutputNormalizer:
    """Applies the recovery ladder and reports every degradation as one warning."""

    def normalize(
        self, analyzer: str, raw: object, shape: OutputShape = FINDINGS
    ) -> Tuple[List[Any], List[str]]:
        if isinstance(raw, list):
            return raw, []
        if not isinstance(raw, str) or not raw.strip():
            return [], [f"{analyzer}: empty response from model"]
        try:
            recovery = recover_array(raw, shape)
        except NormalizationFailure as exc:
            logger.warning("Failed to parse %s response: %s", analyzer, raw.strip()[:500])
            return [], [f"{analyzer}: {exc.reason}"]
        warnings = [f"{analyzer}: parsed text response after {recovery.step} recovery"]
        entries, rejected = _conforming(recovery.entries, shape)
        logger.info("Recovered %d %s from %s text response", len(entries), shape.name, analyzer)
        if rejected:
            logger.warning("Dropped %d malformed %s from %s", rejected, shape.name, analyzer)
            warnings.append(
                f"{analyzer}: dropped {rejected} of {len(recovery.entries)} recovered {shape.name} "
                "missing required fields"
            )
        return entries, warnings


def _conforming(candidates: List[Any], shape: OutputShape) -> Tuple[List[Dict[str, Any]], int]:
    """Keep the entries that satisfy ``shape.entry_model``, dumped like structured output."""
    accepted: List[Dict[str, Any]] = []
    for candidate in candidates:
        try:
            entry = shape.entry_model.model_validate(candidate)
        except ValidationError as exc:
            logger.debug("Rejected recovered %s entry %r: %s", shape.name, candidate, exc)
            continue
        accepted.append(entry.model_dump(exclude_none=True, by_alias=True))
    return accepted, len(candidates) - len(accepted)


__all__ = [
    "FINDINGS",
    "NormalizationFailure",
    "OutputNormalizer",
    "OutputShape",
    "REMEDIATIONS",
    "Recovery",
    "recover_array",
]
