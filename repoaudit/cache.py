"""Persistent scan-result cache keyed by content revision and provider identity."""

from __future__ import annotations

import json
import os
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .logging import get_logger
from .models import ScanReport

logger = get_logger("cache")

_CACHE_VERSION = 1
DEFAULT_MAX_AGE = timedelta(days=7)
DEFAULT_PRUNE_AGE = timedelta(days=30)


def cache_key(owner: str, name: str, revision: str, provider: str, model: str) -> str:
    return f"{owner}/{name}@{revision}#{provider}/{model}"


class ScanCache:
    """Stores whole ScanReports; every failure is logged and treated as a miss."""

    def __init__(
        self,
        path: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def lookup(
        self,
        owner: str,
        name: str,
        revision: Optional[str],
        provider: str,
        model: str,
        max_age: timedelta = DEFAULT_MAX_AGE,
    ) -> Optional[ScanReport]:
        if not revision:
            return None
        key = cache_key(owner, name, revision, provider, model)
        try:
            with self._lock:
                entry = self._load().get(key)
            if not isinstance(entry, dict):
                return None
            stored_at = _parse_time(entry.get("stored_at"))
            if stored_at is None or self._clock() - stored_at > max_age:
                return None
            report = ScanReport.from_dict(entry["report"])
        except Exception as exc:
            logger.warning("Cache lookup failed for %s: %s", key, exc)
            return None
        logger.info("Cache hit for %s (%d issues)", key, len(report.issues))
        return report

    def store(self, report: ScanReport, revision: Optional[str]) -> None:
        if not revision:
            return
        repo = report.repo
        key = cache_key(repo.owner, repo.name, revision, report.provider, report.model)
        try:
            with self._lock:
                entries = self._load()
                entries[key] = {
                    "owner": repo.owner,
                    "name": repo.name,
                    "revision": revision,
                    "provider": report.provider,
                    "model": report.model,
                    "stored_at": self._clock().isoformat(),
                    "report": report.to_dict(),
                }
                self._write(entries)
        except Exception as exc:
            logger.warning("Failed to cache scan %s: %s", key, exc)
            return
        logger.debug("Cached scan %s", key)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = self._load()
        scans = len(entries)
        issues = sum(len((entry.get("report") or {}).get("issues") or []) for entry in entries.values())
        repos = {f"{entry.get('owner')}/{entry.get('name')}" for entry in entries.values()}
        return {
            "total_scans": scans,
            "total_issues": issues,
            "total_repos": len(repos),
            "avg_issues_per_scan": round(issues / scans, 2) if scans else 0,
        }

    def prune(self, older_than: timedelta = DEFAULT_PRUNE_AGE) -> int:
        """Drop entries stored before ``now - older_than``; returns the number removed."""
        cutoff = self._clock() - older_than
        try:
            with self._lock:
                entries = self._load()
                keep = {
                    key: entry
                    for key, entry in entries.items()
                    if (_parse_time(entry.get("stored_at")) or cutoff) > cutoff
                }
                removed = len(entries) - len(keep)
                if removed:
                    self._write(keep)
        except OSError as exc:
            logger.warning("Failed to prune scan cache: %s", exc)
            return 0
        logger.info("Pruned %d cached scans older than %s", removed, older_than)
        return removed

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.debug("Ignoring unreadable scan cache %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return {}
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return {}
        return {key: raw for key, raw in entries.items() if isinstance(key, str) and isinstance(raw, dict)}

    def _write(self, entries: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": _CACHE_VERSION, "entries": entries}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self._path)


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


__all__ = ["DEFAULT_MAX_AGE", "ScanCache", "cache_key"]
