"""
Pattern tracker - failure pattern history persisted as JSON.

The database lives next to the learnings file (``pattern-db.json``). Every
mutation reloads the file under the path lock before writing, so trackers in
concurrent flows never drop each other's records.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from deep_validation.core.config import Settings
from deep_validation.core.logging import get_logger

from .learning import path_lock, store_dir
from .models import Diagnosis, FixAttempt, PatternHistory, PatternOccurrence, RootCauseCategory

logger = get_logger("validation.patterns")

DATABASE_VERSION = 1
CATEGORIES = ("configuration", "environment", "timing", "external", "code", "unknown")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PatternDatabase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: int = DATABASE_VERSION
    last_updated: datetime = Field(default_factory=_utcnow, alias="lastUpdated")
    patterns: Dict[str, PatternHistory] = Field(default_factory=dict)


class PatternTracker:
    """Tracks how often each diagnosed failure pattern recurs and how it was fixed."""

    def __init__(
        self,
        project_root: Path | str,
        *,
        database_path: Path | str | None = None,
        max_occurrences_per_pattern: int = 100,
        frequent_threshold: int = 3,
        settings: Settings | None = None,
    ):
        self.database_path = (
            Path(database_path) if database_path
            else store_dir(project_root, settings) / "pattern-db.json"
        )
        self.max_occurrences_per_pattern = max_occurrences_per_pattern
        self.frequent_threshold = frequent_threshold
        self._db = self._load()

    def _load(self) -> PatternDatabase:
        if not self.database_path.exists():
            return PatternDatabase()
        try:
            return PatternDatabase.model_validate_json(
                self.database_path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            logger.warning(f"Pattern database {self.database_path} unreadable, starting fresh: {e}")
            return PatternDatabase()

    def _write(self) -> None:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._db.last_updated = _utcnow()
        self.database_path.write_text(
            self._db.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )

    @contextmanager
    def _mutate(self) -> Iterator[PatternDatabase]:
        with path_lock(self.database_path):
            self._db = self._load()
            yield self._db
            self._write()

    # =========================================================================
    # Mutations
    # =========================================================================

    def record(self, diagnosis: Diagnosis, session_id: str) -> PatternHistory:
        now = _utcnow()
        with self._mutate() as db:
            pattern = db.patterns.get(diagnosis.pattern_id)
            if pattern is None:
                pattern = PatternHistory(
                    pattern_id=diagnosis.pattern_id,
                    summary=diagnosis.summary,
                    category=diagnosis.root_cause.category,
                    first_seen=now,
                    last_seen=now,
                )
                db.patterns[diagnosis.pattern_id] = pattern
            pattern.last_seen = now
            pattern.occurrence_count += 1
            pattern.occurrences.append(PatternOccurrence(timestamp=now, session_id=session_id))
            if len(pattern.occurrences) > self.max_occurrences_per_pattern:
                pattern.occurrences = pattern.occurrences[-self.max_occurrences_per_pattern:]

        logger.debug(f"Recorded {diagnosis.pattern_id} (count {pattern.occurrence_count})")
        return pattern

    def record_fix_attempt(self, pattern_id: str, fix_description: str, success: bool) -> None:
        """Log a fix attempt; a successful one resolves the pattern."""
        with self._mutate() as db:
            pattern = db.patterns.get(pattern_id)
            if pattern is None:
                return
            pattern.fix_attempts.append(
                FixAttempt(timestamp=_utcnow(), fix_description=fix_description, success=success)
            )
            if success:
                pattern.resolved = True
                pattern.successful_fix = fix_description

    def mark_resolved(self, pattern_id: str, successful_fix: str) -> None:
        with self._mutate() as db:
            pattern = db.patterns.get(pattern_id)
            if pattern is None:
                return
            pattern.resolved = True
            pattern.successful_fix = successful_fix

    def delete_pattern(self, pattern_id: str) -> bool:
        with self._mutate() as db:
            return db.patterns.pop(pattern_id, None) is not None

    def clear(self) -> None:
        with path_lock(self.database_path):
            self._db = PatternDatabase()
            self._write()

    def save(self) -> None:
        with path_lock(self.database_path):
            self._write()

    # =========================================================================
    # Queries
    # =========================================================================

    def lookup(self, pattern_id: str) -> Optional[PatternHistory]:
        return self._db.patterns.get(pattern_id)

    def is_known(self, pattern_id: str) -> bool:
        return pattern_id in self._db.patterns

    def occurrence_count(self, pattern_id: str) -> int:
        pattern = self._db.patterns.get(pattern_id)
        return pattern.occurrence_count if pattern else 0

    def all_patterns(self) -> List[PatternHistory]:
        return sorted(self._db.patterns.values(), key=lambda p: p.occurrence_count, reverse=True)

    def frequent_patterns(self) -> List[PatternHistory]:
        return [p for p in self.all_patterns() if p.occurrence_count >= self.frequent_threshold]

    def unresolved_patterns(self) -> List[PatternHistory]:
        return [p for p in self.all_patterns() if not p.resolved]

    def patterns_by_category(self, category: RootCauseCategory) -> List[PatternHistory]:
        return [p for p in self.all_patterns() if p.category == category]

    def recent_patterns(self, days: int = 7) -> List[PatternHistory]:
        cutoff = _utcnow() - timedelta(days=days)
        return [p for p in self.all_patterns() if p.last_seen >= cutoff]

    def stats(self) -> dict:
        patterns = self.all_patterns()
        by_category = {c: 0 for c in CATEGORIES}
        for p in patterns:
            by_category[p.category] += 1
        return {
            "total_patterns": len(patterns),
            "unresolved_patterns": sum(1 for p in patterns if not p.resolved),
            "frequent_patterns": sum(1 for p in patterns if p.occurrence_count >= self.frequent_threshold),
            "resolved_patterns": sum(1 for p in patterns if p.resolved),
            "by_category": by_category,
            "recent_patterns": len(self.recent_patterns(7)),
        }
