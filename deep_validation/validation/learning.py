"""
Learning capture - appends diagnosed failures to a project learnings file.

Entries are grouped under one header per session so a reviewer can later
promote recurring lessons into permanent documentation.
"""

from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from deep_validation.core.config import Settings, get_settings
from deep_validation.core.logging import get_logger

from .models import Diagnosis, LearningEntry

logger = get_logger("validation.learning")


_path_locks: Dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def path_lock(path: Path) -> threading.Lock:
    """One lock per resolved file path, shared by every writer in the process."""
    key = path.resolve()
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


def store_dir(project_root: Path | str, settings: Settings | None = None) -> Path:
    """Directory for learnings and pattern data: the meta dir when present."""
    settings = settings or get_settings()
    root = Path(project_root)
    meta = root / settings.learnings_dir_meta
    return meta if meta.is_dir() else root / settings.learnings_dir_default


PROMOTION_TARGETS = {
    "configuration": "README.md (Configuration section)",
    "environment": "DESIGN_DECISIONS.md (Infrastructure section)",
    "timing": "docs/validation.md",
    "external": "docs/messaging.md or docs/voice.md",
    "unknown": "DESIGN_DECISIONS.md (Gotchas section)",
}


def promotion_target(category: str, resource_type: str) -> str:
    if category == "code":
        return f"docs/{resource_type}.md"
    return PROMOTION_TARGETS.get(category, PROMOTION_TARGETS["unknown"])


def default_session_id() -> str:
    return f"session-{int(time.time() * 1000)}"


def build_entry(diagnosis: Diagnosis, session_id: str) -> LearningEntry:
    result = diagnosis.validation_result
    top_fix = diagnosis.suggested_fixes[0] if diagnosis.suggested_fixes else None
    if top_fix:
        steps = "; ".join(top_fix.steps) or "See fix details"
        correct_approach = f"{top_fix.description}. Steps: {steps}"
    else:
        correct_approach = "Investigation required - no confident fix suggestion"

    primary = [e for e in diagnosis.evidence if e.relevance == "primary"]
    if primary:
        actual_result = "; ".join(
            f"{e.source}: {json.dumps(e.data, default=str)[:100]}" for e in primary
        )
    else:
        actual_result = diagnosis.summary

    return LearningEntry(
        timestamp=diagnosis.timestamp,
        session_id=session_id,
        pattern_id=diagnosis.pattern_id,
        title=diagnosis.summary,
        attempted_action=f"Validate {result.resource_type.value} {result.resource_sid}",
        actual_result=actual_result,
        correct_approach=correct_approach,
        promotion_target=promotion_target(diagnosis.root_cause.category, result.resource_type.value),
    )


def format_markdown(entry: LearningEntry) -> str:
    return (
        f"\n### {entry.title}\n\n"
        f"**Pattern ID:** `{entry.pattern_id}`\n\n"
        f"- **What was tried:** {entry.attempted_action}\n"
        f"- **What happened:** {entry.actual_result}\n"
        f"- **Correct approach:** {entry.correct_approach}\n"
        f"- **Promote to:** {entry.promotion_target}\n"
        f"- **Captured:** {entry.timestamp.date().isoformat()}\n"
    )


class LearningCaptureEngine:
    """Writes LearningEntries to ``learnings.md`` under the project root."""

    def __init__(
        self,
        project_root: Path | str,
        *,
        session_id: Optional[str] = None,
        learnings_path: Path | str | None = None,
        date: Optional[datetime] = None,
        settings: Settings | None = None,
    ):
        self.project_root = Path(project_root)
        self._session_id = session_id or default_session_id()
        self._path = (
            Path(learnings_path) if learnings_path
            else store_dir(self.project_root, settings) / "learnings.md"
        )
        self._date = date or datetime.now(timezone.utc)

    @property
    def learnings_path(self) -> Path:
        return self._path

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_header(self) -> str:
        return (
            f"## [{self._date.date().isoformat()}] {self._session_id} - Validation Learnings\n\n"
            "**Discoveries:**\n"
        )

    def capture(self, diagnosis: Diagnosis) -> LearningEntry:
        entry = build_entry(diagnosis, self._session_id)
        markdown = format_markdown(entry)

        with path_lock(self._path):
            self._path.parent.mkdir(parents=True, exist_ok=True)
            existing = self._path.read_text(encoding="utf-8") if self._path.exists() else ""
            if self.session_header in existing:
                content = existing + markdown
            else:
                content = existing + "\n" + self.session_header + markdown
            self._path.write_text(content, encoding="utf-8")

        logger.info(f"Captured learning {entry.pattern_id} -> {self._path}")
        return entry

    def capture_all(self, diagnoses: Iterable[Diagnosis]) -> List[LearningEntry]:
        return [self.capture(d) for d in diagnoses]

    def read_learnings(self) -> str:
        if not self._path.exists():
            return ""
        return self._path.read_text(encoding="utf-8")

    def has_pattern(self, pattern_id: str) -> bool:
        return pattern_id in self.read_learnings()
