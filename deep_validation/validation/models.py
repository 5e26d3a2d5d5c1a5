"""Result models produced by the validation engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationOptions(BaseModel):
    """Per-call knobs for the resource validators. Times are in seconds."""

    wait_for_terminal: bool = False
    timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=2.0, gt=0)
    alert_lookback_seconds: int = Field(default=120, ge=1)
    sync_service_sid: Optional[str] = None
    serverless_service_sid: Optional[str] = None
    studio_flow_sid: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "ValidationOptions":
        """Defaults taken from Settings, then overridden by keyword."""
        values: Dict[str, Any] = {
            "timeout": settings.default_timeout,
            "poll_interval": settings.poll_interval,
            "alert_lookback_seconds": settings.alert_lookback_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ResourceType(str, Enum):
    """Kinds of resources a ValidationResult can describe."""

    MESSAGE = "message"
    CALL = "call"
    VERIFICATION = "verification"
    TASK = "task"
    CONFERENCE = "conference"
    RECORDING = "recording"
    TRANSCRIPT = "transcript"
    OPERATOR = "operator"
    DOCUMENT = "document"
    LIST = "list"
    MAP = "map"
    DEBUGGER = "debugger"
    SERVERLESS = "serverless"
    CONVERSATION = "conversation"


class Check(BaseModel):
    """Outcome of a single check. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    message: str
    data: Optional[Any] = None


class ValidationResult(BaseModel):
    """Aggregated verdict for one resource.

    ``checks`` maps check names to their outcome in the validator's fixed
    order. A ``None`` value marks a check that did not apply and is left out
    of the ``success`` conjunction.
    """

    resource_type: ResourceType
    resource_sid: str
    primary_status: str
    success: bool
    duration_ms: int = 0
    checks: Dict[str, Optional[Check]] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _success_matches_checks(self) -> "ValidationResult":
        expected = all(c.passed for c in self.checks.values() if c is not None)
        if self.success != expected:
            raise ValueError(
                f"success={self.success} disagrees with checks (expected {expected})"
            )
        return self

    @classmethod
    def from_checks(
        cls,
        resource_type: ResourceType,
        resource_sid: str,
        primary_status: str,
        checks: Dict[str, Optional[Check]],
        *,
        warnings: Optional[List[str]] = None,
        duration_ms: int = 0,
    ) -> "ValidationResult":
        """Build a result whose errors and success derive from the checks."""
        present = [c for c in checks.values() if c is not None]
        return cls(
            resource_type=resource_type,
            resource_sid=resource_sid,
            primary_status=primary_status,
            success=all(c.passed for c in present),
            duration_ms=duration_ms,
            checks=checks,
            errors=[c.message for c in present if not c.passed],
            warnings=list(warnings or []),
        )

    @property
    def present_checks(self) -> Dict[str, Check]:
        return {k: v for k, v in self.checks.items() if v is not None}

    @property
    def failed_checks(self) -> Dict[str, Check]:
        return {k: v for k, v in self.present_checks.items() if not v.passed}


# =============================================================================
# Two-way conversations
# =============================================================================


class LegStats(BaseModel):
    """Transcript statistics for one call leg."""

    call_sid: str
    transcript_sid: Optional[str] = None
    transcript_status: Optional[str] = None
    speaker_turns: int = 0
    sentence_count: int = 0


class ConversationStats(BaseModel):
    total_turns: int = 0
    topic_keywords_found: List[str] = Field(default_factory=list)
    topic_keywords_missing: List[str] = Field(default_factory=list)
    success_phrases_found: List[str] = Field(default_factory=list)
    forbidden_patterns_found: List[str] = Field(default_factory=list)
    has_natural_flow: bool = False


class TwoWayValidationResult(BaseModel):
    success: bool
    call_a: LegStats
    call_b: LegStats
    conversation: ConversationStats
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    validation_duration_ms: int = 0

    def to_validation_result(self) -> ValidationResult:
        """Express the conversation verdict as a single-check ValidationResult."""
        conv = self.conversation
        check = Check(
            name="conversation",
            passed=self.success,
            message=(
                "; ".join(self.errors)
                if self.errors
                else f"Two-way: {conv.total_turns} turns, natural flow: {conv.has_natural_flow}"
            ),
            data=conv.model_dump(),
        )
        return ValidationResult(
            resource_type=ResourceType.CONVERSATION,
            resource_sid=self.call_a.call_sid,
            primary_status="validated" if self.success else "failed",
            success=self.success,
            duration_ms=self.validation_duration_ms,
            checks={"conversation": check},
            errors=list(self.errors),
            warnings=list(self.warnings),
        )


# =============================================================================
# Prerequisites
# =============================================================================


class PrerequisiteOutcome(BaseModel):
    name: str
    ok: bool
    message: str
    required: bool


class PrerequisiteResult(BaseModel):
    success: bool
    results: List[PrerequisiteOutcome] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    validation_duration_ms: int = 0


# =============================================================================
# Diagnostics and the learning loop
# =============================================================================


RootCauseCategory = Literal[
    "configuration", "environment", "timing", "external", "code", "unknown"
]
FixActionType = Literal["config", "code", "wait", "escalate"]


class RootCause(BaseModel):
    category: RootCauseCategory
    description: str
    confidence: float = Field(ge=0, le=1)


class Evidence(BaseModel):
    source: str
    data: Any = None
    relevance: Literal["primary", "supporting"]


class SuggestedFix(BaseModel):
    description: str
    action_type: FixActionType
    confidence: float = Field(ge=0, le=1)
    automated: bool = False
    steps: List[str] = Field(default_factory=list)


class Diagnosis(BaseModel):
    """Structured analysis of one failed ValidationResult."""

    pattern_id: str
    summary: str
    root_cause: RootCause
    evidence: List[Evidence] = Field(default_factory=list)
    suggested_fixes: List[SuggestedFix] = Field(default_factory=list)
    is_known_pattern: bool = False
    previous_occurrences: int = 0
    validation_result: ValidationResult
    timestamp: datetime = Field(default_factory=_utcnow)


class LearningEntry(BaseModel):
    timestamp: datetime
    session_id: str
    pattern_id: str
    title: str
    attempted_action: str
    actual_result: str
    correct_approach: str
    promotion_target: str
    promoted: bool = False


class PatternOccurrence(BaseModel):
    timestamp: datetime
    session_id: str


class FixAttempt(BaseModel):
    timestamp: datetime
    fix_description: str
    success: bool


class PatternHistory(BaseModel):
    pattern_id: str
    summary: str
    category: RootCauseCategory
    first_seen: datetime
    last_seen: datetime
    occurrence_count: int = 0
    occurrences: List[PatternOccurrence] = Field(default_factory=list)
    fix_attempts: List[FixAttempt] = Field(default_factory=list)
    resolved: bool = False
    successful_fix: Optional[str] = None


# =============================================================================
# Flows
# =============================================================================


class FlowSummary(BaseModel):
    total_validators: int = 0
    passed: int = 0
    failed: int = 0
    warnings: int = 0
    duration_ms: int = 0


class FlowResult(BaseModel):
    results: Dict[str, ValidationResult] = Field(default_factory=dict)
    summary: FlowSummary = Field(default_factory=FlowSummary)
    all_passed: bool = True
    diagnoses: List[Diagnosis] = Field(default_factory=list)
    learnings: List[LearningEntry] = Field(default_factory=list)
    patterns: List[PatternHistory] = Field(default_factory=list)
