"""
Diagnostic bridge - turns a failed ValidationResult into a Diagnosis.

Classification runs from most to least specific:
1. Known vendor error codes from debugger alerts or the resource status
2. The primary status of the resource
3. "not yet available" / "not found" text (timing)
4. Failed Function logs, fallback callbacks, failed Voice Insights
5. Unknown

Each diagnosis carries a stable pattern id so repeated failures of the same
shape can be recognised across runs.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from deep_validation.core.logging import get_logger

from .models import Diagnosis, Evidence, RootCause, SuggestedFix, ValidationResult

logger = get_logger("validation.diagnostics")


# (category, description) for vendor error codes
ERROR_CODE_PATTERNS: Dict[str, Tuple[str, str]] = {
    # Configuration
    "20404": ("configuration", "Resource not found - check SID or resource may not exist"),
    "20003": ("configuration", "Authentication error - check credentials"),
    "21211": ("configuration", "Invalid phone number format"),
    "21212": ("configuration", "Phone number not valid"),
    "21614": ("configuration", "Phone number not SMS-capable"),
    # Carrier
    "30003": ("external", "Unreachable destination - carrier issue"),
    "30004": ("external", "Message blocked - carrier filtering"),
    "30005": ("external", "Unknown destination - invalid number"),
    "30006": ("external", "Landline or unreachable carrier"),
    "30007": ("external", "Carrier violation - message blocked"),
    "30008": ("external", "Unknown error from carrier"),
    "30034": ("external", "Message filtered by carrier"),
    # Webhooks and TwiML
    "11200": ("code", "HTTP retrieval failure - check webhook URL"),
    "11205": ("code", "HTTP connection failure - webhook unreachable"),
    "11206": ("code", "HTTP protocol violation - webhook error"),
    "12100": ("code", "TwiML document missing - no content"),
    "12200": ("code", "Invalid TwiML schema"),
    "12300": ("code", "Invalid TwiML Content-Type"),
    "21609": ("code", "From number not owned - check phone number ownership"),
}

STATUS_PATTERNS: Dict[str, Tuple[str, str]] = {
    "failed": ("code", "Operation failed - check error details"),
    "undelivered": ("external", "Message undelivered - carrier issue"),
    "busy": ("external", "Recipient busy"),
    "no-answer": ("external", "No answer from recipient"),
    "canceled": ("configuration", "Operation was canceled"),
}

_SID_RE = re.compile(r"[A-Z]{2}[a-f0-9]{32}", re.IGNORECASE)
_PHONE_RE = re.compile(r"\+?\d{10,}")
_NUMBER_RE = re.compile(r"\d{4,}")


def normalize_error(message: str) -> str:
    """Mask sids, phone numbers and long numbers so similar errors group."""
    message = _SID_RE.sub("{SID}", message)
    message = _PHONE_RE.sub("{PHONE}", message)
    message = _NUMBER_RE.sub("{NUM}", message)
    return message[:50]


def _alerts(result: ValidationResult) -> List[dict]:
    check = result.checks.get("debugger_alerts")
    if check is None or not isinstance(check.data, dict):
        return []
    return [a for a in check.data.get("alerts") or [] if isinstance(a, dict)]


def extract_error_codes(result: ValidationResult) -> List[str]:
    """Vendor error codes from debugger alerts, then from the resource status."""
    codes = [str(a["error_code"]) for a in _alerts(result) if a.get("error_code")]
    status = result.checks.get("resource_status")
    if status is not None and isinstance(status.data, dict) and status.data.get("error_code"):
        codes.append(str(status.data["error_code"]))
    return codes


def pattern_id_for(result: ValidationResult) -> str:
    components = [result.resource_type.value, result.primary_status]
    alerts = _alerts(result)
    if alerts and alerts[0].get("error_code"):
        components.append(str(alerts[0]["error_code"]))
    if result.errors:
        components.append(normalize_error(result.errors[0]))
    digest = hashlib.sha1("|".join(components).encode("utf-8")).hexdigest()
    return f"PAT-{digest[:8]}"


def _failed(result: ValidationResult, name: str) -> bool:
    check = result.checks.get(name)
    return check is not None and not check.passed


def classify_root_cause(result: ValidationResult) -> RootCause:
    for code in extract_error_codes(result):
        if code in ERROR_CODE_PATTERNS:
            category, description = ERROR_CODE_PATTERNS[code]
            return RootCause(category=category, description=f"Error {code}: {description}", confidence=0.9)

    if result.primary_status in STATUS_PATTERNS:
        category, description = STATUS_PATTERNS[result.primary_status]
        return RootCause(
            category=category,
            description=f"Status '{result.primary_status}': {description}",
            confidence=0.8,
        )

    if any("not yet available" in e or "not found" in e for e in result.errors):
        return RootCause(
            category="timing",
            description="Resource or data not yet available - may need to wait",
            confidence=0.7,
        )

    if _failed(result, "function_logs"):
        return RootCause(category="code", description="Function execution errors detected", confidence=0.8)

    if _failed(result, "sync_callbacks") and "fallback" in result.checks["sync_callbacks"].message.lower():
        return RootCause(
            category="code",
            description="Fallback handler invoked - primary webhook failed",
            confidence=0.9,
        )

    if _failed(result, "voice_insights"):
        return RootCause(
            category="code",
            description="Voice Insights detected call quality issues",
            confidence=0.7,
        )

    return RootCause(
        category="unknown",
        description="Unable to determine root cause from available evidence",
        confidence=0.3,
    )


def suggest_fixes(result: ValidationResult, root_cause: RootCause) -> List[SuggestedFix]:
    """Fix suggestions for the root cause, highest confidence first."""
    codes = extract_error_codes(result)
    fixes: List[SuggestedFix] = []
    category = root_cause.category

    if category == "configuration":
        fixes.append(SuggestedFix(
            description="Verify environment variables are correctly set",
            action_type="config",
            confidence=0.8,
            steps=[
                "Check .env file for required variables",
                "Verify TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN",
                "Ensure all service SIDs are valid",
            ],
        ))
        if "21211" in codes or "21212" in codes:
            fixes.append(SuggestedFix(
                description="Verify phone number is in E.164 format (+1XXXXXXXXXX)",
                action_type="config",
                confidence=0.9,
                steps=[
                    "Check phone number format in request",
                    "Ensure country code is included",
                    "Remove any formatting characters (spaces, dashes)",
                ],
            ))
    elif category == "external":
        fixes.append(SuggestedFix(
            description="Wait and retry - carrier issue may be temporary",
            action_type="wait",
            confidence=0.6,
            automated=True,
            steps=["Wait 30-60 seconds", "Retry the operation", "If persists, check the vendor status page"],
        ))
        if "30007" in codes or "30034" in codes:
            fixes.append(SuggestedFix(
                description="Message may be filtered - review content for compliance",
                action_type="code",
                confidence=0.7,
                steps=[
                    "Review message content for spam indicators",
                    "Check A2P 10DLC registration status",
                    "Consider using a Messaging Service for better deliverability",
                ],
            ))
    elif category == "code":
        if _failed(result, "function_logs"):
            fixes.append(SuggestedFix(
                description="Check Function logs for errors",
                action_type="code",
                confidence=0.8,
                steps=[
                    "Run: twilio serverless:logs --tail",
                    "Look for error-level log entries",
                    "Check for unhandled exceptions",
                ],
            ))
        if any(c.startswith(("11", "12")) for c in codes):
            fixes.append(SuggestedFix(
                description="Check webhook URL and TwiML response",
                action_type="code",
                confidence=0.9,
                steps=[
                    "Verify webhook URL is accessible",
                    "Check TwiML syntax is valid",
                    "Test webhook with curl",
                ],
            ))
    elif category == "timing":
        fixes.append(SuggestedFix(
            description="Wait for async processing to complete",
            action_type="wait",
            confidence=0.8,
            automated=True,
            steps=[
                "Wait 2-5 minutes for Insights data",
                "Wait up to 30 minutes for final Insights",
                "Retry validation after waiting",
            ],
        ))
    elif category == "environment":
        fixes.append(SuggestedFix(
            description="Check network connectivity and service availability",
            action_type="escalate",
            confidence=0.5,
            steps=[
                "Check the vendor status page for outages",
                "Verify network connectivity",
                "Test with a simple API call",
            ],
        ))
    else:
        fixes.append(SuggestedFix(
            description="Review error details and investigate manually",
            action_type="escalate",
            confidence=0.3,
            steps=[
                "Review full validation result",
                "Check console debugger logs",
                "Contact vendor support if needed",
            ],
        ))

    return sorted(fixes, key=lambda f: f.confidence, reverse=True)


def extract_evidence(result: ValidationResult) -> List[Evidence]:
    """Failed checks as primary evidence, passed checks with data as supporting."""
    present = result.present_checks
    primary = [
        Evidence(source=name, data=check.data or check.message, relevance="primary")
        for name, check in present.items() if not check.passed
    ]
    supporting = [
        Evidence(source=name, data=check.data, relevance="supporting")
        for name, check in present.items() if check.passed and check.data
    ]
    return primary + supporting


def summarize(result: ValidationResult, root_cause: RootCause) -> str:
    kind = result.resource_type.value
    parts = [
        f"{kind[:1].upper()}{kind[1:]} validation failed",
        f"Status: {result.primary_status}",
        f"Root cause: {root_cause.description}",
    ]
    if result.errors:
        parts.append(f"Errors: {len(result.errors)}")
    return ". ".join(parts)


@dataclass
class _PatternSeen:
    count: int
    first_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DiagnosticBridge:
    """
    Analyzes failed validations into Diagnoses.

    Keeps an in-memory count per pattern id for the lifetime of the bridge;
    persistent history lives in PatternTracker.
    """

    def __init__(self, *, auto_suggest: bool = True, track_patterns: bool = True):
        self.auto_suggest = auto_suggest
        self.track_patterns = track_patterns
        self._pattern_cache: Dict[str, _PatternSeen] = {}

    def analyze(self, result: ValidationResult) -> Diagnosis:
        if result.success:
            raise ValueError("analyze() is only defined for failed validations")

        pattern_id = pattern_id_for(result)
        root_cause = classify_root_cause(result)
        cached: Optional[_PatternSeen] = self._pattern_cache.get(pattern_id)
        previous = cached.count if cached else 0

        if self.track_patterns:
            if cached:
                cached.count += 1
            else:
                self._pattern_cache[pattern_id] = _PatternSeen(count=1)

        logger.debug(
            f"{pattern_id}: {root_cause.category} ({root_cause.confidence:.1f}), "
            f"seen {previous} times before"
        )
        return Diagnosis(
            pattern_id=pattern_id,
            summary=summarize(result, root_cause),
            root_cause=root_cause,
            evidence=extract_evidence(result),
            suggested_fixes=suggest_fixes(result, root_cause) if self.auto_suggest else [],
            is_known_pattern=cached is not None,
            previous_occurrences=previous,
            validation_result=result,
        )

    def pattern_stats(self) -> dict:
        """Total patterns seen and the ten most frequent."""
        patterns = sorted(
            (
                {"pattern_id": pid, "count": seen.count, "first_seen": seen.first_seen}
                for pid, seen in self._pattern_cache.items()
            ),
            key=lambda p: p["count"],
            reverse=True,
        )
        return {"total_patterns": len(patterns), "frequent_patterns": patterns[:10]}

    def clear_pattern_cache(self) -> None:
        self._pattern_cache.clear()
