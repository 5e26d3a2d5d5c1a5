"""
Test-harness helpers and failure reports.

The ``*_in_test`` helpers run a validator with short test timeouts and raise
``ValidationAssertionError`` (an ``AssertionError``) when the resource did
not validate, so pytest reports the failed checks directly.

``FailureReport`` is a structured report for a failed validation:
1. Machine-parseable (JSON)
2. Carries the failed checks, warnings and the diagnosis when one exists
3. Readable as markdown for human review
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from deep_validation.core.exceptions import ValidationAssertionError

from .deep_validator import DeepValidator
from .models import Diagnosis, ValidationOptions, ValidationResult

# Tests wait less than production validators
TEST_TIMEOUT_SECONDS = 10.0
TEST_POLL_INTERVAL_SECONDS = 1.0


def _test_options(options: ValidationOptions | None) -> ValidationOptions:
    if options is not None:
        return options
    return ValidationOptions(timeout=TEST_TIMEOUT_SECONDS, poll_interval=TEST_POLL_INTERVAL_SECONDS)


def format_failure(message: str, result: ValidationResult) -> str:
    lines = [
        message,
        f"Resource: {result.resource_type.value} {result.resource_sid}",
        f"Status: {result.primary_status}",
    ]
    if result.errors:
        lines.append(f"  Errors: {', '.join(result.errors)}")
    if result.warnings:
        lines.append(f"  Warnings: {', '.join(result.warnings)}")
    failed = result.failed_checks
    if failed:
        lines.append("Failed checks:")
        lines.extend(f"  - {name}: {check.message or 'failed'}" for name, check in failed.items())
    return "\n".join(lines)


def _assertion_error(message: str, result: ValidationResult) -> ValidationAssertionError:
    return ValidationAssertionError(
        format_failure(message, result),
        details={"validation_result": result.model_dump(mode="json")},
    )


def expect_validation_success(result: ValidationResult) -> None:
    if not result.success or result.failed_checks:
        raise _assertion_error("Validation assertion failed", result)


def expect_check_passed(result: ValidationResult, check_name: str) -> None:
    check = result.checks.get(check_name)
    if check is None or not check.passed:
        detail = check.message if check is not None else "check not found"
        raise _assertion_error(f"Expected {check_name} check to pass: {detail}", result)


def expect_no_debugger_alerts(result: ValidationResult) -> None:
    expect_check_passed(result, "debugger_alerts")


async def validate_message_in_test(
    validator: DeepValidator, message_sid: str, options: ValidationOptions | None = None
) -> ValidationResult:
    result = await validator.validate_message(message_sid, _test_options(options))
    if not result.success:
        raise _assertion_error("Message validation failed", result)
    return result


async def validate_call_in_test(
    validator: DeepValidator, call_sid: str, options: ValidationOptions | None = None
) -> ValidationResult:
    result = await validator.validate_call(call_sid, _test_options(options))
    if not result.success:
        raise _assertion_error("Call validation failed", result)
    return result


async def validate_verification_in_test(
    validator: DeepValidator,
    service_sid: str,
    verification_sid: str,
    options: ValidationOptions | None = None,
) -> ValidationResult:
    result = await validator.validate_verification(
        service_sid, verification_sid, _test_options(options)
    )
    if not result.success:
        raise _assertion_error("Verification validation failed", result)
    return result


async def validate_task_in_test(
    validator: DeepValidator,
    workspace_sid: str,
    task_sid: str,
    options: ValidationOptions | None = None,
) -> ValidationResult:
    result = await validator.validate_task(workspace_sid, task_sid, _test_options(options))
    if not result.success:
        raise _assertion_error("Task validation failed", result)
    return result


# =============================================================================
# Failure report
# =============================================================================


@dataclass
class FailureReport:
    """
    Structured report for a failed validation.

    Built from a ValidationResult and, when the failure went through a flow,
    its Diagnosis.
    """

    name: str  # Validator name within the flow, e.g. "call"
    result: ValidationResult
    diagnosis: Diagnosis | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        result = self.result
        return {
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "summary": self._generate_summary(),
            "resource": {
                "type": result.resource_type.value,
                "sid": result.resource_sid,
                "status": result.primary_status,
            },
            "duration_ms": result.duration_ms,
            "errors": result.errors,
            "warnings": result.warnings,
            "failed_checks": {
                name: {"message": check.message, "data": check.data}
                for name, check in result.failed_checks.items()
            },
            "diagnosis": {
                "pattern_id": self.diagnosis.pattern_id,
                "root_cause": self.diagnosis.root_cause.model_dump(),
                "suggested_fixes": [f.model_dump() for f in self.diagnosis.suggested_fixes],
                "is_known_pattern": self.diagnosis.is_known_pattern,
                "previous_occurrences": self.diagnosis.previous_occurrences,
            } if self.diagnosis else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def save(self, directory: Path | str = "test-results/validation-reports") -> Path:
        """Save report to a JSON file and return the path."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        timestamp = self.created_at.strftime("%Y%m%d_%H%M%S")
        filepath = directory / f"{self.name}_{self.result.resource_sid}_{timestamp}.json"
        filepath.write_text(self.to_json())
        return filepath

    def _generate_summary(self) -> str:
        parts = []
        if self.diagnosis:
            parts.append(f"Root cause: {self.diagnosis.root_cause.category}")
        if self.result.errors:
            parts.append(f"{len(self.result.errors)} error(s)")
        if self.result.warnings:
            parts.append(f"{len(self.result.warnings)} warning(s)")
        if self.diagnosis and self.diagnosis.is_known_pattern:
            parts.append(f"Seen {self.diagnosis.previous_occurrences} time(s) before")
        return " | ".join(parts) if parts else "Unknown failure"

    def to_markdown(self) -> str:
        result = self.result
        md = f"""# Validation Failure Report

## Validator: `{self.name}`

**Resource:** {result.resource_type.value} `{result.resource_sid}`
**Status:** {result.primary_status}
**Duration:** {result.duration_ms}ms
**Summary:** {self._generate_summary()}

---
"""
        if result.failed_checks:
            md += "\n## Failed Checks\n\n"
            for name, check in result.failed_checks.items():
                md += f"- **{name}**: {check.message}\n"

        if result.warnings:
            md += "\n## Warnings\n\n"
            for warning in result.warnings[:10]:
                md += f"- {warning}\n"

        if self.diagnosis:
            md += f"\n## Diagnosis `{self.diagnosis.pattern_id}`\n\n"
            md += f"{self.diagnosis.root_cause.description}\n"
            for fix in self.diagnosis.suggested_fixes:
                md += f"\n### {fix.description} ({fix.action_type}, {fix.confidence:.0%})\n\n"
                for step in fix.steps:
                    md += f"1. {step}\n"

        return md
