"""
Per-resource deep validation.

A 200 from the vendor API only means the request was accepted. Each
``validate_*`` method cross-references the resource status with the
debugger, analytics summaries, callback logs and sub-resources, and folds the
checks into one ``ValidationResult``:

- checks run concurrently and land in the result in a fixed order
- a check that does not apply is recorded as ``None`` and never counts
- ``success`` is the conjunction of the present checks
- ``errors`` are the messages of failed checks, ``warnings`` the soft issues

Usage:
    validator = DeepValidator(client)
    result = await validator.validate_message("SM...", ValidationOptions(wait_for_terminal=True))
    assert result.success, result.errors
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Dict, Iterable, List, Mapping, Optional, Sequence

from deep_validation.clients.base import VendorClient
from deep_validation.core.config import Settings, get_settings
from deep_validation.core.exceptions import VendorApiError
from deep_validation.core.logging import get_logger

from . import checks as c
from .conversation import TwoWayConversationCorrelator, TwoWayOptions
from .models import (
    Check,
    PrerequisiteOutcome,
    PrerequisiteResult,
    ResourceType,
    TwoWayValidationResult,
    ValidationOptions,
    ValidationResult,
)
from .poller import (
    CALL_TERMINAL_STATUSES,
    CONFERENCE_TERMINAL_STATUSES,
    RECORDING_TERMINAL_STATUSES,
    TRANSCRIPT_TERMINAL_STATUSES,
    status_in,
    wait_for_terminal,
)
from .prerequisites import PrerequisiteCheck

logger = get_logger("validation.deep_validator")


async def _skipped() -> None:
    return None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _primary_status(check: Optional[Check]) -> str:
    if check is not None and isinstance(check.data, dict) and check.data.get("status"):
        return str(check.data["status"])
    return "unknown"


class DeepValidator:
    """Validates vendor resources beyond the initial API acknowledgement.

    One instance serves one validation session; the client is injected.
    """

    def __init__(self, client: VendorClient, settings: Settings | None = None):
        self.client = client
        self.settings = settings or get_settings()
        self._correlator = TwoWayConversationCorrelator(client, self.settings)

    def _options(self, options: ValidationOptions | None) -> ValidationOptions:
        return options or ValidationOptions.from_settings(self.settings)

    async def _gather(self, named: Mapping[str, Awaitable[Optional[Check]]]) -> Dict[str, Optional[Check]]:
        """Run checks concurrently and key the outcomes in declaration order."""
        outcomes = await asyncio.gather(*named.values())
        return dict(zip(named.keys(), outcomes))

    def _finish(
        self,
        resource_type: ResourceType,
        resource_sid: str,
        checks: Dict[str, Optional[Check]],
        start: float,
        primary_status: Optional[str] = None,
        extra_warnings: Iterable[str] = (),
    ) -> ValidationResult:
        result = ValidationResult.from_checks(
            resource_type,
            resource_sid,
            primary_status or _primary_status(checks.get("resource_status")),
            checks,
            warnings=[*c.collect_warnings(checks), *extra_warnings],
            duration_ms=_elapsed_ms(start),
        )
        logger.debug(
            f"{resource_type.value} {resource_sid}: success={result.success} "
            f"errors={len(result.errors)} warnings={len(result.warnings)}"
        )
        return result

    # =========================================================================
    # Core resources
    # =========================================================================

    async def validate_message(
        self, message_sid: str, options: ValidationOptions | None = None
    ) -> ValidationResult:
        opts = self._options(options)
        start = time.monotonic()
        checks = await self._gather({
            "resource_status": c.check_message_status(self.client, message_sid, opts),
            "debugger_alerts": c.check_debugger_alerts(
                self.client, message_sid, opts.alert_lookback_seconds
            ),
            "sync_callbacks": (
                c.check_sync_callbacks(self.client, "message", message_sid, opts.sync_service_sid)
                if opts.sync_service_sid else _skipped()
            ),
            "function_logs": (
                c.check_function_logs(self.client, message_sid, opts.serverless_service_sid)
                if opts.serverless_service_sid else _skipped()
            ),
        })
        return self._finish(ResourceType.MESSAGE, message_sid, checks, start)

    async def validate_call(
        self, call_sid: str, options: ValidationOptions | None = None
    ) -> ValidationResult:
        opts = self._options(options)
        start = time.monotonic()
        first = await self._gather({
            "resource_status": c.check_call_status(self.client, call_sid, opts),
            "debugger_alerts": c.check_debugger_alerts(
                self.client, call_sid, opts.alert_lookback_seconds
            ),
            "call_events": c.check_call_events(self.client, call_sid),
            "sync_callbacks": (
                c.check_sync_callbacks(self.client, "call", call_sid, opts.sync_service_sid)
                if opts.sync_service_sid else _skipped()
            ),
            "function_logs": (
                c.check_function_logs(self.client, call_sid, opts.serverless_service_sid)
                if opts.serverless_service_sid else _skipped()
            ),
            "studio_logs": (
                c.check_studio_execution(self.client, call_sid, opts.studio_flow_sid)
                if opts.studio_flow_sid else _skipped()
            ),
        })

        # Voice Insights only exist once the call has ended
        status = _primary_status(first["resource_status"])
        insights = (
            await c.check_voice_insights(self.client, call_sid)
            if status in CALL_TERMINAL_STATUSES else None
        )
        checks = {
            "resource_status": first["resource_status"],
            "debugger_alerts": first["debugger_alerts"],
            "call_events": first["call_events"],
            "voice_insights": insights,
            "sync_callbacks": first["sync_callbacks"],
            "function_logs": first["function_logs"],
            "studio_logs": first["studio_logs"],
        }
        return self._finish(ResourceType.CALL, call_sid, checks, start)

    async def validate_verification(
        self,
        service_sid: str,
        verification_sid: str,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        opts = self._options(options)
        start = time.monotonic()
        checks = await self._gather({
            "resource_status": c.check_verification_status(
                self.client, service_sid, verification_sid, opts
            ),
            "debugger_alerts": c.check_debugger_alerts(
                self.client, verification_sid, opts.alert_lookback_seconds
            ),
            "sync_callbacks": (
                c.check_sync_callbacks(
                    self.client, "verification", verification_sid, opts.sync_service_sid
                )
                if opts.sync_service_sid else _skipped()
            ),
        })
        return self._finish(ResourceType.VERIFICATION, verification_sid, checks, start)

    async def validate_task(
        self,
        workspace_sid: str,
        task_sid: str,
        options: ValidationOptions | None = None,
        *,
        expected_status: Optional[str] = None,
        expected_attribute_keys: Optional[Sequence[str]] = None,
        require_attribute_keys: bool = False,
        include_reservations: bool = False,
        include_events: bool = False,
        event_limit: int = 20,
    ) -> ValidationResult:
        opts = self._options(options)
        start = time.monotonic()

        async def status_and_attributes() -> tuple[Check, Optional[Check]]:
            try:
                task = await self.client.fetch_task(workspace_sid, task_sid)
            except VendorApiError as e:
                return c._fetch_failed("resource_status", "task", e), None
            attributes = (
                c.check_task_attributes(
                    task, expected_attribute_keys, required=require_attribute_keys
                )
                if expected_attribute_keys else None
            )
            return c.task_status_check(task, expected_status), attributes

        (status, attributes), rest = await asyncio.gather(
            status_and_attributes(),
            self._gather({
                "debugger_alerts": c.check_debugger_alerts(
                    self.client, task_sid, opts.alert_lookback_seconds
                ),
                "task_reservations": (
                    c.check_task_reservations(self.client, workspace_sid, task_sid)
                    if include_reservations else _skipped()
                ),
                "task_events": (
                    c.check_task_events(self.client, workspace_sid, task_sid, event_limit)
                    if include_events else _skipped()
                ),
                "sync_callbacks": (
                    c.check_sync_callbacks(self.client, "task", task_sid, opts.sync_service_sid)
                    if opts.sync_service_sid else _skipped()
                ),
            }),
        )
        checks = {
            "resource_status": status,
            "debugger_alerts": rest["debugger_alerts"],
            "task_attributes": attributes,
            "task_reservations": rest["task_reservations"],
            "task_events": rest["task_events"],
            "sync_callbacks": rest["sync_callbacks"],
        }
        return self._finish(ResourceType.TASK, task_sid, checks, start)

    async def validate_conference(
        self, conference_sid: str, options: ValidationOptions | None = None
    ) -> ValidationResult:
        """
        Validate a conference including Conference Insights.

        Insights summaries are not available immediately after the conference
        ends: partial data arrives within ~2 minutes and is locked after ~30.
        A not-found summary inside that window passes with a timing note.
        """
        opts = self._options(options)
        start = time.monotonic()
        first = await self._gather({
            "resource_status": c.check_conference_status(self.client, conference_sid, opts),
            "debugger_alerts": c.check_debugger_alerts(
                self.client, conference_sid, opts.alert_lookback_seconds
            ),
            "sync_callbacks": (
                c.check_sync_callbacks(
                    self.client, "conference", conference_sid, opts.sync_service_sid
                )
                if opts.sync_service_sid else _skipped()
            ),
            "function_logs": (
                c.check_function_logs(self.client, conference_sid, opts.serverless_service_sid)
                if opts.serverless_service_sid else _skipped()
            ),
        })

        insights: Dict[str, Optional[Check]] = {
            "conference_insights": None,
            "participant_insights": None,
        }
        if _primary_status(first["resource_status"]) in CONFERENCE_TERMINAL_STATUSES:
            insights = await self._gather({
                "conference_insights": c.check_conference_insights(self.client, conference_sid),
                "participant_insights": c.check_participant_insights(self.client, conference_sid),
            })

        checks = {
            "resource_status": first["resource_status"],
            "debugger_alerts": first["debugger_alerts"],
            **insights,
            "sync_callbacks": first["sync_callbacks"],
            "function_logs": first["function_logs"],
        }
        return self._finish(ResourceType.CONFERENCE, conference_sid, checks, start)

    # =========================================================================
    # Account-wide logs
    # =========================================================================

    async def validate_debugger(
        self,
        *,
        lookback_seconds: Optional[int] = None,
        log_level: Optional[str] = None,
        limit: int = 100,
        resource_sid: Optional[str] = None,
        service_sid: Optional[str] = None,
    ) -> ValidationResult:
        """Account-wide debugger sweep for errors raised after a 200 OK."""
        start = time.monotonic()
        lookback = lookback_seconds or self.settings.debugger_lookback_seconds
        end_date = datetime.now(timezone.utc)
        start_date = end_date - timedelta(seconds=lookback)
        subject = resource_sid or service_sid or "account"

        try:
            alerts = await self.client.list_alerts(
                start_date=start_date, limit=limit, log_level=log_level
            )
        except VendorApiError as e:
            check = Check(
                name="debugger_alerts",
                passed=False,
                message=f"Could not list debugger alerts: {e.message}",
                data={"error_code": e.code},
            )
            return self._finish(
                ResourceType.DEBUGGER, subject, {"debugger_alerts": check}, start,
                primary_status="unavailable",
            )

        if resource_sid:
            alerts = [
                a for a in alerts
                if a.resource_sid == resource_sid or (a.alert_text and resource_sid in a.alert_text)
            ]
        if service_sid:
            alerts = [a for a in alerts if a.service_sid == service_sid]

        errors = [a for a in alerts if a.log_level == "error"]
        warns = [a for a in alerts if a.log_level == "warning"]
        check = Check(
            name="debugger_alerts",
            passed=not errors,
            message=(
                f"Found {len(errors)} errors, {len(warns)} warnings: "
                + "; ".join(f"{a.error_code}: {a.alert_text}" for a in errors)
                if errors
                else f"Found {len(errors)} errors, {len(warns)} warnings"
            ),
            data={
                "total_alerts": len(alerts),
                "error_alerts": len(errors),
                "warning_alerts": len(warns),
                "alerts": [
                    {
                        "sid": a.sid,
                        "error_code": a.error_code,
                        "log_level": a.log_level,
                        "alert_text": a.alert_text,
                        "resource_sid": a.resource_sid,
                        "service_sid": a.service_sid,
                        "date_created": a.date_created,
                    }
                    for a in alerts
                ],
                "time_range": {"start": start_date, "end": end_date},
                "warnings": [f"{a.error_code}: {a.alert_text}" for a in warns],
            },
        )
        return self._finish(
            ResourceType.DEBUGGER, subject, {"debugger_alerts": check}, start,
            primary_status="has-errors" if errors else "clean",
        )

    async def validate_serverless_functions(
        self,
        serverless_service_sid: str,
        *,
        environment: str = "production",
        lookback_seconds: Optional[int] = None,
        function_sid: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
        search_text: Optional[str] = None,
    ) -> ValidationResult:
        """Error-level console output from deployed Functions in a time window."""
        start = time.monotonic()
        lookback = lookback_seconds or self.settings.debugger_lookback_seconds
        end_date = datetime.now(timezone.utc)
        start_date = end_date - timedelta(seconds=lookback)

        try:
            logs = await self.client.list_function_logs(
                serverless_service_sid, environment, limit=limit, function_sid=function_sid
            )
        except VendorApiError as e:
            check = Check(
                name="function_logs",
                passed=False,
                message=f"Could not list Function logs: {e.message}",
                data={"error_code": e.code},
            )
            return self._finish(
                ResourceType.SERVERLESS, serverless_service_sid, {"function_logs": check}, start,
                primary_status="unavailable",
            )

        # The logs endpoint has no date filter
        logs = [
            log for log in logs
            if log.date_created is None or start_date <= log.date_created <= end_date
        ]
        if level:
            logs = [log for log in logs if log.level == level]
        if search_text:
            needle = search_text.lower()
            logs = [log for log in logs if log.message and needle in log.message.lower()]

        errors = [log for log in logs if log.level == "error"]
        warns = [log for log in logs if log.level == "warn"]
        by_function: Dict[str, Dict[str, int]] = {}
        for log in logs:
            stats = by_function.setdefault(
                log.function_sid or "unknown", {"total": 0, "errors": 0, "warns": 0}
            )
            stats["total"] += 1
            if log.level == "error":
                stats["errors"] += 1
            elif log.level == "warn":
                stats["warns"] += 1

        check = Check(
            name="function_logs",
            passed=not errors,
            message=(
                f"Logs: {len(logs)} total, {len(errors)} errors, {len(warns)} warnings"
                + (": " + "; ".join(log.message or "" for log in errors)[:500] if errors else "")
            ),
            data={
                "total_logs": len(logs),
                "error_logs": len(errors),
                "warn_logs": len(warns),
                "by_function": by_function,
                "time_range": {"start": start_date, "end": end_date},
                "warnings": [f"Function warning: {log.message}" for log in warns],
            },
        )
        return self._finish(
            ResourceType.SERVERLESS, serverless_service_sid, {"function_logs": check}, start,
            primary_status="has-errors" if errors else "clean",
        )

    # =========================================================================
    # Media and intelligence
    # =========================================================================

    async def validate_recording(
        self,
        recording_sid: str,
        *,
        wait_for_completed: bool = True,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> ValidationResult:
        start = time.monotonic()
        fetch = lambda: self.client.fetch_recording(recording_sid)  # noqa: E731
        try:
            if wait_for_completed:
                recording = (await wait_for_terminal(
                    fetch,
                    status_in(RECORDING_TERMINAL_STATUSES),
                    timeout=timeout or self.settings.recording_timeout,
                    poll_interval=poll_interval or self.settings.poll_interval,
                )).value
            else:
                recording = await fetch()
        except VendorApiError as e:
            check = c._fetch_failed("resource_status", "recording", e)
            return self._finish(
                ResourceType.RECORDING, recording_sid, {"resource_status": check}, start,
                primary_status="error",
            )

        status = recording.status
        if status in ("failed", "absent"):
            message = f"Recording {status}: {recording.error_code or 'unknown error'}"
        else:
            message = f"Recording status: {status}"
        check = Check(
            name="resource_status",
            passed=status == "completed",
            message=message,
            data={
                "status": status,
                "call_sid": recording.call_sid,
                "conference_sid": recording.conference_sid,
                "duration": recording.duration,
                "channels": recording.channels,
                "source": recording.source,
                "media_url": recording.media_url,
                "error_code": recording.error_code,
            },
        )
        return self._finish(ResourceType.RECORDING, recording_sid, {"resource_status": check}, start)

    async def validate_transcript(
        self,
        transcript_sid: str,
        *,
        wait_for_completed: bool = True,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        check_sentences: bool = True,
    ) -> ValidationResult:
        start = time.monotonic()
        fetch = lambda: self.client.fetch_transcript(transcript_sid)  # noqa: E731
        try:
            if wait_for_completed:
                transcript = (await wait_for_terminal(
                    fetch,
                    status_in(TRANSCRIPT_TERMINAL_STATUSES),
                    timeout=timeout or self.settings.transcript_timeout,
                    poll_interval=poll_interval or self.settings.transcript_poll_interval,
                )).value
            else:
                transcript = await fetch()
        except VendorApiError as e:
            check = c._fetch_failed("resource_status", "transcript", e)
            return self._finish(
                ResourceType.TRANSCRIPT, transcript_sid, {"resource_status": check}, start,
                primary_status="error",
            )

        status = transcript.status
        status_check = Check(
            name="resource_status",
            passed=status == "completed",
            message=f"Transcript {status}" if status != "completed" else "Transcript completed",
            data={
                "status": status,
                "service_sid": transcript.service_sid,
                "language_code": transcript.language_code,
                "duration": transcript.duration,
                "redaction_enabled": transcript.redaction,
            },
        )

        sentences_check: Optional[Check] = None
        if check_sentences and status == "completed":
            try:
                sentences = await self.client.list_transcript_sentences(transcript_sid)
            except VendorApiError as e:
                sentences_check = c._fetch_failed("sentences", "transcript sentences", e)
            else:
                sentences_check = Check(
                    name="sentences",
                    passed=bool(sentences),
                    message=(
                        f"Transcript has {len(sentences)} sentences"
                        if sentences else "Transcript completed but has no sentences"
                    ),
                    data={"sentence_count": len(sentences)},
                )

        checks = {"resource_status": status_check, "sentences": sentences_check}
        return self._finish(ResourceType.TRANSCRIPT, transcript_sid, checks, start)

    async def validate_language_operator(
        self,
        transcript_sid: str,
        *,
        operator_type: Optional[str] = None,
        operator_name: Optional[str] = None,
        require_results: bool = True,
    ) -> ValidationResult:
        start = time.monotonic()
        try:
            results = await self.client.list_operator_results(transcript_sid, limit=50)
        except VendorApiError as e:
            check = c._fetch_failed("operator_results", "operator results", e)
            return self._finish(
                ResourceType.OPERATOR, transcript_sid, {"operator_results": check}, start,
                primary_status="error",
            )

        if operator_type:
            results = [r for r in results if r.operator_type == operator_type]
        if operator_name:
            results = [r for r in results if r.name == operator_name]

        passed = bool(results) or not require_results
        check = Check(
            name="operator_results",
            passed=passed,
            message=(
                f"{len(results)} operator results"
                if results else "No operator results found for transcript"
            ),
            data={
                "operator_results": [r.model_dump() for r in results],
                "warnings": [] if results or require_results else ["No operator results found"],
            },
        )
        return self._finish(
            ResourceType.OPERATOR, transcript_sid, {"operator_results": check}, start,
            primary_status="has-results" if results else "empty",
        )

    async def validate_two_way(self, options: TwoWayOptions) -> TwoWayValidationResult:
        return await self._correlator.validate_two_way(options)

    # =========================================================================
    # Sync sub-resources
    # =========================================================================

    async def _with_debugger(
        self,
        structure: Awaitable[Check],
        name: str,
        check_debugger: bool,
        lookback_seconds: Optional[int],
    ) -> Dict[str, Optional[Check]]:
        lookback = lookback_seconds or self.settings.alert_lookback_seconds
        return await self._gather({
            "structure": structure,
            "debugger_alerts": (
                c.check_debugger_alerts(self.client, name, lookback)
                if check_debugger else _skipped()
            ),
        })

    async def validate_sync_document(
        self,
        service_sid: str,
        document_name: str,
        *,
        expected_keys: Iterable[str] = (),
        expected_types: Optional[Mapping[str, str]] = None,
        strict_keys: bool = False,
        required: bool = False,
        check_debugger: bool = False,
        lookback_seconds: Optional[int] = None,
    ) -> ValidationResult:
        start = time.monotonic()
        checks = await self._with_debugger(
            c.check_document_structure(
                self.client, service_sid, document_name,
                expected_keys=expected_keys, expected_types=expected_types,
                strict_keys=strict_keys, required=required,
            ),
            document_name, check_debugger, lookback_seconds,
        )
        status = "valid" if checks["structure"] and checks["structure"].passed else "invalid"
        return self._finish(ResourceType.DOCUMENT, document_name, checks, start, primary_status=status)

    async def validate_sync_list(
        self,
        service_sid: str,
        list_name: str,
        *,
        min_items: Optional[int] = None,
        max_items: Optional[int] = None,
        exact_items: Optional[int] = None,
        expected_item_keys: Iterable[str] = (),
        required: bool = False,
        check_debugger: bool = False,
        lookback_seconds: Optional[int] = None,
    ) -> ValidationResult:
        start = time.monotonic()
        checks = await self._with_debugger(
            c.check_list_items(
                self.client, service_sid, list_name,
                min_items=min_items, max_items=max_items, exact_items=exact_items,
                expected_item_keys=expected_item_keys, required=required,
            ),
            list_name, check_debugger, lookback_seconds,
        )
        status = "valid" if checks["structure"] and checks["structure"].passed else "invalid"
        return self._finish(ResourceType.LIST, list_name, checks, start, primary_status=status)

    async def validate_sync_map(
        self,
        service_sid: str,
        map_name: str,
        *,
        expected_keys: Iterable[str] = (),
        expected_value_keys: Iterable[str] = (),
        required: bool = False,
        check_debugger: bool = False,
        lookback_seconds: Optional[int] = None,
    ) -> ValidationResult:
        start = time.monotonic()
        checks = await self._with_debugger(
            c.check_map_items(
                self.client, service_sid, map_name,
                expected_keys=expected_keys, expected_value_keys=expected_value_keys,
                required=required,
            ),
            map_name, check_debugger, lookback_seconds,
        )
        status = "valid" if checks["structure"] and checks["structure"].passed else "invalid"
        return self._finish(ResourceType.MAP, map_name, checks, start, primary_status=status)

    # =========================================================================
    # Prerequisites
    # =========================================================================

    async def validate_prerequisites(
        self,
        prerequisites: Sequence[PrerequisiteCheck],
        *,
        stop_on_first_failure: bool = False,
    ) -> PrerequisiteResult:
        """Run prerequisite checks in order; optional ones only inform."""
        start = time.monotonic()
        outcomes: List[PrerequisiteOutcome] = []
        errors: List[str] = []

        for prerequisite in prerequisites:
            ok, message = await prerequisite.check()
            outcomes.append(PrerequisiteOutcome(
                name=prerequisite.name, ok=ok, message=message, required=prerequisite.required,
            ))
            if not ok and prerequisite.required:
                errors.append(f"{prerequisite.name}: {message}")
                if stop_on_first_failure:
                    break

        return PrerequisiteResult(
            success=all(o.ok for o in outcomes if o.required),
            results=outcomes,
            errors=errors,
            validation_duration_ms=_elapsed_ms(start),
        )
