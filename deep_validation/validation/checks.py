"""
Check functions.

Each check fetches from one data source and reduces the vendor records to a
``Check``. Vendor error responses (``VendorApiError``) become failed checks,
or passed "not yet available" checks for analytics endpoints that are still
inside their propagation window. Anything else raised by the client
propagates.

Soft issues that should surface as warnings without failing the check are
listed under ``data["warnings"]``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from deep_validation.clients.base import VendorClient
from deep_validation.clients.records import TaskRecord
from deep_validation.core.exceptions import VendorApiError
from deep_validation.core.logging import get_logger

from .models import Check, ValidationOptions
from .poller import (
    CALL_TERMINAL_STATUSES,
    CONFERENCE_TERMINAL_STATUSES,
    MESSAGE_TERMINAL_STATUSES,
    VERIFICATION_TERMINAL_STATUSES,
    status_in,
    wait_for_terminal,
)

logger = get_logger("validation.checks")

R = TypeVar("R")


MESSAGE_SUCCESS_STATUSES = frozenset({"delivered", "sent", "queued", "read"})
CALL_SUCCESS_STATUSES = frozenset({"completed", "in-progress", "ringing", "queued"})
VERIFICATION_SUCCESS_STATUSES = frozenset({"pending", "approved"})
TASK_SUCCESS_STATUSES = frozenset({"pending", "reserved", "assigned", "completed"})
CONFERENCE_SUCCESS_STATUSES = frozenset({"init", "in-progress", "completed"})

# Conference end reasons that indicate a normal hang-up
NORMAL_CONFERENCE_END_REASONS = frozenset({
    "participant-with-end-conference-on-exit-left",
    "last-participant-left",
    "conference-ended-via-api",
})

INSIGHTS_TIMING_NOTE = (
    "timing: partial data ~2 min after completion, final data locks after ~30 min"
)

# Names for expected value types in structural checks
TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
}


def _has_error_tag(tags: Iterable[str]) -> bool:
    return any("error" in t.lower() or "failed" in t.lower() for t in tags)


async def _fetch_status(
    fetch: Callable[[], Awaitable[R]],
    terminal: frozenset[str],
    options: ValidationOptions,
) -> R:
    if not options.wait_for_terminal:
        return await fetch()
    polled = await wait_for_terminal(
        fetch,
        status_in(terminal),
        timeout=options.timeout,
        poll_interval=options.poll_interval,
    )
    return polled.value


def _fetch_failed(name: str, what: str, error: VendorApiError) -> Check:
    return Check(
        name=name,
        passed=False,
        message=f"Failed to fetch {what}: {error.message}",
        data={"status": None, "error_code": error.code, "http_status": error.status},
    )


# =============================================================================
# Resource status
# =============================================================================


async def check_message_status(
    client: VendorClient, sid: str, options: ValidationOptions
) -> Check:
    try:
        message = await _fetch_status(
            lambda: client.fetch_message(sid), MESSAGE_TERMINAL_STATUSES, options
        )
    except VendorApiError as e:
        return _fetch_failed("resource_status", "message", e)

    status = message.status
    data = {
        "status": status,
        "error_code": message.error_code,
        "error_message": message.error_message,
        "is_terminal": status in MESSAGE_TERMINAL_STATUSES,
    }
    if status in ("failed", "undelivered"):
        return Check(
            name="resource_status",
            passed=False,
            message=(
                f"Message {status}: {message.error_code or 'unknown'} - "
                f"{message.error_message or 'no details'}"
            ),
            data=data,
        )
    return Check(
        name="resource_status",
        passed=status in MESSAGE_SUCCESS_STATUSES,
        message=f"Message status: {status}",
        data=data,
    )


async def check_call_status(
    client: VendorClient, sid: str, options: ValidationOptions
) -> Check:
    try:
        call = await _fetch_status(
            lambda: client.fetch_call(sid), CALL_TERMINAL_STATUSES, options
        )
    except VendorApiError as e:
        return _fetch_failed("resource_status", "call", e)

    status = call.status
    passed = status in CALL_SUCCESS_STATUSES
    return Check(
        name="resource_status",
        passed=passed,
        message=f"Call status: {status}" if passed else f"Call {status}",
        data={
            "status": status,
            "duration": call.duration,
            "is_terminal": status in CALL_TERMINAL_STATUSES,
        },
    )


async def check_verification_status(
    client: VendorClient,
    service_sid: str,
    sid: str,
    options: ValidationOptions,
) -> Check:
    try:
        verification = await _fetch_status(
            lambda: client.fetch_verification(service_sid, sid),
            VERIFICATION_TERMINAL_STATUSES,
            options,
        )
    except VendorApiError as e:
        return _fetch_failed("resource_status", "verification", e)

    status = verification.status
    return Check(
        name="resource_status",
        passed=status in VERIFICATION_SUCCESS_STATUSES,
        message=f"Verification status: {status}",
        data={"status": status, "channel": verification.channel},
    )


async def check_conference_status(
    client: VendorClient, sid: str, options: ValidationOptions
) -> Check:
    try:
        conference = await _fetch_status(
            lambda: client.fetch_conference(sid), CONFERENCE_TERMINAL_STATUSES, options
        )
    except VendorApiError as e:
        return _fetch_failed("resource_status", "conference", e)

    status = conference.status
    return Check(
        name="resource_status",
        passed=status in CONFERENCE_SUCCESS_STATUSES,
        message=f"Conference status: {status}",
        data={
            "status": status,
            "friendly_name": conference.friendly_name,
            "region": conference.region,
            "reason_conference_ended": conference.reason_conference_ended,
            "call_sid_ending_conference": conference.call_sid_ending_conference,
        },
    )


def task_status_check(task: TaskRecord, expected_status: Optional[str] = None) -> Check:
    """Status verdict for an already fetched task."""
    status = task.assignment_status
    data = {
        "status": status,
        "age": task.age,
        "priority": task.priority,
        "reason": task.reason,
        "task_queue_sid": task.task_queue_sid,
    }
    if expected_status is not None and status != expected_status:
        return Check(
            name="resource_status",
            passed=False,
            message=f"Task status: {status} (expected {expected_status})",
            data=data,
        )
    return Check(
        name="resource_status",
        passed=status in TASK_SUCCESS_STATUSES,
        message=f"Task status: {status}",
        data=data,
    )


# =============================================================================
# Debugger and event logs
# =============================================================================


async def check_debugger_alerts(
    client: VendorClient, resource_sid: str, lookback_seconds: int
) -> Check:
    """Alerts that name the resource; only error-level alerts fail the check."""
    start_date = datetime.now(timezone.utc) - timedelta(seconds=lookback_seconds)
    try:
        alerts = await client.list_alerts(start_date=start_date, limit=50)
    except VendorApiError as e:
        return Check(
            name="debugger_alerts",
            passed=False,
            message=f"Could not check debugger: {e.message}",
            data={"alerts": [], "error_code": e.code},
        )

    related = [
        a for a in alerts
        if a.resource_sid == resource_sid or (a.alert_text and resource_sid in a.alert_text)
    ]
    summaries = [
        {"error_code": a.error_code, "alert_text": a.alert_text, "log_level": a.log_level}
        for a in related
    ]
    errors = [a for a in related if a.log_level == "error"]
    logger.debug(
        f"Debugger: {len(alerts)} alerts in window, {len(related)} related to {resource_sid}"
    )

    if errors:
        codes = ", ".join(a.error_code or "unknown" for a in errors)
        return Check(
            name="debugger_alerts",
            passed=False,
            message=f"Found {len(errors)} error alerts: {codes}",
            data={"alerts": summaries},
        )

    warnings = []
    if related:
        warnings.append(f"Found {len(related)} related non-error alerts")
    return Check(
        name="debugger_alerts",
        passed=True,
        message=f"Found {len(related)} non-error alerts" if related else "No alerts found",
        data={"alerts": summaries, "warnings": warnings},
    )


async def check_call_events(client: VendorClient, call_sid: str) -> Check:
    try:
        events = await client.list_call_events(call_sid, limit=50)
    except VendorApiError as e:
        if e.is_not_found:
            return Check(
                name="call_events",
                passed=True,
                message=f"Call events not yet available ({INSIGHTS_TIMING_NOTE})",
            )
        return Check(
            name="call_events",
            passed=False,
            message=f"Failed to fetch call events: {e.message}",
            data={"error_code": e.code},
        )

    errors = [
        e for e in events
        if (e.level or "").upper() == "ERROR" or "error" in (e.name or "")
    ]
    if errors:
        return Check(
            name="call_events",
            passed=False,
            message=f"Found {len(errors)} error events in call",
            data={"events": [e.model_dump() for e in errors]},
        )
    return Check(
        name="call_events",
        passed=True,
        message=f"{len(events)} call events, no errors",
        data={"event_count": len(events)},
    )


# =============================================================================
# Insights (analytics-class; a not-found response means "not yet")
# =============================================================================


async def check_voice_insights(client: VendorClient, call_sid: str) -> Check:
    try:
        summary = await client.fetch_call_summary(call_sid)
    except VendorApiError as e:
        if e.is_not_found:
            logger.debug(f"Call summary for {call_sid} not published yet")
            return Check(
                name="voice_insights",
                passed=True,
                message=f"Voice Insights not yet available ({INSIGHTS_TIMING_NOTE})",
            )
        return Check(
            name="voice_insights",
            passed=False,
            message=f"Failed to fetch Voice Insights: {e.message}",
            data={"error_code": e.code},
        )

    warnings = []
    if summary.processing_state == "partial":
        warnings.append("Voice Insights data is partial; final summary locks ~30 min after the call")
    data = {
        "processing_state": summary.processing_state,
        "duration": summary.duration,
        "connect_duration": summary.connect_duration,
        "call_type": summary.call_type,
        "tags": summary.tags,
        "warnings": warnings,
    }
    if _has_error_tag(summary.tags):
        return Check(
            name="voice_insights",
            passed=False,
            message=f"Voice Insights found issues: {', '.join(summary.tags)}",
            data=data,
        )
    return Check(
        name="voice_insights",
        passed=True,
        message=f"Voice Insights: {summary.processing_state or 'complete'}",
        data=data,
    )


async def check_conference_insights(client: VendorClient, conference_sid: str) -> Check:
    try:
        summary = await client.fetch_conference_summary(conference_sid)
    except VendorApiError as e:
        if e.is_not_found:
            return Check(
                name="conference_insights",
                passed=True,
                message=f"Conference Insights not yet available ({INSIGHTS_TIMING_NOTE})",
            )
        return Check(
            name="conference_insights",
            passed=False,
            message=f"Failed to fetch Conference Insights: {e.message}",
            data={"error_code": e.code},
        )

    partial = summary.processing_state == "partial"
    note = " (partial data - final in 30min)" if partial else ""
    abnormal_end = bool(summary.end_reason) and summary.end_reason not in NORMAL_CONFERENCE_END_REASONS
    data = {
        "processing_state": summary.processing_state,
        "duration_seconds": summary.duration_seconds,
        "max_participants": summary.max_participants,
        "unique_participants": summary.unique_participants,
        "end_reason": summary.end_reason,
        "tags": summary.tags,
        "warnings": [f"Conference Insights{note}"] if partial else [],
    }
    if abnormal_end or _has_error_tag(summary.tags):
        return Check(
            name="conference_insights",
            passed=False,
            message=f"Conference Insights found issues: {summary.end_reason}{note}",
            data=data,
        )
    return Check(
        name="conference_insights",
        passed=True,
        message=f"Conference Insights: {summary.processing_state or 'complete'}{note}",
        data=data,
    )


async def check_participant_insights(client: VendorClient, conference_sid: str) -> Check:
    try:
        participants = await client.list_conference_participant_summaries(conference_sid, limit=50)
    except VendorApiError as e:
        if e.is_not_found:
            return Check(
                name="participant_insights",
                passed=True,
                message=f"Conference participant insights not yet available ({INSIGHTS_TIMING_NOTE})",
            )
        return Check(
            name="participant_insights",
            passed=False,
            message=f"Failed to fetch participant insights: {e.message}",
            data={"error_code": e.code},
        )

    if not participants:
        return Check(
            name="participant_insights",
            passed=True,
            message="No participant insights available yet",
        )

    states = [p.processing_state for p in participants]
    all_complete = all(s == "complete" for s in states)
    note = "" if all_complete else " (some data still processing)"
    with_issues = [
        p for p in participants if p.call_status == "failed" or p.quality_issues
    ]
    data = {
        "total_participants": len(participants),
        "participants_with_issues": len(with_issues),
        "processing_states": states,
        "warnings": [] if all_complete else ["Participant insights still processing"],
    }
    if with_issues:
        return Check(
            name="participant_insights",
            passed=False,
            message=f"{len(with_issues)}/{len(participants)} participants had issues{note}",
            data=data,
        )
    return Check(
        name="participant_insights",
        passed=True,
        message=f"{len(participants)} participants, no issues detected{note}",
        data=data,
    )


# =============================================================================
# Callbacks, Functions, Studio
# =============================================================================


async def check_sync_callbacks(
    client: VendorClient,
    resource_type: str,
    resource_sid: str,
    sync_service_sid: str,
) -> Check:
    """Status callbacks recorded by the webhook handlers into a Sync document."""
    document_name = f"callbacks-{resource_type}-{resource_sid}"
    try:
        document = await client.fetch_sync_document(sync_service_sid, document_name)
    except VendorApiError as e:
        if e.is_not_found:
            return Check(
                name="sync_callbacks",
                passed=False,
                message="No callback data received (Sync document not found)",
                data={"document": document_name},
            )
        return Check(
            name="sync_callbacks",
            passed=False,
            message=f"Could not check Sync callbacks: {e.message}",
            data={"document": document_name, "error_code": e.code},
        )

    data = document.data
    error_count = data.get("errorCount") or 0
    if error_count > 0:
        return Check(
            name="sync_callbacks",
            passed=False,
            message=f"{error_count} errors in callbacks",
            data=data,
        )
    callbacks = data.get("callbacks") or []
    if any(c.get("errorCode") == "fallback_invoked" for c in callbacks if isinstance(c, dict)):
        return Check(
            name="sync_callbacks",
            passed=False,
            message="Fallback handler was invoked (primary webhook failed)",
            data=data,
        )
    return Check(
        name="sync_callbacks",
        passed=True,
        message=(
            f"Received {data.get('callbackCount') or 0} callbacks, "
            f"latest: {data.get('latestStatus') or 'unknown'}"
        ),
        data=data,
    )


async def check_function_logs(
    client: VendorClient, resource_sid: str, serverless_service_sid: str
) -> Check:
    try:
        logs = await client.list_function_logs(serverless_service_sid, "production", limit=100)
    except VendorApiError as e:
        return Check(
            name="function_logs",
            passed=False,
            message=f"Could not check Function logs: {e.message}",
            data={"error_code": e.code},
        )

    related = [log for log in logs if log.message and resource_sid in log.message]
    errors = [log for log in related if log.level == "error"]
    if errors:
        return Check(
            name="function_logs",
            passed=False,
            message=f"Found {len(errors)} Function errors",
            data={"logs": [{"message": log.message, "level": log.level} for log in errors]},
        )
    warns = [log for log in related if log.level == "warn"]
    return Check(
        name="function_logs",
        passed=True,
        message=f"{len(related)} related Function logs, no errors",
        data={
            "log_count": len(related),
            "warnings": [f"Function warning: {log.message}" for log in warns],
        },
    )


async def check_studio_execution(
    client: VendorClient, resource_sid: str, studio_flow_sid: str
) -> Check:
    try:
        executions = await client.list_studio_executions(studio_flow_sid, limit=20)
    except VendorApiError as e:
        return Check(
            name="studio_logs",
            passed=False,
            message=f"Could not check Studio executions: {e.message}",
            data={"error_code": e.code},
        )

    execution = next((e for e in executions if e.triggered_by(resource_sid)), None)
    if execution is None:
        return Check(name="studio_logs", passed=True, message="No related Studio execution found")

    data = {"execution_sid": execution.sid, "status": execution.status}
    if execution.status == "failed":
        return Check(
            name="studio_logs",
            passed=False,
            message=f"Studio execution failed: {execution.sid}",
            data=data,
        )
    return Check(name="studio_logs", passed=True, message=f"Studio execution {execution.status}", data=data)


# =============================================================================
# Structural checks
# =============================================================================


def compare_keys(
    data: Mapping[str, Any],
    expected_keys: Iterable[str] = (),
    expected_types: Optional[Mapping[str, str]] = None,
) -> Dict[str, List[str]]:
    """Split expected keys into found and missing and list type mismatches."""
    expected_types = expected_types or {}
    keys = list(dict.fromkeys([*expected_keys, *expected_types.keys()]))
    found = [k for k in keys if k in data]
    missing = [k for k in keys if k not in data]
    mismatches = []
    for key, type_name in expected_types.items():
        if key not in data:
            continue
        predicate = TYPE_CHECKS.get(type_name)
        if predicate is None:
            raise ValueError(f"Unknown expected type '{type_name}' for key '{key}'")
        if not predicate(data[key]):
            mismatches.append(f"{key} (expected {type_name}, got {type(data[key]).__name__})")
    return {"found": found, "missing": missing, "type_mismatches": mismatches}


def _keys_verdict(
    name: str,
    label: str,
    comparison: Dict[str, List[str]],
    *,
    required: bool,
    unexpected: Optional[List[str]] = None,
    extra_failures: Optional[List[str]] = None,
) -> Check:
    found, missing = comparison["found"], comparison["missing"]
    failures = list(extra_failures or [])
    warnings: List[str] = []

    if missing:
        if required:
            failures.append(f"{label} missing required keys: {', '.join(missing)}")
        else:
            warnings.append(f"{label} missing keys: {', '.join(missing)}")
    if comparison["type_mismatches"]:
        failures.append(f"{label} type mismatches: {', '.join(comparison['type_mismatches'])}")
    if unexpected:
        failures.append(f"{label} has unexpected keys: {', '.join(unexpected)}")

    data = {
        "found_keys": found,
        "missing_keys": missing,
        "type_mismatches": comparison["type_mismatches"],
        "unexpected_keys": list(unexpected or []),
        "warnings": warnings,
    }
    if failures:
        return Check(name=name, passed=False, message="; ".join(failures), data=data)
    total = len(found) + len(missing)
    return Check(
        name=name,
        passed=True,
        message=f"{label}: {len(found)}/{total} expected keys present",
        data=data,
    )


async def check_document_structure(
    client: VendorClient,
    service_sid: str,
    document_name: str,
    *,
    expected_keys: Iterable[str] = (),
    expected_types: Optional[Mapping[str, str]] = None,
    strict_keys: bool = False,
    required: bool = False,
) -> Check:
    try:
        document = await client.fetch_sync_document(service_sid, document_name)
    except VendorApiError as e:
        return _fetch_failed("document_structure", f"Sync document {document_name}", e)

    expected_keys = list(expected_keys)
    comparison = compare_keys(document.data, expected_keys, expected_types)
    unexpected: List[str] = []
    if strict_keys:
        allowed = set(expected_keys) | set((expected_types or {}).keys())
        unexpected = [k for k in document.data if k not in allowed]
    check = _keys_verdict(
        "document_structure",
        f"Document {document_name}",
        comparison,
        required=required,
        unexpected=unexpected,
    )
    return check.model_copy(update={"data": {**check.data, "revision": document.revision}})


async def check_list_items(
    client: VendorClient,
    service_sid: str,
    list_name: str,
    *,
    min_items: Optional[int] = None,
    max_items: Optional[int] = None,
    exact_items: Optional[int] = None,
    expected_item_keys: Iterable[str] = (),
    required: bool = False,
) -> Check:
    try:
        items = await client.list_sync_list_items(service_sid, list_name, limit=100)
    except VendorApiError as e:
        return _fetch_failed("list_items", f"Sync list {list_name}", e)

    count = len(items)
    failures = []
    # An exact count overrides min/max
    if exact_items is not None:
        if count != exact_items:
            failures.append(f"Expected exactly {exact_items} items, found {count}")
    else:
        if min_items is not None and count < min_items:
            failures.append(f"Expected at least {min_items} items, found {count}")
        if max_items is not None and count > max_items:
            failures.append(f"Expected at most {max_items} items, found {count}")

    expected_item_keys = list(expected_item_keys)
    missing: List[str] = []
    for item in items:
        result = compare_keys(item.data, expected_item_keys)
        missing.extend(f"item {item.index}: {k}" for k in result["missing"])
    found = [k for k in expected_item_keys if items and all(k in i.data for i in items)]

    check = _keys_verdict(
        "list_items",
        f"List {list_name}",
        {"found": found, "missing": missing, "type_mismatches": []},
        required=required,
        extra_failures=failures,
    )
    return check.model_copy(update={"data": {**check.data, "item_count": count}})


async def check_map_items(
    client: VendorClient,
    service_sid: str,
    map_name: str,
    *,
    expected_keys: Iterable[str] = (),
    expected_value_keys: Iterable[str] = (),
    required: bool = False,
) -> Check:
    try:
        items = await client.list_sync_map_items(service_sid, map_name, limit=100)
    except VendorApiError as e:
        return _fetch_failed("map_items", f"Sync map {map_name}", e)

    expected_value_keys = list(expected_value_keys)
    by_key = {item.key: item.data for item in items}
    comparison = compare_keys(by_key, expected_keys)
    for key, value in by_key.items():
        value_cmp = compare_keys(value, expected_value_keys)
        comparison["missing"].extend(f"{key}.{k}" for k in value_cmp["missing"])

    check = _keys_verdict("map_items", f"Map {map_name}", comparison, required=required)
    return check.model_copy(update={"data": {**check.data, "item_count": len(items)}})


def check_task_attributes(
    task: TaskRecord, expected_keys: Iterable[str], *, required: bool = False
) -> Check:
    comparison = compare_keys(task.attributes, expected_keys)
    return _keys_verdict("task_attributes", f"Task {task.sid} attributes", comparison, required=required)


async def check_task_reservations(
    client: VendorClient, workspace_sid: str, task_sid: str
) -> Check:
    try:
        reservations = await client.list_task_reservations(workspace_sid, task_sid)
    except VendorApiError as e:
        return _fetch_failed("task_reservations", "task reservations", e)

    statuses = [r.reservation_status for r in reservations]
    warnings = []
    if not reservations:
        warnings.append("Task has no reservations yet")
    return Check(
        name="task_reservations",
        passed=True,
        message=f"{len(reservations)} reservations: {', '.join(statuses) or 'none'}",
        data={
            "reservations": [
                {"sid": r.sid, "status": r.reservation_status, "worker_sid": r.worker_sid}
                for r in reservations
            ],
            "warnings": warnings,
        },
    )


async def check_task_events(
    client: VendorClient, workspace_sid: str, task_sid: str, limit: int = 20
) -> Check:
    try:
        events = await client.list_task_events(workspace_sid, task_sid, limit=limit)
    except VendorApiError as e:
        return _fetch_failed("task_events", "task events", e)

    failures = [e for e in events if "failed" in e.event_type or "error" in e.event_type]
    types = [e.event_type for e in events]
    if failures:
        return Check(
            name="task_events",
            passed=False,
            message=f"Task events include failures: {', '.join(e.event_type for e in failures)}",
            data={"event_types": types},
        )
    return Check(
        name="task_events",
        passed=True,
        message=f"{len(events)} task events",
        data={"event_types": types},
    )


def collect_warnings(checks: Mapping[str, Optional[Check]]) -> List[str]:
    """Soft issues reported by present checks, in check order."""
    warnings: List[str] = []
    for check in checks.values():
        if check is not None and isinstance(check.data, dict):
            warnings.extend(check.data.get("warnings") or [])
    return warnings
