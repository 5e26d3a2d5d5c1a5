"""Tests for the individual check functions."""

from __future__ import annotations

import pytest

from conftest import (
    CALL_SID,
    CONFERENCE_SID,
    MESSAGE_SID,
    SERVERLESS_SERVICE_SID,
    STUDIO_FLOW_SID,
    SYNC_SERVICE_SID,
    WORKSPACE_SID,
    FakeVendorClient,
)
from deep_validation.clients.records import (
    AlertRecord,
    CallSummaryRecord,
    ConferenceSummaryRecord,
    FunctionLogRecord,
    MessageRecord,
    ParticipantSummaryRecord,
    StudioExecutionRecord,
    SyncDocumentRecord,
    SyncListItemRecord,
    SyncMapItemRecord,
    TaskEventRecord,
    TaskRecord,
)
from deep_validation.core.exceptions import VendorApiError, VendorTransportError
from deep_validation.validation import checks
from deep_validation.validation.models import Check, ValidationOptions


# =============================================================================
# Resource status
# =============================================================================


class TestMessageStatus:
    """Tests for check_message_status."""

    @pytest.mark.asyncio
    async def test_queued_message_passes(self, fake_client: FakeVendorClient):
        """A queued message is accepted and passes."""
        fake_client.messages[MESSAGE_SID] = MessageRecord(sid=MESSAGE_SID, status="queued")
        check = await checks.check_message_status(fake_client, MESSAGE_SID, ValidationOptions())
        assert check.passed is True
        assert check.name == "resource_status"
        assert check.data["status"] == "queued"
        assert check.data["is_terminal"] is False

    @pytest.mark.asyncio
    async def test_undelivered_message_fails_with_error_code(self, fake_client: FakeVendorClient):
        """Undelivered messages fail and surface the vendor error."""
        fake_client.messages[MESSAGE_SID] = MessageRecord(
            sid=MESSAGE_SID, status="undelivered", error_code=30003, error_message="Unreachable"
        )
        check = await checks.check_message_status(fake_client, MESSAGE_SID, ValidationOptions())
        assert check.passed is False
        assert "30003" in check.message
        assert "Unreachable" in check.message
        assert check.data["error_code"] == 30003

    @pytest.mark.asyncio
    async def test_waits_for_terminal_status(self, fake_client: FakeVendorClient):
        """With wait_for_terminal the check reports the settled status."""
        fake_client.messages[MESSAGE_SID] = [
            MessageRecord(sid=MESSAGE_SID, status="queued"),
            MessageRecord(sid=MESSAGE_SID, status="sent"),
            MessageRecord(sid=MESSAGE_SID, status="delivered"),
        ]
        options = ValidationOptions(wait_for_terminal=True, timeout=1.0, poll_interval=0.01)
        check = await checks.check_message_status(fake_client, MESSAGE_SID, options)
        assert check.passed is True
        assert check.data["status"] == "delivered"
        assert fake_client.call_counts["fetch_message"] == 3

    @pytest.mark.asyncio
    async def test_missing_message_is_a_failed_check(self, fake_client: FakeVendorClient):
        """A 404 on the resource itself is a failure, not a timing note."""
        check = await checks.check_message_status(fake_client, MESSAGE_SID, ValidationOptions())
        assert check.passed is False
        assert check.message.startswith("Failed to fetch message")

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, fake_client: FakeVendorClient):
        """Transport failures are not converted into checks."""
        fake_client.fail_with("fetch_message", VendorTransportError("connection reset"))
        with pytest.raises(VendorTransportError):
            await checks.check_message_status(fake_client, MESSAGE_SID, ValidationOptions())


class TestTaskStatus:
    """Tests for task_status_check."""

    def test_expected_status_mismatch_fails(self):
        """An explicit expected status overrides the success set."""
        task = TaskRecord(sid="WT1", assignment_status="pending")
        check = checks.task_status_check(task, expected_status="assigned")
        assert check.passed is False
        assert "expected assigned" in check.message

    def test_canceled_task_fails(self):
        """Canceled is not a success status."""
        check = checks.task_status_check(TaskRecord(sid="WT1", assignment_status="canceled"))
        assert check.passed is False


# =============================================================================
# Debugger
# =============================================================================


class TestDebuggerAlerts:
    """Tests for check_debugger_alerts."""

    @pytest.mark.asyncio
    async def test_no_alerts_passes(self, fake_client: FakeVendorClient):
        """An empty debugger passes."""
        check = await checks.check_debugger_alerts(fake_client, CALL_SID, 120)
        assert check.passed is True
        assert check.message == "No alerts found"

    @pytest.mark.asyncio
    async def test_error_alert_for_resource_fails(self, fake_client: FakeVendorClient):
        """An error-level alert naming the resource fails the check."""
        fake_client.alerts = [
            AlertRecord(sid="NO1", log_level="error", error_code=11200, resource_sid=CALL_SID),
        ]
        check = await checks.check_debugger_alerts(fake_client, CALL_SID, 120)
        assert check.passed is False
        assert "11200" in check.message
        assert check.data["alerts"][0]["error_code"] == "11200"

    @pytest.mark.asyncio
    async def test_alert_text_mentioning_sid_counts(self, fake_client: FakeVendorClient):
        """Alerts are related when their text mentions the sid."""
        fake_client.alerts = [
            AlertRecord(sid="NO1", log_level="error", error_code="12100", alert_text=f"CallSid={CALL_SID}"),
        ]
        check = await checks.check_debugger_alerts(fake_client, CALL_SID, 120)
        assert check.passed is False

    @pytest.mark.asyncio
    async def test_warning_alerts_never_fail(self, fake_client: FakeVendorClient):
        """Warning-level alerts become warnings only."""
        fake_client.alerts = [
            AlertRecord(sid="NO1", log_level="warning", error_code="13227", resource_sid=CALL_SID),
        ]
        check = await checks.check_debugger_alerts(fake_client, CALL_SID, 120)
        assert check.passed is True
        assert check.data["warnings"] == ["Found 1 related non-error alerts"]

    @pytest.mark.asyncio
    async def test_unrelated_alerts_are_ignored(self, fake_client: FakeVendorClient):
        """Error alerts for other resources do not affect this resource."""
        fake_client.alerts = [
            AlertRecord(sid="NO1", log_level="error", error_code="11200", resource_sid=MESSAGE_SID),
        ]
        check = await checks.check_debugger_alerts(fake_client, CALL_SID, 120)
        assert check.passed is True


# =============================================================================
# Insights
# =============================================================================


class TestInsightsChecks:
    """Tests for the analytics-class checks."""

    @pytest.mark.asyncio
    async def test_voice_insights_not_found_is_not_yet_available(self, fake_client: FakeVendorClient):
        """A 404 summary inside the processing window passes with a timing note."""
        check = await checks.check_voice_insights(fake_client, CALL_SID)
        assert check.passed is True
        assert "not yet available" in check.message
        assert "~30 min" in check.message

    @pytest.mark.asyncio
    async def test_voice_insights_other_error_fails(self, fake_client: FakeVendorClient):
        """Non-404 errors from Insights are genuine failures."""
        fake_client.fail_with("fetch_call_summary", VendorApiError("Server error", status=500))
        check = await checks.check_voice_insights(fake_client, CALL_SID)
        assert check.passed is False

    @pytest.mark.asyncio
    async def test_voice_insights_partial_adds_warning(self, fake_client: FakeVendorClient):
        """Partial summaries pass with a warning."""
        fake_client.call_summaries[CALL_SID] = CallSummaryRecord(
            call_sid=CALL_SID, processing_state="partial"
        )
        check = await checks.check_voice_insights(fake_client, CALL_SID)
        assert check.passed is True
        assert check.data["warnings"]

    @pytest.mark.asyncio
    async def test_voice_insights_error_tags_fail(self, fake_client: FakeVendorClient):
        """Error tags on the summary fail the check."""
        fake_client.call_summaries[CALL_SID] = CallSummaryRecord(
            call_sid=CALL_SID, processing_state="complete", tags=["silence", "call_failed"]
        )
        check = await checks.check_voice_insights(fake_client, CALL_SID)
        assert check.passed is False

    @pytest.mark.asyncio
    async def test_call_events_not_found_passes(self, fake_client: FakeVendorClient):
        """Call events share the not-yet-available rule."""
        check = await checks.check_call_events(fake_client, CALL_SID)
        assert check.passed is True
        assert "not yet available" in check.message

    @pytest.mark.asyncio
    async def test_conference_abnormal_end_fails(self, fake_client: FakeVendorClient):
        """An end reason outside the normal set fails."""
        fake_client.conference_summaries[CONFERENCE_SID] = ConferenceSummaryRecord(
            conference_sid=CONFERENCE_SID, processing_state="complete", end_reason="conference-timeout"
        )
        check = await checks.check_conference_insights(fake_client, CONFERENCE_SID)
        assert check.passed is False
        assert "conference-timeout" in check.message

    @pytest.mark.asyncio
    async def test_conference_normal_end_passes(self, fake_client: FakeVendorClient):
        """A normal hang-up passes."""
        fake_client.conference_summaries[CONFERENCE_SID] = ConferenceSummaryRecord(
            conference_sid=CONFERENCE_SID, processing_state="complete", end_reason="last-participant-left"
        )
        check = await checks.check_conference_insights(fake_client, CONFERENCE_SID)
        assert check.passed is True

    @pytest.mark.asyncio
    async def test_participant_quality_issues_fail(self, fake_client: FakeVendorClient):
        """Participants with quality issues fail the check."""
        fake_client.participant_summaries[CONFERENCE_SID] = [
            ParticipantSummaryRecord(call_sid="CA1", processing_state="complete"),
            ParticipantSummaryRecord(
                call_sid="CA2", processing_state="complete", properties={"quality_issues": ["jitter"]}
            ),
        ]
        check = await checks.check_participant_insights(fake_client, CONFERENCE_SID)
        assert check.passed is False
        assert check.message.startswith("1/2 participants")


# =============================================================================
# Callbacks, Functions, Studio
# =============================================================================


class TestCallbackChecks:
    """Tests for sync_callbacks, function_logs and studio_logs."""

    @pytest.mark.asyncio
    async def test_missing_callback_document_fails(self, fake_client: FakeVendorClient):
        """No callback document means no callbacks arrived."""
        check = await checks.check_sync_callbacks(fake_client, "message", MESSAGE_SID, SYNC_SERVICE_SID)
        assert check.passed is False
        assert "not found" in check.message

    @pytest.mark.asyncio
    async def test_fallback_invocation_fails(self, fake_client: FakeVendorClient):
        """A fallback callback marks the primary webhook as failed."""
        fake_client.sync_documents[(SYNC_SERVICE_SID, f"callbacks-call-{CALL_SID}")] = SyncDocumentRecord(
            data={"callbackCount": 2, "callbacks": [{"errorCode": "fallback_invoked"}]}
        )
        check = await checks.check_sync_callbacks(fake_client, "call", CALL_SID, SYNC_SERVICE_SID)
        assert check.passed is False
        assert "Fallback" in check.message

    @pytest.mark.asyncio
    async def test_clean_callbacks_pass(self, fake_client: FakeVendorClient):
        """Callbacks without errors pass and report the latest status."""
        fake_client.sync_documents[(SYNC_SERVICE_SID, f"callbacks-message-{MESSAGE_SID}")] = SyncDocumentRecord(
            data={"callbackCount": 3, "latestStatus": "delivered", "errorCount": 0}
        )
        check = await checks.check_sync_callbacks(fake_client, "message", MESSAGE_SID, SYNC_SERVICE_SID)
        assert check.passed is True
        assert check.message == "Received 3 callbacks, latest: delivered"

    @pytest.mark.asyncio
    async def test_function_error_logs_fail(self, fake_client: FakeVendorClient):
        """Error logs mentioning the sid fail; others are ignored."""
        fake_client.function_logs[SERVERLESS_SERVICE_SID] = [
            FunctionLogRecord(sid="NO1", level="error", message=f"TypeError handling {CALL_SID}"),
            FunctionLogRecord(sid="NO2", level="error", message="unrelated failure"),
        ]
        check = await checks.check_function_logs(fake_client, CALL_SID, SERVERLESS_SERVICE_SID)
        assert check.passed is False
        assert check.message == "Found 1 Function errors"

    @pytest.mark.asyncio
    async def test_failed_studio_execution_fails(self, fake_client: FakeVendorClient):
        """A failed execution triggered by the call fails the check."""
        fake_client.studio_executions[STUDIO_FLOW_SID] = [
            StudioExecutionRecord(
                sid="FN1", status="failed", context={"trigger": {"call": {"sid": CALL_SID}}}
            ),
        ]
        check = await checks.check_studio_execution(fake_client, CALL_SID, STUDIO_FLOW_SID)
        assert check.passed is False
        assert check.name == "studio_logs"


# =============================================================================
# Structural checks
# =============================================================================


class TestStructuralChecks:
    """Tests for document, list, map and task attribute checks."""

    @pytest.mark.asyncio
    async def test_missing_optional_keys_warn(self, fake_client: FakeVendorClient):
        """Missing keys are warnings unless required."""
        fake_client.sync_documents[(SYNC_SERVICE_SID, "state")] = SyncDocumentRecord(data={"a": 1})
        check = await checks.check_document_structure(
            fake_client, SYNC_SERVICE_SID, "state", expected_keys=["a", "b"]
        )
        assert check.passed is True
        assert check.data["found_keys"] == ["a"]
        assert check.data["missing_keys"] == ["b"]
        assert check.data["warnings"]

    @pytest.mark.asyncio
    async def test_missing_required_keys_fail(self, fake_client: FakeVendorClient):
        """Required keys that are missing fail the check."""
        fake_client.sync_documents[(SYNC_SERVICE_SID, "state")] = SyncDocumentRecord(data={"a": 1})
        check = await checks.check_document_structure(
            fake_client, SYNC_SERVICE_SID, "state", expected_keys=["a", "b"], required=True
        )
        assert check.passed is False
        assert "b" in check.message

    @pytest.mark.asyncio
    async def test_type_mismatch_and_strict_keys_fail(self, fake_client: FakeVendorClient):
        """Wrong value types and unexpected keys fail in strict mode."""
        fake_client.sync_documents[(SYNC_SERVICE_SID, "state")] = SyncDocumentRecord(
            data={"count": "3", "extra": True}
        )
        check = await checks.check_document_structure(
            fake_client, SYNC_SERVICE_SID, "state",
            expected_types={"count": "number"}, strict_keys=True,
        )
        assert check.passed is False
        assert check.data["type_mismatches"] == ["count (expected number, got str)"]
        assert check.data["unexpected_keys"] == ["extra"]

    @pytest.mark.asyncio
    async def test_list_count_bounds(self, fake_client: FakeVendorClient):
        """Item counts outside the bounds fail."""
        fake_client.sync_lists[(SYNC_SERVICE_SID, "turns")] = [
            SyncListItemRecord(index=0, data={"role": "agent"}),
        ]
        check = await checks.check_list_items(fake_client, SYNC_SERVICE_SID, "turns", min_items=2)
        assert check.passed is False
        assert "Expected at least 2 items, found 1" in check.message

    @pytest.mark.asyncio
    async def test_exact_count_overrides_bounds(self, fake_client: FakeVendorClient):
        """exact_items takes precedence over min/max."""
        fake_client.sync_lists[(SYNC_SERVICE_SID, "turns")] = [
            SyncListItemRecord(index=i, data={}) for i in range(3)
        ]
        check = await checks.check_list_items(
            fake_client, SYNC_SERVICE_SID, "turns", min_items=5, exact_items=3
        )
        assert check.passed is True
        assert check.data["item_count"] == 3

    @pytest.mark.asyncio
    async def test_map_value_keys(self, fake_client: FakeVendorClient):
        """Missing value keys in map items are reported per key."""
        fake_client.sync_maps[(SYNC_SERVICE_SID, "sessions")] = [
            SyncMapItemRecord(key="s1", data={"status": "open"}),
        ]
        check = await checks.check_map_items(
            fake_client, SYNC_SERVICE_SID, "sessions",
            expected_keys=["s1"], expected_value_keys=["status", "owner"], required=True,
        )
        assert check.passed is False
        assert "s1.owner" in check.data["missing_keys"]

    def test_task_attributes_parsed_from_json(self):
        """Task attributes arrive as a JSON string and are compared as a dict."""
        task = TaskRecord(sid="WT1", assignment_status="pending", attributes='{"type": "support"}')
        check = checks.check_task_attributes(task, ["type", "language"])
        assert check.passed is True
        assert check.data["missing_keys"] == ["language"]

    def test_unknown_type_name_raises(self):
        """Unknown expected type names are a programming error."""
        with pytest.raises(ValueError, match="Unknown expected type"):
            checks.compare_keys({"a": 1}, expected_types={"a": "integer"})


class TestTaskSubresources:
    """Tests for task reservations and events."""

    @pytest.mark.asyncio
    async def test_no_reservations_warns(self, fake_client: FakeVendorClient):
        """A task without reservations passes with a warning."""
        check = await checks.check_task_reservations(fake_client, WORKSPACE_SID, "WT1")
        assert check.passed is True
        assert check.data["warnings"] == ["Task has no reservations yet"]

    @pytest.mark.asyncio
    async def test_failed_events_fail(self, fake_client: FakeVendorClient):
        """Failure events in the task history fail the check."""
        fake_client.task_events["WT1"] = [
            TaskEventRecord(sid="EV1", event_type="task.created"),
            TaskEventRecord(sid="EV2", event_type="reservation.failed"),
        ]
        check = await checks.check_task_events(fake_client, WORKSPACE_SID, "WT1")
        assert check.passed is False
        assert "reservation.failed" in check.message


class TestCollectWarnings:
    """Tests for collect_warnings."""

    def test_collects_in_check_order_and_skips_absent(self):
        """Warnings are gathered from present checks in order."""
        collected = checks.collect_warnings({
            "a": Check(name="a", passed=True, message="ok", data={"warnings": ["first"]}),
            "b": None,
            "c": Check(name="c", passed=True, message="ok", data=["not", "a", "dict"]),
            "d": Check(name="d", passed=False, message="bad", data={"warnings": ["second"]}),
        })
        assert collected == ["first", "second"]
