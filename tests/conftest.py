"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from deep_validation.clients.records import (
    AlertRecord,
    CallEventRecord,
    CallRecord,
    CallSummaryRecord,
    ConferenceRecord,
    ConferenceSummaryRecord,
    FunctionLogRecord,
    MessageRecord,
    OperatorResultRecord,
    ParticipantSummaryRecord,
    PhoneNumberRecord,
    RecordingRecord,
    ReservationRecord,
    SentenceRecord,
    ServiceRecord,
    StudioExecutionRecord,
    SyncDocumentRecord,
    SyncListItemRecord,
    SyncMapItemRecord,
    TaskEventRecord,
    TaskRecord,
    TranscriptRecord,
    VerificationRecord,
)
from deep_validation.core.config import Settings
from deep_validation.core.exceptions import NOT_FOUND_CODE, VendorApiError
from deep_validation.validation.deep_validator import DeepValidator


# Sids shaped like real ones so pattern normalisation applies
MESSAGE_SID = "SM" + "a" * 32
CALL_SID = "CA" + "b" * 32
PEER_CALL_SID = "CA" + "c" * 32
VERIFY_SERVICE_SID = "VA" + "d" * 32
VERIFICATION_SID = "VE" + "e" * 32
WORKSPACE_SID = "WS" + "f" * 32
TASK_SID = "WT" + "1" * 32
CONFERENCE_SID = "CF" + "2" * 32
RECORDING_SID = "RE" + "3" * 32
TRANSCRIPT_SID = "GT" + "4" * 32
PEER_TRANSCRIPT_SID = "GT" + "5" * 32
INTELLIGENCE_SERVICE_SID = "GA" + "6" * 32
SYNC_SERVICE_SID = "IS" + "7" * 32
SERVERLESS_SERVICE_SID = "ZS" + "8" * 32
STUDIO_FLOW_SID = "FW" + "9" * 32


def not_found(what: str) -> VendorApiError:
    return VendorApiError(
        f"The requested resource {what} was not found", status=404, code=NOT_FOUND_CODE
    )


def sentences(*texts: str) -> List[SentenceRecord]:
    return [
        SentenceRecord(transcript=t, media_channel=i % 2, sentence_index=i)
        for i, t in enumerate(texts)
    ]


class FakeVendorClient:
    """
    In-memory VendorClient.

    Single resources may be stored as a list of records: each fetch pops the
    next state until one remains, which simulates a status progressing
    between polls. Missing resources raise a 404 VendorApiError. Any method
    can be forced to raise via ``fail_with``.
    """

    def __init__(self) -> None:
        self.messages: Dict[str, Any] = {}
        self.calls: Dict[str, Any] = {}
        self.verifications: Dict[Tuple[str, str], Any] = {}
        self.conferences: Dict[str, Any] = {}
        self.recordings: Dict[str, Any] = {}
        self.tasks: Dict[Tuple[str, str], Any] = {}
        self.reservations: Dict[str, List[ReservationRecord]] = {}
        self.task_events: Dict[str, List[TaskEventRecord]] = {}
        self.alerts: List[AlertRecord] = []
        self.call_events: Dict[str, List[CallEventRecord]] = {}
        self.call_summaries: Dict[str, CallSummaryRecord] = {}
        self.conference_summaries: Dict[str, ConferenceSummaryRecord] = {}
        self.participant_summaries: Dict[str, List[ParticipantSummaryRecord]] = {}
        self.sync_documents: Dict[Tuple[str, str], SyncDocumentRecord] = {}
        self.sync_lists: Dict[Tuple[str, str], List[SyncListItemRecord]] = {}
        self.sync_maps: Dict[Tuple[str, str], List[SyncMapItemRecord]] = {}
        self.function_logs: Dict[str, List[FunctionLogRecord]] = {}
        self.studio_executions: Dict[str, List[StudioExecutionRecord]] = {}
        self.transcripts: Dict[str, Any] = {}
        self.transcript_sentences: Dict[str, List[SentenceRecord]] = {}
        self.operator_results: Dict[str, List[OperatorResultRecord]] = {}
        self.services: Dict[Tuple[str, str], ServiceRecord] = {}
        self.phone_numbers: List[PhoneNumberRecord] = []

        self.call_counts: Counter = Counter()
        self._failures: Dict[str, Exception] = {}

    def fail_with(self, method: str, error: Exception) -> None:
        self._failures[method] = error

    def _enter(self, method: str) -> None:
        self.call_counts[method] += 1
        if method in self._failures:
            raise self._failures[method]

    @staticmethod
    def _current(store: Dict[Any, Any], key: Any, what: str) -> Any:
        if key not in store:
            raise not_found(what)
        value = store[key]
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    # Core resources
    async def fetch_message(self, sid: str) -> MessageRecord:
        self._enter("fetch_message")
        return self._current(self.messages, sid, sid)

    async def fetch_call(self, sid: str) -> CallRecord:
        self._enter("fetch_call")
        return self._current(self.calls, sid, sid)

    async def fetch_verification(self, service_sid: str, sid: str) -> VerificationRecord:
        self._enter("fetch_verification")
        return self._current(self.verifications, (service_sid, sid), sid)

    async def fetch_conference(self, sid: str) -> ConferenceRecord:
        self._enter("fetch_conference")
        return self._current(self.conferences, sid, sid)

    async def fetch_recording(self, sid: str) -> RecordingRecord:
        self._enter("fetch_recording")
        return self._current(self.recordings, sid, sid)

    # TaskRouter
    async def fetch_task(self, workspace_sid: str, sid: str) -> TaskRecord:
        self._enter("fetch_task")
        return self._current(self.tasks, (workspace_sid, sid), sid)

    async def list_task_reservations(self, workspace_sid: str, task_sid: str) -> List[ReservationRecord]:
        self._enter("list_task_reservations")
        return list(self.reservations.get(task_sid, []))

    async def list_task_events(
        self, workspace_sid: str, task_sid: str, limit: int = 20
    ) -> List[TaskEventRecord]:
        self._enter("list_task_events")
        return list(self.task_events.get(task_sid, []))[:limit]

    # Monitor / Insights
    async def list_alerts(
        self, start_date: datetime, limit: int = 50, log_level: Optional[str] = None
    ) -> List[AlertRecord]:
        self._enter("list_alerts")
        alerts = [
            a for a in self.alerts
            if (a.date_created is None or a.date_created >= start_date)
            and (log_level is None or a.log_level == log_level)
        ]
        return alerts[:limit]

    async def list_call_events(self, call_sid: str, limit: int = 50) -> List[CallEventRecord]:
        self._enter("list_call_events")
        if call_sid not in self.call_events:
            raise not_found(f"events for {call_sid}")
        return list(self.call_events[call_sid])[:limit]

    async def fetch_call_summary(self, call_sid: str) -> CallSummaryRecord:
        self._enter("fetch_call_summary")
        return self._current(self.call_summaries, call_sid, f"summary for {call_sid}")

    async def fetch_conference_summary(self, conference_sid: str) -> ConferenceSummaryRecord:
        self._enter("fetch_conference_summary")
        return self._current(self.conference_summaries, conference_sid, conference_sid)

    async def list_conference_participant_summaries(
        self, conference_sid: str, limit: int = 50
    ) -> List[ParticipantSummaryRecord]:
        self._enter("list_conference_participant_summaries")
        if conference_sid not in self.participant_summaries:
            raise not_found(f"participants for {conference_sid}")
        return list(self.participant_summaries[conference_sid])[:limit]

    # Sync
    async def fetch_sync_document(self, service_sid: str, name: str) -> SyncDocumentRecord:
        self._enter("fetch_sync_document")
        return self._current(self.sync_documents, (service_sid, name), name)

    async def list_sync_list_items(
        self, service_sid: str, name: str, limit: int = 100
    ) -> List[SyncListItemRecord]:
        self._enter("list_sync_list_items")
        if (service_sid, name) not in self.sync_lists:
            raise not_found(name)
        return list(self.sync_lists[(service_sid, name)])[:limit]

    async def list_sync_map_items(
        self, service_sid: str, name: str, limit: int = 100
    ) -> List[SyncMapItemRecord]:
        self._enter("list_sync_map_items")
        if (service_sid, name) not in self.sync_maps:
            raise not_found(name)
        return list(self.sync_maps[(service_sid, name)])[:limit]

    # Serverless / Studio
    async def list_function_logs(
        self,
        service_sid: str,
        environment: str = "production",
        limit: int = 100,
        function_sid: Optional[str] = None,
    ) -> List[FunctionLogRecord]:
        self._enter("list_function_logs")
        logs = [
            log for log in self.function_logs.get(service_sid, [])
            if function_sid is None or log.function_sid == function_sid
        ]
        return logs[:limit]

    async def list_studio_executions(self, flow_sid: str, limit: int = 20) -> List[StudioExecutionRecord]:
        self._enter("list_studio_executions")
        return list(self.studio_executions.get(flow_sid, []))[:limit]

    # Intelligence
    async def fetch_transcript(self, sid: str) -> TranscriptRecord:
        self._enter("fetch_transcript")
        return self._current(self.transcripts, sid, sid)

    async def list_transcripts(
        self, service_sid: str, call_sid: Optional[str] = None, limit: int = 20
    ) -> List[TranscriptRecord]:
        self._enter("list_transcripts")
        found = []
        for value in self.transcripts.values():
            record = value[0] if isinstance(value, list) else value
            if record.service_sid and record.service_sid != service_sid:
                continue
            # Records without a call sid match any call
            if call_sid and record.call_sid and record.call_sid != call_sid:
                continue
            found.append(record)
        return found[:limit]

    async def list_transcript_sentences(self, transcript_sid: str, limit: int = 1000) -> List[SentenceRecord]:
        self._enter("list_transcript_sentences")
        return list(self.transcript_sentences.get(transcript_sid, []))[:limit]

    async def list_operator_results(self, transcript_sid: str, limit: int = 50) -> List[OperatorResultRecord]:
        self._enter("list_operator_results")
        if transcript_sid not in self.operator_results:
            raise not_found(transcript_sid)
        return list(self.operator_results[transcript_sid])[:limit]

    # Account
    async def fetch_service(self, product: str, sid: str) -> ServiceRecord:
        self._enter("fetch_service")
        return self._current(self.services, (product, sid), sid)

    async def list_incoming_phone_numbers(self, phone_number: str) -> List[PhoneNumberRecord]:
        self._enter("list_incoming_phone_numbers")
        return [n for n in self.phone_numbers if n.phone_number == phone_number]

    # Seeding helpers
    def add_transcript(
        self,
        sid: str,
        call_sid: str,
        texts: List[str],
        *,
        status: str = "completed",
        service_sid: str = INTELLIGENCE_SERVICE_SID,
    ) -> None:
        self.transcripts[sid] = TranscriptRecord(
            sid=sid, service_sid=service_sid, status=status, call_sid=call_sid
        )
        self.transcript_sentences[sid] = sentences(*texts)


@pytest.fixture
def settings() -> Settings:
    """Settings with polling shrunk to keep tests fast."""
    return Settings(
        _env_file=None,
        default_timeout=0.2,
        poll_interval=0.01,
        recording_timeout=0.2,
        transcript_timeout=0.2,
        transcript_poll_interval=0.01,
        message_flow_timeout=0.2,
        http_max_retries=2,
        http_retry_delay=0,
        http_retry_max_delay=0,
    )


@pytest.fixture
def fake_client() -> FakeVendorClient:
    return FakeVendorClient()


@pytest.fixture
def validator(fake_client: FakeVendorClient, settings: Settings) -> DeepValidator:
    return DeepValidator(fake_client, settings)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Empty project directory for learnings and pattern data."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)
