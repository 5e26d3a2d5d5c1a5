"""Vendor client interface consumed by the validation engine."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from .records import (
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


class VendorClient(Protocol):
    """Async vendor API used by checks and validators.

    Implementations raise ``VendorApiError`` for error responses (checks turn
    those into failed or not-yet-available checks) and ``VendorTransportError``
    when the API cannot be reached (propagated to the caller).
    """

    # Core resources
    async def fetch_message(self, sid: str) -> MessageRecord:
        ...

    async def fetch_call(self, sid: str) -> CallRecord:
        ...

    async def fetch_verification(
        self, service_sid: str, sid: str
    ) -> VerificationRecord:
        ...

    async def fetch_conference(self, sid: str) -> ConferenceRecord:
        ...

    async def fetch_recording(self, sid: str) -> RecordingRecord:
        ...

    # TaskRouter
    async def fetch_task(self, workspace_sid: str, sid: str) -> TaskRecord:
        ...

    async def list_task_reservations(
        self, workspace_sid: str, task_sid: str
    ) -> List[ReservationRecord]:
        ...

    async def list_task_events(
        self, workspace_sid: str, task_sid: str, limit: int = 20
    ) -> List[TaskEventRecord]:
        ...

    # Monitor / Insights
    async def list_alerts(
        self,
        start_date: datetime,
        limit: int = 50,
        log_level: Optional[str] = None,
    ) -> List[AlertRecord]:
        ...

    async def list_call_events(
        self, call_sid: str, limit: int = 50
    ) -> List[CallEventRecord]:
        ...

    async def fetch_call_summary(self, call_sid: str) -> CallSummaryRecord:
        ...

    async def fetch_conference_summary(
        self, conference_sid: str
    ) -> ConferenceSummaryRecord:
        ...

    async def list_conference_participant_summaries(
        self, conference_sid: str, limit: int = 50
    ) -> List[ParticipantSummaryRecord]:
        ...

    # Sync
    async def fetch_sync_document(
        self, service_sid: str, name: str
    ) -> SyncDocumentRecord:
        ...

    async def list_sync_list_items(
        self, service_sid: str, name: str, limit: int = 100
    ) -> List[SyncListItemRecord]:
        ...

    async def list_sync_map_items(
        self, service_sid: str, name: str, limit: int = 100
    ) -> List[SyncMapItemRecord]:
        ...

    # Serverless / Studio
    async def list_function_logs(
        self,
        service_sid: str,
        environment: str = "production",
        limit: int = 100,
        function_sid: Optional[str] = None,
    ) -> List[FunctionLogRecord]:
        ...

    async def list_studio_executions(
        self, flow_sid: str, limit: int = 20
    ) -> List[StudioExecutionRecord]:
        ...

    # Intelligence
    async def fetch_transcript(self, sid: str) -> TranscriptRecord:
        ...

    async def list_transcripts(
        self,
        service_sid: str,
        call_sid: Optional[str] = None,
        limit: int = 20,
    ) -> List[TranscriptRecord]:
        ...

    async def list_transcript_sentences(
        self, transcript_sid: str, limit: int = 1000
    ) -> List[SentenceRecord]:
        ...

    async def list_operator_results(
        self, transcript_sid: str, limit: int = 50
    ) -> List[OperatorResultRecord]:
        ...

    # Account prerequisites
    async def fetch_service(self, product: str, sid: str) -> ServiceRecord:
        """Fetch a product service or workspace (sync, verify, taskrouter...)."""
        ...

    async def list_incoming_phone_numbers(
        self, phone_number: str
    ) -> List[PhoneNumberRecord]:
        ...
