"""Typed vendor records.

Raw API payloads are parsed into these models at the client boundary so
that checks never see loosely-typed response shapes. Unknown fields are
ignored; every field the validators read has an explicit default.
"""

from __future__ import annotations

import json
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VendorRecord(BaseModel):
    """Base for all vendor records."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# =============================================================================
# Messaging / Voice / Verify
# =============================================================================


class MessageRecord(VendorRecord):
    sid: str
    status: str
    to: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    date_created: Optional[datetime] = None

    @field_validator("date_created", mode="before")
    @classmethod
    def parse_date_created(cls, v: Any) -> Any:
        # The 2010-04-01 API formats dates as RFC 2822
        if isinstance(v, str) and v and not v[:4].isdigit():
            return parsedate_to_datetime(v)
        return v


class CallRecord(VendorRecord):
    sid: str
    status: str
    to: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    duration: Optional[int] = None
    answered_by: Optional[str] = None

    @field_validator("duration", mode="before")
    @classmethod
    def parse_duration(cls, v: Any) -> Optional[int]:
        # The REST API returns duration as a string
        if v in (None, ""):
            return None
        return int(v)


class VerificationRecord(VendorRecord):
    sid: str
    service_sid: Optional[str] = None
    status: str
    channel: Optional[str] = None
    to: Optional[str] = None
    valid: Optional[bool] = None


class ConferenceRecord(VendorRecord):
    sid: str
    status: str
    friendly_name: Optional[str] = None
    region: Optional[str] = None
    reason_conference_ended: Optional[str] = None
    call_sid_ending_conference: Optional[str] = None


class RecordingRecord(VendorRecord):
    sid: str
    status: str
    call_sid: Optional[str] = None
    conference_sid: Optional[str] = None
    duration: Optional[int] = None
    channels: Optional[int] = None
    source: Optional[str] = None
    uri: Optional[str] = None
    error_code: Optional[int] = None

    @field_validator("duration", mode="before")
    @classmethod
    def parse_duration(cls, v: Any) -> Optional[int]:
        if v in (None, ""):
            return None
        return int(v)

    @property
    def media_url(self) -> Optional[str]:
        if not self.uri:
            return None
        return f"https://api.twilio.com{self.uri.replace('.json', '.mp3')}"


# =============================================================================
# TaskRouter
# =============================================================================


class TaskRecord(VendorRecord):
    sid: str
    assignment_status: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    age: Optional[int] = None
    priority: Optional[int] = None
    reason: Optional[str] = None
    task_queue_sid: Optional[str] = None
    workflow_sid: Optional[str] = None

    @field_validator("attributes", mode="before")
    @classmethod
    def parse_attributes(cls, v: Any) -> Dict[str, Any]:
        # Task attributes are delivered as a JSON string
        if v in (None, ""):
            return {}
        if isinstance(v, str):
            parsed = json.loads(v)
            return parsed if isinstance(parsed, dict) else {"value": parsed}
        return v


class ReservationRecord(VendorRecord):
    sid: str
    reservation_status: str
    worker_sid: Optional[str] = None
    worker_name: Optional[str] = None


class TaskEventRecord(VendorRecord):
    sid: str
    event_type: str
    description: Optional[str] = None
    event_date: Optional[datetime] = None


# =============================================================================
# Monitor / Insights
# =============================================================================


class AlertRecord(VendorRecord):
    sid: str
    log_level: str
    error_code: Optional[str] = None
    alert_text: Optional[str] = None
    resource_sid: Optional[str] = None
    service_sid: Optional[str] = None
    date_created: Optional[datetime] = None

    @field_validator("error_code", mode="before")
    @classmethod
    def stringify_code(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class CallEventRecord(VendorRecord):
    name: Optional[str] = None
    level: Optional[str] = None
    edge: Optional[str] = None
    group: Optional[str] = None
    timestamp: Optional[str] = None


class CallSummaryRecord(VendorRecord):
    call_sid: str
    call_type: Optional[str] = None
    call_state: Optional[str] = None
    processing_state: Optional[str] = None
    duration: Optional[int] = None
    connect_duration: Optional[int] = None
    tags: List[str] = Field(default_factory=list)


class ConferenceSummaryRecord(VendorRecord):
    conference_sid: str
    status: Optional[str] = None
    processing_state: Optional[str] = None
    duration_seconds: Optional[int] = None
    max_participants: Optional[int] = None
    unique_participants: Optional[int] = None
    end_reason: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class ParticipantSummaryRecord(VendorRecord):
    participant_sid: Optional[str] = None
    call_sid: Optional[str] = None
    label: Optional[str] = None
    call_status: Optional[str] = None
    processing_state: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @property
    def quality_issues(self) -> List[str]:
        return list(self.properties.get("quality_issues") or [])


# =============================================================================
# Sync / Serverless / Studio
# =============================================================================


class SyncDocumentRecord(VendorRecord):
    sid: Optional[str] = None
    unique_name: Optional[str] = None
    revision: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class SyncListItemRecord(VendorRecord):
    index: int
    data: Dict[str, Any] = Field(default_factory=dict)


class SyncMapItemRecord(VendorRecord):
    key: str
    data: Dict[str, Any] = Field(default_factory=dict)


class FunctionLogRecord(VendorRecord):
    sid: str
    message: Optional[str] = None
    level: Optional[str] = None
    function_sid: Optional[str] = None
    date_created: Optional[datetime] = None


class StudioExecutionRecord(VendorRecord):
    sid: str
    status: str
    context: Dict[str, Any] = Field(default_factory=dict)

    def triggered_by(self, resource_sid: str) -> bool:
        """True when the execution was started by the given call or message."""
        trigger = self.context.get("trigger") or {}
        for kind in ("call", "message"):
            if (trigger.get(kind) or {}).get("sid") == resource_sid:
                return True
        return False


# =============================================================================
# Intelligence
# =============================================================================


class TranscriptRecord(VendorRecord):
    sid: str
    service_sid: Optional[str] = None
    status: str
    call_sid: Optional[str] = None
    language_code: Optional[str] = None
    duration: Optional[int] = None
    redaction: Optional[bool] = None


class SentenceRecord(VendorRecord):
    transcript: str = ""
    media_channel: Optional[int] = None
    sentence_index: Optional[int] = None
    confidence: Optional[float] = None


class OperatorResultRecord(VendorRecord):
    operator_sid: Optional[str] = None
    operator_type: Optional[str] = None
    name: Optional[str] = None
    text_generation_results: Optional[Any] = None
    predicted_label: Optional[str] = None
    predicted_probability: Optional[float] = None
    extract_match: Optional[bool] = None
    extract_results: Optional[Any] = None


# =============================================================================
# Account
# =============================================================================


class ServiceRecord(VendorRecord):
    sid: str
    friendly_name: Optional[str] = None


class PhoneNumberRecord(VendorRecord):
    sid: str
    phone_number: str
