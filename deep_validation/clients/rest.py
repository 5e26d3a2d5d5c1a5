"""
Twilio REST adapter implementing the VendorClient interface.

Features:
- Connection pooling via a shared httpx.AsyncClient
- Retry with exponential backoff and jitter on transport failures (tenacity)
- Error responses mapped to VendorApiError with the vendor error code
- Payloads parsed into typed records before leaving the adapter

Usage:
    async with TwilioRestClient() as client:
        validator = DeepValidator(client)
        result = await validator.validate_message("SM...")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from deep_validation.core.config import Settings, get_settings
from deep_validation.core.exceptions import VendorApiError, VendorTransportError
from deep_validation.core.logging import get_logger

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

logger = get_logger("clients.rest")


API_BASE = "https://api.twilio.com/2010-04-01"
VERIFY_BASE = "https://verify.twilio.com/v2"
TASKROUTER_BASE = "https://taskrouter.twilio.com/v1"
MONITOR_BASE = "https://monitor.twilio.com/v1"
INSIGHTS_BASE = "https://insights.twilio.com/v1"
SYNC_BASE = "https://sync.twilio.com/v1"
SERVERLESS_BASE = "https://serverless.twilio.com/v1"
STUDIO_BASE = "https://studio.twilio.com/v2"
INTELLIGENCE_BASE = "https://intelligence.twilio.com/v2"
MESSAGING_BASE = "https://messaging.twilio.com/v1"

SERVICE_URLS = {
    "intelligence": f"{INTELLIGENCE_BASE}/Services/{{sid}}",
    "sync": f"{SYNC_BASE}/Services/{{sid}}",
    "verify": f"{VERIFY_BASE}/Services/{{sid}}",
    "serverless": f"{SERVERLESS_BASE}/Services/{{sid}}",
    "messaging": f"{MESSAGING_BASE}/Services/{{sid}}",
    "taskrouter": f"{TASKROUTER_BASE}/Workspaces/{{sid}}",
}


def _transcript_from_payload(payload: Dict[str, Any]) -> TranscriptRecord:
    """Lift the source call sid out of the transcript channel metadata."""
    channel = payload.get("channel") or {}
    media = channel.get("media_properties") or {}
    data = dict(payload)
    data.setdefault("call_sid", media.get("source_sid"))
    return TranscriptRecord.model_validate(data)


class TwilioRestClient:
    """
    VendorClient backed by the Twilio REST API.

    Transport failures are retried with backoff; once retries are exhausted
    they surface as VendorTransportError. Non-2xx responses raise
    VendorApiError immediately (they are never retried).
    """

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings or get_settings()
        self.account_sid = account_sid or self._settings.twilio_account_sid
        auth_token = auth_token or self._settings.twilio_auth_token
        if not self.account_sid or not auth_token:
            raise ValueError("Twilio account SID and auth token are required")

        self._http = httpx.AsyncClient(
            auth=(self.account_sid, auth_token),
            timeout=httpx.Timeout(self._settings.http_timeout, connect=5.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=transport,
        )

    async def __aenter__(self) -> "TwilioRestClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    async def _get(self, url: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.http_max_retries),
                wait=wait_exponential_jitter(
                    initial=self._settings.http_retry_delay,
                    max=self._settings.http_retry_max_delay,
                ),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._http.get(url, params=params)
        except httpx.TransportError as e:
            logger.warning(f"Transport failure for GET {url}: {e}")
            raise VendorTransportError(
                f"Could not reach {url}: {e}", details={"url": url}
            ) from e

        if response.is_error:
            raise self._api_error(response)

        try:
            return response.json()
        except ValueError as e:
            raise VendorTransportError(
                f"Malformed response from {url}", details={"url": url}
            ) from e

    @staticmethod
    def _api_error(response: httpx.Response) -> VendorApiError:
        body: Dict[str, Any] = {}
        try:
            body = response.json()
        except ValueError:
            pass
        return VendorApiError(
            body.get("message") or f"HTTP {response.status_code}",
            status=response.status_code,
            code=body.get("code"),
            more_info=body.get("more_info"),
        )

    async def _list(
        self, url: str, key: str, params: Dict[str, Any] | None = None
    ) -> List[Dict[str, Any]]:
        payload = await self._get(url, params)
        return list(payload.get(key) or [])

    @property
    def _account_url(self) -> str:
        return f"{API_BASE}/Accounts/{self.account_sid}"

    # -------------------------------------------------------------------------
    # Core resources
    # -------------------------------------------------------------------------

    async def fetch_message(self, sid: str) -> MessageRecord:
        return MessageRecord.model_validate(
            await self._get(f"{self._account_url}/Messages/{sid}.json")
        )

    async def fetch_call(self, sid: str) -> CallRecord:
        return CallRecord.model_validate(
            await self._get(f"{self._account_url}/Calls/{sid}.json")
        )

    async def fetch_verification(self, service_sid: str, sid: str) -> VerificationRecord:
        return VerificationRecord.model_validate(
            await self._get(f"{VERIFY_BASE}/Services/{service_sid}/Verifications/{sid}")
        )

    async def fetch_conference(self, sid: str) -> ConferenceRecord:
        return ConferenceRecord.model_validate(
            await self._get(f"{self._account_url}/Conferences/{sid}.json")
        )

    async def fetch_recording(self, sid: str) -> RecordingRecord:
        return RecordingRecord.model_validate(
            await self._get(f"{self._account_url}/Recordings/{sid}.json")
        )

    # -------------------------------------------------------------------------
    # TaskRouter
    # -------------------------------------------------------------------------

    async def fetch_task(self, workspace_sid: str, sid: str) -> TaskRecord:
        return TaskRecord.model_validate(
            await self._get(f"{TASKROUTER_BASE}/Workspaces/{workspace_sid}/Tasks/{sid}")
        )

    async def list_task_reservations(
        self, workspace_sid: str, task_sid: str
    ) -> List[ReservationRecord]:
        rows = await self._list(
            f"{TASKROUTER_BASE}/Workspaces/{workspace_sid}/Tasks/{task_sid}/Reservations",
            "reservations",
        )
        return [ReservationRecord.model_validate(r) for r in rows]

    async def list_task_events(
        self, workspace_sid: str, task_sid: str, limit: int = 20
    ) -> List[TaskEventRecord]:
        rows = await self._list(
            f"{TASKROUTER_BASE}/Workspaces/{workspace_sid}/Events",
            "events",
            {"TaskSid": task_sid, "PageSize": limit},
        )
        return [TaskEventRecord.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Monitor / Insights
    # -------------------------------------------------------------------------

    async def list_alerts(
        self,
        start_date: datetime,
        limit: int = 50,
        log_level: Optional[str] = None,
    ) -> List[AlertRecord]:
        rows = await self._list(
            f"{MONITOR_BASE}/Alerts",
            "alerts",
            {
                "StartDate": start_date.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "LogLevel": log_level,
                "PageSize": limit,
            },
        )
        return [AlertRecord.model_validate(r) for r in rows]

    async def list_call_events(self, call_sid: str, limit: int = 50) -> List[CallEventRecord]:
        rows = await self._list(
            f"{INSIGHTS_BASE}/Voice/{call_sid}/Events", "events", {"PageSize": limit}
        )
        return [CallEventRecord.model_validate(r) for r in rows]

    async def fetch_call_summary(self, call_sid: str) -> CallSummaryRecord:
        return CallSummaryRecord.model_validate(
            await self._get(f"{INSIGHTS_BASE}/Voice/{call_sid}/Summary")
        )

    async def fetch_conference_summary(self, conference_sid: str) -> ConferenceSummaryRecord:
        return ConferenceSummaryRecord.model_validate(
            await self._get(f"{INSIGHTS_BASE}/Conferences/{conference_sid}")
        )

    async def list_conference_participant_summaries(
        self, conference_sid: str, limit: int = 50
    ) -> List[ParticipantSummaryRecord]:
        rows = await self._list(
            f"{INSIGHTS_BASE}/Conferences/{conference_sid}/Participants",
            "participants",
            {"PageSize": limit},
        )
        return [ParticipantSummaryRecord.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def fetch_sync_document(self, service_sid: str, name: str) -> SyncDocumentRecord:
        return SyncDocumentRecord.model_validate(
            await self._get(f"{SYNC_BASE}/Services/{service_sid}/Documents/{name}")
        )

    async def list_sync_list_items(
        self, service_sid: str, name: str, limit: int = 100
    ) -> List[SyncListItemRecord]:
        rows = await self._list(
            f"{SYNC_BASE}/Services/{service_sid}/Lists/{name}/Items",
            "items",
            {"PageSize": limit},
        )
        return [SyncListItemRecord.model_validate(r) for r in rows]

    async def list_sync_map_items(
        self, service_sid: str, name: str, limit: int = 100
    ) -> List[SyncMapItemRecord]:
        rows = await self._list(
            f"{SYNC_BASE}/Services/{service_sid}/Maps/{name}/Items",
            "items",
            {"PageSize": limit},
        )
        return [SyncMapItemRecord.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Serverless / Studio
    # -------------------------------------------------------------------------

    async def list_function_logs(
        self,
        service_sid: str,
        environment: str = "production",
        limit: int = 100,
        function_sid: Optional[str] = None,
    ) -> List[FunctionLogRecord]:
        rows = await self._list(
            f"{SERVERLESS_BASE}/Services/{service_sid}/Environments/{environment}/Logs",
            "logs",
            {"PageSize": limit, "FunctionSid": function_sid},
        )
        return [FunctionLogRecord.model_validate(r) for r in rows]

    async def list_studio_executions(
        self, flow_sid: str, limit: int = 20
    ) -> List[StudioExecutionRecord]:
        rows = await self._list(
            f"{STUDIO_BASE}/Flows/{flow_sid}/Executions",
            "executions",
            {"PageSize": limit},
        )
        return [StudioExecutionRecord.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Intelligence
    # -------------------------------------------------------------------------

    async def fetch_transcript(self, sid: str) -> TranscriptRecord:
        return _transcript_from_payload(
            await self._get(f"{INTELLIGENCE_BASE}/Transcripts/{sid}")
        )

    async def list_transcripts(
        self,
        service_sid: str,
        call_sid: Optional[str] = None,
        limit: int = 20,
    ) -> List[TranscriptRecord]:
        rows = await self._list(
            f"{INTELLIGENCE_BASE}/Transcripts",
            "transcripts",
            {"ServiceSid": service_sid, "SourceSid": call_sid, "PageSize": limit},
        )
        return [_transcript_from_payload(r) for r in rows]

    async def list_transcript_sentences(
        self, transcript_sid: str, limit: int = 1000
    ) -> List[SentenceRecord]:
        rows = await self._list(
            f"{INTELLIGENCE_BASE}/Transcripts/{transcript_sid}/Sentences",
            "sentences",
            {"PageSize": limit},
        )
        return [SentenceRecord.model_validate(r) for r in rows]

    async def list_operator_results(
        self, transcript_sid: str, limit: int = 50
    ) -> List[OperatorResultRecord]:
        rows = await self._list(
            f"{INTELLIGENCE_BASE}/Transcripts/{transcript_sid}/OperatorResults",
            "operator_results",
            {"PageSize": limit},
        )
        return [OperatorResultRecord.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Account prerequisites
    # -------------------------------------------------------------------------

    async def fetch_service(self, product: str, sid: str) -> ServiceRecord:
        template = SERVICE_URLS.get(product)
        if template is None:
            raise ValueError(f"Unknown product: {product}")
        return ServiceRecord.model_validate(await self._get(template.format(sid=sid)))

    async def list_incoming_phone_numbers(self, phone_number: str) -> List[PhoneNumberRecord]:
        rows = await self._list(
            f"{self._account_url}/IncomingPhoneNumbers.json",
            "incoming_phone_numbers",
            {"PhoneNumber": phone_number},
        )
        return [PhoneNumberRecord.model_validate(r) for r in rows]
