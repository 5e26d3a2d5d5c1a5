"""
Flow orchestration.

A flow runs several validators over the resources one end-to-end scenario
produced (a voice AI call, a verification, a routed task, a message) and
folds them into one FlowResult. Failed validators are diagnosed, and the
diagnoses optionally feed the learnings file and the pattern database.

Usage:
    orchestrator = FlowOrchestrator(client, OrchestratorConfig(project_root="."))
    flow = await orchestrator.validate_voice_ai_flow(VoiceAIFlowOptions(call_sid="CA..."))
    if not flow.all_passed:
        for diagnosis in flow.diagnoses:
            print(diagnosis.summary)
"""

from __future__ import annotations

import asyncio
import contextvars
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Dict, List, Optional

from pydantic import BaseModel, Field

from deep_validation.clients.base import VendorClient
from deep_validation.core.config import Settings, get_settings
from deep_validation.core.logging import bound_session, get_logger

from .conversation import TwoWayOptions
from .deep_validator import DeepValidator
from .diagnostics import DiagnosticBridge
from .learning import LearningCaptureEngine, default_session_id
from .models import (
    Diagnosis,
    FlowResult,
    FlowSummary,
    LearningEntry,
    PatternHistory,
    TwoWayValidationResult,
    ValidationOptions,
    ValidationResult,
)
from .patterns import PatternTracker

logger = get_logger("validation.orchestrator")

FLOW_DEBUGGER_LOOKBACK_SECONDS = 300
VOICE_CALL_TIMEOUT_SECONDS = 60.0

DEFAULT_FORBIDDEN_PATTERNS = [
    "application error",
    "we're sorry",
    "cannot be completed",
    "please try again later",
]


class OrchestratorConfig(BaseModel):
    project_root: Path
    session_id: str = Field(default_factory=default_session_id)
    capture_learnings: bool = True
    track_patterns: bool = True


class VoiceAIFlowOptions(BaseModel):
    """Resources produced by one voice AI call scenario."""

    call_sid: str
    peer_call_sid: Optional[str] = None
    recording_sid: Optional[str] = None
    transcript_sid: Optional[str] = None
    sms_sid: Optional[str] = None
    sync_document_name: Optional[str] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    serverless_service_sid: Optional[str] = None
    sync_service_sid: Optional[str] = None
    intelligence_service_sid: Optional[str] = None
    forbidden_patterns: Optional[List[str]] = None
    min_sentences_per_side: int = 3
    expected_turns: int = 4


class FlowOrchestrator:
    """Runs multi-resource validation flows and the failure learning loop."""

    def __init__(
        self,
        client: VendorClient,
        config: OrchestratorConfig,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = config
        self.validator = DeepValidator(client, self.settings)
        self.bridge = DiagnosticBridge()
        self.learning_capture = LearningCaptureEngine(
            config.project_root, session_id=config.session_id, settings=self.settings
        )
        self.pattern_tracker = PatternTracker(config.project_root, settings=self.settings)

    # =========================================================================
    # Flows
    # =========================================================================

    async def validate_voice_ai_flow(self, options: VoiceAIFlowOptions) -> FlowResult:
        start = time.monotonic()
        window_end = options.window_end or datetime.now(timezone.utc)
        window_start = options.window_start or window_end - timedelta(minutes=5)
        lookback = max(int((window_end - window_start).total_seconds()), 1)

        named: Dict[str, Awaitable[ValidationResult | TwoWayValidationResult]] = {
            "debugger": self.validator.validate_debugger(lookback_seconds=lookback),
            "call": self.validator.validate_call(
                options.call_sid,
                ValidationOptions.from_settings(
                    self.settings,
                    wait_for_terminal=True,
                    timeout=VOICE_CALL_TIMEOUT_SECONDS,
                    serverless_service_sid=options.serverless_service_sid,
                    sync_service_sid=options.sync_service_sid,
                ),
            ),
        }
        if options.recording_sid:
            named["recording"] = self.validator.validate_recording(options.recording_sid)
        if options.transcript_sid:
            named["transcript"] = self.validator.validate_transcript(options.transcript_sid)
        if options.intelligence_service_sid:
            named["two_way"] = self.validator.validate_two_way(TwoWayOptions(
                call_sid_a=options.call_sid,
                # Single-leg analysis unless the peer leg is known
                call_sid_b=options.peer_call_sid or options.call_sid,
                intelligence_service_sid=options.intelligence_service_sid,
                expected_turns=options.expected_turns,
                forbidden_patterns=(
                    options.forbidden_patterns
                    if options.forbidden_patterns is not None
                    else DEFAULT_FORBIDDEN_PATTERNS
                ),
                min_sentences_per_side=options.min_sentences_per_side,
            ))
        if options.serverless_service_sid:
            named["serverless"] = self.validator.validate_serverless_functions(
                options.serverless_service_sid, lookback_seconds=lookback
            )
        if options.sms_sid:
            named["message"] = self.validator.validate_message(
                options.sms_sid,
                ValidationOptions.from_settings(
                    self.settings,
                    wait_for_terminal=True,
                    timeout=self.settings.message_flow_timeout,
                    sync_service_sid=options.sync_service_sid,
                ),
            )
        if options.sync_service_sid and options.sync_document_name:
            named["sync_document"] = self.validator.validate_sync_document(
                options.sync_service_sid, options.sync_document_name
            )

        return await self._run(named, start)

    async def validate_verify_flow(self, service_sid: str, verification_sid: str) -> FlowResult:
        start = time.monotonic()
        return await self._run({
            "verification": self.validator.validate_verification(
                service_sid,
                verification_sid,
                ValidationOptions.from_settings(self.settings, wait_for_terminal=True),
            ),
            "debugger": self.validator.validate_debugger(
                lookback_seconds=FLOW_DEBUGGER_LOOKBACK_SECONDS
            ),
        }, start)

    async def validate_task_router_flow(self, workspace_sid: str, task_sid: str) -> FlowResult:
        start = time.monotonic()
        return await self._run({
            "task": self.validator.validate_task(workspace_sid, task_sid),
            "debugger": self.validator.validate_debugger(
                lookback_seconds=FLOW_DEBUGGER_LOOKBACK_SECONDS
            ),
        }, start)

    async def validate_messaging_flow(
        self,
        message_sid: str,
        sync_service_sid: Optional[str] = None,
        serverless_service_sid: Optional[str] = None,
    ) -> FlowResult:
        start = time.monotonic()
        return await self._run({
            "message": self.validator.validate_message(
                message_sid,
                ValidationOptions.from_settings(
                    self.settings,
                    wait_for_terminal=True,
                    timeout=self.settings.message_flow_timeout,
                    sync_service_sid=sync_service_sid,
                    serverless_service_sid=serverless_service_sid,
                ),
            ),
            "debugger": self.validator.validate_debugger(
                lookback_seconds=FLOW_DEBUGGER_LOOKBACK_SECONDS
            ),
        }, start)

    async def validate_conference_flow(self, conference_sid: str) -> FlowResult:
        start = time.monotonic()
        return await self._run({
            "conference": self.validator.validate_conference(
                conference_sid,
                ValidationOptions.from_settings(self.settings, wait_for_terminal=True),
            ),
            "debugger": self.validator.validate_debugger(
                lookback_seconds=FLOW_DEBUGGER_LOOKBACK_SECONDS
            ),
        }, start)

    # =========================================================================
    # Aggregation and the learning loop
    # =========================================================================

    async def _run(
        self,
        named: Dict[str, Awaitable[ValidationResult | TwoWayValidationResult]],
        start: float,
    ) -> FlowResult:
        # Exceptions from any validator propagate; no partial FlowResult is produced
        with bound_session(self.config.session_id):
            return await self._collect(named, start)

    async def _collect(
        self,
        named: Dict[str, Awaitable[ValidationResult | TwoWayValidationResult]],
        start: float,
    ) -> FlowResult:
        outcomes = await asyncio.gather(*named.values())

        results: Dict[str, ValidationResult] = {}
        for name, outcome in zip(named.keys(), outcomes):
            if isinstance(outcome, TwoWayValidationResult):
                outcome = outcome.to_validation_result()
            results[name] = outcome

        diagnoses: List[Diagnosis] = []
        learnings: List[LearningEntry] = []
        patterns: List[PatternHistory] = []
        for name, result in results.items():
            if not result.success:
                await self._process_failure(name, result, diagnoses, learnings, patterns)

        passed = sum(1 for r in results.values() if r.success)
        return FlowResult(
            results=results,
            summary=FlowSummary(
                total_validators=len(results),
                passed=passed,
                failed=len(results) - passed,
                warnings=sum(len(r.warnings) for r in results.values()),
                duration_ms=int((time.monotonic() - start) * 1000),
            ),
            all_passed=passed == len(results),
            diagnoses=diagnoses,
            learnings=learnings,
            patterns=patterns,
        )

    async def _process_failure(
        self,
        name: str,
        result: ValidationResult,
        diagnoses: List[Diagnosis],
        learnings: List[LearningEntry],
        patterns: List[PatternHistory],
    ) -> None:
        diagnosis = self.bridge.analyze(result)
        diagnoses.append(diagnosis)

        # Pattern tracking is part of learning capture and never runs without it
        if self.config.capture_learnings:
            learnings.append(await self._offload(self.learning_capture.capture, diagnosis))
            if self.config.track_patterns:
                patterns.append(await self._offload(
                    self.pattern_tracker.record, diagnosis, self.config.session_id
                ))

        top_fix = diagnosis.suggested_fixes[0].description if diagnosis.suggested_fixes else "none"
        logger.info(
            f"{name} FAILED: {diagnosis.summary} | "
            f"root cause: {diagnosis.root_cause.category} | top fix: {top_fix}"
        )

    async def _offload(self, func, *args):
        """Run blocking file IO in the default executor with the current log context."""
        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        return await loop.run_in_executor(None, ctx.run, func, *args)
