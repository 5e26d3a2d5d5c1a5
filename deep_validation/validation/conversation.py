"""
Two-way conversation correlation.

Validates a conversation between two call legs (for example an AI agent
talking to a simulated customer) by pulling both legs' transcripts from the
intelligence service and checking the combined dialogue for turns, topic
keywords, success phrases and forbidden patterns.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from deep_validation.clients.base import VendorClient
from deep_validation.clients.records import SentenceRecord, TranscriptRecord
from deep_validation.core.config import Settings, get_settings
from deep_validation.core.exceptions import VendorApiError
from deep_validation.core.logging import get_logger

from .models import ConversationStats, LegStats, TwoWayValidationResult
from .poller import TRANSCRIPT_TERMINAL_STATUSES, status_in, wait_for_terminal

logger = get_logger("validation.conversation")


class TwoWayOptions(BaseModel):
    """Inputs for a two-way conversation check. Times are in seconds."""

    call_sid_a: str
    call_sid_b: str
    intelligence_service_sid: str
    topic_keywords: List[str] = Field(default_factory=list)
    success_phrases: List[str] = Field(default_factory=list)
    forbidden_patterns: List[str] = Field(default_factory=list)
    expected_turns: Optional[int] = Field(default=None, ge=0)
    min_sentences_per_side: Optional[int] = Field(default=None, ge=0)
    min_duration: Optional[int] = Field(default=None, ge=0)
    wait_for_transcripts: bool = True
    timeout: Optional[float] = Field(default=None, gt=0)
    poll_interval: Optional[float] = Field(default=None, gt=0)


def _matches(text: str, needles: List[str]) -> Tuple[List[str], List[str]]:
    """Split needles into found and missing by case-insensitive substring."""
    haystack = text.lower()
    found = [n for n in needles if n.lower() in haystack]
    missing = [n for n in needles if n.lower() not in haystack]
    return found, missing


class TwoWayConversationCorrelator:
    """Correlates the transcripts of two call legs into one verdict."""

    def __init__(self, client: VendorClient, settings: Settings | None = None):
        self.client = client
        self.settings = settings or get_settings()

    async def _find_transcript(self, service_sid: str, call_sid: str) -> Optional[TranscriptRecord]:
        # First match for the call; a call with several transcripts is not disambiguated
        transcripts = await self.client.list_transcripts(service_sid, call_sid=call_sid, limit=20)
        return transcripts[0] if transcripts else None

    async def _resolve_leg(
        self, call_sid: str, options: TwoWayOptions
    ) -> Tuple[LegStats, List[SentenceRecord], List[str]]:
        """Transcript stats, sentences and errors for one leg."""
        stats = LegStats(call_sid=call_sid)
        try:
            transcript = await self._find_transcript(options.intelligence_service_sid, call_sid)
        except VendorApiError as e:
            return stats, [], [f"Failed to look up transcript for call {call_sid}: {e.message}"]
        if transcript is None:
            return stats, [], [f"No transcript found for call {call_sid}"]

        if options.wait_for_transcripts and transcript.status not in TRANSCRIPT_TERMINAL_STATUSES:
            try:
                polled = await wait_for_terminal(
                    lambda: self.client.fetch_transcript(transcript.sid),
                    status_in(TRANSCRIPT_TERMINAL_STATUSES),
                    timeout=options.timeout or self.settings.transcript_timeout,
                    poll_interval=options.poll_interval or self.settings.transcript_poll_interval,
                )
            except VendorApiError as e:
                return stats, [], [f"Failed to fetch transcript {transcript.sid}: {e.message}"]
            transcript = polled.value

        stats.transcript_sid = transcript.sid
        stats.transcript_status = transcript.status
        if transcript.status != "completed":
            return stats, [], [
                f"Transcript {transcript.sid} not completed (status: {transcript.status})"
            ]

        try:
            sentences = await self.client.list_transcript_sentences(transcript.sid, limit=1000)
        except VendorApiError as e:
            return stats, [], [f"Failed to fetch sentences for transcript {transcript.sid}: {e.message}"]

        # Each sentence record counts as one speaker turn
        stats.speaker_turns = len(sentences)
        stats.sentence_count = len(sentences)
        return stats, sentences, []

    async def validate_two_way(self, options: TwoWayOptions) -> TwoWayValidationResult:
        start = time.monotonic()
        errors: List[str] = []
        warnings: List[str] = []

        (leg_a, sentences_a, errors_a), (leg_b, sentences_b, errors_b) = await asyncio.gather(
            self._resolve_leg(options.call_sid_a, options),
            self._resolve_leg(options.call_sid_b, options),
        )
        errors.extend(errors_a)
        errors.extend(errors_b)

        text = " ".join(s.transcript for s in [*sentences_a, *sentences_b])
        topic_found, topic_missing = _matches(text, options.topic_keywords)
        phrases_found, _ = _matches(text, options.success_phrases)
        forbidden_found, _ = _matches(text, options.forbidden_patterns)

        conversation = ConversationStats(
            total_turns=leg_a.speaker_turns + leg_b.speaker_turns,
            topic_keywords_found=topic_found,
            topic_keywords_missing=topic_missing,
            success_phrases_found=phrases_found,
            forbidden_patterns_found=forbidden_found,
            has_natural_flow=leg_a.speaker_turns > 0 and leg_b.speaker_turns > 0,
        )

        if topic_missing:
            warnings.append(f"Topic keywords not found: {', '.join(topic_missing)}")
        if options.success_phrases and not phrases_found:
            errors.append("No success phrases found in conversation")
        if forbidden_found:
            errors.append(f"Forbidden patterns found: {', '.join(forbidden_found)}")

        if options.expected_turns is not None and conversation.total_turns < options.expected_turns:
            errors.append(
                f"Expected at least {options.expected_turns} turns, got {conversation.total_turns}"
            )
        if options.min_sentences_per_side is not None:
            for label, leg in (("A", leg_a), ("B", leg_b)):
                if leg.sentence_count < options.min_sentences_per_side:
                    errors.append(
                        f"Call {label} ({leg.call_sid}) has only {leg.sentence_count} sentences, "
                        f"expected at least {options.min_sentences_per_side}"
                    )
        if options.min_duration is not None:
            warnings.append(
                f"minDuration ({options.min_duration}s) is not verified: "
                "transcripts do not carry the call duration"
            )

        result = TwoWayValidationResult(
            success=not errors,
            call_a=leg_a,
            call_b=leg_b,
            conversation=conversation,
            errors=errors,
            warnings=warnings,
            validation_duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.debug(
            f"Two-way {options.call_sid_a}/{options.call_sid_b}: "
            f"{conversation.total_turns} turns, success={result.success}"
        )
        return result
