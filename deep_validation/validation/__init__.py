"""Deep validation engine: checks, per-resource validators, flows and the learning loop."""

from .conversation import TwoWayConversationCorrelator, TwoWayOptions
from .deep_validator import DeepValidator
from .diagnostics import DiagnosticBridge
from .learning import LearningCaptureEngine
from .models import (
    Check,
    Diagnosis,
    FlowResult,
    LearningEntry,
    PatternHistory,
    ResourceType,
    TwoWayValidationResult,
    ValidationOptions,
    ValidationResult,
)
from .orchestrator import FlowOrchestrator, OrchestratorConfig, VoiceAIFlowOptions
from .patterns import PatternTracker


__all__ = [
    "Check",
    "DeepValidator",
    "Diagnosis",
    "DiagnosticBridge",
    "FlowOrchestrator",
    "FlowResult",
    "LearningCaptureEngine",
    "LearningEntry",
    "OrchestratorConfig",
    "PatternHistory",
    "PatternTracker",
    "ResourceType",
    "TwoWayConversationCorrelator",
    "TwoWayOptions",
    "TwoWayValidationResult",
    "ValidationOptions",
    "ValidationResult",
    "VoiceAIFlowOptions",
]
