"""
Core runtime exports.
"""

from .control import InMemoryRunControl, RunControlGate, RunControlPort
from .events import RunEvent, RunEventBus
from .hooks import HookContext, HookDispatcher, HookRegistry, HookResult
from .inference import InferenceLoop
from .model_call import ModelCallStage
from .orchestrator import RunOrchestrator
from .post_process import PostProcessor
from .sandbox import DirectoryScanner, SessionTracker
from .settings import RunnerSettings
from .telemetry import (
    InMemoryTelemetrySink,
    NullTelemetrySink,
    OpenTelemetrySink,
    TelemetryEvent,
    TelemetrySink,
    TelemetrySpan,
)
from .tool_batch import ToolBatchStage

__all__ = [
    "RunOrchestrator",
    "InferenceLoop",
    "ModelCallStage",
    "ToolBatchStage",
    "PostProcessor",
    "RunnerSettings",
    "RunControlPort",
    "RunControlGate",
    "InMemoryRunControl",
    "RunEvent",
    "RunEventBus",
    "HookContext",
    "HookDispatcher",
    "HookRegistry",
    "HookResult",
    "DirectoryScanner",
    "SessionTracker",
    "TelemetrySink",
    "TelemetryEvent",
    "TelemetrySpan",
    "NullTelemetrySink",
    "InMemoryTelemetrySink",
    "OpenTelemetrySink",
]
