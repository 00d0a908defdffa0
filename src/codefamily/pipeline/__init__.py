"""Analysis runs, supervision and the queue-driven incremental pipeline."""

from .coordinator import PipelineCoordinator
from .events import (
    PushedCommit,
    PushEvent,
    QueueEvent,
    ReviewRequestEvent,
    UnsupportedEvent,
    decode_event,
)
from .ingestion import AnalysisRun, RunSummary
from .supervisor import AnalysisSupervisor
from .webhook import WebhookIngress, sign

__all__ = [
    "AnalysisRun",
    "AnalysisSupervisor",
    "PipelineCoordinator",
    "PushEvent",
    "PushedCommit",
    "QueueEvent",
    "ReviewRequestEvent",
    "RunSummary",
    "UnsupportedEvent",
    "WebhookIngress",
    "decode_event",
    "sign",
]
