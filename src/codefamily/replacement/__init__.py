"""Replacement-event detection and contributor instability scoring."""

from .aggregator import NegativeScoreAggregator
from .detector import ReplacementDetector, event_score, recency_decay, whole_days
from .signals import is_refactor, message_signal

__all__ = [
    "NegativeScoreAggregator",
    "ReplacementDetector",
    "event_score",
    "is_refactor",
    "message_signal",
    "recency_decay",
    "whole_days",
]
