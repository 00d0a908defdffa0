"""Conflict-risk assessment against open review requests."""

from .engine import ConflictRiskEngine

__all__ = ["ConflictRiskEngine"]
