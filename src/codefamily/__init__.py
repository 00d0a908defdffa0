"""
codefamily - contributor ownership and replacement analysis

Walks a repository's full history, attributes semantic ownership of each
file to its contributors, scores contributors whose work keeps being
replaced by others, and warns when a push collides with open review
requests touching the same or semantically similar files.
"""

__version__ = "0.1.0"

from .config import AppConfig, ScoringConfig, load_config
from .pipeline import AnalysisRun, PipelineCoordinator

__all__ = [
    "AppConfig",
    "ScoringConfig",
    "load_config",
    "AnalysisRun",  # Full / incremental analysis of one repository
    "PipelineCoordinator",  # Queue-driven worker
]
