"""Exception hierarchy for codefamily."""

from .analysis import (
    AnalysisCancelledError,
    AnalysisError,
    AnalysisInProgressError,
    DataConsistencyError,
    FatalIngestionError,
    NotFoundError,
    ParseError,
    TransientExternalFailure,
)
from .base import CodeFamilyError
from .config import ConfigurationError, InvalidConfigError, SignatureError

__all__ = [
    "CodeFamilyError",
    "AnalysisError",
    "TransientExternalFailure",
    "NotFoundError",
    "DataConsistencyError",
    "FatalIngestionError",
    "ParseError",
    "AnalysisInProgressError",
    "AnalysisCancelledError",
    "ConfigurationError",
    "InvalidConfigError",
    "SignatureError",
]
