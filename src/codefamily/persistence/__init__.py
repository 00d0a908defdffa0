"""SQLite persistence for analysis facts, derived aggregates and the work queue."""

from .database import AnalysisDB
from .store import AnalysisStore, from_db_time, to_db_time, utcnow

__all__ = ["AnalysisDB", "AnalysisStore", "from_db_time", "to_db_time", "utcnow"]
