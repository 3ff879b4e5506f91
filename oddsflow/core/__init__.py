"""Core data model and persistence"""
from .models import (
    PriceSnapshot, BaselineRecord, SampleRecord, PatternRecord, CaseRecord,
    AutotuneResult, Direction,
)
from .storage import LearningStore, MemoryStore, SqlStore, StoreError, StoreUnavailableError
from .schemas import AnalysisRequest, InvalidRequestError

__all__ = [
    "PriceSnapshot",
    "BaselineRecord",
    "SampleRecord",
    "PatternRecord",
    "CaseRecord",
    "AutotuneResult",
    "Direction",
    "LearningStore",
    "MemoryStore",
    "SqlStore",
    "StoreError",
    "StoreUnavailableError",
    "AnalysisRequest",
    "InvalidRequestError",
]
