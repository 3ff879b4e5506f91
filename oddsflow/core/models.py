"""
Data models for the analysis core
All persisted records round-trip through plain dicts (to_dict / from_dict)
so any LearningStore backend can hold them
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
import math
import time


NAN = float("nan")

# Main-market outcome keys, in canonical order
OUTCOMES = ("home", "draw", "away")
# Sub-market line sides
LINE_SIDES = ("home", "away")


class Direction(Enum):
    """Price movement direction for one side"""
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


def is_valid_price(price: float) -> bool:
    """Usable quote: a real, finite, strictly positive number"""
    return price is not None and not math.isnan(price) and not math.isinf(price) and price > 0


@dataclass(frozen=True, slots=True)
class PriceSnapshot:
    """
    One side of one market at opening and now.
    Missing or invalid prices are NaN, never 0.
    """
    market_id: str
    side: str
    opening_price: float = NAN
    current_price: float = NAN
    
    @property
    def valid(self) -> bool:
        return is_valid_price(self.opening_price) and is_valid_price(self.current_price)
    
    @property
    def netflow(self) -> float:
        """open - now (NaN propagates)"""
        return self.opening_price - self.current_price
    
    @property
    def momentum(self) -> float:
        return abs(self.netflow)
    
    @property
    def relative_move(self) -> float:
        """(now - open) / open, NaN when either price is unusable"""
        if not self.valid:
            return NAN
        return (self.current_price - self.opening_price) / self.opening_price
    
    @property
    def direction(self) -> Direction:
        if math.isnan(self.opening_price) or math.isnan(self.current_price):
            return Direction.FLAT
        if self.current_price < self.opening_price:
            return Direction.DOWN
        if self.current_price > self.opening_price:
            return Direction.UP
        return Direction.FLAT


@dataclass(slots=True)
class BaselineRecord:
    """EWMA baseline for one signal key"""
    key: str
    value: float
    alpha: float
    updated_at: float = field(default_factory=time.time)
    
    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "alpha": self.alpha,
            "updated_at": self.updated_at,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "BaselineRecord":
        return cls(
            key=data["key"],
            value=float(data["value"]),
            alpha=float(data["alpha"]),
            updated_at=float(data.get("updated_at", 0.0)),
        )


@dataclass(slots=True)
class SampleRecord:
    """Entry of the append-only sample log"""
    key: str
    value: float
    timestamp: float
    
    def to_dict(self) -> dict:
        return {"key": self.key, "value": self.value, "timestamp": self.timestamp}
    
    @classmethod
    def from_dict(cls, data: dict) -> "SampleRecord":
        return cls(
            key=data["key"],
            value=float(data["value"]),
            timestamp=float(data["timestamp"]),
        )


@dataclass(slots=True)
class PatternRecord:
    """Aggregate win-rate statistics for one feature signature"""
    signature: str
    count: int
    win_rate: float              # Incremental mean of boolean outcomes, 0-1
    last_seen: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)
    
    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "count": self.count,
            "win_rate": self.win_rate,
            "last_seen": self.last_seen,
            "metadata": self.metadata,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "PatternRecord":
        return cls(
            signature=data["signature"],
            count=int(data["count"]),
            win_rate=float(data["win_rate"]),
            last_seen=float(data.get("last_seen", 0.0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(slots=True)
class CaseRecord:
    """
    One persisted analysis. outcome stays None until feedback arrives.
    analysis_result holds the fields the corrector and feedback flow read
    (momenta, label, corrected probabilities, predicted side, signature).
    """
    match_key: str
    input_payload: Dict[str, Any]
    analysis_result: Dict[str, Any]
    outcome: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    
    def to_dict(self) -> dict:
        return {
            "match_key": self.match_key,
            "input_payload": self.input_payload,
            "analysis_result": self.analysis_result,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "CaseRecord":
        return cls(
            match_key=data["match_key"],
            input_payload=dict(data.get("input_payload") or {}),
            analysis_result=dict(data.get("analysis_result") or {}),
            outcome=data.get("outcome"),
            timestamp=float(data.get("timestamp", 0.0)),
        )


@dataclass(slots=True)
class AutotuneResult:
    """Outcome of one autotune check (also the audit-log entry when applied)"""
    applied: bool
    reason: str
    param: str = ""
    old_alpha: Optional[float] = None
    new_alpha: Optional[float] = None
    avg_win_rate: Optional[float] = None
    confirmed_cases: int = 0
    timestamp: float = field(default_factory=time.time)
    
    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "reason": self.reason,
            "param": self.param,
            "old_alpha": self.old_alpha,
            "new_alpha": self.new_alpha,
            "avg_win_rate": self.avg_win_rate,
            "confirmed_cases": self.confirmed_cases,
            "timestamp": self.timestamp,
        }


def normalize(probs: Dict[str, float]) -> Dict[str, float]:
    """
    Normalize a probability mapping so it sums to 1.
    NaN components are excluded from the sum and stay NaN.
    An all-zero / all-NaN vector is returned unchanged.
    """
    total = sum(p for p in probs.values() if not math.isnan(p))
    if total <= 0:
        return dict(probs)
    return {k: (p if math.isnan(p) else p / total) for k, p in probs.items()}


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
