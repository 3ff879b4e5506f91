"""
Boundary schemas for analysis requests
A request that is not a well-formed record fails here, before the core.
Individual prices are lenient: anything unparseable becomes NaN.
"""
import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from oddsflow.core.models import NAN, OUTCOMES


class InvalidRequestError(ValueError):
    """Top-level request is not a well-formed analysis record"""


def parse_price(value: Any) -> float:
    """
    Lenient price parsing: numbers pass through, numeric strings accept
    ',' as decimal separator and stray spaces, everything else is NaN.
    """
    if value is None or isinstance(value, bool):
        return NAN
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else NAN
    if isinstance(value, str):
        s = value.strip().replace(",", ".").replace(" ", "")
        if not s:
            return NAN
        try:
            f = float(s)
        except ValueError:
            return NAN
        return f if math.isfinite(f) else NAN
    return NAN


class ThreeWayQuote(BaseModel):
    """Main-market prices for the three outcomes"""
    home: float = NAN
    draw: float = NAN
    away: float = NAN
    
    @field_validator("home", "draw", "away", mode="before")
    @classmethod
    def _lenient_price(cls, v):
        return parse_price(v)
    
    def as_dict(self) -> Dict[str, float]:
        return {k: getattr(self, k) for k in OUTCOMES}


class LinePair(BaseModel):
    """One parametrized sub-market line (e.g. a handicap) with two sides"""
    line: Optional[str] = None
    open_home: float = NAN
    open_away: float = NAN
    now_home: float = NAN
    now_away: float = NAN
    
    @field_validator("open_home", "open_away", "now_home", "now_away", mode="before")
    @classmethod
    def _lenient_price(cls, v):
        return parse_price(v)


class MatchContext(BaseModel):
    """Optional contextual adjustment scalars, each in [-1, 1]"""
    lineup_impact: float = Field(default=0.0, ge=-1.0, le=1.0)
    injury_impact: float = Field(default=0.0, ge=-1.0, le=1.0)
    form_home: float = Field(default=0.0, ge=-1.0, le=1.0)
    form_away: float = Field(default=0.0, ge=-1.0, le=1.0)
    motivation: float = Field(default=0.0, ge=-1.0, le=1.0)


class AnalysisRequest(BaseModel):
    """Structured analysis request"""
    home: str = "home"
    away: str = "away"
    league: str = "generic"
    kickoff_ts: Optional[int] = None
    favorite: Optional[str] = None    # "home" | "away", inferred from flow when absent
    open1: ThreeWayQuote = Field(default_factory=ThreeWayQuote)
    now1: ThreeWayQuote = Field(default_factory=ThreeWayQuote)
    ah: List[LinePair] = Field(default_factory=list)
    context: MatchContext = Field(default_factory=MatchContext)
    
    @field_validator("favorite", mode="before")
    @classmethod
    def _favorite_side(cls, v):
        if v is None or v == "":
            return None
        side = str(v).strip().lower()
        if side not in ("home", "away"):
            raise ValueError("favorite must be 'home' or 'away'")
        return side
    
    @classmethod
    def parse_payload(cls, payload: Any) -> "AnalysisRequest":
        """Validate a decoded JSON payload, raising InvalidRequestError"""
        if not isinstance(payload, dict):
            raise InvalidRequestError(f"payload must be an object, got {type(payload).__name__}")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidRequestError(str(e)) from e
    
    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe dump (NaN prices become None)"""
        def _clean(obj):
            if isinstance(obj, float) and math.isnan(obj):
                return None
            if isinstance(obj, dict):
                return {k: _clean(v) for k, v in obj.items()}
            if isinstance(obj, list):
                return [_clean(v) for v in obj]
            return obj
        return _clean(self.model_dump())
