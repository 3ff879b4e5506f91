"""
Price Delta Extractor
=====================

Turns raw opening/current quotes into implied probabilities and per-side
movement descriptors.

- implied probability = 1 / price for valid prices, NaN otherwise
- netflow = open - now, momentum = |netflow|, direction = up/down/flat
- normalization sums skip NaN components instead of counting them as 0
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List

from oddsflow.core.models import (
    NAN, OUTCOMES, PriceSnapshot, is_valid_price, normalize,
)
from oddsflow.core.schemas import AnalysisRequest


MAIN_MARKET_ID = "1x2"


def implied_probability(price: float) -> float:
    return 1.0 / price if is_valid_price(price) else NAN


def nansum(values) -> float:
    """Sum ignoring NaN"""
    return sum(v for v in values if not math.isnan(v))


@dataclass
class LineMovement:
    """Movement record for one sub-market line"""
    index: int
    line: str
    home: PriceSnapshot
    away: PriceSnapshot
    
    @property
    def net_home(self) -> float:
        return self.home.netflow
    
    @property
    def net_away(self) -> float:
        return self.away.netflow
    
    @property
    def mom_home(self) -> float:
        return self.home.momentum
    
    @property
    def mom_away(self) -> float:
        return self.away.momentum
    
    @property
    def momentum(self) -> float:
        """Combined |netflow| of both sides, NaN sides skipped"""
        return nansum((self.mom_home, self.mom_away))
    
    @property
    def rel_home(self) -> float:
        return self.home.relative_move
    
    @property
    def rel_away(self) -> float:
        return self.away.relative_move
    
    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "line": self.line,
            "open_home": self.home.opening_price,
            "now_home": self.home.current_price,
            "open_away": self.away.opening_price,
            "now_away": self.away.current_price,
            "net_home": self.net_home,
            "net_away": self.net_away,
            "mom_home": self.mom_home,
            "mom_away": self.mom_away,
            "dir_home": self.home.direction.value,
            "dir_away": self.away.direction.value,
        }


@dataclass
class ExtractionResult:
    """Everything downstream components read from the raw quotes"""
    main: Dict[str, PriceSnapshot]
    lines: List[LineMovement] = field(default_factory=list)
    
    implied_open: Dict[str, float] = field(default_factory=dict)
    implied_now: Dict[str, float] = field(default_factory=dict)
    prob_open: Dict[str, float] = field(default_factory=dict)
    prob_now: Dict[str, float] = field(default_factory=dict)
    
    @property
    def flow(self) -> Dict[str, float]:
        """Main-market netflow per outcome (NaN when unpriced)"""
        return {k: s.netflow for k, s in self.main.items()}
    
    @property
    def main_momentum(self) -> float:
        return nansum(s.momentum for s in self.main.values())
    
    @property
    def line_momentum(self) -> float:
        return nansum(ln.momentum for ln in self.lines)
    
    @property
    def market_momentum(self) -> float:
        return self.main_momentum + self.line_momentum
    
    @property
    def overround_open(self) -> float:
        return overround(self.implied_open)
    
    @property
    def overround_now(self) -> float:
        return overround(self.implied_now)
    
    def line_sides(self) -> List[PriceSnapshot]:
        """All line sides in order (home, away per line)"""
        sides = []
        for ln in self.lines:
            sides.append(ln.home)
            sides.append(ln.away)
        return sides
    
    def flow_or_zero(self, side: str) -> float:
        """Netflow for scoring terms where an unpriced side contributes nothing"""
        v = self.main[side].netflow
        return 0.0 if math.isnan(v) else v
    
    def to_dict(self) -> dict:
        return {
            "flow": self.flow,
            "momentum": {k: s.momentum for k, s in self.main.items()},
            "direction": {k: s.direction.value for k, s in self.main.items()},
            "main_momentum": self.main_momentum,
            "line_momentum": self.line_momentum,
            "market_momentum": self.market_momentum,
            "implied_open": self.implied_open,
            "implied_now": self.implied_now,
            "prob_open": self.prob_open,
            "prob_now": self.prob_now,
            "overround_open": self.overround_open,
            "overround_now": self.overround_now,
            "lines": [ln.to_dict() for ln in self.lines],
        }


def overround(implied: Dict[str, float]) -> float:
    """Sum of implied probabilities minus 1 (NaN if nothing is priced)"""
    valid = [p for p in implied.values() if not math.isnan(p)]
    if not valid:
        return NAN
    return sum(valid) - 1.0


class PriceDeltaExtractor:
    """Builds an ExtractionResult from a validated request"""
    
    def extract(self, request: AnalysisRequest) -> ExtractionResult:
        open1 = request.open1.as_dict()
        now1 = request.now1.as_dict()
        
        main = {
            k: PriceSnapshot(MAIN_MARKET_ID, k, open1[k], now1[k])
            for k in OUTCOMES
        }
        
        lines = []
        for i, pair in enumerate(request.ah):
            name = pair.line or f"AH{i + 1}"
            lines.append(LineMovement(
                index=i,
                line=name,
                home=PriceSnapshot(name, "home", pair.open_home, pair.now_home),
                away=PriceSnapshot(name, "away", pair.open_away, pair.now_away),
            ))
        
        implied_open = {k: implied_probability(open1[k]) for k in OUTCOMES}
        implied_now = {k: implied_probability(now1[k]) for k in OUTCOMES}
        
        return ExtractionResult(
            main=main,
            lines=lines,
            implied_open=implied_open,
            implied_now=implied_now,
            prob_open=normalize(implied_open),
            prob_now=normalize(implied_now),
        )
