"""
Decision Classifier
===================

Deterministic, priority-ordered mapping from fused scores to a verdict:

    OVERLOAD -> LOCK -> CONTRADICTION_ALERT -> STRONG_SIGNAL -> TRAP -> AMBIGUOUS

The first state whose condition holds wins, even when later ones also hold.
"layers" counts independent confirmations (void divergence, sharp flow,
smart money, sweep trap score, hidden margin).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import structlog

from oddsflow.core.models import PatternRecord
from oddsflow.engine.fusion import FusionResult
from oddsflow.engine.profiles import ScoringProfile, MASTER_V1

logger = structlog.get_logger(__name__)


class Verdict(Enum):
    OVERLOAD = "OVERLOAD"
    LOCK = "LOCK"
    CONTRADICTION_ALERT = "CONTRADICTION_ALERT"
    STRONG_SIGNAL = "STRONG_SIGNAL"
    TRAP = "TRAP"
    AMBIGUOUS = "AMBIGUOUS"


LABELS = {
    Verdict.OVERLOAD: "Market overload: every layer agrees",
    Verdict.LOCK: "Locked move: several layers confirm",
    Verdict.CONTRADICTION_ALERT: "Contradiction: markets disagree",
    Verdict.STRONG_SIGNAL: "Genuine flow",
    Verdict.TRAP: "Likely trap",
    Verdict.AMBIGUOUS: "Mixed signals",
}

RECOMMENDATIONS = {
    Verdict.OVERLOAD: "Do not chase; limit exposure",
    Verdict.LOCK: "Follow with strict risk control",
    Verdict.CONTRADICTION_ALERT: "Stay out until the markets realign",
    Verdict.STRONG_SIGNAL: "Consider following (control risk)",
    Verdict.TRAP: "Not recommended",
    Verdict.AMBIGUOUS: "Wait for confirmation",
}


@dataclass
class Decision:
    verdict: Verdict
    side: Optional[str] = None
    layers: int = 0
    layer_flags: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    
    @property
    def label(self) -> str:
        text = LABELS[self.verdict]
        return f"{text} ({self.side})" if self.side else text
    
    @property
    def recommendation(self) -> str:
        return RECOMMENDATIONS[self.verdict]
    
    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "label": self.label,
            "recommendation": self.recommendation,
            "side": self.side,
            "layers": self.layers,
            "layer_flags": self.layer_flags,
            "reasons": self.reasons,
        }


def _opposite(side: Optional[str]) -> Optional[str]:
    return {"home": "away", "away": "home"}.get(side)


class DecisionClassifier:
    
    def __init__(self, profile: ScoringProfile = MASTER_V1):
        self.profile = profile
    
    def layers(self, fusion: FusionResult, overround_now: float) -> List[str]:
        p = self.profile
        flags = []
        if fusion.divergence > p.void_divergence:
            flags.append("void_divergence")
        if fusion.flow_power >= p.sharp_flow_power and not fusion.trap_flag:
            flags.append("sharp_flow")
        if fusion.smart_money_score >= p.layer_smart_money:
            flags.append("smart_money")
        if fusion.trap_score >= p.layer_trap_score:
            flags.append("sweep_trap")
        # NaN overround compares False
        if overround_now < p.hidden_margin_overround and fusion.momentum_total > 0:
            flags.append("hidden_margin")
        return flags
    
    def contradiction(self, fusion: FusionResult, pattern: Optional[PatternRecord]) -> Optional[str]:
        p = self.profile
        both_moved = fusion.main_momentum > 0 and fusion.line_momentum > 0
        if fusion.sync_score < 0.5 and fusion.divergence > p.void_divergence and both_moved:
            return "markets_out_of_sync"
        if (pattern is not None
                and pattern.count >= p.contradiction_min_count
                and pattern.win_rate < p.contradiction_win_rate
                and abs(fusion.direction_score) > p.contradiction_direction):
            return "pattern_memory_disagrees"
        return None
    
    def classify(
        self,
        fusion: FusionResult,
        overround_now: float = float("nan"),
        pattern: Optional[PatternRecord] = None,
    ) -> Decision:
        p = self.profile
        flags = self.layers(fusion, overround_now)
        n = len(flags)
        
        def _decision(verdict: Verdict, side: Optional[str] = None, *reasons: str) -> Decision:
            return Decision(verdict=verdict, side=side, layers=n, layer_flags=flags, reasons=list(reasons))
        
        if n >= p.overload_layers and abs(fusion.composite) > p.overload_composite:
            return _decision(Verdict.OVERLOAD, fusion.favored_side, "all_layers")
        if n >= p.lock_layers:
            return _decision(Verdict.LOCK, fusion.favored_side, "layers_agree")
        
        reason = self.contradiction(fusion, pattern)
        if reason:
            return _decision(Verdict.CONTRADICTION_ALERT, None, reason)
        
        if abs(fusion.composite) > p.strong_signal:
            # Negative composite: the flow argues against the favored side
            side = fusion.favored_side if fusion.composite > 0 else _opposite(fusion.favored_side)
            return _decision(Verdict.STRONG_SIGNAL, side, "composite")
        
        if fusion.trap_flag or fusion.trap_score > p.trap_score_cut:
            return _decision(Verdict.TRAP, None, *(fusion.trap_flags or ["trap_score"]))
        
        return _decision(Verdict.AMBIGUOUS)
