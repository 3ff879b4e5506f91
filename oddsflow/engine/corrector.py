"""
Historical Corrector
====================

Nudges the probability estimate toward historically consistent cases.

For each of the last `window` persisted cases:
    distance   = |d line_momentum| + |d main_momentum|
    similarity = 1 / (1 + distance), x0.6 if the past label differs
correction = clamp((mean_similarity - 0.5) * 0.5, -0.2, 0.2), applied
multiplicatively to the leading outcome before renormalizing.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import structlog

from oddsflow.core.models import clamp, normalize
from oddsflow.core.resilience import RoundHealth, note_failure
from oddsflow.core.storage import LearningStore, StoreError

logger = structlog.get_logger(__name__)

CASE_LOG = "cases"
LABEL_MISMATCH_DISCOUNT = 0.6
MAX_CORRECTION = 0.2


@dataclass
class Correction:
    correction: float = 0.0
    mean_similarity: Optional[float] = None
    cases_considered: int = 0
    leading_outcome: Optional[str] = None
    
    def to_dict(self) -> dict:
        return {
            "correction": self.correction,
            "mean_similarity": self.mean_similarity,
            "cases_considered": self.cases_considered,
            "leading_outcome": self.leading_outcome,
        }


def similarity(line_momentum: float, main_momentum: float, label: str, past: dict) -> float:
    distance = (abs(line_momentum - float(past.get("line_momentum", 0.0)))
                + abs(main_momentum - float(past.get("main_momentum", 0.0))))
    sim = 1.0 / (1.0 + distance)
    if past.get("label") != label:
        sim *= LABEL_MISMATCH_DISCOUNT
    return sim


class HistoricalCorrector:
    
    def __init__(self, store: LearningStore, window: int = 120):
        self.store = store
        self.window = window
    
    def correct(
        self,
        probs: Dict[str, float],
        line_momentum: float,
        main_momentum: float,
        label: str,
        health: Optional[RoundHealth] = None,
    ) -> Tuple[Dict[str, float], Correction]:
        leading = max(probs, key=probs.get)
        try:
            history = self.store.query_recent(CASE_LOG, None, self.window)
        except StoreError as e:
            note_failure(health, "corrector_history")
            logger.warning("corrector_history_unavailable", error=str(e)[:80])
            return dict(probs), Correction(leading_outcome=leading)
        
        sims = []
        for entry in history:
            summary = entry.get("analysis_result") or {}
            sims.append(similarity(line_momentum, main_momentum, label, summary))
        if not sims:
            return dict(probs), Correction(leading_outcome=leading)
        
        mean_sim = sum(sims) / len(sims)
        corr = clamp((mean_sim - 0.5) * 0.5, -MAX_CORRECTION, MAX_CORRECTION)
        
        adjusted = dict(probs)
        adjusted[leading] = adjusted[leading] * (1.0 + corr)
        adjusted = normalize(adjusted)
        
        logger.debug("history_correction",
                    cases=len(sims),
                    mean_similarity=round(mean_sim, 4),
                    correction=round(corr, 4),
                    leading=leading)
        return adjusted, Correction(
            correction=corr,
            mean_similarity=mean_sim,
            cases_considered=len(sims),
            leading_outcome=leading,
        )
