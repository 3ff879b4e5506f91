"""
Autotune feedback loop
Once enough confirmed outcomes exist, moves one baseline's alpha by a fixed
step according to the average win-rate of the most observed patterns.
Every applied change is written to the `autotune` audit log.
"""
import time
from typing import Callable, Optional

import structlog

from oddsflow.config.settings import Settings, settings as default_settings
from oddsflow.core.models import AutotuneResult, clamp
from oddsflow.core.resilience import RoundHealth, note_failure
from oddsflow.core.storage import LearningStore, StoreError
from oddsflow.engine.baseline import AdaptiveBaselineStore
from oddsflow.engine.memory import PatternMemory

logger = structlog.get_logger(__name__)

OUTCOME_LOG = "outcomes"
AUTOTUNE_LOG = "autotune"


class AutotuneLoop:
    
    def __init__(
        self,
        store: LearningStore,
        baselines: AdaptiveBaselineStore,
        memory: PatternMemory,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.baselines = baselines
        self.memory = memory
        self.config = config or default_settings
        self.clock = clock
    
    def run(self, health: Optional[RoundHealth] = None) -> AutotuneResult:
        cfg = self.config
        target = cfg.AUTOTUNE_TARGET_KEY
        try:
            confirmed = len(self.store.query_recent(OUTCOME_LOG, None, cfg.AUTOTUNE_MIN_CASES))
            if confirmed < cfg.AUTOTUNE_MIN_CASES:
                return AutotuneResult(applied=False, reason="not_enough_cases", param=target,
                                      confirmed_cases=confirmed, timestamp=self.clock())
            
            patterns = self.memory.top_patterns(cfg.AUTOTUNE_TOP_PATTERNS)
            if not patterns:
                return AutotuneResult(applied=False, reason="no_patterns", param=target,
                                      confirmed_cases=confirmed, timestamp=self.clock())
            
            avg_wr = sum(p.win_rate for p in patterns) / len(patterns)
            _, old_alpha = self.baselines.get(target, 0.0, health=health)
            
            if avg_wr > cfg.AUTOTUNE_UPPER_WR:
                new_alpha, reason = old_alpha + cfg.AUTOTUNE_ALPHA_STEP, "win_rate_high"
            elif avg_wr < cfg.AUTOTUNE_LOWER_WR:
                new_alpha, reason = old_alpha - cfg.AUTOTUNE_ALPHA_STEP, "win_rate_low"
            else:
                return AutotuneResult(applied=False, reason="within_band", param=target,
                                      old_alpha=old_alpha, new_alpha=old_alpha, avg_win_rate=avg_wr,
                                      confirmed_cases=confirmed, timestamp=self.clock())
            
            new_alpha = clamp(new_alpha, cfg.ALPHA_MIN, cfg.AUTOTUNE_ALPHA_CEILING)
            if new_alpha == old_alpha:
                return AutotuneResult(applied=False, reason=f"{reason}_at_bound", param=target,
                                      old_alpha=old_alpha, new_alpha=old_alpha, avg_win_rate=avg_wr,
                                      confirmed_cases=confirmed, timestamp=self.clock())
            
            new_alpha = self.baselines.set_alpha(target, new_alpha)
            result = AutotuneResult(
                applied=True,
                reason=reason,
                param=target,
                old_alpha=old_alpha,
                new_alpha=new_alpha,
                avg_win_rate=avg_wr,
                confirmed_cases=confirmed,
                timestamp=self.clock(),
            )
            self.store.append(AUTOTUNE_LOG, {"key": target, **result.to_dict()})
        except StoreError as e:
            note_failure(health, "autotune")
            logger.warning("autotune_store_unavailable", error=str(e)[:80])
            return AutotuneResult(applied=False, reason="store_unavailable", param=target,
                                  timestamp=self.clock())
        
        logger.info("autotune_applied",
                   param=target,
                   old=round(old_alpha, 4),
                   new=round(new_alpha, 4),
                   avg_win_rate=round(avg_wr, 4),
                   reason=reason)
        return result
    
    def history(self, n: int = 20) -> list:
        return self.store.query_recent(AUTOTUNE_LOG, None, n)
