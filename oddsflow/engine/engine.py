"""
Analysis Engine: Main Orchestrator
==================================

Runs one analysis end to end and owns the feedback entry point.

Flow (analyze):
1. Extract price deltas and market probabilities
2. Read velocity / spikes of the aggregate flow sample and the momentum baseline
3. Fuse signals into indicators and bounded scores
4. Estimate probabilities (market + composite lean + pressure split)
5. Simulate outcomes, consult pattern memory, classify
6. Correct from similar historical cases, apply match context
7. Update baselines, persist the case, run autotune
8. Return AnalysisResult (with degraded / learned flags)

Flow (record_outcome):
1. Mark the persisted case with the confirmed outcome
2. Learn its pattern signature (win = predicted side matched)
3. Run autotune
"""
import hashlib
import math
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

import structlog

from oddsflow.config.settings import Settings, settings as default_settings
from oddsflow.core.models import OUTCOMES, AutotuneResult, CaseRecord, clamp
from oddsflow.core.resilience import GuardedStore, RoundHealth, note_failure
from oddsflow.core.schemas import AnalysisRequest, InvalidRequestError
from oddsflow.core.storage import KeyedLocks, LearningStore, StoreError
from oddsflow.engine.autotune import AutotuneLoop, OUTCOME_LOG
from oddsflow.engine.baseline import AdaptiveBaselineStore
from oddsflow.engine.classifier import DecisionClassifier
from oddsflow.engine.context import (
    apply_context, context_adjustment, expected_score, rebalance_draw, value_spot,
)
from oddsflow.engine.corrector import CASE_LOG, HistoricalCorrector
from oddsflow.engine.extractor import PriceDeltaExtractor, ExtractionResult
from oddsflow.engine.fusion import SignalFusionEngine, aggregate_flow_sample
from oddsflow.engine.memory import PatternMemory, pattern_features
from oddsflow.engine.profiles import ScoringProfile, get_profile
from oddsflow.engine.simulator import OutcomeSimulator

logger = structlog.get_logger(__name__)

# Baseline keys written on every analysis
NETFLOW_KEY = "master_netflow"
MOMENTUM_KEY = "master_momentum"
BASELINE_KEYS = (
    NETFLOW_KEY,
    "master_voidscore",
    "master_smk",
    "master_lve",
    "master_spike",
    "master_ltme",
    MOMENTUM_KEY,
)


class CaseNotFoundError(KeyError):
    """Feedback for a match_key that was never persisted"""


def case_key(match_key: str) -> str:
    return f"case:{match_key}"


def make_match_key(request: AnalysisRequest) -> str:
    raw = f"{request.home}|{request.away}|{request.kickoff_ts or ''}|{uuid.uuid4().hex}"
    return hashlib.sha256(raw.encode()).hexdigest()[:24]


def market_vector(ex: ExtractionResult) -> Dict[str, float]:
    """Normalized current market probabilities, unpriced outcomes get no mass"""
    probs = {k: (0.0 if math.isnan(v) else v) for k, v in ex.prob_now.items()}
    if sum(probs.values()) <= 0:
        return {k: 1.0 / len(OUTCOMES) for k in OUTCOMES}
    return probs


def predicted_side(probs: Dict[str, float]) -> Optional[str]:
    """home/away only when strictly above both other outcomes"""
    for side, others in (("home", ("draw", "away")), ("away", ("home", "draw"))):
        if all(probs[side] > probs[o] for o in others):
            return side
    return None


@dataclass
class AnalysisResult:
    match_key: str
    request: Dict[str, Any]
    extraction: Dict[str, Any]
    velocity: Dict[str, Any]
    spikes: Dict[str, Any]
    fusion: Dict[str, Any]
    market_prob_open: Dict[str, float]
    market_prob_now: Dict[str, float]
    estimate: Dict[str, float]
    simulation: Dict[str, Any]
    sharpness: float
    signature: str
    pattern: Dict[str, Any]
    correction: Dict[str, Any]
    context_adjustment: Dict[str, float]
    probabilities: Dict[str, float]
    decision: Dict[str, Any]
    predicted_side: Optional[str]
    value: Dict[str, Any]
    expected_score: Dict[str, Any]
    autotune: Optional[Dict[str, Any]] = None
    persisted: bool = True
    degraded: bool = False
    learned: bool = True
    profile: str = ""
    timestamp: float = field(default_factory=time.time)
    
    @property
    def verdict(self) -> str:
        return self.decision["verdict"]
    
    def to_dict(self) -> dict:
        return {
            "match_key": self.match_key,
            "request": self.request,
            "extraction": self.extraction,
            "velocity": self.velocity,
            "spikes": self.spikes,
            "fusion": self.fusion,
            "market_prob_open": self.market_prob_open,
            "market_prob_now": self.market_prob_now,
            "estimate": self.estimate,
            "simulation": self.simulation,
            "sharpness": self.sharpness,
            "signature": self.signature,
            "pattern": self.pattern,
            "correction": self.correction,
            "context_adjustment": self.context_adjustment,
            "probabilities": self.probabilities,
            "decision": self.decision,
            "predicted_side": self.predicted_side,
            "value": self.value,
            "expected_score": self.expected_score,
            "autotune": self.autotune,
            "persisted": self.persisted,
            "degraded": self.degraded,
            "learned": self.learned,
            "profile": self.profile,
            "timestamp": self.timestamp,
        }


class AnalysisEngine:
    """
    Wires every component around one injected LearningStore.
    
    Args:
        store: persistence collaborator (wrapped in a circuit breaker)
        config: Settings (defaults to the module singleton)
        profile: scoring profile (defaults to config.SCORING_PROFILE)
        simulator: outcome simulator (defaults to one seeded with config.SIM_SEED)
    """
    
    def __init__(
        self,
        store: LearningStore,
        config: Optional[Settings] = None,
        profile: Optional[ScoringProfile] = None,
        simulator: Optional[OutcomeSimulator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or default_settings
        self.profile = profile or get_profile(self.config.SCORING_PROFILE)
        self.store = GuardedStore(store)
        self.clock = clock
        self.locks = KeyedLocks()
        
        self.extractor = PriceDeltaExtractor()
        self.baselines = AdaptiveBaselineStore(self.store, self.config, self.locks, clock)
        self.simulator = simulator or OutcomeSimulator(seed=self.config.SIM_SEED)
        self.fusion = SignalFusionEngine(self.profile, rebound_floor=self.config.REBOUND_MIN)
        self.memory = PatternMemory(self.store, self.locks, clock)
        self.corrector = HistoricalCorrector(self.store, window=self.config.HISTORY_WINDOW)
        self.classifier = DecisionClassifier(self.profile)
        self.autotune = AutotuneLoop(self.store, self.baselines, self.memory, self.config, clock)
        
        # Stats
        self._analyses = 0
        self._outcomes = 0
        self._stats_lock = threading.Lock()
        
        logger.info("analysis_engine_initialized",
                   profile=self.profile.name,
                   trials=self.config.SIM_TRIALS,
                   autotune=self.config.AUTOTUNE_ENABLED)
    
    # ========== ANALYSIS ==========
    
    def analyze(self, request: Union[AnalysisRequest, Dict[str, Any]]) -> AnalysisResult:
        if not isinstance(request, AnalysisRequest):
            request = AnalysisRequest.parse_payload(request)
        health = RoundHealth()
        with self._stats_lock:
            self._analyses += 1
        p = self.profile
        
        # Step 1: Extraction
        ex = self.extractor.extract(request)
        market = market_vector(ex)
        market_missing = all(math.isnan(v) for v in ex.prob_now.values())
        
        # Step 2: Flow history
        agg = aggregate_flow_sample(ex)
        velocity = self.baselines.velocity(NETFLOW_KEY, agg, health=health)
        spikes = self.baselines.spikes(NETFLOW_KEY, health=health)
        baseline_momentum, _ = self.baselines.get(MOMENTUM_KEY, ex.market_momentum, health=health)
        
        # Step 3: Fusion
        fused = self.fusion.fuse(
            ex,
            velocity=velocity,
            spikes=spikes,
            baseline_momentum=baseline_momentum,
            favorite=request.favorite,
        )
        
        # Step 4: Estimate
        lean = clamp(fused.composite, 0.0, 1.0) * fused.direction_score
        bias = clamp(lean, -p.lean_cap, p.lean_cap)
        split = fused.pressure_split
        estimate = rebalance_draw({
            "home": market["home"] + bias * p.lean_gain + (split["home"] - 50.0) / 100.0 * p.split_gain,
            "draw": market["draw"],
            "away": market["away"] - bias * p.lean_gain + (split["away"] - 50.0) / 100.0 * p.split_gain,
        })
        
        # Step 5: Simulation, pattern memory, verdict
        sim = self.simulator.simulate(estimate, self.config.SIM_TRIALS)
        sharpness = clamp(1.0 - sim.entropy / math.log(len(OUTCOMES)), 0.0, 1.0)
        
        signature = self.memory.signature(pattern_features(fused))
        record = self.memory.lookup(signature, health=health)
        insight = self.memory.insight(record, fused)
        probs = self.memory.blend(estimate, fused.favored_side, record, p.pattern_prior)
        
        decision = self.classifier.classify(fused, ex.overround_now, record)
        
        # Step 6: Correction and context
        probs, correction = self.corrector.correct(
            probs, ex.line_momentum, ex.main_momentum, decision.verdict.value, health=health,
        )
        adjustment = context_adjustment(request.context)
        probs = apply_context(probs, adjustment)
        
        side = predicted_side(probs)
        
        # Step 7: Learning state
        for key, sample in (
            (NETFLOW_KEY, agg),
            ("master_voidscore", fused.composite),
            ("master_smk", fused.smart_money_score),
            ("master_lve", velocity.money_weight),
            ("master_spike", spikes.spike_score),
            ("master_ltme", fused.trap_score),
            (MOMENTUM_KEY, ex.market_momentum),
        ):
            self.baselines.update(key, sample, health=health)
        
        match_key = make_match_key(request)
        persisted = self._persist_case(match_key, request, ex, fused, decision, probs, side, signature, health)
        
        tuned = self.autotune.run(health) if self.config.AUTOTUNE_ENABLED else None
        
        result = AnalysisResult(
            match_key=match_key,
            request=request.to_payload(),
            extraction=ex.to_dict(),
            velocity=velocity.to_dict(),
            spikes=spikes.to_dict(),
            fusion=fused.to_dict(),
            market_prob_open=ex.prob_open,
            market_prob_now=market,
            estimate=estimate,
            simulation=sim.to_dict(),
            sharpness=sharpness,
            signature=signature,
            pattern=insight,
            correction=correction.to_dict(),
            context_adjustment=adjustment,
            probabilities=probs,
            decision=decision.to_dict(),
            predicted_side=side,
            value=value_spot(market, probs),
            expected_score=expected_score(probs, adjustment),
            autotune=tuned.to_dict() if tuned else None,
            persisted=persisted,
            degraded=health.degraded or market_missing,
            learned=not health.degraded,
            profile=self.profile.name,
            timestamp=self.clock(),
        )
        
        logger.info("analysis_complete",
                   match_key=match_key,
                   verdict=decision.verdict.value,
                   side=side,
                   composite=round(fused.composite, 4),
                   confidence=fused.confidence,
                   degraded=result.degraded,
                   learned=result.learned)
        return result
    
    def _persist_case(self, match_key, request, ex, fused, decision, probs, side, signature, health) -> bool:
        case = CaseRecord(
            match_key=match_key,
            input_payload=request.to_payload(),
            analysis_result={
                "line_momentum": ex.line_momentum,
                "main_momentum": ex.main_momentum,
                "label": decision.verdict.value,
                "composite": fused.composite,
                "probabilities": probs,
                "predicted_side": side,
                "signature": signature,
            },
            timestamp=self.clock(),
        )
        try:
            self.store.put(case_key(match_key), case.to_dict())
            self.store.append(CASE_LOG, {"key": match_key, **case.to_dict()})
            return True
        except StoreError as e:
            note_failure(health, "persist_case")
            logger.warning("case_persist_failed", match_key=match_key, error=str(e)[:80])
            return False
    
    # ========== FEEDBACK ==========
    
    def record_outcome(self, match_key: str, outcome: str) -> Dict[str, Any]:
        """
        Confirm the real outcome of a persisted case.
        Raises InvalidRequestError for an unknown outcome name and
        CaseNotFoundError for an unknown match_key. Store errors propagate.
        """
        outcome = str(outcome).strip().lower()
        if outcome not in OUTCOMES:
            raise InvalidRequestError(f"outcome must be one of {OUTCOMES}, got {outcome!r}")
        
        with self.locks.lock(case_key(match_key)):
            data = self.store.get(case_key(match_key))
            if data is None:
                raise CaseNotFoundError(match_key)
            case = CaseRecord.from_dict(data)
            if case.outcome is not None:
                logger.warning("outcome_already_recorded", match_key=match_key, outcome=case.outcome)
                return {
                    "match_key": match_key,
                    "outcome": case.outcome,
                    "already_recorded": True,
                    "win": case.analysis_result.get("predicted_side") == case.outcome,
                    "pattern": None,
                    "autotune": None,
                }
            case.outcome = outcome
            self.store.put(case_key(match_key), case.to_dict())
            self.store.append(OUTCOME_LOG, {"key": match_key, "outcome": outcome, "timestamp": self.clock()})
        
        with self._stats_lock:
            self._outcomes += 1
        win = case.analysis_result.get("predicted_side") == outcome
        signature = case.analysis_result.get("signature")
        pattern = None
        if signature:
            pattern = self.memory.learn(signature, win, {"label": case.analysis_result.get("label")})
        
        tuned: Optional[AutotuneResult] = self.autotune.run() if self.config.AUTOTUNE_ENABLED else None
        
        logger.info("outcome_recorded", match_key=match_key, outcome=outcome, win=win)
        return {
            "match_key": match_key,
            "outcome": outcome,
            "already_recorded": False,
            "win": win,
            "pattern": pattern.to_dict() if pattern else None,
            "autotune": tuned.to_dict() if tuned else None,
        }
    
    # ========== STATS ==========
    
    def baseline_snapshot(self) -> Dict[str, dict]:
        return self.baselines.snapshot(list(BASELINE_KEYS))
    
    def get_stats(self) -> Dict[str, Any]:
        return {
            "analyses": self._analyses,
            "outcomes": self._outcomes,
            "profile": self.profile.name,
            "store": self.store.breaker.get_status(),
        }
