"""
Signal Fusion Engine
====================

Combines extractor output with baseline readings into intermediate
indicators and bounded composite scores.

Indicators:
- momentum_total, divergence, juice_pressure, stack_factor, concentration
- rebound_sensitivity + trap flags (small "bounce" moves, sign flips)
- mismatch (lines move, main market stale), sweep / trap_score
- smart_money_score with explainability flags
- direction_score from trimmed z-scores of relative moves

Scores (weights from the ScoringProfile):
- hack_score   in [-1, 1]
- confidence   in [0, 100]
- flow_power   in [0, 100]
- composite    in [-1, 1], damped when trap_flag is set
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import structlog

from oddsflow.core.models import OUTCOMES, PriceSnapshot, clamp, is_valid_price
from oddsflow.engine.baseline import SpikeReading, VelocityReading
from oddsflow.engine.extractor import ExtractionResult
from oddsflow.engine.profiles import ScoringProfile, MASTER_V1

logger = structlog.get_logger(__name__)

# Relative move denominators never go below this
REL_FLOOR = 1e-4
DEFAULT_REBOUND = 0.025


# ============================================================
# REBOUND SENSITIVITY
# ============================================================

def rebound_from_pair(opening: float, current: float) -> float:
    """
    Bounce threshold for one price pair. Smaller relative moves get a
    larger threshold.
    """
    if not (is_valid_price(opening) and is_valid_price(current)):
        return 0.02
    delta = abs(current - opening)
    if delta <= 1e-6:
        return 0.04
    strength = delta / opening
    if strength < 0.02:
        return 0.04
    if strength < 0.05:
        return 0.03
    if strength < 0.12:
        return 0.02
    return 0.015


def rebound_sensitivity(pairs: List[PriceSnapshot], floor: float) -> float:
    """Mean per-pair threshold over all line sides, floored"""
    values = [rebound_from_pair(p.opening_price, p.current_price) for p in pairs]
    if not values:
        return max(floor, DEFAULT_REBOUND)
    return max(floor, sum(values) / len(values))


def bounce_ratio(snapshot: PriceSnapshot) -> float:
    """|now - open| / |open| (NaN if unpriced)"""
    if math.isnan(snapshot.opening_price) or math.isnan(snapshot.current_price):
        return float("nan")
    return abs(snapshot.current_price - snapshot.opening_price) / max(REL_FLOOR, abs(snapshot.opening_price))


# ============================================================
# HELPERS
# ============================================================

def _zero_if_nan(v: float) -> float:
    return 0.0 if math.isnan(v) else v


def _sign(v: float) -> int:
    return 1 if v > 0 else (-1 if v < 0 else 0)


def trimmed_stats(values: List[float], trim_fraction: float) -> tuple:
    """Mean/std after dropping trim_fraction of the sorted values at each tail"""
    if not values:
        return 0.0, 0.0
    arr = np.sort(np.asarray(values, dtype=float))
    trim = max(0, int(len(arr) * trim_fraction))
    kept = arr[trim:len(arr) - trim] if len(arr) - 2 * trim >= 1 else arr
    return float(kept.mean()), float(kept.std())


def aggregate_flow_sample(ex: ExtractionResult) -> float:
    """
    Net directional flow: main-market home/away netflow (x2) plus per-line
    home-minus-away netflow. Positive = money toward home.
    """
    sample = 2.0 * ex.flow_or_zero("home") - 2.0 * ex.flow_or_zero("away")
    for ln in ex.lines:
        sample += _zero_if_nan(ln.net_home) - _zero_if_nan(ln.net_away)
    return sample


def weighted_sum(weights: Dict[str, float], components: Dict[str, float]) -> float:
    return sum(w * components.get(name, 0.0) for name, w in weights.items())


# ============================================================
# RESULT
# ============================================================

@dataclass
class FusionResult:
    momentum_total: float = 0.0
    main_momentum: float = 0.0
    line_momentum: float = 0.0
    divergence: float = 0.0
    juice_pressure: float = 0.0
    stack_factor: float = 0.0
    concentration: float = 0.0
    sync_score: float = 0.5
    
    rebound_sensitivity: float = DEFAULT_REBOUND
    trap_flag: bool = False
    trap_flags: List[str] = field(default_factory=list)
    sign_flips: int = 0
    
    mismatch_score: float = 0.0
    confidence_drop: float = 0.0
    sweep_detected: bool = False
    sweep_side: Optional[str] = None
    sweep_magnitude: float = 0.0
    trap_score: float = 0.0
    
    smart_money_score: float = 0.0
    smart_money_flags: List[str] = field(default_factory=list)
    
    direction_score: float = 0.0
    raw_signal: float = 0.0
    hack_score: float = 0.0
    confidence: float = 0.0
    flow_power: float = 0.0
    composite: float = 0.0
    
    liquidity: float = 0.0
    spike_penalty: float = 0.0
    momentum_ratio: Optional[float] = None
    pressure_split: Dict[str, float] = field(default_factory=dict)
    signature_tags: List[str] = field(default_factory=list)
    
    @property
    def favored_side(self) -> Optional[str]:
        if self.direction_score > 0:
            return "home"
        if self.direction_score < 0:
            return "away"
        return None
    
    def to_dict(self) -> dict:
        return {
            "momentum_total": self.momentum_total,
            "main_momentum": self.main_momentum,
            "line_momentum": self.line_momentum,
            "divergence": self.divergence,
            "juice_pressure": self.juice_pressure,
            "stack_factor": self.stack_factor,
            "concentration": self.concentration,
            "sync_score": self.sync_score,
            "rebound_sensitivity": self.rebound_sensitivity,
            "trap_flag": self.trap_flag,
            "trap_flags": self.trap_flags,
            "sign_flips": self.sign_flips,
            "mismatch_score": self.mismatch_score,
            "confidence_drop": self.confidence_drop,
            "sweep_detected": self.sweep_detected,
            "sweep_side": self.sweep_side,
            "sweep_magnitude": self.sweep_magnitude,
            "trap_score": self.trap_score,
            "smart_money_score": self.smart_money_score,
            "smart_money_flags": self.smart_money_flags,
            "direction_score": self.direction_score,
            "raw_signal": self.raw_signal,
            "hack_score": self.hack_score,
            "confidence": self.confidence,
            "flow_power": self.flow_power,
            "composite": self.composite,
            "liquidity": self.liquidity,
            "spike_penalty": self.spike_penalty,
            "momentum_ratio": self.momentum_ratio,
            "pressure_split": self.pressure_split,
            "signature_tags": self.signature_tags,
            "favored_side": self.favored_side,
        }


# ============================================================
# ENGINE
# ============================================================

class SignalFusionEngine:
    """
    Stateless: every call recomputes all indicators from its inputs.
    
    Args:
        profile: weight tables and thresholds
        rebound_floor: minimum rebound sensitivity
    """
    
    def __init__(self, profile: ScoringProfile = MASTER_V1, rebound_floor: float = 0.02):
        self.profile = profile
        self.rebound_floor = rebound_floor
    
    def fuse(
        self,
        ex: ExtractionResult,
        velocity: Optional[VelocityReading] = None,
        spikes: Optional[SpikeReading] = None,
        baseline_momentum: Optional[float] = None,
        favorite: Optional[str] = None,
    ) -> FusionResult:
        velocity = velocity or VelocityReading()
        spikes = spikes or SpikeReading()
        r = FusionResult()
        
        # Momentum and divergence
        r.main_momentum = ex.main_momentum
        r.line_momentum = ex.line_momentum
        r.momentum_total = ex.market_momentum
        r.divergence = abs(r.line_momentum - r.main_momentum)
        if baseline_momentum is not None and baseline_momentum > 1e-9:
            r.momentum_ratio = r.momentum_total / baseline_momentum
        
        # Traps
        r.rebound_sensitivity = rebound_sensitivity(ex.line_sides(), self.rebound_floor)
        self._detect_traps(ex, r)
        
        # Pressure, stacking, concentration, sync
        r.juice_pressure = self._juice_pressure(ex, r.momentum_total)
        r.stack_factor = self._stack_factor(ex)
        r.concentration = self._concentration(ex)
        r.sync_score = self._sync_score(ex, favorite)
        
        # Cross-market detectors
        self._mismatch(ex, r)
        self._sweep(ex, r)
        
        # Smart money
        self._smart_money(ex, r)
        
        # Direction
        r.direction_score = self._direction_score(ex, r.momentum_total)
        
        # Scores
        r.liquidity = velocity.money_weight
        r.spike_penalty = spikes.spike_score
        self._score(r)
        self._composite(r)
        r.pressure_split = self._pressure_split(aggregate_flow_sample(ex), velocity)
        self._signature_tags(ex, r)
        
        logger.debug("fusion_complete",
                    momentum=round(r.momentum_total, 4),
                    divergence=round(r.divergence, 4),
                    trap=r.trap_flag,
                    composite=round(r.composite, 4),
                    direction=round(r.direction_score, 4))
        return r
    
    # ========== TRAPS ==========
    
    def _detect_traps(self, ex: ExtractionResult, r: FusionResult) -> None:
        """
        A side "bounces" when it moved, but by no more than the rebound
        sensitivity (inclusive). Unmoved sides are not bounces.
        """
        flags = []
        for side in OUTCOMES:
            ratio = bounce_ratio(ex.main[side])
            if not math.isnan(ratio) and 0.0 < ratio <= r.rebound_sensitivity:
                flags.append(f"bounce_main_{side}")
        for ln in ex.lines:
            for tag, snap in (("H", ln.home), ("A", ln.away)):
                ratio = bounce_ratio(snap)
                if not math.isnan(ratio) and 0.0 < ratio <= r.rebound_sensitivity:
                    flags.append(f"bounce_line_{ln.line}_{tag}")
        
        signs = [_sign(_zero_if_nan(ln.net_home)) for ln in ex.lines]
        signs = [s for s in signs if s != 0]
        r.sign_flips = sum(1 for a, b in zip(signs, signs[1:]) if a != b)
        if r.sign_flips >= 2:
            flags.append("multi_flip_lines")
        
        r.trap_flags = flags
        r.trap_flag = bool(flags)
    
    # ========== PRESSURE ==========
    
    def _juice_pressure(self, ex: ExtractionResult, momentum_total: float) -> float:
        """Absolute price deltas of line sides and main home/away, over total momentum"""
        total = 0.0
        for snap in ex.line_sides():
            total += _zero_if_nan(snap.momentum)
        for side in ("home", "away"):
            total += _zero_if_nan(ex.main[side].momentum)
        return clamp(total / max(0.02, momentum_total + 1e-9), 0.0, self.profile.juice_cap)
    
    def _stack_factor(self, ex: ExtractionResult) -> float:
        """Share of lines agreeing on the majority side"""
        if not ex.lines:
            return 0.0
        favor_home = favor_away = 0
        for ln in ex.lines:
            h = _zero_if_nan(ln.rel_home)
            a = _zero_if_nan(ln.rel_away)
            if h < 0 or a > 0:
                favor_home += 1
            if a < 0 or h > 0:
                favor_away += 1
        return clamp(max(favor_home, favor_away) / len(ex.lines), 0.0, 1.0)
    
    def _concentration(self, ex: ExtractionResult) -> float:
        """Share of line momentum held by the top three lines"""
        moms = sorted((ln.momentum for ln in ex.lines), reverse=True)
        if not moms:
            return 0.0
        return clamp(sum(moms[:3]) / (sum(moms) + 1e-9), 0.0, 1.0)
    
    def _sync_score(self, ex: ExtractionResult, favorite: Optional[str]) -> float:
        """
        Agreement between line and main-market directions for the favourite
        and the underdog, normalized to [0, 1]. No lines = 0.5.
        """
        if favorite not in ("home", "away"):
            favorite = "home" if abs(ex.flow_or_zero("home")) >= abs(ex.flow_or_zero("away")) else "away"
        underdog = "away" if favorite == "home" else "home"
        
        points = checks = 0
        for ln in ex.lines:
            line_side = {"home": ln.home, "away": ln.away}
            for side in (favorite, underdog):
                points += 1 if line_side[side].direction == ex.main[side].direction else -1
                checks += 1
        raw = points / checks if checks else 0.0
        return (raw + 1.0) / 2.0
    
    # ========== CROSS-MARKET ==========
    
    def _mismatch(self, ex: ExtractionResult, r: FusionResult) -> None:
        """Lines moving while the matching main-market side stays stale"""
        p = self.profile
        score = 0.0
        for ln in ex.lines:
            for side, snap in (("home", ln.home), ("away", ln.away)):
                move = abs(_zero_if_nan(snap.netflow))
                main_move = abs(ex.flow_or_zero(side))
                if move > p.mismatch_line_move and main_move < p.mismatch_main_stale:
                    score += p.mismatch_step
        r.mismatch_score = clamp(score, 0.0, 1.0)
        r.confidence_drop = r.mismatch_score * p.mismatch_confidence_factor
    
    def _sweep(self, ex: ExtractionResult, r: FusionResult) -> None:
        """Largest single-side move across lines and the main market"""
        p = self.profile
        mag = 0.0
        side = None
        for ln in ex.lines:
            for s, snap in (("home", ln.home), ("away", ln.away)):
                m = _zero_if_nan(snap.momentum)
                if m > mag:
                    mag, side = m, s
        for s in ("home", "away"):
            m = abs(ex.flow_or_zero(s))
            if m > mag:
                mag, side = m, s
        r.sweep_magnitude = mag
        r.sweep_side = side
        r.sweep_detected = mag > p.sweep_threshold
        r.trap_score = clamp(mag / p.sweep_full_scale * 100.0, 0.0, 100.0)
    
    def _smart_money(self, ex: ExtractionResult, r: FusionResult) -> None:
        rules = self.profile.smart_money_rules
        score = 0.0
        flags = []
        
        def _apply(name: str, value: float) -> None:
            nonlocal score
            rule = rules.get(name)
            if rule is not None and value > rule.threshold:
                score += rule.weight
                if name not in flags:
                    flags.append(name)
        
        _apply("juice_pressure", r.juice_pressure)
        _apply("stacked_lines", r.stack_factor)
        _apply("divergence", r.divergence)
        for ln in ex.lines:
            _apply("line_strong_move", ln.momentum)
        _apply("flow_imbalance", abs(ex.flow_or_zero("home") - ex.flow_or_zero("away")))
        
        r.smart_money_score = clamp(score, 0.0, 1.0)
        r.smart_money_flags = flags
    
    # ========== DIRECTION ==========
    
    def _direction_score(self, ex: ExtractionResult, momentum_total: float) -> float:
        """
        Momentum-weighted sum of trimmed z-scores; a falling home price
        (negative relative move) pushes toward home (+), a falling away
        price toward away (-). tanh-normalized to [-1, 1].
        """
        motions = [s.relative_move for s in ex.main.values()]
        motions += [s.relative_move for s in ex.line_sides()]
        motions = [m for m in motions if not math.isnan(m)]
        mean, std = trimmed_stats(motions or [0.0], self.profile.trim_fraction)
        
        def z(x: float) -> float:
            if math.isnan(x) or std < 1e-6:
                return 0.0
            return (x - mean) / std
        
        score = 0.0
        for ln in ex.lines:
            score += (-z(ln.rel_home) + z(ln.rel_away)) * (ln.momentum + 0.01)
        main_weight = _zero_if_nan(ex.main["home"].momentum) + _zero_if_nan(ex.main["away"].momentum)
        score += (-z(ex.main["home"].relative_move) + z(ex.main["away"].relative_move)) * (main_weight + 0.01)
        
        return clamp(math.tanh(score / (0.5 + momentum_total)), -1.0, 1.0)
    
    # ========== SCORES ==========
    
    def _score(self, r: FusionResult) -> None:
        p = self.profile
        w_juice = clamp(r.juice_pressure / p.juice_scale, 0.0, 1.0)
        w_div = clamp(1.0 - r.divergence / p.divergence_scale, 0.0, 1.0)
        nfi = clamp(((r.line_momentum * 0.6 + r.main_momentum * 0.4) - r.divergence) / 0.5, 0.0, 1.0)
        
        raw = weighted_sum(p.raw_signal_weights, {
            "momentum": clamp(r.momentum_total / p.momentum_scale, 0.0, 1.0),
            "stack": r.stack_factor,
            "juice": w_juice,
            "concentration": r.concentration,
            "sync": r.sync_score,
            "net_flow_index": nfi,
        }) * w_div
        if r.trap_flag:
            raw *= p.raw_trap_damping
        r.raw_signal = raw
        r.hack_score = clamp(raw * r.direction_score * p.direction_gain, -1.0, 1.0)
        
        r.confidence = round(clamp(weighted_sum(p.confidence_weights, {
            "hack_score": abs(r.hack_score),
            "juice": w_juice,
            "confidence_drop": r.confidence_drop,
        }), 0.0, 100.0), 1)
        
        r.flow_power = round(clamp(weighted_sum(p.flow_power_weights, {
            "hack_score": abs(r.hack_score),
            "sync": r.sync_score,
            "juice": w_juice,
            "smart_money": r.smart_money_score,
            "liquidity": r.liquidity / 100.0,
        }) * 100.0, 0.0, 100.0), 1)
    
    def _composite(self, r: FusionResult) -> None:
        p = self.profile
        score = weighted_sum(p.composite_weights, {
            "flow_power": r.flow_power / 100.0,
            "confidence": r.confidence / 100.0,
            "smart_money": r.smart_money_score,
            "juice_pressure": clamp(r.juice_pressure / p.juice_scale, 0.0, 1.0),
            "stack_factor": r.stack_factor,
            "liquidity": clamp(r.liquidity / 100.0, 0.0, 1.0),
            "divergence": clamp(r.divergence / p.divergence_scale, 0.0, 1.0),
            "spike_penalty": clamp(r.spike_penalty / 100.0, 0.0, 1.0),
            "mismatch_penalty": r.mismatch_score,
            "trap_score": clamp(r.trap_score / 100.0, 0.0, 1.0),
        })
        if r.trap_flag:
            score *= p.trap_damping
        r.composite = clamp(score, -1.0, 1.0)
    
    def _pressure_split(self, flow_sample: float, velocity: VelocityReading) -> Dict[str, float]:
        """Home/away share of directional pressure, in percent"""
        base = clamp(flow_sample, -1.0, 1.0)
        mw = velocity.money_weight / 100.0
        bias = clamp(base * (0.6 + 0.4 * mw), -1.0, 1.0)
        home_pct = round((0.5 + bias / 2.0) * 100.0, 1)
        return {"home": home_pct, "away": round(100.0 - home_pct, 1), "bias": bias}
    
    def _signature_tags(self, ex: ExtractionResult, r: FusionResult) -> None:
        p = self.profile
        tags = []
        if (r.flow_power >= p.market_kill_flow and r.confidence >= p.market_kill_confidence
                and r.stack_factor > p.market_kill_stack and not r.trap_flag):
            tags.append("STACK+SHARP+HIGH_FLOW")
        if r.trap_flag and r.flow_power < 40:
            tags.append("TRAP_DETECTED")
        if r.divergence > p.ultra_divergence:
            tags.append("ULTRA_DIV")
        if r.sweep_detected:
            tags.append("SWEEP")
        moved = ex.flow_or_zero("home") != 0.0 or ex.flow_or_zero("away") != 0.0
        if r.smart_money_score >= p.smart_money_killer and moved:
            tags.append("SMART_MONEY_KILLER")
        if r.momentum_ratio is not None and r.momentum_ratio >= p.momentum_surge_ratio:
            tags.append("MOMENTUM_SURGE")
        r.signature_tags = tags
