"""
Scoring profiles
================

Every fusion/classification constant lives in a named, versioned
ScoringProfile. Weight tables are plain `component -> coefficient` dicts so
a profile can be read, diffed and logged as data.
"""
from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class SmartMoneyRule:
    """Adds `weight` to the smart-money score when the input exceeds `threshold`"""
    threshold: float
    weight: float


@dataclass(frozen=True)
class ScoringProfile:
    name: str
    version: int = 1
    
    # Pre-directional signal strength (each component normalized to 0-1)
    raw_signal_weights: Dict[str, float] = field(default_factory=lambda: {
        "momentum": 0.28,
        "stack": 0.20,
        "juice": 0.18,
        "concentration": 0.12,
        "sync": 0.12,
        "net_flow_index": 0.10,
    })
    raw_trap_damping: float = 0.32
    direction_gain: float = 1.5      # hack_score = raw * direction * gain
    
    # confidence (0-100)
    confidence_weights: Dict[str, float] = field(default_factory=lambda: {
        "hack_score": 120.0,
        "juice": 20.0,
        "confidence_drop": -100.0,
    })
    
    # flow_power (0-100 after x100)
    flow_power_weights: Dict[str, float] = field(default_factory=lambda: {
        "hack_score": 0.60,
        "sync": 0.20,
        "juice": 0.20,
        "smart_money": 0.15,
        "liquidity": 0.12,
    })
    
    # Composite (void) score, clamped to [-1, 1]
    composite_weights: Dict[str, float] = field(default_factory=lambda: {
        "flow_power": 0.28,
        "confidence": 0.20,
        "smart_money": 0.18,
        "juice_pressure": 0.12,
        "stack_factor": 0.10,
        "liquidity": 0.10,
        "divergence": -0.12,
        "spike_penalty": -0.08,
        "mismatch_penalty": -0.06,
        "trap_score": -0.10,
    })
    trap_damping: float = 0.28
    
    # Smart-money contributions (each also emitted as a flag)
    smart_money_rules: Dict[str, SmartMoneyRule] = field(default_factory=lambda: {
        "juice_pressure": SmartMoneyRule(0.35, 0.35),
        "stacked_lines": SmartMoneyRule(0.60, 0.25),
        "divergence": SmartMoneyRule(0.12, 0.12),
        "line_strong_move": SmartMoneyRule(0.12, 0.08),
        "flow_imbalance": SmartMoneyRule(0.12, 0.10),
    })
    smart_money_killer: float = 0.70
    
    # Normalizers
    divergence_scale: float = 0.30
    juice_scale: float = 1.2
    juice_cap: float = 3.0
    momentum_scale: float = 1.0
    trim_fraction: float = 0.10
    
    # Mismatch / sweep detectors
    mismatch_line_move: float = 0.08
    mismatch_main_stale: float = 0.02
    mismatch_step: float = 0.18
    mismatch_confidence_factor: float = 0.4
    sweep_threshold: float = 0.10
    sweep_full_scale: float = 0.5
    
    # Signature tags
    ultra_divergence: float = 0.22
    market_kill_flow: float = 88.0
    market_kill_confidence: float = 82.0
    market_kill_stack: float = 0.65
    momentum_surge_ratio: float = 2.0
    
    # Classifier
    strong_signal: float = 0.35
    overload_composite: float = 0.55
    overload_layers: int = 5
    lock_layers: int = 3
    void_divergence: float = 0.08
    sharp_flow_power: float = 70.0
    layer_smart_money: float = 0.65
    layer_trap_score: float = 50.0
    hidden_margin_overround: float = 0.05
    trap_score_cut: float = 35.0
    contradiction_min_count: int = 5
    contradiction_win_rate: float = 0.35
    contradiction_direction: float = 0.2
    
    # Probability estimate
    lean_cap: float = 0.25
    lean_gain: float = 0.6
    split_gain: float = 0.1
    pattern_prior: float = 10.0      # Shrinkage weight for pattern win-rate blending


MASTER_V1 = ScoringProfile(name="master_v1", version=1)

# Variant with tighter juice rule and a heavier trap damping on the raw signal
LAST_V2 = ScoringProfile(
    name="last_v2",
    version=2,
    raw_trap_damping=0.32,
    trap_damping=0.28,
    smart_money_rules={
        "juice_pressure": SmartMoneyRule(0.30, 0.35),
        "stacked_lines": SmartMoneyRule(0.60, 0.20),
        "divergence": SmartMoneyRule(0.12, 0.12),
        "line_strong_move": SmartMoneyRule(0.12, 0.08),
        "flow_imbalance": SmartMoneyRule(0.12, 0.15),
    },
)

PROFILES: Dict[str, ScoringProfile] = {
    MASTER_V1.name: MASTER_V1,
    LAST_V2.name: LAST_V2,
}


def get_profile(name: str) -> ScoringProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(f"unknown scoring profile {name!r}, known: {sorted(PROFILES)}") from None
