"""
Outcome Simulator
=================

Poisson Monte Carlo over a 3-way probability vector.

The home/away probability ratio sets two scoring intensities
(lambda = base +/- ln(p_home / p_away) * k, floored), each trial draws two
Poisson counts with Knuth's multiplication method and compares them.
Returns the empirical outcome distribution and its Shannon entropy
(0 = certain, ln(3) = uniform).
"""
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import structlog

from oddsflow.core.models import OUTCOMES, clamp

logger = structlog.get_logger(__name__)

MIN_TRIALS = 100
MAX_TRIALS = 3000


@dataclass
class SimulationResult:
    distribution: Dict[str, float]
    lambda_home: float
    lambda_away: float
    entropy: float
    trials: int
    
    def to_dict(self) -> dict:
        return {
            "distribution": self.distribution,
            "lambda_home": self.lambda_home,
            "lambda_away": self.lambda_away,
            "entropy": self.entropy,
            "trials": self.trials,
        }


def shannon_entropy(dist: Dict[str, float]) -> float:
    """-sum(p ln p), zero-probability outcomes contribute nothing"""
    return -sum(p * math.log(p) for p in dist.values() if p > 0)


class OutcomeSimulator:
    """
    Args:
        seed: seed for numpy's default_rng (None = OS entropy)
        base: intensity at even odds
        gain: intensity shift per unit of log-odds strength
        floor: minimum intensity

    The generator is shared, so draws are serialized on one lock.
    """
    
    def __init__(
        self,
        seed: Optional[int] = None,
        base: float = 1.15,
        gain: float = 0.45,
        floor: float = 0.15,
    ):
        self.rng = np.random.default_rng(seed)
        self._rng_lock = threading.Lock()
        self.base = base
        self.gain = gain
        self.floor = floor
    
    def poisson(self, lam: float) -> int:
        with self._rng_lock:
            return self._draw(lam)
    
    def _draw(self, lam: float) -> int:
        """Knuth: multiply uniforms until the product drops to e^-lambda"""
        limit = math.exp(-lam)
        k = 0
        p = 1.0
        while True:
            k += 1
            p *= self.rng.random()
            if p <= limit:
                return k - 1
    
    def intensities(self, probs: Dict[str, float]) -> tuple:
        p_home = max(1e-6, _finite_or(probs.get("home"), 1e-6))
        p_away = max(1e-6, _finite_or(probs.get("away"), 1e-6))
        strength = math.log(p_home / p_away + 1e-9)
        lam_home = max(self.floor, self.base + strength * self.gain)
        lam_away = max(self.floor, self.base - strength * self.gain)
        return lam_home, lam_away
    
    def simulate(self, probs: Dict[str, float], trials: int = 800) -> SimulationResult:
        n = int(clamp(trials, MIN_TRIALS, MAX_TRIALS))
        lam_home, lam_away = self.intensities(probs)
        
        counts = {k: 0 for k in OUTCOMES}
        with self._rng_lock:
            for _ in range(n):
                h = self._draw(lam_home)
                a = self._draw(lam_away)
                if h > a:
                    counts["home"] += 1
                elif a > h:
                    counts["away"] += 1
                else:
                    counts["draw"] += 1
        
        dist = {k: c / n for k, c in counts.items()}
        result = SimulationResult(
            distribution=dist,
            lambda_home=lam_home,
            lambda_away=lam_away,
            entropy=shannon_entropy(dist),
            trials=n,
        )
        logger.debug("simulation_complete",
                    trials=n,
                    lambda_home=round(lam_home, 3),
                    lambda_away=round(lam_away, 3),
                    entropy=round(result.entropy, 4))
        return result


def _finite_or(value, default: float) -> float:
    if value is None or not math.isfinite(value):
        return default
    return value
