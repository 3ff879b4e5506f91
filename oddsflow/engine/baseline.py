"""
Adaptive Baseline Store
=======================

Per-signal EWMA baseline with a self-tuned smoothing factor.

    update:  value = alpha * sample + (1 - alpha) * value
    retune:  volatility = clamp(std / (|mean| + eps), 0, 1) over the last
             RETUNE_WINDOW samples; alpha = clamp(0.02 + volatility * gain)

Noisy signals get a larger alpha (track faster), stable ones a smaller one.
Also hosts the sample-log readers: velocity/acceleration ("money weight")
and the spike detector.
"""
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import structlog

from oddsflow.config.settings import Settings, settings as default_settings
from oddsflow.core.models import BaselineRecord, SampleRecord, clamp
from oddsflow.core.resilience import RoundHealth, note_failure
from oddsflow.core.storage import KeyedLocks, LearningStore, StoreError

logger = structlog.get_logger(__name__)

SAMPLE_LOG = "samples"
EPS = 1e-6


def baseline_key(key: str) -> str:
    return f"baseline:{key}"


@dataclass
class VelocityReading:
    velocity: float = 0.0
    acceleration: float = 0.0
    money_weight: float = 0.0      # 0-100
    velocity_score: float = 0.0    # 0-100
    
    def to_dict(self) -> dict:
        return {
            "velocity": self.velocity,
            "acceleration": self.acceleration,
            "money_weight": self.money_weight,
            "velocity_score": self.velocity_score,
        }


@dataclass
class SpikeReading:
    spike_score: float = 0.0          # 0-100
    spoof_probability: float = 0.0    # 0-1
    patterns: List[str] = field(default_factory=list)
    
    def to_dict(self) -> dict:
        return {
            "spike_score": self.spike_score,
            "spoof_probability": self.spoof_probability,
            "patterns": self.patterns,
        }


class AdaptiveBaselineStore:
    """
    EWMA baselines on top of a LearningStore.
    Reads never fail the caller: a store error falls back to the supplied
    fallback/default and is noted on the caller's RoundHealth.
    """
    
    def __init__(
        self,
        store: LearningStore,
        config: Optional[Settings] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or default_settings
        self.locks = locks if locks is not None else KeyedLocks()
        self.clock = clock
    
    # ========== RECORDS ==========
    
    def _load(self, key: str) -> Optional[BaselineRecord]:
        data = self.store.get(baseline_key(key))
        return BaselineRecord.from_dict(data) if data else None
    
    def _save(self, record: BaselineRecord) -> None:
        self.store.put(baseline_key(record.key), record.to_dict())
    
    def _clamp_alpha(self, alpha: float) -> float:
        return clamp(alpha, self.config.ALPHA_MIN, self.config.ALPHA_MAX)
    
    def get(
        self,
        key: str,
        fallback: float = 0.0,
        default_alpha: Optional[float] = None,
        health: Optional[RoundHealth] = None,
    ) -> Tuple[float, float]:
        """Return (value, alpha), creating the record from fallback if absent"""
        alpha0 = self._clamp_alpha(self.config.DEFAULT_ALPHA if default_alpha is None else default_alpha)
        try:
            with self.locks.lock(key):
                record = self._load(key)
                if record is None:
                    record = BaselineRecord(key=key, value=fallback, alpha=alpha0, updated_at=self.clock())
                    self._save(record)
                return record.value, record.alpha
        except StoreError as e:
            note_failure(health, f"baseline_get:{key}")
            logger.warning("baseline_get_fallback", key=key, error=str(e)[:80])
            return fallback, alpha0
    
    def update(self, key: str, sample: float, health: Optional[RoundHealth] = None) -> Optional[BaselineRecord]:
        """
        Fold one sample into the baseline, log it, then retune alpha.
        Non-finite samples are ignored. Returns None if the store failed.
        """
        if sample is None or not math.isfinite(sample):
            logger.debug("baseline_sample_skipped", key=key, sample=sample)
            return None
        try:
            with self.locks.lock(key):
                now = self.clock()
                record = self._load(key)
                if record is None:
                    record = BaselineRecord(key=key, value=0.0, alpha=self._clamp_alpha(self.config.DEFAULT_ALPHA))
                record.value = record.alpha * sample + (1.0 - record.alpha) * record.value
                record.updated_at = now
                self._save(record)
                self.store.append(SAMPLE_LOG, SampleRecord(key, sample, now).to_dict())
                self._retune_locked(record)
                return record
        except StoreError as e:
            note_failure(health, f"baseline_update:{key}")
            logger.warning("baseline_update_failed", key=key, error=str(e)[:80])
            return None
    
    def set_alpha(self, key: str, alpha: float) -> float:
        """Overwrite alpha (clamped). Creates the record if absent."""
        with self.locks.lock(key):
            record = self._load(key)
            if record is None:
                record = BaselineRecord(key=key, value=0.0, alpha=self.config.DEFAULT_ALPHA)
            record.alpha = self._clamp_alpha(alpha)
            record.updated_at = self.clock()
            self._save(record)
            return record.alpha
    
    # ========== ALPHA RETUNE ==========
    
    def _retune_locked(self, record: BaselineRecord) -> Optional[float]:
        """Caller holds the key lock. Returns the new alpha, or None if skipped."""
        values = [s.value for s in self.last_samples(record.key, self.config.RETUNE_WINDOW)]
        if len(values) < self.config.RETUNE_MIN_SAMPLES:
            return None
        
        arr = np.asarray(values, dtype=float)
        mean = float(arr.mean())
        std = float(arr.std())
        volatility = clamp(std / max(EPS, abs(mean) + EPS), 0.0, 1.0)
        new_alpha = self._clamp_alpha(0.02 + volatility * self.config.RETUNE_GAIN)
        
        if new_alpha != record.alpha:
            logger.debug("baseline_alpha_retuned",
                        key=record.key,
                        old=round(record.alpha, 4),
                        new=round(new_alpha, 4),
                        volatility=round(volatility, 4))
        record.alpha = new_alpha
        self._save(record)
        return new_alpha
    
    # ========== SAMPLE LOG READERS ==========
    
    def last_samples(self, key: str, n: int) -> List[SampleRecord]:
        """Most recent n samples for key, oldest first"""
        return [SampleRecord.from_dict(r) for r in self.store.query_recent(SAMPLE_LOG, key, n)]
    
    def velocity(
        self,
        key: str,
        current_sample: float,
        window: int = 8,
        health: Optional[RoundHealth] = None,
    ) -> VelocityReading:
        """
        Velocity of the most recent interval and its change, over the last
        `window` logged samples plus the current (not yet logged) one.
        Intervals shorter than 1 s count as 1 s.
        """
        try:
            history = self.last_samples(key, window)
        except StoreError as e:
            note_failure(health, f"velocity:{key}")
            logger.warning("velocity_history_unavailable", key=key, error=str(e)[:80])
            history = []
        
        points = [(s.value, s.timestamp) for s in history]
        points.append((current_sample, self.clock()))
        if len(points) < 2:
            return VelocityReading()
        
        velocities = []
        for (v0, t0), (v1, t1) in zip(points, points[1:]):
            velocities.append((v1 - v0) / max(1.0, t1 - t0))
        
        velocity = velocities[-1]
        acceleration = 0.0
        if len(velocities) >= 2:
            last_dt = max(1.0, points[-1][1] - points[-2][1])
            acceleration = (velocities[-1] - velocities[-2]) / last_dt
        
        mw = min(1.0, abs(velocity) * 200.0 + max(0.0, acceleration) * 50.0)
        return VelocityReading(
            velocity=velocity,
            acceleration=acceleration,
            money_weight=clamp(mw * 100.0, 0.0, 100.0),
            velocity_score=clamp(abs(velocity) * 1000.0, 0.0, 100.0),
        )
    
    def spikes(self, key: str, window: int = 12, health: Optional[RoundHealth] = None) -> SpikeReading:
        """Sudden jumps in the logged sample rate"""
        try:
            history = self.last_samples(key, window)
        except StoreError as e:
            note_failure(health, f"spikes:{key}")
            logger.warning("spike_history_unavailable", key=key, error=str(e)[:80])
            return SpikeReading()
        
        if len(history) < 3:
            return SpikeReading()
        
        rates = []
        for a, b in zip(history, history[1:]):
            rates.append((b.value - a.value) / max(1.0, b.timestamp - a.timestamp))
        
        score = 0.0
        patterns = []
        for r in rates:
            if abs(r) > 0.02:
                score += 20.0
                patterns.append("jump_spike")
            if abs(r) > 0.01:
                score += 8.0
                patterns.append("soft_spike")
        
        avg_rate = sum(abs(r) for r in rates) / len(rates)
        return SpikeReading(
            spike_score=clamp(score, 0.0, 100.0),
            spoof_probability=clamp(score / 100.0 + avg_rate * 5.0, 0.0, 1.0),
            patterns=sorted(set(patterns)),
        )
    
    def snapshot(self, keys: List[str]) -> Dict[str, dict]:
        """Current value/alpha for each key that has a record"""
        out = {}
        for key in keys:
            record = self._load(key)
            if record is not None:
                out[key] = record.to_dict()
        return out
