"""
Pattern Memory
==============

Aggregate win-rate statistics keyed by a canonical feature signature.

signature = sha256 over an order-independent, type-stable serialization:
- mapping keys sorted (orjson OPT_SORT_KEYS)
- numbers (not bools) rendered as fixed 6-decimal strings, NaN as "nan"
- sets become sorted lists

learn() folds one boolean outcome into the running mean:
    win_rate = (win_rate * count + outcome) / (count + 1); count += 1
"""
import hashlib
import math
import time
from typing import Any, Callable, Dict, List, Optional

import orjson
import structlog

from oddsflow.core.models import PatternRecord, clamp, normalize
from oddsflow.core.resilience import RoundHealth, note_failure
from oddsflow.core.storage import KeyedLocks, LearningStore, StoreError
from oddsflow.engine.fusion import FusionResult

logger = structlog.get_logger(__name__)

INDEX_KEY = "pattern:index"


def pattern_key(signature: str) -> str:
    return f"pattern:{signature}"


def canonicalize(value: Any) -> Any:
    """Recursively convert a feature structure into a stable, hashable-by-bytes form"""
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        f = float(value)
        if math.isnan(f):
            return "nan"
        return f"{f:.6f}"
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=lambda x: orjson.dumps(x, option=orjson.OPT_SORT_KEYS))
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    return str(value)


def canonical_signature(features: Dict[str, Any]) -> str:
    payload = orjson.dumps(canonicalize(features), option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(payload).hexdigest()


def _bucket(value: float, step: float) -> float:
    """Round down to a multiple of step (NaN -> 0)"""
    if math.isnan(value):
        return 0.0
    return math.floor(value / step) * step


def pattern_features(fusion: FusionResult) -> Dict[str, Any]:
    """Discretized fusion features that identify a recurring market pattern"""
    return {
        "trap": fusion.trap_flag,
        "sweep": fusion.sweep_detected,
        "side": fusion.favored_side or "none",
        "stack": _bucket(fusion.stack_factor, 0.25),
        "smart": _bucket(fusion.smart_money_score, 0.2),
        "divergence": _bucket(min(fusion.divergence, 0.5), 0.1),
        "sync": _bucket(fusion.sync_score, 0.25),
        "tags": set(fusion.signature_tags),
    }


class PatternMemory:
    """
    Signature-keyed PatternRecords on top of a LearningStore.
    Reads degrade to "unknown pattern" on store errors, noted on the caller's RoundHealth;
    learn() holds the signature's lock across its read-modify-write.
    """
    
    def __init__(
        self,
        store: LearningStore,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.locks = locks if locks is not None else KeyedLocks()
        self.clock = clock
    
    @staticmethod
    def signature(features: Dict[str, Any]) -> str:
        return canonical_signature(features)
    
    def lookup(self, signature: str, health: Optional[RoundHealth] = None) -> Optional[PatternRecord]:
        try:
            data = self.store.get(pattern_key(signature))
        except StoreError as e:
            note_failure(health, "pattern_lookup")
            logger.warning("pattern_lookup_failed", signature=signature[:12], error=str(e)[:80])
            return None
        return PatternRecord.from_dict(data) if data else None
    
    def learn(self, signature: str, outcome: bool, metadata: Optional[Dict[str, Any]] = None) -> PatternRecord:
        """Fold one outcome into the signature's record. Store errors propagate."""
        win = 1.0 if outcome else 0.0
        with self.locks.lock(pattern_key(signature)):
            data = self.store.get(pattern_key(signature))
            now = self.clock()
            if data:
                record = PatternRecord.from_dict(data)
                record.win_rate = clamp((record.win_rate * record.count + win) / (record.count + 1), 0.0, 1.0)
                record.count += 1
                record.last_seen = now
                if metadata:
                    record.metadata.update(metadata)
            else:
                record = PatternRecord(
                    signature=signature,
                    count=1,
                    win_rate=win,
                    last_seen=now,
                    metadata=dict(metadata or {}),
                )
                self._index(signature)
            self.store.put(pattern_key(signature), record.to_dict())
        
        logger.info("pattern_learned",
                   signature=signature[:12],
                   outcome=bool(outcome),
                   count=record.count,
                   win_rate=round(record.win_rate, 4))
        return record
    
    def _index(self, signature: str) -> None:
        with self.locks.lock(INDEX_KEY):
            index = self.store.get(INDEX_KEY) or {"signatures": []}
            if signature not in index["signatures"]:
                index["signatures"].append(signature)
                self.store.put(INDEX_KEY, index)
    
    def all_patterns(self) -> List[PatternRecord]:
        index = self.store.get(INDEX_KEY) or {"signatures": []}
        records = []
        for sig in index["signatures"]:
            data = self.store.get(pattern_key(sig))
            if data:
                records.append(PatternRecord.from_dict(data))
        return records
    
    def top_patterns(self, n: int) -> List[PatternRecord]:
        """Most observed patterns first. Store errors propagate."""
        records = self.all_patterns()
        records.sort(key=lambda r: (r.count, r.last_seen), reverse=True)
        return records[:n]
    
    # ========== USE IN ANALYSIS ==========
    
    def insight(self, record: Optional[PatternRecord], fusion: FusionResult) -> Dict[str, Any]:
        """
        Win-rate view of the current pattern: from memory when it recurs,
        otherwise a heuristic from the live smart-money and direction signals
        """
        if record is not None:
            return {
                "source": "memory",
                "count": record.count,
                "win_rate": record.win_rate,
            }
        wr = 0.5 + 0.5 * (fusion.smart_money_score * 0.6 + abs(fusion.direction_score) * 0.4)
        if fusion.trap_flag:
            wr -= 0.15
        return {
            "source": "heuristic",
            "count": 0,
            "win_rate": clamp(wr, 0.0, 1.0),
        }
    
    @staticmethod
    def blend(probs: Dict[str, float], side: Optional[str], record: Optional[PatternRecord], prior: float) -> Dict[str, float]:
        """
        Pull the favored side's probability toward the pattern's win-rate,
        weighted by count / (count + prior), then renormalize
        """
        if record is None or side not in probs or record.count <= 0:
            return dict(probs)
        weight = record.count / (record.count + prior)
        out = dict(probs)
        out[side] = (1.0 - weight) * out[side] + weight * record.win_rate
        return normalize(out)
