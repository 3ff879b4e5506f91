"""
RESILIENCE MODULE
Circuit breaker around the learning store so a dead backend degrades the
analysis to fallback values instead of failing it
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from oddsflow.core.storage import LearningStore, StoreError, StoreUnavailableError

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject calls
    HALF_OPEN = "half_open"  # Probing for recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 3          # Consecutive failures before opening
    recovery_timeout_s: float = 30.0    # Time before a half-open probe
    success_threshold: int = 1          # Successes needed to close again


class CircuitBreaker:
    """
    CLOSED -> OPEN after failure_threshold consecutive failures,
    OPEN -> HALF_OPEN after recovery_timeout_s,
    HALF_OPEN -> CLOSED on success / OPEN on failure.
    """
    
    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None, clock=time.monotonic):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._state_change_time = clock()
    
    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._state_change_time >= self.config.recovery_timeout_s:
                self._transition_to(CircuitState.HALF_OPEN)
        return self._state
    
    def can_proceed(self) -> bool:
        return self.state != CircuitState.OPEN
    
    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        else:
            self._failure_count = 0
    
    def record_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
            return
        self._failure_count += 1
        if self._failure_count >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)
    
    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._state_change_time = self._clock()
        self._failure_count = 0
        self._success_count = 0
        
        logger.info("circuit_state_change",
                   breaker=self.name,
                   old_state=old_state.value,
                   new_state=new_state.value)
    
    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
        }


@dataclass
class RoundHealth:
    """
    Store failures seen by one analysis call.
    Created per call and passed down to the components it uses.
    """
    failures: List[str] = field(default_factory=list)

    def note(self, where: str) -> None:
        self.failures.append(where)

    @property
    def degraded(self) -> bool:
        return bool(self.failures)


def note_failure(health: Optional[RoundHealth], where: str) -> None:
    if health is not None:
        health.note(where)


class GuardedStore(LearningStore):
    """
    LearningStore proxy that trips a circuit breaker on backend errors.
    Calls still raise StoreError; callers choose their fallback and
    note the failure on the RoundHealth of the call they belong to.
    """
    
    def __init__(self, store: LearningStore, breaker: Optional[CircuitBreaker] = None):
        self.store = store
        self.breaker = breaker or CircuitBreaker("learning_store")
    
    def _call(self, op: str, fn, *args):
        if not self.breaker.can_proceed():
            raise StoreUnavailableError(f"{op}: circuit open")
        try:
            result = fn(*args)
        except StoreError as e:
            self.breaker.record_failure()
            logger.warning("store_call_failed", op=op, error=str(e)[:120])
            raise
        self.breaker.record_success()
        return result
    
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._call("get", self.store.get, key)
    
    def put(self, key: str, record: Dict[str, Any]) -> None:
        self._call("put", self.store.put, key, record)
    
    def append(self, log: str, record: Dict[str, Any]) -> None:
        self._call("append", self.store.append, log, record)
    
    def query_recent(self, log: str, key: Optional[str], n: int) -> List[Dict[str, Any]]:
        return self._call("query_recent", self.store.query_recent, log, key, n)
