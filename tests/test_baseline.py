"""
Adaptive baseline store tests (EWMA, alpha retune, velocity, spikes)
"""
import numpy as np
import pytest


@pytest.fixture
def baselines(memory_store, test_settings, clock):
    from oddsflow.engine.baseline import AdaptiveBaselineStore
    return AdaptiveBaselineStore(memory_store, test_settings, clock=clock)


# ============================================================
# A. GET / UPDATE
# ============================================================

class TestBaselineRecords:
    """Test record creation and the EWMA rule"""
    
    def test_get_creates_record(self, baselines, memory_store):
        value, alpha = baselines.get("sig", fallback=1.5, default_alpha=0.3)
        
        assert value == 1.5
        assert alpha == 0.3
        assert memory_store.get("baseline:sig")["value"] == 1.5
        # Second read returns the stored record, not the new fallback
        assert baselines.get("sig", fallback=9.0) == (1.5, 0.3)
    
    def test_default_alpha_clamped(self, baselines):
        _, alpha = baselines.get("sig", default_alpha=5.0)
        assert alpha == 0.9
    
    def test_ewma_rule(self, baselines):
        baselines.get("sig", fallback=2.0, default_alpha=0.25)
        record = baselines.update("sig", 4.0)
        
        assert record.value == pytest.approx(0.25 * 4.0 + 0.75 * 2.0)
    
    def test_update_logs_sample(self, baselines, clock):
        baselines.update("sig", 1.0)
        clock.advance(5)
        baselines.update("sig", 2.0)
        
        samples = baselines.last_samples("sig", 10)
        assert [s.value for s in samples] == [1.0, 2.0]
        assert samples[1].timestamp - samples[0].timestamp == 5
    
    def test_non_finite_sample_skipped(self, baselines):
        assert baselines.update("sig", float("nan")) is None
        assert baselines.last_samples("sig", 10) == []
    
    def test_converges_under_identical_samples(self, baselines):
        values = []
        for _ in range(200):
            values.append(baselines.update("sig", 5.0).value)
        
        assert abs(values[-1] - 5.0) < 0.05
        # Never overshoots, never moves away
        assert all(b >= a for a, b in zip(values, values[1:]))
        assert max(values) <= 5.0 + 1e-9


# ============================================================
# B. ALPHA RETUNE
# ============================================================

class TestAlphaRetune:
    """Test variance-driven alpha"""
    
    def test_skipped_below_min_samples(self, baselines):
        baselines.get("sig", 0.0, default_alpha=0.25)
        for v in (1.0, 3.0, 1.0):
            record = baselines.update("sig", v)
        
        assert record.alpha == 0.25
    
    def test_stable_signal_gets_slow_alpha(self, baselines):
        for _ in range(10):
            record = baselines.update("sig", 3.0)
        
        assert record.alpha == pytest.approx(0.02)
    
    def test_alpha_trends_up_with_variance(self, baselines):
        """Scenario C: 40 samples with increasing variance"""
        _, initial = baselines.get("sig", 10.0, default_alpha=0.02)
        
        alphas = []
        for i in range(1, 41):
            sample = 10.0 + ((-1) ** i) * 0.1 * i
            alphas.append(baselines.update("sig", sample).alpha)
        
        retuned = alphas[7:]
        assert retuned[-1] > initial
        assert retuned[-1] > retuned[0]
        corr = np.corrcoef(np.arange(len(retuned)), np.asarray(retuned))[0, 1]
        assert corr > 0.8
    
    def test_alpha_bounds_under_extreme_samples(self, baselines):
        rng = np.random.default_rng(3)
        for v in rng.normal(0, 1e6, size=60):
            record = baselines.update("sig", float(v))
            assert 0.01 <= record.alpha <= 0.9
    
    def test_set_alpha_clamped(self, baselines):
        assert baselines.set_alpha("sig", 0.0) == 0.01
        assert baselines.set_alpha("sig", 2.0) == 0.9


# ============================================================
# C. VELOCITY / SPIKES
# ============================================================

class TestFlowReaders:
    """Test sample-log readers"""
    
    def test_velocity(self, baselines, clock):
        baselines.update("flow", 0.0)
        clock.advance(10)
        baselines.update("flow", 1.0)
        clock.advance(10)
        
        reading = baselines.velocity("flow", 2.0)
        
        assert reading.velocity == pytest.approx(0.1)
        assert reading.acceleration == pytest.approx(0.0)
        assert reading.money_weight == 100.0
        assert reading.velocity_score == 100.0
    
    def test_velocity_without_history(self, baselines):
        reading = baselines.velocity("flow", 1.0)
        
        assert reading.velocity == 0.0
        assert reading.money_weight == 0.0
    
    def test_sub_second_interval_floored(self, baselines):
        baselines.update("flow", 0.0)
        reading = baselines.velocity("flow", 0.001)
        
        assert reading.velocity == pytest.approx(0.001)
        assert 0.0 <= reading.money_weight <= 100.0
    
    def test_spikes(self, baselines, clock):
        for v in (0.0, 0.5, 0.5, 0.5):
            baselines.update("flow", v)
            clock.advance(1)
        
        reading = baselines.spikes("flow")
        
        assert reading.spike_score == 28.0
        assert reading.patterns == ["jump_spike", "soft_spike"]
        assert reading.spoof_probability == 1.0
    
    def test_no_spikes_on_flat_history(self, baselines, clock):
        for _ in range(5):
            baselines.update("flow", 1.0)
            clock.advance(1)
        
        reading = baselines.spikes("flow")
        assert reading.spike_score == 0.0
        assert reading.spoof_probability == 0.0


# ============================================================
# D. DEGRADED STORE
# ============================================================

class TestDegradedStore:
    """Store failures fall back instead of raising"""
    
    def test_get_falls_back(self, failing_store, test_settings):
        from oddsflow.engine.baseline import AdaptiveBaselineStore
        from oddsflow.core.resilience import RoundHealth
        
        baselines = AdaptiveBaselineStore(failing_store, test_settings)
        health = RoundHealth()
        
        assert baselines.get("sig", fallback=0.7, health=health) == (0.7, test_settings.DEFAULT_ALPHA)
        assert health.failures == ["baseline_get:sig"]
    
    def test_update_and_readers_fall_back(self, failing_store, test_settings):
        from oddsflow.engine.baseline import AdaptiveBaselineStore
        from oddsflow.core.resilience import RoundHealth
        
        baselines = AdaptiveBaselineStore(failing_store, test_settings)
        health = RoundHealth()
        
        assert baselines.update("sig", 1.0, health=health) is None
        assert baselines.velocity("sig", 1.0, health=health).velocity == 0.0
        assert baselines.spikes("sig", health=health).spike_score == 0.0
        assert health.failures == ["baseline_update:sig", "velocity:sig", "spikes:sig"]
    
    def test_failure_without_health_still_falls_back(self, failing_store, test_settings):
        from oddsflow.engine.baseline import AdaptiveBaselineStore
        
        baselines = AdaptiveBaselineStore(failing_store, test_settings)
        
        assert baselines.get("sig", fallback=0.4)[0] == 0.4


# ============================================================
# E. CONCURRENCY
# ============================================================

class TestConcurrentUpdates:
    """Parallel updates on one key are serialized"""
    
    def test_no_sample_lost(self, memory_store, test_settings):
        import threading
        from oddsflow.core.storage import KeyedLocks
        from oddsflow.engine.baseline import AdaptiveBaselineStore
        
        locks = KeyedLocks()
        baselines = AdaptiveBaselineStore(memory_store, test_settings, locks)
        threads_n, calls = 6, 40
        start = threading.Barrier(threads_n)
        
        def worker():
            start.wait()
            for _ in range(calls):
                baselines.update("k", 1.0)
        
        threads = [threading.Thread(target=worker) for _ in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        
        assert len(memory_store.query_recent("samples", "k", 10_000)) == threads_n * calls
        assert memory_store.get("baseline:k") is not None
        assert len(locks) == 0
