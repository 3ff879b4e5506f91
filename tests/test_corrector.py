"""
Historical corrector and context adjustment tests
"""
import pytest


PROBS = {"home": 0.5, "draw": 0.3, "away": 0.2}


def _add_case(store, line_momentum, main_momentum, label):
    store.append("cases", {
        "key": f"case-{line_momentum}-{main_momentum}-{label}",
        "analysis_result": {
            "line_momentum": line_momentum,
            "main_momentum": main_momentum,
            "label": label,
        },
    })


# ============================================================
# A. HISTORICAL CORRECTOR
# ============================================================

class TestHistoricalCorrector:
    """Test similarity-based correction"""
    
    def test_no_history_no_change(self, memory_store):
        from oddsflow.engine.corrector import HistoricalCorrector
        
        probs, corr = HistoricalCorrector(memory_store).correct(PROBS, 0.5, 0.5, "LOCK")
        
        assert probs == PROBS
        assert corr.correction == 0.0
        assert corr.cases_considered == 0
    
    def test_identical_case_boosts_leader(self, memory_store):
        from oddsflow.engine.corrector import HistoricalCorrector
        
        _add_case(memory_store, 0.5, 0.5, "LOCK")
        probs, corr = HistoricalCorrector(memory_store).correct(PROBS, 0.5, 0.5, "LOCK")
        
        # mean similarity 1.0 -> 0.25, clamped to 0.2
        assert corr.correction == pytest.approx(0.2)
        assert corr.leading_outcome == "home"
        assert probs["home"] == pytest.approx(0.6 / 1.1)
        assert sum(probs.values()) == pytest.approx(1.0)
    
    def test_label_mismatch_discounted(self, memory_store):
        from oddsflow.engine.corrector import HistoricalCorrector
        
        _add_case(memory_store, 0.5, 0.5, "TRAP")
        probs, corr = HistoricalCorrector(memory_store).correct(PROBS, 0.5, 0.5, "LOCK")
        
        assert corr.mean_similarity == pytest.approx(0.6)
        assert corr.correction == pytest.approx(0.05)
        assert probs["home"] == pytest.approx(0.525 / 1.025)
    
    def test_distant_cases_penalise_leader(self, memory_store):
        from oddsflow.engine.corrector import HistoricalCorrector
        
        for _ in range(3):
            _add_case(memory_store, 50.0, 50.0, "TRAP")
        probs, corr = HistoricalCorrector(memory_store).correct(PROBS, 0.0, 0.0, "LOCK")
        
        assert corr.correction == pytest.approx(-0.2)
        assert probs["home"] < PROBS["home"]
    
    def test_window_limits_history(self, memory_store):
        from oddsflow.engine.corrector import HistoricalCorrector
        
        for _ in range(5):
            _add_case(memory_store, 50.0, 50.0, "TRAP")
        _add_case(memory_store, 0.1, 0.1, "LOCK")
        _, corr = HistoricalCorrector(memory_store, window=1).correct(PROBS, 0.1, 0.1, "LOCK")
        
        assert corr.cases_considered == 1
        assert corr.correction == pytest.approx(0.2)
    
    def test_store_failure_no_correction(self, failing_store):
        from oddsflow.engine.corrector import HistoricalCorrector
        from oddsflow.core.resilience import RoundHealth
        
        health = RoundHealth()
        probs, corr = HistoricalCorrector(failing_store).correct(PROBS, 0.5, 0.5, "LOCK", health=health)
        
        assert probs == PROBS
        assert corr.correction == 0.0
        assert health.degraded


# ============================================================
# B. CONTEXT / VALUE / SCORE
# ============================================================

class TestContext:
    """Test contextual adjustment"""
    
    def test_lineup_mirrors(self):
        from oddsflow.core.schemas import MatchContext
        from oddsflow.engine.context import context_adjustment
        
        adj = context_adjustment(MatchContext(lineup_impact=1.0))
        
        assert adj["home"] == pytest.approx(0.12)
        assert adj["away"] == pytest.approx(-0.12)
    
    def test_one_sided_form_recentred(self):
        from oddsflow.core.schemas import MatchContext
        from oddsflow.engine.context import context_adjustment
        
        adj = context_adjustment(MatchContext(form_home=1.0))
        
        assert adj["home"] == pytest.approx(0.04)
        assert adj["away"] == pytest.approx(-0.04)
    
    @pytest.mark.parametrize("values", [
        (0.3, -0.2, 0.9, -1.0, 0.5),
        (-1.0, 1.0, -1.0, 1.0, -1.0),
        (0.0, 0.0, 0.7, 0.7, 0.0),
    ])
    def test_adjustments_sum_to_zero(self, values):
        from oddsflow.core.schemas import MatchContext
        from oddsflow.engine.context import context_adjustment
        
        ctx = MatchContext(**dict(zip(
            ("lineup_impact", "injury_impact", "form_home", "form_away", "motivation"), values,
        )))
        adj = context_adjustment(ctx)
        
        assert adj["home"] + adj["away"] == pytest.approx(0.0, abs=1e-4)
    
    def test_apply_context(self):
        from oddsflow.engine.context import apply_context
        
        assert apply_context(PROBS, {"home": 0.0, "away": 0.0}) == PROBS
        
        out = apply_context(PROBS, {"home": 0.1, "away": -0.1})
        assert out["home"] > PROBS["home"]
        assert out["away"] < PROBS["away"]
        assert sum(out.values()) == pytest.approx(1.0)


class TestValueAndScore:
    """Test value spotter and expected score projection"""
    
    def test_value_spot(self):
        from oddsflow.engine.context import value_spot
        
        value = value_spot(
            {"home": 0.4, "draw": 0.3, "away": 0.3},
            {"home": 0.5, "draw": 0.25, "away": 0.25},
        )
        
        assert value["best"] == "home"
        assert value["best_edge"] == pytest.approx(0.1)
        assert value["labels"] == {"home": "value_strong", "draw": "overpriced", "away": "overpriced"}
        assert value["stake_tier"] == "aggressive"
        assert value["stake_pct"] == 5
    
    def test_no_edge(self):
        from oddsflow.engine.context import value_spot
        
        value = value_spot(PROBS, PROBS)
        
        assert value["stake_tier"] == "no_bet"
        assert set(value["labels"].values()) == {"no_edge"}
    
    def test_expected_score(self):
        from oddsflow.engine.context import expected_score
        
        esp = expected_score({"home": 0.5, "draw": 0.25, "away": 0.25}, {"home": 0.0, "away": 0.0})
        
        assert esp["home_xg"] == 0.42
        assert esp["away_xg"] == 0.17
        assert esp["expected_score"] == "0.42 - 0.17"
    
    def test_expected_score_floor(self):
        from oddsflow.engine.context import expected_score
        
        esp = expected_score({"home": 0.01, "draw": 0.01, "away": 0.98}, {"home": 0.0, "away": 0.0})
        assert esp["home_xg"] == 0.1
