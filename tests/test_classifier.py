"""
Decision classifier tests (priority order and layer counting)
"""
import pytest


def _fusion(**kwargs):
    from oddsflow.engine.fusion import FusionResult
    return FusionResult(**kwargs)


ALL_LAYERS = dict(
    divergence=0.10,          # void divergence
    flow_power=80.0,          # sharp flow
    smart_money_score=0.7,    # smart money
    trap_score=60.0,          # sweep trap
    momentum_total=1.0,       # with overround_now < 0.05: hidden margin
    direction_score=0.5,
)


# ============================================================
# A. LAYERS
# ============================================================

class TestLayers:
    """Test independent confirmation layers"""
    
    def test_all_layers(self):
        from oddsflow.engine.classifier import DecisionClassifier
        
        flags = DecisionClassifier().layers(_fusion(**ALL_LAYERS), overround_now=0.01)
        
        assert flags == ["void_divergence", "sharp_flow", "smart_money", "sweep_trap", "hidden_margin"]
    
    def test_trap_disables_sharp_flow(self):
        from oddsflow.engine.classifier import DecisionClassifier
        
        flags = DecisionClassifier().layers(_fusion(flow_power=90.0, trap_flag=True), overround_now=float("nan"))
        
        assert flags == []
    
    def test_no_hidden_margin_without_movement(self):
        from oddsflow.engine.classifier import DecisionClassifier
        
        assert DecisionClassifier().layers(_fusion(), overround_now=0.0) == []


# ============================================================
# B. PRIORITY ORDER
# ============================================================

class TestPriority:
    """Earlier states preempt later ones"""
    
    def test_overload(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=0.6, **ALL_LAYERS), overround_now=0.01)
        
        assert d.verdict == Verdict.OVERLOAD
        assert d.layers == 5
        assert d.side == "home"
    
    def test_five_layers_weak_composite_is_lock(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=0.5, **ALL_LAYERS), overround_now=0.01)
        
        assert d.verdict == Verdict.LOCK
    
    def test_lock_preempts_strong_signal(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        fusion = _fusion(divergence=0.1, flow_power=75.0, smart_money_score=0.7, composite=0.9)
        d = DecisionClassifier().classify(fusion)
        
        assert d.verdict == Verdict.LOCK
        assert d.layers == 3
    
    def test_contradiction_preempts_strong_signal(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        fusion = _fusion(sync_score=0.25, divergence=0.1, main_momentum=0.2, line_momentum=0.3, composite=0.9)
        d = DecisionClassifier().classify(fusion)
        
        assert d.verdict == Verdict.CONTRADICTION_ALERT
        assert d.reasons == ["markets_out_of_sync"]
        assert d.side is None
    
    def test_contradiction_needs_both_markets_moving(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        fusion = _fusion(sync_score=0.25, divergence=0.1, main_momentum=0.0, line_momentum=0.3, composite=0.9)
        d = DecisionClassifier().classify(fusion)
        
        assert d.verdict == Verdict.STRONG_SIGNAL
    
    def test_pattern_memory_contradiction(self):
        from oddsflow.core.models import PatternRecord
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        pattern = PatternRecord(signature="s", count=8, win_rate=0.2)
        d = DecisionClassifier().classify(_fusion(direction_score=0.6, composite=0.5), pattern=pattern)
        
        assert d.verdict == Verdict.CONTRADICTION_ALERT
        assert d.reasons == ["pattern_memory_disagrees"]
    
    def test_young_pattern_ignored(self):
        from oddsflow.core.models import PatternRecord
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        pattern = PatternRecord(signature="s", count=2, win_rate=0.0)
        d = DecisionClassifier().classify(_fusion(direction_score=0.6, composite=0.5), pattern=pattern)
        
        assert d.verdict == Verdict.STRONG_SIGNAL
    
    @pytest.mark.parametrize("composite,direction,side", [
        (0.5, 0.4, "home"),
        (0.5, -0.4, "away"),
        (-0.5, 0.4, "away"),
    ])
    def test_strong_signal_side(self, composite, direction, side):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=composite, direction_score=direction))
        
        assert d.verdict == Verdict.STRONG_SIGNAL
        assert d.side == side
        assert side in d.label
    
    def test_strong_signal_preempts_trap(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=0.4, direction_score=0.2, trap_flag=True))
        
        assert d.verdict == Verdict.STRONG_SIGNAL
    
    def test_trap_flag(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=0.1, trap_flag=True, trap_flags=["multi_flip_lines"]))
        
        assert d.verdict == Verdict.TRAP
        assert d.reasons == ["multi_flip_lines"]
        assert d.recommendation == "Not recommended"
    
    def test_trap_score(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=0.1, trap_score=40.0))
        
        assert d.verdict == Verdict.TRAP
    
    def test_ambiguous(self):
        from oddsflow.engine.classifier import DecisionClassifier, Verdict
        
        d = DecisionClassifier().classify(_fusion(composite=0.2))
        
        assert d.verdict == Verdict.AMBIGUOUS
        assert d.label == "Mixed signals"
        assert d.to_dict()["verdict"] == "AMBIGUOUS"
