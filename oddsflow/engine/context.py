"""
Context, value and score projection
===================================

- context_adjustment: bounded per-side nudges from lineup/injury/form/
  motivation scalars, re-centred so the two sides sum to zero
- apply_context: multiplicative application to a probability vector
- value_spot: edge of the estimate over the market, with a stake tier
- expected_score: per-side goal expectation from win probabilities
"""
import math
from typing import Dict

from oddsflow.core.models import OUTCOMES, clamp
from oddsflow.core.schemas import MatchContext

PROB_FLOOR = 1e-4
PROB_CEIL = 0.9999


def context_adjustment(ctx: MatchContext) -> Dict[str, float]:
    home = 0.0
    away = 0.0
    home += clamp(ctx.lineup_impact * 0.12, -0.15, 0.15)
    home -= clamp(ctx.injury_impact * 0.10, -0.15, 0.15)
    home += clamp(ctx.form_home * 0.08, -0.12, 0.12)
    home += clamp(ctx.motivation * 0.06, -0.08, 0.08)
    away += clamp(-ctx.lineup_impact * 0.12, -0.15, 0.15)
    away -= clamp(-ctx.injury_impact * 0.10, -0.15, 0.15)
    away += clamp(ctx.form_away * 0.08, -0.12, 0.12)
    away += clamp(-ctx.motivation * 0.06, -0.08, 0.08)
    
    total = home + away
    if abs(total) > 1e-4:
        home -= total / 2.0
        away -= total / 2.0
    return {"home": home, "away": away}


def rebalance_draw(probs: Dict[str, float]) -> Dict[str, float]:
    """Clamp home/away, give the draw the remainder, renormalize"""
    home = clamp(probs["home"], PROB_FLOOR, PROB_CEIL)
    away = clamp(probs["away"], PROB_FLOOR, PROB_CEIL)
    draw = max(PROB_FLOOR, 1.0 - home - away)
    total = max(1e-9, home + draw + away)
    return {"home": home / total, "draw": draw / total, "away": away / total}


def apply_context(probs: Dict[str, float], adjustment: Dict[str, float]) -> Dict[str, float]:
    if not any(adjustment.values()):
        return dict(probs)
    out = dict(probs)
    out["home"] = probs["home"] * (1.0 + adjustment["home"])
    out["away"] = probs["away"] * (1.0 + adjustment["away"])
    return rebalance_draw(out)


def _edge_label(edge: float) -> str:
    if edge > 0.05:
        return "value_strong"
    if edge > 0.02:
        return "value"
    if edge < -0.05:
        return "overpriced_strong"
    if edge < -0.02:
        return "overpriced"
    return "no_edge"


def value_spot(market: Dict[str, float], estimate: Dict[str, float]) -> dict:
    edges = {k: estimate.get(k, 0.0) - (0.0 if math.isnan(market.get(k, 0.0)) else market.get(k, 0.0))
             for k in OUTCOMES}
    best = max(edges, key=edges.get)
    best_edge = edges[best]
    
    if best_edge > 0.08:
        tier, stake = "aggressive", 5
    elif best_edge > 0.04:
        tier, stake = "moderate", 2
    elif best_edge > 0.02:
        tier, stake = "small", 1
    else:
        tier, stake = "no_bet", 0
    
    return {
        "edges": edges,
        "labels": {k: _edge_label(v) for k, v in edges.items()},
        "best": best,
        "best_edge": best_edge,
        "stake_tier": tier,
        "stake_pct": stake,
    }


def expected_score(probs: Dict[str, float], adjustment: Dict[str, float]) -> dict:
    p_home = max(PROB_FLOOR, probs.get("home", 0.33))
    p_away = max(PROB_FLOOR, probs.get("away", 0.33))
    home_xg = max(0.1, -math.log(max(1e-6, 1.0 - p_home)) * 0.6) * (1.0 + adjustment["home"])
    away_xg = max(0.1, -math.log(max(1e-6, 1.0 - p_away)) * 0.6) * (1.0 + adjustment["away"])
    home_xg = round(home_xg, 2)
    away_xg = round(away_xg, 2)
    return {
        "home_xg": home_xg,
        "away_xg": away_xg,
        "expected_score": f"{home_xg:.2f} - {away_xg:.2f}",
    }
