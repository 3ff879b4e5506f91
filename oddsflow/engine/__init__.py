"""Analytical core: extraction, learning state, fusion and classification"""
from .engine import AnalysisEngine, AnalysisResult, CaseNotFoundError, BASELINE_KEYS
from .classifier import DecisionClassifier, Verdict
from .profiles import ScoringProfile, get_profile, PROFILES

__all__ = [
    "AnalysisEngine",
    "AnalysisResult",
    "CaseNotFoundError",
    "BASELINE_KEYS",
    "DecisionClassifier",
    "Verdict",
    "ScoringProfile",
    "get_profile",
    "PROFILES",
]
