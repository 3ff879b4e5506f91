"""
Oddsflow
========

Adaptive signal-fusion and learning engine for paired opening/current
market quotes.

Packages:
- core: data model, persistence collaborator, request schemas
- engine: extractor, baseline, simulator, fusion, memory, corrector,
  classifier, autotune and the orchestrating AnalysisEngine
"""

__version__ = "1.0.0"
