# ridehail/core/matching/__init__.py
"""
Подбор водителей для поездок.
"""

from ridehail.core.matching.engine import MatchCandidate, MatchingEngine

__all__ = ["MatchCandidate", "MatchingEngine"]
