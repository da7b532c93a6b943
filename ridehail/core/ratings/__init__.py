# ridehail/core/ratings/__init__.py
"""
Оценки водителей после поездки.
"""

from ridehail.core.ratings.aggregator import RatingAggregator, fold_rating

__all__ = ["RatingAggregator", "fold_rating"]
