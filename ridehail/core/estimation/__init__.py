# ridehail/core/estimation/__init__.py
"""
Оценка расстояния, времени и стоимости поездки.
"""

from ridehail.core.estimation.engine import EstimationEngine, haversine_km, round_half_up

__all__ = ["EstimationEngine", "haversine_km", "round_half_up"]
