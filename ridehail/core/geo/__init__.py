# ridehail/core/geo/__init__.py
"""
Geo-индекс текущих позиций водителей.
"""

from ridehail.core.geo.index import DRIVERS_GEO_KEY, GeoHit, GeoIndex

__all__ = ["DRIVERS_GEO_KEY", "GeoHit", "GeoIndex"]
