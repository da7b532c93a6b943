# ridehail/services/rides_api/__init__.py
"""
Rides API: HTTP-граница движка поездок.
"""
