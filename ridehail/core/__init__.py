# ridehail/core/__init__.py
"""
Доменный слой: жизненный цикл поездки и подбор водителей.
"""
