# ridehail/__init__.py
"""
Движок жизненного цикла поездок и подбора водителей.
"""

__version__ = "1.0.0"
