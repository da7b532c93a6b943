# ridehail/core/settlement/__init__.py
"""
Расчёт по завершённой поездке.
"""

from ridehail.core.settlement.engine import SettlementEngine

__all__ = ["SettlementEngine"]
