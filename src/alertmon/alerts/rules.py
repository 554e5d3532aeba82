# src/alertmon/alerts/rules.py
from __future__ import annotations

from alertmon.utils.types import AlertCondition

CROSS_TOLERANCE = 0.01  # "cross" fires within 1% of target

def is_condition_met(condition: AlertCondition, target_price: float, current_price: float) -> bool:
    """
    - "above" → price >  target
      "below" → price <  target
      "cross" → |price - target| < 1% of target
      "exact" → price == target
    """
    if condition == "above":
        return current_price > target_price
    if condition == "below":
        return current_price < target_price
    if condition == "cross":
        return abs(current_price - target_price) < target_price * CROSS_TOLERANCE
    if condition == "exact":
        return current_price == target_price
    return False
