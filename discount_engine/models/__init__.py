"""Models package - exports all SQLAlchemy models."""
from discount_engine.models.discount_rule import (
    DiscountRule, DiscountType, DiscountAppliesTo, DiscountUsageLimit
)
from discount_engine.models.discount_usage import DiscountUsage

__all__ = [
    'DiscountRule', 'DiscountType', 'DiscountAppliesTo', 'DiscountUsageLimit',
    'DiscountUsage',
]
