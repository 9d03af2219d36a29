"""
Discount amount calculation for a single rule.

Pure functions over a rule record and a cart snapshot. The calculator does
not re-validate the rule; callers run the validation service first.

Cart items are dicts:
    {'product_id': ..., 'quantity': ..., 'subtotal': ..., 'category_id': ... (optional)}
"""
from decimal import Decimal
from datetime import datetime
from typing import List, Dict, Optional, Any, Mapping

from discount_engine.models import DiscountRule, DiscountType, DiscountAppliesTo, DiscountUsageLimit
from discount_engine.utils.number_format import to_decimal, to_money, ZERO

HUNDRED = Decimal('100')


def id_set(values) -> set:
    """Normalize a list of external identifiers for membership checks."""
    return {str(v) for v in (values or [])}


def item_category(item: Dict[str, Any], category_lookup: Optional[Mapping] = None) -> Optional[str]:
    """
    Resolve the category of a cart item.

    The item's own ``category_id`` wins; otherwise ``category_lookup`` maps
    product id -> category id. Returns None when membership is unknown.
    """
    category_id = item.get('category_id')
    if category_id is None and category_lookup:
        product_id = item.get('product_id')
        category_id = category_lookup.get(product_id)
        if category_id is None:
            category_id = category_lookup.get(str(product_id))
    return str(category_id) if category_id is not None else None


def has_category_data(items: List[Dict[str, Any]], category_lookup: Optional[Mapping] = None) -> bool:
    """True when at least one cart item has a known category."""
    return any(item_category(item, category_lookup) is not None for item in items or [])


def cart_quantity(items: List[Dict[str, Any]]) -> Decimal:
    """Sum of all item quantities."""
    return sum((to_decimal(item.get('quantity')) for item in items or []), ZERO)


def eligible_items(rule: DiscountRule, items: List[Dict[str, Any]],
                   category_lookup: Optional[Mapping] = None) -> List[Dict[str, Any]]:
    """Cart items the rule's product/category scope covers (empty for order scope)."""
    if rule.applies_to == DiscountAppliesTo.PRODUCT.value:
        product_ids = id_set(rule.product_ids)
        return [item for item in items or [] if str(item.get('product_id')) in product_ids]

    if rule.applies_to == DiscountAppliesTo.CATEGORY.value:
        category_ids = id_set(rule.category_ids)
        return [
            item for item in items or []
            if item_category(item, category_lookup) in category_ids
        ]

    return []


def _percentage_of(base: Decimal, value: Decimal) -> Decimal:
    return base * value / HUNDRED


def _build_applied_discount(rule: DiscountRule, amount: Decimal, item_ids: List[str]) -> Dict[str, Any]:
    return {
        'discount_id': rule.id,
        'discount_name': rule.name,
        'discount_type': rule.discount_type,
        'discount_value': to_decimal(rule.discount_value),
        'applied_amount': amount,
        'applies_to': rule.applies_to,
        'item_ids': item_ids or None,
        'requires_manager_approval': bool(rule.requires_manager_approval),
        'applied_at': datetime.now(),
    }


def build_result(original_amount: Decimal, discount_amount: Decimal,
                 applied_discounts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Assemble a calculation result.

    The discount is clamped to the original amount so that
    final_amount + discount_amount == original_amount and final_amount >= 0.
    """
    original_amount = to_money(original_amount)
    discount_amount = min(to_money(discount_amount), original_amount)
    return {
        'original_amount': original_amount,
        'discount_amount': discount_amount,
        'final_amount': original_amount - discount_amount,
        'applied_discounts': applied_discounts,
        'savings': discount_amount,
    }


def calculate_discount_amount(rule: DiscountRule, items: List[Dict[str, Any]], subtotal,
                              category_lookup: Optional[Mapping] = None):
    """
    Compute one rule's discount in isolation.

    Returns:
        (amount, base, item_ids) where 0 <= amount <= base.
    """
    value = to_decimal(rule.discount_value)
    is_percentage = rule.discount_type == DiscountType.PERCENTAGE.value
    item_ids: List[str] = []

    if rule.applies_to == DiscountAppliesTo.ORDER.value:
        base = to_money(subtotal)
        amount = _percentage_of(base, value) if is_percentage else value

        if rule.maximum_discount_amount is not None:
            amount = min(amount, to_decimal(rule.maximum_discount_amount))

    elif rule.applies_to in (DiscountAppliesTo.PRODUCT.value, DiscountAppliesTo.CATEGORY.value):
        # Category scope contributes zero when membership data is missing
        matching = eligible_items(rule, items, category_lookup)
        base = sum((to_money(item.get('subtotal')) for item in matching), ZERO)
        amount = _percentage_of(base, value) if is_percentage else min(value, base)
        item_ids = [str(item.get('product_id')) for item in matching]

    else:
        base = ZERO
        amount = ZERO

    amount = max(ZERO, min(amount, base))
    return to_money(amount), base, item_ids


def calculate_discount(rule: DiscountRule, items: List[Dict[str, Any]], subtotal,
                       category_lookup: Optional[Mapping] = None) -> Dict[str, Any]:
    """
    Calculate the monetary effect of one rule on a cart.

    Args:
        rule: DiscountRule (persisted or built with build_manual_discount)
        items: Cart items
        subtotal: Whole-order subtotal
        category_lookup: Optional mapping product id -> category id

    Returns:
        Calculation result dict with one applied discount.
    """
    amount, _, item_ids = calculate_discount_amount(rule, items, subtotal, category_lookup)
    return build_result(subtotal, amount, [_build_applied_discount(rule, amount, item_ids)])


def build_manual_discount(discount_type: str, discount_value, name: str = 'Manual Discount',
                          company_id: Optional[str] = None) -> DiscountRule:
    """
    Build an unsaved order-scope rule for a cashier's ad-hoc discount.

    The rule is never added to a session; use it with calculate_discount.
    """
    if discount_type not in (DiscountType.PERCENTAGE.value, DiscountType.FIXED.value):
        discount_type = DiscountType.FIXED.value

    return DiscountRule(
        id=None,
        company_id=company_id or '',
        name=name,
        discount_type=discount_type,
        discount_value=to_decimal(discount_value),
        applies_to=DiscountAppliesTo.ORDER.value,
        usage_limit=DiscountUsageLimit.UNLIMITED.value,
        current_uses=0,
        can_combine_with_others=True,
        is_active=True,
        requires_manager_approval=False,
    )
