"""
Discount eligibility validation.

Every check runs independently and all failures are collected, so the POS
can show a cashier every reason a discount does not apply. Business-rule
failures are never raised as exceptions.
"""
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any, Mapping

from flask import current_app, has_app_context

from discount_engine.models import DiscountRule, DiscountType, DiscountAppliesTo
from discount_engine.services.discount_calculation_service import (
    id_set, eligible_items, has_category_data, cart_quantity
)
from discount_engine.utils.number_format import to_decimal

logger = logging.getLogger(__name__)

DISCOUNT_NOT_FOUND = 'Discount not found'


def _setting(key: str, default):
    """Read a config value when running inside the Flask app."""
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _wall_clock(value: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo: rule windows are stored as naive wall-clock datetimes."""
    if value is None:
        return None
    return value.replace(tzinfo=None)


def sunday_first_weekday(moment: datetime) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return (moment.weekday() + 1) % 7


def _check_schedule(rule: DiscountRule, now: datetime, errors: List[str]) -> None:
    start_date = _wall_clock(rule.start_date)
    end_date = _wall_clock(rule.end_date)

    if start_date and start_date > now:
        errors.append('Discount is not yet valid')

    if end_date and end_date < now:
        errors.append('Discount has expired')

    # Lexicographic "HH:MM" comparison; windows crossing midnight are not special-cased
    valid_hours = rule.valid_hours
    if valid_hours:
        start, end = valid_hours
        current_time = now.strftime('%H:%M')
        if current_time < start or current_time > end:
            errors.append(f'Discount only valid between {start} and {end}')

    if rule.valid_days:
        valid_days = {int(day) for day in rule.valid_days}
        if sunday_first_weekday(now) not in valid_days:
            errors.append('Discount not valid on this day of the week')


def _check_usage(rule: DiscountRule, errors: List[str], warnings: List[str]) -> None:
    if not rule.is_limited or rule.max_uses is None:
        return

    current_uses = rule.current_uses or 0
    warning_ratio = _setting('DISCOUNT_USAGE_WARNING_RATIO', 0.9)

    if current_uses >= rule.max_uses:
        errors.append('Discount usage limit reached')
    elif current_uses >= rule.max_uses * warning_ratio:
        warnings.append('Discount usage limit almost reached')


def _check_customer(rule: DiscountRule, customer_id, customer_uses: Optional[int],
                    errors: List[str]) -> None:
    customer = str(customer_id)

    # Both checks run: a customer on both lists gets both errors (deny wins)
    if rule.allowed_customer_ids and customer not in id_set(rule.allowed_customer_ids):
        errors.append('Customer not eligible for this discount')

    if rule.excluded_customer_ids and customer in id_set(rule.excluded_customer_ids):
        errors.append('Customer excluded from this discount')

    if rule.max_uses_per_customer is not None and customer_uses is not None:
        if customer_uses >= rule.max_uses_per_customer:
            errors.append('Customer usage limit reached')


def _check_scope(rule: DiscountRule, items: List[Dict[str, Any]],
                 category_lookup: Optional[Mapping], errors: List[str], warnings: List[str]) -> None:
    if rule.applies_to == DiscountAppliesTo.PRODUCT.value:
        if not eligible_items(rule, items, category_lookup):
            errors.append('No eligible products in cart for this discount')

    elif rule.applies_to == DiscountAppliesTo.CATEGORY.value and rule.category_ids:
        if not has_category_data(items, category_lookup):
            warnings.append('Category data unavailable for this discount')
        elif not eligible_items(rule, items, category_lookup):
            errors.append('No eligible categories in cart for this discount')


def validate_discount(
    rule: DiscountRule,
    customer_id=None,
    items: Optional[List[Dict[str, Any]]] = None,
    subtotal=0,
    branch_id=None,
    now: Optional[datetime] = None,
    staff_id=None,
    customer_uses: Optional[int] = None,
    category_lookup: Optional[Mapping] = None
) -> Dict[str, Any]:
    """
    Decide whether a rule may be applied to a cart right now.

    Args:
        rule: DiscountRule to check
        customer_id: Optional customer identifier
        items: Cart items (product_id, quantity, subtotal, optional category_id)
        subtotal: Whole-order subtotal
        branch_id: Branch where the sale happens
        now: Moment of the sale (defaults to datetime.now())
        staff_id: Optional staff member applying the discount
        customer_uses: Prior uses of this rule by the customer, if known
        category_lookup: Optional mapping product id -> category id

    Returns:
        dict with 'valid', 'errors', 'warnings', 'max_discount_amount'
        and 'requires_manager_approval'. 'valid' is True iff there are no errors.
    """
    items = items or []
    now = _wall_clock(now or datetime.now())
    errors: List[str] = []
    warnings: List[str] = []

    if not rule.is_active:
        errors.append('Discount is not active')

    if rule.branch_id and str(rule.branch_id) != str(branch_id):
        errors.append('Discount not valid for this branch')

    _check_schedule(rule, now, errors)

    if rule.minimum_order_amount is not None:
        if to_decimal(subtotal) < to_decimal(rule.minimum_order_amount):
            currency = _setting('CURRENCY_CODE', 'EGP')
            errors.append(f'Minimum order amount of {rule.minimum_order_amount} {currency} required')

    if rule.minimum_quantity is not None:
        if cart_quantity(items) < to_decimal(rule.minimum_quantity):
            errors.append(f'Minimum quantity of {rule.minimum_quantity} items required')

    _check_usage(rule, errors, warnings)

    if customer_id is not None:
        _check_customer(rule, customer_id, customer_uses, errors)

    if rule.staff_ids and staff_id is not None and str(staff_id) not in id_set(rule.staff_ids):
        errors.append('Staff member not authorized to apply this discount')

    _check_scope(rule, items, category_lookup, errors, warnings)

    max_discount_amount = None
    if rule.discount_type == DiscountType.PERCENTAGE.value and rule.maximum_discount_amount is not None:
        max_discount_amount = to_decimal(rule.maximum_discount_amount)

    return {
        'valid': len(errors) == 0,
        'errors': errors,
        'warnings': warnings,
        'max_discount_amount': max_discount_amount,
        'requires_manager_approval': bool(rule.requires_manager_approval),
    }


def not_found_result() -> Dict[str, Any]:
    """Validation result for an unknown rule id."""
    return {
        'valid': False,
        'errors': [DISCOUNT_NOT_FOUND],
        'warnings': [],
        'max_discount_amount': None,
        'requires_manager_approval': False,
    }


def validate_discount_by_id(
    session,
    discount_id: int,
    customer_id=None,
    items: Optional[List[Dict[str, Any]]] = None,
    subtotal=0,
    branch_id=None,
    now: Optional[datetime] = None,
    staff_id=None,
    category_lookup: Optional[Mapping] = None,
    company_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Load a rule from the store and validate it.

    An unknown id (or a rule of another company) yields a single
    'Discount not found' error instead of an exception.
    """
    from discount_engine.services.discount_rule_service import get_discount, count_customer_uses

    rule = get_discount(session, discount_id, company_id=company_id)
    if rule is None:
        logger.info(f"Validation requested for unknown discount {discount_id}")
        return not_found_result()

    customer_uses = None
    if customer_id is not None and rule.max_uses_per_customer is not None:
        customer_uses = count_customer_uses(session, rule.id, customer_id)

    return validate_discount(
        rule,
        customer_id=customer_id,
        items=items,
        subtotal=subtotal,
        branch_id=branch_id,
        now=now,
        staff_id=staff_id,
        customer_uses=customer_uses,
        category_lookup=category_lookup
    )
