"""
Multi-discount combination.

Filters the requested rules down to a set that may legally coexist, then
applies order-scope rules first (compounding against a running subtotal)
and product/category-scope rules afterwards (against the original cart).
"""
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any, Mapping

from discount_engine.models import DiscountRule, DiscountAppliesTo
from discount_engine.services.discount_calculation_service import calculate_discount, build_result
from discount_engine.utils.number_format import to_money, ZERO

logger = logging.getLogger(__name__)


def _excluded_ids(rule: DiscountRule) -> set:
    excluded = set()
    for value in rule.excluded_discount_ids or []:
        try:
            excluded.add(int(value))
        except (TypeError, ValueError):
            continue
    return excluded


def select_combinable_rules(rules: List[DiscountRule], requested_count: Optional[int] = None) -> List[DiscountRule]:
    """
    Drop rules that cannot be used together.

    A rule is dropped when:
    - it cannot combine with others and more than one rule was requested
    - it excludes another requested rule, or another requested rule
      excludes it (exclusions act on both sides)
    """
    if requested_count is None:
        requested_count = len(rules)

    requested_ids = {rule.id for rule in rules if rule.id is not None}
    excluded_by = {rule.id: _excluded_ids(rule) for rule in rules}

    selected = []
    for rule in rules:
        can_combine = rule.can_combine_with_others is not False
        if not can_combine and requested_count > 1:
            logger.debug(f"Discount {rule.id} dropped: cannot combine with others")
            continue

        others = requested_ids - {rule.id}
        if excluded_by.get(rule.id, set()) & others:
            logger.debug(f"Discount {rule.id} dropped: excludes another requested discount")
            continue

        if any(rule.id in excluded_by.get(other.id, set()) for other in rules if other.id != rule.id):
            logger.debug(f"Discount {rule.id} dropped: excluded by another requested discount")
            continue

        selected.append(rule)

    return selected


def combine_discounts(rules: List[DiscountRule], items: List[Dict[str, Any]], subtotal,
                      category_lookup: Optional[Mapping] = None,
                      requested_count: Optional[int] = None) -> Dict[str, Any]:
    """
    Combine already-loaded rules into one calculation result.

    Order-scope rules compound: each one's base is the subtotal left after
    the previous order-scope discounts. Product and category rules are
    computed against the original items and subtotal.

    No validation happens here.
    """
    original = to_money(subtotal)
    valid_rules = select_combinable_rules(rules, requested_count)

    order_rules = [r for r in valid_rules if r.applies_to == DiscountAppliesTo.ORDER.value]
    item_rules = [
        r for r in valid_rules
        if r.applies_to in (DiscountAppliesTo.PRODUCT.value, DiscountAppliesTo.CATEGORY.value)
    ]

    total_discount = ZERO
    current_subtotal = original
    applied_discounts = []

    for rule in order_rules:
        result = calculate_discount(rule, items, current_subtotal, category_lookup)
        total_discount += result['discount_amount']
        current_subtotal -= result['discount_amount']
        applied_discounts.extend(result['applied_discounts'])

    # Item-scope rules are computed on the original subtotal
    for rule in item_rules:
        result = calculate_discount(rule, items, original, category_lookup)
        total_discount += result['discount_amount']
        applied_discounts.extend(result['applied_discounts'])

    if total_discount > original:
        logger.warning(
            f"Combined discounts ({total_discount}) exceed subtotal ({original}); clamping to subtotal"
        )

    return build_result(original, total_discount, applied_discounts)


def apply_multiple_discounts(
    session,
    discount_ids: List,
    items: List[Dict[str, Any]],
    subtotal,
    customer_id=None,
    branch_id=None,
    category_lookup: Optional[Mapping] = None,
    company_id: Optional[str] = None,
    revalidate: bool = False,
    now: Optional[datetime] = None,
    staff_id=None
) -> Dict[str, Any]:
    """
    Load the requested rules and combine them.

    Args:
        session: SQLAlchemy session
        discount_ids: Requested rule ids (unknown ids are skipped)
        items: Cart items
        subtotal: Whole-order subtotal
        customer_id, branch_id, staff_id: Sale context, used when revalidating
        category_lookup: Optional mapping product id -> category id
        company_id: Restrict loading to one company
        revalidate: Drop rules that fail validation before combining
        now: Moment of the sale for revalidation

    Returns:
        Combined calculation result dict.
    """
    from discount_engine.services.discount_rule_service import get_discounts_by_ids, count_customer_uses
    from discount_engine.services.discount_validation_service import validate_discount

    requested = []
    seen = set()
    for discount_id in discount_ids or []:
        if str(discount_id) not in seen:
            seen.add(str(discount_id))
            requested.append(discount_id)

    rules = get_discounts_by_ids(session, requested, company_id=company_id)

    if revalidate:
        checked = []
        for rule in rules:
            customer_uses = None
            if customer_id is not None and rule.max_uses_per_customer is not None:
                customer_uses = count_customer_uses(session, rule.id, customer_id)
            validation = validate_discount(
                rule, customer_id=customer_id, items=items, subtotal=subtotal,
                branch_id=branch_id, now=now, staff_id=staff_id,
                customer_uses=customer_uses, category_lookup=category_lookup
            )
            if validation['valid']:
                checked.append(rule)
            else:
                logger.info(f"Discount {rule.id} skipped on revalidation: {validation['errors']}")
        rules = checked

    return combine_discounts(rules, items, subtotal, category_lookup, requested_count=len(requested))
