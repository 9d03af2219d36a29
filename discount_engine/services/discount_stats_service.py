"""
Discount statistics - aggregated from the usage records of one rule.
"""
from decimal import Decimal
from typing import Dict, Any, Optional
from sqlalchemy import func, desc
from discount_engine.models import DiscountUsage
from discount_engine.services.discount_rule_service import get_discount
from discount_engine.utils.number_format import to_money, ZERO

TOP_CUSTOMERS_LIMIT = 5


def get_discount_stats(session, discount_id, company_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Usage statistics of a rule, aggregated from its usage records.

    Returns None when the rule does not exist.

    conversion_rate needs order-level data this store does not keep and is
    always 0. top_customers only counts usage records that carry a
    customer id. average_order_value is total savings / total uses.
    """
    rule = get_discount(session, discount_id, company_id=company_id)
    if rule is None:
        return None

    totals = session.query(
        func.count(DiscountUsage.id).label('uses'),
        func.coalesce(func.sum(DiscountUsage.amount), 0).label('savings')
    ).filter(DiscountUsage.discount_id == rule.id).one()

    total_uses = totals.uses or 0
    total_savings = to_money(totals.savings)
    average = to_money(total_savings / total_uses) if total_uses else ZERO

    customer_rows = (
        session.query(
            DiscountUsage.customer_id.label('customer_id'),
            func.count(DiscountUsage.id).label('uses'),
            func.sum(DiscountUsage.amount).label('savings')
        )
        .filter(DiscountUsage.discount_id == rule.id)
        .filter(DiscountUsage.customer_id.isnot(None))
        .group_by(DiscountUsage.customer_id)
        .order_by(desc('uses'), desc('savings'), DiscountUsage.customer_id)
        .limit(TOP_CUSTOMERS_LIMIT)
        .all()
    )

    usage_day = func.date(DiscountUsage.used_at)
    date_rows = (
        session.query(
            usage_day.label('day'),
            func.count(DiscountUsage.id).label('uses'),
            func.sum(DiscountUsage.amount).label('savings')
        )
        .filter(DiscountUsage.discount_id == rule.id)
        .group_by(usage_day)
        .order_by(usage_day)
        .all()
    )

    return {
        'discount_id': rule.id,
        'discount_name': rule.name,
        'total_uses': total_uses,
        'total_savings': total_savings,
        'average_order_value': average,
        'conversion_rate': Decimal('0'),
        'top_customers': [
            {
                'customer_id': row.customer_id,
                'uses': row.uses,
                'total_savings': to_money(row.savings),
            }
            for row in customer_rows
        ],
        'usage_by_date': [
            {
                'date': str(row.day),
                'uses': row.uses,
                'savings': to_money(row.savings),
            }
            for row in date_rows
        ],
    }
