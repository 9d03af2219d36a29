"""
Discount usage recording - call when a sale is completed.

Each redemption atomically increments the rule's counter and appends an
immutable usage record in the same transaction. A sale must not be
treated as discounted unless this commit succeeded.
"""
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any

from sqlalchemy.exc import SQLAlchemyError

from discount_engine.models import DiscountRule, DiscountUsage
from discount_engine.exceptions import NotFoundError, UsageLimitReachedError, UsageRecordingError
from discount_engine.services.discount_rule_service import increment_usage, append_usage_record
from discount_engine.utils.number_format import to_money

logger = logging.getLogger(__name__)


def _record_entries(session, sale_id: str, entries: List[Dict[str, Any]], customer_id=None) -> List[DiscountUsage]:
    """
    Record several redemptions for one sale, all or nothing.

    Raises:
        NotFoundError: a rule does not exist
        UsageLimitReachedError: a limited rule has no uses left
        UsageRecordingError: the store failed (nothing is recorded)
    """
    used_at = datetime.now()
    records = []

    try:
        for entry in entries:
            discount_id = entry['discount_id']
            if not increment_usage(session, discount_id, used_at):
                rule = session.query(DiscountRule).filter(DiscountRule.id == discount_id).first()
                max_uses = rule.max_uses if rule else None
                session.rollback()
                _observe_rejection('not_found' if rule is None else 'limit_reached')
                if rule is None:
                    raise NotFoundError('Discount not found', payload={'discount_id': discount_id})
                logger.warning(f"Usage refused for discount {discount_id} on sale {sale_id}: limit {max_uses} reached")
                raise UsageLimitReachedError(discount_id, max_uses)

            records.append(append_usage_record(
                session, discount_id, sale_id, entry.get('amount'),
                customer_id=customer_id, used_at=used_at
            ))

        session.commit()

    except (NotFoundError, UsageLimitReachedError):
        raise
    except SQLAlchemyError as e:
        session.rollback()
        _observe_rejection('store_error')
        logger.error(f"Failed to record discount usage for sale {sale_id}: {e}")
        raise UsageRecordingError(payload={'sale_id': str(sale_id)}) from e

    for record in records:
        logger.info(f"Discount {record.discount_id} used on sale {sale_id} (amount={record.amount})")
        _observe_usage(record.amount)

    return records


def record_discount_usage(session, discount_id: int, sale_id: str, amount,
                          customer_id=None) -> DiscountUsage:
    """
    Record one redemption of a rule.

    Args:
        session: SQLAlchemy session
        discount_id: Rule redeemed
        sale_id: Completed sale identifier
        amount: Discount amount granted on that sale
        customer_id: Optional customer, enables per-customer limits and stats

    Returns:
        The appended DiscountUsage record.
    """
    records = _record_entries(
        session, sale_id, [{'discount_id': discount_id, 'amount': amount}], customer_id=customer_id
    )
    return records[0]


def record_sale_discounts(session, sale_id: str, calculation: Dict[str, Any],
                          customer_id=None) -> List[DiscountUsage]:
    """
    Record every stored rule of a calculation result for a completed sale.

    Manual (unsaved) discounts have no id and are skipped.
    """
    entries = [
        {'discount_id': int(applied['discount_id']), 'amount': applied.get('applied_amount')}
        for applied in calculation.get('applied_discounts', [])
        if applied.get('discount_id') is not None
    ]
    if not entries:
        return []
    return _record_entries(session, sale_id, entries, customer_id=customer_id)


def _observe_usage(amount) -> None:
    from discount_engine.blueprints.metrics import discount_usage_recorded_total, discount_savings_total
    discount_usage_recorded_total.inc()
    discount_savings_total.inc(float(to_money(amount)))


def _observe_rejection(reason: str) -> None:
    from discount_engine.blueprints.metrics import discount_usage_rejected_total
    discount_usage_rejected_total.labels(reason=reason).inc()
