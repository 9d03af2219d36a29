"""
Discount rule store - SQLAlchemy persistence for rules and usage records.

Rule writes invalidate the cached POS lists of the company. The usage
counter is only ever changed through increment_usage, a single atomic
UPDATE evaluated by the database.
"""
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any

from sqlalchemy import or_, and_, func, update

from discount_engine.models import (
    DiscountRule, DiscountUsage, DiscountType, DiscountAppliesTo, DiscountUsageLimit
)
from discount_engine.exceptions import BusinessLogicError, NotFoundError
from discount_engine.services.discount_calculation_service import id_set
from discount_engine.services.discount_validation_service import (
    _check_schedule, _wall_clock
)
from discount_engine.utils.number_format import parse_decimal_field, parse_hhmm, to_money

logger = logging.getLogger(__name__)

CACHE_MODULE = 'discounts'

# Fields a caller may set directly; everything else is managed by the store
EDITABLE_FIELDS = {
    'branch_id', 'name', 'name_ar', 'description', 'description_ar',
    'discount_type', 'discount_value', 'applies_to', 'product_ids', 'category_ids',
    'minimum_order_amount', 'minimum_quantity', 'maximum_discount_amount',
    'start_date', 'end_date', 'valid_days', 'valid_hours',
    'usage_limit', 'max_uses', 'max_uses_per_customer',
    'allowed_customer_ids', 'excluded_customer_ids', 'staff_ids',
    'can_combine_with_others', 'excluded_discount_ids',
    'is_active', 'requires_manager_approval', 'created_by',
}

DECIMAL_FIELDS = ('discount_value', 'minimum_order_amount', 'minimum_quantity', 'maximum_discount_amount')
LIST_FIELDS = ('product_ids', 'category_ids', 'allowed_customer_ids', 'excluded_customer_ids', 'staff_ids')
ENUM_FIELDS = {
    'discount_type': DiscountType,
    'applies_to': DiscountAppliesTo,
    'usage_limit': DiscountUsageLimit,
}


# =====================================================
# PAYLOAD NORMALIZATION
# =====================================================

def _parse_datetime(value, field_name: str) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return _wall_clock(value)
    try:
        return _wall_clock(datetime.fromisoformat(str(value).strip()))
    except ValueError:
        raise BusinessLogicError(f'{field_name} must be an ISO 8601 date')


def _parse_int(value, field_name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BusinessLogicError(f'{field_name} must be an integer')
    if number < 0:
        raise BusinessLogicError(f'{field_name} cannot be negative')
    return number


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _normalize_rule_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a rule payload into model column values.

    Raises:
        BusinessLogicError: on unknown fields, bad enums or bad numbers
    """
    unknown = set(data) - EDITABLE_FIELDS
    if unknown:
        raise BusinessLogicError(f"Unknown discount fields: {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {}

    for key, value in data.items():
        if key in ENUM_FIELDS:
            allowed = [member.value for member in ENUM_FIELDS[key]]
            if value not in allowed:
                raise BusinessLogicError(f"{key} must be one of: {', '.join(allowed)}")
            values[key] = value

        elif key in DECIMAL_FIELDS:
            try:
                values[key] = parse_decimal_field(value, key, allow_none=(key != 'discount_value'))
            except ValueError as e:
                raise BusinessLogicError(str(e))

        elif key in LIST_FIELDS:
            values[key] = [str(v) for v in value] if value else None

        elif key == 'excluded_discount_ids':
            values[key] = [_parse_int(v, key) for v in value] if value else None

        elif key == 'valid_days':
            days = [_parse_int(v, key) for v in value] if value else None
            if days and any(day > 6 for day in days):
                raise BusinessLogicError('valid_days must contain weekdays 0 (Sunday) to 6 (Saturday)')
            values[key] = sorted(set(days)) if days else None

        elif key == 'valid_hours':
            if value:
                try:
                    values['valid_hours_start'] = parse_hhmm(value.get('start'), 'valid_hours.start')
                    values['valid_hours_end'] = parse_hhmm(value.get('end'), 'valid_hours.end')
                except ValueError as e:
                    raise BusinessLogicError(str(e))
            else:
                values['valid_hours_start'] = None
                values['valid_hours_end'] = None

        elif key in ('start_date', 'end_date'):
            values[key] = _parse_datetime(value, key)

        elif key in ('max_uses', 'max_uses_per_customer'):
            values[key] = _parse_int(value, key)

        elif key in ('can_combine_with_others', 'is_active', 'requires_manager_approval'):
            values[key] = _parse_bool(value)

        elif key in ('name', 'name_ar', 'description', 'description_ar'):
            values[key] = value.strip() if isinstance(value, str) and value.strip() else None

        else:
            values[key] = str(value) if value not in (None, '') else None

    return values


def _check_rule_consistency(rule: DiscountRule) -> None:
    """Cross-field checks run after every create/update."""
    if not rule.name:
        raise BusinessLogicError('name is required')

    if rule.discount_type == DiscountType.PERCENTAGE.value and rule.discount_value is not None \
            and rule.discount_value > 100:
        raise BusinessLogicError('A percentage discount cannot exceed 100')

    if rule.usage_limit == DiscountUsageLimit.LIMITED.value and rule.max_uses is None:
        raise BusinessLogicError('max_uses is required when usage_limit is limited')

    if rule.start_date and rule.end_date and rule.start_date > rule.end_date:
        raise BusinessLogicError('start_date must be before end_date')

    if rule.id is not None and rule.excluded_discount_ids and rule.id in rule.excluded_discount_ids:
        raise BusinessLogicError('A discount cannot exclude itself')


# =====================================================
# RULE CRUD
# =====================================================

def create_discount(session, company_id: str, data: Dict[str, Any]) -> DiscountRule:
    """
    Create a discount rule for a company.

    current_uses always starts at 0; callers cannot set it.
    """
    if not company_id:
        raise BusinessLogicError('company_id is required')

    values = _normalize_rule_data(data)
    values.setdefault('applies_to', DiscountAppliesTo.ORDER.value)
    values.setdefault('usage_limit', DiscountUsageLimit.UNLIMITED.value)

    if 'discount_type' not in values:
        raise BusinessLogicError('discount_type is required')
    if values.get('discount_value') is None:
        raise BusinessLogicError('discount_value is required')

    rule = DiscountRule(
        company_id=str(company_id),
        current_uses=0,
        is_active=values.pop('is_active', True),
        can_combine_with_others=values.pop('can_combine_with_others', True),
        requires_manager_approval=values.pop('requires_manager_approval', False),
        **values
    )
    _check_rule_consistency(rule)

    session.add(rule)
    session.commit()
    _invalidate_discounts_cache(rule.company_id)

    logger.info(f"Discount rule created: {rule.id} '{rule.name}' for company {rule.company_id}")
    return rule


def get_discount(session, discount_id, company_id: Optional[str] = None) -> Optional[DiscountRule]:
    """Get a rule by id, optionally scoped to a company. Returns None if missing."""
    try:
        discount_id = int(discount_id)
    except (TypeError, ValueError):
        return None

    query = session.query(DiscountRule).filter(DiscountRule.id == discount_id)
    if company_id is not None:
        query = query.filter(DiscountRule.company_id == str(company_id))
    return query.first()


def get_discount_or_404(session, discount_id, company_id: Optional[str] = None) -> DiscountRule:
    rule = get_discount(session, discount_id, company_id=company_id)
    if rule is None:
        raise NotFoundError('Discount not found')
    return rule


def get_discounts_by_ids(session, discount_ids: List, company_id: Optional[str] = None) -> List[DiscountRule]:
    """Load rules in the order requested; unknown ids are skipped."""
    wanted = []
    for discount_id in discount_ids or []:
        try:
            wanted.append(int(discount_id))
        except (TypeError, ValueError):
            continue
    if not wanted:
        return []

    query = session.query(DiscountRule).filter(DiscountRule.id.in_(wanted))
    if company_id is not None:
        query = query.filter(DiscountRule.company_id == str(company_id))
    by_id = {rule.id: rule for rule in query.all()}

    rules = []
    seen = set()
    for discount_id in wanted:
        if discount_id in by_id and discount_id not in seen:
            rules.append(by_id[discount_id])
            seen.add(discount_id)
    return rules


def update_discount(session, discount_id, updates: Dict[str, Any],
                    company_id: Optional[str] = None) -> DiscountRule:
    """Apply a partial update to a rule."""
    rule = get_discount_or_404(session, discount_id, company_id=company_id)

    values = _normalize_rule_data(updates)
    if 'discount_value' in values and values['discount_value'] is None:
        raise BusinessLogicError('discount_value is required')

    for key, value in values.items():
        setattr(rule, key, value)

    try:
        _check_rule_consistency(rule)
    except BusinessLogicError:
        session.rollback()
        raise

    rule.updated_at = datetime.now()
    session.commit()
    _invalidate_discounts_cache(rule.company_id)

    logger.info(f"Discount rule updated: {rule.id} fields={sorted(values)}")
    return rule


def deactivate_discount(session, discount_id, company_id: Optional[str] = None) -> DiscountRule:
    """Soft delete: keeps the rule and its usage history."""
    return update_discount(session, discount_id, {'is_active': False}, company_id=company_id)


def delete_discount(session, discount_id, company_id: Optional[str] = None) -> None:
    """
    Hard delete a rule.

    Usage records keep their rows with discount_id set to NULL.
    """
    rule = get_discount_or_404(session, discount_id, company_id=company_id)
    rule_id = rule.id
    rule_company = rule.company_id

    session.query(DiscountUsage).filter(DiscountUsage.discount_id == rule_id).update(
        {DiscountUsage.discount_id: None}, synchronize_session=False
    )
    session.delete(rule)
    session.commit()
    _invalidate_discounts_cache(rule_company)

    logger.warning(f"Discount rule {rule_id} deleted; usage history orphaned")


def list_discounts(session, company_id: str, filters: Optional[Dict[str, Any]] = None,
                   limit: Optional[int] = None) -> List[DiscountRule]:
    """
    List rules of a company, newest first.

    Filters:
        is_active, discount_type, applies_to, branch_id, created_by,
        search (name / name_ar / description, case-insensitive),
        start_date / end_date (rules whose validity window overlaps)
    """
    filters = filters or {}
    query = session.query(DiscountRule).filter(DiscountRule.company_id == str(company_id))

    if filters.get('is_active') is not None:
        query = query.filter(DiscountRule.is_active == filters['is_active'])

    if filters.get('discount_type'):
        query = query.filter(DiscountRule.discount_type == filters['discount_type'])

    if filters.get('applies_to'):
        query = query.filter(DiscountRule.applies_to == filters['applies_to'])

    if filters.get('branch_id'):
        query = query.filter(DiscountRule.branch_id == str(filters['branch_id']))

    if filters.get('created_by'):
        query = query.filter(DiscountRule.created_by == str(filters['created_by']))

    if filters.get('search'):
        term = f"%{filters['search'].strip().lower()}%"
        query = query.filter(or_(
            func.lower(DiscountRule.name).like(term),
            func.lower(DiscountRule.name_ar).like(term),
            func.lower(DiscountRule.description).like(term)
        ))

    # Overlap: rules without dates always overlap
    if filters.get('start_date'):
        start = _wall_clock(filters['start_date'])
        query = query.filter(or_(DiscountRule.end_date.is_(None), DiscountRule.end_date >= start))

    if filters.get('end_date'):
        end = _wall_clock(filters['end_date'])
        query = query.filter(or_(DiscountRule.start_date.is_(None), DiscountRule.start_date <= end))

    query = query.order_by(DiscountRule.created_at.desc(), DiscountRule.id.desc())
    if limit:
        query = query.limit(limit)

    return query.all()


def _load_pos_candidates(session, company_id: str, branch_id) -> List[DiscountRule]:
    query = session.query(DiscountRule).filter(
        DiscountRule.company_id == str(company_id),
        DiscountRule.is_active == True
    )
    if branch_id is not None:
        query = query.filter(or_(DiscountRule.branch_id.is_(None), DiscountRule.branch_id == str(branch_id)))
    else:
        query = query.filter(DiscountRule.branch_id.is_(None))
    return query.order_by(DiscountRule.created_at.desc(), DiscountRule.id.desc()).all()


def get_active_discounts_for_pos(session, company_id: str, branch_id=None, customer_id=None,
                                 now: Optional[datetime] = None) -> List[DiscountRule]:
    """
    Rules a POS terminal may offer right now.

    The id list of active rules per company/branch is cached; date, hour,
    weekday, lifetime usage and customer-list checks run on every call.
    """
    now = _wall_clock(now or datetime.now())

    cache_key = f"pos:{branch_id or 'all'}"
    cached_ids = _cache_get(company_id, cache_key)
    if cached_ids is not None:
        candidates = get_discounts_by_ids(session, cached_ids, company_id=company_id)
    else:
        candidates = _load_pos_candidates(session, company_id, branch_id)
        _cache_set(company_id, cache_key, [rule.id for rule in candidates])

    available = []
    for rule in candidates:
        if not rule.is_active:
            continue

        schedule_errors: List[str] = []
        _check_schedule(rule, now, schedule_errors)
        if schedule_errors:
            continue

        if rule.is_limited and rule.max_uses is not None and (rule.current_uses or 0) >= rule.max_uses:
            continue

        if customer_id is not None:
            customer = str(customer_id)
            if rule.allowed_customer_ids and customer not in id_set(rule.allowed_customer_ids):
                continue
            if rule.excluded_customer_ids and customer in id_set(rule.excluded_customer_ids):
                continue

        available.append(rule)

    return available


# =====================================================
# USAGE STORE
# =====================================================

def increment_usage(session, discount_id: int, used_at: Optional[datetime] = None) -> bool:
    """
    Atomically add one use to a rule if it is below its cap.

    A single UPDATE ... WHERE current_uses < max_uses evaluated by the
    database; concurrent callers can never push a limited rule past
    max_uses. Does not commit.

    Returns:
        True if the counter was incremented, False if the rule is missing
        or its cap is reached.
    """
    stmt = (
        update(DiscountRule)
        .where(DiscountRule.id == discount_id)
        .where(or_(
            DiscountRule.usage_limit != DiscountUsageLimit.LIMITED.value,
            DiscountRule.max_uses.is_(None),
            DiscountRule.current_uses < DiscountRule.max_uses
        ))
        .values(
            current_uses=DiscountRule.current_uses + 1,
            last_used_at=used_at or datetime.now()
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount == 1


def append_usage_record(session, discount_id: int, sale_id: str, amount,
                        customer_id=None, used_at: Optional[datetime] = None) -> DiscountUsage:
    """Append an immutable usage record. Does not commit."""
    usage = DiscountUsage(
        discount_id=discount_id,
        sale_id=str(sale_id),
        customer_id=str(customer_id) if customer_id is not None else None,
        amount=to_money(amount),
        used_at=used_at or datetime.now()
    )
    session.add(usage)
    session.flush()
    return usage


def list_usage_records(session, discount_id: int) -> List[DiscountUsage]:
    """Usage records of a rule, newest first."""
    return session.query(DiscountUsage).filter(
        DiscountUsage.discount_id == discount_id
    ).order_by(DiscountUsage.used_at.desc(), DiscountUsage.id.desc()).all()


def count_customer_uses(session, discount_id: int, customer_id) -> int:
    """How many times a customer has redeemed a rule."""
    return session.query(func.count(DiscountUsage.id)).filter(
        and_(
            DiscountUsage.discount_id == discount_id,
            DiscountUsage.customer_id == str(customer_id)
        )
    ).scalar() or 0


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _cache_get(company_id, key):
    try:
        from discount_engine.services.cache_service import get_cache
        return get_cache().get(company_id, CACHE_MODULE, key)
    except RuntimeError:
        return None


def _cache_set(company_id, key, value):
    try:
        from discount_engine.services.cache_service import get_cache
        from flask import current_app
        ttl = current_app.config.get('CACHE_DISCOUNTS_TTL', 60)
        get_cache().set(company_id, CACHE_MODULE, key, value, ttl)
    except RuntimeError:
        pass


def _invalidate_discounts_cache(company_id):
    """Gracefully attempt to invalidate the cached POS lists of a company."""
    try:
        from discount_engine.services.cache_service import get_cache
        get_cache().invalidate_module(company_id, CACHE_MODULE)
    except RuntimeError:
        pass
