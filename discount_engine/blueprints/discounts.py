"""Discounts JSON API for POS terminals and back-office tools."""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Tuple, List

from flask import Blueprint, request, g, jsonify, current_app

from discount_engine.database import get_session
from discount_engine.exceptions import BusinessLogicError, NotFoundError
from discount_engine.middleware import require_company
from discount_engine.services.discount_rule_service import (
    create_discount, update_discount, delete_discount, deactivate_discount,
    get_discount_or_404, list_discounts, get_active_discounts_for_pos
)
from discount_engine.services.discount_validation_service import validate_discount_by_id
from discount_engine.services.discount_calculation_service import calculate_discount, build_manual_discount
from discount_engine.services.discount_combination_service import apply_multiple_discounts
from discount_engine.services.discount_usage_service import record_discount_usage, record_sale_discounts
from discount_engine.services.discount_stats_service import get_discount_stats
from discount_engine.utils.number_format import to_money

discounts_bp = Blueprint('discounts', __name__, url_prefix='/api/discounts')


def _jsonable(value):
    """Decimals as strings and datetimes as ISO 8601, recursively."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _get_json() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BusinessLogicError('Request body must be a JSON object')
    return data


def _parse_now(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise BusinessLogicError('now must be an ISO 8601 datetime')


def _get_object_list(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    values = data.get(key) or []
    if not isinstance(values, list) or not all(isinstance(value, dict) for value in values):
        raise BusinessLogicError(f'{key} must be a list of objects')
    return values


def _get_category_lookup(data: Dict[str, Any]):
    """Optional product id -> category id mapping."""
    lookup = data.get('category_lookup')
    if lookup is not None and not isinstance(lookup, dict):
        raise BusinessLogicError('category_lookup must be an object')
    return lookup


def _get_cart_from_json(data: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Decimal]:
    """Extract cart items and subtotal; subtotal defaults to the items' sum."""
    items = _get_object_list(data, 'items')

    if data.get('subtotal') is not None:
        subtotal = to_money(data['subtotal'])
    else:
        subtotal = sum((to_money(item.get('subtotal')) for item in items), Decimal('0'))
    return items, subtotal


def _parse_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return value is True or value == 1


def _parse_bool_arg(name: str):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    return _parse_flag(value)


# =====================================================
# RULES
# =====================================================

@discounts_bp.route('', methods=['GET'])
@require_company
def list_rules():
    """List company rules with optional filters."""
    session = get_session()
    filters = {
        'is_active': _parse_bool_arg('is_active'),
        'discount_type': request.args.get('discount_type'),
        'applies_to': request.args.get('applies_to'),
        'branch_id': request.args.get('branch_id'),
        'created_by': request.args.get('created_by'),
        'search': request.args.get('search'),
        'start_date': _parse_now(request.args.get('start_date')),
        'end_date': _parse_now(request.args.get('end_date')),
    }
    limit = request.args.get('limit', type=int) or current_app.config.get('DISCOUNT_LIST_LIMIT', 50)

    rules = list_discounts(session, g.company_id, filters, limit=limit)
    return jsonify({'results': [rule.to_dict() for rule in rules]})


@discounts_bp.route('', methods=['POST'])
@require_company
def create_rule():
    """Create a rule; the creating staff member defaults to X-Staff-Id."""
    session = get_session()
    data = _get_json()
    if g.staff_id and not data.get('created_by'):
        data['created_by'] = g.staff_id

    try:
        rule = create_discount(session, g.company_id, data)
    except (BusinessLogicError, NotFoundError):
        session.rollback()
        raise

    return jsonify(rule.to_dict()), 201


@discounts_bp.route('/active', methods=['GET'])
@require_company
def active_rules():
    """Rules a POS terminal may offer right now."""
    session = get_session()
    rules = get_active_discounts_for_pos(
        session,
        g.company_id,
        branch_id=request.args.get('branch_id') or g.branch_id,
        customer_id=request.args.get('customer_id') or None,
        now=_parse_now(request.args.get('now'))
    )
    return jsonify({'results': [rule.to_dict() for rule in rules]})


@discounts_bp.route('/<int:discount_id>', methods=['GET'])
@require_company
def get_rule(discount_id: int):
    session = get_session()
    rule = get_discount_or_404(session, discount_id, company_id=g.company_id)
    return jsonify(rule.to_dict())


@discounts_bp.route('/<int:discount_id>', methods=['PATCH'])
@require_company
def update_rule(discount_id: int):
    session = get_session()
    rule = update_discount(session, discount_id, _get_json(), company_id=g.company_id)
    return jsonify(rule.to_dict())


@discounts_bp.route('/<int:discount_id>/deactivate', methods=['POST'])
@require_company
def deactivate_rule(discount_id: int):
    session = get_session()
    rule = deactivate_discount(session, discount_id, company_id=g.company_id)
    return jsonify(rule.to_dict())


@discounts_bp.route('/<int:discount_id>', methods=['DELETE'])
@require_company
def delete_rule(discount_id: int):
    session = get_session()
    delete_discount(session, discount_id, company_id=g.company_id)
    return jsonify({'status': 'ok'})


# =====================================================
# ENGINE
# =====================================================

@discounts_bp.route('/<int:discount_id>/validate', methods=['POST'])
@require_company
def validate_rule(discount_id: int):
    """Validate a rule against a cart; business failures come back as errors, HTTP 200."""
    session = get_session()
    data = _get_json()
    items, subtotal = _get_cart_from_json(data)

    result = validate_discount_by_id(
        session,
        discount_id,
        customer_id=data.get('customer_id'),
        items=items,
        subtotal=subtotal,
        branch_id=data.get('branch_id') or g.branch_id,
        now=_parse_now(data.get('now')),
        staff_id=g.staff_id,
        category_lookup=_get_category_lookup(data),
        company_id=g.company_id
    )
    return jsonify(_jsonable(result))


@discounts_bp.route('/<int:discount_id>/calculate', methods=['POST'])
@require_company
def calculate_rule(discount_id: int):
    """Single-rule calculation; the rule is not re-validated."""
    session = get_session()
    data = _get_json()
    items, subtotal = _get_cart_from_json(data)

    rule = get_discount_or_404(session, discount_id, company_id=g.company_id)
    result = calculate_discount(rule, items, subtotal, _get_category_lookup(data))
    return jsonify(_jsonable(result))


@discounts_bp.route('/manual/calculate', methods=['POST'])
@require_company
def calculate_manual():
    """Preview a cashier's ad-hoc order discount."""
    data = _get_json()
    items, subtotal = _get_cart_from_json(data)

    rule = build_manual_discount(
        data.get('discount_type'),
        data.get('discount_value'),
        name=data.get('name') or 'Manual Discount',
        company_id=g.company_id
    )
    result = calculate_discount(rule, items, subtotal)
    return jsonify(_jsonable(result))


@discounts_bp.route('/apply', methods=['POST'])
@require_company
def apply_rules():
    """Combine several rules on one cart."""
    session = get_session()
    data = _get_json()
    items, subtotal = _get_cart_from_json(data)

    discount_ids = data.get('discount_ids') or []
    if not isinstance(discount_ids, list):
        raise BusinessLogicError('discount_ids must be a list')

    result = apply_multiple_discounts(
        session,
        discount_ids,
        items,
        subtotal,
        customer_id=data.get('customer_id'),
        branch_id=data.get('branch_id') or g.branch_id,
        category_lookup=_get_category_lookup(data),
        company_id=g.company_id,
        revalidate=_parse_flag(data.get('revalidate', False)),
        now=_parse_now(data.get('now')),
        staff_id=g.staff_id
    )
    return jsonify(_jsonable(result))


# =====================================================
# USAGE & STATS
# =====================================================

@discounts_bp.route('/<int:discount_id>/usage', methods=['POST'])
@require_company
def record_usage(discount_id: int):
    """Record a redemption once the sale is completed."""
    session = get_session()
    data = _get_json()
    sale_id = str(data.get('sale_id') or '').strip()
    if not sale_id:
        raise BusinessLogicError('sale_id is required')

    get_discount_or_404(session, discount_id, company_id=g.company_id)
    usage = record_discount_usage(
        session, discount_id, sale_id, data.get('amount'), customer_id=data.get('customer_id')
    )
    return jsonify(usage.to_dict()), 201


@discounts_bp.route('/sales/<sale_id>/usage', methods=['POST'])
@require_company
def record_sale_usage(sale_id: str):
    """Record every stored discount of a calculation result for a completed sale."""
    session = get_session()
    data = _get_json()
    applied = _get_object_list(data, 'applied_discounts')

    for entry in applied:
        if entry.get('discount_id') is not None:
            get_discount_or_404(session, entry['discount_id'], company_id=g.company_id)

    records = record_sale_discounts(
        session, sale_id, {'applied_discounts': applied}, customer_id=data.get('customer_id')
    )
    return jsonify({'results': [record.to_dict() for record in records]}), 201


@discounts_bp.route('/<int:discount_id>/stats', methods=['GET'])
@require_company
def rule_stats(discount_id: int):
    session = get_session()
    stats = get_discount_stats(session, discount_id, company_id=g.company_id)
    if stats is None:
        raise NotFoundError('Discount not found')
    return jsonify(_jsonable(stats))
