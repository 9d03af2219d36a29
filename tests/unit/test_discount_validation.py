"""
Unit tests for discount eligibility validation.
"""

from datetime import datetime, timezone
from decimal import Decimal

from discount_engine.services.discount_validation_service import (
    validate_discount, not_found_result, sunday_first_weekday
)


class TestBasicChecks:
    """Active flag, branch and order thresholds."""

    def test_valid_rule_has_no_errors(self, rule_factory, now):
        """Test valid rule has no errors."""
        result = validate_discount(rule_factory(), subtotal=Decimal('200'), now=now)

        assert result['valid'] is True
        assert result['errors'] == []
        assert result['warnings'] == []
        assert result['requires_manager_approval'] is False

    def test_inactive_rule(self, rule_factory, now):
        """Test inactive rule."""
        result = validate_discount(rule_factory(is_active=False), subtotal=Decimal('200'), now=now)

        assert result['valid'] is False
        assert result['errors'] == ['Discount is not active']

    def test_branch_mismatch(self, rule_factory, now):
        """Test branch mismatch."""
        rule = rule_factory(branch_id='branch-1')

        assert validate_discount(rule, branch_id='branch-1', now=now)['valid'] is True
        result = validate_discount(rule, branch_id='branch-2', now=now)
        assert result['errors'] == ['Discount not valid for this branch']

    def test_rule_without_branch_applies_everywhere(self, rule_factory, now):
        """Test rule without branch applies everywhere."""
        result = validate_discount(rule_factory(branch_id=None), branch_id='any-branch', now=now)
        assert result['valid'] is True

    def test_minimum_order_amount(self, rule_factory, now):
        """Test minimum order amount."""
        rule = rule_factory(minimum_order_amount=Decimal('100'))

        result = validate_discount(rule, subtotal=Decimal('99.99'), now=now)
        assert result['errors'] == ['Minimum order amount of 100 EGP required']

        assert validate_discount(rule, subtotal=Decimal('100'), now=now)['valid'] is True

    def test_minimum_quantity(self, rule_factory, cart_items, now):
        """Test minimum quantity."""
        rule = rule_factory(minimum_quantity=Decimal('4'))

        result = validate_discount(rule, items=cart_items, subtotal=Decimal('150'), now=now)
        assert result['errors'] == ['Minimum quantity of 4 items required']

        rule.minimum_quantity = Decimal('3')
        assert validate_discount(rule, items=cart_items, subtotal=Decimal('150'), now=now)['valid'] is True

    def test_all_failures_are_collected(self, rule_factory, now):
        """Test all failures are collected."""
        rule = rule_factory(
            is_active=False,
            branch_id='branch-1',
            minimum_order_amount=Decimal('500'),
        )
        result = validate_discount(rule, subtotal=Decimal('10'), branch_id='branch-2', now=now)

        assert result['valid'] is False
        assert result['errors'] == [
            'Discount is not active',
            'Discount not valid for this branch',
            'Minimum order amount of 500 EGP required',
        ]


class TestScheduleChecks:
    """Date range, weekday and time-of-day windows."""

    def test_not_yet_valid(self, rule_factory, now):
        """Test not yet valid."""
        rule = rule_factory(start_date=datetime(2024, 6, 6))
        assert validate_discount(rule, now=now)['errors'] == ['Discount is not yet valid']

    def test_expired(self, rule_factory, now):
        """Test expired."""
        rule = rule_factory(end_date=datetime(2024, 6, 5, 14, 0))
        assert validate_discount(rule, now=now)['errors'] == ['Discount has expired']

    def test_inside_date_range(self, rule_factory, now):
        """Test inside date range."""
        rule = rule_factory(start_date=datetime(2024, 6, 1), end_date=datetime(2024, 6, 30))
        assert validate_discount(rule, now=now)['valid'] is True

    def test_aware_now_is_compared_as_wall_clock(self, rule_factory):
        """Test aware now is compared as wall clock."""
        rule = rule_factory(end_date=datetime(2024, 6, 5, 15, 0))
        aware_now = datetime(2024, 6, 5, 14, 30, tzinfo=timezone.utc)
        assert validate_discount(rule, now=aware_now)['valid'] is True

    def test_time_window(self, rule_factory, now):
        """Test time window."""
        rule = rule_factory(valid_hours_start='09:00', valid_hours_end='12:00')
        result = validate_discount(rule, now=now)
        assert result['errors'] == ['Discount only valid between 09:00 and 12:00']

    def test_time_window_bounds_are_inclusive(self, rule_factory, now):
        """Test time window bounds are inclusive."""
        rule = rule_factory(valid_hours_start='14:30', valid_hours_end='14:30')
        assert validate_discount(rule, now=now)['valid'] is True

    def test_incomplete_time_window_is_ignored(self, rule_factory, now):
        """Test incomplete time window is ignored."""
        rule = rule_factory(valid_hours_start='09:00', valid_hours_end=None)
        assert validate_discount(rule, now=now)['valid'] is True

    def test_weekday(self, rule_factory, now):
        """Test weekday."""
        # now is a Wednesday: 3 with Sunday = 0
        assert validate_discount(rule_factory(valid_days=[3]), now=now)['valid'] is True

        result = validate_discount(rule_factory(valid_days=[0, 6]), now=now)
        assert result['errors'] == ['Discount not valid on this day of the week']

    def test_sunday_first_weekday(self):
        """Test sunday first weekday."""
        assert sunday_first_weekday(datetime(2024, 6, 2)) == 0   # Sunday
        assert sunday_first_weekday(datetime(2024, 6, 3)) == 1   # Monday
        assert sunday_first_weekday(datetime(2024, 6, 8)) == 6   # Saturday


class TestUsageChecks:
    """Lifetime usage caps."""

    def test_limit_reached(self, rule_factory, now):
        """Test limit reached."""
        rule = rule_factory(usage_limit='limited', max_uses=10, current_uses=10)
        result = validate_discount(rule, now=now)

        assert result['valid'] is False
        assert result['errors'] == ['Discount usage limit reached']

    def test_limit_almost_reached_is_a_warning(self, rule_factory, now):
        """Test limit almost reached is a warning."""
        rule = rule_factory(usage_limit='limited', max_uses=10, current_uses=9)
        result = validate_discount(rule, now=now)

        assert result['valid'] is True
        assert result['warnings'] == ['Discount usage limit almost reached']

    def test_below_warning_ratio(self, rule_factory, now):
        """Test below warning ratio."""
        rule = rule_factory(usage_limit='limited', max_uses=10, current_uses=8)
        result = validate_discount(rule, now=now)

        assert result['valid'] is True
        assert result['warnings'] == []

    def test_unlimited_rule_ignores_counter(self, rule_factory, now):
        """Test unlimited rule ignores counter."""
        rule = rule_factory(usage_limit='unlimited', max_uses=1, current_uses=50)
        assert validate_discount(rule, now=now)['valid'] is True


class TestCustomerChecks:
    """Allow/deny lists and per-customer limits."""

    def test_customer_not_in_allow_list(self, rule_factory, now):
        """Test customer not in allow list."""
        rule = rule_factory(allowed_customer_ids=['c1', 'c2'])

        assert validate_discount(rule, customer_id='c1', now=now)['valid'] is True
        result = validate_discount(rule, customer_id='c3', now=now)
        assert result['errors'] == ['Customer not eligible for this discount']

    def test_customer_in_deny_list(self, rule_factory, now):
        """Test customer in deny list."""
        rule = rule_factory(excluded_customer_ids=['c9'])
        result = validate_discount(rule, customer_id='c9', now=now)
        assert result['errors'] == ['Customer excluded from this discount']

    def test_customer_on_both_lists_is_denied(self, rule_factory, now):
        """Test customer on both lists is denied."""
        rule = rule_factory(allowed_customer_ids=['c1'], excluded_customer_ids=['c1'])
        result = validate_discount(rule, customer_id='c1', now=now)

        assert result['valid'] is False
        assert result['errors'] == ['Customer excluded from this discount']

    def test_numeric_customer_ids_match_strings(self, rule_factory, now):
        """Test numeric customer IDs match strings."""
        rule = rule_factory(allowed_customer_ids=['42'])
        assert validate_discount(rule, customer_id=42, now=now)['valid'] is True

    def test_customer_lists_skipped_without_customer(self, rule_factory, now):
        """Test customer lists skipped without customer."""
        rule = rule_factory(allowed_customer_ids=['c1'])
        assert validate_discount(rule, now=now)['valid'] is True

    def test_per_customer_limit(self, rule_factory, now):
        """Test per customer limit."""
        rule = rule_factory(max_uses_per_customer=2)

        assert validate_discount(rule, customer_id='c1', customer_uses=1, now=now)['valid'] is True
        result = validate_discount(rule, customer_id='c1', customer_uses=2, now=now)
        assert result['errors'] == ['Customer usage limit reached']


class TestStaffChecks:
    """Tests for staff checks."""

    def test_staff_not_authorized(self, rule_factory, now):
        """Test staff not authorized."""
        rule = rule_factory(staff_ids=['s1'])

        assert validate_discount(rule, staff_id='s1', now=now)['valid'] is True
        result = validate_discount(rule, staff_id='s2', now=now)
        assert result['errors'] == ['Staff member not authorized to apply this discount']

    def test_staff_check_skipped_without_staff(self, rule_factory, now):
        """Test staff check skipped without staff."""
        assert validate_discount(rule_factory(staff_ids=['s1']), now=now)['valid'] is True


class TestScopeChecks:
    """Product and category scope need matching cart items."""

    def test_no_eligible_products(self, rule_factory, cart_items, now):
        """Test no eligible products."""
        rule = rule_factory(applies_to='product', product_ids=['Z'])
        result = validate_discount(rule, items=cart_items, subtotal=Decimal('150'), now=now)
        assert result['errors'] == ['No eligible products in cart for this discount']

    def test_eligible_product(self, rule_factory, cart_items, now):
        """Test eligible product."""
        rule = rule_factory(applies_to='product', product_ids=['A'])
        assert validate_discount(rule, items=cart_items, subtotal=Decimal('150'), now=now)['valid'] is True

    def test_no_eligible_categories(self, rule_factory, cart_items, now):
        """Test no eligible categories."""
        rule = rule_factory(applies_to='category', category_ids=['dairy'])
        result = validate_discount(rule, items=cart_items, subtotal=Decimal('150'), now=now)
        assert result['errors'] == ['No eligible categories in cart for this discount']

    def test_category_from_lookup(self, rule_factory, now):
        """Test category from lookup."""
        rule = rule_factory(applies_to='category', category_ids=['dairy'])
        items = [{'product_id': 'M', 'quantity': 1, 'subtotal': Decimal('30')}]

        result = validate_discount(rule, items=items, subtotal=Decimal('30'), now=now,
                                   category_lookup={'M': 'dairy'})
        assert result['valid'] is True

    def test_missing_category_data_is_a_warning(self, rule_factory, now):
        """Test missing category data is a warning."""
        rule = rule_factory(applies_to='category', category_ids=['dairy'])
        items = [{'product_id': 'M', 'quantity': 1, 'subtotal': Decimal('30')}]

        result = validate_discount(rule, items=items, subtotal=Decimal('30'), now=now)
        assert result['valid'] is True
        assert result['warnings'] == ['Category data unavailable for this discount']


class TestResultShape:
    """Tests for result shape."""

    def test_max_discount_amount_for_capped_percentage(self, rule_factory, now):
        """Test max discount amount for capped percentage."""
        rule = rule_factory(maximum_discount_amount=Decimal('25'))
        assert validate_discount(rule, now=now)['max_discount_amount'] == Decimal('25')

    def test_max_discount_amount_not_exposed_for_fixed(self, rule_factory, now):
        """Test max discount amount not exposed for fixed."""
        rule = rule_factory(discount_type='fixed', maximum_discount_amount=Decimal('25'))
        assert validate_discount(rule, now=now)['max_discount_amount'] is None

    def test_manager_approval_flag(self, rule_factory, now):
        """Test manager approval flag."""
        rule = rule_factory(requires_manager_approval=True)
        result = validate_discount(rule, now=now)

        assert result['valid'] is True
        assert result['requires_manager_approval'] is True

    def test_not_found_result(self):
        """Test not found result."""
        result = not_found_result()

        assert result['valid'] is False
        assert result['errors'] == ['Discount not found']
        assert result['warnings'] == []
