import pytest
from datetime import datetime
from decimal import Decimal
import os
import tempfile

# Force test configuration to use a throwaway SQLite file ONLY if not already set
if 'DATABASE_URL' not in os.environ:
    _db_dir = tempfile.mkdtemp(prefix='discount-engine-tests-')
    os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ['CACHE_ENABLED'] = 'false'

from discount_engine import create_app
from discount_engine.database import create_all, get_session
from discount_engine.models import DiscountRule, DiscountUsage


# Wednesday 2024-06-05 14:30 (weekday 3 with Sunday = 0)
NOW = datetime(2024, 6, 5, 14, 30)

COMPANY_ID = 'company-1'


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.Config')
    app.config['TESTING'] = True
    with app.app_context():
        create_all()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing; tables are emptied afterwards."""
    ctx = app.app_context()
    ctx.push()
    session = get_session()
    yield session
    session.rollback()
    session.query(DiscountUsage).delete()
    session.query(DiscountRule).delete()
    session.commit()
    session.remove()
    ctx.pop()


@pytest.fixture
def now():
    """Fixed wall clock: Wednesday 2024-06-05 14:30."""
    return NOW


@pytest.fixture
def rule_factory():
    """Build unsaved rules with sensible defaults for pure logic tests."""
    def build_rule(**overrides):
        values = dict(
            id=1,
            company_id=COMPANY_ID,
            name='Test Discount',
            discount_type='percentage',
            discount_value=Decimal('10'),
            applies_to='order',
            usage_limit='unlimited',
            current_uses=0,
            can_combine_with_others=True,
            is_active=True,
            requires_manager_approval=False,
        )
        values.update(overrides)
        return DiscountRule(**values)
    return build_rule


@pytest.fixture
def cart_items():
    """Two-line cart: A (2 x 50) and B (1 x 50)."""
    return [
        {'product_id': 'A', 'quantity': 2, 'subtotal': Decimal('100'), 'category_id': 'drinks'},
        {'product_id': 'B', 'quantity': 1, 'subtotal': Decimal('50'), 'category_id': 'snacks'},
    ]
