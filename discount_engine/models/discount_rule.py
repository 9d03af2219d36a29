"""Discount rule model."""
from sqlalchemy import Column, BigInteger, String, Text, Boolean, Integer, Numeric, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from discount_engine.database import Base
import enum


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONList = JSON().with_variant(JSONB, 'postgresql')


class DiscountType(str, enum.Enum):
    """How the discount value is interpreted."""
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'


class DiscountAppliesTo(str, enum.Enum):
    """Which part of the cart the discount reduces."""
    ORDER = 'order'
    PRODUCT = 'product'
    CATEGORY = 'category'


class DiscountUsageLimit(str, enum.Enum):
    """Lifetime usage control."""
    UNLIMITED = 'unlimited'
    LIMITED = 'limited'


class DiscountRule(Base):
    """
    Configured discount policy.

    A single record with optional fields guarded by the ``applies_to`` and
    ``usage_limit`` discriminants. ``branch_id`` NULL means all branches.
    Identifiers of external entities (branches, products, categories,
    customers, staff) are opaque strings owned by the calling system.
    """

    __tablename__ = 'discount_rule'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    branch_id = Column(String(64), nullable=True, index=True)

    # Display
    name = Column(String(200), nullable=False)
    name_ar = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    description_ar = Column(Text, nullable=True)

    # Effect
    discount_type = Column(String(20), nullable=False)  # DiscountType value
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    applies_to = Column(String(20), nullable=False, default=DiscountAppliesTo.ORDER.value)
    product_ids = Column(JSONList, nullable=True)
    category_ids = Column(JSONList, nullable=True)

    # Conditions
    minimum_order_amount = Column(Numeric(10, 2), nullable=True)
    minimum_quantity = Column(Numeric(10, 2), nullable=True)
    maximum_discount_amount = Column(Numeric(10, 2), nullable=True)

    # Validity window (naive wall-clock datetimes, inclusive)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    valid_days = Column(JSONList, nullable=True)  # 0=Sunday .. 6=Saturday
    valid_hours_start = Column(String(5), nullable=True)  # "HH:MM"
    valid_hours_end = Column(String(5), nullable=True)

    # Usage control
    usage_limit = Column(String(20), nullable=False, default=DiscountUsageLimit.UNLIMITED.value)
    max_uses = Column(Integer, nullable=True)
    max_uses_per_customer = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0, server_default='0')
    last_used_at = Column(DateTime, nullable=True)

    # Audience control
    allowed_customer_ids = Column(JSONList, nullable=True)
    excluded_customer_ids = Column(JSONList, nullable=True)
    staff_ids = Column(JSONList, nullable=True)

    # Combination control
    can_combine_with_others = Column(Boolean, nullable=False, default=True)
    excluded_discount_ids = Column(JSONList, nullable=True)

    # Governance
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    requires_manager_approval = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def valid_hours(self):
        """(start, end) tuple or None when no time-of-day window is set."""
        if self.valid_hours_start and self.valid_hours_end:
            return self.valid_hours_start, self.valid_hours_end
        return None

    @property
    def is_limited(self):
        return self.usage_limit == DiscountUsageLimit.LIMITED.value

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'company_id': self.company_id,
            'branch_id': self.branch_id,
            'name': self.name,
            'name_ar': self.name_ar,
            'description': self.description,
            'description_ar': self.description_ar,
            'discount_type': self.discount_type,
            'discount_value': str(self.discount_value) if self.discount_value is not None else None,
            'applies_to': self.applies_to,
            'product_ids': self.product_ids or [],
            'category_ids': self.category_ids or [],
            'minimum_order_amount': str(self.minimum_order_amount) if self.minimum_order_amount is not None else None,
            'minimum_quantity': str(self.minimum_quantity) if self.minimum_quantity is not None else None,
            'maximum_discount_amount': str(self.maximum_discount_amount) if self.maximum_discount_amount is not None else None,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'valid_days': self.valid_days or [],
            'valid_hours': {'start': self.valid_hours_start, 'end': self.valid_hours_end} if self.valid_hours else None,
            'usage_limit': self.usage_limit,
            'max_uses': self.max_uses,
            'max_uses_per_customer': self.max_uses_per_customer,
            'current_uses': self.current_uses,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'allowed_customer_ids': self.allowed_customer_ids or [],
            'excluded_customer_ids': self.excluded_customer_ids or [],
            'staff_ids': self.staff_ids or [],
            'can_combine_with_others': self.can_combine_with_others,
            'excluded_discount_ids': self.excluded_discount_ids or [],
            'is_active': self.is_active,
            'requires_manager_approval': self.requires_manager_approval,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DiscountRule(id={self.id}, name='{self.name}', type={self.discount_type}, applies_to={self.applies_to})>"
