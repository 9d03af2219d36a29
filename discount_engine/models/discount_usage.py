"""Discount usage model (append-only)."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from discount_engine.database import Base
from datetime import datetime


class DiscountUsage(Base):
    """
    One redemption of a discount rule in a completed sale.

    Written once by the usage recorder and never mutated; read by the
    statistics aggregator and the per-customer limit check.
    """

    __tablename__ = 'discount_usage'
    __table_args__ = (
        Index('ix_discount_usage_discount_customer', 'discount_id', 'customer_id'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    # No ON DELETE cascade: deleting a rule orphans its history
    discount_id = Column(BigInteger, ForeignKey('discount_rule.id', ondelete='SET NULL'), nullable=True, index=True)
    sale_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    used_at = Column(DateTime, nullable=False, default=datetime.now, index=True)

    discount = relationship('DiscountRule', passive_deletes=True)

    def to_dict(self):
        return {
            'id': self.id,
            'discount_id': self.discount_id,
            'sale_id': self.sale_id,
            'customer_id': self.customer_id,
            'amount': str(self.amount) if self.amount is not None else None,
            'used_at': self.used_at.isoformat() if self.used_at else None,
        }

    def __repr__(self):
        return f"<DiscountUsage(id={self.id}, discount_id={self.discount_id}, sale_id='{self.sale_id}', amount={self.amount})>"
