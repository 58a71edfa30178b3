"""Stock Adjustment models."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class AdjustmentStatus(str, enum.Enum):
    """Adjustment workflow: draft -> approved | cancelled."""
    DRAFT = 'draft'
    APPROVED = 'approved'
    CANCELLED = 'cancelled'


class StockAdjustment(Base):
    """Stock Adjustment (ajuste de inventario por conteo físico)."""

    __tablename__ = 'stock_adjustment'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'adjustment_number', name='uq_stock_adjustment_number'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    adjustment_number = Column(String(20), nullable=False)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    adjustment_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    reason = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=AdjustmentStatus.DRAFT.value)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    created_by = Column(BigInteger, nullable=True)
    approved_by = Column(BigInteger, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    warehouse = relationship('Warehouse')
    items = relationship(
        'StockAdjustmentItem', back_populates='adjustment',
        cascade='all, delete-orphan', order_by='StockAdjustmentItem.id'
    )

    def __repr__(self):
        return f"<StockAdjustment(id={self.id}, number='{self.adjustment_number}', status='{self.status}')>"


class StockAdjustmentItem(Base):
    """Adjustment line: counted (adjusted) vs. system (current) quantity."""

    __tablename__ = 'stock_adjustment_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    adjustment_id = Column(BigInteger, ForeignKey('stock_adjustment.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    current_qty = Column(Numeric(14, 3), nullable=False)
    adjusted_qty = Column(Numeric(14, 3), nullable=False)
    difference = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    reason = Column(String(255), nullable=True)

    # Relationships
    adjustment = relationship('StockAdjustment', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<StockAdjustmentItem(id={self.id}, product_id={self.product_id}, difference={self.difference})>"
