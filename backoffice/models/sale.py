"""Sale model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class SaleStatus(str, enum.Enum):
    """Sale status enum."""
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class Sale(Base):
    """Sale (venta confirmada)."""

    __tablename__ = 'sale'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'sale_number', name='uq_sale_number'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    sale_number = Column(String(20), nullable=False)
    sale_date = Column(DateTime(timezone=True), nullable=False)
    customer_id = Column(BigInteger, ForeignKey('entity.id'), nullable=True)
    customer_name = Column(String(200), nullable=True)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(14, 2), nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default='pending')
    status = Column(String(20), nullable=False, default=SaleStatus.COMPLETED.value)
    notes = Column(Text, nullable=True)
    created_by = Column(BigInteger, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    customer = relationship('Entity')
    warehouse = relationship('Warehouse')
    items = relationship(
        'SaleItem', back_populates='sale',
        cascade='all, delete-orphan', order_by='SaleItem.line_number'
    )
    payments = relationship(
        'SalePayment', back_populates='sale',
        cascade='all, delete-orphan', order_by='SalePayment.id'
    )

    @hybrid_property
    def amount_due(self):
        """Amount still owed: total - paid."""
        return (self.total_amount or 0) - (self.paid_amount or 0)

    def __repr__(self):
        return f"<Sale(id={self.id}, number='{self.sale_number}', total={self.total_amount}, status='{self.status}')>"
