"""Purchase model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class PurchaseStatus(str, enum.Enum):
    """Purchase document status."""
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class PaymentStatus(str, enum.Enum):
    """Payment status derived from paid_amount vs total_amount."""
    PENDING = 'pending'
    PARTIAL = 'partial'
    PAID = 'paid'


class Purchase(Base):
    """Purchase (compra a proveedor)."""

    __tablename__ = 'purchase'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'purchase_number', name='uq_purchase_number'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    purchase_number = Column(String(20), nullable=False)
    purchase_date = Column(DateTime(timezone=True), nullable=False)
    supplier_id = Column(BigInteger, ForeignKey('entity.id'), nullable=False)
    supplier_name = Column(String(200), nullable=False)
    invoice_number = Column(String(50), nullable=True)
    invoice_date = Column(DateTime(timezone=True), nullable=True)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(14, 2), nullable=False, default=0)
    balance_amount = Column(Numeric(14, 2), nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    status = Column(String(20), nullable=False, default=PurchaseStatus.COMPLETED.value)
    notes = Column(Text, nullable=True)
    created_by = Column(BigInteger, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    supplier = relationship('Entity')
    warehouse = relationship('Warehouse')
    items = relationship(
        'PurchaseItem', back_populates='purchase',
        cascade='all, delete-orphan', order_by='PurchaseItem.line_number'
    )
    payments = relationship(
        'PurchasePayment', back_populates='purchase',
        cascade='all, delete-orphan', order_by='PurchasePayment.id'
    )

    def __repr__(self):
        return f"<Purchase(id={self.id}, number='{self.purchase_number}', status='{self.status}')>"
