"""Entity Payment model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class EntityPaymentType(enum.Enum):
    """Who paid whom."""
    CUSTOMER_PAYMENT = "CUSTOMER_PAYMENT"
    SUPPLIER_PAYMENT = "SUPPLIER_PAYMENT"


class EntityPayment(Base):
    """Payment on an entity account (cobro / pago a cuenta).

    Created together with exactly one CREDIT EntityMovement that references it.
    """

    __tablename__ = 'entity_payment'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    entity_id = Column(BigInteger, ForeignKey('entity.id'), nullable=False)
    type = Column(Enum(EntityPaymentType, name='entity_payment_type'), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_method_id = Column(BigInteger, ForeignKey('payment_method.id'), nullable=False)
    payment_method_name = Column(String(100), nullable=False)  # Denormalized at creation time
    date = Column(DateTime(timezone=True), nullable=False)
    reference = Column(String(100), nullable=True)
    reference_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    entity = relationship('Entity')
    payment_method = relationship('PaymentMethod')

    def __repr__(self):
        return f"<EntityPayment(id={self.id}, type={self.type.value}, amount={self.amount})>"
