"""Entity Movement model (cuenta corriente)."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class MovementType(enum.Enum):
    """Entity movement type enum."""
    SALE = "SALE"
    SALE_PAYMENT = "SALE_PAYMENT"
    PURCHASE = "PURCHASE"
    PURCHASE_PAYMENT = "PURCHASE_PAYMENT"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"
    ADJUSTMENT = "ADJUSTMENT"
    INITIAL_BALANCE = "INITIAL_BALANCE"


class MovementNature(enum.Enum):
    """DEBIT increases the balance, CREDIT decreases it."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class EntityMovement(Base):
    """Entity account movement. Append-only: corrections are new movements.

    balance is the running balance after this movement, ordered by (date, id).
    """

    __tablename__ = 'entity_movement'
    __table_args__ = (
        Index('ix_entity_movement_chain', 'tenant_id', 'entity_id', 'date', 'id'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    entity_id = Column(BigInteger, ForeignKey('entity.id'), nullable=False)
    type = Column(Enum(MovementType, name='entity_movement_type'), nullable=False)
    nature = Column(Enum(MovementNature, name='entity_movement_nature'), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    balance = Column(Numeric(14, 2), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    description = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id'), nullable=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=True)
    payment_id = Column(BigInteger, ForeignKey('entity_payment.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    entity = relationship('Entity')
    sale = relationship('Sale')
    purchase = relationship('Purchase')
    payment = relationship('EntityPayment')

    def __repr__(self):
        return (
            f"<EntityMovement(id={self.id}, type={self.type.value}, nature={self.nature.value}, "
            f"amount={self.amount}, balance={self.balance})>"
        )
