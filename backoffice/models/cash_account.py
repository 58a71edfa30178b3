"""Cash Account and Cash Movement models."""
from sqlalchemy import (
    Column, BigInteger, String, Numeric, DateTime, Text, Boolean, Enum, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class CashMovementType(enum.Enum):
    """Direction of a cash movement."""
    INCOME = "income"
    EXPENSE = "expense"


class CashAccount(Base):
    """Cash account (caja / cuenta bancaria). Balance = initial + income - expense."""

    __tablename__ = 'cash_account'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_cash_account_tenant_name'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False, default='cash')  # cash, bank
    initial_balance = Column(Numeric(14, 2), nullable=False, default=0)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    tenant = relationship('Tenant')

    def __repr__(self):
        return f"<CashAccount(id={self.id}, name='{self.name}', default={self.is_default})>"


class CashMovement(Base):
    """Cash movement (ingreso / egreso de caja). Append-only: never updated or deleted."""

    __tablename__ = 'cash_movement'
    __table_args__ = (
        Index('ix_cash_movement_account', 'tenant_id', 'cash_account_id', 'movement_date'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    cash_account_id = Column(BigInteger, ForeignKey('cash_account.id'), nullable=False)
    movement_type = Column(Enum(CashMovementType, name='cash_movement_type'), nullable=False)
    category = Column(String(50), nullable=False)  # sale, purchase, deposit, withdrawal, ...
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String(255), nullable=False)
    reference = Column(String(100), nullable=True)
    payment_method_id = Column(BigInteger, ForeignKey('payment_method.id'), nullable=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id'), nullable=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=True)
    sale_payment_id = Column(BigInteger, ForeignKey('sale_payment.id'), nullable=True)
    purchase_payment_id = Column(BigInteger, ForeignKey('purchase_payment.id'), nullable=True)
    movement_date = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    cash_account = relationship('CashAccount')
    payment_method = relationship('PaymentMethod')

    def __repr__(self):
        return (
            f"<CashMovement(id={self.id}, type={self.movement_type.value}, "
            f"account_id={self.cash_account_id}, amount={self.amount})>"
        )
