"""Payment Method model."""
from sqlalchemy import Column, BigInteger, String, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from backoffice.database import Base, BigIntPK


class PaymentMethod(Base):
    """Payment method configured by the tenant (Efectivo, Transferencia, ...)."""

    __tablename__ = 'payment_method'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(30), nullable=False, default='CASH')  # CASH, TRANSFER, CARD, CHECK
    active = Column(Boolean, nullable=False, default=True)
    cash_account_id = Column(BigInteger, ForeignKey('cash_account.id'), nullable=True)

    # Relationships
    tenant = relationship('Tenant')
    cash_account = relationship('CashAccount')

    def __repr__(self):
        return f"<PaymentMethod(id={self.id}, name='{self.name}', type='{self.type}')>"
