"""Sale Payment model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK


class SalePayment(Base):
    """Payment collected at sale time."""

    __tablename__ = 'sale_payment'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id'), nullable=False)
    payment_method_id = Column(BigInteger, ForeignKey('payment_method.id'), nullable=False)
    payment_method_name = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    reference = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    sale = relationship('Sale', back_populates='payments')
    payment_method = relationship('PaymentMethod')

    def __repr__(self):
        return f"<SalePayment(id={self.id}, amount={self.amount}, sale={self.sale_id})>"
