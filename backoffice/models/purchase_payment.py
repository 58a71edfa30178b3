"""Purchase Payment model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK


class PurchasePayment(Base):
    """Payment registered against a purchase."""

    __tablename__ = 'purchase_payment'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=False)
    payment_method_id = Column(BigInteger, ForeignKey('payment_method.id'), nullable=False)
    payment_method_name = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    reference = Column(String(100), nullable=True)
    reference_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    purchase = relationship('Purchase', back_populates='payments')
    payment_method = relationship('PaymentMethod')

    def __repr__(self):
        return f"<PurchasePayment(id={self.id}, amount={self.amount}, purchase={self.purchase_id})>"
