"""Purchase Item model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from backoffice.database import Base, BigIntPK


class PurchaseItem(Base):
    """Purchase Item (detalle de compra)."""

    __tablename__ = 'purchase_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=False)
    line_number = Column(Integer, nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=True)
    product_sku = Column(String, nullable=True)
    product_name = Column(String, nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    unit_price = Column(Numeric(14, 4), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    subtotal = Column(Numeric(14, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    line_total = Column(Numeric(14, 2), nullable=False)

    # Relationships
    purchase = relationship('Purchase', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<PurchaseItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
