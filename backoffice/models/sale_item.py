"""Sale Item model."""
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from backoffice.database import Base, BigIntPK


class SaleItem(Base):
    """Sale Item (detalle de venta)."""

    __tablename__ = 'sale_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id'), nullable=False)
    line_number = Column(Integer, nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    unit_price = Column(Numeric(14, 4), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    subtotal = Column(Numeric(14, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    line_total = Column(Numeric(14, 2), nullable=False)
    stock_tracked = Column(Boolean, nullable=False, default=True)

    # Relationships
    sale = relationship('Sale', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<SaleItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
