"""Product model."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK


class Product(Base):
    """Product model.

    current_stock is derived: the sum of WarehouseStock.quantity across
    the tenant's warehouses, recomputed on every stock posting.
    """

    __tablename__ = 'product'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'sku', name='uq_product_tenant_sku'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    sku = Column(String, nullable=True)
    name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    track_stock = Column(Boolean, nullable=False, default=True)
    sale_price = Column(Numeric(14, 2), nullable=False, default=0)
    cost_price = Column(Numeric(14, 4), nullable=False, default=0)  # Último precio de compra
    current_stock = Column(Numeric(14, 3), nullable=False, default=0)
    min_stock = Column(Numeric(14, 3), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    tenant = relationship('Tenant')
    warehouse_stocks = relationship('WarehouseStock', back_populates='product')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"
