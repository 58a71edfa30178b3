"""Warehouse Stock model."""
from sqlalchemy import Column, BigInteger, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from backoffice.database import Base, BigIntPK


class WarehouseStock(Base):
    """Derived stock aggregate, one row per (tenant, warehouse, product).

    available_qty = quantity - reserved_qty at all times.
    """

    __tablename__ = 'warehouse_stock'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'warehouse_id', 'product_id', name='uq_warehouse_stock_key'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False, default=0)
    reserved_qty = Column(Numeric(14, 3), nullable=False, default=0)
    available_qty = Column(Numeric(14, 3), nullable=False, default=0)
    last_movement_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    warehouse = relationship('Warehouse', back_populates='stocks')
    product = relationship('Product', back_populates='warehouse_stocks')

    def __repr__(self):
        return (
            f"<WarehouseStock(warehouse_id={self.warehouse_id}, product_id={self.product_id}, "
            f"quantity={self.quantity}, available_qty={self.available_qty})>"
        )
