"""Stock Movement model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
import enum


class StockMovementType(enum.Enum):
    """Stock movement type enum."""
    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"


class StockDocumentType(enum.Enum):
    """Origin document of a stock movement."""
    PURCHASE = "PURCHASE"
    PURCHASE_CANCELLATION = "PURCHASE_CANCELLATION"
    SALE = "SALE"
    SALE_CANCELLATION = "SALE_CANCELLATION"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER = "TRANSFER"
    MANUAL = "MANUAL"


class StockMovement(Base):
    """Stock Movement (movimiento de stock). Append-only: never updated or deleted."""

    __tablename__ = 'stock_movement'
    __table_args__ = (
        Index('ix_stock_movement_product', 'tenant_id', 'product_id', 'created_at'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    warehouse_id = Column(BigInteger, ForeignKey('warehouse.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    movement_type = Column(Enum(StockMovementType, name='stock_movement_type'), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=True)
    total_cost = Column(Numeric(14, 2), nullable=True)
    document_type = Column(Enum(StockDocumentType, name='stock_document_type'), nullable=False)
    document_id = Column(BigInteger, nullable=True)
    reference_number = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    user_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    warehouse = relationship('Warehouse')
    product = relationship('Product')

    def __repr__(self):
        return (
            f"<StockMovement(id={self.id}, type={self.movement_type.value}, "
            f"product_id={self.product_id}, quantity={self.quantity})>"
        )
