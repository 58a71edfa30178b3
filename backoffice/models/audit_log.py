"""
Audit Log model for tracking critical actions in the system.
"""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from backoffice.utils.time_utils import now
import enum

from backoffice.database import Base, BigIntPK


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Purchases
    PURCHASE_CREATED = "PURCHASE_CREATED"
    PURCHASE_PAYMENT_ADDED = "PURCHASE_PAYMENT_ADDED"
    PURCHASE_CANCELLED = "PURCHASE_CANCELLED"

    # Sales
    SALE_CREATED = "SALE_CREATED"
    SALE_CANCELLED = "SALE_CANCELLED"

    # Inventory
    STOCK_MOVEMENT_CREATED = "STOCK_MOVEMENT_CREATED"
    ADJUSTMENT_CREATED = "ADJUSTMENT_CREATED"
    ADJUSTMENT_APPROVED = "ADJUSTMENT_APPROVED"
    ADJUSTMENT_CANCELLED = "ADJUSTMENT_CANCELLED"
    WAREHOUSE_DELETED = "WAREHOUSE_DELETED"

    # Accounts
    ENTITY_MOVEMENT_CREATED = "ENTITY_MOVEMENT_CREATED"
    ENTITY_PAYMENT_REGISTERED = "ENTITY_PAYMENT_REGISTERED"

    # Cash
    CASH_ACCOUNT_CREATED = "CASH_ACCOUNT_CREATED"
    CASH_MOVEMENT_CREATED = "CASH_MOVEMENT_CREATED"


class AuditLog(Base):
    """
    Audit log for tracking user actions.
    Multi-tenant: filtered by tenant_id.
    """
    __tablename__ = 'audit_log'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    user_id = Column(BigInteger, nullable=True)  # Acting user, trusted from upstream
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'purchase', 'stock_adjustment'
    resource_id = Column(BigInteger)  # ID of the affected resource
    details = Column(Text)  # JSON with additional details
    created_at = Column(DateTime, default=now, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} at {self.created_at}>"
