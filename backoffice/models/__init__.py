"""Models package - exports all SQLAlchemy models."""
# Tenancy and collaborator records
from backoffice.models.tenant import Tenant
from backoffice.models.entity import Entity
from backoffice.models.payment_method import PaymentMethod
from backoffice.models.product import Product
from backoffice.models.warehouse import Warehouse

# Inventory
from backoffice.models.warehouse_stock import WarehouseStock
from backoffice.models.stock_movement import StockMovement, StockMovementType, StockDocumentType
from backoffice.models.stock_adjustment import StockAdjustment, StockAdjustmentItem, AdjustmentStatus

# Entity accounts
from backoffice.models.entity_movement import EntityMovement, MovementType, MovementNature
from backoffice.models.entity_payment import EntityPayment, EntityPaymentType

# Documents
from backoffice.models.purchase import Purchase, PurchaseStatus, PaymentStatus
from backoffice.models.purchase_item import PurchaseItem
from backoffice.models.purchase_payment import PurchasePayment
from backoffice.models.sale import Sale, SaleStatus
from backoffice.models.sale_item import SaleItem
from backoffice.models.sale_payment import SalePayment

# Cash
from backoffice.models.cash_account import CashAccount, CashMovement, CashMovementType

# Infrastructure
from backoffice.models.document_sequence import DocumentSequence
from backoffice.models.ledger_outbox import LedgerOutbox, OutboxStatus, OutboxLedger
from backoffice.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Tenant', 'Entity', 'PaymentMethod', 'Product', 'Warehouse',
    'WarehouseStock', 'StockMovement', 'StockMovementType', 'StockDocumentType',
    'StockAdjustment', 'StockAdjustmentItem', 'AdjustmentStatus',
    'EntityMovement', 'MovementType', 'MovementNature', 'EntityPayment', 'EntityPaymentType',
    'Purchase', 'PurchaseStatus', 'PaymentStatus', 'PurchaseItem', 'PurchasePayment',
    'Sale', 'SaleStatus', 'SaleItem', 'SalePayment',
    'CashAccount', 'CashMovement', 'CashMovementType',
    'DocumentSequence', 'LedgerOutbox', 'OutboxStatus', 'OutboxLedger', 'AuditLog', 'AuditAction',
]
