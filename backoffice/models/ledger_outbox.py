"""Ledger Outbox model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK
from backoffice.models.entity_movement import MovementType, MovementNature
from backoffice.models.cash_account import CashMovementType
import enum


class OutboxStatus(str, enum.Enum):
    """Outbox entry status."""
    PENDING = 'PENDING'
    DONE = 'DONE'
    FAILED = 'FAILED'


class OutboxLedger(str, enum.Enum):
    """Ledger an outbox entry posts to."""
    ENTITY = 'ENTITY'
    CASH = 'CASH'


class LedgerOutbox(Base):
    """Ledger posting queued inside a document transaction.

    Written in the same commit as the document, dispatched afterwards.
    ENTITY entries post to an entity account (entity_id, movement_type,
    nature); CASH entries post to a cash account (cash_movement_type,
    category). A FAILED entry is reconciliation debt: the document exists
    but its ledger movement does not yet.
    """

    __tablename__ = 'ledger_outbox'
    __table_args__ = (
        Index('ix_ledger_outbox_status', 'status', 'id'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    ledger = Column(String(20), nullable=False, default=OutboxLedger.ENTITY.value)
    event_type = Column(String(50), nullable=False)  # PURCHASE_CREATED, PURCHASE_PAYMENT_ADDED, ...
    amount = Column(Numeric(14, 2), nullable=False)
    movement_date = Column(DateTime(timezone=True), nullable=False)
    description = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id'), nullable=True)
    purchase_payment_id = Column(BigInteger, ForeignKey('purchase_payment.id'), nullable=True)
    sale_payment_id = Column(BigInteger, ForeignKey('sale_payment.id'), nullable=True)

    # ENTITY postings
    entity_id = Column(BigInteger, ForeignKey('entity.id'), nullable=True)
    movement_type = Column(Enum(MovementType, name='outbox_movement_type'), nullable=True)
    nature = Column(Enum(MovementNature, name='outbox_movement_nature'), nullable=True)

    # CASH postings
    cash_movement_type = Column(Enum(CashMovementType, name='outbox_cash_movement_type'), nullable=True)
    category = Column(String(50), nullable=True)
    reference = Column(String(100), nullable=True)
    payment_method_id = Column(BigInteger, ForeignKey('payment_method.id'), nullable=True)

    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    movement_id = Column(BigInteger, ForeignKey('entity_movement.id'), nullable=True)
    cash_movement_id = Column(BigInteger, ForeignKey('cash_movement.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<LedgerOutbox(id={self.id}, ledger='{self.ledger}', event='{self.event_type}', "
            f"status='{self.status}', attempts={self.attempts})>"
        )
