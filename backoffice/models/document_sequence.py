"""Document Sequence model."""
from sqlalchemy import Column, BigInteger, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK


class DocumentSequence(Base):
    """Per-tenant, per-series counter for human-readable document numbers.

    The row is locked FOR UPDATE while the next value is reserved, so two
    concurrent documents of the same series can never get the same number.
    """

    __tablename__ = 'document_sequence'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'series', name='uq_document_sequence_series'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    series = Column(String(50), nullable=False)
    last_value = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DocumentSequence(tenant_id={self.tenant_id}, series='{self.series}', last_value={self.last_value})>"
