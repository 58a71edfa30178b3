"""Entity model (party: customer and/or supplier)."""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK


class Entity(Base):
    """Entity (cliente / proveedor) with a running account balance.

    The entity row doubles as the lock anchor for ledger postings:
    posting a movement locks it FOR UPDATE for the read-last + append.
    """

    __tablename__ = 'entity'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_entity_tenant_code'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    code = Column(String(50), nullable=True)
    name = Column(String(200), nullable=False)
    tax_id = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    is_customer = Column(Boolean, nullable=False, default=False)
    is_supplier = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    tenant = relationship('Tenant')

    def __repr__(self):
        return f"<Entity(id={self.id}, name='{self.name}', customer={self.is_customer}, supplier={self.is_supplier})>"
