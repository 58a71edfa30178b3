"""Tenant model - represents each business/organization using the platform."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from backoffice.database import Base, BigIntPK


class Tenant(Base):
    """Tenant model - each business/organization.

    Tenant resolution happens upstream; the core only scopes rows by tenant_id.
    """

    __tablename__ = 'tenant'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    slug = Column(String(80), nullable=False, unique=True)  # URL-safe identifier
    name = Column(String(200), nullable=False)  # Display name
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}', name='{self.name}')>"
