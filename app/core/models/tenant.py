import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Tenant(Base):
    """
    Tenant (organization) in the multi-tenant platform.

    - organization_type is the tenant's vertical; catalog modules list the verticals they are offered to.
    - subscription_plan_id: optional plan whose modules_include count as active for the tenant.
    """

    __tablename__ = "tenants"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_name = Column(String(255), nullable=False)
    organization_type = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    subscription_plan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.subscription_plans.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    modules = relationship("TenantModule", back_populates="tenant", cascade="all, delete-orphan")
    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")
    subscription_plan = relationship("SubscriptionPlan")


class TenantModule(Base):
    """Per-tenant module state: one row per module per tenant.

    A row with is_active = false overrides inclusion through the subscription plan.
    Trial rows stop counting as active once expires_at has passed.
    """

    __tablename__ = "tenant_modules"
    __table_args__ = (
        # A tenant cannot have the same module_key more than once
        UniqueConstraint("tenant_id", "module_key", name="uq_tenant_module"),
        {"schema": "core"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id"), nullable=False)
    module_key = Column(
        String(100),
        ForeignKey("core.modules.module_key"),
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    is_trial = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    enabled_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="modules")
    module = relationship("Module", back_populates="tenant_mappings")
