import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.core.models.module import JSONType
from app.db.session import Base


class SubscriptionPlan(Base):
    """Subscription plan offered by the platform.

    Bundles a set of catalog modules for an organization type. Tenants on the plan
    get every module in modules_include as active unless a tenant module row
    explicitly turns it off.
    """

    __tablename__ = "subscription_plans"
    __table_args__ = (
        UniqueConstraint("name", "organization_type", name="uq_subscription_plan_name_org_type"),
        {"schema": "core"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    organization_type = Column(String(100), nullable=False)
    # Module keys from core.modules (e.g. ["crm", "invoices"])
    modules_include = Column(JSONType, nullable=False, default=list)
    # Display price (e.g. "99", "$99/mo", "Free")
    price = Column(String(100), nullable=False, default="")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
