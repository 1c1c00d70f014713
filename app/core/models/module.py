import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Module(Base):
    """Catalog entry for a purchasable feature module.

    Owned by the platform operator; read-only to the entitlement resolver.
    `dependencies` holds a list of {"module_key", "type", "reason"} objects where
    type is required | recommended | optional. `conflicts_with` holds module keys
    that may not be active at the same time as this module.
    """

    __tablename__ = "modules"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Stable programmatic key, used in code & foreign keys (e.g. 'crm')
    module_key = Column(String(100), nullable=False, unique=True)
    # Human-readable name (e.g. 'CRM Module')
    module_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # core | vertical_specific | add_on | premium
    category = Column(String(50), nullable=False, default="add_on")
    dependencies = Column(JSONType, nullable=False, default=list)
    conflicts_with = Column(JSONType, nullable=False, default=list)
    # Organization types the module is offered to; "*" means all
    compatible_verticals = Column(JSONType, nullable=False, default=lambda: ["*"])
    price_monthly = Column(Numeric(10, 2), nullable=False, default=0)
    is_core = Column(Boolean, default=False, nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant_mappings = relationship(
        "TenantModule", back_populates="module", cascade="all, delete-orphan"
    )
