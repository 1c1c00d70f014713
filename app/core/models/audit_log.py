"""
Audit log for tenant module changes. One row per module switched on or off by an executed plan.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class ModuleAuditLog(Base):
    __tablename__ = "module_audit_logs"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    module_key = Column(String(100), nullable=False)
    # ACTIVATED | DEACTIVATED
    action = Column(String(50), nullable=False)
    # Module the user asked for; differs from module_key for cascaded changes
    target_module = Column(String(100), nullable=False)
    performed_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    performed_by_role = Column(String(50), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    remarks = Column(Text, nullable=True)

    tenant = relationship("Tenant", backref="module_audit_logs", foreign_keys=[tenant_id])
