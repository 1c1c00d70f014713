from app.core.models.audit_log import ModuleAuditLog
from app.core.models.module import Module
from app.core.models.subscription_plan import SubscriptionPlan
from app.core.models.tenant import Tenant, TenantModule

__all__ = [
    "Module",
    "ModuleAuditLog",
    "SubscriptionPlan",
    "Tenant",
    "TenantModule",
]
