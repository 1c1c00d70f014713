from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import DependencyKind, ModuleCategory, ValidationErrorType


# --- Catalog records ---


class ModuleDependency(BaseModel):
    """One edge of the catalog graph. Only required edges take part in resolution."""

    model_config = ConfigDict(frozen=True)

    module_key: str
    type: DependencyKind = DependencyKind.REQUIRED
    reason: str = ""


class ModuleDefinition(BaseModel):
    """Immutable catalog entry as seen by the resolver."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    description: Optional[str] = None
    category: ModuleCategory = ModuleCategory.ADD_ON
    dependencies: List[ModuleDependency] = Field(default_factory=list)
    conflicts_with: List[str] = Field(default_factory=list)
    compatible_verticals: List[str] = Field(default_factory=lambda: ["*"])
    price_monthly: Decimal = Field(default=Decimal("0"), ge=0)
    is_core: bool = False
    is_premium: bool = False
    display_order: int = 0

    @property
    def required_keys(self) -> List[str]:
        return [d.module_key for d in self.dependencies if d.type == DependencyKind.REQUIRED]

    def keys_of(self, kind: DependencyKind) -> List[str]:
        return [d.module_key for d in self.dependencies if d.type == kind]


# --- Resolver results ---


class ValidationResult(BaseModel):
    """Outcome of an activation check. Failures are values, never exceptions."""

    valid: bool
    error: Optional[str] = None
    type: Optional[ValidationErrorType] = None
    conflicts: List[str] = Field(default_factory=list)


class ActivationPlan(BaseModel):
    """What turns on, why, and at what incremental monthly price.

    valid is False when the target or one of its dependencies cannot be activated;
    warnings then carry the reason and callers must not execute the plan.
    """

    target_module: str
    modules_to_enable: List[str]
    warnings: List[str]
    total_cost: Decimal
    valid: bool


class DeactivationPlan(BaseModel):
    """What turns off, including cascaded orphans. allowed is False for core or unknown modules."""

    target_module: str
    modules_to_disable: List[str]
    warnings: List[str]
    allowed: bool


# --- API payloads ---


class ModuleInfo(BaseModel):
    """Catalog module for listings."""

    id: UUID
    module_key: str
    module_name: str
    description: Optional[str]
    category: str
    dependencies: List[ModuleDependency]
    conflicts_with: List[str]
    compatible_verticals: List[str]
    price_monthly: Decimal
    is_core: bool
    is_premium: bool
    is_active: bool
    display_order: int


class ModuleDetailsResponse(BaseModel):
    """A module with its dependency and conflict neighbours resolved from the catalog."""

    module: ModuleDefinition
    required_dependencies: List[ModuleDefinition]
    recommended_dependencies: List[ModuleDefinition]
    conflicts: List[ModuleDefinition]


class ModulesByTenantResponse(BaseModel):
    tenant_id: UUID
    modules: List[str]


class ModulePlanRequest(BaseModel):
    """Ask for a plan. tenant_id is honoured for platform admins only; others get their own tenant."""

    module_key: str
    tenant_id: Optional[UUID] = None


class ModuleActivateRequest(BaseModel):
    tenant_id: UUID
    module_key: str
    auto_enable_dependencies: bool = True
    # Activate as a trial that lapses after this many days
    trial_days: Optional[int] = Field(None, ge=1, le=365)


class ModuleDeactivateRequest(BaseModel):
    tenant_id: UUID
    module_key: str
    # Proceed even when dependent modules would be disabled too
    force: bool = False


class ModuleActivationResponse(BaseModel):
    activated: List[str]
    plan: ActivationPlan


class ModuleDeactivationResponse(BaseModel):
    deactivated: List[str]
    plan: DeactivationPlan


class ModuleUpdate(BaseModel):
    """Payload to update catalog metadata of a module. Platform Admin only."""

    module_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ModuleCategory] = None
    dependencies: Optional[List[ModuleDependency]] = None
    conflicts_with: Optional[List[str]] = None
    compatible_verticals: Optional[List[str]] = None
    price_monthly: Optional[Decimal] = Field(None, ge=0)
    is_premium: Optional[bool] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


class ModuleUsage(BaseModel):
    count: int
    organizations: List[str]


class ModuleUsageStatsResponse(BaseModel):
    modules: Dict[str, ModuleUsage]


class TenantModuleIssue(BaseModel):
    module: str
    issue: str
    # error | warning
    severity: str


class TenantModulesValidationResponse(BaseModel):
    tenant_id: UUID
    valid: bool
    issues: List[TenantModuleIssue]


class CatalogIntegrityResponse(BaseModel):
    """Required-edge cycles and dangling dependency keys found in the catalog."""

    valid: bool
    cycles: List[List[str]]
    missing_dependencies: List[List[str]]
    checked_at: datetime
