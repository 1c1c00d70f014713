from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import is_platform_admin, require_platform_admin
from app.auth.schemas import CurrentUser
from app.core.enums import OrganizationType
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    ActivationPlan,
    CatalogIntegrityResponse,
    DeactivationPlan,
    ModuleActivateRequest,
    ModuleActivationResponse,
    ModuleDeactivateRequest,
    ModuleDeactivationResponse,
    ModuleDefinition,
    ModuleDetailsResponse,
    ModuleInfo,
    ModulePlanRequest,
    ModulesByTenantResponse,
    ModuleUpdate,
    ModuleUsageStatsResponse,
    TenantModulesValidationResponse,
)
from .service import (
    activate_module_for_tenant,
    check_catalog_integrity,
    deactivate_module_for_tenant,
    get_module_activation_plan,
    get_module_deactivation_plan,
    get_module_details,
    get_module_usage_stats,
    get_tenant_active_modules,
    list_modules,
    list_modules_for_vertical,
    update_module_metadata,
    validate_tenant_modules,
)

router = APIRouter(prefix="/api/v1/modules", tags=["modules"])


def _plan_tenant_id(payload: ModulePlanRequest, current_user: CurrentUser) -> UUID:
    """Platform admins may plan for any tenant; everyone else plans for their own."""
    if payload.tenant_id and is_platform_admin(current_user):
        return payload.tenant_id
    return current_user.tenant_id


@router.get("", response_model=List[ModuleInfo])
async def get_catalog(
    db: AsyncSession = Depends(get_db),
) -> List[ModuleInfo]:
    """Full module catalog in display order. No authentication required."""
    return await list_modules(db)


@router.get("/by-vertical", response_model=List[ModuleDefinition])
async def get_modules_for_vertical(
    vertical: OrganizationType = Query(..., description="Organization type, e.g. Agency"),
    db: AsyncSession = Depends(get_db),
) -> List[ModuleDefinition]:
    """Modules offered to a vertical. No authentication required."""
    try:
        return await list_modules_for_vertical(db, vertical.value)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/by-tenant", response_model=ModulesByTenantResponse)
async def get_modules_by_tenant(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ModulesByTenantResponse:
    """Modules active for the current user's tenant. Uses tenant_id from auth token."""
    try:
        modules = await get_tenant_active_modules(db, current_user.tenant_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ModulesByTenantResponse(tenant_id=current_user.tenant_id, modules=sorted(modules))


@router.get(
    "/integrity",
    response_model=CatalogIntegrityResponse,
    dependencies=[Depends(require_platform_admin)],
)
async def get_catalog_integrity(
    db: AsyncSession = Depends(get_db),
) -> CatalogIntegrityResponse:
    """Report required-dependency cycles and dangling dependency keys. Platform Admin only."""
    try:
        return await check_catalog_integrity(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/usage-stats",
    response_model=ModuleUsageStatsResponse,
    dependencies=[Depends(require_platform_admin)],
)
async def get_usage_stats(
    db: AsyncSession = Depends(get_db),
) -> ModuleUsageStatsResponse:
    """Per-module count of tenants with the module active. Platform Admin only."""
    return await get_module_usage_stats(db)


@router.get(
    "/tenants/{tenant_id}/validation",
    response_model=TenantModulesValidationResponse,
    dependencies=[Depends(require_platform_admin)],
)
async def get_tenant_modules_validation(
    tenant_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> TenantModulesValidationResponse:
    """Re-validate every active module of a tenant. Platform Admin only."""
    try:
        return await validate_tenant_modules(db, tenant_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/activation-plan", response_model=ActivationPlan)
async def post_activation_plan(
    payload: ModulePlanRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ActivationPlan:
    """Preview what activating a module switches on and costs. Nothing is persisted."""
    try:
        return await get_module_activation_plan(db, _plan_tenant_id(payload, current_user), payload.module_key)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/deactivation-plan", response_model=DeactivationPlan)
async def post_deactivation_plan(
    payload: ModulePlanRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> DeactivationPlan:
    """Preview what deactivating a module switches off. Nothing is persisted."""
    try:
        return await get_module_deactivation_plan(db, _plan_tenant_id(payload, current_user), payload.module_key)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/activate", response_model=ModuleActivationResponse)
async def activate_module(
    payload: ModuleActivateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> ModuleActivationResponse:
    """Activate a module for a tenant, with its required dependencies. Platform Admin only."""
    try:
        return await activate_module_for_tenant(db, payload, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/deactivate", response_model=ModuleDeactivationResponse)
async def deactivate_module(
    payload: ModuleDeactivateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> ModuleDeactivationResponse:
    """Deactivate a module for a tenant. Cascading to dependents needs force=true. Platform Admin only."""
    try:
        return await deactivate_module_for_tenant(db, payload, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{module_key}", response_model=ModuleDetailsResponse)
async def get_module(
    module_key: str,
    db: AsyncSession = Depends(get_db),
) -> ModuleDetailsResponse:
    """A module with its required, recommended and conflicting modules. No authentication required."""
    try:
        return await get_module_details(db, module_key)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/{module_key}",
    response_model=ModuleInfo,
    dependencies=[Depends(require_platform_admin)],
)
async def patch_module(
    module_key: str,
    payload: ModuleUpdate,
    db: AsyncSession = Depends(get_db),
) -> ModuleInfo:
    """Update catalog metadata of a module. Platform Admin only."""
    try:
        return await update_module_metadata(db, module_key, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
