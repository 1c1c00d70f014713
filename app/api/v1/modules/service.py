"""Tenant module state, plan execution, and catalog administration."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import DependencyKind, ModuleAuditAction
from app.core.exceptions import CatalogUnavailable, ServiceError
from app.core.models import Module, ModuleAuditLog, SubscriptionPlan, Tenant, TenantModule

from .catalog import MemoizedCatalog, SqlModuleCatalog, module_to_definition
from .planner import CORE_MODULE_PROTECTED, create_activation_plan, create_deactivation_plan
from .resolver import find_dependency_cycles, find_missing_dependencies
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
    ModuleUpdate,
    ModuleUsage,
    ModuleUsageStatsResponse,
    TenantModuleIssue,
    TenantModulesValidationResponse,
)
from .validator import MODULE_NOT_FOUND, validate_activation

logger = logging.getLogger(__name__)


def _build_module_info(module: Module) -> ModuleInfo:
    """Helper to build ModuleInfo from Module model."""
    definition = module_to_definition(module)
    return ModuleInfo(
        id=module.id,
        module_key=module.module_key,
        module_name=module.module_name,
        description=module.description,
        category=definition.category.value,
        dependencies=definition.dependencies,
        conflicts_with=definition.conflicts_with,
        compatible_verticals=definition.compatible_verticals,
        price_monthly=definition.price_monthly,
        is_core=module.is_core,
        is_premium=module.is_premium,
        is_active=module.is_active,
        display_order=module.display_order or 0,
    )


def _is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    if expires_at is None:
        return False
    # sqlite hands back naive datetimes; stored values are UTC
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


async def _get_tenant(db: AsyncSession, tenant_id: UUID) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if not tenant:
        raise ServiceError(f"Tenant not found: {tenant_id}", status_code=status.HTTP_404_NOT_FOUND)
    return tenant


# --- Tenant active set ---


async def get_tenant_active_modules(db: AsyncSession, tenant_id: UUID) -> Set[str]:
    """
    Active module keys for a tenant:
    core catalog modules, plus modules included by the tenant's subscription plan,
    plus tenant module rows that are active and not past expires_at.
    An inactive tenant module row removes a plan-included module; core modules always stay.
    Storage failures raise CatalogUnavailable.
    """
    try:
        return await _collect_active_modules(db, await _get_tenant(db, tenant_id))
    except SQLAlchemyError as e:
        logger.error("Reading modules of tenant %s failed: %s", tenant_id, e, extra={"tenant_id": tenant_id})
        raise CatalogUnavailable(f"Module state unavailable: {e}") from e


async def _collect_active_modules(db: AsyncSession, tenant: Tenant) -> Set[str]:
    core_result = await db.execute(
        select(Module.module_key).where(Module.is_core == True, Module.is_active == True)  # noqa: E712
    )
    core_keys = {row[0] for row in core_result.all()}

    active: Set[str] = set(core_keys)
    if tenant.subscription_plan_id:
        plan = await db.get(SubscriptionPlan, tenant.subscription_plan_id)
        if plan:
            active.update(plan.modules_include or [])

    rows_result = await db.execute(select(TenantModule).where(TenantModule.tenant_id == tenant.id))
    now = datetime.now(timezone.utc)
    for row in rows_result.scalars().all():
        if not row.is_active:
            if row.module_key not in core_keys:
                active.discard(row.module_key)
        elif not _is_expired(row.expires_at, now):
            active.add(row.module_key)

    return active


# --- Plans ---


async def get_module_activation_plan(db: AsyncSession, tenant_id: UUID, module_key: str) -> ActivationPlan:
    current = await get_tenant_active_modules(db, tenant_id)
    # Already in the identity map after the read above
    tenant = await _get_tenant(db, tenant_id)
    return await create_activation_plan(
        SqlModuleCatalog(db), module_key, tenant_id, sorted(current), tenant.organization_type
    )


async def get_module_deactivation_plan(db: AsyncSession, tenant_id: UUID, module_key: str) -> DeactivationPlan:
    current = await get_tenant_active_modules(db, tenant_id)
    return await create_deactivation_plan(SqlModuleCatalog(db), module_key, sorted(current))


# --- Plan execution ---


async def _tenant_module_rows(db: AsyncSession, tenant_id: UUID, keys: List[str]) -> Dict[str, TenantModule]:
    result = await db.execute(
        select(TenantModule).where(
            TenantModule.tenant_id == tenant_id,
            TenantModule.module_key.in_(keys),
        )
    )
    return {row.module_key: row for row in result.scalars().all()}


def _log_module_audit(
    db: AsyncSession,
    tenant_id: UUID,
    module_key: str,
    action: ModuleAuditAction,
    target_module: str,
    performed_by: Optional[CurrentUser],
    remarks: Optional[str] = None,
) -> None:
    """Append one audit row. Caller must commit."""
    db.add(
        ModuleAuditLog(
            tenant_id=tenant_id,
            module_key=module_key,
            action=action.value,
            target_module=target_module,
            performed_by=performed_by.id if performed_by else None,
            performed_by_role=performed_by.role if performed_by else None,
            remarks=remarks,
            timestamp=datetime.utcnow(),
        )
    )


async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to persist %s: %s", what, e)
        raise ServiceError(f"Failed to persist {what}", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def activate_module_for_tenant(
    db: AsyncSession,
    payload: ModuleActivateRequest,
    performed_by: Optional[CurrentUser] = None,
) -> ModuleActivationResponse:
    """Compute the activation plan and persist it. Refuses invalid plans.

    Modules that are already permanently active are left untouched; an active trial is
    converted to permanent, or restarted when trial_days is given.

    With auto_enable_dependencies off, only the target is written, and only if it needs nothing else.
    """
    current = await get_tenant_active_modules(db, payload.tenant_id)
    tenant = await _get_tenant(db, payload.tenant_id)
    plan = await create_activation_plan(
        SqlModuleCatalog(db), payload.module_key, tenant.id, sorted(current), tenant.organization_type
    )

    if not plan.valid:
        reason = plan.warnings[-1] if plan.warnings else "Cannot activate module"
        code = status.HTTP_404_NOT_FOUND if reason == MODULE_NOT_FOUND else status.HTTP_409_CONFLICT
        raise ServiceError(reason, status_code=code)

    if payload.auto_enable_dependencies:
        to_activate = plan.modules_to_enable
    else:
        missing = [k for k in plan.modules_to_enable if k != payload.module_key]
        if missing:
            raise ServiceError(
                f"Required dependencies are not active: {', '.join(missing)}",
                status_code=status.HTTP_409_CONFLICT,
            )
        to_activate = [payload.module_key]

    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(days=payload.trial_days) if payload.trial_days else None
    rows = await _tenant_module_rows(db, tenant.id, to_activate)
    for key in to_activate:
        row = rows.get(key)
        if key in current and (row is None or not row.is_trial):
            # Core, plan-included and paid modules keep their permanent state
            continue
        if row is None:
            row = TenantModule(tenant_id=tenant.id, module_key=key)
            db.add(row)
        row.is_active = True
        row.is_trial = expires_at is not None
        row.expires_at = expires_at
        row.enabled_at = now
        if key not in current:
            _log_module_audit(
                db, tenant.id, key, ModuleAuditAction.ACTIVATED, payload.module_key, performed_by,
                remarks=f"trial until {expires_at.isoformat()}" if expires_at else None,
            )

    await _commit(db, "module activation")
    logger.info(
        "Activated %s for tenant %s (%d module(s), monthly cost %s)",
        payload.module_key, tenant.id, len(to_activate), plan.total_cost,
        extra={"tenant_id": tenant.id, "module_key": payload.module_key, "total_cost": plan.total_cost},
    )
    return ModuleActivationResponse(activated=to_activate, plan=plan)


async def deactivate_module_for_tenant(
    db: AsyncSession,
    payload: ModuleDeactivateRequest,
    performed_by: Optional[CurrentUser] = None,
) -> ModuleDeactivationResponse:
    """Compute the deactivation plan and persist it. Cascades need force=True."""
    tenant = await _get_tenant(db, payload.tenant_id)
    current = await get_tenant_active_modules(db, tenant.id)
    plan = await create_deactivation_plan(SqlModuleCatalog(db), payload.module_key, sorted(current))

    if not plan.allowed:
        reason = plan.warnings[0] if plan.warnings else "Cannot disable module"
        if reason == MODULE_NOT_FOUND:
            code = status.HTTP_404_NOT_FOUND
        elif reason == CORE_MODULE_PROTECTED:
            code = status.HTTP_403_FORBIDDEN
        else:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        raise ServiceError(reason, status_code=code)

    if not payload.force and len(plan.modules_to_disable) > 1:
        raise ServiceError(
            plan.warnings[0] if plan.warnings else "This will disable dependent modules",
            status_code=status.HTTP_409_CONFLICT,
        )

    rows = await _tenant_module_rows(db, tenant.id, plan.modules_to_disable)
    for key in plan.modules_to_disable:
        row = rows.get(key)
        if row is None:
            row = TenantModule(tenant_id=tenant.id, module_key=key)
            db.add(row)
        row.is_active = False
        row.is_trial = False
        row.expires_at = None
        if key in current:
            remarks = None if key == payload.module_key else f"cascaded from {payload.module_key}"
            _log_module_audit(
                db, tenant.id, key, ModuleAuditAction.DEACTIVATED, payload.module_key, performed_by, remarks
            )

    await _commit(db, "module deactivation")
    logger.info(
        "Deactivated %s for tenant %s (%d module(s))",
        payload.module_key, tenant.id, len(plan.modules_to_disable),
        extra={"tenant_id": tenant.id, "module_key": payload.module_key},
    )
    return ModuleDeactivationResponse(deactivated=plan.modules_to_disable, plan=plan)


# --- Catalog ---


async def list_modules(db: AsyncSession) -> List[ModuleInfo]:
    """All catalog modules (including retired ones) in display order."""
    result = await db.execute(select(Module).order_by(Module.display_order, Module.module_key))
    return [_build_module_info(m) for m in result.scalars().all()]


async def list_modules_for_vertical(db: AsyncSession, vertical: str) -> List[ModuleDefinition]:
    return await SqlModuleCatalog(db).list_compatible_modules(vertical)


async def get_module_details(db: AsyncSession, module_key: str) -> ModuleDetailsResponse:
    catalog = MemoizedCatalog(SqlModuleCatalog(db))
    module = await catalog.get_module(module_key)
    if module is None:
        raise ServiceError(f"Module not found: {module_key}", status_code=status.HTTP_404_NOT_FOUND)
    return ModuleDetailsResponse(
        module=module,
        required_dependencies=await catalog.get_modules_by_keys(module.keys_of(DependencyKind.REQUIRED)),
        recommended_dependencies=await catalog.get_modules_by_keys(module.keys_of(DependencyKind.RECOMMENDED)),
        conflicts=await catalog.get_modules_by_keys(module.conflicts_with),
    )


async def update_module_metadata(db: AsyncSession, module_key: str, payload: ModuleUpdate) -> ModuleInfo:
    """Update a catalog module. Rejects unknown dependency keys and new required-edge cycles."""
    result = await db.execute(select(Module).where(Module.module_key == module_key))
    module = result.scalar_one_or_none()
    if not module:
        raise ServiceError(f"Module not found: {module_key}", status_code=status.HTTP_404_NOT_FOUND)

    if payload.dependencies is not None:
        dep_keys = {d.module_key for d in payload.dependencies}
        if module_key in dep_keys:
            raise ServiceError("A module cannot depend on itself", status_code=status.HTTP_400_BAD_REQUEST)
        catalog = SqlModuleCatalog(db)
        all_modules = await catalog.list_modules()
        known = {m.key for m in all_modules}
        missing = dep_keys - known
        if missing:
            raise ServiceError(
                f"Module(s) not found or inactive: {sorted(missing)}",
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        candidate = module_to_definition(module).model_copy(update={"dependencies": payload.dependencies})
        graph = [m for m in all_modules if m.key != module_key] + [candidate]
        cycles = [c for c in find_dependency_cycles(graph) if module_key in c]
        if cycles:
            raise ServiceError(
                f"Required dependency cycle: {' -> '.join(cycles[0])}",
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        module.dependencies = [d.model_dump(mode="json") for d in payload.dependencies]

    if payload.module_name is not None:
        module.module_name = payload.module_name
    if payload.description is not None:
        module.description = payload.description
    if payload.category is not None:
        module.category = payload.category.value
    if payload.conflicts_with is not None:
        module.conflicts_with = [k for k in payload.conflicts_with if k != module_key]
    if payload.compatible_verticals is not None:
        module.compatible_verticals = payload.compatible_verticals
    if payload.price_monthly is not None:
        module.price_monthly = payload.price_monthly
    if payload.is_premium is not None:
        module.is_premium = payload.is_premium
    if payload.is_active is not None:
        module.is_active = payload.is_active
    if payload.display_order is not None:
        module.display_order = payload.display_order

    await _commit(db, "module update")
    await db.refresh(module)
    return _build_module_info(module)


async def get_module_usage_stats(db: AsyncSession) -> ModuleUsageStatsResponse:
    """How many tenants have each module active, and which."""
    result = await db.execute(select(Tenant).order_by(Tenant.organization_name))
    stats: Dict[str, ModuleUsage] = {}
    for tenant in result.scalars().all():
        for key in sorted(await get_tenant_active_modules(db, tenant.id)):
            usage = stats.setdefault(key, ModuleUsage(count=0, organizations=[]))
            usage.count += 1
            usage.organizations.append(tenant.organization_name)
    return ModuleUsageStatsResponse(modules=stats)


async def validate_tenant_modules(db: AsyncSession, tenant_id: UUID) -> TenantModulesValidationResponse:
    """Re-check a tenant's whole active set: conflicts, modules not offered to the tenant's vertical
    and missing required dependencies are errors, inactive recommended modules are warnings."""
    active = sorted(await get_tenant_active_modules(db, tenant_id))
    tenant = await _get_tenant(db, tenant_id)
    catalog = MemoizedCatalog(SqlModuleCatalog(db))
    issues: List[TenantModuleIssue] = []

    for key in active:
        others = [k for k in active if k != key]
        validation = await validate_activation(catalog, key, tenant_id, others, tenant.organization_type)
        if not validation.valid:
            issues.append(TenantModuleIssue(module=key, issue=validation.error or "Validation failed", severity="error"))
            continue
        module = await catalog.get_module(key)
        missing = [k for k in module.required_keys if k not in active]
        if missing:
            issues.append(
                TenantModuleIssue(
                    module=key,
                    issue=f"Missing required dependencies: {', '.join(missing)}",
                    severity="error",
                )
            )
        recommended = [k for k in module.keys_of(DependencyKind.RECOMMENDED) if k not in active]
        if recommended:
            issues.append(
                TenantModuleIssue(
                    module=key,
                    issue=f"Recommended modules not active: {', '.join(recommended)}",
                    severity="warning",
                )
            )

    return TenantModulesValidationResponse(
        tenant_id=tenant_id,
        valid=not any(i.severity == "error" for i in issues),
        issues=issues,
    )


async def check_catalog_integrity(db: AsyncSession) -> CatalogIntegrityResponse:
    modules = await SqlModuleCatalog(db).list_modules()
    cycles = find_dependency_cycles(modules)
    missing = find_missing_dependencies(modules)
    for cycle in cycles:
        logger.warning("Required dependency cycle in catalog: %s", " -> ".join(cycle))
    return CatalogIntegrityResponse(
        valid=not cycles and not missing,
        cycles=cycles,
        missing_dependencies=[list(pair) for pair in missing],
        checked_at=datetime.now(timezone.utc),
    )
