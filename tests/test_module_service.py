from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.modules.schemas import (
    ModuleActivateRequest,
    ModuleDeactivateRequest,
    ModuleDependency,
    ModuleUpdate,
)
from app.api.v1.modules.service import (
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
from app.core.exceptions import CatalogUnavailable, ServiceError
from app.core.models import Module, ModuleAuditLog, Tenant, TenantModule


async def _add_row(db: AsyncSession, tenant: Tenant, key: str, is_active: bool = True, expires_at=None) -> None:
    db.add(TenantModule(tenant_id=tenant.id, module_key=key, is_active=is_active, expires_at=expires_at))
    await db.commit()


# --- Tenant active set ---


@pytest.mark.asyncio
async def test_core_modules_are_always_active(db_session: AsyncSession, tenant: Tenant) -> None:
    assert await get_tenant_active_modules(db_session, tenant.id) == {"core"}


@pytest.mark.asyncio
async def test_subscription_plan_modules_are_active(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    assert await get_tenant_active_modules(db_session, tenant.id) == {"core", "crm"}


@pytest.mark.asyncio
async def test_inactive_row_overrides_plan(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    await _add_row(db_session, tenant, "crm", is_active=False)

    assert await get_tenant_active_modules(db_session, tenant.id) == {"core"}


@pytest.mark.asyncio
async def test_inactive_row_never_removes_core(db_session: AsyncSession, tenant: Tenant) -> None:
    await _add_row(db_session, tenant, "core", is_active=False)

    assert await get_tenant_active_modules(db_session, tenant.id) == {"core"}


@pytest.mark.asyncio
async def test_expired_trial_is_not_active(db_session: AsyncSession, tenant: Tenant) -> None:
    now = datetime.now(timezone.utc)
    await _add_row(db_session, tenant, "crm", expires_at=now + timedelta(days=3))
    await _add_row(db_session, tenant, "modern_ui", expires_at=now - timedelta(days=1))

    assert await get_tenant_active_modules(db_session, tenant.id) == {"core", "crm"}


@pytest.mark.asyncio
async def test_unknown_tenant_is_404(db_session: AsyncSession, catalog) -> None:
    from uuid import uuid4

    with pytest.raises(ServiceError) as exc_info:
        await get_tenant_active_modules(db_session, uuid4())
    assert exc_info.value.status_code == 404


# --- Plans over stored state ---


@pytest.mark.asyncio
async def test_activation_plan_uses_tenant_active_set(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    plan = await get_module_activation_plan(db_session, tenant.id, "analytics")

    assert plan.valid is True
    assert plan.modules_to_enable == ["analytics"]
    assert plan.total_cost == Decimal("49")


@pytest.mark.asyncio
async def test_deactivation_plan_uses_tenant_active_set(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    await _add_row(db_session, tenant, "analytics")
    plan = await get_module_deactivation_plan(db_session, tenant.id, "crm")

    assert plan.allowed is True
    assert plan.modules_to_disable == ["crm", "analytics"]


@pytest.mark.asyncio
async def test_retired_module_is_invisible_to_plans(db_session: AsyncSession, tenant: Tenant, catalog) -> None:
    catalog["modern_ui"].is_active = False
    await db_session.commit()

    plan = await get_module_activation_plan(db_session, tenant.id, "modern_ui")

    assert plan.valid is False
    assert plan.warnings == ["Module not found"]


# --- Plan execution ---


@pytest.mark.asyncio
async def test_activate_persists_target_and_dependencies(db_session: AsyncSession, tenant: Tenant) -> None:
    response = await activate_module_for_tenant(
        db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="analytics")
    )

    assert response.activated == ["analytics", "crm"]
    assert response.plan.total_cost == Decimal("78")
    assert await get_tenant_active_modules(db_session, tenant.id) == {"core", "crm", "analytics"}

    audit = (await db_session.execute(select(ModuleAuditLog).where(ModuleAuditLog.tenant_id == tenant.id))).scalars().all()
    assert sorted(a.module_key for a in audit) == ["analytics", "crm"]
    assert {a.action for a in audit} == {"ACTIVATED"}
    assert {a.target_module for a in audit} == {"analytics"}


@pytest.mark.asyncio
async def test_activate_as_trial_sets_expiry(db_session: AsyncSession, tenant: Tenant) -> None:
    await activate_module_for_tenant(
        db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm", trial_days=14)
    )

    row = (
        await db_session.execute(
            select(TenantModule).where(TenantModule.tenant_id == tenant.id, TenantModule.module_key == "crm")
        )
    ).scalar_one()
    assert row.is_active is True
    assert row.is_trial is True
    assert row.expires_at is not None


@pytest.mark.asyncio
async def test_activate_without_auto_dependencies_requires_them_active(
    db_session: AsyncSession, tenant: Tenant
) -> None:
    with pytest.raises(ServiceError) as exc_info:
        await activate_module_for_tenant(
            db_session,
            ModuleActivateRequest(tenant_id=tenant.id, module_key="analytics", auto_enable_dependencies=False),
        )
    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Required dependencies are not active: crm"
    assert await get_tenant_active_modules(db_session, tenant.id) == {"core"}


@pytest.mark.asyncio
async def test_activate_conflicting_module_is_refused(db_session: AsyncSession, tenant: Tenant) -> None:
    await activate_module_for_tenant(db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="legacy_ui"))

    with pytest.raises(ServiceError) as exc_info:
        await activate_module_for_tenant(
            db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="modern_ui")
        )
    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Conflict with legacy_ui"


@pytest.mark.asyncio
async def test_activate_unknown_module_is_404(db_session: AsyncSession, tenant: Tenant) -> None:
    with pytest.raises(ServiceError) as exc_info:
        await activate_module_for_tenant(db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="ghost"))
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_deactivate_with_dependents_needs_force(db_session: AsyncSession, tenant: Tenant) -> None:
    await activate_module_for_tenant(db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="analytics"))

    with pytest.raises(ServiceError) as exc_info:
        await deactivate_module_for_tenant(db_session, ModuleDeactivateRequest(tenant_id=tenant.id, module_key="crm"))
    assert exc_info.value.status_code == 409
    assert "analytics" in exc_info.value.message

    response = await deactivate_module_for_tenant(
        db_session, ModuleDeactivateRequest(tenant_id=tenant.id, module_key="crm", force=True)
    )
    assert response.deactivated == ["crm", "analytics"]
    assert await get_tenant_active_modules(db_session, tenant.id) == {"core"}

    audit = (
        await db_session.execute(
            select(ModuleAuditLog).where(ModuleAuditLog.action == "DEACTIVATED", ModuleAuditLog.module_key == "analytics")
        )
    ).scalar_one()
    assert audit.remarks == "cascaded from crm"


@pytest.mark.asyncio
async def test_deactivate_plan_module_writes_override(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    await deactivate_module_for_tenant(db_session, ModuleDeactivateRequest(tenant_id=tenant.id, module_key="crm"))

    assert await get_tenant_active_modules(db_session, tenant.id) == {"core"}


@pytest.mark.asyncio
async def test_deactivate_core_module_is_forbidden(db_session: AsyncSession, tenant: Tenant) -> None:
    with pytest.raises(ServiceError) as exc_info:
        await deactivate_module_for_tenant(
            db_session, ModuleDeactivateRequest(tenant_id=tenant.id, module_key="core", force=True)
        )
    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Cannot disable core module"


# --- Catalog administration ---


@pytest.mark.asyncio
async def test_list_modules_in_display_order(db_session: AsyncSession, catalog) -> None:
    modules = await list_modules(db_session)

    assert [m.module_key for m in modules] == ["core", "crm", "analytics", "legacy_ui", "modern_ui"]
    assert modules[1].dependencies[0].module_key == "core"


@pytest.mark.asyncio
async def test_list_modules_for_vertical(db_session: AsyncSession, catalog) -> None:
    catalog["analytics"].compatible_verticals = ["Studio"]
    await db_session.commit()

    agency = await list_modules_for_vertical(db_session, "Agency")
    studio = await list_modules_for_vertical(db_session, "Studio")

    assert "analytics" not in [m.key for m in agency]
    assert "analytics" in [m.key for m in studio]


@pytest.mark.asyncio
async def test_module_details_resolve_neighbours(db_session: AsyncSession, catalog) -> None:
    details = await get_module_details(db_session, "modern_ui")

    assert details.module.key == "modern_ui"
    assert [m.key for m in details.required_dependencies] == ["core"]
    assert [m.key for m in details.conflicts] == ["legacy_ui"]
    assert details.recommended_dependencies == []

    with pytest.raises(ServiceError) as exc_info:
        await get_module_details(db_session, "ghost")
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_update_metadata_changes_price_and_conflicts(db_session: AsyncSession, catalog) -> None:
    info = await update_module_metadata(
        db_session,
        "crm",
        ModuleUpdate(price_monthly=Decimal("35"), conflicts_with=["crm", "legacy_ui"]),
    )

    assert info.price_monthly == Decimal("35")
    assert info.conflicts_with == ["legacy_ui"]


@pytest.mark.asyncio
async def test_update_metadata_rejects_dependency_cycle(db_session: AsyncSession, catalog) -> None:
    with pytest.raises(ServiceError) as exc_info:
        await update_module_metadata(
            db_session, "core", ModuleUpdate(dependencies=[ModuleDependency(module_key="analytics")])
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.message.startswith("Required dependency cycle:")
    assert "core" in exc_info.value.message


@pytest.mark.asyncio
async def test_update_metadata_rejects_unknown_and_self_dependencies(db_session: AsyncSession, catalog) -> None:
    with pytest.raises(ServiceError) as exc_info:
        await update_module_metadata(db_session, "crm", ModuleUpdate(dependencies=[ModuleDependency(module_key="ghost")]))
    assert exc_info.value.status_code == 400
    assert "ghost" in exc_info.value.message

    with pytest.raises(ServiceError) as exc_info:
        await update_module_metadata(db_session, "crm", ModuleUpdate(dependencies=[ModuleDependency(module_key="crm")]))
    assert exc_info.value.message == "A module cannot depend on itself"


@pytest.mark.asyncio
async def test_update_metadata_accepts_recommended_edge_back(db_session: AsyncSession, catalog) -> None:
    info = await update_module_metadata(
        db_session,
        "core",
        ModuleUpdate(dependencies=[ModuleDependency(module_key="analytics", type="recommended")]),
    )

    assert info.dependencies[0].type == "recommended"


@pytest.mark.asyncio
async def test_catalog_integrity_reports_missing_dependencies(db_session: AsyncSession, catalog) -> None:
    report = await check_catalog_integrity(db_session)
    assert report.valid is True

    db_session.add(
        Module(
            module_key="reports",
            module_name="Reports",
            dependencies=[{"module_key": "ghost", "type": "required"}],
            display_order=99,
        )
    )
    await db_session.commit()

    report = await check_catalog_integrity(db_session)
    assert report.valid is False
    assert report.missing_dependencies == [["reports", "ghost"]]
    assert report.cycles == []


@pytest.mark.asyncio
async def test_catalog_integrity_reports_cycles(db_session: AsyncSession, catalog) -> None:
    catalog["core"].dependencies = [{"module_key": "crm", "type": "required"}]
    await db_session.commit()

    report = await check_catalog_integrity(db_session)

    assert report.valid is False
    assert report.cycles == [["core", "crm", "core"]]


@pytest.mark.asyncio
async def test_usage_stats_count_tenants(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    stats = await get_module_usage_stats(db_session)

    assert stats.modules["crm"].count == 1
    assert stats.modules["crm"].organizations == ["Acme Agency"]
    assert "analytics" not in stats.modules


@pytest.mark.asyncio
async def test_validate_tenant_modules_flags_conflicts_and_missing_dependencies(
    db_session: AsyncSession, tenant: Tenant
) -> None:
    await _add_row(db_session, tenant, "analytics")
    await _add_row(db_session, tenant, "legacy_ui")
    await _add_row(db_session, tenant, "modern_ui")

    report = await validate_tenant_modules(db_session, tenant.id)

    assert report.valid is False
    issues = {(i.module, i.issue) for i in report.issues}
    assert ("analytics", "Missing required dependencies: crm") in issues
    assert ("legacy_ui", "Conflict with modern_ui") in issues
    assert ("modern_ui", "Conflict with legacy_ui") in issues


@pytest.mark.asyncio
async def test_validate_tenant_modules_clean_tenant(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    report = await validate_tenant_modules(db_session, tenant.id)

    assert report.valid is True
    assert report.issues == []


@pytest.mark.asyncio
async def test_reactivating_permanent_module_as_trial_keeps_it_permanent(
    db_session: AsyncSession, tenant: Tenant
) -> None:
    await activate_module_for_tenant(db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm"))
    await activate_module_for_tenant(
        db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm", trial_days=1)
    )

    row = (
        await db_session.execute(
            select(TenantModule).where(TenantModule.tenant_id == tenant.id, TenantModule.module_key == "crm")
        )
    ).scalar_one()
    assert row.is_active is True
    assert row.is_trial is False
    assert row.expires_at is None


@pytest.mark.asyncio
async def test_reactivating_trial_without_trial_days_makes_it_permanent(db_session: AsyncSession, tenant: Tenant) -> None:
    await activate_module_for_tenant(
        db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm", trial_days=7)
    )
    await activate_module_for_tenant(db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm"))

    row = (
        await db_session.execute(
            select(TenantModule).where(TenantModule.tenant_id == tenant.id, TenantModule.module_key == "crm")
        )
    ).scalar_one()
    assert row.is_trial is False
    assert row.expires_at is None


@pytest.mark.asyncio
async def test_plan_module_is_not_written_again(db_session: AsyncSession, tenant: Tenant, starter_plan) -> None:
    response = await activate_module_for_tenant(
        db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm", trial_days=3)
    )

    assert response.activated == ["crm"]
    rows = (await db_session.execute(select(TenantModule).where(TenantModule.tenant_id == tenant.id))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_activation_plan_rejects_module_of_other_vertical(db_session: AsyncSession, tenant: Tenant, catalog) -> None:
    catalog["crm"].compatible_verticals = ["Studio"]
    await db_session.commit()

    plan = await get_module_activation_plan(db_session, tenant.id, "crm")
    assert plan.valid is False
    assert plan.warnings == ["Not available for Agency organizations"]

    plan = await get_module_activation_plan(db_session, tenant.id, "analytics")
    assert plan.valid is False
    assert plan.modules_to_enable == ["analytics", "crm"]
    assert 'Dependency "crm": Not available for Agency organizations' in plan.warnings

    with pytest.raises(ServiceError) as exc_info:
        await activate_module_for_tenant(db_session, ModuleActivateRequest(tenant_id=tenant.id, module_key="crm"))
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_validate_tenant_modules_flags_other_vertical(db_session: AsyncSession, tenant: Tenant, catalog) -> None:
    await _add_row(db_session, tenant, "crm")
    catalog["crm"].compatible_verticals = ["Studio"]
    await db_session.commit()

    report = await validate_tenant_modules(db_session, tenant.id)

    assert report.valid is False
    assert ("crm", "Not available for Agency organizations") in {(i.module, i.issue) for i in report.issues}


@pytest.mark.asyncio
async def test_storage_failure_reading_tenant_modules_is_503(
    db_session: AsyncSession, tenant: Tenant, monkeypatch
) -> None:
    async def failing_execute(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(db_session, "execute", failing_execute)

    with pytest.raises(CatalogUnavailable) as exc_info:
        await get_tenant_active_modules(db_session, tenant.id)
    assert exc_info.value.status_code == 503
    assert exc_info.value.message.startswith("Module state unavailable:")
