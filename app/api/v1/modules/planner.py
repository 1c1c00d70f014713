"""
Activation and deactivation plans for a tenant's modules.

A plan is computed from the catalog and the tenant's current active set only; nothing
is persisted here. Catalog failures are folded into the returned plan so callers never
have to handle exceptions from this layer.
"""

import logging
from decimal import Decimal
from typing import Collection, Optional

from app.core.enums import ValidationErrorType
from app.core.exceptions import CatalogUnavailable

from .catalog import MemoizedCatalog, ModuleCatalog
from .resolver import auto_resolve_dependencies, get_orphaned_modules
from .schemas import ActivationPlan, DeactivationPlan
from .validator import MODULE_NOT_FOUND, validate_activation, validate_in_memory

logger = logging.getLogger(__name__)

CANNOT_ACTIVATE = "Cannot activate module"
CORE_MODULE_PROTECTED = "Cannot disable core module"


def _rejected_activation(module_key: str, reason: str) -> ActivationPlan:
    return ActivationPlan(
        target_module=module_key,
        modules_to_enable=[],
        warnings=[reason],
        total_cost=Decimal("0"),
        valid=False,
    )


def _rejected_deactivation(module_key: str, reason: str) -> DeactivationPlan:
    return DeactivationPlan(
        target_module=module_key,
        modules_to_disable=[],
        warnings=[reason],
        allowed=False,
    )


async def create_activation_plan(
    catalog: ModuleCatalog,
    module_key: str,
    organization_id: Optional[object],
    current_active_modules: Collection[str],
    organization_vertical: Optional[str] = None,
) -> ActivationPlan:
    """
    1. Validate the target; an invalid target yields an empty plan with the reason as warning.
    2. Resolve required dependencies not yet active.
    3. Re-validate each dependency on its own against the same active set and vertical.
    4. Price only the modules that are not active yet.
    """
    catalog = MemoizedCatalog(catalog)
    current_active_modules = list(current_active_modules)
    active_keys = set(current_active_modules)

    validation = await validate_activation(
        catalog, module_key, organization_id, current_active_modules, organization_vertical
    )
    if not validation.valid:
        return _rejected_activation(module_key, validation.error or CANNOT_ACTIVATE)

    try:
        dependencies = await auto_resolve_dependencies(
            catalog, module_key, organization_id, current_active_modules
        )
        active_definitions = await catalog.get_modules_by_keys(current_active_modules)
        dependency_definitions = {m.key: m for m in await catalog.get_modules_by_keys(dependencies)}

        modules_to_enable = [module_key] + dependencies
        priced = await catalog.get_modules_by_keys(k for k in modules_to_enable if k not in active_keys)
    except CatalogUnavailable as e:
        logger.error(
            "Activation plan for %s failed: %s", module_key, e.message,
            extra={"tenant_id": organization_id, "module_key": module_key},
        )
        return _rejected_activation(module_key, e.message)

    warnings = []
    valid = True
    if dependencies:
        warnings.append(
            f"Will automatically enable {len(dependencies)} required dependencies: {', '.join(dependencies)}"
        )

    for dep in dependencies:
        definition = dependency_definitions.get(dep)
        if definition is None:
            warnings.append(f'Dependency "{dep}": {MODULE_NOT_FOUND}')
            valid = False
            continue
        result = validate_in_memory(definition, active_keys, active_definitions, organization_vertical)
        if result.type == ValidationErrorType.MODULE_CONFLICT:
            warnings.append(f'Dependency "{dep}" conflicts with: {", ".join(result.conflicts)}')
            valid = False
        elif not result.valid:
            warnings.append(f'Dependency "{dep}": {result.error}')
            valid = False

    total_cost = sum((m.price_monthly for m in priced), Decimal("0"))

    logger.info(
        "Activation plan for %s: %d module(s), cost %s, valid=%s",
        module_key, len(modules_to_enable), total_cost, valid,
        extra={"tenant_id": organization_id, "module_key": module_key, "total_cost": total_cost},
    )
    return ActivationPlan(
        target_module=module_key,
        modules_to_enable=modules_to_enable,
        warnings=warnings,
        total_cost=total_cost,
        valid=valid,
    )


async def create_deactivation_plan(
    catalog: ModuleCatalog,
    module_key: str,
    current_active_modules: Collection[str],
) -> DeactivationPlan:
    """Core and unknown modules are refused before any orphan computation runs."""
    catalog = MemoizedCatalog(catalog)

    try:
        module = await catalog.get_module(module_key)
        if module is None:
            return _rejected_deactivation(module_key, MODULE_NOT_FOUND)
        if module.is_core:
            logger.info("Refused to disable core module %s", module_key, extra={"module_key": module_key})
            return _rejected_deactivation(module_key, CORE_MODULE_PROTECTED)

        orphans = await get_orphaned_modules(catalog, module_key, current_active_modules)
    except CatalogUnavailable as e:
        logger.error("Deactivation plan for %s failed: %s", module_key, e.message, extra={"module_key": module_key})
        return _rejected_deactivation(module_key, e.message)

    warnings = []
    if orphans:
        warnings.append(
            f"Disabling this module will also disable {len(orphans)} dependent modules: {', '.join(orphans)}"
        )

    logger.info(
        "Deactivation plan for %s: %d cascaded module(s)", module_key, len(orphans),
        extra={"module_key": module_key},
    )
    return DeactivationPlan(
        target_module=module_key,
        modules_to_disable=[module_key] + orphans,
        warnings=warnings,
        allowed=True,
    )
