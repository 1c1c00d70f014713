"""
Conflict validation for module activation.

The candidate must be offered to the organization's vertical (when one is known),
and must not be mutually exclusive with an active module, whichever side declares
the exclusion. Dependencies of the candidate are validated separately by the plan builder.
"""

import logging
from typing import Collection, Iterable, Optional

from app.core.enums import ValidationErrorType
from app.core.exceptions import CatalogUnavailable

from .catalog import ModuleCatalog
from .schemas import ModuleDefinition, ValidationResult

logger = logging.getLogger(__name__)

MODULE_NOT_FOUND = "Module not found"


def conflict_message(conflicting_key: str) -> str:
    return f"Conflict with {conflicting_key}"


def incompatible_vertical_message(vertical: str) -> str:
    return f"Not available for {vertical} organizations"


def is_offered_to(module: ModuleDefinition, vertical: Optional[str]) -> bool:
    """No vertical means the organization's vertical is unknown; nothing is filtered then."""
    if not vertical:
        return True
    return "*" in module.compatible_verticals or vertical in module.compatible_verticals


def validate_in_memory(
    module: ModuleDefinition,
    active_keys: Collection[str],
    active_definitions: Iterable[ModuleDefinition],
    organization_vertical: Optional[str] = None,
) -> ValidationResult:
    """Check one module against an active set using already-fetched definitions."""
    if not is_offered_to(module, organization_vertical):
        return ValidationResult(
            valid=False,
            error=incompatible_vertical_message(organization_vertical),
            type=ValidationErrorType.INCOMPATIBLE_VERTICAL,
        )

    conflicts = [k for k in module.conflicts_with if k != module.key and k in active_keys]
    for other in active_definitions:
        if other.key == module.key or other.key in conflicts:
            continue
        if module.key in other.conflicts_with:
            conflicts.append(other.key)

    if conflicts:
        return ValidationResult(
            valid=False,
            error=conflict_message(conflicts[0]),
            type=ValidationErrorType.MODULE_CONFLICT,
            conflicts=conflicts,
        )
    return ValidationResult(valid=True)


async def validate_activation(
    catalog: ModuleCatalog,
    module_key: str,
    organization_id: Optional[object],
    current_active_modules: Collection[str],
    organization_vertical: Optional[str] = None,
) -> ValidationResult:
    """Decide whether module_key may be switched on next to current_active_modules.

    Catalog failures come back as an invalid result carrying the storage message.
    """
    try:
        module = await catalog.get_module(module_key)
        if module is None:
            return ValidationResult(
                valid=False,
                error=MODULE_NOT_FOUND,
                type=ValidationErrorType.NOT_FOUND,
            )
        active_keys = set(current_active_modules)
        active_definitions = await catalog.get_modules_by_keys(
            k for k in current_active_modules if k != module_key
        )
    except CatalogUnavailable as e:
        logger.error(
            "Validation of %s failed: %s", module_key, e.message,
            extra={"tenant_id": organization_id, "module_key": module_key},
        )
        return ValidationResult(
            valid=False,
            error=e.message,
            type=ValidationErrorType.CATALOG_UNAVAILABLE,
        )

    result = validate_in_memory(module, active_keys, active_definitions, organization_vertical)
    if not result.valid:
        logger.info(
            "Activation of %s rejected: %s", module_key, result.error,
            extra={"tenant_id": organization_id, "module_key": module_key},
        )
    return result
