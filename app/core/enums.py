from enum import Enum


class OrganizationType(str, Enum):
    """Tenant vertical. Matched against Module.compatible_verticals."""

    AGENCY = "Agency"
    STUDIO = "Studio"
    CONSULTANCY = "Consultancy"
    FREELANCER = "Freelancer"
    OTHER = "Other"


class DependencyKind(str, Enum):
    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class ModuleCategory(str, Enum):
    CORE = "core"
    VERTICAL_SPECIFIC = "vertical_specific"
    ADD_ON = "add_on"
    PREMIUM = "premium"


class ValidationErrorType(str, Enum):
    NOT_FOUND = "not_found"
    INCOMPATIBLE_VERTICAL = "incompatible_vertical"
    MODULE_CONFLICT = "module_conflict"
    CATALOG_UNAVAILABLE = "catalog_unavailable"


class ModuleAuditAction(str, Enum):
    ACTIVATED = "ACTIVATED"
    DEACTIVATED = "DEACTIVATED"
