"""
Seed script to populate core.modules and a starter subscription plan.

This script:
1. Inserts or updates every platform-defined module with its dependencies, conflicts and price
2. Creates the "Starter" plan for organization_type = "Agency" bundling the entry modules
3. Reports required-dependency cycles and dangling dependency keys in the seeded catalog
"""
import asyncio
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# Import all models to ensure SQLAlchemy can resolve relationships
from app.auth.models import User  # noqa: F401
from app.api.v1.modules.catalog import module_to_definition
from app.api.v1.modules.resolver import find_dependency_cycles, find_missing_dependencies
from app.core.models import Module, SubscriptionPlan  # noqa: F401
from app.db.session import AsyncSessionLocal


def _req(key: str, reason: str = "") -> Dict[str, str]:
    return {"module_key": key, "type": "required", "reason": reason}


def _rec(key: str, reason: str = "") -> Dict[str, str]:
    return {"module_key": key, "type": "recommended", "reason": reason}


# Module definitions, in display order
MODULES: List[Dict[str, Any]] = [
    dict(key="dashboard", name="Dashboard", category="core", is_core=True,
         description="Home dashboard and activity feed"),
    dict(key="clients", name="Clients", category="core", is_core=True,
         dependencies=[_req("dashboard")], description="Client directory and timeline"),
    dict(key="billing", name="Billing", category="core", is_core=True,
         dependencies=[_req("clients")], description="Payment methods and subscription billing"),
    dict(key="invoices", name="Invoices", category="add_on", price="19",
         dependencies=[_req("billing", "Invoices are settled through billing")],
         description="Invoice creation, templates and sharing"),
    dict(key="quotes", name="Quotes", category="add_on", price="19",
         dependencies=[_req("clients"), _rec("invoices", "Convert accepted quotes to invoices")],
         description="Quote editor and approval flow"),
    dict(key="briefings", name="Briefings", category="add_on", price="9",
         dependencies=[_req("clients")], description="Client briefing forms and wizard"),
    dict(key="crm", name="CRM", category="add_on", price="29",
         dependencies=[_req("clients")], description="Pipelines, deals and reports"),
    dict(key="email_templates", name="Email Templates", category="add_on", price="5",
         dependencies=[_req("crm")], description="Reusable email templates for CRM"),
    dict(key="analytics", name="Advanced Analytics", category="premium", price="49", is_premium=True,
         dependencies=[_req("crm")], description="Cross-client analytics"),
    dict(key="insights", name="Insights Dashboards", category="premium", price="39", is_premium=True,
         dependencies=[_req("analytics"), _rec("portal", "Share dashboards with clients")],
         description="Client-facing insights dashboards"),
    dict(key="portal", name="Client Portal", category="add_on", price="15",
         dependencies=[_req("clients"), _rec("invoices")], description="Token-based client portal"),
    dict(key="portfolio", name="Portfolio", category="vertical_specific", price="9",
         compatible_verticals=["Agency", "Studio", "Freelancer"], description="Public portfolio pages"),
    dict(key="hosting", name="Hosting Accounts", category="vertical_specific", price="25",
         compatible_verticals=["Agency", "Studio"], dependencies=[_req("clients")],
         description="Hosting accounts and renewals per client"),
    dict(key="whatsapp", name="WhatsApp Messaging", category="premium", price="35", is_premium=True,
         dependencies=[_req("clients")], description="WhatsApp sharing, flows and calling"),
    dict(key="legacy_ui", name="Legacy UI", category="add_on",
         dependencies=[_req("dashboard")], conflicts_with=["modern_ui"], description="Classic interface"),
    dict(key="modern_ui", name="Modern UI", category="add_on", price="10",
         dependencies=[_req("dashboard")], conflicts_with=["legacy_ui"], description="Redesigned interface"),
]

STARTER_PLAN = {
    "name": "Starter",
    "organization_type": "Agency",
    "modules_include": ["invoices", "quotes", "crm"],
    "price": "49",
    "description": "Entry bundle for agencies",
}


async def seed_modules(db: AsyncSession) -> None:
    """Seed all modules and the starter plan."""
    modules_created = 0
    modules_updated = 0

    for order, entry in enumerate(MODULES):
        values = {
            "module_name": entry["name"],
            "description": entry.get("description"),
            "category": entry.get("category", "add_on"),
            "dependencies": entry.get("dependencies", []),
            "conflicts_with": entry.get("conflicts_with", []),
            "compatible_verticals": entry.get("compatible_verticals", ["*"]),
            "price_monthly": Decimal(entry.get("price", "0")),
            "is_core": entry.get("is_core", False),
            "is_premium": entry.get("is_premium", False),
            "is_active": True,
            "display_order": order,
        }
        result = await db.execute(select(Module).where(Module.module_key == entry["key"]))
        existing_module = result.scalar_one_or_none()

        if existing_module:
            for field, value in values.items():
                setattr(existing_module, field, value)
            modules_updated += 1
        else:
            db.add(Module(module_key=entry["key"], **values))
            modules_created += 1

    await db.commit()

    result = await db.execute(
        select(SubscriptionPlan).where(
            SubscriptionPlan.name == STARTER_PLAN["name"],
            SubscriptionPlan.organization_type == STARTER_PLAN["organization_type"],
        )
    )
    plan = result.scalar_one_or_none()
    if plan:
        plan.modules_include = STARTER_PLAN["modules_include"]
        plan.price = STARTER_PLAN["price"]
        plan.description = STARTER_PLAN["description"]
    else:
        db.add(SubscriptionPlan(**STARTER_PLAN))
    await db.commit()

    all_modules = (await db.execute(select(Module))).scalars().all()
    definitions = [module_to_definition(m) for m in all_modules]
    cycles = find_dependency_cycles(definitions)
    missing = find_missing_dependencies(definitions)

    # Print summary
    print("=" * 60)
    print("Module Seeding Summary")
    print("=" * 60)
    print(f"Modules created: {modules_created}")
    print(f"Modules updated: {modules_updated}")
    print(f"Total modules: {len(MODULES)}")
    print(f"Starter plan: {'updated' if plan else 'created'}")
    for cycle in cycles:
        print(f"Dependency cycle: {' -> '.join(cycle)}")
    for module_key, dep in missing:
        print(f"Missing dependency: {module_key} -> {dep}")
    print("=" * 60)
    print("Seeding completed.")


async def main() -> None:
    """Main entry point for the seed script."""
    async with AsyncSessionLocal() as db:
        try:
            await seed_modules(db)
        except Exception as e:
            print(f"Error seeding modules: {e}")
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(main())
