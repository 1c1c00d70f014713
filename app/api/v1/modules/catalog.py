"""
Catalog accessor: read-only lookups of module definitions by key.

- Unknown keys are simply absent from results; they are not errors.
- Storage failures raise CatalogUnavailable. An empty result never stands in for a failed read.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import DependencyKind
from app.core.exceptions import CatalogUnavailable
from app.core.models import Module

from .schemas import ModuleDefinition, ModuleDependency

logger = logging.getLogger(__name__)


class ModuleCatalog(ABC):
    @abstractmethod
    async def get_module(self, key: str) -> Optional[ModuleDefinition]:
        ...

    @abstractmethod
    async def get_modules_by_keys(self, keys: Iterable[str]) -> List[ModuleDefinition]:
        ...

    @abstractmethod
    async def list_modules(self) -> List[ModuleDefinition]:
        ...

    async def list_compatible_modules(self, vertical: str) -> List[ModuleDefinition]:
        """Modules offered to every vertical ("*") or to this one, in display order."""
        return [
            m
            for m in await self.list_modules()
            if "*" in m.compatible_verticals or vertical in m.compatible_verticals
        ]


def _parse_dependency(raw) -> ModuleDependency:
    if isinstance(raw, str):
        return ModuleDependency(module_key=raw)
    return ModuleDependency(
        module_key=raw["module_key"],
        type=DependencyKind(raw.get("type") or DependencyKind.REQUIRED.value),
        reason=raw.get("reason") or "",
    )


def module_to_definition(module: Module) -> ModuleDefinition:
    """Build the resolver's immutable record from a catalog row."""
    return ModuleDefinition(
        key=module.module_key,
        name=module.module_name,
        description=module.description,
        category=module.category,
        dependencies=[_parse_dependency(d) for d in (module.dependencies or [])],
        conflicts_with=list(module.conflicts_with or []),
        compatible_verticals=list(module.compatible_verticals or ["*"]),
        price_monthly=Decimal(str(module.price_monthly or 0)),
        is_core=bool(module.is_core),
        is_premium=bool(module.is_premium),
        display_order=module.display_order or 0,
    )


class SqlModuleCatalog(ModuleCatalog):
    """Catalog backed by core.modules. Inactive (retired) rows are invisible."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _fetch(self, stmt) -> List[Module]:
        try:
            result = await self._db.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Module catalog read failed: %s", e)
            raise CatalogUnavailable(f"Module catalog unavailable: {e}") from e
        return list(result.scalars().all())

    async def get_module(self, key: str) -> Optional[ModuleDefinition]:
        rows = await self._fetch(
            select(Module).where(Module.module_key == key, Module.is_active == True)  # noqa: E712
        )
        return module_to_definition(rows[0]) if rows else None

    async def get_modules_by_keys(self, keys: Iterable[str]) -> List[ModuleDefinition]:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return []
        rows = await self._fetch(
            select(Module).where(Module.module_key.in_(keys), Module.is_active == True)  # noqa: E712
        )
        by_key = {row.module_key: module_to_definition(row) for row in rows}
        return [by_key[k] for k in keys if k in by_key]

    async def list_modules(self) -> List[ModuleDefinition]:
        rows = await self._fetch(
            select(Module)
            .where(Module.is_active == True)  # noqa: E712
            .order_by(Module.display_order, Module.module_key)
        )
        return [module_to_definition(row) for row in rows]


class InMemoryModuleCatalog(ModuleCatalog):
    """Catalog over a fixed list of definitions (fixtures, seeding, offline checks)."""

    def __init__(self, modules: Iterable[ModuleDefinition]) -> None:
        self._modules: Dict[str, ModuleDefinition] = {m.key: m for m in modules}

    async def get_module(self, key: str) -> Optional[ModuleDefinition]:
        return self._modules.get(key)

    async def get_modules_by_keys(self, keys: Iterable[str]) -> List[ModuleDefinition]:
        return [self._modules[k] for k in dict.fromkeys(keys) if k in self._modules]

    async def list_modules(self) -> List[ModuleDefinition]:
        return sorted(self._modules.values(), key=lambda m: (m.display_order, m.key))


class MemoizedCatalog(ModuleCatalog):
    """Per-call memo so one plan computation fetches each definition at most once.

    Create a fresh instance per request; it never outlives the computation it serves.
    """

    def __init__(self, catalog: ModuleCatalog) -> None:
        self._catalog = catalog
        # None marks a key known to be missing from the catalog
        self._seen: Dict[str, Optional[ModuleDefinition]] = {}

    async def get_module(self, key: str) -> Optional[ModuleDefinition]:
        if key not in self._seen:
            self._seen[key] = await self._catalog.get_module(key)
        return self._seen[key]

    async def get_modules_by_keys(self, keys: Iterable[str]) -> List[ModuleDefinition]:
        keys = list(dict.fromkeys(keys))
        unknown = [k for k in keys if k not in self._seen]
        if unknown:
            fetched = {m.key: m for m in await self._catalog.get_modules_by_keys(unknown)}
            for k in unknown:
                self._seen[k] = fetched.get(k)
        return [self._seen[k] for k in keys if self._seen[k] is not None]

    async def list_modules(self) -> List[ModuleDefinition]:
        modules = await self._catalog.list_modules()
        for m in modules:
            self._seen[m.key] = m
        return modules
