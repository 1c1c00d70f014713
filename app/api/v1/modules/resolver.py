"""
Dependency resolution over the module catalog.

Forward: which modules must also be switched on for a target (required edges only).
Reverse: which active modules lose a required dependency when a target is switched off.
Both walks stop on a visited set, so a cyclic catalog terminates instead of looping.
"""

import logging
from collections import deque
from typing import Collection, Dict, Iterable, List, Optional, Tuple

from .catalog import ModuleCatalog
from .schemas import ModuleDefinition

logger = logging.getLogger(__name__)


async def auto_resolve_dependencies(
    catalog: ModuleCatalog,
    module_key: str,
    organization_id: Optional[object],
    current_active_modules: Collection[str],
) -> List[str]:
    """
    Breadth-first walk over required edges starting at module_key.
    Returns the modules that are not yet active, in discovery order, excluding module_key itself.
    Each BFS layer is fetched from the catalog in one batch.
    """
    active = set(current_active_modules)
    visited: set[str] = set()
    resolved: List[str] = []
    layer: List[str] = [module_key]

    while layer:
        fresh: List[str] = []
        for key in layer:
            if key in visited:
                continue
            visited.add(key)
            fresh.append(key)
            if key != module_key and key not in active:
                resolved.append(key)

        definitions = {m.key: m for m in await catalog.get_modules_by_keys(fresh)}
        next_layer: List[str] = []
        for key in fresh:
            module = definitions.get(key)
            if module is None:
                if key != module_key:
                    logger.warning(
                        "Required dependency %s is missing from the catalog", key,
                        extra={"tenant_id": organization_id, "module_key": module_key},
                    )
                continue
            next_layer.extend(dep for dep in module.required_keys if dep not in visited)
        layer = next_layer

    return resolved


async def get_orphaned_modules(
    catalog: ModuleCatalog,
    module_key: str,
    current_active_modules: Collection[str],
) -> List[str]:
    """
    Active modules that would be left with a missing required dependency if module_key
    were switched off, followed transitively to a fixed point.
    Core modules are never orphaned and the cascade does not pass through them.
    """
    active = [k for k in dict.fromkeys(current_active_modules) if k != module_key]
    definitions: Dict[str, ModuleDefinition] = {
        m.key: m for m in await catalog.get_modules_by_keys(active)
    }

    visited = {module_key}
    orphans: List[str] = []
    removed = deque([module_key])
    while removed:
        gone = removed.popleft()
        for key in active:
            if key in visited:
                continue
            module = definitions.get(key)
            if module is None or module.is_core:
                continue
            if gone in module.required_keys:
                visited.add(key)
                orphans.append(key)
                removed.append(key)

    return orphans


def find_dependency_cycles(modules: Iterable[ModuleDefinition]) -> List[List[str]]:
    """Every distinct cycle over required edges, each as [a, b, ..., a]."""
    id_to_deps: Dict[str, List[str]] = {m.key: m.required_keys for m in modules}
    WHITE, GRAY, BLACK = 0, 1, 2
    state: Dict[str, int] = {key: WHITE for key in id_to_deps}
    stack: List[str] = []
    emitted: set[str] = set()
    out: List[List[str]] = []

    def dfs(u: str) -> None:
        state[u] = GRAY
        stack.append(u)
        for v in id_to_deps.get(u, []):
            if v not in state:
                continue
            if state[v] == GRAY:
                cycle = stack[stack.index(v):] + [v]
                marker = "->".join(cycle)
                if marker not in emitted:
                    emitted.add(marker)
                    out.append(cycle)
            elif state[v] == WHITE:
                dfs(v)
        stack.pop()
        state[u] = BLACK

    for key in list(state.keys()):
        if state[key] == WHITE:
            dfs(key)

    return out


def find_missing_dependencies(modules: Iterable[ModuleDefinition]) -> List[Tuple[str, str]]:
    """(module_key, dependency_key) pairs whose dependency is not in the catalog. All edge kinds."""
    modules = list(modules)
    known = {m.key for m in modules}
    return [
        (m.key, dep.module_key)
        for m in modules
        for dep in m.dependencies
        if dep.module_key not in known
    ]
