"""
Dependency resolution for layers.

Produces a total order over the enabled layers in which every layer
comes after everything it depends on. Among layers with no ordering
constraint between them, declaration order wins, so the same config
always yields the same plan.

Disabled layers are not part of the graph. Depending on one is an
UnknownDependencyError with ``disabled=True``: a disabled dependency is
absent, not satisfied.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Set

from .exceptions import ConfigurationError, CyclicDependencyError, UnknownDependencyError
from .models import LayerSpec

logger = logging.getLogger(__name__)


def resolve_order(specs: Sequence[LayerSpec]) -> List[LayerSpec]:
    """
    Topologically sort the enabled layers.

    Args:
        specs: All configured layers, in declaration order

    Returns:
        Enabled layers in deployment order

    Raises:
        UnknownDependencyError: If a depends_on entry names an absent or disabled layer
        CyclicDependencyError: If no valid order exists

    Example:
        >>> [s.name for s in resolve_order(specs)]
        ['near_base', 'near_services', 'chain_signatures']
    """
    all_names = {spec.name for spec in specs}
    enabled = [spec for spec in specs if spec.enabled]
    enabled_names = {spec.name for spec in enabled}

    for spec in enabled:
        for dependency in spec.depends_on:
            if dependency not in enabled_names:
                raise UnknownDependencyError(
                    spec.name, dependency, disabled=dependency in all_names
                )

    placed: Set[str] = set()
    order: List[LayerSpec] = []
    remaining = list(enabled)

    while remaining:
        ready = next(
            (spec for spec in remaining if all(d in placed for d in spec.depends_on)),
            None,
        )
        if ready is None:
            raise CyclicDependencyError(_find_cycle(remaining, placed))
        remaining.remove(ready)
        placed.add(ready.name)
        order.append(ready)

    logger.debug(f"Resolved layer order: {[spec.name for spec in order]}")
    return order


def _find_cycle(remaining: Sequence[LayerSpec], placed: Set[str]) -> List[str]:
    # Every remaining layer has at least one unplaced dependency, so
    # following the first one from any node must eventually revisit a node.
    by_name = {spec.name: spec for spec in remaining}
    path: List[str] = []
    current: Optional[str] = remaining[0].name
    while current not in path:
        path.append(current)
        current = next(d for d in by_name[current].depends_on if d not in placed)
    return path[path.index(current):]


def dependency_closure(specs: Sequence[LayerSpec], targets: Iterable[str]) -> Set[str]:
    """
    Names of the targets plus every layer they transitively depend on.

    Raises:
        ConfigurationError: If a target is not a configured layer
    """
    by_name = {spec.name: spec for spec in specs}
    unknown = [t for t in targets if t not in by_name]
    if unknown:
        raise ConfigurationError(
            f"Unknown layer(s): {', '.join(unknown)}. Available: {list(by_name)}"
        )

    closure: Set[str] = set()
    pending = list(targets)
    while pending:
        name = pending.pop()
        if name in closure:
            continue
        closure.add(name)
        spec = by_name.get(name)
        if spec is not None:
            pending.extend(spec.depends_on)
    return closure


def select_layers(
    specs: Sequence[LayerSpec],
    targets: Optional[Iterable[str]] = None
) -> List[LayerSpec]:
    """
    Restrict the configured layers to the targets' dependency closure.

    Declaration order is preserved. With no targets, every layer is kept.
    Dependencies outside the closure cannot exist by construction; a
    dependency that is not configured at all still surfaces from
    resolve_order as UnknownDependencyError.
    """
    if not targets:
        return list(specs)
    closure = dependency_closure(specs, list(targets))
    return [spec for spec in specs if spec.name in closure]
