from __future__ import annotations
import logging
from typing import FrozenSet, Iterable

from docflow.constants.permissions import SUPERUSER_ROLE
from docflow.services.catalog import Capability, PermissionCatalog
from docflow.utils.ttl_cache import TTLCache

log = logging.getLogger(__name__)


class PermissionEvaluator:
    """Computes effective capabilities for an actor's role set.

    This is the only place the superuser role is special-cased: holding it
    yields the full catalog regardless of what the matrix contains.
    """

    def __init__(self, catalog: PermissionCatalog, matrix, cache: TTLCache):
        self.catalog = catalog
        self.matrix = matrix
        self.cache = cache

    @staticmethod
    def cache_key(actor_roles: Iterable[str]) -> FrozenSet[str]:
        return frozenset(actor_roles or ())

    def effective_capabilities(self, actor_roles: Iterable[str]) -> FrozenSet[Capability]:
        key = self.cache_key(actor_roles)
        return self.cache.get_or_compute(key, lambda: self._compute(key))

    def authorize(self, actor_roles: Iterable[str], capability: Capability) -> bool:
        # Raises UnknownCapability for a capability the catalog does not declare
        self.catalog.info(capability)
        return capability in self.effective_capabilities(actor_roles)

    def invalidate_role(self, role: str) -> None:
        removed = self.cache.invalidate_role(role)
        if removed:
            log.debug('invalidated %d cached capability sets for role %s', removed, role)

    def _compute(self, roles: FrozenSet[str]) -> FrozenSet[Capability]:
        if SUPERUSER_ROLE in roles:
            return self.catalog.list_capabilities()
        caps = set()
        for role in roles:
            caps |= self.matrix.grants_for(role)
        # Grants to capabilities later removed from the catalog are ignored
        return frozenset(c for c in caps if self.catalog.contains(c))


__all__ = ['PermissionEvaluator']
