from __future__ import annotations
"""Permission catalog: the static registry of capabilities.

A capability is identified by (module, action). Base actions exist for every
module; business actions are registered per module in constants/permissions.py.
The dotted ``code`` is a derived storage/display key, never parsed back.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from docflow.constants.permissions import (
    ACTION_LABELS,
    MODULE_LABELS,
    build_catalog_entries,
)
from docflow.errors import UnknownCapability


@dataclass(frozen=True, order=True)
class Capability:
    module: str
    action: str

    @property
    def code(self) -> str:
        return f"{self.module}.{self.action}"

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class CapabilityInfo:
    capability: Capability
    is_business: bool
    label: str


class PermissionCatalog:
    def __init__(self, entries: Optional[Iterable[Tuple[str, str, bool]]] = None):
        self._by_key: Dict[Tuple[str, str], CapabilityInfo] = {}
        for module, action, is_business in (entries if entries is not None else build_catalog_entries()):
            cap = Capability(module, action)
            label = f"{MODULE_LABELS.get(module, module)} - {ACTION_LABELS.get(action, action.replace('-', ' '))}"
            self._by_key[(module, action)] = CapabilityInfo(cap, is_business, label)
        self._all: FrozenSet[Capability] = frozenset(i.capability for i in self._by_key.values())

    def list_capabilities(self) -> FrozenSet[Capability]:
        return self._all

    def get(self, module: str, action: str) -> Capability:
        info = self._by_key.get((module, action))
        if info is None:
            raise UnknownCapability(f'Unknown capability {module}.{action}', module=module, action=action)
        return info.capability

    def info(self, capability: Capability) -> CapabilityInfo:
        info = self._by_key.get((capability.module, capability.action))
        if info is None:
            raise UnknownCapability(f'Unknown capability {capability.code}', module=capability.module, action=capability.action)
        return info

    def contains(self, capability: Capability) -> bool:
        return (capability.module, capability.action) in self._by_key

    def modules(self) -> List[str]:
        seen: List[str] = []
        for module, _ in self._by_key:
            if module not in seen:
                seen.append(module)
        return seen

    def actions_for(self, module: str) -> List[str]:
        return [action for (m, action) in self._by_key if m == module]

    def describe(self) -> List[dict]:
        return [
            {
                'module': i.capability.module,
                'action': i.capability.action,
                'code': i.capability.code,
                'business': i.is_business,
                'label': i.label,
            }
            for i in self._by_key.values()
        ]

    def __len__(self) -> int:
        return len(self._by_key)


# Module-level default; services receive it explicitly, nothing mutates it.
DEFAULT_CATALOG = PermissionCatalog()

__all__ = ['Capability', 'CapabilityInfo', 'PermissionCatalog', 'DEFAULT_CATALOG']
