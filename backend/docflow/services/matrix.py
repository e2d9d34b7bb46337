from __future__ import annotations
"""Role-permission matrix: (role, capability) grant edges.

Every mutation is audited under module ``role_permissions`` in the same
transaction as the change. Grants for the superuser role can never be written
through here; the evaluator grants it everything on its own.
"""
import hashlib
import json
import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Set

from sqlalchemy import delete, select

from docflow.constants.permissions import MOD_ROLE_PERMISSIONS, ROLES, SUPERUSER_ROLE
from docflow.errors import ImmutableRole, UnknownCapability, ValidationError
from docflow.models.authz import Permission, Role, RolePermission
from docflow.services.catalog import Capability, PermissionCatalog

log = logging.getLogger(__name__)

SNAPSHOT_FORMAT = 'docflow.role_permissions/v1'


class RolePermissionMatrix:
    def __init__(self, catalog: PermissionCatalog, session_factory, audit):
        self.catalog = catalog
        self.session_factory = session_factory
        self.audit = audit
        self._listeners: List[Callable[[str], None]] = []

    # --- change notification (evaluator cache invalidation) ---
    def add_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def _notify(self, roles: Iterable[str]) -> None:
        for role in roles:
            for cb in self._listeners:
                cb(role)

    # --- reads ---
    def grants_for(self, role: str) -> FrozenSet[Capability]:
        session = self.session_factory()
        rows = session.execute(
            select(Permission.module, Permission.action)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(Role, Role.id == RolePermission.role_id)
            .where(Role.name == role)
        ).all()
        return frozenset(Capability(m, a) for m, a in rows)

    def snapshot(self) -> Dict[str, List[List[str]]]:
        """role -> sorted [[module, action], ...] for every non-superuser role."""
        out: Dict[str, List[List[str]]] = {}
        for role in sorted(r for r in ROLES if r != SUPERUSER_ROLE):
            out[role] = [[c.module, c.action] for c in sorted(self.grants_for(role))]
        return out

    # --- single-edge edits ---
    def grant(self, role: str, capability: Capability, actor) -> bool:
        """Add an edge. Returns True if the matrix changed; granting twice is a no-op."""
        return self._edit(role, capability, actor, granting=True)

    def revoke(self, role: str, capability: Capability, actor) -> bool:
        """Remove an edge. Returns True if the matrix changed; revoking a missing edge is a no-op."""
        return self._edit(role, capability, actor, granting=False)

    def _edit(self, role: str, capability: Capability, actor, granting: bool) -> bool:
        self._assert_mutable(role)
        capability = self._require_capability(capability)
        session = self.session_factory()
        try:
            role_row = self._ensure_role(session, role)
            perm_row = self._ensure_permission(session, capability)
            existing = session.execute(
                select(RolePermission).where(
                    RolePermission.role_id == role_row.id,
                    RolePermission.permission_id == perm_row.id,
                )
            ).scalar_one_or_none()
            before = existing is not None
            if granting and existing is None:
                session.add(RolePermission(role_id=role_row.id, permission_id=perm_row.id))
            elif not granting and existing is not None:
                session.delete(existing)
            session.flush()
            self.audit.append(
                actor,
                'ROLE_PERMISSIONS.GRANT' if granting else 'ROLE_PERMISSIONS.REVOKE',
                entity=MOD_ROLE_PERMISSIONS,
                entity_id=role,
                before={'capability': capability.code, 'granted': before},
                after={'capability': capability.code, 'granted': granting},
                meta={'changed': before != granting},
                session=session,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        self._notify([role])
        log.info('%s %s %s', 'granted' if granting else 'revoked', capability.code, role)
        return before != granting

    # --- bulk backup / restore ---
    def export(self) -> Dict[str, Any]:
        grants = self.snapshot()
        return {'format': SNAPSHOT_FORMAT, 'grants': grants, 'checksum': _checksum(grants)}

    def export_json(self) -> str:
        return json.dumps(self.export(), sort_keys=True, separators=(',', ':'))

    def import_snapshot(self, snapshot: Mapping[str, Any], actor) -> Dict[str, Any]:
        """Replace every non-superuser grant with the snapshot, all-or-nothing."""
        desired = self._parse_snapshot(snapshot)
        session = self.session_factory()
        try:
            before = self.snapshot()
            role_rows = {role: self._ensure_role(session, role) for role in ROLES if role != SUPERUSER_ROLE}
            session.execute(
                delete(RolePermission).where(RolePermission.role_id.in_([r.id for r in role_rows.values()]))
            )
            for role, caps in desired.items():
                for cap in sorted(caps):
                    perm_row = self._ensure_permission(session, cap)
                    session.add(RolePermission(role_id=role_rows[role].id, permission_id=perm_row.id))
            session.flush()
            after = self.snapshot()
            self.audit.append(
                actor,
                'ROLE_PERMISSIONS.IMPORT',
                entity=MOD_ROLE_PERMISSIONS,
                before={'grants': before},
                after={'grants': after},
                meta={'checksum': _checksum(after)},
                session=session,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        self._notify(sorted(set(before) | set(desired)))
        log.info('imported role-permission snapshot (%d roles)', len(desired))
        return self.export()

    def _parse_snapshot(self, snapshot: Mapping[str, Any]) -> Dict[str, Set[Capability]]:
        if not isinstance(snapshot, Mapping) or not isinstance(snapshot.get('grants'), Mapping):
            raise ValidationError('snapshot must be an object with a grants mapping', reason='malformed_snapshot')
        fmt = snapshot.get('format', SNAPSHOT_FORMAT)
        if fmt != SNAPSHOT_FORMAT:
            raise ValidationError(f'unsupported snapshot format {fmt}', reason='unsupported_format')
        grants = snapshot['grants']
        checksum = snapshot.get('checksum')
        if checksum is not None and checksum != _checksum(grants):
            raise ValidationError('snapshot checksum mismatch', reason='checksum_mismatch')
        desired: Dict[str, Set[Capability]] = {}
        for role, pairs in grants.items():
            self._assert_mutable(role)
            self._assert_known_role(role)
            if not isinstance(pairs, list):
                raise ValidationError(f'grants for {role} must be a list', reason='malformed_snapshot', role=role)
            caps: Set[Capability] = set()
            for pair in pairs:
                if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                    raise ValidationError('grant must be [module, action]', reason='malformed_snapshot', role=role)
                caps.add(self._require_capability(Capability(str(pair[0]), str(pair[1]))))
            desired[role] = caps
        return desired

    # --- helpers ---
    @staticmethod
    def _assert_mutable(role: str) -> None:
        if role == SUPERUSER_ROLE:
            raise ImmutableRole(role=role)

    @staticmethod
    def _assert_known_role(role: str) -> None:
        if role not in ROLES:
            raise ValidationError(f'Unknown role {role}', reason='unknown_role', role=role)

    def _require_capability(self, capability: Capability) -> Capability:
        try:
            return self.catalog.get(capability.module, capability.action)
        except UnknownCapability:
            raise ValidationError(
                f'Unknown capability {capability.code}', reason='unknown_capability',
                module=capability.module, action=capability.action,
            )

    def _ensure_role(self, session, role: str) -> Role:
        self._assert_known_role(role)
        row = session.execute(select(Role).where(Role.name == role)).scalar_one_or_none()
        if row is None:
            row = Role(name=role, is_system=True, description_i18n={'en': role})
            session.add(row)
            session.flush()
        return row

    def _ensure_permission(self, session, capability: Capability) -> Permission:
        row = session.execute(
            select(Permission).where(Permission.module == capability.module, Permission.action == capability.action)
        ).scalar_one_or_none()
        if row is None:
            info = self.catalog.info(capability)
            row = Permission(
                code=capability.code, module=capability.module, action=capability.action,
                is_business=info.is_business, description_i18n={'en': info.label},
            )
            session.add(row)
            session.flush()
        return row


def _checksum(grants: Mapping[str, Any]) -> str:
    canonical = json.dumps(grants, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


__all__ = ['RolePermissionMatrix', 'SNAPSHOT_FORMAT']
