"""Idempotent bootstrap of the catalog, the role presets and the first administrator.

Used by ``create_app`` when ``DOCFLOW_AUTO_SEED`` is set and by
``backend/scripts/seed_authz.py``. Nothing here commits; the caller decides
(the seed script's ``--dry-run`` rolls back).
"""
from __future__ import annotations
import logging
import os
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select

from docflow.constants.permissions import ROLE_PRESETS, ROLES, SUPERUSER_ROLE
from docflow.models.authz import Permission, Role, RolePermission, User, UserRole
from docflow.services.catalog import PermissionCatalog

log = logging.getLogger(__name__)


def seed_catalog(session, catalog: PermissionCatalog) -> int:
    """Persist every catalog capability; returns the number of rows created."""
    existing = {(p.module, p.action) for p in session.execute(select(Permission)).scalars()}
    created = 0
    for cap in sorted(catalog.list_capabilities()):
        if (cap.module, cap.action) in existing:
            continue
        info = catalog.info(cap)
        session.add(Permission(
            code=cap.code, module=cap.module, action=cap.action,
            is_business=info.is_business, description_i18n={'en': info.label},
        ))
        created += 1
    session.flush()
    return created


def seed_roles(session) -> Dict[str, Role]:
    roles = {r.name: r for r in session.execute(select(Role)).scalars()}
    for name in ROLES:
        if name not in roles:
            roles[name] = Role(name=name, is_system=True, description_i18n={'en': name})
            session.add(roles[name])
    session.flush()
    return roles


def seed_role_presets(session, catalog: PermissionCatalog,
                      presets: Optional[Mapping[str, Iterable[Tuple[str, str]]]] = None) -> int:
    """Add preset grants that are missing. Never removes grants an administrator added."""
    presets = ROLE_PRESETS if presets is None else presets
    roles = seed_roles(session)
    perms = {(p.module, p.action): p for p in session.execute(select(Permission)).scalars()}
    added = 0
    for role_name, pairs in presets.items():
        if role_name == SUPERUSER_ROLE:
            continue
        role = roles[role_name]
        current = set(session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role.id)
        ).scalars())
        for module, action in pairs:
            cap = catalog.get(module, action)
            perm = perms.get((cap.module, cap.action))
            if perm is None:
                log.warning('capability %s referenced by role %s is not persisted', cap.code, role_name)
                continue
            if perm.id not in current:
                session.add(RolePermission(role_id=role.id, permission_id=perm.id))
                current.add(perm.id)
                added += 1
    session.flush()
    return added


def ensure_user(session, email: str, name: str, password: str, roles: Iterable[str] = (),
                department: Optional[str] = None) -> User:
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        user = User(name=name, email=email, department=department, password_hash='')
        user.set_password(password)
        session.add(user)
        session.flush()
    role_rows = seed_roles(session)
    held = set(session.execute(select(UserRole.role_id).where(UserRole.user_id == user.id)).scalars())
    for role_name in roles:
        role = role_rows[role_name]
        if role.id not in held:
            session.add(UserRole(user_id=user.id, role_id=role.id))
            held.add(role.id)
    session.flush()
    return user


def ensure_admin(session, email: Optional[str] = None, password: Optional[str] = None) -> User:
    email = email or os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    password = password or os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!')
    return ensure_user(session, email, 'Administrator', password, roles=[SUPERUSER_ROLE])


def bootstrap(session, catalog: PermissionCatalog, with_admin: bool = True) -> Dict[str, int]:
    summary = {
        'permissions_created': seed_catalog(session, catalog),
        'grants_added': seed_role_presets(session, catalog),
    }
    if with_admin:
        ensure_admin(session)
    return summary


def role_grant_map(session) -> Dict[str, List[str]]:
    """role name -> sorted capability codes, as persisted."""
    rows = session.execute(
        select(Role.name, Permission.code)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .join(Permission, Permission.id == RolePermission.permission_id)
    ).all()
    out: Dict[str, List[str]] = {r.name: [] for r in session.execute(select(Role)).scalars()}
    for role_name, code in rows:
        out.setdefault(role_name, []).append(code)
    return {k: sorted(v) for k, v in out.items()}


__all__ = ['seed_catalog', 'seed_roles', 'seed_role_presets', 'ensure_user', 'ensure_admin', 'bootstrap', 'role_grant_map']
