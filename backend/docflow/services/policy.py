from __future__ import annotations
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional
from flask import request, has_request_context
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import select
from docflow.models.authz import User, UserRole, Role
from docflow.constants.permissions import ROLES


@dataclass(frozen=True)
class Actor:
    """Who is acting. Identity and roles come from the session layer (JWT claims)."""
    user_id: Optional[int]
    roles: FrozenSet[str] = field(default_factory=frozenset)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def of(cls, user_id: Optional[int], roles: Iterable[str] = (), **network) -> 'Actor':
        return cls(user_id=user_id, roles=frozenset(roles), **network)

    def network_meta(self) -> dict:
        meta = {}
        if self.ip_address:
            meta['ip_address'] = self.ip_address
        if self.user_agent:
            meta['user_agent'] = self.user_agent
        return meta


SYSTEM_ACTOR = Actor(user_id=None, roles=frozenset())


def current_actor() -> Actor:
    """Build the Actor for the current JWT-authenticated request."""
    claims = get_jwt()
    ident = get_jwt_identity()
    ip = ua = None
    if has_request_context():
        ip = request.remote_addr
        ua = request.headers.get('User-Agent')
    return Actor(
        user_id=int(ident) if ident is not None else None,
        roles=frozenset(r for r in claims.get('roles', []) if r in ROLES),
        ip_address=ip,
        user_agent=ua,
    )


def compute_user_roles(session, user_id: int) -> List[str]:
    rows = session.execute(
        select(Role.name).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id)
    ).scalars().all()
    return sorted(r for r in rows if r in ROLES)


def load_active_user(session, email: str) -> Optional[User]:
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


__all__ = ['Actor', 'SYSTEM_ACTOR', 'current_actor', 'compute_user_roles', 'load_active_user']
