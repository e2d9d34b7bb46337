"""Test seeding utilities to reduce duplication.

These helpers centralize creation of users with roles and the matching
Actor / JWT headers, going through the same bootstrap code the app uses.
"""
from typing import Iterable, Optional
from flask_jwt_extended import create_access_token
from docflow import get_db
from docflow.models.authz import User
from docflow.services.bootstrap import ensure_user as _ensure_user
from docflow.services.policy import Actor, compute_user_roles


def ensure_user(email: str, roles: Iterable[str] = (), department: Optional[str] = 'ops', password: str = 'pw') -> User:
    """Idempotently ensure a user holding ``roles`` exists; commits."""
    session = get_db()
    user = _ensure_user(session, email, email.split('@')[0], password, roles=roles, department=department)
    session.commit()
    return user


def actor_for(user: User) -> Actor:
    return Actor.of(user.id, compute_user_roles(get_db(), user.id))


def seed_actor(email: str, *roles: str, department: Optional[str] = 'ops') -> Actor:
    """High level convenience: user + roles -> Actor."""
    return actor_for(ensure_user(email, roles, department))


def jwt_headers(user: User):
    """Bearer headers carrying the user's persisted roles (no /login round-trip)."""
    token = create_access_token(identity=str(user.id), additional_claims={
        'roles': compute_user_roles(get_db(), user.id),
        'department': user.department,
    })
    return {'Authorization': f'Bearer {token}'}


def role_headers(email: str, *roles: str, department: Optional[str] = 'ops'):
    return jwt_headers(ensure_user(email, roles, department))


__all__ = ['ensure_user', 'actor_for', 'seed_actor', 'jwt_headers', 'role_headers']
