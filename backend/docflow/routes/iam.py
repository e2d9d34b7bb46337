from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from datetime import datetime
from sqlalchemy import select

from docflow import get_db, get_services
from docflow.constants.permissions import MOD_AUDIT, MOD_ROLE_PERMISSIONS, ROLES, SUPERUSER_ROLE
from docflow.decorators.auth import require_capability
from docflow.errors import ValidationError
from docflow.models.authz import User
from docflow.services.audit import audit_json
from docflow.services.catalog import Capability
from docflow.services.policy import Actor, compute_user_roles, current_actor, load_active_user
from docflow.utils.listing import build_list_payload, request_pagination

iam_bp = Blueprint('iam', __name__)


def _capability_json(services, cap: Capability) -> dict:
    info = services.catalog.info(cap)
    return {'module': cap.module, 'action': cap.action, 'code': cap.code, 'is_business': info.is_business}


def _role_or_400(role: str) -> str:
    if role not in ROLES:
        raise ValidationError(f'Unknown role {role}', reason='unknown_role', role=role)
    return role


@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = load_active_user(session, email)
    ip = request.remote_addr
    if not user or not user.verify_password(password):
        services = get_services()
        services.audit.append(Actor.of(None, (), ip_address=ip), 'AUTH.LOGIN', entity='users',
                              outcome='failure', meta={'email': email}, session=session)
        session.commit()
        abort(401, description='invalid credentials')
    roles = compute_user_roles(session, user.id)
    claims = {
        'roles': roles,
        'department': user.department,
        'locale': user.locale,
    }
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {'access_token': token, 'roles': roles}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    # Identity stored as string, cast back to int for DB lookup
    user_id = int(get_jwt_identity())
    session = get_db()
    user = session.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user:
        abort(404)
    actor = current_actor()
    caps = get_services().effective_capabilities(actor.roles)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'department': user.department,
        'locale': user.locale,
        'roles': sorted(actor.roles),
        'capabilities': sorted(c.code for c in caps),
    }


@iam_bp.get('/capabilities')
@jwt_required()
def list_capabilities():
    """Full catalog, or the caller's effective set with ``?mine=1``."""
    services = get_services()
    if request.args.get('mine') in ('1', 'true'):
        caps = services.effective_capabilities(current_actor().roles)
    else:
        caps = services.catalog.list_capabilities()
    return {'data': [_capability_json(services, c) for c in sorted(caps)]}


@iam_bp.get('/roles/<role>/permissions')
@require_capability(MOD_ROLE_PERMISSIONS, 'read')
def role_permissions(role: str):
    services = get_services()
    _role_or_400(role)
    if role == SUPERUSER_ROLE:
        caps = services.evaluator.effective_capabilities({role})
    else:
        caps = services.matrix.grants_for(role)
    return {
        'role': role,
        'immutable': role == SUPERUSER_ROLE,
        'permissions': [_capability_json(services, c) for c in sorted(caps)],
    }


def _edit_grant(role: str, module: str, action: str, granting: bool):
    services = get_services()
    _role_or_400(role)
    cap = Capability(module, action)
    matrix = services.matrix
    changed = matrix.grant(role, cap, current_actor()) if granting else matrix.revoke(role, cap, current_actor())
    return {'role': role, 'capability': cap.code, 'granted': granting, 'changed': changed}


@iam_bp.put('/roles/<role>/permissions/<module>/<action>')
@require_capability(MOD_ROLE_PERMISSIONS, 'write')
def grant_permission(role: str, module: str, action: str):
    return _edit_grant(role, module, action, granting=True)


@iam_bp.delete('/roles/<role>/permissions/<module>/<action>')
@require_capability(MOD_ROLE_PERMISSIONS, 'write')
def revoke_permission(role: str, module: str, action: str):
    return _edit_grant(role, module, action, granting=False)


@iam_bp.get('/matrix/export')
@require_capability(MOD_ROLE_PERMISSIONS, 'read')
def export_matrix():
    return get_services().export_matrix()


@iam_bp.post('/matrix/import')
@require_capability(MOD_ROLE_PERMISSIONS, 'write')
def import_matrix():
    snapshot = request.get_json(silent=True)
    return get_services().import_matrix(snapshot, current_actor())


def _parse_dt(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{name} must be ISO 8601', reason='invalid_filter', field=name)


@iam_bp.get('/audit/logs')
@require_capability(MOD_AUDIT, 'read')
def list_audit_logs():
    limit, offset = request_pagination()
    actor_raw = request.args.get('actor_id')
    try:
        actor_id = int(actor_raw) if actor_raw else None
    except ValueError:
        raise ValidationError('actor_id must be int', reason='invalid_filter', field='actor_id')
    rows, total = get_services().query_audit(
        actor_id=actor_id,
        action=request.args.get('action') or None,
        entity=request.args.get('entity') or None,
        entity_id=request.args.get('entity_id') or None,
        outcome=request.args.get('outcome') or None,
        date_from=_parse_dt('from'),
        date_to=_parse_dt('to'),
        limit=limit,
        offset=offset,
    )
    return build_list_payload([audit_json(r) for r in rows], total, limit, offset)
