from __future__ import annotations
from flask import Blueprint, request, make_response, jsonify
from flask_jwt_extended import jwt_required, get_jwt
from sqlalchemy import func

from docflow import get_db, get_services
from docflow.errors import ValidationError
from docflow.models.document import WorkflowDocument
from docflow.services.audit import audit_json
from docflow.services.policy import current_actor
from docflow.utils.filters import apply_filters, coerce_bool
from docflow.utils.listing import apply_pagination, handle_conditional, make_cached_list_response, request_pagination, build_list_payload
from docflow.utils.sorting import apply_multi_sort

docs_bp = Blueprint('documents', __name__)

_SORTABLE = {
    'id': WorkflowDocument.id,
    'status': WorkflowDocument.status,
    'type': WorkflowDocument.doc_type,
    'department': WorkflowDocument.department,
    'amount_cents': WorkflowDocument.amount_cents,
    'created_at': WorkflowDocument.created_at,
    'updated_at': WorkflowDocument.updated_at,
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('JSON object expected', reason='malformed_body')
    return data


def _expected_version(body: dict):
    raw = body.pop('expected_version', None)
    if raw is None:
        raw = request.headers.get('If-Match', '').strip('"') or None
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError('expected_version must be int', reason='invalid_version')


@docs_bp.post('')
@jwt_required()
def create_document():
    body = _json_body()
    doc_type = body.pop('type', None)
    if not doc_type:
        raise ValidationError('type required', reason='type_required')
    parent_id = body.pop('parent_id', None)
    submit = bool(body.pop('submit', False))
    department = body.pop('department', None) or get_jwt().get('department')
    doc = get_services().engine.create_document(
        doc_type, current_actor(), department, body, parent_id=parent_id, submit=submit,
    )
    return doc.to_json(), 201


@docs_bp.get('')
@jwt_required()
def list_documents():
    services = get_services()
    registry = services.registry
    q = services.engine.visible_query(current_actor(), request.args.get('type') or None)
    filter_specs = {
        'status': {'op': lambda qu, v: qu.filter(WorkflowDocument.status == v)},
        'department': {'op': lambda qu, v: qu.filter(WorkflowDocument.department == v)},
        'owner_id': {'coerce': int, 'op': lambda qu, v: qu.filter(WorkflowDocument.owner_id == v)},
        'parent_id': {'coerce': int, 'op': lambda qu, v: qu.filter(WorkflowDocument.parent_id == v)},
        'locked': {'coerce': coerce_bool, 'op': lambda qu, v: qu.filter(WorkflowDocument.locked == v)},
        'q': {'op': lambda qu, v: qu.filter(func.lower(func.coalesce(WorkflowDocument.data['title'].as_string(), '')).contains(v.lower()))},
    }
    if request.args.get('type') and request.args.get('status'):
        filter_specs['status']['validate'] = lambda v: v in registry.statuses(request.args['type'])
    q = apply_filters(q, filter_specs, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), _SORTABLE, WorkflowDocument.id.desc(),
                         default=WorkflowDocument.updated_at.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    rows_json = [r.to_json() for r in rows]
    latest_ts = max((r.updated_at for r in rows if r.updated_at), default=None)
    resp, etag = make_cached_list_response(rows_json, total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


@docs_bp.get('/<int:doc_id>')
@jwt_required()
def get_document(doc_id: int):
    doc = get_services().engine.get_document(doc_id, current_actor())
    etag = f'"{doc.id}-{doc.version}"'
    if request.headers.get('If-None-Match') == etag:
        resp = make_response('', 304)
        resp.headers['ETag'] = etag
        return resp
    resp = make_response(jsonify(doc.to_json()))
    resp.headers['ETag'] = etag
    return resp


@docs_bp.delete('/<int:doc_id>')
@jwt_required()
def delete_document(doc_id: int):
    get_services().engine.delete_document(doc_id, current_actor())
    return {'status': 'deleted', 'id': doc_id}


@docs_bp.get('/<int:doc_id>/actions')
@jwt_required()
def list_actions(doc_id: int):
    actions = get_services().engine.available_actions(doc_id, current_actor())
    return {'id': doc_id, 'actions': actions}


@docs_bp.post('/<int:doc_id>/actions/<action>')
@jwt_required()
def apply_action(doc_id: int, action: str):
    body = _json_body()
    expected = _expected_version(body)
    engine = get_services().engine
    result = engine.apply(doc_id, action, current_actor(), body, expected_version=expected)
    doc = get_db().get(WorkflowDocument, doc_id)
    return {'result': result.to_json(), 'document': doc.to_json()}


@docs_bp.get('/<int:doc_id>/audit')
@jwt_required()
def document_audit(doc_id: int):
    services = get_services()
    doc = services.engine.get_document(doc_id, current_actor())
    limit, offset = request_pagination()
    rows, total = services.audit.query(entity=doc.doc_type, entity_id=doc.id, limit=limit, offset=offset)
    return build_list_payload([audit_json(r) for r in rows], total, limit, offset)
