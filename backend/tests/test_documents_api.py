import pytest
from docflow.constants.permissions import (
    ROLE_ACCOUNTANT, ROLE_EMPLOYEE, ROLE_LOGISTICS_LEAD, ROLE_PROCUREMENT_LEAD, ROLE_READ_ONLY,
)
from tests.test_lifecycle_helpers import ACCOUNTING, LINES
from tests.test_utils_seed import role_headers


@pytest.fixture()
def headers(app_context):
    return {
        'employee': _h('employee@example.com', ROLE_EMPLOYEE),
        'logistics': _h('logistics@example.com', ROLE_LOGISTICS_LEAD),
        'procurement': _h('procurement@example.com', ROLE_PROCUREMENT_LEAD),
        'accountant': _h('accountant@example.com', ROLE_ACCOUNTANT),
        'reader': _h('reader@example.com', ROLE_READ_ONLY),
        'nobody': _h('nobody@example.com'),
    }


def _h(email, *roles):
    return role_headers(email, *roles)


def _create(client, headers, **body):
    resp = client.post('/documents', json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def _act(client, headers, doc_id, action, **body):
    return client.post(f'/documents/{doc_id}/actions/{action}', json=body, headers=headers)


def test_requires_jwt(client):
    assert client.get('/documents').status_code == 401
    assert client.post('/documents', json={'type': 'need'}).status_code == 401


def test_create_defaults_department_from_token(client, headers):
    body = _create(client, headers['employee'], type='need', title='Laptops', lines=LINES)
    assert body['status'] == 'draft'
    assert body['department'] == 'ops'
    assert body['version'] == 1
    assert body['data']['lines'][0]['urgency'] == 'normal'


def test_create_validation_errors(client, headers):
    resp = client.post('/documents', json={'title': 'x'}, headers=headers['employee'])
    assert resp.status_code == 400
    assert resp.get_json()['error']['reason'] == 'type_required'
    resp = client.post('/documents', json={'type': 'spaceship'}, headers=headers['employee'])
    assert resp.get_json()['error']['reason'] == 'unknown_document_type'
    resp = client.post('/documents', json=['not', 'an', 'object'], headers=headers['employee'])
    assert resp.get_json()['error']['reason'] == 'malformed_body'


def test_create_forbidden_without_write(client, headers):
    resp = client.post('/documents', json={'type': 'purchase_request'}, headers=headers['employee'])
    assert resp.status_code == 403
    err = resp.get_json()['error']
    assert err['code'] == 'PERMISSION_DENIED'
    assert err['action'] == 'create'


def test_apply_action_returns_result_and_document(client, headers):
    doc = _create(client, headers['employee'], type='need', lines=LINES, submit=True)
    resp = _act(client, headers['logistics'], doc['id'], 'take-in-charge')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['result']['previous_status'] == 'submitted'
    assert body['result']['status'] == 'taken-in-charge'
    assert body['document']['milestones']['taken_at']['by'] is not None


def test_error_envelopes(client, headers):
    doc = _create(client, headers['employee'], type='need', lines=LINES, submit=True)
    resp = _act(client, headers['employee'], doc['id'], 'take-in-charge')
    assert resp.status_code == 403
    assert 'capability' not in resp.get_json()['error']

    resp = _act(client, headers['logistics'], doc['id'], 'accept')
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'INVALID_TRANSITION'

    resp = _act(client, headers['logistics'], doc['id'], 'lock', reason='audit')
    assert resp.status_code == 200
    resp = _act(client, headers['employee'], doc['id'], 'edit', title='new')
    assert resp.status_code == 423
    assert resp.get_json()['error']['locked_reason'] == 'audit'

    resp = _act(client, headers['logistics'], 9999, 'edit')
    assert resp.status_code == 404


def test_expected_version_conflict_body_and_if_match(client, headers):
    doc = _create(client, headers['employee'], type='need', lines=LINES)
    resp = _act(client, headers['employee'], doc['id'], 'edit', title='v2', expected_version=1)
    assert resp.status_code == 200
    resp = _act(client, headers['employee'], doc['id'], 'edit', title='v3', expected_version=1)
    assert resp.status_code == 409
    assert resp.get_json()['error']['code'] == 'CONCURRENCY_CONFLICT'
    resp = client.post(f"/documents/{doc['id']}/actions/edit", json={'title': 'v3'},
                       headers={**headers['employee'], 'If-Match': '"2"'})
    assert resp.status_code == 200
    resp = client.post(f"/documents/{doc['id']}/actions/edit", json={'title': 'v4'},
                       headers={**headers['employee'], 'If-Match': 'abc'})
    assert resp.get_json()['error']['reason'] == 'invalid_version'


def test_threshold_route_over_http(client, headers):
    pr = _create(client, headers['logistics'], type='purchase_request', lines=LINES, submit=True)
    for action, body in (('take-for-analysis', {}), ('price', {'amount_cents': 120_000}), ('validate-ops', {})):
        assert _act(client, headers['procurement'], pr['id'], action, **body).status_code == 200
    resp = client.get(f"/documents/{pr['id']}/actions", headers=headers['accountant'])
    assert [a['action'] for a in resp.get_json()['actions']] == ['mark-paid', 'reject-accounting']
    resp = _act(client, headers['accountant'], pr['id'], 'mark-paid', accounting=ACCOUNTING)
    assert resp.get_json()['document']['status'] == 'paid'


def test_get_document_etag(client, headers):
    doc = _create(client, headers['employee'], type='need', lines=LINES)
    resp = client.get(f"/documents/{doc['id']}", headers=headers['reader'])
    assert resp.status_code == 200
    etag = resp.headers['ETag']
    assert etag == f'"{doc["id"]}-1"'
    resp = client.get(f"/documents/{doc['id']}", headers={**headers['reader'], 'If-None-Match': etag})
    assert resp.status_code == 304
    assert client.get(f"/documents/{doc['id']}", headers=headers['nobody']).status_code == 403


def test_list_filters_sort_and_pagination(client, headers):
    first = _create(client, headers['employee'], type='need', title='Laptops', lines=LINES)
    second = _create(client, headers['employee'], type='need', title='Chairs', lines=LINES, submit=True)
    _create(client, headers['employee'], type='expense_note', title='Taxi', amount_cents=900)

    resp = client.get('/documents', headers=headers['employee'])
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['pagination']['total'] == 3

    resp = client.get('/documents?type=need&status=submitted', headers=headers['employee'])
    assert [d['id'] for d in resp.get_json()['data']] == [second['id']]

    resp = client.get('/documents?q=lap', headers=headers['employee'])
    assert [d['id'] for d in resp.get_json()['data']] == [first['id']]

    resp = client.get('/documents?type=need&sort=id&limit=1&offset=1', headers=headers['employee'])
    assert [d['id'] for d in resp.get_json()['data']] == [second['id']]

    # logistics lead cannot view expense notes
    resp = client.get('/documents', headers=headers['logistics'])
    assert {d['type'] for d in resp.get_json()['data']} == {'need'}
    assert client.get('/documents?type=expense_note', headers=headers['logistics']).status_code == 403


def test_list_rejects_bad_parameters(client, headers):
    for query, reason in (
        ('sort=password', 'invalid_sort'),
        ('locked=maybe', 'invalid_filter'),
        ('type=need&status=teleported', 'invalid_filter'),
        ('limit=abc', 'invalid_pagination'),
        ('type=spaceship', 'unknown_document_type'),
    ):
        resp = client.get(f'/documents?{query}', headers=headers['employee'])
        assert resp.status_code == 400, query
        assert resp.get_json()['error']['reason'] == reason


def test_list_conditional_get(client, headers):
    _create(client, headers['employee'], type='need', lines=LINES)
    resp = client.get('/documents', headers=headers['employee'])
    etag = resp.headers['ETag']
    resp = client.get('/documents', headers={**headers['employee'], 'If-None-Match': etag})
    assert resp.status_code == 304


def test_delete_and_document_audit(client, headers):
    doc = _create(client, headers['employee'], type='need', lines=LINES)
    _act(client, headers['employee'], doc['id'], 'edit', title='renamed')
    resp = client.get(f"/documents/{doc['id']}/audit", headers=headers['employee'])
    assert [r['action'] for r in resp.get_json()['data']] == ['NEED.EDIT', 'NEED.CREATE']
    assert client.delete(f"/documents/{doc['id']}", headers=headers['employee']).status_code == 403
    resp = client.delete(f"/documents/{doc['id']}", headers=headers['logistics'])
    assert resp.get_json() == {'status': 'deleted', 'id': doc['id']}
    assert client.get(f"/documents/{doc['id']}", headers=headers['employee']).status_code == 404


def test_owner_only_actions_over_http(client, headers):
    doc = _create(client, headers['employee'], type='need', lines=LINES)
    colleague = _h('colleague@example.com', ROLE_EMPLOYEE)
    resp = _act(client, colleague, doc['id'], 'edit', title='hijacked')
    assert resp.status_code == 403
    err = resp.get_json()['error']
    assert (err['code'], err['reason']) == ('PERMISSION_DENIED', 'not_owner')
    resp = client.get(f"/documents/{doc['id']}/actions", headers=colleague)
    assert resp.get_json()['actions'] == []
    resp = client.get(f"/documents/{doc['id']}", headers=colleague)
    assert 'title' not in resp.get_json()['data']
    assert resp.get_json()['version'] == 1
