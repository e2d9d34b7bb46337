import pytest
from docflow.constants.permissions import (
    ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_FINANCE_DIRECTOR, ROLE_LOGISTICS_AGENT, ROLE_READ_ONLY,
)
from tests.test_utils_seed import ensure_user, role_headers


@pytest.fixture()
def admin_headers(app_context):
    return role_headers('root@example.com', ROLE_ADMIN)


@pytest.fixture()
def employee_headers(app_context):
    return role_headers('employee@example.com', ROLE_EMPLOYEE)


def test_login_success_and_me(client, app_context):
    ensure_user('alice@example.com', [ROLE_EMPLOYEE, ROLE_READ_ONLY], password='secret')
    resp = client.post('/iam/auth/login', json={'email': 'alice@example.com', 'password': 'secret'})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['roles'] == [ROLE_EMPLOYEE, ROLE_READ_ONLY]
    headers = {'Authorization': f"Bearer {body['access_token']}"}
    me = client.get('/iam/auth/me', headers=headers).get_json()
    assert me['email'] == 'alice@example.com'
    assert me['department'] == 'ops'
    assert 'need.write' in me['capabilities']
    assert 'need.take-in-charge' not in me['capabilities']


def test_login_failure_is_audited(client, services):
    ensure_user('bob@example.com', [ROLE_EMPLOYEE], password='right')
    resp = client.post('/iam/auth/login', json={'email': 'bob@example.com', 'password': 'wrong'})
    assert resp.status_code == 401
    assert resp.get_json()['error']['status'] == 401
    rows, total = services.query_audit(action='AUTH.LOGIN')
    assert total == 1
    assert rows[0].outcome == 'failure'
    assert rows[0].meta['email'] == 'bob@example.com'
    assert client.post('/iam/auth/login', json={'email': 'bob@example.com'}).status_code == 400


def test_capabilities_catalog_and_mine(client, services, employee_headers):
    resp = client.get('/iam/capabilities', headers=employee_headers)
    data = resp.get_json()['data']
    assert len(data) == len(services.catalog.list_capabilities())
    take = next(c for c in data if c['code'] == 'need.take-in-charge')
    assert take['is_business'] is True
    mine = client.get('/iam/capabilities?mine=1', headers=employee_headers).get_json()['data']
    assert {c['code'] for c in mine} == {c.code for c in services.effective_capabilities({ROLE_EMPLOYEE})}


def test_role_permissions_require_capability(client, employee_headers):
    resp = client.get(f'/iam/roles/{ROLE_EMPLOYEE}/permissions', headers=employee_headers)
    assert resp.status_code == 403
    assert resp.get_json()['error']['code'] == 'PERMISSION_DENIED'
    resp = client.put(f'/iam/roles/{ROLE_EMPLOYEE}/permissions/need/decide', headers=employee_headers)
    assert resp.status_code == 403


def test_forbidden_body_does_not_name_the_missing_capability(client, employee_headers):
    for call in (client.put, client.delete):
        resp = call(f'/iam/roles/{ROLE_EMPLOYEE}/permissions/need/delete', headers=employee_headers)
        assert resp.status_code == 403
        err = resp.get_json()['error']
        assert err == {'status': 403, 'title': 'Forbidden', 'detail': 'Permission denied', 'code': 'PERMISSION_DENIED'}
    resp = client.get('/iam/audit/logs', headers=employee_headers)
    assert resp.status_code == 403
    assert 'audit.' not in resp.get_data(as_text=True)


def test_admin_role_listing_is_full_catalog_and_immutable(client, services, admin_headers):
    body = client.get(f'/iam/roles/{ROLE_ADMIN}/permissions', headers=admin_headers).get_json()
    assert body['immutable'] is True
    assert len(body['permissions']) == len(services.catalog.list_capabilities())
    resp = client.delete(f'/iam/roles/{ROLE_ADMIN}/permissions/need/read', headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'IMMUTABLE_ROLE'


def test_grant_and_revoke_over_http(client, services, admin_headers):
    url = f'/iam/roles/{ROLE_LOGISTICS_AGENT}/permissions/need/decide'
    body = client.put(url, headers=admin_headers).get_json()
    assert body == {'role': ROLE_LOGISTICS_AGENT, 'capability': 'need.decide', 'granted': True, 'changed': True}
    assert client.put(url, headers=admin_headers).get_json()['changed'] is False
    listing = client.get(f'/iam/roles/{ROLE_LOGISTICS_AGENT}/permissions', headers=admin_headers).get_json()
    assert 'need.decide' in {p['code'] for p in listing['permissions']}
    body = client.delete(url, headers=admin_headers).get_json()
    assert body['granted'] is False and body['changed'] is True
    assert not services.authorize({ROLE_LOGISTICS_AGENT}, services.catalog.get('need', 'decide'))


def test_grant_rejects_unknown_role_or_capability(client, admin_headers):
    resp = client.put('/iam/roles/janitor/permissions/need/read', headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['reason'] == 'unknown_role'
    resp = client.put(f'/iam/roles/{ROLE_EMPLOYEE}/permissions/need/teleport', headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['reason'] == 'unknown_capability'


def test_matrix_export_import_over_http(client, services, admin_headers):
    snapshot = client.get('/iam/matrix/export', headers=admin_headers).get_json()
    assert snapshot['format'] and snapshot['checksum']
    assert ROLE_ADMIN not in snapshot['grants']
    client.delete(f'/iam/roles/{ROLE_EMPLOYEE}/permissions/need/write', headers=admin_headers)
    resp = client.post('/iam/matrix/import', json=snapshot, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json() == snapshot
    assert services.authorize({ROLE_EMPLOYEE}, services.catalog.get('need', 'write'))
    resp = client.post('/iam/matrix/import', json={'grants': {ROLE_ADMIN: []}}, headers=admin_headers)
    assert resp.status_code == 400


def test_audit_logs_endpoint(client, app_context, admin_headers):
    finance = role_headers('finance@example.com', ROLE_FINANCE_DIRECTOR)
    employee = role_headers('employee@example.com', ROLE_EMPLOYEE)
    client.put(f'/iam/roles/{ROLE_LOGISTICS_AGENT}/permissions/need/decide', headers=admin_headers)
    client.post('/documents', json={'type': 'need', 'title': 'Desk'}, headers=employee)

    resp = client.get('/iam/audit/logs', headers=finance)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['pagination']['total'] == 2
    assert [r['action'] for r in body['data']] == ['NEED.CREATE', 'ROLE_PERMISSIONS.GRANT']

    resp = client.get('/iam/audit/logs?entity=role_permissions&limit=1', headers=finance)
    assert resp.get_json()['data'][0]['after'] == {'capability': 'need.decide', 'granted': True}
    resp = client.get('/iam/audit/logs?from=2999-01-01T00:00:00Z', headers=finance)
    assert resp.get_json()['pagination']['total'] == 0
    resp = client.get('/iam/audit/logs?actor_id=abc', headers=finance)
    assert resp.get_json()['error']['reason'] == 'invalid_filter'
    resp = client.get('/iam/audit/logs?from=yesterday', headers=finance)
    assert resp.status_code == 400
    assert client.get('/iam/audit/logs', headers=employee).status_code == 403
