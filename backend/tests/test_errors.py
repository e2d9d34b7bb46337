from docflow.constants.permissions import ROLE_ADMIN
from docflow.errors import LockedDocument, UnknownCapability
from tests.test_utils_seed import role_headers


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_healthz(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}


def test_internal_error_shape(client, app_context, monkeypatch):
    headers = role_headers('err@example.com', ROLE_ADMIN)
    # Monkeypatch AFTER issuing the token so auth works; only break the export
    import docflow.routes.iam as iam_mod

    def boom():
        raise RuntimeError('explode')
    monkeypatch.setattr(iam_mod, 'get_services', lambda: type('Boom', (), {'export_matrix': staticmethod(boom)})())
    resp = client.get('/iam/matrix/export', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'
    assert 'explode' not in body['error']['detail']


def test_workflow_error_envelope_carries_details():
    body = LockedDocument(document_id=4, action='edit', locked_reason='purchase_request#9').to_dict()
    assert body == {
        'status': 423,
        'title': 'Locked',
        'detail': 'Document is locked',
        'code': 'LOCKED_DOCUMENT',
        'document_id': 4,
        'action': 'edit',
        'locked_reason': 'purchase_request#9',
    }


def test_configuration_fault_is_a_500(client, app_context, monkeypatch):
    headers = role_headers('err@example.com', ROLE_ADMIN)
    import docflow.routes.iam as iam_mod

    def broken():
        raise UnknownCapability('need.teleport is not declared')
    monkeypatch.setattr(iam_mod, 'get_services', lambda: type('Broken', (), {'export_matrix': staticmethod(broken)})())
    resp = client.get('/iam/matrix/export', headers=headers)
    assert resp.status_code == 500
    assert resp.get_json()['error']['code'] == 'UNKNOWN_CAPABILITY'
