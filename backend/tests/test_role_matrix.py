import json
import pytest
from docflow.constants.permissions import (
    MOD_ROLE_PERMISSIONS, ROLE_ACCOUNTANT, ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_LOGISTICS_AGENT,
)
from docflow.errors import ImmutableRole, ValidationError
from docflow.services.catalog import Capability
from tests.test_utils_seed import seed_actor


@pytest.fixture()
def admin(app_context):
    return seed_actor('root@example.com', ROLE_ADMIN)


def test_grant_twice_equals_grant_once(services, admin):
    cap = services.catalog.get('need', 'decide')
    assert services.matrix.grant(ROLE_EMPLOYEE, cap, admin) is True
    once = services.matrix.export_json()
    assert services.matrix.grant(ROLE_EMPLOYEE, cap, admin) is False
    assert services.matrix.export_json() == once


def test_revoke_twice_equals_revoke_once(services, admin):
    cap = services.catalog.get('need', 'write')
    assert services.matrix.revoke(ROLE_EMPLOYEE, cap, admin) is True
    once = services.matrix.export_json()
    assert services.matrix.revoke(ROLE_EMPLOYEE, cap, admin) is False
    assert services.matrix.export_json() == once
    assert cap not in services.matrix.grants_for(ROLE_EMPLOYEE)


def test_superuser_is_immutable_and_keeps_full_catalog(services, admin):
    full = services.catalog.list_capabilities()
    for cap in sorted(full)[:10]:
        with pytest.raises(ImmutableRole):
            services.matrix.revoke(ROLE_ADMIN, cap, admin)
        assert services.effective_capabilities({ROLE_ADMIN}) == full
    with pytest.raises(ImmutableRole):
        services.matrix.grant(ROLE_ADMIN, Capability('need', 'read'), admin)


def test_unknown_role_and_capability_are_rejected(services, admin):
    with pytest.raises(ValidationError) as exc:
        services.matrix.grant('janitor', Capability('need', 'read'), admin)
    assert exc.value.reason == 'unknown_role'
    with pytest.raises(ValidationError) as exc:
        services.matrix.grant(ROLE_EMPLOYEE, Capability('need', 'teleport'), admin)
    assert exc.value.reason == 'unknown_capability'


def test_every_edit_is_audited_under_role_permissions(services, admin):
    cap = services.catalog.get('need', 'decide')
    services.matrix.grant(ROLE_EMPLOYEE, cap, admin)
    services.matrix.grant(ROLE_EMPLOYEE, cap, admin)
    services.matrix.revoke(ROLE_EMPLOYEE, cap, admin)
    rows, total = services.query_audit(entity=MOD_ROLE_PERMISSIONS)
    assert total == 3
    assert [r.action for r in rows] == ['ROLE_PERMISSIONS.REVOKE', 'ROLE_PERMISSIONS.GRANT', 'ROLE_PERMISSIONS.GRANT']
    assert rows[1].meta['changed'] is False
    assert rows[2].actor_user_id == admin.user_id
    assert rows[2].after == {'capability': 'need.decide', 'granted': True}


def test_export_import_round_trip_is_byte_for_byte(services, admin):
    original = services.matrix.export_json()
    snapshot = json.loads(original)
    catalog = services.catalog
    services.matrix.revoke(ROLE_EMPLOYEE, catalog.get('need', 'write'), admin)
    services.matrix.revoke(ROLE_ACCOUNTANT, catalog.get('expense_note', 'mark-paid'), admin)
    services.matrix.grant(ROLE_LOGISTICS_AGENT, catalog.get('need', 'decide'), admin)
    services.matrix.grant(ROLE_EMPLOYEE, catalog.get('audit', 'read'), admin)
    assert services.matrix.export_json() != original
    services.import_matrix(snapshot, admin)
    assert services.matrix.export_json() == original


def test_import_clears_roles_absent_from_snapshot(services, admin):
    snapshot = services.export_matrix()
    grants = {ROLE_EMPLOYEE: snapshot['grants'][ROLE_EMPLOYEE]}
    services.import_matrix({'grants': grants}, admin)
    assert services.matrix.grants_for(ROLE_ACCOUNTANT) == frozenset()
    assert services.matrix.grants_for(ROLE_EMPLOYEE)


def test_import_is_all_or_nothing(services, admin):
    before = services.matrix.export_json()
    bad = {'grants': {ROLE_EMPLOYEE: [['need', 'read']], ROLE_ACCOUNTANT: [['need', 'teleport']]}}
    with pytest.raises(ValidationError) as exc:
        services.import_matrix(bad, admin)
    assert exc.value.reason == 'unknown_capability'
    assert services.matrix.export_json() == before


def test_import_rejects_superuser_and_tampered_snapshots(services, admin):
    snapshot = services.export_matrix()
    with pytest.raises(ImmutableRole):
        services.import_matrix({'grants': {ROLE_ADMIN: [['need', 'read']]}}, admin)
    tampered = dict(snapshot, grants=dict(snapshot['grants'], employee=[]))
    with pytest.raises(ValidationError) as exc:
        services.import_matrix(tampered, admin)
    assert exc.value.reason == 'checksum_mismatch'
    with pytest.raises(ValidationError) as exc:
        services.import_matrix({'format': 'other/v9', 'grants': {}}, admin)
    assert exc.value.reason == 'unsupported_format'
    with pytest.raises(ValidationError) as exc:
        services.import_matrix(['not', 'a', 'mapping'], admin)
    assert exc.value.reason == 'malformed_snapshot'


def test_import_invalidates_evaluator_cache(services, admin):
    cap = services.catalog.get('need', 'write')
    assert services.authorize({ROLE_EMPLOYEE}, cap)
    snapshot = services.export_matrix()
    grants = dict(snapshot['grants'])
    grants[ROLE_EMPLOYEE] = [p for p in grants[ROLE_EMPLOYEE] if p != ['need', 'write']]
    services.import_matrix({'grants': grants}, admin)
    assert not services.authorize({ROLE_EMPLOYEE}, cap)
    rows, _ = services.query_audit(action='ROLE_PERMISSIONS.IMPORT')
    assert len(rows) == 1
