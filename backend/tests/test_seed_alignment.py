from docflow import get_db
from docflow.constants.permissions import ROLE_PRESETS, SUPERUSER_ROLE
from docflow.models.authz import Role
from docflow.services.bootstrap import bootstrap, role_grant_map
from docflow.workflow.registry import REGISTRY
from scripts.seed_authz import find_problems


def test_transition_capabilities_exist_in_some_role():
    # Collect capabilities required by declared transitions
    required = set()
    for doc_type in REGISTRY.types():
        for status in REGISTRY.statuses(doc_type):
            required.update(t.capability.code for t in REGISTRY.transitions(doc_type, status))
    granted = {f'{m}.{a}' for role, pairs in ROLE_PRESETS.items() if role != SUPERUSER_ROLE for m, a in pairs}
    missing = sorted(required - granted)
    assert not missing, f"Transition capabilities not present in any concrete role: {missing}"


def test_bootstrap_is_idempotent(services):
    session = get_db()
    assert bootstrap(session, services.catalog, with_admin=False) == {'permissions_created': 0, 'grants_added': 0}
    session.commit()
    grants = role_grant_map(session)
    assert not grants.get(SUPERUSER_ROLE)
    assert len(grants['employee']) == len(ROLE_PRESETS['employee'])


def test_seeded_database_has_no_problems(services):
    assert find_problems(get_db(), services.catalog) == []


def test_unknown_role_is_reported(services):
    session = get_db()
    session.add(Role(name='janitor', is_system=False))
    session.flush()
    problems = find_problems(session, services.catalog)
    session.rollback()
    assert problems == ['Unknown role persisted: janitor']
