import pytest
from docflow.constants.permissions import BASE_ACTIONS, BUSINESS_ACTIONS, MODULES
from docflow.errors import UnknownCapability
from docflow.services.catalog import Capability, DEFAULT_CATALOG, PermissionCatalog


def test_every_module_has_base_actions_plus_its_business_actions():
    for module in MODULES:
        actions = DEFAULT_CATALOG.actions_for(module)
        assert actions[:len(BASE_ACTIONS)] == list(BASE_ACTIONS)
        assert set(actions) == set(BASE_ACTIONS) | set(BUSINESS_ACTIONS.get(module, ()))


def test_business_flag_and_code_are_derived():
    cap = DEFAULT_CATALOG.get('purchase_request', 'mark-paid')
    assert cap.code == 'purchase_request.mark-paid'
    assert DEFAULT_CATALOG.info(cap).is_business is True
    assert DEFAULT_CATALOG.info(DEFAULT_CATALOG.get('need', 'read')).is_business is False


def test_unknown_capability_is_a_configuration_fault():
    with pytest.raises(UnknownCapability) as exc:
        DEFAULT_CATALOG.get('need', 'teleport')
    assert exc.value.status_code == 500
    assert not DEFAULT_CATALOG.contains(Capability('need', 'teleport'))


def test_list_capabilities_is_frozen_and_complete():
    caps = DEFAULT_CATALOG.list_capabilities()
    assert isinstance(caps, frozenset)
    assert len(caps) == len(DEFAULT_CATALOG)
    assert Capability('role_permissions', 'write') in caps
    assert DEFAULT_CATALOG.modules() == list(MODULES)


def test_custom_catalog_from_entries():
    catalog = PermissionCatalog([('widget', 'read', False), ('widget', 'polish', True)])
    assert catalog.actions_for('widget') == ['read', 'polish']
    described = {d['code']: d['business'] for d in catalog.describe()}
    assert described == {'widget.read': False, 'widget.polish': True}
