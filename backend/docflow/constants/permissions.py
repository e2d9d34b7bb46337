"""Central enum-like definitions for roles, modules and capabilities.
Extend cautiously; never rename codes silently, add new ones and migrate grants instead.
"""
from __future__ import annotations
from typing import Dict, List, Tuple

# --- Roles ---
ROLE_ADMIN = 'admin'
ROLE_DIRECTOR_GENERAL = 'director-general'
ROLE_FINANCE_DIRECTOR = 'finance-director'
ROLE_ACCOUNTANT = 'accountant'
ROLE_LOGISTICS_LEAD = 'logistics-lead'
ROLE_LOGISTICS_AGENT = 'logistics-agent'
ROLE_PROCUREMENT_LEAD = 'procurement-lead'
ROLE_PROCUREMENT_AGENT = 'procurement-agent'
ROLE_DEPARTMENT_LEAD = 'department-lead'
ROLE_EMPLOYEE = 'employee'
ROLE_READ_ONLY = 'read-only'
ROLE_PROCUREMENT_LOGISTICS_ADMIN = 'procurement-logistics-admin'

SUPERUSER_ROLE = ROLE_ADMIN

ROLES: Tuple[str, ...] = (
    ROLE_ADMIN,
    ROLE_DIRECTOR_GENERAL,
    ROLE_FINANCE_DIRECTOR,
    ROLE_ACCOUNTANT,
    ROLE_LOGISTICS_LEAD,
    ROLE_LOGISTICS_AGENT,
    ROLE_PROCUREMENT_LEAD,
    ROLE_PROCUREMENT_AGENT,
    ROLE_DEPARTMENT_LEAD,
    ROLE_EMPLOYEE,
    ROLE_READ_ONLY,
    ROLE_PROCUREMENT_LOGISTICS_ADMIN,
)

# --- Modules ---
MOD_NEED_EXPRESSION = 'need_expression'
MOD_NEED = 'need'
MOD_PURCHASE_REQUEST = 'purchase_request'
MOD_DELIVERY_NOTE = 'delivery_note'
MOD_EXPENSE_NOTE = 'expense_note'
MOD_OPERATIONAL_REPORT = 'operational_report'
MOD_ROLE_PERMISSIONS = 'role_permissions'
MOD_AUDIT = 'audit'

MODULES: Tuple[str, ...] = (
    MOD_NEED_EXPRESSION,
    MOD_NEED,
    MOD_PURCHASE_REQUEST,
    MOD_DELIVERY_NOTE,
    MOD_EXPENSE_NOTE,
    MOD_OPERATIONAL_REPORT,
    MOD_ROLE_PERMISSIONS,
    MOD_AUDIT,
)

MODULE_LABELS: Dict[str, str] = {
    MOD_NEED_EXPRESSION: 'Need expressions',
    MOD_NEED: 'Internal needs',
    MOD_PURCHASE_REQUEST: 'Purchase requests',
    MOD_DELIVERY_NOTE: 'Delivery notes',
    MOD_EXPENSE_NOTE: 'Expense notes',
    MOD_OPERATIONAL_REPORT: 'Operational reports',
    MOD_ROLE_PERMISSIONS: 'Roles & permissions',
    MOD_AUDIT: 'Audit log',
}

# Base quartet available on every module
BASE_ACTIONS: Tuple[str, ...] = ('view', 'read', 'write', 'delete')

# Lets a holder run owner-only actions on another user's document
ACT_FOR_OWNER = 'act-for-owner'

# Business actions registered explicitly per module (never derived from code strings)
BUSINESS_ACTIONS: Dict[str, Tuple[str, ...]] = {
    MOD_NEED_EXPRESSION: ('review', 'validate-department', 'send-to-logistics', ACT_FOR_OWNER),
    MOD_NEED: ('take-in-charge', 'decide', 'lock', ACT_FOR_OWNER),
    MOD_PURCHASE_REQUEST: (
        'analyze', 'price', 'validate-ops', 'submit-finance',
        'validate-finance', 'mark-paid', 'lock',
    ),
    MOD_DELIVERY_NOTE: ('validate', 'deliver', 'lock'),
    MOD_EXPENSE_NOTE: ('validate-finance', 'mark-paid', ACT_FOR_OWNER),
    MOD_OPERATIONAL_REPORT: ('validate', ACT_FOR_OWNER),
    MOD_ROLE_PERMISSIONS: (),
    MOD_AUDIT: (),
}

ACTION_LABELS: Dict[str, str] = {
    'view': 'View',
    'read': 'Read',
    'write': 'Write',
    'delete': 'Delete',
}


def build_catalog_entries() -> List[Tuple[str, str, bool]]:
    """Return (module, action, is_business) triples in declaration order."""
    entries: List[Tuple[str, str, bool]] = []
    for module in MODULES:
        for act in BASE_ACTIONS:
            entries.append((module, act, False))
        for act in BUSINESS_ACTIONS.get(module, ()):
            entries.append((module, act, True))
    return entries


def _all(module: str) -> List[Tuple[str, str]]:
    return [(module, a) for a in BASE_ACTIONS + BUSINESS_ACTIONS[module] if a != ACT_FOR_OWNER]


def _read(*modules: str) -> List[Tuple[str, str]]:
    return [(m, a) for m in modules for a in ('view', 'read')]


_DOC_MODULES = (
    MOD_NEED_EXPRESSION, MOD_NEED, MOD_PURCHASE_REQUEST,
    MOD_DELIVERY_NOTE, MOD_EXPENSE_NOTE, MOD_OPERATIONAL_REPORT,
)

# Role -> default grants. The superuser is absent on purpose: it is never stored in the matrix.
ROLE_PRESETS: Dict[str, List[Tuple[str, str]]] = {
    ROLE_DIRECTOR_GENERAL: _read(*_DOC_MODULES, MOD_AUDIT) + [
        (MOD_PURCHASE_REQUEST, 'validate-finance'),
        (MOD_OPERATIONAL_REPORT, 'validate'),
    ],
    ROLE_FINANCE_DIRECTOR: _read(*_DOC_MODULES, MOD_AUDIT) + [
        (MOD_PURCHASE_REQUEST, 'validate-finance'),
        (MOD_EXPENSE_NOTE, 'validate-finance'),
    ],
    ROLE_ACCOUNTANT: _read(MOD_PURCHASE_REQUEST, MOD_EXPENSE_NOTE) + [
        (MOD_PURCHASE_REQUEST, 'mark-paid'),
        (MOD_EXPENSE_NOTE, 'mark-paid'),
    ],
    ROLE_LOGISTICS_LEAD: _all(MOD_NEED) + _all(MOD_DELIVERY_NOTE) + _read(MOD_PURCHASE_REQUEST) + [
        (MOD_PURCHASE_REQUEST, 'write'),
    ],
    ROLE_LOGISTICS_AGENT: _read(MOD_NEED, MOD_DELIVERY_NOTE, MOD_PURCHASE_REQUEST) + [
        (MOD_NEED, 'take-in-charge'),
        (MOD_DELIVERY_NOTE, 'write'),
        (MOD_DELIVERY_NOTE, 'deliver'),
    ],
    ROLE_PROCUREMENT_LEAD: _read(MOD_NEED, MOD_DELIVERY_NOTE) + [
        (MOD_PURCHASE_REQUEST, a) for a in ('view', 'read', 'write', 'analyze', 'price', 'validate-ops', 'submit-finance', 'lock')
    ],
    ROLE_PROCUREMENT_AGENT: _read(MOD_PURCHASE_REQUEST) + [
        (MOD_PURCHASE_REQUEST, 'analyze'),
        (MOD_PURCHASE_REQUEST, 'price'),
    ],
    ROLE_DEPARTMENT_LEAD: _read(MOD_NEED_EXPRESSION, MOD_NEED) + [
        (MOD_NEED_EXPRESSION, a) for a in ('write', 'review', 'validate-department', 'send-to-logistics')
    ] + [(MOD_NEED, 'write'), (MOD_EXPENSE_NOTE, 'write'), (MOD_EXPENSE_NOTE, 'read')],
    ROLE_EMPLOYEE: [
        (MOD_NEED_EXPRESSION, 'view'), (MOD_NEED_EXPRESSION, 'read'), (MOD_NEED_EXPRESSION, 'write'),
        (MOD_NEED, 'view'), (MOD_NEED, 'read'), (MOD_NEED, 'write'),
        (MOD_EXPENSE_NOTE, 'view'), (MOD_EXPENSE_NOTE, 'read'), (MOD_EXPENSE_NOTE, 'write'),
    ],
    ROLE_READ_ONLY: _read(*_DOC_MODULES),
    ROLE_PROCUREMENT_LOGISTICS_ADMIN: _read(*_DOC_MODULES) + [
        (MOD_OPERATIONAL_REPORT, 'validate'),
        (MOD_OPERATIONAL_REPORT, 'write'),
    ],
}
