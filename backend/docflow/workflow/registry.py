from __future__ import annotations
"""Document type registry: the single source of truth for statuses and transitions.

Usage:
    from docflow.workflow.registry import REGISTRY
    REGISTRY.initial_status('need')                   # 'draft'
    REGISTRY.resolve('need', 'submitted', 'take-in-charge')

Every (type, status, action) triple that is not declared here is an
InvalidTransition, whatever a caller believes the status vocabulary to be.
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from docflow.constants.permissions import (
    ACT_FOR_OWNER,
    MOD_DELIVERY_NOTE,
    MOD_EXPENSE_NOTE,
    MOD_NEED,
    MOD_NEED_EXPRESSION,
    MOD_OPERATIONAL_REPORT,
    MOD_PURCHASE_REQUEST,
)
from docflow.errors import InvalidTransition, UnknownCapability
from docflow.services.catalog import DEFAULT_CATALOG, Capability, PermissionCatalog
from docflow.workflow import guards as g

# Where a transition's ``reason`` payload is persisted
REASON_REJECTION = 'rejection_reason'
REASON_LOCK = 'locked_reason'

UNLOCK_ACTION = 'unlock'


@dataclass(frozen=True)
class Transition:
    action: str
    source: str
    target: Optional[str]  # None keeps the current status
    capability: Capability
    guards: Tuple[g.Guard, ...] = ()
    route: Optional[g.Route] = None
    milestone: Optional[str] = None
    payload_fields: Tuple[str, ...] = ()
    sets_amount: bool = False
    reason_field: Optional[str] = None
    clears_rejection: bool = False
    locks: bool = False
    unlocks: bool = False
    creates_child: Optional[str] = None
    owner_only: bool = False

    def target_for(self, current: str) -> str:
        return self.target if self.target is not None else current

    def describe(self) -> Dict[str, object]:
        return {
            'action': self.action,
            'from': self.source,
            'to': self.target_for(self.source),
            'requires': [g.guard_name(x) for x in self.guards],
            'routed': self.route is not None,
        }


@dataclass(frozen=True)
class DocumentType:
    name: str
    statuses: Tuple[str, ...]
    initial_status: str
    transitions: Tuple[Transition, ...]
    create_fields: Tuple[str, ...] = ('title', 'description', 'lines')
    parents: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def module(self) -> str:
        return self.name


class DocumentTypeRegistry:
    def __init__(self, types: Iterable[DocumentType], catalog: PermissionCatalog = DEFAULT_CATALOG):
        self._types: Dict[str, DocumentType] = {}
        self._index: Dict[Tuple[str, str, str], Transition] = {}
        for dt in types:
            self._types[dt.name] = dt
            for t in dt.transitions:
                key = (dt.name, t.source, t.action)
                if key in self._index:
                    raise ValueError(f'duplicate transition {key}')
                self._index[key] = t
        self._validate(catalog)

    def _validate(self, catalog: PermissionCatalog) -> None:
        for dt in self._types.values():
            if dt.initial_status not in dt.statuses:
                raise ValueError(f'{dt.name}: initial status {dt.initial_status} not declared')
            for t in dt.transitions:
                if t.source not in dt.statuses:
                    raise ValueError(f'{dt.name}: unknown source status {t.source}')
                if t.target is not None and t.target not in dt.statuses:
                    raise ValueError(f'{dt.name}: unknown target status {t.target}')
                if not catalog.contains(t.capability):
                    raise UnknownCapability(f'{dt.name}.{t.action} requires undeclared capability {t.capability.code}')
                if t.creates_child and t.creates_child not in self._types and t.creates_child not in _TYPE_NAMES:
                    raise ValueError(f'{dt.name}: unknown child type {t.creates_child}')
                if t.owner_only:
                    # raises UnknownCapability when the module has no override capability
                    catalog.get(dt.module, ACT_FOR_OWNER)

    # --- lookups ---
    def types(self) -> List[str]:
        return list(self._types)

    def definition(self, doc_type: str) -> DocumentType:
        dt = self._types.get(doc_type)
        if dt is None:
            raise InvalidTransition(f'Unknown document type {doc_type}', document_type=doc_type)
        return dt

    def has_type(self, doc_type: str) -> bool:
        return doc_type in self._types

    def initial_status(self, doc_type: str) -> str:
        return self.definition(doc_type).initial_status

    def statuses(self, doc_type: str) -> Tuple[str, ...]:
        return self.definition(doc_type).statuses

    def transitions(self, doc_type: str, status: str) -> List[Transition]:
        dt = self.definition(doc_type)
        if status not in dt.statuses:
            raise InvalidTransition(f'Unknown status {status} for {doc_type}', document_type=doc_type, status=status)
        return [t for t in dt.transitions if t.source == status]

    def resolve(self, doc_type: str, status: str, action: str) -> Transition:
        self.definition(doc_type)
        t = self._index.get((doc_type, status, action))
        if t is None:
            raise InvalidTransition(
                f'Action {action} is not allowed from status {status}',
                document_type=doc_type, status=status, action=action,
            )
        return t

    def unlocks(self, doc_type: str, action: str) -> bool:
        dt = self._types.get(doc_type)
        return bool(dt) and any(t.unlocks and t.action == action for t in dt.transitions)

    def reachable_statuses(self, doc_type: str) -> FrozenSet[str]:
        """Closure of statuses reachable from the initial status via declared edges."""
        dt = self.definition(doc_type)
        seen: Set[str] = {dt.initial_status}
        queue = deque([dt.initial_status])
        while queue:
            current = queue.popleft()
            for t in dt.transitions:
                if t.source == current:
                    nxt = t.target_for(current)
                    if nxt not in seen:
                        seen.add(nxt)
                        queue.append(nxt)
        return frozenset(seen)

    def edges(self, doc_type: str) -> Set[Tuple[str, str]]:
        dt = self.definition(doc_type)
        return {(t.source, t.target_for(t.source)) for t in dt.transitions}


_TYPE_NAMES = (
    MOD_NEED_EXPRESSION, MOD_NEED, MOD_PURCHASE_REQUEST,
    MOD_DELIVERY_NOTE, MOD_EXPENSE_NOTE, MOD_OPERATIONAL_REPORT,
)


def _cap(module: str, action: str) -> Capability:
    return DEFAULT_CATALOG.get(module, action)


def _edges(module: str, action: str, sources: Iterable[str], target: Optional[str], cap_action: str, **kw) -> List[Transition]:
    cap = _cap(module, cap_action)
    return [Transition(action=action, source=s, target=target, capability=cap, **kw) for s in sources]


def _lock_edges(module: str, statuses: Iterable[str]) -> List[Transition]:
    statuses = tuple(statuses)
    return (
        _edges(module, 'lock', statuses, None, 'lock',
               guards=(g.reason_required,), reason_field=REASON_LOCK, locks=True, milestone='locked_at')
        + _edges(module, UNLOCK_ACTION, statuses, None, 'lock', unlocks=True, milestone='unlocked_at')
    )


# --- need expression ---
_NE = MOD_NEED_EXPRESSION
NEED_EXPRESSION = DocumentType(
    name=_NE,
    statuses=('draft', 'submitted', 'under-review', 'validated-by-department',
              'rejected-by-department', 'sent-to-logistics', 'cancelled'),
    initial_status='draft',
    transitions=tuple(
        _edges(_NE, 'edit', ['draft'], None, 'write', payload_fields=('title', 'description', 'lines'),
               owner_only=True)
        + _edges(_NE, 'submit', ['draft'], 'submitted', 'write',
                 guards=(g.lines_present, g.lines_justified), milestone='submitted_at', owner_only=True)
        + _edges(_NE, 'start-review', ['submitted'], 'under-review', 'review', milestone='review_started_at')
        + _edges(_NE, 'validate', ['submitted', 'under-review'], 'validated-by-department', 'validate-department',
                 guards=(g.lines_present, g.lines_justified), payload_fields=('lines', 'review_comment'),
                 milestone='validated_at')
        + _edges(_NE, 'reject', ['submitted', 'under-review'], 'rejected-by-department', 'validate-department',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_NE, 'send-to-logistics', ['validated-by-department'], 'sent-to-logistics', 'send-to-logistics',
                 creates_child=MOD_NEED, locks=True, milestone='sent_at')
        + _edges(_NE, 'cancel', ['draft', 'submitted'], 'cancelled', 'write',
                 guards=(g.reason_required,), reason_field='cancellation_reason', milestone='cancelled_at',
                 owner_only=True)
    ),
)

# --- need ---
_N = MOD_NEED
NEED = DocumentType(
    name=_N,
    statuses=('draft', 'submitted', 'taken-in-charge', 'accepted', 'refused', 'returned', 'cancelled'),
    initial_status='draft',
    create_fields=('title', 'description', 'lines', 'category'),
    transitions=tuple(
        _edges(_N, 'edit', ['draft', 'submitted', 'returned'], None, 'write',
               payload_fields=('title', 'description', 'lines', 'category'), owner_only=True)
        + _edges(_N, 'submit', ['draft'], 'submitted', 'write',
                 guards=(g.lines_present, g.lines_justified), milestone='submitted_at', owner_only=True)
        + _edges(_N, 'resubmit', ['returned'], 'submitted', 'write',
                 guards=(g.lines_present, g.lines_justified), milestone='submitted_at', owner_only=True)
        + _edges(_N, 'take-in-charge', ['submitted'], 'taken-in-charge', 'take-in-charge', milestone='taken_at')
        + _edges(_N, 'accept', ['taken-in-charge'], 'accepted', 'decide', locks=True, milestone='decided_at')
        + _edges(_N, 'refuse', ['taken-in-charge'], 'refused', 'decide',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='decided_at')
        + _edges(_N, 'return', ['taken-in-charge'], 'returned', 'decide',
                 guards=(g.reason_required,), reason_field='return_comment', milestone='returned_at')
        + _edges(_N, 'cancel', ['draft', 'submitted', 'returned'], 'cancelled', 'write',
                 guards=(g.reason_required,), reason_field='cancellation_reason', milestone='cancelled_at',
                 owner_only=True)
        + _lock_edges(_N, ('draft', 'submitted', 'taken-in-charge', 'accepted', 'refused', 'returned', 'cancelled'))
    ),
)

# --- purchase request ---
_PR = MOD_PURCHASE_REQUEST
_PR_STATUSES = (
    'draft', 'submitted', 'rejected', 'under-analysis', 'priced', 'validated-by-ops', 'rejected-by-ops',
    'submitted-for-finance-validation', 'validated-by-finance', 'refused-by-finance',
    'under-procurement-revision', 'paid', 'rejected-by-accounting', 'cancelled',
)
_PAYMENT_FIELDS = ('accounting', 'payment_method', 'cash_register_id', 'paid_amount_cents')
PURCHASE_REQUEST = DocumentType(
    name=_PR,
    statuses=_PR_STATUSES,
    initial_status='draft',
    create_fields=('title', 'description', 'lines', 'priority', 'supplier'),
    parents={MOD_NEED: ('accepted',)},
    transitions=tuple(
        _edges(_PR, 'edit', ['draft'], None, 'write',
               payload_fields=('title', 'description', 'lines', 'priority', 'supplier'), sets_amount=True)
        + _edges(_PR, 'submit', ['draft'], 'submitted', 'write',
                 guards=(g.lines_present, g.lines_justified), milestone='submitted_at')
        + _edges(_PR, 'reject', ['submitted'], 'rejected', 'analyze',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_PR, 'take-for-analysis', ['submitted'], 'under-analysis', 'analyze', milestone='analyzed_at')
        + _edges(_PR, 'price', ['under-analysis'], 'priced', 'price',
                 guards=(g.payload_amount_required,), sets_amount=True,
                 payload_fields=('supplier', 'lines', 'pricing_notes'), milestone='priced_at')
        + _edges(_PR, 'validate-ops', ['priced'], 'validated-by-ops', 'validate-ops', milestone='ops_validated_at')
        + _edges(_PR, 'reject-ops', ['priced'], 'rejected-by-ops', 'validate-ops',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_PR, 'submit-for-finance', ['validated-by-ops'], 'submitted-for-finance-validation', 'submit-finance',
                 route=g.above_threshold, milestone='submitted_for_finance_at')
        + _edges(_PR, 'validate-finance', ['submitted-for-finance-validation'], 'validated-by-finance',
                 'validate-finance', payload_fields=('finance_comment',), milestone='finance_decided_at')
        + _edges(_PR, 'refuse-finance', ['submitted-for-finance-validation'], 'refused-by-finance',
                 'validate-finance', guards=(g.reason_required,), reason_field=REASON_REJECTION,
                 milestone='finance_decided_at')
        + _edges(_PR, 'request-revision', ['validated-by-finance'], 'under-procurement-revision', 'mark-paid',
                 guards=(g.reason_required,), reason_field='revision_comment', milestone='revision_requested_at')
        + _edges(_PR, 'reprice', ['under-procurement-revision'], 'priced', 'price',
                 guards=(g.payload_amount_required,), sets_amount=True,
                 payload_fields=('supplier', 'lines', 'pricing_notes'), milestone='priced_at')
        + _edges(_PR, 'mark-paid', ['validated-by-finance'], 'paid', 'mark-paid',
                 guards=(g.accounting_classification,), payload_fields=_PAYMENT_FIELDS, milestone='paid_at')
        + _edges(_PR, 'mark-paid', ['validated-by-ops'], 'paid', 'mark-paid', route=g.within_threshold,
                 guards=(g.accounting_classification, g.paid_amount_within_threshold),
                 payload_fields=_PAYMENT_FIELDS, milestone='paid_at')
        + _edges(_PR, 'reject-accounting', ['validated-by-finance'], 'rejected-by-accounting', 'mark-paid',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='accounting_decided_at')
        + _edges(_PR, 'reject-accounting', ['validated-by-ops'], 'rejected-by-accounting', 'mark-paid',
                 route=g.within_threshold, guards=(g.reason_required,), reason_field=REASON_REJECTION,
                 milestone='accounting_decided_at')
        + _edges(_PR, 'cancel', ['draft', 'submitted', 'under-analysis', 'priced', 'under-procurement-revision'],
                 'cancelled', 'write', guards=(g.reason_required,), reason_field='cancellation_reason',
                 milestone='cancelled_at')
        + _lock_edges(_PR, _PR_STATUSES)
    ),
)

# --- delivery note ---
_DN = MOD_DELIVERY_NOTE
_DN_STATUSES = ('prepared', 'pending-validation', 'validated', 'refused', 'delivered', 'partially-delivered', 'cancelled')
DELIVERY_NOTE = DocumentType(
    name=_DN,
    statuses=_DN_STATUSES,
    initial_status='prepared',
    create_fields=('title', 'description', 'lines', 'carrier', 'delivery_address'),
    parents={MOD_PURCHASE_REQUEST: ('paid',), MOD_NEED: ('accepted',)},
    transitions=tuple(
        _edges(_DN, 'edit', ['prepared'], None, 'write',
               payload_fields=('title', 'description', 'lines', 'carrier', 'delivery_address'))
        + _edges(_DN, 'submit-for-validation', ['prepared'], 'pending-validation', 'write',
                 guards=(g.lines_present,), milestone='submitted_at')
        + _edges(_DN, 'validate', ['pending-validation'], 'validated', 'validate', milestone='validated_at')
        + _edges(_DN, 'refuse', ['pending-validation'], 'refused', 'validate',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_DN, 'deliver', ['validated'], 'delivered', 'deliver',
                 payload_fields=('delivered_lines', 'receiver'), milestone='delivered_at')
        + _edges(_DN, 'deliver-partially', ['validated'], 'partially-delivered', 'deliver',
                 guards=(g.delivered_lines_present,), payload_fields=('delivered_lines', 'receiver'),
                 milestone='partially_delivered_at')
        + _edges(_DN, 'complete-delivery', ['partially-delivered'], 'delivered', 'deliver',
                 payload_fields=('delivered_lines', 'receiver'), milestone='delivered_at')
        + _edges(_DN, 'cancel', ['prepared', 'pending-validation'], 'cancelled', 'write',
                 guards=(g.reason_required,), reason_field='cancellation_reason', milestone='cancelled_at')
        + _lock_edges(_DN, _DN_STATUSES)
    ),
)

# --- expense note ---
_EN = MOD_EXPENSE_NOTE
EXPENSE_NOTE = DocumentType(
    name=_EN,
    statuses=('draft', 'submitted', 'validated-by-finance-director', 'paid', 'rejected'),
    initial_status='draft',
    create_fields=('title', 'description', 'lines', 'expense_date'),
    transitions=tuple(
        _edges(_EN, 'edit', ['draft', 'rejected'], None, 'write',
               payload_fields=('title', 'description', 'lines', 'expense_date'), sets_amount=True, owner_only=True)
        + _edges(_EN, 'submit', ['draft'], 'submitted', 'write', guards=(g.amount_required,), sets_amount=True,
                 milestone='submitted_at', owner_only=True)
        + _edges(_EN, 'resubmit', ['rejected'], 'submitted', 'write', guards=(g.amount_required,), sets_amount=True,
                 clears_rejection=True, milestone='submitted_at', owner_only=True)
        + _edges(_EN, 'validate-finance', ['submitted'], 'validated-by-finance-director', 'validate-finance',
                 milestone='validated_at')
        + _edges(_EN, 'reject', ['submitted'], 'rejected', 'validate-finance',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_EN, 'reject', ['validated-by-finance-director'], 'rejected', 'mark-paid',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_EN, 'mark-paid', ['validated-by-finance-director'], 'paid', 'mark-paid',
                 guards=(g.accounting_classification,), payload_fields=('accounting', 'payment_method', 'cash_register_id'),
                 milestone='paid_at')
    ),
)

# --- operational report ---
_OR = MOD_OPERATIONAL_REPORT
OPERATIONAL_REPORT = DocumentType(
    name=_OR,
    statuses=('draft', 'submitted', 'validated', 'rejected'),
    initial_status='draft',
    create_fields=('title', 'period', 'kpis', 'summary'),
    transitions=tuple(
        _edges(_OR, 'edit', ['draft'], None, 'write', payload_fields=('title', 'period', 'kpis', 'summary'),
               owner_only=True)
        + _edges(_OR, 'submit', ['draft'], 'submitted', 'write', guards=(g.fields_present('period'),),
                 milestone='submitted_at', owner_only=True)
        + _edges(_OR, 'validate', ['submitted'], 'validated', 'validate',
                 payload_fields=('review_comment',), milestone='validated_at')
        + _edges(_OR, 'reject', ['submitted'], 'rejected', 'validate',
                 guards=(g.reason_required,), reason_field=REASON_REJECTION, milestone='rejected_at')
        + _edges(_OR, 'revise', ['rejected'], 'draft', 'write', clears_rejection=True, milestone='revised_at',
                 owner_only=True)
    ),
)

REGISTRY = DocumentTypeRegistry(
    [NEED_EXPRESSION, NEED, PURCHASE_REQUEST, DELIVERY_NOTE, EXPENSE_NOTE, OPERATIONAL_REPORT]
)

__all__ = [
    'Transition', 'DocumentType', 'DocumentTypeRegistry', 'REGISTRY',
    'REASON_REJECTION', 'REASON_LOCK', 'UNLOCK_ACTION',
]
