from __future__ import annotations
"""Transition guards and routing conditions.

A guard inspects the document and the transition payload and raises
ValidationError (machine-readable ``reason``) or ThresholdViolation. A routing
condition decides whether an edge exists at all for this document; a false
condition makes the transition unresolvable.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from docflow.errors import ThresholdViolation, ValidationError

URGENCY_LEVELS = ('low', 'normal', 'high', 'urgent', 'critical')
URGENCY_RANK = {name: i for i, name in enumerate(URGENCY_LEVELS)}
DEFAULT_URGENCY = 'normal'


@dataclass(frozen=True)
class GuardContext:
    finance_threshold_cents: int
    actor: Any = None


Guard = Callable[[Any, Mapping[str, Any], GuardContext], None]
Route = Callable[[Any, GuardContext], bool]


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def effective_lines(document, payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Lines the document will carry after the transition: payload lines win over stored ones."""
    if 'lines' in payload and payload['lines'] is not None:
        lines = payload['lines']
    else:
        lines = (document.data or {}).get('lines') or []
    if not isinstance(lines, list):
        raise ValidationError('lines must be a list', reason='invalid_lines')
    return lines


def validate_lines(lines) -> List[Dict[str, Any]]:
    """Structural check shared by creation, edit and guards."""
    if not isinstance(lines, list):
        raise ValidationError('lines must be a list', reason='invalid_lines')
    clean = []
    for idx, line in enumerate(lines):
        if not isinstance(line, Mapping):
            raise ValidationError('line must be an object', reason='invalid_lines', line=idx)
        urgency = line.get('urgency') or DEFAULT_URGENCY
        if urgency not in URGENCY_RANK:
            raise ValidationError(f'unknown urgency {urgency}', reason='invalid_urgency', line=idx)
        qty = line.get('quantity', 1)
        if isinstance(qty, bool) or not isinstance(qty, (int, float)) or qty <= 0:
            raise ValidationError('quantity must be a positive number', reason='invalid_quantity', line=idx)
        item = dict(line)
        item['urgency'] = urgency
        clean.append(item)
    return clean


def validate_amount(value, field: str = 'amount_cents') -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f'{field} must be a positive integer', reason='invalid_amount', field=field)
    return value


# --- guards ---

def reason_required(document, payload, ctx) -> None:
    if not _text(payload.get('reason')):
        raise ValidationError('A non-empty reason is required', reason='reason_required')


def lines_present(document, payload, ctx) -> None:
    if not effective_lines(document, payload):
        raise ValidationError('At least one line item is required', reason='lines_required')


def lines_justified(document, payload, ctx) -> None:
    """Lines with urgency above normal must carry a justification."""
    for idx, line in enumerate(validate_lines(effective_lines(document, payload))):
        if URGENCY_RANK[line['urgency']] > URGENCY_RANK[DEFAULT_URGENCY] and not _text(line.get('justification')):
            raise ValidationError(
                'Justification required for urgency above normal',
                reason='justification_required', line=idx,
            )


def amount_required(document, payload, ctx) -> None:
    if 'amount_cents' in payload:
        validate_amount(payload.get('amount_cents'))
        return
    if document.amount_cents is None:
        raise ValidationError('amount_cents is required', reason='amount_required')
    validate_amount(document.amount_cents)


def payload_amount_required(document, payload, ctx) -> None:
    if 'amount_cents' not in payload:
        raise ValidationError('amount_cents is required', reason='amount_required')
    validate_amount(payload.get('amount_cents'))


def accounting_classification(document, payload, ctx) -> None:
    acc = payload.get('accounting')
    if not isinstance(acc, Mapping):
        raise ValidationError('accounting classification is required', reason='accounting_required')
    klass = acc.get('class')
    if isinstance(klass, bool) or not isinstance(klass, int) or not 1 <= klass <= 9:
        raise ValidationError('accounting.class must be an integer 1..9', reason='invalid_accounting_class')
    for key in ('account', 'charge_nature'):
        if not _text(acc.get(key)):
            raise ValidationError(f'accounting.{key} is required', reason='accounting_incomplete', field=key)


def delivered_lines_present(document, payload, ctx) -> None:
    delivered = payload.get('delivered_lines')
    if not isinstance(delivered, list) or not delivered:
        raise ValidationError('delivered_lines must list at least one line', reason='delivered_lines_required')


def fields_present(*names: str) -> Guard:
    def guard(document, payload, ctx) -> None:
        data = document.data or {}
        for name in names:
            value = payload.get(name, data.get(name))
            if value in (None, '', [], {}):
                raise ValidationError(f'{name} is required', reason='field_required', field=name)
    guard.__name__ = f"fields_present({','.join(names)})"
    return guard


def paid_amount_within_threshold(document, payload, ctx) -> None:
    """A request paid without finance validation may not be paid above the threshold."""
    paid = payload.get('paid_amount_cents')
    if paid is None:
        return
    validate_amount(paid, 'paid_amount_cents')
    if paid > ctx.finance_threshold_cents:
        raise ThresholdViolation(
            'Paid amount exceeds the finance validation threshold',
            reason='paid_above_threshold', threshold_cents=ctx.finance_threshold_cents,
        )


# --- routing conditions ---

def _amount_for_routing(document) -> int:
    if document.amount_cents is None:
        raise ThresholdViolation('Amount required to route this document', reason='amount_missing', document_id=document.id)
    return document.amount_cents


def above_threshold(document, ctx: GuardContext) -> bool:
    return _amount_for_routing(document) > ctx.finance_threshold_cents


def within_threshold(document, ctx: GuardContext) -> bool:
    return _amount_for_routing(document) <= ctx.finance_threshold_cents


def guard_name(guard: Optional[Callable]) -> Optional[str]:
    return getattr(guard, '__name__', None) if guard else None


__all__ = [
    'URGENCY_LEVELS', 'GuardContext', 'effective_lines', 'validate_lines', 'validate_amount',
    'reason_required', 'lines_present', 'lines_justified', 'amount_required', 'payload_amount_required',
    'accounting_classification', 'delivered_lines_present', 'fields_present',
    'paid_amount_within_threshold', 'above_threshold', 'within_threshold', 'guard_name',
]
