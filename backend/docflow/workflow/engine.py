from __future__ import annotations
"""Workflow engine: the only code path that mutates documents.

``apply`` runs the transition algorithm in two halves so the optimistic
concurrency check is explicit:

    prepared = engine.prepare(doc_id, 'accept', actor, payload)   # load, lock, resolve, authorize, guard
    result = engine.commit(prepared)                              # conditional update, side effects, audit

``commit`` issues ``UPDATE documents ... WHERE id=? AND status=? AND version=?``
with the values observed by ``prepare``; any other writer in between makes the
update match zero rows and the call fails with ConcurrencyConflict. State
change, related-document side effects and the audit entry share one
transaction. Rejected attempts are audited afterwards with outcome=failure.
The engine never retries.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select, update

from docflow.constants.permissions import ACT_FOR_OWNER
from docflow.errors import (
    ConcurrencyConflict,
    InvalidTransition,
    LockedDocument,
    NotFound,
    PermissionDenied,
    ThresholdViolation,
    ValidationError,
    WorkflowError,
)
from docflow.models.audit import OUTCOME_FAILURE
from docflow.models.document import WorkflowDocument
from docflow.workflow import events
from docflow.workflow.guards import GuardContext, validate_amount, validate_lines
from docflow.workflow.registry import REASON_LOCK, REASON_REJECTION, Transition

log = logging.getLogger(__name__)

ACTION_CREATE = 'create'
ACTION_DELETE = 'delete'
ACTION_LINK_CHILD = 'link-child'
SUBMIT_ACTION = 'submit'
CANCELLED_STATUS = 'cancelled'

# Status a transition-spawned child is born in
SUBMIT_TARGETS = {'need': 'submitted'}


def audit_action(doc_type: str, action: str) -> str:
    """``need`` + ``take-in-charge`` -> ``NEED.TAKE_IN_CHARGE``"""
    return f"{doc_type.upper()}.{action.upper().replace('-', '_')}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PreparedTransition:
    document_id: int
    doc_type: str
    action: str
    transition: Transition
    actor: Any
    payload: Dict[str, Any]
    observed_status: str
    observed_version: int
    before: Dict[str, Any]

    @property
    def target_status(self) -> str:
        return self.transition.target_for(self.observed_status)


@dataclass(frozen=True)
class TransitionResult:
    document_id: int
    doc_type: str
    action: str
    previous_status: str
    status: str
    version: int
    locked: bool
    child_id: Optional[int] = None

    def to_json(self) -> Dict[str, Any]:
        body = {
            'id': self.document_id,
            'type': self.doc_type,
            'action': self.action,
            'previous_status': self.previous_status,
            'status': self.status,
            'version': self.version,
            'locked': self.locked,
        }
        if self.child_id is not None:
            body['child_id'] = self.child_id
        return body


class WorkflowEngine:
    def __init__(self, registry, evaluator, audit, session_factory, finance_threshold_cents: int):
        self.registry = registry
        self.evaluator = evaluator
        self.audit = audit
        self.session_factory = session_factory
        self.finance_threshold_cents = finance_threshold_cents

    def _ctx(self, actor) -> GuardContext:
        return GuardContext(finance_threshold_cents=self.finance_threshold_cents, actor=actor)

    # ------------------------------------------------------------------ reads
    def _load(self, session, document_id: int) -> WorkflowDocument:
        doc = session.get(WorkflowDocument, document_id, populate_existing=True)
        if doc is None:
            raise NotFound(document_id=document_id)
        return doc

    def _require(self, actor, capability, **details) -> None:
        if not self.evaluator.authorize(actor.roles, capability):
            raise PermissionDenied(**details)

    def get_document(self, document_id: int, actor) -> WorkflowDocument:
        session = self.session_factory()
        doc = self._load(session, document_id)
        self._require(actor, self._capability(doc.doc_type, 'read'), document_id=document_id, action='read')
        return doc

    def _capability(self, doc_type: str, action: str):
        return self.evaluator.catalog.get(doc_type, action)

    def viewable_types(self, actor) -> List[str]:
        caps = self.evaluator.effective_capabilities(actor.roles)
        return [t for t in self.registry.types() if self._capability(t, 'view') in caps]

    def visible_query(self, actor, doc_type: Optional[str] = None):
        """Base query over the documents the actor may list."""
        session = self.session_factory()
        if doc_type is not None:
            if not self.registry.has_type(doc_type):
                raise ValidationError(f'Unknown document type {doc_type}', reason='unknown_document_type')
            self._require(actor, self._capability(doc_type, 'view'), document_type=doc_type, action='view')
            types = [doc_type]
        else:
            types = self.viewable_types(actor)
        return session.query(WorkflowDocument).filter(WorkflowDocument.doc_type.in_(types))

    def acts_as_owner(self, actor, doc: WorkflowDocument) -> bool:
        """Owner of ``doc``, or holder of the type's act-for-owner capability."""
        user_id = getattr(actor, 'user_id', None)
        if user_id is not None and doc.owner_id == user_id:
            return True
        return self.evaluator.authorize(actor.roles, self._capability(doc.doc_type, ACT_FOR_OWNER))

    def available_actions(self, document_id: int, actor) -> List[Dict[str, Any]]:
        """Actions the actor could apply right now (resolvable, routed, authorized, not lock-blocked)."""
        session = self.session_factory()
        doc = self._load(session, document_id)
        self._require(actor, self._capability(doc.doc_type, 'read'), document_id=document_id, action='read')
        ctx = self._ctx(actor)
        caps = self.evaluator.effective_capabilities(actor.roles)
        out = []
        for t in self.registry.transitions(doc.doc_type, doc.status):
            if doc.locked != t.unlocks:
                continue
            if t.route is not None:
                try:
                    if not t.route(doc, ctx):
                        continue
                except ThresholdViolation:
                    continue
            if t.capability not in caps:
                continue
            if t.owner_only and not self.acts_as_owner(actor, doc):
                continue
            out.append(t.describe())
        return out

    # ------------------------------------------------------------ transitions
    def apply(self, document_id: int, action: str, actor, payload: Optional[Mapping[str, Any]] = None,
              expected_version: Optional[int] = None) -> TransitionResult:
        try:
            prepared = self.prepare(document_id, action, actor, payload, expected_version)
            return self.commit(prepared)
        except WorkflowError as err:
            self._audit_failure(actor, action, document_id, err)
            raise

    def prepare(self, document_id: int, action: str, actor, payload: Optional[Mapping[str, Any]] = None,
                expected_version: Optional[int] = None) -> PreparedTransition:
        payload = dict(payload or {})
        session = self.session_factory()
        # 1. load
        doc = self._load(session, document_id)
        if expected_version is not None and doc.version != expected_version:
            raise ConcurrencyConflict(document_id=doc.id, action=action, expected_version=expected_version,
                                      current_version=doc.version)
        # 2. lock
        if doc.locked and not self.registry.unlocks(doc.doc_type, action):
            raise LockedDocument(document_id=doc.id, action=action, locked_reason=doc.locked_reason)
        # 3. resolve (routing conditions are part of resolution)
        transition = self.registry.resolve(doc.doc_type, doc.status, action)
        if transition.unlocks and not doc.locked:
            raise InvalidTransition('Document is not locked', document_id=doc.id, action=action, reason='not_locked')
        ctx = self._ctx(actor)
        if transition.route is not None and not transition.route(doc, ctx):
            raise InvalidTransition(
                f'Action {action} is not on the approval route for this amount',
                document_id=doc.id, action=action, status=doc.status, reason='route_not_applicable',
            )
        # 4. authorize
        self._require(actor, transition.capability, document_id=doc.id, action=action)
        if transition.owner_only and not self.acts_as_owner(actor, doc):
            raise PermissionDenied(document_id=doc.id, action=action, reason='not_owner')
        # 5. guards and payload shape
        for guard in transition.guards:
            guard(doc, payload, ctx)
        self._check_payload(transition, payload)
        return PreparedTransition(
            document_id=doc.id,
            doc_type=doc.doc_type,
            action=action,
            transition=transition,
            actor=actor,
            payload=payload,
            observed_status=doc.status,
            observed_version=doc.version,
            before=doc.snapshot(),
        )

    def commit(self, prepared: PreparedTransition) -> TransitionResult:
        session = self.session_factory()
        t = prepared.transition
        child = None
        try:
            values = self._changes(t, prepared.before, prepared.payload, prepared.actor)
            # 6. optimistic concurrency: status and version must be what prepare() saw
            res = session.execute(
                update(WorkflowDocument)
                .where(
                    WorkflowDocument.id == prepared.document_id,
                    WorkflowDocument.status == prepared.observed_status,
                    WorkflowDocument.version == prepared.observed_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise ConcurrencyConflict(
                    document_id=prepared.document_id, action=prepared.action,
                    expected_status=prepared.observed_status, expected_version=prepared.observed_version,
                )
            doc = self._load(session, prepared.document_id)
            # 7. side effects + audit, same transaction
            if t.creates_child:
                child = self._spawn_child(session, doc, t.creates_child, prepared.actor)
            self.audit.append(
                prepared.actor,
                audit_action(doc.doc_type, prepared.action),
                entity=doc.doc_type,
                entity_id=doc.id,
                before=prepared.before,
                after=doc.snapshot(),
                meta={'from': prepared.observed_status, 'to': doc.status,
                      **({'child_id': child.id} if child is not None else {})},
                session=session,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        log.info('%s #%s %s: %s -> %s', doc.doc_type, doc.id, prepared.action, prepared.observed_status, doc.status)
        result = TransitionResult(
            document_id=doc.id,
            doc_type=doc.doc_type,
            action=prepared.action,
            previous_status=prepared.observed_status,
            status=doc.status,
            version=doc.version,
            locked=bool(doc.locked),
            child_id=child.id if child is not None else None,
        )
        # 8. notify
        events.publish(events.document_transitioned, self, document=doc, transition=t,
                       actor=prepared.actor, result=result)
        if child is not None:
            events.publish(events.document_created, self, document=child, actor=prepared.actor)
        return result

    # --------------------------------------------------------------- creation
    def create_document(self, doc_type: str, owner, department: Optional[str] = None,
                        payload: Optional[Mapping[str, Any]] = None, parent_id: Optional[int] = None,
                        submit: bool = False) -> WorkflowDocument:
        """Create a document owned by ``owner`` in the type's initial status.

        With ``submit=True`` the ``submit`` transition runs in the same
        transaction, so the document is first observed as submitted.
        """
        try:
            return self._create(doc_type, owner, department, dict(payload or {}), parent_id, submit)
        except WorkflowError as err:
            # no document exists yet; the parent is recorded in meta
            self._audit_failure(owner, ACTION_CREATE, None, err, doc_type=doc_type,
                                meta={'parent_id': parent_id} if parent_id is not None else None)
            raise

    def _create(self, doc_type, owner, department, payload, parent_id, submit) -> WorkflowDocument:
        if not self.registry.has_type(doc_type):
            raise ValidationError(f'Unknown document type {doc_type}', reason='unknown_document_type')
        definition = self.registry.definition(doc_type)
        self._require(owner, self._capability(doc_type, 'write'), document_type=doc_type, action=ACTION_CREATE)
        data = {k: payload[k] for k in definition.create_fields if k in payload}
        if 'lines' in data:
            data['lines'] = validate_lines(data['lines'])
        amount = payload.get('amount_cents')
        if amount is not None:
            validate_amount(amount)

        submit_t = None
        if submit:
            submit_t = self.registry.resolve(doc_type, definition.initial_status, SUBMIT_ACTION)
            self._require(owner, submit_t.capability, document_type=doc_type, action=SUBMIT_ACTION)

        session = self.session_factory()
        try:
            parent = None
            if parent_id is not None:
                parent = self._check_parent(session, definition, parent_id)
            doc = WorkflowDocument(
                doc_type=doc_type,
                status=definition.initial_status,
                owner_id=owner.user_id,
                department=department,
                amount_cents=amount,
                locked=False,
                parent_id=parent.id if parent is not None else None,
                data=data,
                milestones={},
                version=1,
            )
            session.add(doc)
            session.flush()
            self.audit.append(owner, audit_action(doc_type, ACTION_CREATE), entity=doc_type, entity_id=doc.id,
                              after=doc.snapshot(), meta={'parent_id': doc.parent_id} if parent else None,
                              session=session)
            if parent is not None:
                self._lock_parent(session, parent, doc, owner)
            if submit_t is not None:
                ctx = self._ctx(owner)
                for guard in submit_t.guards:
                    guard(doc, {}, ctx)
                before = doc.snapshot()
                for key, value in self._changes(submit_t, before, {}, owner).items():
                    setattr(doc, key, value)
                session.flush()
                self.audit.append(owner, audit_action(doc_type, SUBMIT_ACTION), entity=doc_type, entity_id=doc.id,
                                  before=before, after=doc.snapshot(),
                                  meta={'from': before['status'], 'to': doc.status}, session=session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        log.info('created %s #%s (%s)', doc_type, doc.id, doc.status)
        events.publish(events.document_created, self, document=doc, actor=owner)
        return doc

    def _check_parent(self, session, definition, parent_id: int) -> WorkflowDocument:
        parent = session.get(WorkflowDocument, parent_id, populate_existing=True)
        if parent is None:
            raise NotFound('Parent document not found', document_id=parent_id)
        allowed = definition.parents.get(parent.doc_type)
        if allowed is None or parent.status not in allowed:
            raise InvalidTransition(
                f'A {definition.name} cannot be created from a {parent.doc_type} in status {parent.status}',
                document_id=parent.id, action=ACTION_CREATE, reason='parent_not_eligible',
            )
        # One live child per (parent, child type); cancelled children free the slot
        siblings = session.execute(
            select(func.count()).select_from(WorkflowDocument).where(
                WorkflowDocument.parent_id == parent.id,
                WorkflowDocument.doc_type == definition.name,
                WorkflowDocument.status != CANCELLED_STATUS,
            )
        ).scalar_one()
        if siblings:
            raise InvalidTransition(
                f'{parent.doc_type} #{parent.id} already has a {definition.name}',
                document_id=parent.id, action=ACTION_CREATE, reason='parent_already_transformed',
            )
        return parent

    def _lock_parent(self, session, parent: WorkflowDocument, child: WorkflowDocument, actor) -> None:
        before = parent.snapshot()
        values = {'version': parent.version + 1, 'updated_at': _utcnow()}
        if not parent.locked:
            values.update(locked=True, locked_reason=f'{child.doc_type}#{child.id}')
        res = session.execute(
            update(WorkflowDocument)
            .where(WorkflowDocument.id == parent.id, WorkflowDocument.version == parent.version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConcurrencyConflict(document_id=parent.id, action=ACTION_LINK_CHILD)
        session.refresh(parent)
        self.audit.append(actor, audit_action(parent.doc_type, ACTION_LINK_CHILD), entity=parent.doc_type,
                          entity_id=parent.id, before=before, after=parent.snapshot(),
                          meta={'child_type': child.doc_type, 'child_id': child.id}, session=session)

    def _spawn_child(self, session, source: WorkflowDocument, child_type: str, actor) -> WorkflowDocument:
        """Child created by a transition (need-expression -> need), born submitted."""
        data = {k: v for k, v in (source.data or {}).items() if k in ('title', 'description', 'lines')}
        now = _utcnow()
        child = WorkflowDocument(
            doc_type=child_type,
            status=SUBMIT_TARGETS.get(child_type, self.registry.initial_status(child_type)),
            owner_id=source.owner_id,
            department=source.department,
            parent_id=source.id,
            locked=False,
            data=data,
            milestones={'submitted_at': {'at': now.isoformat(), 'by': actor.user_id}},
            version=1,
        )
        session.add(child)
        session.flush()
        self.audit.append(actor, audit_action(child_type, ACTION_CREATE), entity=child_type, entity_id=child.id,
                          after=child.snapshot(), meta={'parent_id': source.id}, session=session)
        return child

    # --------------------------------------------------------------- deletion
    def delete_document(self, document_id: int, actor) -> None:
        """Physical removal, only while the document is still in its initial status."""
        try:
            self._delete(document_id, actor)
        except WorkflowError as err:
            self._audit_failure(actor, ACTION_DELETE, document_id, err)
            raise

    def _delete(self, document_id: int, actor) -> None:
        session = self.session_factory()
        try:
            doc = self._load(session, document_id)
            if doc.locked:
                raise LockedDocument(document_id=doc.id, action=ACTION_DELETE, locked_reason=doc.locked_reason)
            if doc.status != self.registry.initial_status(doc.doc_type):
                raise InvalidTransition('Only documents in their initial status can be deleted',
                                        document_id=doc.id, action=ACTION_DELETE, status=doc.status)
            self._require(actor, self._capability(doc.doc_type, 'delete'), document_id=doc.id, action=ACTION_DELETE)
            children = session.execute(
                select(func.count()).select_from(WorkflowDocument).where(WorkflowDocument.parent_id == doc.id)
            ).scalar_one()
            if children:
                raise InvalidTransition('Document has dependent documents', document_id=doc.id,
                                        action=ACTION_DELETE, reason='has_children')
            self.audit.append(actor, audit_action(doc.doc_type, ACTION_DELETE), entity=doc.doc_type,
                              entity_id=doc.id, before=doc.snapshot(), session=session)
            session.delete(doc)
            session.commit()
        except Exception:
            session.rollback()
            raise
        log.info('deleted %s #%s', doc.doc_type, document_id)

    # ---------------------------------------------------------------- helpers
    def _check_payload(self, t: Transition, payload: Dict[str, Any]) -> None:
        if 'lines' in payload and 'lines' in t.payload_fields:
            payload['lines'] = validate_lines(payload['lines'])
        if t.sets_amount and payload.get('amount_cents') is not None:
            validate_amount(payload['amount_cents'])

    def _changes(self, t: Transition, before: Dict[str, Any], payload: Mapping[str, Any], actor) -> Dict[str, Any]:
        """Column values written by transition ``t`` given the pre-transition snapshot."""
        now = _utcnow()
        data = dict(before.get('data') or {})
        for name in t.payload_fields:
            if name in payload:
                data[name] = payload[name]
        values: Dict[str, Any] = {
            'status': t.target_for(before['status']),
            'version': before['version'] + 1,
            'updated_at': now,
        }
        reason = payload.get('reason')
        reason = reason.strip() if isinstance(reason, str) else None
        if t.reason_field == REASON_REJECTION:
            values['rejection_reason'] = reason
        elif t.reason_field == REASON_LOCK:
            values['locked_reason'] = reason
        elif t.reason_field and reason:
            data[t.reason_field] = reason
        if t.clears_rejection:
            values['rejection_reason'] = None
        if t.sets_amount and payload.get('amount_cents') is not None:
            values['amount_cents'] = payload['amount_cents']
        if t.locks:
            values['locked'] = True
            if t.reason_field != REASON_LOCK:
                values['locked_reason'] = t.action
        if t.unlocks:
            values['locked'] = False
            values['locked_reason'] = None
        values['data'] = data
        milestones = dict(before.get('milestones') or {})
        if t.milestone:
            milestones[t.milestone] = {'at': now.isoformat(), 'by': getattr(actor, 'user_id', None)}
        values['milestones'] = milestones
        return values

    def _audit_failure(self, actor, action: str, document_id, err: WorkflowError, doc_type: Optional[str] = None,
                       meta: Optional[Dict[str, Any]] = None) -> None:
        """Record a rejected attempt; never masks the original error."""
        session = self.session_factory()
        try:
            session.rollback()
            if doc_type is None and document_id is not None and not isinstance(err, NotFound):
                doc = session.get(WorkflowDocument, document_id)
                doc_type = doc.doc_type if doc is not None else None
            meta = {**(meta or {}), 'error': err.code}
            if err.reason:
                meta['reason'] = err.reason
            self.audit.append(
                actor,
                audit_action(doc_type or 'document', action),
                entity=doc_type,
                entity_id=document_id,
                outcome=OUTCOME_FAILURE,
                meta=meta,
                session=session,
            )
            session.commit()
        except Exception:  # noqa: BLE001
            session.rollback()
            log.exception('failed to audit rejected %s on document %s', action, document_id)


__all__ = ['WorkflowEngine', 'PreparedTransition', 'TransitionResult', 'audit_action']
