from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, select

from docflow.config.pagination import normalize_pagination
from docflow.models.audit import AuditLog, OUTCOME_SUCCESS


class AuditLogService:
    """Append-only audit ledger.

    ``append`` is the only write and never commits: the caller's transaction
    boundary decides durability, so a state change and its audit entry commit
    or roll back together.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def append(
        self,
        actor,
        action: str,
        entity: Optional[str] = None,
        entity_id: Optional[Any] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        outcome: str = OUTCOME_SUCCESS,
        meta: Optional[Dict[str, Any]] = None,
        session=None,
    ) -> AuditLog:
        """Persist an audit entry within the given (or current) DB session.

        Parameters:
          actor: Actor performing the mutation (user id, roles, network metadata)
          action: short action code e.g. NEED.ACCEPT, ROLE_PERMISSIONS.GRANT
          entity: document type or module name
          entity_id: primary key, stored as string
          before / after: JSON-safe snapshots
          meta: additional JSON-safe dictionary (shallow copied, merged with network metadata)
        """
        session = session or self.session_factory()
        merged = dict(actor.network_meta()) if actor is not None else {}
        merged.update(meta or {})
        entry = AuditLog(
            actor_user_id=actor.user_id if actor is not None else None,
            actor_roles=sorted(actor.roles) if actor is not None else [],
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            outcome=outcome,
            before=before,
            after=after,
            meta=merged,
        )
        session.add(entry)
        session.flush()
        return entry

    def query(
        self,
        actor_id: Optional[int] = None,
        action: Optional[str] = None,
        entity: Optional[str] = None,
        entity_id: Optional[Any] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        outcome: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        page: Optional[int] = None,
    ) -> Tuple[List[AuditLog], int]:
        """Read-only, paginated, newest first. Returns (rows, total)."""
        limit, offset = normalize_pagination(limit, offset, page)
        session = self.session_factory()
        stmt = select(AuditLog)
        if actor_id is not None:
            stmt = stmt.where(AuditLog.actor_user_id == actor_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if entity:
            stmt = stmt.where(AuditLog.entity == entity)
        if entity_id is not None:
            stmt = stmt.where(AuditLog.entity_id == str(entity_id))
        if outcome:
            stmt = stmt.where(AuditLog.outcome == outcome)
        if date_from is not None:
            stmt = stmt.where(AuditLog.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(AuditLog.created_at <= date_to)
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return list(rows), total


def audit_json(entry: AuditLog) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'actor_user_id': entry.actor_user_id,
        'actor_roles': entry.actor_roles or [],
        'action': entry.action,
        'entity': entry.entity,
        'entity_id': entry.entity_id,
        'outcome': entry.outcome,
        'before': entry.before,
        'after': entry.after,
        'meta': entry.meta or {},
        'created_at': entry.created_at.isoformat() if entry.created_at else None,
    }


__all__ = ['AuditLogService', 'audit_json']
