from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, JSON, DateTime, event
from typing import Optional

from docflow.errors import AuditLogImmutable
from .authz import Base  # reuse same metadata

OUTCOME_SUCCESS = 'success'
OUTCOME_FAILURE = 'failure'


def _utcnow():
    return datetime.now(timezone.utc)


class AuditLog(Base):
    """Append-only ledger row. There is no update or delete path."""
    __tablename__ = 'audit_logs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    actor_roles: Mapped[list] = mapped_column(JSON, default=list)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(64), nullable=True, index=True)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=True, index=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False, default=OUTCOME_SUCCESS)
    before: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    after: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)


@event.listens_for(AuditLog, 'before_update')
def _reject_update(mapper, connection, target):
    raise AuditLogImmutable(entry_id=target.id)


@event.listens_for(AuditLog, 'before_delete')
def _reject_delete(mapper, connection, target):
    raise AuditLogImmutable(entry_id=target.id)
