from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, ForeignKey, JSON, DateTime, Text
from typing import Any, Dict, Optional

from .authz import Base


def _utcnow():
    return datetime.now(timezone.utc)


class WorkflowDocument(Base):
    """One row per business document, whatever its type.

    Status values are scoped to ``doc_type``; the workflow registry is the only
    authority on which statuses and transitions exist. Rows are mutated only
    through the workflow engine.
    """
    __tablename__ = 'documents'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    doc_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(48), nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    department: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_reason: Mapped[Optional[str]] = mapped_column(String(255))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey('documents.id'), nullable=True, index=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    milestones: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy of the mutable state, used for audit before/after."""
        return {
            'status': self.status,
            'locked': bool(self.locked),
            'locked_reason': self.locked_reason,
            'rejection_reason': self.rejection_reason,
            'amount_cents': self.amount_cents,
            'department': self.department,
            'parent_id': self.parent_id,
            'data': dict(self.data or {}),
            'milestones': dict(self.milestones or {}),
            'version': self.version,
        }

    def to_json(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.doc_type,
            'status': self.status,
            'owner_id': self.owner_id,
            'department': self.department,
            'amount_cents': self.amount_cents,
            'locked': bool(self.locked),
            'locked_reason': self.locked_reason,
            'rejection_reason': self.rejection_reason,
            'parent_id': self.parent_id,
            'data': self.data or {},
            'milestones': self.milestones or {},
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
