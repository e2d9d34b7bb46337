from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from docflow.config.workflow import load_workflow_settings
from docflow.services.audit import AuditLogService
from docflow.services.catalog import DEFAULT_CATALOG, Capability, PermissionCatalog
from docflow.services.evaluator import PermissionEvaluator
from docflow.services.matrix import RolePermissionMatrix
from docflow.utils.ttl_cache import TTLCache
from docflow.workflow.engine import WorkflowEngine
from docflow.workflow.registry import REGISTRY, DocumentTypeRegistry


@dataclass
class DocflowServices:
    """Wired components for one application. Stored in ``app.extensions['docflow']``."""
    catalog: PermissionCatalog
    audit: AuditLogService
    matrix: RolePermissionMatrix
    evaluator: PermissionEvaluator
    registry: DocumentTypeRegistry
    engine: WorkflowEngine
    settings: Dict[str, Any]

    # Facade used by collaborators that do not need the individual components
    def authorize(self, roles, capability: Capability) -> bool:
        return self.evaluator.authorize(roles, capability)

    def effective_capabilities(self, roles):
        return self.evaluator.effective_capabilities(roles)

    def apply(self, document_id: int, action: str, actor, payload=None, expected_version=None):
        return self.engine.apply(document_id, action, actor, payload, expected_version)

    def create_document(self, doc_type: str, owner, department=None, payload=None, parent_id=None, submit=False):
        return self.engine.create_document(doc_type, owner, department, payload, parent_id, submit)

    def query_audit(self, **filters):
        return self.audit.query(**filters)

    def export_matrix(self) -> Dict[str, Any]:
        return self.matrix.export()

    def import_matrix(self, snapshot: Mapping[str, Any], actor) -> Dict[str, Any]:
        return self.matrix.import_snapshot(snapshot, actor)


def build_services(session_factory, overrides: Optional[Mapping[str, Any]] = None,
                   catalog: PermissionCatalog = DEFAULT_CATALOG, clock=None) -> DocflowServices:
    settings = load_workflow_settings(overrides)
    audit = AuditLogService(session_factory)
    matrix = RolePermissionMatrix(catalog, session_factory, audit)
    evaluator = PermissionEvaluator(catalog, matrix, TTLCache(settings['DOCFLOW_PERMISSION_CACHE_TTL'], clock=clock))
    matrix.add_listener(evaluator.invalidate_role)
    engine = WorkflowEngine(
        REGISTRY, evaluator, audit, session_factory,
        finance_threshold_cents=settings['DOCFLOW_FINANCE_THRESHOLD_CENTS'],
    )
    return DocflowServices(
        catalog=catalog, audit=audit, matrix=matrix, evaluator=evaluator,
        registry=REGISTRY, engine=engine, settings=settings,
    )


__all__ = ['DocflowServices', 'build_services']
