"""Audit log for payment events operators may need to reconcile by hand."""

from typing import Any

from storefront.core.logging import redact
from storefront.models.audit_log import AuditLog


async def log_event(
    actor: str,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to audit_logs collection (metadata is redacted first)."""
    await AuditLog(
        actor=actor,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=redact(metadata or {}),
    ).insert()
