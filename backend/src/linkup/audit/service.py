"""Audit logging service for queue and match events.

This service provides a centralized interface for creating immutable audit log
entries. Callers own the transaction; entries are flushed, not committed, so
they land atomically with the change they describe.

Audit Events:
- QUEUE_ENTERED, QUEUE_CANCELLED
- MATCH_CREATED
- OUTCOME_UPDATED, FEEDBACK_SUBMITTED
- WEIGHTS_PROPOSED, WEIGHTS_PROMOTED, WEIGHTS_REJECTED
- EXPERIMENT_CREATED
"""

import time
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    action: str,
    actor_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    created_at: Optional[int] = None,
) -> AuditLog:
    """Create an audit log entry.

    Args:
        db: Database session
        action: Event action (e.g., "QUEUE_ENTERED", "MATCH_CREATED")
        actor_id: User or system component that performed the action
        entity_type: Type of entity affected (e.g., "queue_entry", "match")
        entity_id: ID of affected entity
        metadata: Additional context as JSON
        created_at: Event time in epoch milliseconds (defaults to now)

    Returns:
        AuditLog: The created audit log entry
    """
    audit_entry = AuditLog(
        actor_id=str(actor_id) if actor_id is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        metadata_json=metadata,
        created_at=created_at if created_at is not None else int(time.time() * 1000),
    )

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry
