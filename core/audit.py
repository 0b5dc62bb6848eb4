"""
Audit trail for billing changes.

Every mutation to an invoice, its items or its payments is logged here. The
audit log is:
- Append-only (entries never modified or deleted)
- Attributed (who made the change; NULL for gateway webhooks)
- Detailed (captures old and new values)
"""

from enum import Enum
from uuid import UUID, uuid4
from typing import Any

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Audit trail for billing entity changes.

    IMPORTANT: Always use model_dump(mode="json") when passing Pydantic models
    so UUIDs, dates and datetimes are serialized to JSON-compatible strings.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            organization_id=invoice.organization_id,
            action=AuditAction.UPDATE,
            changes=compute_changes(
                old.model_dump(mode="json"),
                new.model_dump(mode="json")
            ),
            user_id=acting_user_id
        )

    Writes go through the same PostgresClient as the change itself, so inside
    a transaction the audit entry commits or rolls back with it.
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        organization_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: "invoice", "invoice_item" or "invoice_payment"
            entity_id: ID of the entity
            organization_id: Owning organization
            action: The action performed (CREATE, UPDATE, DELETE)
            changes: The changes made (format depends on action)
            user_id: User who made the change; None for system actors

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        self.postgres.execute(
            """
            INSERT INTO audit_log (
                id, organization_id, user_id, entity_type, entity_id,
                action, changes, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                organization_id,
                user_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, organization_id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
