"""Tests for the billing audit trail."""

from unittest.mock import Mock
from uuid import uuid4

import pytest
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.audit import AuditAction, AuditLogger, compute_changes


class TestAuditAction:

    def test_has_create_update_delete(self):
        assert AuditAction.CREATE.value == "create"
        assert AuditAction.UPDATE.value == "update"
        assert AuditAction.DELETE.value == "delete"


class TestComputeChanges:
    """Tests for compute_changes utility function."""

    def test_detects_changed_fields(self):
        old = {"status": "draft", "total_cents": 1100}
        new = {"status": "sent", "total_cents": 1100}

        changes = compute_changes(old, new)

        assert changes == {"status": {"old": "draft", "new": "sent"}}

    def test_detects_added_fields(self):
        """Keys only in 'new' report old=None."""
        changes = compute_changes({"status": "sent"}, {"status": "sent", "paid_date": "2024-03-15"})

        assert changes["paid_date"] == {"old": None, "new": "2024-03-15"}

    def test_detects_removed_fields(self):
        changes = compute_changes({"paid_date": "2024-03-15"}, {})

        assert changes["paid_date"] == {"old": "2024-03-15", "new": None}

    def test_excludes_updated_at_by_default(self):
        old = {"notes": "a", "updated_at": "2024-01-01T00:00:00Z"}
        new = {"notes": "a", "updated_at": "2024-01-02T00:00:00Z"}

        assert compute_changes(old, new) == {}

    def test_custom_exclude_fields(self):
        """A custom exclude set replaces the default one."""
        old = {"notes": "a", "terms": "net 30", "updated_at": "x"}
        new = {"notes": "b", "terms": "net 15", "updated_at": "y"}

        changes = compute_changes(old, new, exclude_fields={"notes"})

        assert set(changes) == {"terms", "updated_at"}

    def test_empty_when_no_changes(self):
        state = {"status": "paid", "amount_due_cents": 0}
        assert compute_changes(state, dict(state)) == {}


# =============================================================================
# AUDIT LOGGER
# =============================================================================


@pytest.fixture
def postgres():
    return Mock(spec=PostgresClient)


class TestAuditLogger:

    def test_log_change_inserts_one_row(self, postgres, org_id, user_id):
        logger = AuditLogger(postgres)
        invoice_id = uuid4()

        logger.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            organization_id=org_id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": "draft", "new": "sent"}},
            user_id=user_id,
        )

        postgres.execute.assert_called_once()
        sql, params = postgres.execute.call_args.args
        assert "INSERT INTO audit_log" in sql
        assert params[1] == org_id
        assert params[2] == user_id
        assert params[3] == "invoice"
        assert params[4] == invoice_id
        assert params[5] == "update"

    def test_changes_are_wrapped_as_json(self, postgres, org_id):
        changes = {"created": {"invoice_number": "INV-00001"}}

        AuditLogger(postgres).log_change(
            entity_type="invoice",
            entity_id=uuid4(),
            organization_id=org_id,
            action=AuditAction.CREATE,
            changes=changes,
        )

        params = postgres.execute.call_args.args[1]
        assert isinstance(params[6], Json)
        assert params[6].adapted == changes

    def test_user_defaults_to_none_for_system_actors(self, postgres, org_id):
        """Webhook-originated changes have no acting user."""
        AuditLogger(postgres).log_change(
            entity_type="invoice_payment",
            entity_id=uuid4(),
            organization_id=org_id,
            action=AuditAction.CREATE,
            changes={"created": {}},
        )

        params = postgres.execute.call_args.args[1]
        assert params[2] is None

    def test_each_entry_gets_a_fresh_id(self, postgres, org_id):
        logger = AuditLogger(postgres)
        for _ in range(2):
            logger.log_change("invoice", uuid4(), org_id, AuditAction.DELETE, {"deleted": {}})

        first, second = (call.args[1][0] for call in postgres.execute.call_args_list)
        assert first != second

    def test_get_entity_history_filters_by_entity(self, postgres):
        entity_id = uuid4()
        postgres.execute.return_value = [{"action": "update"}, {"action": "create"}]

        history = AuditLogger(postgres).get_entity_history("invoice", entity_id)

        assert history == [{"action": "update"}, {"action": "create"}]
        sql, params = postgres.execute.call_args.args
        assert "ORDER BY created_at DESC" in sql
        assert params == ("invoice", entity_id)
