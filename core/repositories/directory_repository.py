"""Read-only lookups of clients and organization email settings."""

from uuid import UUID

from clients.postgres_client import PostgresClient
from core.models import ClientContact, EmailSender


class DirectoryRepository:
    """Client contact details and organization email identity."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_client_contact(self, client_id: UUID) -> ClientContact | None:
        row = self.postgres.execute_single(
            """
            SELECT id, organization_id,
                   COALESCE(NULLIF(company_name, ''), TRIM(CONCAT(first_name, ' ', last_name))) AS display_name,
                   NULLIF(TRIM(email), '') AS email
            FROM clients
            WHERE id = %s
            """,
            (client_id,)
        )
        if row is None:
            return None
        return ClientContact.model_validate(row)

    def get_email_sender(self, organization_id: UUID) -> EmailSender | None:
        """
        The organization's email identity.

        Returns None when the organization has not enabled outbound email.
        """
        row = self.postgres.execute_single(
            """
            SELECT organization_id, from_name, reply_to
            FROM organization_email_settings
            WHERE organization_id = %s AND enabled = TRUE
            """,
            (organization_id,)
        )
        if row is None:
            return None
        return EmailSender.model_validate(row)
