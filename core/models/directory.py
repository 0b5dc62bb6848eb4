"""Read-only views of clients and organizations needed for billing email."""

from uuid import UUID

from pydantic import BaseModel


class ClientContact(BaseModel):
    """Who an invoice is addressed to."""

    id: UUID
    organization_id: UUID
    display_name: str
    email: str | None

    model_config = {"from_attributes": True}


class EmailSender(BaseModel):
    """An organization's configured email identity. Absent when email is not set up."""

    organization_id: UUID
    from_name: str
    reply_to: str | None

    model_config = {"from_attributes": True}
