"""Tests for auth/types.py - Pydantic models for auth domain."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from auth.types import Session


def _fields(**overrides):
    now = datetime.now(timezone.utc)
    return {
        "token": "abc123",
        "user_id": uuid4(),
        "organization_id": uuid4(),
        "created_at": now,
        "expires_at": now,
        "last_activity_at": now,
        **overrides,
    }


class TestSessionValidation:

    def test_accepts_complete_session(self):
        assert Session(**_fields()).token == "abc123"

    @pytest.mark.parametrize("missing", ["token", "user_id", "organization_id", "expires_at"])
    def test_rejects_missing_field(self, missing):
        fields = _fields()
        del fields[missing]
        with pytest.raises(ValidationError):
            Session(**fields)

    def test_rejects_invalid_organization_id(self):
        with pytest.raises(ValidationError):
            Session(**_fields(organization_id="not-a-uuid"))
