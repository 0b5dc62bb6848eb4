"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, today_utc, to_utc, parse_iso, parse_calendar_date
from utils.user_context import (
    RequestIdentity,
    get_current_identity,
    get_current_user_id,
    get_current_organization_id,
    set_current_identity,
    clear_current_identity,
    identity_context,
)
