"""Authentication: session validation for the billing API."""

from auth.exceptions import AuthError, SessionExpiredError
from auth.types import Session
from auth.config import AuthConfig
from auth.token_store import TokenStore
from auth.session import SessionManager
from auth.security_middleware import AuthMiddleware
