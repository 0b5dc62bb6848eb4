"""Tests for api/base.py - Unified API response format."""

from datetime import timezone

from api.base import (
    success_response,
    error_response,
    ErrorCodes,
)


class TestSuccessResponse:
    """Tests for success_response()."""

    def test_structure(self):
        resp = success_response({"foo": "bar"})
        assert resp.success is True
        assert resp.data == {"foo": "bar"}
        assert resp.error is None

    def test_request_id_generated(self):
        resp = success_response({})
        assert resp.meta.request_id is not None
        assert len(resp.meta.request_id) > 0

    def test_timestamp_is_utc(self):
        resp = success_response({})
        assert resp.meta.timestamp.tzinfo == timezone.utc


class TestErrorResponse:
    """Tests for error_response()."""

    def test_structure(self):
        resp = error_response("TEST_ERROR", "Something went wrong")
        assert resp.success is False
        assert resp.data is None
        assert resp.error.code == "TEST_ERROR"
        assert resp.error.message == "Something went wrong"
        assert resp.error.detail is None

    def test_detail(self):
        resp = error_response("PERSISTENCE_ERROR", "A database error occurred", detail="deadlock detected")
        assert resp.error.detail == "deadlock detected"

    def test_request_id_generated(self):
        resp = error_response("ERR", "msg")
        assert resp.meta.request_id is not None
        assert len(resp.meta.request_id) > 0

    def test_timestamp_is_utc(self):
        resp = error_response("ERR", "msg")
        assert resp.meta.timestamp.tzinfo == timezone.utc


class TestErrorCodes:
    """Tests that ErrorCodes contains the codes the error handlers emit."""

    def test_has_internal_error(self):
        assert ErrorCodes.INTERNAL_ERROR == "INTERNAL_ERROR"

    def test_has_not_found(self):
        assert ErrorCodes.NOT_FOUND == "NOT_FOUND"

    def test_has_validation_error(self):
        assert ErrorCodes.VALIDATION_ERROR == "VALIDATION_ERROR"

    def test_has_not_authenticated(self):
        assert ErrorCodes.NOT_AUTHENTICATED == "NOT_AUTHENTICATED"

    def test_has_session_expired(self):
        assert ErrorCodes.SESSION_EXPIRED == "SESSION_EXPIRED"

    def test_has_invalid_signature(self):
        assert ErrorCodes.INVALID_SIGNATURE == "INVALID_SIGNATURE"

    def test_has_external_service_error(self):
        assert ErrorCodes.EXTERNAL_SERVICE_ERROR == "EXTERNAL_SERVICE_ERROR"
