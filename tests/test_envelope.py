import pytest
from pydantic import ValidationError

from app.core.errors import (
    ERRORS_BY_CODE,
    ErrorCode,
    InvalidAddress,
    UpstreamDataError,
    error_for_code,
)
from app.types.envelope import Envelope, ErrorBody, error_envelope, success_envelope


def test_success_envelope_carries_data_only():
    envelope = success_envelope({"price": "1"})
    assert envelope.success is True
    assert envelope.error is None
    assert envelope.timestamp > 0


def test_error_envelope_carries_error_only():
    envelope = error_envelope(InvalidAddress("bad address", details={"address": "0x1"}))
    body = envelope.model_dump(mode="json")
    assert body["success"] is False
    assert body["data"] is None
    assert body["error"] == {
        "code": "INVALID_ADDRESS",
        "message": "bad address",
        "details": {"address": "0x1"},
    }


def test_envelope_rejects_mixed_payloads():
    with pytest.raises(ValidationError):
        Envelope(success=True, data=None, timestamp=1)
    with pytest.raises(ValidationError):
        Envelope(success=False, data={"x": 1}, error=ErrorBody(code="X", message="y"), timestamp=1)


def test_every_code_has_an_error_class():
    assert set(ERRORS_BY_CODE) == set(ErrorCode)
    error = error_for_code(ErrorCode.UPSTREAM_DATA_ERROR, "bad body")
    assert isinstance(error, UpstreamDataError)
    assert error.status_code == 502
    assert error.to_dict()["code"] == "UPSTREAM_DATA_ERROR"


def test_default_messages():
    error = error_for_code(ErrorCode.INTERNAL_ERROR)
    assert error.message == "Internal server error"
    assert error.status_code == 500
