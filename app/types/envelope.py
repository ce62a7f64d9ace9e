import time
from typing import Any, Optional
from pydantic import BaseModel, Field, model_validator

from ..core.errors import GatewayError


class ErrorBody(BaseModel):
    code: str = Field(description="Error kind, e.g. INVALID_ADDRESS")
    message: str = Field(description="Human readable error message")
    details: Optional[Any] = Field(default=None, description="Extra context, when safe to expose")

    @classmethod
    def from_error(cls, error: GatewayError) -> "ErrorBody":
        return cls(**error.to_dict())


class Envelope(BaseModel):
    success: bool = Field(description="Whether the request succeeded")
    data: Any = Field(default=None, description="Result payload when successful")
    error: Optional[ErrorBody] = Field(default=None, description="Error payload when failed")
    timestamp: int = Field(description="Response time in epoch milliseconds")

    @model_validator(mode="after")
    def _exactly_one_payload(self) -> "Envelope":
        if self.success and (self.data is None or self.error is not None):
            raise ValueError("successful envelopes carry data and no error")
        if not self.success and (self.error is None or self.data is not None):
            raise ValueError("failed envelopes carry an error and no data")
        return self


def now_ms() -> int:
    return int(time.time() * 1000)


def success_envelope(data: Any) -> Envelope:
    return Envelope(success=True, data=data, timestamp=now_ms())


def error_envelope(error: GatewayError) -> Envelope:
    return Envelope(success=False, error=ErrorBody.from_error(error), timestamp=now_ms())
