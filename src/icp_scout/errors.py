from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SERVER_ERROR = "server_error"
    EMPTY_RESPONSE = "empty_response"
    PARSE_ERROR = "parse_error"
    API_ERROR = "api_error"
    CONNECTION_ERROR = "connection_error"


class PipelineError(ValueError):
    """Raised when a batch cannot start at all."""


class NoLeadsError(PipelineError):
    def __init__(self) -> None:
        super().__init__("No leads provided")


class MissingCredentialError(PipelineError):
    def __init__(self, variable: str) -> None:
        super().__init__(f"{variable} is required to call the scoring model")
        self.variable = variable


class TransportError(RuntimeError):
    """Network-level failure talking to the model endpoint."""
