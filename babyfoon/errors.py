"""Error taxonomy shared by the token service, session machine and pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced to users, logs and HTTP clients."""

    CONFIGURATION = "configuration_error"
    VALIDATION = "validation_error"
    INVALID_CHANNEL_CODE = "invalid_channel_code"
    CREDENTIAL_EXPIRED = "credential_expired"
    UPSTREAM = "upstream_error"
    TRANSPORT = "transport_error"
    STORAGE = "storage_error"
    STREAM_NOT_FOUND = "stream_not_found"
    INVALID_STATE = "invalid_state"
    CHANNEL_UNAVAILABLE = "channel_unavailable"


@dataclass(frozen=True)
class ErrorSpec:
    """Maps an error code to an HTTP status and a default user-facing message."""

    code: ErrorCode
    http_status: int
    message: str


ERROR_SPECS: Dict[ErrorCode, ErrorSpec] = {
    ErrorCode.CONFIGURATION: ErrorSpec(
        ErrorCode.CONFIGURATION, 500, "Server credentials are not configured"
    ),
    ErrorCode.VALIDATION: ErrorSpec(ErrorCode.VALIDATION, 400, "Invalid request"),
    ErrorCode.INVALID_CHANNEL_CODE: ErrorSpec(
        ErrorCode.INVALID_CHANNEL_CODE, 400, "Invalid code: expected 4 digits"
    ),
    ErrorCode.CREDENTIAL_EXPIRED: ErrorSpec(
        ErrorCode.CREDENTIAL_EXPIRED, 401, "Session expired, request a new join credential"
    ),
    ErrorCode.UPSTREAM: ErrorSpec(ErrorCode.UPSTREAM, 502, "Token service unavailable"),
    ErrorCode.TRANSPORT: ErrorSpec(ErrorCode.TRANSPORT, 502, "Audio transport failed"),
    ErrorCode.STORAGE: ErrorSpec(ErrorCode.STORAGE, 502, "Audio storage failed"),
    ErrorCode.STREAM_NOT_FOUND: ErrorSpec(
        ErrorCode.STREAM_NOT_FOUND, 404, "Stream not found or stopped"
    ),
    ErrorCode.INVALID_STATE: ErrorSpec(
        ErrorCode.INVALID_STATE, 409, "Operation not allowed in the current session state"
    ),
    ErrorCode.CHANNEL_UNAVAILABLE: ErrorSpec(
        ErrorCode.CHANNEL_UNAVAILABLE, 409, "Channel code is already in use"
    ),
}


class BabyfoonError(RuntimeError):
    """Base class for application errors with status metadata."""

    code: ErrorCode = ErrorCode.VALIDATION

    def __init__(self, detail: Optional[str] = None) -> None:
        spec = ERROR_SPECS[self.code]
        self.http_status = spec.http_status
        self.detail = detail or spec.message
        super().__init__(self.detail)


class ConfigurationError(BabyfoonError):
    """Server secret or application id missing."""

    code = ErrorCode.CONFIGURATION


class ValidationError(BabyfoonError):
    """Bad input shape; rejected immediately and never retried."""

    code = ErrorCode.VALIDATION


class InvalidChannelCodeError(ValidationError):
    """A channel code or watch link does not hold exactly four digits."""

    code = ErrorCode.INVALID_CHANNEL_CODE


class CredentialExpiredError(ValidationError):
    """A join credential is past its expiry."""

    code = ErrorCode.CREDENTIAL_EXPIRED


class UpstreamError(BabyfoonError):
    """Token signing or network failure."""

    code = ErrorCode.UPSTREAM


class TransportError(BabyfoonError):
    """Join, leave or mute failure reported by the audio transport."""

    code = ErrorCode.TRANSPORT


class StorageError(BabyfoonError):
    """Upload or list failure in the chunked pipeline."""

    code = ErrorCode.STORAGE


class StreamNotFoundError(StorageError):
    """No chunk (or no broadcaster) exists for a channel."""

    code = ErrorCode.STREAM_NOT_FOUND


class InvalidStateError(BabyfoonError):
    """Operation invoked from a session state that does not allow it."""

    code = ErrorCode.INVALID_STATE


class ChannelUnavailableError(BabyfoonError):
    """Channel code already has an active broadcaster, or no code is free."""

    code = ErrorCode.CHANNEL_UNAVAILABLE


_ERRORS_BY_CODE: Dict[str, type] = {
    cls.code.value: cls
    for cls in (
        ConfigurationError,
        ValidationError,
        InvalidChannelCodeError,
        CredentialExpiredError,
        UpstreamError,
        TransportError,
        StorageError,
        StreamNotFoundError,
        InvalidStateError,
        ChannelUnavailableError,
    )
}


def http_payload_for(error: BabyfoonError) -> Dict[str, str]:
    """Build the wire error object for an application error."""
    return {"error": error.detail, "code": error.code.value}


def error_from_payload(payload: Dict[str, str], default: type = UpstreamError) -> BabyfoonError:
    """Rebuild an application error from a wire error object.

    Unknown or missing codes fall back to ``default``.
    """
    error_cls = _ERRORS_BY_CODE.get(str(payload.get("code", "")), default)
    return error_cls(payload.get("error") or None)


__all__ = [
    "ErrorCode",
    "ErrorSpec",
    "ERROR_SPECS",
    "BabyfoonError",
    "ConfigurationError",
    "ValidationError",
    "InvalidChannelCodeError",
    "CredentialExpiredError",
    "UpstreamError",
    "TransportError",
    "StorageError",
    "StreamNotFoundError",
    "InvalidStateError",
    "ChannelUnavailableError",
    "http_payload_for",
    "error_from_payload",
]
