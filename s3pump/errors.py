# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exception hierarchy for the S3 client.

Callers can tell apart:

- ``HttpError``: the server rejected the request (non-2xx status).
- ``UnmarshalError``: the client could not understand a response body.
- ``TransportError``: the request never produced a response.
- ``StreamError``: the caller's payload stream failed mid-upload.

Nothing in this package retries; callers own retry policy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from s3pump.documents import ErrorResponse


class S3ClientError(Exception):
    """Base exception for all client errors."""


class ConfigError(S3ClientError):
    """Invalid or missing client configuration."""


class TransportError(S3ClientError):
    """Network failure or timeout while sending a request."""


class StreamError(S3ClientError):
    """The source payload stream failed while it was being consumed."""


class MultipartUploadError(S3ClientError):
    """Invalid operation for the current multipart upload state."""


class HttpError(S3ClientError):
    """Non-2xx response from the storage service.

    Attributes:
        status: HTTP status code.
        status_message: HTTP reason phrase.
        error_response: Parsed ``<Error>`` document, or None when the
            response carries no body (HEAD requests).
        action: Client operation that failed (e.g. ``"putObject"``).
    """

    def __init__(
        self,
        status: int,
        status_message: str,
        error_response: ErrorResponse | None,
        action: str,
    ) -> None:
        self.status = status
        self.status_message = status_message
        self.error_response = error_response
        self.action = action
        detail = ""
        if error_response is not None and error_response.code:
            detail = f" ({error_response.code}: {error_response.message})"
        super().__init__(
            f"Error occurred on '{action}': {status} {status_message}{detail}"
        )


class UnmarshalError(S3ClientError):
    """A response body could not be parsed into its expected document.

    Attributes:
        raw: The undecodable response text.
    """

    def __init__(self, raw: str, message: str | None = None) -> None:
        self.raw = raw
        super().__init__(message or f"Error unmarshalling response: '{raw}'")
