# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 request signing.

Implements the four SigV4 steps for S3-style requests:

1. Build the canonical request (method, URI, query, headers, payload hash).
2. Build the string to sign from the timestamp, scope and request hash.
3. Derive the per-date, per-region, per-service signing key.
4. HMAC the string to sign with the derived key.

Everything here is a pure function of its inputs.  Time comes from an
injected clock so signatures are reproducible.
"""

from __future__ import annotations

import hashlib
import hmac
import urllib.parse
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from s3pump.errors import ConfigError


ALGORITHM = "AWS4-HMAC-SHA256"

#: Payload hash sentinel used when payload signing is disabled.
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()

_AWS_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

# Never part of SignedHeaders: either added after signing or rewritten by
# intermediaries.
_UNSIGNED_HEADERS = frozenset(
    {"authorization", "user-agent", "expect", "content-length"}
)

Clock = Callable[[], datetime]

HeaderInput = Mapping[str, str] | Iterable[tuple[str, str]]


def utc_now() -> datetime:
    """Default clock: current UTC time."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Credentials:
    """Access key pair used to sign requests.

    The secret key is excluded from ``repr`` so it never reaches logs via
    object formatting.
    """

    access_key: str
    secret_key: str

    def __repr__(self) -> str:
        return f"Credentials(access_key={self.access_key!r}, secret_key=***)"


@dataclass(frozen=True)
class SigningContext:
    """Per-request signing parameters.

    Attributes:
        region: Signing region (e.g. ``us-east-1``).
        service: Signing service name (``s3``).
        timestamp: Request time (timezone-aware).
        sign_payload: Hash the body instead of sending ``UNSIGNED-PAYLOAD``.
    """

    region: str
    service: str
    timestamp: datetime
    sign_payload: bool

    @property
    def amz_date(self) -> str:
        return format_amz_date(self.timestamp)

    @property
    def date(self) -> str:
        return self.amz_date[:8]

    @property
    def scope(self) -> str:
        """Credential scope: ``date/region/service/aws4_request``."""
        return f"{self.date}/{self.region}/{self.service}/aws4_request"


def format_amz_date(timestamp: datetime) -> str:
    """Format a timestamp as ``YYYYMMDD'T'HHMMSS'Z'`` in UTC."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(UTC)
    return timestamp.strftime("%Y%m%dT%H%M%SZ")


def payload_hash(data: bytes) -> str:
    """Hex-encoded SHA-256 of the exact bytes to be sent."""
    return hashlib.sha256(data).hexdigest()


# ---------------------------------------------------------------------------
# URI encoding (AWS-specific RFC 3986 subset)
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's specific rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - All other characters are percent-encoded per UTF-8 byte as %XX
      (uppercase hex)
    - Forward slashes (/) are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for ch in value:
        if ch in _AWS_UNRESERVED:
            result.append(ch)
        elif ch == "/" and not encode_slash:
            result.append("/")
        else:
            result.extend(f"%{b:02X}" for b in ch.encode("utf-8"))
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_uri(path: str) -> str:
    """Build the canonical URI for an S3 request path.

    The path arrives already percent-encoded.  S3 uses single encoding:
    decode any existing escapes first, then URI-encode once.  Double
    slashes and ``.`` / ``..`` segments are preserved.

    Args:
        path: Request path without query string.

    Returns:
        URI-encoded canonical path.
    """
    if not path:
        return "/"
    path = path.split("?")[0]
    return uri_encode(urllib.parse.unquote(path), encode_slash=False)


def canonical_query_string(params: Mapping[str, str] | None) -> str:
    """Build the canonical query string.

    Keys are treated as unique (the caller deduplicates).  Names and
    values are URI-encoded and sorted by encoded name.

    Args:
        params: Query parameters (name -> value).  Empty values are
            rendered as ``name=``.

    Returns:
        Canonical query string (sorted, encoded), without leading ``?``.
    """
    if not params:
        return ""
    encoded = sorted(
        (uri_encode(str(k)), uri_encode(str(v))) for k, v in params.items()
    )
    return "&".join(f"{k}={v}" for k, v in encoded)


def _header_items(headers: HeaderInput) -> Iterable[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return headers.items()
    return headers


def canonical_headers(headers: HeaderInput) -> tuple[str, str]:
    """Build the canonical headers block and the signed header list.

    Header names are lower-cased.  Values have leading/trailing whitespace
    trimmed and internal runs of whitespace collapsed to one space.
    Repeated names are joined with commas in the order supplied.

    Args:
        headers: Mapping or sequence of ``(name, value)`` pairs.

    Returns:
        Tuple of (canonical headers string with one ``name:value\\n`` line
        per header, semicolon-separated signed header names).
    """
    merged: dict[str, list[str]] = {}
    for name, value in _header_items(headers):
        lower = name.lower().strip()
        if lower in _UNSIGNED_HEADERS:
            continue
        merged.setdefault(lower, []).append(" ".join(str(value).split()))

    names = sorted(merged)
    block = "".join(f"{name}:{','.join(merged[name])}\n" for name in names)
    return block, ";".join(names)


def build_canonical_request(
    method: str,
    path: str,
    query: Mapping[str, str] | None,
    headers: HeaderInput,
    payload_hash: str,
) -> tuple[str, str]:
    """Build the canonical request string.

    Args:
        method: HTTP method.
        path: Request path (already percent-encoded).
        query: Query parameters.
        headers: Headers to sign.
        payload_hash: Hex SHA-256 of the body or ``UNSIGNED-PAYLOAD``.

    Returns:
        Tuple of (canonical request, signed header names).
    """
    header_block, signed_headers = canonical_headers(headers)
    creq = "\n".join(
        [
            method.upper(),
            canonical_uri(path),
            canonical_query_string(query),
            header_block,
            signed_headers,
            payload_hash,
        ]
    )
    return creq, signed_headers


# ---------------------------------------------------------------------------
# SigV4 signing
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: Secret access key.
        date: Date string (YYYYMMDD).
        region: Signing region.
        service: Signing service name.

    Returns:
        Derived signing key bytes.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, "aws4_request")


def sign(signing_key: bytes, string_to_sign: str) -> str:
    """Compute the hex-encoded SigV4 signature."""
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def build_string_to_sign(
    amz_date: str, scope: str, canonical_request: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        amz_date: Timestamp in ``x-amz-date`` format.
        scope: Credential scope (date/region/service/aws4_request).
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            ALGORITHM,
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )


def authorization_header(
    access_key: str, scope: str, signed_headers: str, signature: str
) -> str:
    """Format the ``Authorization`` header value."""
    return (
        f"{ALGORITHM} "
        f"Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, "
        f"Signature={signature}"
    )


# ---------------------------------------------------------------------------
# Request signer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignedRequestHeaders:
    """Outcome of signing one request.

    Attributes:
        headers: Every header to send, including ``Authorization``,
            ``x-amz-date``, ``x-amz-content-sha256`` and ``host``.
        signature: Hex signature.
        signed_headers: Semicolon-separated signed header names.
        canonical_request: The canonical request that was signed.
    """

    headers: list[tuple[str, str]]
    signature: str
    signed_headers: str
    canonical_request: str

    @property
    def authorization(self) -> str:
        for name, value in self.headers:
            if name.lower() == "authorization":
                return value
        return ""


class RequestSigner:
    """Signs requests with SigV4 for one identity, region and service.

    Instances hold only read-only configuration and may be shared
    between threads.
    """

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        service: str,
        *,
        sign_payload: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        if not credentials.access_key.strip():
            raise ConfigError("Access key must be set")
        if not credentials.secret_key.strip():
            raise ConfigError("Secret key must be set")
        if not region.strip():
            raise ConfigError("Region must be set")
        if not service.strip():
            raise ConfigError("Service name must be set")
        self._credentials = credentials
        self._region = region
        self._service = service
        self._sign_payload = sign_payload
        self._clock = clock

    @property
    def region(self) -> str:
        return self._region

    @property
    def service(self) -> str:
        return self._service

    def context(self, timestamp: datetime | None = None) -> SigningContext:
        """Build the signing context for one request."""
        return SigningContext(
            region=self._region,
            service=self._service,
            timestamp=timestamp if timestamp is not None else self._clock(),
            sign_payload=self._sign_payload,
        )

    def sign(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None,
        headers: HeaderInput,
        payload: bytes | None = None,
        *,
        host: str,
        timestamp: datetime | None = None,
    ) -> SignedRequestHeaders:
        """Sign a request.

        Args:
            method: HTTP method (GET, PUT, POST, DELETE, HEAD).
            path: Absolute, already percent-encoded request path.
            query: Query parameters (deduplicated by the caller).
            headers: Request headers to sign.
            payload: Exact body bytes; only hashed when payload signing
                is enabled.  None means an empty body.
            host: Value for the ``host`` header.
            timestamp: Override the clock (for reproducible signatures).

        Returns:
            SignedRequestHeaders with the complete header list.
        """
        ctx = self.context(timestamp)
        if ctx.sign_payload:
            content_sha256 = payload_hash(payload or b"")
        else:
            content_sha256 = UNSIGNED_PAYLOAD

        headers_out = [
            (name, value)
            for name, value in _header_items(headers)
            if name.lower()
            not in ("host", "x-amz-date", "x-amz-content-sha256")
        ]
        headers_out.append(("host", host))
        headers_out.append(("x-amz-date", ctx.amz_date))
        headers_out.append(("x-amz-content-sha256", content_sha256))

        creq, signed_headers = build_canonical_request(
            method, path, query, headers_out, content_sha256
        )
        string_to_sign = build_string_to_sign(ctx.amz_date, ctx.scope, creq)
        signing_key = derive_signing_key(
            self._credentials.secret_key, ctx.date, ctx.region, ctx.service
        )
        signature = sign(signing_key, string_to_sign)

        headers_out.append(
            (
                "Authorization",
                authorization_header(
                    self._credentials.access_key,
                    ctx.scope,
                    signed_headers,
                    signature,
                ),
            )
        )
        return SignedRequestHeaders(
            headers=headers_out,
            signature=signature,
            signed_headers=signed_headers,
            canonical_request=creq,
        )
