# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Header names and request/response header mapping.

Request side: one function per header family (object attributes, ACL,
SSE-C, conditionals) appends ``(name, value)`` pairs, skipping unset
values.  :func:`populate_object_headers` is the single place object
attributes are turned into headers, shared by direct PUT and multipart
initiation so both paths store the same attributes.

Response side: :func:`map_response_headers` fills a response header
dataclass from the field metadata declared in :mod:`s3pump.models`.
"""

from __future__ import annotations

import base64
import dataclasses
from collections.abc import Mapping
from email.header import decode_header
from typing import TYPE_CHECKING, Any, TypeVar


if TYPE_CHECKING:
    from s3pump.models import (
        AclHeaders,
        ConditionalHeaders,
        CopySourceConditions,
        ObjectAttributes,
        SseCustomerKey,
    )


Headers = list[tuple[str, str]]

H = TypeVar("H")

# Standard
CACHE_CONTROL = "Cache-Control"
CONNECTION = "Connection"
CONTENT_DISPOSITION = "Content-Disposition"
CONTENT_ENCODING = "Content-Encoding"
CONTENT_LENGTH = "Content-Length"
CONTENT_MD5 = "Content-MD5"
CONTENT_TYPE = "Content-Type"
DATE = "Date"
ETAG = "ETag"
EXPIRES = "Expires"
IF_MATCH = "If-Match"
IF_MODIFIED_SINCE = "If-Modified-Since"
IF_NONE_MATCH = "If-None-Match"
IF_UNMODIFIED_SINCE = "If-Unmodified-Since"
LAST_MODIFIED = "Last-Modified"
RANGE = "Range"
SERVER = "Server"

# Object attributes
X_AMZ_META_PREFIX = "x-amz-meta-"
X_AMZ_STORAGE_CLASS = "x-amz-storage-class"
X_AMZ_TAGGING = "x-amz-tagging"
X_AMZ_WEBSITE_REDIRECT_LOCATION = "x-amz-website-redirect-location"

# ACL
X_AMZ_ACL = "x-amz-acl"
X_AMZ_GRANT_READ = "x-amz-grant-read"
X_AMZ_GRANT_WRITE = "x-amz-grant-write"
X_AMZ_GRANT_READ_ACP = "x-amz-grant-read-acp"
X_AMZ_GRANT_WRITE_ACP = "x-amz-grant-write-acp"
X_AMZ_GRANT_FULL_CONTROL = "x-amz-grant-full-control"

# Server-side encryption
X_AMZ_SSE = "x-amz-server-side-encryption"
X_AMZ_SSE_AWS_KMS_KEY_ID = "x-amz-server-side-encryption-aws-kms-key-id"
X_AMZ_SSE_CUSTOMER_ALGORITHM = (
    "x-amz-server-side-encryption-customer-algorithm"
)
X_AMZ_SSE_CUSTOMER_KEY = "x-amz-server-side-encryption-customer-key"
X_AMZ_SSE_CUSTOMER_KEY_MD5 = "x-amz-server-side-encryption-customer-key-MD5"

# Copy
X_AMZ_COPY_SOURCE = "x-amz-copy-source"
X_AMZ_METADATA_DIRECTIVE = "x-amz-metadata-directive"
X_AMZ_TAGGING_DIRECTIVE = "x-amz-tagging-directive"
X_AMZ_COPY_SOURCE_IF_MATCH = "x-amz-copy-source-if-match"
X_AMZ_COPY_SOURCE_IF_NONE_MATCH = "x-amz-copy-source-if-none-match"
X_AMZ_COPY_SOURCE_IF_MODIFIED_SINCE = "x-amz-copy-source-if-modified-since"
X_AMZ_COPY_SOURCE_IF_UNMODIFIED_SINCE = (
    "x-amz-copy-source-if-unmodified-since"
)
X_AMZ_COPY_SOURCE_VERSION_ID = "x-amz-copy-source-version-id"

# Delete
X_AMZ_MFA = "x-amz-mfa"

# Response only
X_AMZ_ABORT_DATE = "x-amz-abort-date"
X_AMZ_ABORT_RULE_ID = "x-amz-abort-rule-id"
X_AMZ_DELETE_MARKER = "x-amz-delete-marker"
X_AMZ_EXPIRATION = "x-amz-expiration"
X_AMZ_ID_2 = "x-amz-id-2"
X_AMZ_MISSING_META = "x-amz-missing-meta"
X_AMZ_REPLICATION_STATUS = "x-amz-replication-status"
X_AMZ_REQUEST_ID = "x-amz-request-id"
X_AMZ_RESTORE = "x-amz-restore"
X_AMZ_TAGGING_COUNT = "x-amz-tagging-count"
X_AMZ_VERSION_ID = "x-amz-version-id"


def encode_meta_value(value: str) -> str:
    """Make a user metadata value safe for an HTTP header.

    ASCII values pass through.  Anything else is sent as an RFC 2047
    encoded-word (``=?UTF-8?B?...?=``), which S3 stores and returns as is.
    """
    if value.isascii():
        return value
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


def decode_meta_value(value: str) -> str:
    """Decode RFC 2047 encoded-words in a returned metadata value."""
    decoded_parts: list[str] = []
    for data, charset in decode_header(value):
        if isinstance(data, bytes):
            decoded_parts.append(
                data.decode(charset or "utf-8", errors="replace")
            )
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts)


def _add(headers: Headers, name: str, value: object | None) -> None:
    if value is None:
        return
    text = str(value)
    if text:
        headers.append((name, text))


# ---------------------------------------------------------------------------
# Request headers
# ---------------------------------------------------------------------------


def object_attribute_headers(
    headers: Headers,
    attributes: ObjectAttributes,
    *,
    include_content_md5: bool = True,
) -> None:
    """Append object attribute headers.

    Metadata values are trimmed and non-ASCII values encoded with
    :func:`encode_meta_value`.  ``Content-MD5`` describes one request
    body, so multipart initiation leaves it out.

    Raises:
        ValueError: A metadata name is not ASCII.
    """
    _add(headers, CACHE_CONTROL, attributes.cache_control)
    _add(headers, CONTENT_DISPOSITION, attributes.content_disposition)
    _add(headers, CONTENT_ENCODING, attributes.content_encoding)
    if include_content_md5:
        _add(headers, CONTENT_MD5, attributes.content_md5)
    _add(headers, CONTENT_TYPE, attributes.content_type)
    _add(headers, EXPIRES, attributes.expires)
    for name, value in attributes.meta.items():
        if not name.isascii():
            raise ValueError(f"Metadata name must be ASCII: {name!r}")
        _add(
            headers,
            f"{X_AMZ_META_PREFIX}{name}",
            encode_meta_value(value.strip()),
        )
    _add(headers, X_AMZ_STORAGE_CLASS, attributes.storage_class)
    _add(headers, X_AMZ_TAGGING, attributes.tagging)
    _add(
        headers,
        X_AMZ_WEBSITE_REDIRECT_LOCATION,
        attributes.website_redirect_location,
    )


def acl_headers(headers: Headers, acl: AclHeaders) -> None:
    """Append canned ACL and explicit grant headers."""
    _add(headers, X_AMZ_ACL, acl.acl)
    _add(headers, X_AMZ_GRANT_READ, acl.grant_read)
    _add(headers, X_AMZ_GRANT_WRITE, acl.grant_write)
    _add(headers, X_AMZ_GRANT_READ_ACP, acl.grant_read_acp)
    _add(headers, X_AMZ_GRANT_WRITE_ACP, acl.grant_write_acp)
    _add(headers, X_AMZ_GRANT_FULL_CONTROL, acl.grant_full_control)


def sse_headers(headers: Headers, sse: SseCustomerKey | None) -> None:
    """Append customer-provided encryption key (SSE-C) headers."""
    if sse is None:
        return
    _add(headers, X_AMZ_SSE_CUSTOMER_ALGORITHM, sse.algorithm)
    _add(headers, X_AMZ_SSE_CUSTOMER_KEY, sse.key)
    _add(headers, X_AMZ_SSE_CUSTOMER_KEY_MD5, sse.key_md5)


def conditional_headers(headers: Headers, cond: ConditionalHeaders) -> None:
    """Append Range and If-* headers for GET and HEAD."""
    _add(headers, RANGE, cond.range)
    _add(headers, IF_MODIFIED_SINCE, cond.if_modified_since)
    _add(headers, IF_UNMODIFIED_SINCE, cond.if_unmodified_since)
    _add(headers, IF_MATCH, cond.if_match)
    _add(headers, IF_NONE_MATCH, cond.if_none_match)


def copy_source_headers(headers: Headers, cond: CopySourceConditions) -> None:
    _add(headers, X_AMZ_COPY_SOURCE_IF_MATCH, cond.if_match)
    _add(headers, X_AMZ_COPY_SOURCE_IF_NONE_MATCH, cond.if_none_match)
    _add(headers, X_AMZ_COPY_SOURCE_IF_MODIFIED_SINCE, cond.if_modified_since)
    _add(
        headers,
        X_AMZ_COPY_SOURCE_IF_UNMODIFIED_SINCE,
        cond.if_unmodified_since,
    )


def populate_object_headers(
    attributes: ObjectAttributes,
    acl: AclHeaders,
    sse: SseCustomerKey | None = None,
    *,
    include_content_md5: bool = True,
) -> Headers:
    """Build every header that defines a stored object's attributes.

    Both the direct PUT and the multipart initiation call this, so an
    object gets the same attributes whichever path uploads it.

    Args:
        attributes: Object attributes (content headers, metadata, storage
            class, tagging, redirect).
        acl: Canned ACL and grants.
        sse: Optional SSE-C key.
        include_content_md5: False for multipart initiation.

    Returns:
        Header list.
    """
    headers: Headers = []
    object_attribute_headers(
        headers, attributes, include_content_md5=include_content_md5
    )
    acl_headers(headers, acl)
    sse_headers(headers, sse)
    return headers


# ---------------------------------------------------------------------------
# Response headers
# ---------------------------------------------------------------------------


def _coerce(value: str, kind: str | None) -> Any:
    if kind == "int":
        try:
            return int(value)
        except ValueError:
            return None
    if kind == "bool":
        return value.strip().lower() == "true"
    return value


def map_response_headers(cls: type[H], headers: Mapping[str, str]) -> H:
    """Build a response header object from raw response headers.

    Each dataclass field of ``cls`` names its header in
    ``field.metadata["header"]`` and optionally a ``"type"`` of ``int``
    or ``bool``.  A field with ``metadata["header"] == X_AMZ_META_PREFIX``
    collects every ``x-amz-meta-*`` header into a dict.

    Args:
        cls: Response header dataclass.
        headers: Case-insensitive response headers.

    Returns:
        Populated ``cls`` instance.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    values: dict[str, Any] = {}
    for f in dataclasses.fields(cls):  # type: ignore[arg-type]
        name = f.metadata.get("header")
        if name is None:
            continue
        if name == X_AMZ_META_PREFIX:
            values[f.name] = {
                k[len(X_AMZ_META_PREFIX) :]: decode_meta_value(v)
                for k, v in lowered.items()
                if k.startswith(X_AMZ_META_PREFIX)
            }
            continue
        raw = lowered.get(name.lower())
        if raw is not None:
            values[f.name] = _coerce(raw, f.metadata.get("type"))
    return cls(**values)
