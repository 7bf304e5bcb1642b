# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request and response value objects.

All values are immutable.  Use :func:`dataclasses.replace` to derive a
modified copy.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import IO, Any, Generic, TypeVar

from s3pump import headers as h
from s3pump.documents import AccessControlPolicy, CompletedPart


H = TypeVar("H")
D = TypeVar("D")


class StorageClass(StrEnum):
    STANDARD = "STANDARD"
    REDUCED_REDUNDANCY = "REDUCED_REDUNDANCY"
    STANDARD_IA = "STANDARD_IA"
    ONEZONE_IA = "ONEZONE_IA"
    INTELLIGENT_TIERING = "INTELLIGENT_TIERING"
    GLACIER = "GLACIER"
    DEEP_ARCHIVE = "DEEP_ARCHIVE"


class CannedAcl(StrEnum):
    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"
    AUTHENTICATED_READ = "authenticated-read"
    AWS_EXEC_READ = "aws-exec-read"
    BUCKET_OWNER_READ = "bucket-owner-read"
    BUCKET_OWNER_FULL_CONTROL = "bucket-owner-full-control"


class MetadataDirective(StrEnum):
    COPY = "COPY"
    REPLACE = "REPLACE"


class TaggingDirective(StrEnum):
    COPY = "COPY"
    REPLACE = "REPLACE"


# ---------------------------------------------------------------------------
# Header families shared by several requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ObjectAttributes:
    """Attributes stored with an object.

    Attributes:
        meta: User metadata, sent as ``x-amz-meta-<name>``.
        tagging: URL-encoded tag set (``k1=v1&k2=v2``).
    """

    cache_control: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_md5: str | None = None
    content_type: str | None = None
    expires: str | None = None
    meta: dict[str, str] = field(default_factory=dict)
    storage_class: StorageClass | str | None = None
    tagging: str | None = None
    website_redirect_location: str | None = None


@dataclass(frozen=True)
class AclHeaders:
    """Canned ACL and explicit grants.

    Grant values use the ``id="..."``, ``uri="..."`` or
    ``emailAddress="..."`` syntax, comma-separated.
    """

    acl: CannedAcl | str | None = None
    grant_read: str | None = None
    grant_write: str | None = None
    grant_read_acp: str | None = None
    grant_write_acp: str | None = None
    grant_full_control: str | None = None


@dataclass(frozen=True)
class SseCustomerKey:
    """Customer-provided encryption key (SSE-C).

    Attributes:
        key: Base64-encoded 256-bit key.
        key_md5: Base64-encoded MD5 of the raw key.
        algorithm: Always ``AES256`` for S3.
    """

    key: str
    key_md5: str
    algorithm: str = "AES256"

    @classmethod
    def from_key(cls, key: bytes) -> SseCustomerKey:
        """Build the header values from a raw 32-byte key."""
        if len(key) != 32:
            raise ValueError(f"SSE-C key must be 32 bytes, got {len(key)}")
        return cls(
            key=base64.b64encode(key).decode("ascii"),
            key_md5=base64.b64encode(hashlib.md5(key).digest()).decode(
                "ascii"
            ),
        )

    def __repr__(self) -> str:
        return f"SseCustomerKey(algorithm={self.algorithm!r}, key=***)"


@dataclass(frozen=True)
class ConditionalHeaders:
    range: str | None = None
    if_modified_since: str | None = None
    if_unmodified_since: str | None = None
    if_match: str | None = None
    if_none_match: str | None = None


@dataclass(frozen=True)
class CopySourceConditions:
    if_match: str | None = None
    if_none_match: str | None = None
    if_modified_since: str | None = None
    if_unmodified_since: str | None = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GetObjectRequest:
    """GET object options.

    The ``response_*`` fields override headers of the returned object
    and are sent as query parameters.
    """

    conditions: ConditionalHeaders = field(default_factory=ConditionalHeaders)
    response_cache_control: str | None = None
    response_content_disposition: str | None = None
    response_content_encoding: str | None = None
    response_content_language: str | None = None
    response_content_type: str | None = None
    response_expires: str | None = None

    def query(self) -> dict[str, str]:
        params = {
            "response-cache-control": self.response_cache_control,
            "response-content-disposition": self.response_content_disposition,
            "response-content-encoding": self.response_content_encoding,
            "response-content-language": self.response_content_language,
            "response-content-type": self.response_content_type,
            "response-expires": self.response_expires,
        }
        return {k: v for k, v in params.items() if v is not None}


@dataclass(frozen=True)
class HeadObjectRequest:
    conditions: ConditionalHeaders = field(default_factory=ConditionalHeaders)


@dataclass(frozen=True)
class PutObjectRequest:
    data: bytes
    attributes: ObjectAttributes = field(default_factory=ObjectAttributes)
    acl: AclHeaders = field(default_factory=AclHeaders)


@dataclass(frozen=True)
class PutObjectAclRequest:
    """Set an object ACL by headers, by policy document, or both."""

    acl: AclHeaders = field(default_factory=AclHeaders)
    policy: AccessControlPolicy | None = None


@dataclass(frozen=True)
class InitMultipartUploadRequest:
    """Multipart initiation options.

    ``attributes.content_md5`` is ignored; each part carries its own.
    """

    attributes: ObjectAttributes = field(default_factory=ObjectAttributes)
    acl: AclHeaders = field(default_factory=AclHeaders)


@dataclass(frozen=True)
class ContinueMultipartUploadRequest:
    data: bytes
    part_number: int
    upload_id: str
    content_md5: str | None = None


@dataclass(frozen=True)
class CompleteMultipartUploadRequest:
    upload_id: str
    parts: tuple[CompletedPart, ...] = ()

    @classmethod
    def of(
        cls, upload_id: str, parts: Iterable[CompletedPart]
    ) -> CompleteMultipartUploadRequest:
        return cls(upload_id=upload_id, parts=tuple(parts))


@dataclass(frozen=True)
class AbortMultipartUploadRequest:
    upload_id: str


@dataclass(frozen=True)
class CopyObjectRequest:
    attributes: ObjectAttributes = field(default_factory=ObjectAttributes)
    acl: AclHeaders = field(default_factory=AclHeaders)
    metadata_directive: MetadataDirective | None = None
    tagging_directive: TaggingDirective | None = None
    source_conditions: CopySourceConditions = field(
        default_factory=CopySourceConditions
    )


@dataclass(frozen=True)
class DeleteObjectRequest:
    mfa: str | None = None


@dataclass(frozen=True)
class GetBucketRequest:
    """ListObjectsV2 options."""

    continuation_token: str | None = None
    delimiter: str | None = None
    encoding_type: str | None = None
    fetch_owner: bool | None = None
    max_keys: int | None = None
    prefix: str | None = None
    start_after: str | None = None

    def query(self) -> dict[str, str]:
        params: dict[str, str] = {"list-type": "2"}
        if self.continuation_token is not None:
            params["continuation-token"] = self.continuation_token
        if self.delimiter is not None:
            params["delimiter"] = self.delimiter
        if self.encoding_type is not None:
            params["encoding-type"] = self.encoding_type
        if self.fetch_owner is not None:
            params["fetch-owner"] = "true" if self.fetch_owner else "false"
        if self.max_keys is not None:
            params["max-keys"] = str(self.max_keys)
        if self.prefix is not None:
            params["prefix"] = self.prefix
        if self.start_after is not None:
            params["start-after"] = self.start_after
        return params


@dataclass(frozen=True)
class AdaptiveUploadRequest:
    """Upload of a payload whose length is not known in advance.

    Attributes:
        source: Binary file-like object or iterable of bytes.
        attributes: Stored object attributes (both upload paths).
        acl: Canned ACL and grants (both upload paths).
        sse: Optional SSE-C key, sent with every request of the upload.
        write_queue_max_size: Overrides the client's parts-in-flight limit.
        buffer_size: Overrides the multipart part size.
    """

    source: IO[bytes] | Iterable[bytes]
    attributes: ObjectAttributes = field(default_factory=ObjectAttributes)
    acl: AclHeaders = field(default_factory=AclHeaders)
    sse: SseCustomerKey | None = None
    write_queue_max_size: int | None = None
    buffer_size: int | None = None


# ---------------------------------------------------------------------------
# Response headers
# ---------------------------------------------------------------------------


def _header(name: str, kind: str | None = None) -> Any:
    metadata = {"header": name}
    if kind is not None:
        metadata["type"] = kind
    return field(default=None, metadata=metadata)


@dataclass(frozen=True)
class CommonResponseHeaders:
    content_type: str | None = _header(h.CONTENT_TYPE)
    content_length: int | None = _header(h.CONTENT_LENGTH, "int")
    date: str | None = _header(h.DATE)
    etag: str | None = _header(h.ETAG)
    connection: str | None = _header(h.CONNECTION)
    server: str | None = _header(h.SERVER)
    delete_marker: bool | None = _header(h.X_AMZ_DELETE_MARKER, "bool")
    amz_id_2: str | None = _header(h.X_AMZ_ID_2)
    amz_request_id: str | None = _header(h.X_AMZ_REQUEST_ID)
    amz_version_id: str | None = _header(h.X_AMZ_VERSION_ID)


@dataclass(frozen=True)
class ServerSideEncryptionResponseHeaders(CommonResponseHeaders):
    server_side_encryption: str | None = _header(h.X_AMZ_SSE)
    aws_kms_key_id: str | None = _header(h.X_AMZ_SSE_AWS_KMS_KEY_ID)
    customer_algorithm: str | None = _header(h.X_AMZ_SSE_CUSTOMER_ALGORITHM)
    customer_key_md5: str | None = _header(h.X_AMZ_SSE_CUSTOMER_KEY_MD5)


@dataclass(frozen=True)
class GetObjectResponseHeaders(ServerSideEncryptionResponseHeaders):
    last_modified: str | None = _header(h.LAST_MODIFIED)
    expiration: str | None = _header(h.X_AMZ_EXPIRATION)
    replication_status: str | None = _header(h.X_AMZ_REPLICATION_STATUS)
    restore: str | None = _header(h.X_AMZ_RESTORE)
    storage_class: str | None = _header(h.X_AMZ_STORAGE_CLASS)
    tagging_count: int | None = _header(h.X_AMZ_TAGGING_COUNT, "int")
    website_redirect_location: str | None = _header(
        h.X_AMZ_WEBSITE_REDIRECT_LOCATION
    )
    missing_meta: int | None = _header(h.X_AMZ_MISSING_META, "int")
    meta: dict[str, str] = field(
        default_factory=dict, metadata={"header": h.X_AMZ_META_PREFIX}
    )


@dataclass(frozen=True)
class HeadObjectResponseHeaders(GetObjectResponseHeaders):
    pass


@dataclass(frozen=True)
class PutObjectResponseHeaders(ServerSideEncryptionResponseHeaders):
    expiration: str | None = _header(h.X_AMZ_EXPIRATION)


@dataclass(frozen=True)
class InitMultipartUploadResponseHeaders(ServerSideEncryptionResponseHeaders):
    abort_date: str | None = _header(h.X_AMZ_ABORT_DATE)
    abort_rule_id: str | None = _header(h.X_AMZ_ABORT_RULE_ID)


@dataclass(frozen=True)
class ContinueMultipartUploadResponseHeaders(
    ServerSideEncryptionResponseHeaders
):
    pass


@dataclass(frozen=True)
class CompleteMultipartUploadResponseHeaders(
    ServerSideEncryptionResponseHeaders
):
    expiration: str | None = _header(h.X_AMZ_EXPIRATION)


@dataclass(frozen=True)
class CopyObjectResponseHeaders(ServerSideEncryptionResponseHeaders):
    expiration: str | None = _header(h.X_AMZ_EXPIRATION)
    copy_source_version_id: str | None = _header(
        h.X_AMZ_COPY_SOURCE_VERSION_ID
    )


@dataclass(frozen=True)
class Response(Generic[H, D]):
    """Successful operation result.

    Attributes:
        headers: Typed response headers.
        data: Parsed body, a byte stream, or None for header-only
            responses.
    """

    headers: H
    data: D
