# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""s3pump: S3-compatible object storage client.

SigV4 request signing, streaming chunked buffering and adaptive
single-request / multipart uploads for payloads of unknown length.
"""

from s3pump.adaptive import adaptive_upload
from s3pump.chunked import Chunk, ChunkedBufferStream
from s3pump.client import S3Client
from s3pump.config import ClientConfig
from s3pump.documents import (
    AccessControlPolicy,
    CompletedPart,
    ErrorResponse,
    ListBucketResult,
)
from s3pump.errors import (
    ConfigError,
    HttpError,
    MultipartUploadError,
    S3ClientError,
    StreamError,
    TransportError,
    UnmarshalError,
)
from s3pump.models import (
    AclHeaders,
    AdaptiveUploadRequest,
    CannedAcl,
    ObjectAttributes,
    PutObjectRequest,
    Response,
    SseCustomerKey,
    StorageClass,
)
from s3pump.multipart import MultipartUploadWriter, UploadSession, UploadState
from s3pump.signing import Credentials, RequestSigner, SigningContext
from s3pump.transport import (
    HttpRequest,
    HttpResponse,
    HttpxTransport,
    Transport,
)


__all__ = [
    "AccessControlPolicy",
    "AclHeaders",
    "AdaptiveUploadRequest",
    "CannedAcl",
    "Chunk",
    "ChunkedBufferStream",
    "ClientConfig",
    "CompletedPart",
    "ConfigError",
    "Credentials",
    "ErrorResponse",
    "HttpError",
    "HttpRequest",
    "HttpResponse",
    "HttpxTransport",
    "ListBucketResult",
    "MultipartUploadError",
    "MultipartUploadWriter",
    "ObjectAttributes",
    "PutObjectRequest",
    "RequestSigner",
    "Response",
    "S3Client",
    "S3ClientError",
    "SigningContext",
    "SseCustomerKey",
    "StorageClass",
    "StreamError",
    "Transport",
    "TransportError",
    "UnmarshalError",
    "UploadSession",
    "UploadState",
    "adaptive_upload",
]
