# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""S3-compatible object storage client.

Every operation builds one request, signs it with SigV4 and sends it
through the transport.  Responses are handled in one of three shapes:

- **stream**: the body is handed to the caller unread (``get_object``);
- **XML body**: the body is parsed into a document (listing, ACL, ...);
- **headers only**: the body is discarded (``put_object``, ``head_object``).

Non-2xx responses raise :class:`~s3pump.errors.HttpError` carrying the
parsed ``<Error>`` document (``None`` for HEAD, which has no body).  A
body that cannot be parsed raises :class:`~s3pump.errors.UnmarshalError`
instead.  Nothing is retried.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import Callable, Iterator
from typing import NoReturn, TypeVar

from s3pump import adaptive
from s3pump import headers as h
from s3pump.config import ClientConfig
from s3pump.documents import (
    AccessControlPolicy,
    CompleteMultipartUploadResult,
    CopyObjectResult,
    ErrorResponse,
    InitMultipartUploadResult,
    ListBucketResult,
    is_error_document,
    render_complete_multipart_upload,
)
from s3pump.errors import HttpError
from s3pump.logging import truncate_for_log
from s3pump.models import (
    AbortMultipartUploadRequest,
    AdaptiveUploadRequest,
    CommonResponseHeaders,
    CompleteMultipartUploadRequest,
    CompleteMultipartUploadResponseHeaders,
    ContinueMultipartUploadRequest,
    ContinueMultipartUploadResponseHeaders,
    CopyObjectRequest,
    CopyObjectResponseHeaders,
    DeleteObjectRequest,
    GetBucketRequest,
    GetObjectRequest,
    GetObjectResponseHeaders,
    HeadObjectRequest,
    HeadObjectResponseHeaders,
    InitMultipartUploadRequest,
    InitMultipartUploadResponseHeaders,
    PutObjectAclRequest,
    PutObjectRequest,
    PutObjectResponseHeaders,
    Response,
    SseCustomerKey,
)
from s3pump.multipart import MultipartUploadWriter
from s3pump.signing import (
    Clock,
    Credentials,
    RequestSigner,
    canonical_query_string,
    uri_encode,
    utc_now,
)
from s3pump.transport import (
    HttpRequest,
    HttpResponse,
    HttpxTransport,
    Transport,
)


logger = logging.getLogger(__name__)

H = TypeVar("H")
D = TypeVar("D")

XML_CONTENT_TYPE = "application/xml"
MAX_PART_NUMBER = 10000


def _require_name(value: str, what: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"{what} must not be blank")


def _content_md5(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


class S3Client:
    """Client for one endpoint, region and identity.

    Safe to share between threads: configuration and signer are
    read-only, and the default transport pools connections.

    Args:
        config: Client configuration.
        transport: Transport to send requests with.  Defaults to an
            :class:`HttpxTransport` owned (and closed) by the client.
        clock: Time source for signatures.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Transport | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._signer = RequestSigner(
            Credentials(config.access_key, config.secret_key),
            config.region,
            config.service_name,
            sign_payload=config.sign_payload,
            clock=clock if clock is not None else utc_now,
        )
        self._owns_transport = transport is None
        self._transport: Transport = (
            transport if transport is not None else HttpxTransport()
        )
        logger.debug(
            "Client for %s (region %s, service %s)",
            config.endpoint_url,
            config.region,
            config.service_name,
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def region(self) -> str:
        return self._config.region

    @property
    def service_name(self) -> str:
        return self._config.service_name

    @property
    def hostname(self) -> str:
        return self._config.hostname

    @property
    def timeout(self) -> float:
        """Per-request timeout in seconds."""
        return self._config.timeout

    def close(self) -> None:
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> S3Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Object reads
    # ------------------------------------------------------------------

    def get_object(
        self,
        bucket: str,
        key: str,
        request: GetObjectRequest | None = None,
        sse: SseCustomerKey | None = None,
    ) -> Response[GetObjectResponseHeaders, HttpResponse]:
        """Download an object.

        The returned ``data`` is the unread response; iterate
        ``data.iter_bytes()`` or call ``data.read()``, and ``close()``
        it when stopping early.
        """
        request = request or GetObjectRequest()
        headers: h.Headers = []
        h.conditional_headers(headers, request.conditions)
        h.sse_headers(headers, sse)
        resp = self._send(
            "GET", bucket, key, query=request.query(), headers=headers
        )
        return self._handle_stream("getObject", resp, GetObjectResponseHeaders)

    def head_object(
        self,
        bucket: str,
        key: str,
        request: HeadObjectRequest | None = None,
        sse: SseCustomerKey | None = None,
    ) -> Response[HeadObjectResponseHeaders, None]:
        request = request or HeadObjectRequest()
        headers: h.Headers = []
        h.conditional_headers(headers, request.conditions)
        h.sse_headers(headers, sse)
        resp = self._send("HEAD", bucket, key, headers=headers)
        return self._handle_headers(
            "headObject", resp, HeadObjectResponseHeaders, head_only=True
        )

    def get_object_acl(
        self, bucket: str, key: str
    ) -> Response[CommonResponseHeaders, AccessControlPolicy]:
        resp = self._send("GET", bucket, key, query={"acl": ""})
        return self._handle_xml(
            "getObjectAcl",
            resp,
            CommonResponseHeaders,
            AccessControlPolicy.from_xml,
        )

    def get_bucket(
        self, bucket: str, request: GetBucketRequest | None = None
    ) -> Response[CommonResponseHeaders, ListBucketResult]:
        """List one page of a bucket (ListObjectsV2)."""
        request = request or GetBucketRequest()
        resp = self._send("GET", bucket, None, query=request.query())
        return self._handle_xml(
            "getBucket", resp, CommonResponseHeaders, ListBucketResult.from_xml
        )

    def iter_bucket(
        self, bucket: str, request: GetBucketRequest | None = None
    ) -> Iterator[ListBucketResult]:
        """Yield every listing page, following continuation tokens."""
        request = request or GetBucketRequest()
        token = request.continuation_token
        while True:
            page = self.get_bucket(
                bucket,
                GetBucketRequest(
                    continuation_token=token,
                    delimiter=request.delimiter,
                    encoding_type=request.encoding_type,
                    fetch_owner=request.fetch_owner,
                    max_keys=request.max_keys,
                    prefix=request.prefix,
                    start_after=request.start_after if token is None else None,
                ),
            ).data
            yield page
            if not page.is_truncated or not page.next_continuation_token:
                return
            token = page.next_continuation_token

    # ------------------------------------------------------------------
    # Object writes
    # ------------------------------------------------------------------

    def put_object(
        self,
        bucket: str,
        key: str,
        request: PutObjectRequest,
        sse: SseCustomerKey | None = None,
    ) -> Response[PutObjectResponseHeaders, None]:
        """Upload an object in a single request."""
        headers = h.populate_object_headers(
            request.attributes, request.acl, sse
        )
        resp = self._send(
            "PUT", bucket, key, headers=headers, content=request.data
        )
        return self._handle_headers(
            "putObject", resp, PutObjectResponseHeaders
        )

    def put_object_acl(
        self, bucket: str, key: str, request: PutObjectAclRequest
    ) -> Response[CommonResponseHeaders, None]:
        headers: h.Headers = []
        h.acl_headers(headers, request.acl)
        content = b""
        if request.policy is not None:
            content = request.policy.to_xml()
            headers.append((h.CONTENT_TYPE, XML_CONTENT_TYPE))
            headers.append((h.CONTENT_MD5, _content_md5(content)))
        resp = self._send(
            "PUT",
            bucket,
            key,
            query={"acl": ""},
            headers=headers,
            content=content,
        )
        return self._handle_headers(
            "putObjectAcl", resp, CommonResponseHeaders
        )

    def copy_object(
        self,
        source_bucket: str,
        source_key: str,
        destination_bucket: str,
        destination_key: str,
        request: CopyObjectRequest | None = None,
    ) -> Response[CopyObjectResponseHeaders, CopyObjectResult]:
        _require_name(source_bucket, "source bucket")
        _require_name(source_key, "source key")
        request = request or CopyObjectRequest()
        copy_source = uri_encode(source_key, encode_slash=False)
        headers: h.Headers = [
            (h.X_AMZ_COPY_SOURCE, f"/{source_bucket}/{copy_source}")
        ]
        if request.metadata_directive is not None:
            headers.append(
                (h.X_AMZ_METADATA_DIRECTIVE, str(request.metadata_directive))
            )
        if request.tagging_directive is not None:
            headers.append(
                (h.X_AMZ_TAGGING_DIRECTIVE, str(request.tagging_directive))
            )
        h.copy_source_headers(headers, request.source_conditions)
        headers.extend(
            h.populate_object_headers(
                request.attributes, request.acl, include_content_md5=False
            )
        )
        resp = self._send(
            "PUT", destination_bucket, destination_key, headers=headers
        )
        return self._handle_xml(
            "copyObject",
            resp,
            CopyObjectResponseHeaders,
            CopyObjectResult.from_xml,
            error_in_body=True,
        )

    def delete_object(
        self,
        bucket: str,
        key: str,
        request: DeleteObjectRequest | None = None,
    ) -> Response[CommonResponseHeaders, None]:
        request = request or DeleteObjectRequest()
        headers: h.Headers = []
        if request.mfa:
            headers.append((h.X_AMZ_MFA, request.mfa))
        resp = self._send("DELETE", bucket, key, headers=headers)
        return self._handle_headers(
            "deleteObject", resp, CommonResponseHeaders
        )

    # ------------------------------------------------------------------
    # Multipart upload
    # ------------------------------------------------------------------

    def init_multipart_upload(
        self,
        bucket: str,
        key: str,
        request: InitMultipartUploadRequest | None = None,
        sse: SseCustomerKey | None = None,
        *,
        buffer_size: int | None = None,
        write_queue_max_size: int | None = None,
    ) -> Response[InitMultipartUploadResponseHeaders, MultipartUploadWriter]:
        """Initiate a multipart upload.

        Either write the object through the returned writer, or upload
        parts yourself with :meth:`continue_multipart_upload` using
        ``writer.upload_id``.

        Args:
            bucket: Bucket name.
            key: Object key.
            request: Object attributes and ACL for the final object.
            sse: SSE-C key; the writer sends it with every part.
            buffer_size: Writer part size (default: configured part size).
            write_queue_max_size: Writer parts in flight (default:
                configured value).

        Returns:
            Response whose data is a writer bound to the new upload.
        """
        request = request or InitMultipartUploadRequest()
        headers = h.populate_object_headers(
            request.attributes, request.acl, sse, include_content_md5=False
        )
        resp = self._send(
            "POST", bucket, key, query={"uploads": ""}, headers=headers
        )
        result = self._handle_xml(
            "initMultipartUpload",
            resp,
            InitMultipartUploadResponseHeaders,
            InitMultipartUploadResult.from_xml,
        )
        writer = MultipartUploadWriter(
            self,
            bucket,
            key,
            result.data.upload_id,
            buffer_size=buffer_size or self._config.part_size,
            write_queue_max_size=(
                write_queue_max_size or self._config.write_queue_max_size
            ),
            abort_on_failure=self._config.abort_on_failure,
            sse=sse,
        )
        logger.info(
            "Initiated multipart upload %s for %s/%s",
            writer.upload_id,
            bucket,
            key,
        )
        return Response(result.headers, writer)

    def continue_multipart_upload(
        self,
        bucket: str,
        key: str,
        request: ContinueMultipartUploadRequest,
        sse: SseCustomerKey | None = None,
        *,
        on_send: Callable[[], None] | None = None,
    ) -> Response[ContinueMultipartUploadResponseHeaders, None]:
        """Upload one part.

        Args:
            bucket: Bucket name.
            key: Object key.
            request: Part data, number and upload id.
            sse: SSE-C key the upload was initiated with.
            on_send: Called when the part is signed and about to be
                sent, before the response is awaited.
        """
        if not 1 <= request.part_number <= MAX_PART_NUMBER:
            raise ValueError(
                f"Part number must be 1-{MAX_PART_NUMBER}: "
                f"{request.part_number}"
            )
        _require_name(request.upload_id, "upload id")
        headers: h.Headers = []
        if request.content_md5:
            headers.append((h.CONTENT_MD5, request.content_md5))
        h.sse_headers(headers, sse)
        resp = self._send(
            "PUT",
            bucket,
            key,
            query={
                "partNumber": str(request.part_number),
                "uploadId": request.upload_id,
            },
            headers=headers,
            content=request.data,
            on_send=on_send,
        )
        return self._handle_headers(
            "continueMultipartUpload",
            resp,
            ContinueMultipartUploadResponseHeaders,
        )

    def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        request: CompleteMultipartUploadRequest,
    ) -> Response[
        CompleteMultipartUploadResponseHeaders, CompleteMultipartUploadResult
    ]:
        """Complete an upload from its part manifest.

        The server may answer 200 and still fail; an ``<Error>`` body is
        raised as :class:`HttpError`.
        """
        _require_name(request.upload_id, "upload id")
        content = render_complete_multipart_upload(request.parts)
        resp = self._send(
            "POST",
            bucket,
            key,
            query={"uploadId": request.upload_id},
            headers=[(h.CONTENT_TYPE, XML_CONTENT_TYPE)],
            content=content,
        )
        return self._handle_xml(
            "completeMultipartUpload",
            resp,
            CompleteMultipartUploadResponseHeaders,
            CompleteMultipartUploadResult.from_xml,
            error_in_body=True,
        )

    def abort_multipart_upload(
        self,
        bucket: str,
        key: str,
        request: AbortMultipartUploadRequest,
    ) -> Response[CommonResponseHeaders, None]:
        _require_name(request.upload_id, "upload id")
        resp = self._send(
            "DELETE", bucket, key, query={"uploadId": request.upload_id}
        )
        return self._handle_headers(
            "abortMultipartUpload", resp, CommonResponseHeaders
        )

    def adaptive_upload(
        self, bucket: str, key: str, request: AdaptiveUploadRequest
    ) -> Response[CommonResponseHeaders, None]:
        """Upload a payload of unknown length.

        See :func:`s3pump.adaptive.adaptive_upload`.
        """
        return adaptive.adaptive_upload(self, bucket, key, request)

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _path(self, bucket: str, key: str | None) -> str:
        _require_name(bucket, "bucket")
        if key is None:
            return f"/{bucket}"
        _require_name(key, "key")
        return f"/{bucket}/{uri_encode(key, encode_slash=False)}"

    def _send(
        self,
        method: str,
        bucket: str,
        key: str | None,
        *,
        query: dict[str, str] | None = None,
        headers: h.Headers | None = None,
        content: bytes = b"",
        on_send: Callable[[], None] | None = None,
    ) -> HttpResponse:
        path = self._path(bucket, key)
        signed = self._signer.sign(
            method,
            path,
            query,
            headers or [],
            content,
            host=self._config.host_header,
        )
        url = f"{self._config.endpoint_url}{path}"
        if query:
            url = f"{url}?{canonical_query_string(query)}"
        logger.debug("Sending %s %s (%d bytes)", method, url, len(content))
        request = HttpRequest(
            method=method,
            url=url,
            headers=signed.headers,
            content=content,
            timeout=self._config.timeout,
        )
        if on_send is not None:
            on_send()
        return self._transport.send(request)

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def _raise_http_error(
        self, action: str, resp: HttpResponse, *, head_only: bool = False
    ) -> NoReturn:
        body = resp.read()
        logger.warning(
            "Error occurred. Status: %d, Message: %s",
            resp.status_code,
            resp.reason,
        )
        text = body.decode("utf-8", errors="replace")
        if text:
            logger.info("Response: %s", truncate_for_log(text))
        error = None if head_only else ErrorResponse.from_xml(body)
        raise HttpError(resp.status_code, resp.reason, error, action)

    def _log_success(self, resp: HttpResponse) -> None:
        logger.info(
            "Request successful. Status: %d, Message: %s",
            resp.status_code,
            resp.reason,
        )

    def _handle_stream(
        self, action: str, resp: HttpResponse, header_cls: type[H]
    ) -> Response[H, HttpResponse]:
        if not resp.is_success:
            self._raise_http_error(action, resp)
        self._log_success(resp)
        return Response(h.map_response_headers(header_cls, resp.headers), resp)

    def _handle_headers(
        self,
        action: str,
        resp: HttpResponse,
        header_cls: type[H],
        *,
        head_only: bool = False,
    ) -> Response[H, None]:
        if not resp.is_success:
            self._raise_http_error(action, resp, head_only=head_only)
        resp.read()
        self._log_success(resp)
        logger.debug("Response headers: %s", dict(resp.headers))
        return Response(h.map_response_headers(header_cls, resp.headers), None)

    def _handle_xml(
        self,
        action: str,
        resp: HttpResponse,
        header_cls: type[H],
        parse: Callable[[bytes], D],
        *,
        error_in_body: bool = False,
    ) -> Response[H, D]:
        if not resp.is_success:
            self._raise_http_error(action, resp)
        body = resp.read()
        if error_in_body and is_error_document(body):
            logger.warning(
                "Error occurred. Status: %d, Message: %s (error in body)",
                resp.status_code,
                resp.reason,
            )
            raise HttpError(
                resp.status_code,
                resp.reason,
                ErrorResponse.from_xml(body),
                action,
            )
        self._log_success(resp)
        logger.debug(
            "Response: %s",
            truncate_for_log(body.decode("utf-8", errors="replace")),
        )
        return Response(
            h.map_response_headers(header_cls, resp.headers), parse(body)
        )
