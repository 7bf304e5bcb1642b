# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for S3Client operations and response handling."""

import base64
import gzip
import hashlib
import logging

import httpx
import pytest

from s3pump.client import S3Client
from s3pump.config import ClientConfig
from s3pump.documents import (
    AccessControlPolicy,
    CompletedPart,
    Grant,
    Grantee,
    GranteeType,
    Owner,
    Permission,
)
from s3pump.errors import HttpError, TransportError, UnmarshalError
from s3pump.headers import decode_meta_value
from s3pump.models import (
    AbortMultipartUploadRequest,
    AclHeaders,
    CompleteMultipartUploadRequest,
    ConditionalHeaders,
    ContinueMultipartUploadRequest,
    CopyObjectRequest,
    DeleteObjectRequest,
    GetBucketRequest,
    GetObjectRequest,
    HeadObjectRequest,
    MetadataDirective,
    ObjectAttributes,
    PutObjectAclRequest,
    PutObjectRequest,
)
from tests.conftest import (
    ACCESS_KEY,
    SECRET_KEY,
    FakeS3,
    error_xml,
    make_client,
    s3_response,
)


class Recorder:
    """Answers every request with one canned response and keeps them."""

    def __init__(
        self,
        status: int = 200,
        *,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
    ) -> None:
        self.status = status
        self.headers = headers
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return s3_response(self.status, headers=self.headers, body=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _listing(keys: list[str], next_token: str | None = None) -> bytes:
    contents = "".join(
        f"<Contents><Key>{k}</Key><Size>1</Size></Contents>" for k in keys
    )
    truncated = "true" if next_token else "false"
    token = (
        f"<NextContinuationToken>{next_token}</NextContinuationToken>"
        if next_token
        else ""
    )
    return (
        f"<ListBucketResult><Name>b</Name><IsTruncated>{truncated}"
        f"</IsTruncated>{token}{contents}</ListBucketResult>"
    ).encode()


# ---------------------------------------------------------------------------
# Request construction
# ---------------------------------------------------------------------------


class TestRequestConstruction:
    """URL, host and signing headers."""

    def test_url_and_signing_headers(self, config: ClientConfig) -> None:
        """Keys are path-encoded with slashes kept; requests are signed."""
        recorder = Recorder(204)
        with make_client(config, recorder) as client:
            client.delete_object("bucket", "dir/a b+c.txt")

        request = recorder.last
        assert request.method == "DELETE"
        assert request.url.host == "s3.amazonaws.com"
        assert request.url.scheme == "https"
        assert request.url.raw_path == b"/bucket/dir/a%20b%2Bc.txt"
        assert request.headers["host"] == "s3.amazonaws.com"
        assert request.headers["x-amz-date"] == "20130524T000000Z"
        assert request.headers["x-amz-content-sha256"] == "UNSIGNED-PAYLOAD"
        authorization = request.headers["authorization"]
        assert authorization.startswith(
            f"AWS4-HMAC-SHA256 Credential={ACCESS_KEY}/20130524/us-east-1/"
            "s3/aws4_request, SignedHeaders="
        )

    def test_regional_host_and_port(self) -> None:
        """Other regions use the regional host; a port goes into Host."""
        config = ClientConfig(
            region="eu-west-1",
            access_key=ACCESS_KEY,
            secret_key=SECRET_KEY,
            port=8443,
        )
        recorder = Recorder(204)
        with make_client(config, recorder) as client:
            client.delete_object("b", "k")
        assert recorder.last.url.host == "s3-eu-west-1.amazonaws.com"
        assert recorder.last.url.port == 8443
        assert recorder.last.headers["host"] == (
            "s3-eu-west-1.amazonaws.com:8443"
        )
        assert "/eu-west-1/s3/" in recorder.last.headers["authorization"]

    def test_hostname_override_plain_http(self) -> None:
        """An override hostname and use_ssl=False are honoured."""
        config = ClientConfig(
            region="us-east-1",
            access_key=ACCESS_KEY,
            secret_key=SECRET_KEY,
            hostname_override="minio.local",
            use_ssl=False,
        )
        recorder = Recorder(204)
        with make_client(config, recorder) as client:
            assert client.hostname == "minio.local"
            client.delete_object("b", "k")
        assert str(recorder.last.url) == "http://minio.local/b/k"

    def test_payload_signing(self) -> None:
        """With payload signing the body hash is sent and signed."""
        config = ClientConfig(
            region="us-east-1",
            access_key=ACCESS_KEY,
            secret_key=SECRET_KEY,
            sign_payload=True,
        )
        recorder = Recorder()
        with make_client(config, recorder) as client:
            client.put_object("b", "k", PutObjectRequest(data=b"hello"))
        assert recorder.last.headers["x-amz-content-sha256"] == (
            hashlib.sha256(b"hello").hexdigest()
        )

    @pytest.mark.parametrize(("bucket", "key"), [("", "k"), ("b", "")])
    def test_blank_names_rejected(
        self, config: ClientConfig, bucket: str, key: str
    ) -> None:
        """Blank bucket or key never reaches the network."""
        recorder = Recorder()
        with make_client(config, recorder) as client:
            with pytest.raises(ValueError):
                client.delete_object(bucket, key)
        assert recorder.requests == []

    def test_properties(self, client: S3Client) -> None:
        assert client.region == "us-east-1"
        assert client.service_name == "s3"
        assert client.hostname == "s3.amazonaws.com"
        assert client.timeout == 10.0


# ---------------------------------------------------------------------------
# Object reads
# ---------------------------------------------------------------------------


class TestGetObject:
    """Tests for get_object and head_object."""

    def test_streams_body_and_maps_headers(self, config: ClientConfig) -> None:
        """The body is streamed; typed headers include user metadata."""
        recorder = Recorder(
            200,
            headers={
                "Content-Length": "11",
                "Content-Type": "text/plain",
                "ETag": '"abc"',
                "x-amz-meta-Owner": "alice",
                "x-amz-tagging-count": "3",
                "x-amz-delete-marker": "false",
            },
            body=b"hello world",
        )
        with make_client(config, recorder) as client:
            response = client.get_object(
                "b",
                "k",
                GetObjectRequest(
                    conditions=ConditionalHeaders(range="bytes=0-10"),
                    response_content_type="application/json",
                ),
            )
            assert response.data.read() == b"hello world"

        headers = response.headers
        assert headers.content_length == 11
        assert headers.etag == '"abc"'
        assert headers.meta == {"owner": "alice"}
        assert headers.tagging_count == 3
        assert headers.delete_marker is False
        sent = recorder.last
        assert sent.headers["range"] == "bytes=0-10"
        assert sent.url.params["response-content-type"] == "application/json"

    def test_encoded_object_returned_as_stored(
        self, config: ClientConfig
    ) -> None:
        """An object stored with Content-Encoding is not decompressed."""
        stored = gzip.compress(b"log line\n" * 200)
        recorder = Recorder(
            200,
            headers={
                "Content-Encoding": "gzip",
                "Content-Length": str(len(stored)),
            },
            body=stored,
        )
        with make_client(config, recorder) as client:
            response = client.get_object("b", "logs/app.log.gz")
            data = response.data.read()
        assert data == stored
        assert response.headers.content_length == len(data)

    def test_not_found(self, client: S3Client) -> None:
        """A 404 raises HttpError with the parsed error document."""
        with pytest.raises(HttpError) as exc_info:
            client.get_object("bucket", "missing")
        error = exc_info.value
        assert error.status == 404
        assert error.status_message == "Not Found"
        assert error.action == "getObject"
        assert error.error_response is not None
        assert error.error_response.code == "NoSuchKey"
        assert "NoSuchKey" in str(error)

    def test_head_error_has_no_body(self, client: S3Client) -> None:
        """HEAD failures carry no error document."""
        with pytest.raises(HttpError) as exc_info:
            client.head_object("bucket", "missing")
        assert exc_info.value.status == 404
        assert exc_info.value.error_response is None
        assert exc_info.value.action == "headObject"

    def test_head_object(self, client: S3Client) -> None:
        """HEAD returns typed headers and no data."""
        client.put_object(
            "bucket",
            "k",
            PutObjectRequest(
                data=b"x",
                attributes=ObjectAttributes(
                    content_type="image/png", meta={"a": "1"}
                ),
            ),
        )
        response = client.head_object(
            "bucket",
            "k",
            HeadObjectRequest(ConditionalHeaders(if_match='"put-etag"')),
        )
        assert response.data is None
        assert response.headers.content_type == "image/png"
        assert response.headers.meta == {"a": "1"}

    def test_unparsable_error_body(self, config: ClientConfig) -> None:
        """An error body that is not XML raises UnmarshalError."""
        recorder = Recorder(502, body=b"<html>oops")
        with make_client(config, recorder) as client:
            with pytest.raises(UnmarshalError) as exc_info:
                client.get_object("b", "k")
        assert exc_info.value.raw == "<html>oops"

    def test_error_logged(
        self, client: S3Client, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Failures log status at warning and the body at info."""
        with caplog.at_level(logging.INFO, logger="s3pump.client"):
            with pytest.raises(HttpError):
                client.get_object("bucket", "missing")
        messages = [r.getMessage() for r in caplog.records]
        assert "Error occurred. Status: 404, Message: Not Found" in messages
        assert any("NoSuchKey" in m for m in messages)

    def test_transport_error(self, config: ClientConfig) -> None:
        """Connection failures raise TransportError."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(config, refuse) as client:
            with pytest.raises(TransportError) as exc_info:
                client.get_object("b", "k")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestGetBucket:
    """Tests for get_bucket and iter_bucket."""

    def test_query(self, config: ClientConfig) -> None:
        """ListObjectsV2 parameters are sent on the bucket path."""
        recorder = Recorder(200, body=_listing(["a"]))
        with make_client(config, recorder) as client:
            page = client.get_bucket(
                "b",
                GetBucketRequest(prefix="p/", max_keys=5, fetch_owner=False),
            ).data
        assert [o.key for o in page.contents] == ["a"]
        url = recorder.last.url
        assert url.raw_path.startswith(b"/b?")
        assert dict(url.params) == {
            "list-type": "2",
            "prefix": "p/",
            "max-keys": "5",
            "fetch-owner": "false",
        }

    def test_iter_follows_continuation(self, config: ClientConfig) -> None:
        """Pages are fetched until the listing is not truncated."""
        pages = {
            None: _listing(["a", "b"], "t1"),
            "t1": _listing(["c"], "t2"),
            "t2": _listing(["d"]),
        }
        tokens: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.url.params.get("continuation-token")
            tokens.append(token)
            return s3_response(200, body=pages[token])

        with make_client(config, handler) as client:
            keys = [
                o.key
                for page in client.iter_bucket("b", GetBucketRequest())
                for o in page.contents
            ]
        assert keys == ["a", "b", "c", "d"]
        assert tokens == [None, "t1", "t2"]

    def test_bad_listing(self, config: ClientConfig) -> None:
        """A 200 with an unexpected document raises UnmarshalError."""
        recorder = Recorder(200, body=b"<Foo/>")
        with make_client(config, recorder) as client:
            with pytest.raises(UnmarshalError):
                client.get_bucket("b")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    """put, copy, delete and ACL operations."""

    def test_put_object_headers(self, config: ClientConfig) -> None:
        """Object attributes become request headers."""
        recorder = Recorder(200, headers={"ETag": '"e"'})
        with make_client(config, recorder) as client:
            response = client.put_object(
                "b",
                "k",
                PutObjectRequest(
                    data=b"body",
                    attributes=ObjectAttributes(
                        content_type="text/plain",
                        meta={"color": "  blue "},
                        tagging="a=1",
                    ),
                    acl=AclHeaders(grant_read='id="abc"'),
                ),
            )
        assert response.headers.etag == '"e"'
        sent = recorder.last
        assert sent.content == b"body"
        assert sent.headers["content-type"] == "text/plain"
        assert sent.headers["x-amz-meta-color"] == "blue"
        assert sent.headers["x-amz-tagging"] == "a=1"
        assert sent.headers["x-amz-grant-read"] == 'id="abc"'

    def test_non_ascii_metadata_sent(self, config: ClientConfig) -> None:
        """Non-ASCII metadata is sent encoded instead of failing."""
        recorder = Recorder(200, headers={"ETag": '"e"'})
        with make_client(config, recorder) as client:
            client.put_object(
                "b",
                "k",
                PutObjectRequest(
                    data=b"x",
                    attributes=ObjectAttributes(meta={"city": "Zürich"}),
                ),
            )
        sent = recorder.last.headers["x-amz-meta-city"]
        assert sent.startswith("=?UTF-8?B?")
        assert decode_meta_value(sent) == "Zürich"

    def test_copy_object(self, config: ClientConfig) -> None:
        """The copy source header names the encoded source object."""
        recorder = Recorder(
            200,
            body=b"<CopyObjectResult><ETag>&quot;c&quot;</ETag>"
            b"</CopyObjectResult>",
        )
        with make_client(config, recorder) as client:
            response = client.copy_object(
                "src",
                "dir/a b",
                "dst",
                "copy",
                CopyObjectRequest(
                    metadata_directive=MetadataDirective.REPLACE
                ),
            )
        assert response.data.etag == '"c"'
        sent = recorder.last
        assert sent.method == "PUT"
        assert sent.url.raw_path == b"/dst/copy"
        assert sent.headers["x-amz-copy-source"] == "/src/dir/a%20b"
        assert sent.headers["x-amz-metadata-directive"] == "REPLACE"

    def test_copy_error_in_body(self, config: ClientConfig) -> None:
        """A 200 copy response carrying <Error> raises HttpError."""
        recorder = Recorder(200, body=error_xml("InternalError", "x"))
        with make_client(config, recorder) as client:
            with pytest.raises(HttpError) as exc_info:
                client.copy_object("s", "k", "d", "k")
        assert exc_info.value.status == 200
        assert exc_info.value.action == "copyObject"

    def test_delete_with_mfa(self, config: ClientConfig) -> None:
        recorder = Recorder(204)
        with make_client(config, recorder) as client:
            client.delete_object("b", "k", DeleteObjectRequest(mfa="dev 123"))
        assert recorder.last.headers["x-amz-mfa"] == "dev 123"

    def test_put_and_get_acl(self, config: ClientConfig) -> None:
        """ACL policies are sent with Content-MD5 and parsed back."""
        policy = AccessControlPolicy(
            owner=Owner("o"),
            grants=[
                Grant(
                    Grantee(GranteeType.CANONICAL_USER, id="o"),
                    Permission.FULL_CONTROL,
                )
            ],
        )
        recorder = Recorder(200, body=policy.to_xml())
        with make_client(config, recorder) as client:
            client.put_object_acl(
                "b", "k", PutObjectAclRequest(policy=policy)
            )
            sent = recorder.last
            assert sent.url.params["acl"] == ""
            assert sent.headers["content-md5"] == base64.b64encode(
                hashlib.md5(sent.content).digest()
            ).decode()

            fetched = client.get_object_acl("b", "k").data
        assert fetched == policy


# ---------------------------------------------------------------------------
# Multipart primitives
# ---------------------------------------------------------------------------


class TestMultipartPrimitives:
    """Low-level multipart operations."""

    def test_on_send_called_before_response(
        self, client: S3Client, fake_s3: FakeS3
    ) -> None:
        """The send hook fires once, before the part response is read."""
        upload_id = client.init_multipart_upload("bucket", "k").data.upload_id
        seen: list[int] = []

        def on_send() -> None:
            seen.append(len(fake_s3.part_requests))

        client.continue_multipart_upload(
            "bucket",
            "k",
            ContinueMultipartUploadRequest(
                data=b"p", part_number=1, upload_id=upload_id
            ),
            on_send=on_send,
        )
        assert seen == [0]
        assert len(fake_s3.part_requests) == 1

    def test_manual_upload(self, client: S3Client, fake_s3: FakeS3) -> None:
        """Parts uploaded by hand complete into the object."""
        init = client.init_multipart_upload("bucket", "big")
        upload_id = init.data.upload_id
        etags = []
        for number, data in ((1, b"first-"), (2, b"second")):
            response = client.continue_multipart_upload(
                "bucket",
                "big",
                ContinueMultipartUploadRequest(
                    data=data, part_number=number, upload_id=upload_id
                ),
            )
            etags.append(response.headers.etag)
        assert etags == ['"etag-1"', '"etag-2"']

        client.complete_multipart_upload(
            "bucket",
            "big",
            CompleteMultipartUploadRequest.of(
                upload_id,
                [CompletedPart(2, etags[1]), CompletedPart(1, etags[0])],
            ),
        )
        assert fake_s3.objects["/bucket/big"][0] == b"first-second"

    @pytest.mark.parametrize("number", [0, 10001])
    def test_part_number_range(self, client: S3Client, number: int) -> None:
        """Part numbers outside 1-10000 are rejected."""
        with pytest.raises(ValueError):
            client.continue_multipart_upload(
                "bucket",
                "k",
                ContinueMultipartUploadRequest(
                    data=b"", part_number=number, upload_id="u"
                ),
            )

    def test_abort_unknown_upload(
        self, client: S3Client, fake_s3: FakeS3
    ) -> None:
        """Aborting sends DELETE with the upload id."""
        client.abort_multipart_upload(
            "bucket", "k", AbortMultipartUploadRequest(upload_id="u-1")
        )
        (request,) = fake_s3.calls("DELETE", "uploadId")
        assert request.query == {"uploadId": "u-1"}
