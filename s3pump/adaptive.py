# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Adaptive upload: direct PUT or multipart, decided by the first chunk.

The payload length is never asked for.  The source is cut into
``part_size`` chunks and only the first one is inspected:

- shorter than ``part_size``: it is the whole payload, so it goes up in
  one direct PUT (an empty source takes this path too);
- exactly ``part_size``: more data may follow, so the stream is paused,
  a multipart upload is initiated, and every chunk (the first included)
  is written to the multipart writer.

Both paths send the same object attribute, ACL and SSE-C headers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from s3pump.chunked import ChunkedBufferStream
from s3pump.errors import S3ClientError
from s3pump.models import (
    AdaptiveUploadRequest,
    CommonResponseHeaders,
    InitMultipartUploadRequest,
    PutObjectRequest,
    Response,
)
from s3pump.multipart import MultipartUploadWriter, UploadState


if TYPE_CHECKING:
    from s3pump.client import S3Client


logger = logging.getLogger(__name__)

_OPEN_STATES = frozenset(
    {
        UploadState.INITIATED,
        UploadState.UPLOADING_PARTS,
        UploadState.COMPLETING,
    }
)


def adaptive_upload(
    client: S3Client,
    bucket: str,
    key: str,
    request: AdaptiveUploadRequest,
) -> Response[CommonResponseHeaders, None]:
    """Upload a payload of unknown length.

    Args:
        client: Client to upload with.
        bucket: Bucket name.
        key: Object key.
        request: Source and object attributes.

    Returns:
        Header-only response of the final request (PUT or completion).

    Raises:
        ValueError: Blank bucket or key.
        S3ClientError: Any failure of the source, a request or the
            multipart upload.  Raised once; a started multipart upload is
            aborted first when the client is configured to.
    """
    if not bucket or not bucket.strip():
        raise ValueError("bucket must not be blank")
    if not key or not key.strip():
        raise ValueError("key must not be blank")

    config = client.config
    part_size = config.part_size
    writer: MultipartUploadWriter | None = None

    with ChunkedBufferStream(
        request.source,
        part_size,
        high_water_mark=config.stream_high_water_mark,
    ) as stream:
        try:
            stream.resume()
            first = next(stream)

            if len(first) < part_size:
                data = first.data + b"".join(chunk.data for chunk in stream)
                logger.info(
                    "Uploading %s/%s with a direct PUT (%d bytes)",
                    bucket,
                    key,
                    len(data),
                )
                put = client.put_object(
                    bucket,
                    key,
                    PutObjectRequest(
                        data=data,
                        attributes=request.attributes,
                        acl=request.acl,
                    ),
                    sse=request.sse,
                )
                return Response(put.headers, None)

            stream.pause()
            logger.info("Uploading %s/%s as a multipart upload", bucket, key)
            init = client.init_multipart_upload(
                bucket,
                key,
                InitMultipartUploadRequest(
                    attributes=request.attributes, acl=request.acl
                ),
                request.sse,
                buffer_size=request.buffer_size,
                write_queue_max_size=request.write_queue_max_size,
            )
            writer = init.data
            stream.resume()
            writer.write(first.data)
            for chunk in stream:
                writer.write(chunk.data)
            completed = writer.end()
            return Response(completed.headers, None)
        except Exception:
            stream.close()
            if writer is not None:
                _abort_open_upload(writer, config.abort_on_failure)
            raise


def _abort_open_upload(
    writer: MultipartUploadWriter, abort_on_failure: bool
) -> None:
    # Failures inside the writer already aborted; this covers the source
    # failing between parts.
    if not abort_on_failure or writer.state not in _OPEN_STATES:
        return
    try:
        writer.abort()
    except S3ClientError as e:
        logger.warning(
            "Abort of multipart upload %s failed: %s", writer.upload_id, e
        )
