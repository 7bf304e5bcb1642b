# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Multipart upload writer.

:class:`MultipartUploadWriter` turns a sequence of ``write()`` calls into
numbered part uploads, then completes (or aborts) the upload.

Part numbers are assigned in write order when a part is cut from the
buffer, never when its response arrives.  Up to ``write_queue_max_size``
parts are in flight on a thread pool; ``write()`` blocks on the oldest
one beyond that.  A part is not signed or sent until its predecessor
has been signed and is being sent, so requests start in part-number
order.  They then overlap on the wire and may finish in any order; the
completion manifest is sorted by part number.

State machine::

    INITIATED -> UPLOADING_PARTS -> COMPLETING -> COMPLETED
         \\             |               |
          +------> ABORTING -> ABORTED  |
                        FAILED <--------+

Completion waits for every in-flight part; a single failed part prevents
completion.  With ``abort_on_failure`` the upload is aborted once and the
first error is raised to the caller.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, NoReturn

from s3pump.documents import CompletedPart, CompleteMultipartUploadResult
from s3pump.errors import MultipartUploadError, S3ClientError
from s3pump.models import (
    AbortMultipartUploadRequest,
    CompleteMultipartUploadRequest,
    CompleteMultipartUploadResponseHeaders,
    ContinueMultipartUploadRequest,
    Response,
    SseCustomerKey,
)


if TYPE_CHECKING:
    from s3pump.client import S3Client


logger = logging.getLogger(__name__)


class UploadState(Enum):
    INITIATED = "initiated"
    UPLOADING_PARTS = "uploading_parts"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTING = "aborting"
    ABORTED = "aborted"
    FAILED = "failed"


_WRITABLE = frozenset({UploadState.INITIATED, UploadState.UPLOADING_PARTS})
_ABORTABLE = frozenset(
    {
        UploadState.INITIATED,
        UploadState.UPLOADING_PARTS,
        UploadState.COMPLETING,
        UploadState.FAILED,
    }
)


@dataclass
class UploadSession:
    """Client-side view of one server-side multipart upload.

    Attributes:
        upload_id: Server-assigned upload id.
        next_part_number: Number the next cut part receives.  Starts at 1
            and only ever increases.
        parts: Parts confirmed with a 2xx response, in confirmation order.
        state: Current state.
    """

    upload_id: str
    next_part_number: int = 1
    parts: list[CompletedPart] = field(default_factory=list)
    state: UploadState = UploadState.INITIATED

    def manifest(self) -> list[CompletedPart]:
        """Confirmed parts sorted by part number."""
        return sorted(self.parts, key=lambda p: p.part_number)


class MultipartUploadWriter:
    """Write stream for an initiated multipart upload.

    Not thread-safe: one thread writes.  Part uploads run on an internal
    thread pool.

    Args:
        client: Client used for part, complete and abort requests.
        bucket: Bucket name.
        key: Object key.
        upload_id: Upload id returned by initiation.
        buffer_size: Part size in bytes (every part but the last).
        write_queue_max_size: Maximum parts in flight.
        abort_on_failure: Abort the upload when it fails.
        sse: SSE-C key, required on every part when initiation used one.
    """

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        key: str,
        upload_id: str,
        *,
        buffer_size: int,
        write_queue_max_size: int,
        abort_on_failure: bool = True,
        sse: SseCustomerKey | None = None,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be > 0: {buffer_size}")
        if write_queue_max_size <= 0:
            raise ValueError(
                f"write_queue_max_size must be > 0: {write_queue_max_size}"
            )
        self._client = client
        self._bucket = bucket
        self._key = key
        self._buffer_size = buffer_size
        self._write_queue_max_size = write_queue_max_size
        self._abort_on_failure = abort_on_failure
        self._sse = sse
        self._session = UploadSession(upload_id=upload_id)
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._error: BaseException | None = None
        self._in_flight: deque[concurrent.futures.Future[None]] = deque()
        self._last_dispatched: threading.Event | None = None
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None

    @property
    def session(self) -> UploadSession:
        return self._session

    @property
    def upload_id(self) -> str:
        return self._session.upload_id

    @property
    def state(self) -> UploadState:
        return self._session.state

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @property
    def write_queue_max_size(self) -> int:
        return self._write_queue_max_size

    @property
    def write_queue_full(self) -> bool:
        """True when the next cut part would have to wait."""
        self._reap_done()
        return len(self._in_flight) >= self._write_queue_max_size

    # -- writing ------------------------------------------------------------

    def write(self, data: bytes) -> None:
        """Buffer data and dispatch every complete part.

        Blocks while ``write_queue_max_size`` parts are in flight.

        Raises:
            MultipartUploadError: The writer is not accepting data.
            S3ClientError: A part upload failed (first error only).
        """
        self._check_writable("write")
        self._raise_if_failed()
        self._buffer += data
        while len(self._buffer) >= self._buffer_size:
            part = bytes(self._buffer[: self._buffer_size])
            del self._buffer[: self._buffer_size]
            self._dispatch(part)

    def end(
        self,
    ) -> Response[
        CompleteMultipartUploadResponseHeaders, CompleteMultipartUploadResult
    ]:
        """Flush the last part, wait for all parts and complete the upload.

        Returns:
            The completion response.

        Raises:
            MultipartUploadError: The writer was already ended or aborted.
            S3ClientError: A part or the completion request failed.
        """
        self._check_writable("end")
        self._raise_if_failed()

        # An upload needs at least one part, even an empty one.
        if self._buffer or self._session.next_part_number == 1:
            part = bytes(self._buffer)
            self._buffer.clear()
            self._dispatch(part)

        concurrent.futures.wait(list(self._in_flight))
        self._in_flight.clear()
        self._raise_if_failed()

        self._session.state = UploadState.COMPLETING
        manifest = self._session.manifest()
        expected = list(range(1, self._session.next_part_number))
        if [p.part_number for p in manifest] != expected:
            self._fail(
                MultipartUploadError(
                    f"Upload {self.upload_id}: manifest parts "
                    f"{[p.part_number for p in manifest]} do not match "
                    f"dispatched parts {expected}"
                )
            )

        try:
            response = self._client.complete_multipart_upload(
                self._bucket,
                self._key,
                CompleteMultipartUploadRequest.of(self.upload_id, manifest),
            )
        except S3ClientError as e:
            self._fail(e)

        self._session.state = UploadState.COMPLETED
        self._shutdown()
        logger.info(
            "Completed multipart upload %s of %s/%s: %d parts",
            self.upload_id,
            self._bucket,
            self._key,
            len(manifest),
        )
        return response

    def abort(self) -> None:
        """Abort the upload and release server-side parts.

        Raises:
            MultipartUploadError: The upload is already completed or
                aborted.
            S3ClientError: The abort request failed.
        """
        if self._session.state not in _ABORTABLE:
            raise MultipartUploadError(
                f"Cannot abort upload {self.upload_id} in state "
                f"{self._session.state.name}"
            )
        with self._lock:
            if self._error is None:
                self._error = MultipartUploadError(
                    f"Upload {self.upload_id} was aborted"
                )
        self._session.state = UploadState.ABORTING
        self._wait_in_flight()
        try:
            self._client.abort_multipart_upload(
                self._bucket,
                self._key,
                AbortMultipartUploadRequest(upload_id=self.upload_id),
            )
        except S3ClientError:
            self._session.state = UploadState.FAILED
            raise
        finally:
            self._shutdown()
        self._session.state = UploadState.ABORTED
        logger.info(
            "Aborted multipart upload %s of %s/%s",
            self.upload_id,
            self._bucket,
            self._key,
        )

    # -- internals ----------------------------------------------------------

    def _check_writable(self, action: str) -> None:
        if self._session.state not in _WRITABLE:
            raise MultipartUploadError(
                f"Cannot {action} upload {self.upload_id} in state "
                f"{self._session.state.name}"
            )

    def _reap_done(self) -> None:
        while self._in_flight and self._in_flight[0].done():
            self._in_flight.popleft()

    def _dispatch(self, data: bytes) -> None:
        self._reap_done()
        while len(self._in_flight) >= self._write_queue_max_size:
            self._in_flight.popleft().result()
            self._raise_if_failed()

        part_number = self._session.next_part_number
        self._session.next_part_number += 1
        self._session.state = UploadState.UPLOADING_PARTS

        previous = self._last_dispatched
        dispatched = threading.Event()
        self._last_dispatched = dispatched

        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._write_queue_max_size,
                thread_name_prefix="s3pump-part",
            )
        logger.debug(
            "Queueing part %d (%d bytes) of upload %s",
            part_number,
            len(data),
            self.upload_id,
        )
        self._in_flight.append(
            self._executor.submit(
                self._upload_part, part_number, data, previous, dispatched
            )
        )

    def _upload_part(
        self,
        part_number: int,
        data: bytes,
        previous: threading.Event | None,
        dispatched: threading.Event,
    ) -> None:
        try:
            if previous is not None:
                previous.wait()
            if self._error is not None:
                return
            response = self._client.continue_multipart_upload(
                self._bucket,
                self._key,
                ContinueMultipartUploadRequest(
                    data=data,
                    part_number=part_number,
                    upload_id=self.upload_id,
                ),
                sse=self._sse,
                on_send=dispatched.set,
            )
            etag = response.headers.etag
            if not etag:
                raise MultipartUploadError(
                    f"Part {part_number} of upload {self.upload_id}: "
                    f"response carries no ETag"
                )
            with self._lock:
                self._session.parts.append(CompletedPart(part_number, etag))
        except Exception as e:
            logger.debug(
                "Part %d of upload %s failed: %s",
                part_number,
                self.upload_id,
                e,
            )
            with self._lock:
                if self._error is None:
                    self._error = e
        finally:
            dispatched.set()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            self._fail(self._error)

    def _wait_in_flight(self) -> None:
        concurrent.futures.wait(list(self._in_flight))
        self._in_flight.clear()

    def _fail(self, error: BaseException) -> NoReturn:
        with self._lock:
            if self._error is None:
                self._error = error
            first = self._error
        self._wait_in_flight()
        if self._session.state in (UploadState.ABORTED, UploadState.FAILED):
            raise first
        logger.warning(
            "Multipart upload %s of %s/%s failed: %s",
            self.upload_id,
            self._bucket,
            self._key,
            first,
        )
        if self._abort_on_failure:
            try:
                self.abort()
            except S3ClientError as e:
                logger.warning(
                    "Abort of multipart upload %s failed: %s",
                    self.upload_id,
                    e,
                )
        else:
            self._session.state = UploadState.FAILED
            self._shutdown()
        raise first

    def _shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
