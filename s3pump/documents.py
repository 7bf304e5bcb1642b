# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""XML request and response documents.

Responses are parsed with namespaces stripped, so documents from AWS
(``http://s3.amazonaws.com/doc/2006-03-01/``) and from S3-compatible
servers that omit the namespace read the same way.  Any body that is not
well-formed, or whose root element is not the expected one, raises
:class:`~s3pump.errors.UnmarshalError` carrying the raw text.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from xml.sax.saxutils import escape

from s3pump.errors import UnmarshalError


S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _decode(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def _strip_namespace(tag: str) -> str:
    return tag.split("}", 1)[1] if "}" in tag else tag


def _parse_root(raw: bytes | str, expected: str) -> ET.Element:
    """Parse ``raw`` and check its root element name.

    Raises:
        UnmarshalError: Malformed XML or an unexpected root element.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise UnmarshalError(_decode(raw)) from e
    for el in root.iter():
        el.tag = _strip_namespace(el.tag)
    if root.tag != expected:
        raise UnmarshalError(_decode(raw))
    return root


def _text(el: ET.Element, name: str) -> str | None:
    child = el.find(name)
    if child is None:
        return None
    return child.text or ""


def _int(el: ET.Element, name: str) -> int | None:
    value = _text(el, name)
    if value is None or not value.strip():
        return None
    return int(value)


def _bool(el: ET.Element, name: str) -> bool:
    return (_text(el, name) or "").strip().lower() == "true"


def is_error_document(raw: bytes | str) -> bool:
    """Return True when ``raw`` is a well-formed ``<Error>`` document.

    CompleteMultipartUpload can answer 200 and still fail; the failure is
    only visible in the body.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError:
        return False
    return _strip_namespace(root.tag) == "Error"


# ---------------------------------------------------------------------------
# Error
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorResponse:
    """Parsed ``<Error>`` document.

    Attributes:
        code: Error code (``NoSuchKey``, ``AccessDenied``, ...).
        message: Human-readable message.
        resource: Bucket or object the error refers to.
        request_id: Server request id.
        host_id: Server host id.
        extra: Any other child elements (``Key``, ``BucketName``, ...).
    """

    code: str | None
    message: str | None
    resource: str | None = None
    request_id: str | None = None
    host_id: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_xml(cls, raw: bytes | str) -> ErrorResponse:
        root = _parse_root(raw, "Error")
        known = {"Code", "Message", "Resource", "RequestId", "HostId"}
        return cls(
            code=_text(root, "Code"),
            message=_text(root, "Message"),
            resource=_text(root, "Resource"),
            request_id=_text(root, "RequestId"),
            host_id=_text(root, "HostId"),
            extra={
                child.tag: child.text or ""
                for child in root
                if child.tag not in known
            },
        )


# ---------------------------------------------------------------------------
# Multipart upload
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InitMultipartUploadResult:
    bucket: str | None
    key: str | None
    upload_id: str

    @classmethod
    def from_xml(cls, raw: bytes | str) -> InitMultipartUploadResult:
        root = _parse_root(raw, "InitiateMultipartUploadResult")
        upload_id = _text(root, "UploadId")
        if not upload_id:
            raise UnmarshalError(
                _decode(raw), "UploadId missing from initiate response"
            )
        return cls(
            bucket=_text(root, "Bucket"),
            key=_text(root, "Key"),
            upload_id=upload_id,
        )


@dataclass(frozen=True)
class CompletedPart:
    """A part confirmed by the server, as listed in the manifest."""

    part_number: int
    etag: str


def render_complete_multipart_upload(parts: Iterable[CompletedPart]) -> bytes:
    """Render the ``CompleteMultipartUpload`` manifest.

    Parts are written in ascending part-number order regardless of the
    order they were supplied in.

    Args:
        parts: Completed parts.

    Returns:
        UTF-8 encoded XML body.
    """
    body = "".join(
        f"<Part><PartNumber>{p.part_number}</PartNumber>"
        f"<ETag>{escape(p.etag)}</ETag></Part>"
        for p in sorted(parts, key=lambda p: p.part_number)
    )
    return (
        f'<CompleteMultipartUpload xmlns="{S3_NAMESPACE}">'
        f"{body}</CompleteMultipartUpload>"
    ).encode()


@dataclass(frozen=True)
class CompleteMultipartUploadResult:
    location: str | None
    bucket: str | None
    key: str | None
    etag: str | None

    @classmethod
    def from_xml(cls, raw: bytes | str) -> CompleteMultipartUploadResult:
        root = _parse_root(raw, "CompleteMultipartUploadResult")
        return cls(
            location=_text(root, "Location"),
            bucket=_text(root, "Bucket"),
            key=_text(root, "Key"),
            etag=_text(root, "ETag"),
        )


# ---------------------------------------------------------------------------
# Copy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CopyObjectResult:
    last_modified: str | None
    etag: str | None

    @classmethod
    def from_xml(cls, raw: bytes | str) -> CopyObjectResult:
        root = _parse_root(raw, "CopyObjectResult")
        return cls(
            last_modified=_text(root, "LastModified"),
            etag=_text(root, "ETag"),
        )


# ---------------------------------------------------------------------------
# Bucket listing (ListObjectsV2)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Owner:
    id: str | None
    display_name: str | None = None

    @classmethod
    def from_element(cls, el: ET.Element) -> Owner:
        return cls(id=_text(el, "ID"), display_name=_text(el, "DisplayName"))


@dataclass(frozen=True)
class ObjectSummary:
    key: str
    last_modified: str | None
    etag: str | None
    size: int
    storage_class: str | None
    owner: Owner | None = None


@dataclass(frozen=True)
class ListBucketResult:
    """One page of a ``list-type=2`` bucket listing.

    ``next_continuation_token`` is set when ``is_truncated`` is true and
    is passed back as ``continuation_token`` to fetch the next page.
    """

    name: str | None
    prefix: str | None
    key_count: int | None
    max_keys: int | None
    delimiter: str | None
    is_truncated: bool
    contents: list[ObjectSummary]
    common_prefixes: list[str]
    continuation_token: str | None = None
    next_continuation_token: str | None = None
    start_after: str | None = None
    encoding_type: str | None = None

    @classmethod
    def from_xml(cls, raw: bytes | str) -> ListBucketResult:
        root = _parse_root(raw, "ListBucketResult")
        try:
            contents = [
                ObjectSummary(
                    key=_text(item, "Key") or "",
                    last_modified=_text(item, "LastModified"),
                    etag=_text(item, "ETag"),
                    size=_int(item, "Size") or 0,
                    storage_class=_text(item, "StorageClass"),
                    owner=(
                        Owner.from_element(owner)
                        if (owner := item.find("Owner")) is not None
                        else None
                    ),
                )
                for item in root.findall("Contents")
            ]
            key_count = _int(root, "KeyCount")
            max_keys = _int(root, "MaxKeys")
        except ValueError as e:
            raise UnmarshalError(_decode(raw)) from e
        return cls(
            name=_text(root, "Name"),
            prefix=_text(root, "Prefix"),
            key_count=key_count,
            max_keys=max_keys,
            delimiter=_text(root, "Delimiter"),
            is_truncated=_bool(root, "IsTruncated"),
            contents=contents,
            common_prefixes=[
                _text(cp, "Prefix") or ""
                for cp in root.findall("CommonPrefixes")
            ],
            continuation_token=_text(root, "ContinuationToken"),
            next_continuation_token=_text(root, "NextContinuationToken"),
            start_after=_text(root, "StartAfter"),
            encoding_type=_text(root, "EncodingType"),
        )


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


class GranteeType(StrEnum):
    CANONICAL_USER = "CanonicalUser"
    AMAZON_CUSTOMER_BY_EMAIL = "AmazonCustomerByEmail"
    GROUP = "Group"


class Permission(StrEnum):
    FULL_CONTROL = "FULL_CONTROL"
    WRITE = "WRITE"
    WRITE_ACP = "WRITE_ACP"
    READ = "READ"
    READ_ACP = "READ_ACP"


@dataclass(frozen=True)
class Grantee:
    type: GranteeType
    id: str | None = None
    display_name: str | None = None
    email_address: str | None = None
    uri: str | None = None


@dataclass(frozen=True)
class Grant:
    grantee: Grantee
    permission: Permission


@dataclass(frozen=True)
class AccessControlPolicy:
    owner: Owner
    grants: list[Grant] = field(default_factory=list)

    @classmethod
    def from_xml(cls, raw: bytes | str) -> AccessControlPolicy:
        root = _parse_root(raw, "AccessControlPolicy")
        owner_el = root.find("Owner")
        grants: list[Grant] = []
        try:
            for grant_el in root.findall("AccessControlList/Grant"):
                grantee_el = grant_el.find("Grantee")
                if grantee_el is None:
                    raise UnmarshalError(_decode(raw), "Grant without Grantee")
                # Attribute keys keep their namespace; tags were stripped.
                type_attr = grantee_el.get(f"{{{XSI_NAMESPACE}}}type", "")
                grants.append(
                    Grant(
                        grantee=Grantee(
                            type=GranteeType(type_attr),
                            id=_text(grantee_el, "ID"),
                            display_name=_text(grantee_el, "DisplayName"),
                            email_address=_text(grantee_el, "EmailAddress"),
                            uri=_text(grantee_el, "URI"),
                        ),
                        permission=Permission(_text(grant_el, "Permission")),
                    )
                )
        except ValueError as e:
            raise UnmarshalError(_decode(raw)) from e
        return cls(
            owner=(
                Owner.from_element(owner_el)
                if owner_el is not None
                else Owner(id=None)
            ),
            grants=grants,
        )

    def to_xml(self) -> bytes:
        """Render the policy for ``PUT ?acl``."""
        ET.register_namespace("xsi", XSI_NAMESPACE)
        root = ET.Element("AccessControlPolicy", {"xmlns": S3_NAMESPACE})
        owner = ET.SubElement(root, "Owner")
        if self.owner.id is not None:
            ET.SubElement(owner, "ID").text = self.owner.id
        if self.owner.display_name is not None:
            ET.SubElement(owner, "DisplayName").text = self.owner.display_name
        acl = ET.SubElement(root, "AccessControlList")
        for grant in self.grants:
            grant_el = ET.SubElement(acl, "Grant")
            grantee = ET.SubElement(
                grant_el,
                "Grantee",
                {f"{{{XSI_NAMESPACE}}}type": str(grant.grantee.type)},
            )
            for tag, value in (
                ("ID", grant.grantee.id),
                ("DisplayName", grant.grantee.display_name),
                ("EmailAddress", grant.grantee.email_address),
                ("URI", grant.grantee.uri),
            ):
                if value is not None:
                    ET.SubElement(grantee, tag).text = value
            ET.SubElement(grant_el, "Permission").text = str(grant.permission)
        return ET.tostring(root, encoding="utf-8", xml_declaration=False)
