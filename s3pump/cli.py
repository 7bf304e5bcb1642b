# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""s3pump CLI.

Subcommands:

* ``upload BUCKET KEY [FILE|-]`` - adaptive upload from a file or stdin
* ``download BUCKET KEY [DEST|-]`` - stream an object to a file or stdout
* ``ls BUCKET`` - list keys, following continuation tokens
* ``head BUCKET KEY`` - print object headers
* ``rm BUCKET KEY`` - delete an object

Exit codes: 0 success, 1 configuration error, 2 request error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from contextlib import ExitStack
from pathlib import Path
from typing import BinaryIO

from s3pump.client import S3Client
from s3pump.config import ClientConfig
from s3pump.errors import ConfigError, S3ClientError
from s3pump.logging import configure_logging
from s3pump.models import (
    AdaptiveUploadRequest,
    GetBucketRequest,
    ObjectAttributes,
)


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_REQUEST = 2


def _parse_meta(values: list[str]) -> dict[str, str]:
    meta: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(
                f"--meta expects NAME=VALUE, got {item!r}"
            )
        meta[name] = value
    return meta


def cmd_upload(client: S3Client, args: argparse.Namespace) -> int:
    attributes = ObjectAttributes(
        content_type=args.content_type,
        storage_class=args.storage_class,
        meta=_parse_meta(args.meta),
    )
    with ExitStack() as stack:
        if args.file == "-":
            source: BinaryIO = sys.stdin.buffer
        else:
            source = stack.enter_context(open(args.file, "rb"))
        response = client.adaptive_upload(
            args.bucket,
            args.key,
            AdaptiveUploadRequest(source=source, attributes=attributes),
        )
    print(
        f"uploaded s3://{args.bucket}/{args.key} "
        f"etag={response.headers.etag}"
    )
    return EXIT_OK


def cmd_download(client: S3Client, args: argparse.Namespace) -> int:
    response = client.get_object(args.bucket, args.key)
    body = response.data
    with ExitStack() as stack:
        stack.callback(body.close)
        if args.dest == "-":
            out: BinaryIO = sys.stdout.buffer
        else:
            out = stack.enter_context(open(args.dest, "wb"))
        for data in body.iter_bytes():
            out.write(data)
        out.flush()
    return EXIT_OK


def cmd_ls(client: S3Client, args: argparse.Namespace) -> int:
    request = GetBucketRequest(prefix=args.prefix, delimiter=args.delimiter)
    for page in client.iter_bucket(args.bucket, request):
        for prefix in page.common_prefixes:
            print(f"{'PRE':>12}  {prefix}")
        for item in page.contents:
            modified = item.last_modified or "-"
            print(f"{item.size:>12}  {modified}  {item.key}")
    return EXIT_OK


def cmd_head(client: S3Client, args: argparse.Namespace) -> int:
    headers = client.head_object(args.bucket, args.key).headers
    print(f"content-length: {headers.content_length}")
    print(f"content-type: {headers.content_type}")
    print(f"etag: {headers.etag}")
    print(f"last-modified: {headers.last_modified}")
    if headers.storage_class:
        print(f"storage-class: {headers.storage_class}")
    for name, value in sorted(headers.meta.items()):
        print(f"x-amz-meta-{name}: {value}")
    return EXIT_OK


def cmd_rm(client: S3Client, args: argparse.Namespace) -> int:
    client.delete_object(args.bucket, args.key)
    print(f"deleted s3://{args.bucket}/{args.key}")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s3pump",
        description="S3-compatible object storage client",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to s3pump.yaml config file"
            " (default: ~/.config/s3pump/s3pump.yaml)"
        ),
    )
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload a file or stdin")
    upload.add_argument("bucket")
    upload.add_argument("key")
    upload.add_argument("file", nargs="?", default="-")
    upload.add_argument("--content-type", default=None)
    upload.add_argument("--storage-class", default=None)
    upload.add_argument(
        "--meta",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="User metadata (repeatable)",
    )
    upload.set_defaults(handler=cmd_upload)

    download = sub.add_parser("download", help="Download an object")
    download.add_argument("bucket")
    download.add_argument("key")
    download.add_argument("dest", nargs="?", default="-")
    download.set_defaults(handler=cmd_download)

    ls = sub.add_parser("ls", help="List objects")
    ls.add_argument("bucket")
    ls.add_argument("--prefix", default=None)
    ls.add_argument("--delimiter", default=None)
    ls.set_defaults(handler=cmd_ls)

    head = sub.add_parser("head", help="Show object headers")
    head.add_argument("bucket")
    head.add_argument("key")
    head.set_defaults(handler=cmd_head)

    rm = sub.add_parser("rm", help="Delete an object")
    rm.add_argument("bucket")
    rm.add_argument("key")
    rm.set_defaults(handler=cmd_rm)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config error, 2=request error).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.WARNING,
        add_secret_filter=True,
    )

    try:
        config = ClientConfig.from_yaml(config_path=args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG

    handler: Callable[[S3Client, argparse.Namespace], int] = args.handler
    try:
        with S3Client(config) as client:
            return handler(client, args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except (S3ClientError, OSError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return EXIT_REQUEST


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())
