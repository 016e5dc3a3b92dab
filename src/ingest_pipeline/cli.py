"""
Command line entry point.

    ingest-pipeline grant <key>
    ingest-pipeline upload <path> --api-url URL [--name NAME]
    ingest-pipeline convert <key-or-prefix> [--batch]
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import factory
from .client import request_upload_url, upload_file
from .exceptions import PipelineError
from .utils.logger import get_logger

logger = get_logger(__name__)


def cmd_grant(args: argparse.Namespace) -> int:
    grant = factory.build_gateway().request_upload_grant(args.key)
    print(json.dumps({'upload_url': grant.url, 'expires_at': grant.expires_at.isoformat()}))
    return 0


def cmd_upload(args: argparse.Namespace) -> int:
    name = args.name or Path(args.path).name
    url = request_upload_url(args.api_url, name)
    size = upload_file(url, args.path)
    print(json.dumps({'file_name': name, 'bytes': size}))
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    records = factory.build_worker().convert(args.target, chunked=args.batch)
    for record in records:
        print(json.dumps(record.summary()))
    return 1 if any(r.error for r in records) else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ingest-pipeline",
        description="Upload grants and raw-to-Parquet conversion"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    grant = subparsers.add_parser("grant", help="Issue an upload URL for a key")
    grant.add_argument("key", help="File name or raw object key")
    grant.set_defaults(func=cmd_grant)

    upload = subparsers.add_parser("upload", help="Request an upload URL and PUT a file")
    upload.add_argument("path", help="Local file to upload")
    upload.add_argument("--api-url", required=True, help="Upload endpoint URL")
    upload.add_argument("--name", help="Stored file name (default: local file name)")
    upload.set_defaults(func=cmd_upload)

    convert = subparsers.add_parser("convert", help="Convert a raw object or prefix to Parquet")
    convert.add_argument("target", help="Raw object key or prefix")
    convert.add_argument("--batch", action="store_true", help="Stream the input in chunks")
    convert.set_defaults(func=cmd_convert)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except PipelineError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
