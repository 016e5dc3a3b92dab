"""
AWS Glue (Python shell) job: Large Raw File to Parquet

This job:
1. Streams one raw CSV / JSON Lines object from S3 in chunks
2. Writes the chunks into a single compressed Parquet file
3. Uploads it to the processed bucket under year/month/day/source partitions
4. Writes a dead-letter manifest and notifies if the file cannot be converted

Job parameters: --raw_bucket, --raw_key, --processed_bucket
"""

import argparse
import json
import sys
from typing import List, Optional

from ingest_pipeline.config import config
from ingest_pipeline.converter import ConversionWorker
from ingest_pipeline.models import ConversionStatus
from ingest_pipeline.notifications import FailureNotifier
from ingest_pipeline.storage import S3ObjectStore
from ingest_pipeline.utils.logger import get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert a large raw file to Parquet")
    parser.add_argument("--raw_bucket", required=True)
    parser.add_argument("--raw_key", required=True)
    parser.add_argument("--processed_bucket", required=True)
    parser.add_argument("--chunk_rows", type=int, default=config.conversion.chunk_rows)

    # Glue adds its own arguments (--JOB_ID, --job-bookmark-option, ...)
    args, _ = parser.parse_known_args(argv)
    return args


def main(argv: Optional[List[str]] = None) -> int:
    """Main job execution."""
    args = parse_args(argv)

    logger.info("=" * 80)
    logger.info(f"Converting s3://{args.raw_bucket}/{args.raw_key}")
    logger.info(f"Target bucket: {args.processed_bucket}")
    logger.info(f"Chunk size: {args.chunk_rows} rows")
    logger.info("=" * 80)

    worker = ConversionWorker(
        S3ObjectStore(args.raw_bucket),
        S3ObjectStore(args.processed_bucket),
        chunk_rows=args.chunk_rows,
        notifier=FailureNotifier(),
    )
    record = worker.convert_object_chunked(args.raw_key)

    logger.info(f"Conversion record: {json.dumps(record.summary())}")
    if record.status != ConversionStatus.SUCCEEDED:
        logger.error(f"Job failed: {record.error}")
        return 1

    logger.info("Job completed successfully!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
