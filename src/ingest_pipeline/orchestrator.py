"""
Orchestrator/Monitor for the conversion step.

Turns S3 ObjectCreated notifications into conversions: each new raw object
is routed to the inline worker or to the batch job depending on its size,
and every outcome is kept in a RunLedger.

Delivery is at-least-once. A retryable error is re-raised so the event is
redelivered; because processed keys are deterministic, converting the same
raw object again overwrites the earlier output.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional
from urllib.parse import unquote_plus

from .batch import BatchJobLauncher
from .converter import ConversionWorker, select_tier
from .models import ConversionRecord, ConversionStatus, ConversionTier, utcnow
from .utils.logger import get_logger

logger = get_logger(__name__)


def parse_s3_event(event: Dict[str, Any], required_prefix: str = "") -> List[Dict[str, Any]]:
    """
    Extract the new objects described by an S3 event.

    Args:
        event: S3 notification event with a Records list.
        required_prefix: Only keys under this prefix are returned.

    Returns:
        List of dicts with bucket, key, size, eventTime, and eventName.
    """
    objects = []

    for record in event.get('Records', []):
        event_name = record.get('eventName', '')
        if not event_name.startswith('ObjectCreated'):
            logger.warning(f"Skipping non-creation event: {event_name}")
            continue

        s3_info = record.get('s3', {})
        bucket_name = s3_info.get('bucket', {}).get('name', '')
        object_info = s3_info.get('object', {})
        # Keys arrive URL-encoded, with spaces as '+'
        object_key = unquote_plus(object_info.get('key', ''))

        if not bucket_name or not object_key:
            logger.error("Missing required S3 metadata: bucket or key")
            continue

        if object_key.endswith('/'):
            logger.info(f"Skipping folder marker: {object_key}")
            continue

        if required_prefix and not object_key.startswith(required_prefix):
            logger.info(f"Skipping file not in {required_prefix} prefix: {object_key}")
            continue

        objects.append({
            'bucket': bucket_name,
            'key': object_key,
            'size': int(object_info.get('size', 0) or 0),
            'eventTime': record.get('eventTime', utcnow().isoformat()),
            'eventName': event_name,
        })

    return objects


class RunLedger:
    """In-memory history of conversion records, keyed by raw object key."""

    def __init__(self):
        self._history: Dict[str, List[ConversionRecord]] = defaultdict(list)

    def record(self, record: ConversionRecord) -> None:
        self._history[record.raw_key].append(record)

    def latest(self, raw_key: str) -> Optional[ConversionRecord]:
        history = self._history.get(raw_key)
        return history[-1] if history else None

    def history(self, raw_key: str) -> List[ConversionRecord]:
        return list(self._history.get(raw_key, []))

    def failures(self) -> List[ConversionRecord]:
        return [
            records[-1] for records in self._history.values()
            if records[-1].status == ConversionStatus.FAILED
        ]

    def __len__(self) -> int:
        return sum(len(records) for records in self._history.values())


class ConversionOrchestrator:
    """
    Routes new raw objects to a conversion tier and records the outcome.

    Args:
        worker: Conversion worker bound to the raw and processed stores.
        launcher: Batch job launcher. Without one, large files are
            converted in-process with the chunked reader.
        ledger: Run history; a fresh one is created if None.
        batch_threshold_bytes: Size at which files go to the batch tier.
    """

    def __init__(
        self,
        worker: ConversionWorker,
        launcher: Optional[BatchJobLauncher] = None,
        ledger: Optional[RunLedger] = None,
        batch_threshold_bytes: Optional[int] = None,
    ):
        self.worker = worker
        self.launcher = launcher
        self.ledger = ledger if ledger is not None else RunLedger()
        self.batch_threshold_bytes = batch_threshold_bytes

    def handle_object(self, bucket: str, key: str, size: int) -> ConversionRecord:
        """
        Convert (or submit for conversion) one new raw object.

        Raises:
            PipelineError: Only retryable errors escape; others end up in a
                failed record.
        """
        tier = select_tier(size, self.batch_threshold_bytes)
        logger.info(f"Routing s3://{bucket}/{key} ({size} bytes) to {tier.value} tier")

        if tier == ConversionTier.BATCH and self.launcher is not None:
            run_id = self.launcher.submit(bucket, key, self.worker.processed_store.bucket)
            record = ConversionRecord(
                raw_bucket=bucket,
                raw_key=key,
                tier=ConversionTier.BATCH,
                status=ConversionStatus.SUBMITTED,
                batch_run_id=run_id,
            )
        elif tier == ConversionTier.BATCH:
            record = self.worker.convert_object_chunked(key)
        else:
            record = self.worker.convert_object(key)

        self.ledger.record(record)
        return record

    def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle every new raw object in an S3 event.

        Returns:
            Summary dict with counts and the per-file records.
        """
        objects = parse_s3_event(event, self.worker.raw_prefix)
        raw_bucket = self.worker.raw_store.bucket
        records = []

        for i, obj in enumerate(objects, 1):
            logger.info(f"[Record {i}/{len(objects)}] s3://{obj['bucket']}/{obj['key']}")

            if obj['bucket'] != raw_bucket:
                logger.warning(f"Skipping object from unexpected bucket {obj['bucket']} (expected {raw_bucket})")
                continue

            records.append(self.handle_object(obj['bucket'], obj['key'], obj['size']))

        summary = summarize(records)
        logger.info(
            f"Processed {summary['files_processed']} file(s): "
            f"{summary['succeeded']} succeeded, {summary['submitted']} submitted, "
            f"{summary['failed']} failed"
        )
        return summary


def summarize(records: List[ConversionRecord]) -> Dict[str, Any]:
    def count(status: ConversionStatus) -> int:
        return sum(1 for r in records if r.status == status)

    return {
        'files_processed': len(records),
        'succeeded': count(ConversionStatus.SUCCEEDED),
        'submitted': count(ConversionStatus.SUBMITTED),
        'failed': count(ConversionStatus.FAILED),
        'records': [r.summary() for r in records],
    }
