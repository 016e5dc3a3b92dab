"""
Lambda function triggered by S3 ObjectCreated events on the raw bucket.

For each new raw file it:
- Logs a structured notification with the file metadata
- Converts small files to Parquet inline
- Submits large files to the Glue batch job
- Records failures in the dead-letter prefix and notifies

Returns 200 when every file succeeded or was submitted, 207 when some
failed. Retryable errors (storage unavailable, batch job not started) are
raised so Lambda redelivers the event.
"""

import json
import logging
from typing import Any, Dict, Optional

from ingest_pipeline.factory import build_orchestrator
from ingest_pipeline.orchestrator import ConversionOrchestrator, parse_s3_event

# Configure structured logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

_orchestrator: Optional[ConversionOrchestrator] = None


def get_orchestrator() -> ConversionOrchestrator:
    """Build the orchestrator once per container."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for raw upload notifications.

    Args:
        event: S3 event data containing Records with S3 object information
        context: Lambda context object with runtime information

    Returns:
        Response dictionary with statusCode and processing results
    """
    logger.info("=" * 80)
    logger.info("Convert On Upload Lambda - Processing S3 Event")
    logger.info("=" * 80)
    logger.info(f"Received S3 event with {len(event.get('Records', []))} record(s)")

    for obj in parse_s3_event(event):
        notification = {
            'event': 'S3_FILE_UPLOADED',
            'timestamp': obj['eventTime'],
            'bucket': obj['bucket'],
            'key': obj['key'],
            'size_bytes': obj['size'],
            'size_mb': round(obj['size'] / (1024 * 1024), 2),
            'event_type': obj['eventName'],
            'request_id': getattr(context, 'aws_request_id', None),
            'function_name': getattr(context, 'function_name', None),
        }
        logger.info(f"S3 File Notification: {json.dumps(notification)}")

    summary = get_orchestrator().process_event(event)

    return {
        'statusCode': 207 if summary['failed'] else 200,  # 207 = Multi-Status
        'body': json.dumps({
            'message': 'S3 events processed',
            **summary,
        }, default=str)
    }
