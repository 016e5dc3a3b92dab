"""
Lambda function behind API Gateway: GET /upload?file_name=<name>.

Returns a time-limited pre-signed URL the client PUTs the file to:
    200 {"upload_url": "<url>"}
Client errors (missing file_name) map to 400; any other failure returns 500
with the failure's message.
"""

import json
import logging
from typing import Any, Dict, Optional

from ingest_pipeline.exceptions import InvalidKeyError, PipelineError
from ingest_pipeline.factory import build_gateway
from ingest_pipeline.gateway import UploadGateway

# Configure structured logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

_gateway: Optional[UploadGateway] = None


def get_gateway() -> UploadGateway:
    """Build the gateway once per container."""
    global _gateway
    if _gateway is None:
        _gateway = build_gateway()
    return _gateway


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body),
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for upload URL requests.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    params = event.get('queryStringParameters') or {}
    file_name = params.get('file_name')
    logger.info(f"Upload URL requested for file_name={file_name!r}")

    try:
        if not file_name or not file_name.strip():
            raise InvalidKeyError("Query parameter 'file_name' is required")

        grant = get_gateway().request_upload_grant(file_name)

        logger.info(json.dumps({
            'event': 'UPLOAD_GRANT_ISSUED',
            'bucket': grant.bucket,
            'key': grant.key,
            'expires_at': grant.expires_at.isoformat(),
            'request_id': getattr(context, 'aws_request_id', None),
        }))
        return _response(200, {'upload_url': grant.url})

    except PipelineError as e:
        logger.warning(f"Rejected upload URL request: {e.message}")
        return _response(e.status_code, e.to_dict())

    except Exception as e:
        logger.error(f"Error issuing upload URL: {str(e)}", exc_info=True)
        return _response(500, {'message': 'Error issuing upload URL', 'error': str(e)})
