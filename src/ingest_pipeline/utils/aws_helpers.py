"""AWS helper functions using Boto3."""

from typing import Any, Optional
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import config
from ..exceptions import ObjectNotFoundError, PipelineError, StorageUnavailableError
from .logger import get_logger

logger = get_logger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}

RETRYABLE_CODES = {
    "500",
    "503",
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestTimeout",
}


def get_boto3_client(service_name: str, region: Optional[str] = None) -> Any:
    """
    Get a Boto3 client for the specified AWS service.

    Args:
        service_name: AWS service name (e.g., 's3', 'glue', 'sns')
        region: AWS region. If None, uses config default.

    Returns:
        Boto3 client instance.
    """
    region = region or config.aws.region
    logger.debug(f"Creating Boto3 client for {service_name} in {region}")
    return boto3.client(service_name, region_name=region)


def client_error_code(error: ClientError) -> str:
    """Return the AWS error code carried by a ClientError."""
    return str(error.response.get('Error', {}).get('Code', ''))


def translate_client_error(
    error: Exception,
    bucket: str,
    key: Optional[str] = None
) -> PipelineError:
    """
    Map a botocore failure onto the pipeline error taxonomy.

    Args:
        error: ClientError or BotoCoreError raised by a boto3 call
        bucket: S3 bucket involved in the call
        key: S3 object key involved in the call, if any

    Returns:
        ObjectNotFoundError for missing objects, StorageUnavailableError
        otherwise.
    """
    location = f"s3://{bucket}/{key}" if key else f"s3://{bucket}"
    details = {'bucket': bucket, 'key': key}

    if isinstance(error, ClientError):
        code = client_error_code(error)
        details['code'] = code
        if code in NOT_FOUND_CODES:
            logger.warning(f"Object not found: {location}")
            return ObjectNotFoundError(f"Object not found: {location}", details)
        if code not in RETRYABLE_CODES:
            logger.error(f"S3 request failed for {location}: {code}")
    elif isinstance(error, BotoCoreError):
        logger.error(f"Connection to S3 failed for {location}: {error}")

    return StorageUnavailableError(f"Storage unavailable for {location}: {error}", details)
