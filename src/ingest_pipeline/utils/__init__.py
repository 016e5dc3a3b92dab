"""Utility modules for the ingestion pipeline."""

from .logger import get_logger
from .aws_helpers import (
    get_boto3_client,
    client_error_code,
    translate_client_error,
)

__all__ = [
    "get_logger",
    "get_boto3_client",
    "client_error_code",
    "translate_client_error",
]
