"""Failure notifications for conversions, published to SNS."""

import json
from typing import Any, Optional
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .models import ConversionRecord
from .utils.aws_helpers import get_boto3_client
from .utils.logger import get_logger

logger = get_logger(__name__)


class FailureNotifier:
    """
    Publishes a message for every failed conversion.

    With no topic configured the failure is only logged.
    """

    def __init__(self, topic_arn: Optional[str] = None, sns_client: Optional[Any] = None):
        self.topic_arn = topic_arn if topic_arn is not None else config.notification.sns_topic_arn
        self._sns_client = sns_client

    @property
    def sns_client(self) -> Any:
        if self._sns_client is None:
            self._sns_client = get_boto3_client('sns')
        return self._sns_client

    def notify_failure(self, record: ConversionRecord) -> Optional[str]:
        """
        Report a failed conversion.

        Args:
            record: The failed ConversionRecord.

        Returns:
            SNS message id, or None when nothing was published.
        """
        logger.error(
            f"Conversion failed for s3://{record.raw_bucket}/{record.raw_key}: "
            f"{record.error_type}: {record.error}"
        )

        if not self.topic_arn:
            return None

        message = {
            'event': 'CONVERSION_FAILED',
            'record': record.summary(),
        }
        try:
            response = self.sns_client.publish(
                TopicArn=self.topic_arn,
                Subject=f"Conversion failed: {record.raw_key}"[:100],
                Message=json.dumps(message, indent=2),
            )
        except (ClientError, BotoCoreError) as e:
            # The conversion failure is already recorded; don't mask it
            logger.error(f"Failed to publish failure notification: {e}")
            return None

        message_id = response.get('MessageId')
        logger.info(f"Published failure notification {message_id} to {self.topic_arn}")
        return message_id
