"""Submits large raw files to the Glue batch conversion job."""

from typing import Any, Dict, Optional
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .exceptions import BatchJobError
from .utils.aws_helpers import client_error_code, get_boto3_client
from .utils.logger import get_logger

logger = get_logger(__name__)


class BatchJobLauncher:
    """Starts runs of the Glue job that streams a raw file into Parquet."""

    def __init__(self, job_name: Optional[str] = None, glue_client: Optional[Any] = None):
        self.job_name = job_name or config.conversion.glue_job_name
        self._glue_client = glue_client

    @property
    def glue_client(self) -> Any:
        if self._glue_client is None:
            self._glue_client = get_boto3_client('glue')
        return self._glue_client

    @staticmethod
    def job_arguments(raw_bucket: str, raw_key: str, processed_bucket: str) -> Dict[str, str]:
        return {
            '--raw_bucket': raw_bucket,
            '--raw_key': raw_key,
            '--processed_bucket': processed_bucket,
        }

    def submit(self, raw_bucket: str, raw_key: str, processed_bucket: str) -> str:
        """
        Start a job run for one raw object.

        Args:
            raw_bucket: Bucket holding the raw object.
            raw_key: Key of the raw object.
            processed_bucket: Bucket receiving the Parquet output.

        Returns:
            str: Glue job run ID.

        Raises:
            BatchJobError: If Glue refuses or fails to start the run.
        """
        arguments = self.job_arguments(raw_bucket, raw_key, processed_bucket)
        try:
            logger.info(f"Starting job run for: {self.job_name} (s3://{raw_bucket}/{raw_key})")
            response = self.glue_client.start_job_run(
                JobName=self.job_name,
                Arguments=arguments,
            )
        except ClientError as e:
            code = client_error_code(e)
            logger.error(f"Failed to start job run: {code} - {e}")
            raise BatchJobError(
                f"Could not start batch job {self.job_name}: {code or e}",
                {'job_name': self.job_name, 'raw_key': raw_key, 'code': code}
            ) from e
        except BotoCoreError as e:
            logger.error(f"Failed to start job run: {e}")
            raise BatchJobError(
                f"Could not start batch job {self.job_name}: {e}",
                {'job_name': self.job_name, 'raw_key': raw_key}
            ) from e

        job_run_id = response['JobRunId']
        logger.info(f"Job run started successfully. Run ID: {job_run_id}")
        return job_run_id
