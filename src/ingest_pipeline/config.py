"""Configuration management for the ingestion pipeline."""

import os
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class AWSConfig(BaseModel):
    """AWS configuration settings."""

    region: str = Field(default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"))
    account_id: Optional[str] = Field(default_factory=lambda: os.getenv("AWS_ACCOUNT_ID"))


class S3Config(BaseModel):
    """S3 bucket configuration for the raw and processed zones."""

    raw_bucket: str = Field(default_factory=lambda: os.getenv("S3_RAW_BUCKET", ""))
    processed_bucket: str = Field(default_factory=lambda: os.getenv("S3_PROCESSED_BUCKET", ""))
    raw_prefix: str = Field(default_factory=lambda: os.getenv("S3_RAW_PREFIX", "raw/"))
    processed_prefix: str = Field(default_factory=lambda: os.getenv("S3_PROCESSED_PREFIX", "processed/"))
    dead_letter_prefix: str = Field(
        default_factory=lambda: os.getenv("S3_DEAD_LETTER_PREFIX", "dead-letter-queue/")
    )


class UploadConfig(BaseModel):
    """Upload grant configuration."""

    expires_in: int = Field(default_factory=lambda: int(os.getenv("UPLOAD_EXPIRES_IN", "3600")))
    signing_secret: str = Field(default_factory=lambda: os.getenv("UPLOAD_SIGNING_SECRET", "local-dev-secret"))
    base_url: str = Field(default_factory=lambda: os.getenv("UPLOAD_BASE_URL", "http://localhost:8000/uploads"))
    single_use: bool = Field(default_factory=lambda: _env_bool("UPLOAD_SINGLE_USE", "true"))


class ConversionConfig(BaseModel):
    """Conversion worker configuration."""

    batch_threshold_bytes: int = Field(
        default_factory=lambda: int(os.getenv("CONVERSION_BATCH_THRESHOLD_BYTES", str(100 * 1024 * 1024)))
    )
    compression: str = Field(default_factory=lambda: os.getenv("CONVERSION_COMPRESSION", "snappy"))
    chunk_rows: int = Field(default_factory=lambda: int(os.getenv("CONVERSION_CHUNK_ROWS", "100000")))
    glue_job_name: str = Field(default_factory=lambda: os.getenv("GLUE_CONVERT_JOB", "raw-ingest-convert-large-file"))


class NotificationConfig(BaseModel):
    """Failure notification configuration."""

    sns_topic_arn: str = Field(default_factory=lambda: os.getenv("SNS_TOPIC_ARN", ""))


class Config(BaseModel):
    """Main configuration object."""

    aws: AWSConfig = Field(default_factory=AWSConfig)
    s3: S3Config = Field(default_factory=S3Config)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    conversion: ConversionConfig = Field(default_factory=ConversionConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)

    # Project settings
    project_name: str = "raw-ingest-pipeline"
    environment: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "dev"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    # "json", "text", or empty to pick JSON in prod and inside Lambda
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", ""))


# Global configuration instance
config = Config()
