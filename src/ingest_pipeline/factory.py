"""Builds pipeline components from the global configuration."""

from typing import Optional

from .batch import BatchJobLauncher
from .config import Config, config as default_config
from .converter import ConversionWorker
from .gateway import UploadGateway
from .notifications import FailureNotifier
from .orchestrator import ConversionOrchestrator
from .storage import S3ObjectStore


def build_raw_store(cfg: Optional[Config] = None) -> S3ObjectStore:
    cfg = cfg or default_config
    if not cfg.s3.raw_bucket:
        raise ValueError("S3_RAW_BUCKET is not set")
    return S3ObjectStore(cfg.s3.raw_bucket, region=cfg.aws.region)


def build_processed_store(cfg: Optional[Config] = None) -> S3ObjectStore:
    cfg = cfg or default_config
    if not cfg.s3.processed_bucket:
        raise ValueError("S3_PROCESSED_BUCKET is not set")
    return S3ObjectStore(cfg.s3.processed_bucket, region=cfg.aws.region)


def build_gateway(cfg: Optional[Config] = None) -> UploadGateway:
    cfg = cfg or default_config
    return UploadGateway(
        build_raw_store(cfg),
        expires_in=cfg.upload.expires_in,
        key_prefix=cfg.s3.raw_prefix,
    )


def build_worker(cfg: Optional[Config] = None) -> ConversionWorker:
    cfg = cfg or default_config
    return ConversionWorker(
        build_raw_store(cfg),
        build_processed_store(cfg),
        raw_prefix=cfg.s3.raw_prefix,
        processed_prefix=cfg.s3.processed_prefix,
        dead_letter_prefix=cfg.s3.dead_letter_prefix,
        compression=cfg.conversion.compression,
        chunk_rows=cfg.conversion.chunk_rows,
        notifier=FailureNotifier(cfg.notification.sns_topic_arn),
    )


def build_orchestrator(cfg: Optional[Config] = None) -> ConversionOrchestrator:
    cfg = cfg or default_config
    # Without a Glue job, large files are streamed in-process
    launcher = BatchJobLauncher(cfg.conversion.glue_job_name) if cfg.conversion.glue_job_name else None
    return ConversionOrchestrator(
        build_worker(cfg),
        launcher=launcher,
        batch_threshold_bytes=cfg.conversion.batch_threshold_bytes,
    )
