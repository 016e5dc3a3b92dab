"""
Object store adapters for the raw and processed zones.

Two implementations share the ObjectStore interface:
- S3ObjectStore talks to a real bucket through boto3
- InMemoryObjectStore keeps objects in a dict, for local runs and tests
"""

import io
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, BinaryIO, Callable, Dict, List, Optional
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import InvalidKeyError, ObjectNotFoundError
from .models import ObjectInfo, StoredObject, utcnow
from .utils.aws_helpers import get_boto3_client, translate_client_error
from .utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ObjectStore(ABC):
    """Bucket-like namespace of immutable objects keyed by name."""

    supports_presigned_urls = False

    def __init__(self, bucket: str):
        if not bucket:
            raise ValueError("bucket name is required")
        self.bucket = bucket

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    @abstractmethod
    def put(self, key: str, body: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> StoredObject:
        """Write (or overwrite) an object."""

    @abstractmethod
    def get(self, key: str) -> StoredObject:
        """Read an object. Raises ObjectNotFoundError if it is absent."""

    @abstractmethod
    def head(self, key: str) -> ObjectInfo:
        """Read object metadata. Raises ObjectNotFoundError if it is absent."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """List keys under a prefix in lexical order."""

    @abstractmethod
    def open_stream(self, key: str) -> BinaryIO:
        """Open an object for streaming reads."""

    def put_file(self, key: str, file_path: str, content_type: str = DEFAULT_CONTENT_TYPE) -> ObjectInfo:
        """Write an object from a local file."""
        with open(file_path, 'rb') as f:
            obj = self.put(key, f.read(), content_type)
        return self.head(obj.key)

    def exists(self, key: str) -> bool:
        try:
            self.head(key)
            return True
        except ObjectNotFoundError:
            return False

    def presign_put(self, key: str, expires_in: int) -> str:
        raise NotImplementedError(f"{type(self).__name__} cannot pre-sign URLs")


class InMemoryObjectStore(ObjectStore):
    """Dict-backed store with last-write-wins semantics."""

    def __init__(self, bucket: str, clock: Callable[[], datetime] = utcnow):
        super().__init__(bucket)
        self._clock = clock
        self._objects: Dict[str, StoredObject] = {}

    def put(self, key: str, body: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> StoredObject:
        if not key:
            raise InvalidKeyError("Object key must not be empty")
        obj = StoredObject(
            bucket=self.bucket,
            key=key,
            body=bytes(body),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            last_modified=self._clock(),
        )
        if key in self._objects:
            logger.info(f"Overwriting {self.uri(key)}")
        self._objects[key] = obj
        logger.debug(f"Stored {obj.size} bytes at {self.uri(key)}")
        return obj

    def get(self, key: str) -> StoredObject:
        try:
            return self._objects[key]
        except KeyError:
            raise ObjectNotFoundError(
                f"Object not found: {self.uri(key)}",
                {'bucket': self.bucket, 'key': key}
            ) from None

    def head(self, key: str) -> ObjectInfo:
        obj = self.get(key)
        return ObjectInfo(
            bucket=obj.bucket,
            key=obj.key,
            size=obj.size,
            content_type=obj.content_type,
            last_modified=obj.last_modified,
        )

    def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._objects if k.startswith(prefix))

    def open_stream(self, key: str) -> BinaryIO:
        return io.BytesIO(self.get(key).body)

    def __len__(self) -> int:
        return len(self._objects)


class S3ObjectStore(ObjectStore):
    """S3 bucket accessed through a boto3 client."""

    supports_presigned_urls = True

    # Multipart upload threshold: 100MB
    MULTIPART_THRESHOLD = 100 * 1024 * 1024

    # Multipart chunk size: 50MB
    MULTIPART_CHUNKSIZE = 50 * 1024 * 1024

    def __init__(self, bucket: str, client: Optional[Any] = None, region: Optional[str] = None):
        super().__init__(bucket)
        self.client = client or get_boto3_client('s3', region=region)
        self.transfer_config = TransferConfig(
            multipart_threshold=self.MULTIPART_THRESHOLD,
            multipart_chunksize=self.MULTIPART_CHUNKSIZE,
            max_concurrency=10,
            use_threads=True
        )

    def put(self, key: str, body: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> StoredObject:
        if not key:
            raise InvalidKeyError("Object key must not be empty")
        try:
            logger.info(f"Uploading {len(body)} bytes to {self.uri(key)}")
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, self.bucket, key) from e

        return StoredObject(
            bucket=self.bucket,
            key=key,
            body=body,
            content_type=content_type,
        )

    def put_file(self, key: str, file_path: str, content_type: str = DEFAULT_CONTENT_TYPE) -> ObjectInfo:
        size = os.path.getsize(file_path)
        try:
            logger.info(f"Uploading {file_path} ({size / (1024 * 1024):.2f} MB) to {self.uri(key)}")
            self.client.upload_file(
                file_path,
                self.bucket,
                key,
                ExtraArgs={'ContentType': content_type},
                Config=self.transfer_config,
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise translate_client_error(e, self.bucket, key) from e

        return ObjectInfo(
            bucket=self.bucket,
            key=key,
            size=size,
            content_type=content_type,
            last_modified=utcnow(),
        )

    def get(self, key: str) -> StoredObject:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, self.bucket, key) from e

        return StoredObject(
            bucket=self.bucket,
            key=key,
            body=body,
            content_type=response.get('ContentType') or DEFAULT_CONTENT_TYPE,
            last_modified=response.get('LastModified') or utcnow(),
        )

    def head(self, key: str) -> ObjectInfo:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, self.bucket, key) from e

        return ObjectInfo(
            bucket=self.bucket,
            key=key,
            size=response.get('ContentLength', 0),
            content_type=response.get('ContentType') or DEFAULT_CONTENT_TYPE,
            last_modified=response.get('LastModified') or utcnow(),
        )

    def list_keys(self, prefix: str = "") -> List[str]:
        logger.info(f"Listing objects in s3://{self.bucket}/{prefix}")
        keys = []
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj['Key'] for obj in page.get('Contents', []))
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, self.bucket, prefix) from e

        logger.info(f"Found {len(keys)} objects")
        return sorted(keys)

    def open_stream(self, key: str) -> BinaryIO:
        try:
            return self.client.get_object(Bucket=self.bucket, Key=key)['Body']
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, self.bucket, key) from e

    def presign_put(self, key: str, expires_in: int) -> str:
        try:
            return self.client.generate_presigned_url(
                ClientMethod='put_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_client_error(e, self.bucket, key) from e
