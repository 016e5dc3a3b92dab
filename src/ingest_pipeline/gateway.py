"""
Upload Gateway: issues time-limited write grants into the raw zone.

Against S3 the grant URL is a pre-signed PUT URL and S3 itself enforces
it. Against any other store the gateway signs the URL with HMAC-SHA256 and
checks it again in accept_upload, which stands in for the HTTP PUT.
"""

import hashlib
import hmac
import mimetypes
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urlsplit

from .config import config
from .exceptions import (
    GrantExpiredError,
    GrantReusedError,
    GrantSignatureError,
    InvalidKeyError,
)
from .models import StoredObject, UploadGrant, utcnow
from .storage import ObjectStore
from .utils.logger import get_logger

logger = get_logger(__name__)


class GrantSigner:
    """HMAC signer binding an operation, bucket, key, and expiry together."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("signing secret is required")
        self._secret = secret.encode('utf-8')

    def sign(self, bucket: str, key: str, expires: int, operation: str = "put") -> str:
        message = f"{operation.upper()}\n{bucket}\n{key}\n{expires}".encode('utf-8')
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, bucket: str, key: str, expires: int, signature: str, operation: str = "put") -> bool:
        expected = self.sign(bucket, key, expires, operation)
        return hmac.compare_digest(expected, signature)


class UploadGateway:
    """
    Hands out upload grants for the raw store.

    Args:
        store: Raw object store grants are issued against.
        expires_in: Grant validity in seconds.
        signer: Signer for locally served grants. Built from config if None.
        base_url: Public base URL of locally served grants.
        key_prefix: Prefix prepended to requested keys (e.g. ``raw/``).
        single_use: Reject a locally served grant presented twice.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: ObjectStore,
        expires_in: Optional[int] = None,
        signer: Optional[GrantSigner] = None,
        base_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        single_use: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.expires_in = expires_in if expires_in is not None else config.upload.expires_in
        self.signer = signer or GrantSigner(config.upload.signing_secret)
        self.base_url = (base_url or config.upload.base_url).rstrip('/')
        self.key_prefix = key_prefix if key_prefix is not None else config.s3.raw_prefix
        self.single_use = single_use if single_use is not None else config.upload.single_use
        self._clock = clock
        # Redeemed signature -> grant expiry (epoch seconds)
        self._redeemed: Dict[str, int] = {}

        if self.expires_in <= 0:
            raise ValueError("expires_in must be positive")

    def normalize_key(self, key: str) -> str:
        """Validate a requested key and place it under the raw prefix."""
        if not isinstance(key, str) or not key.strip():
            raise InvalidKeyError("file name must be a non-empty string", {'key': key})

        key = key.strip()
        if self.key_prefix and not key.startswith(self.key_prefix):
            key = f"{self.key_prefix}{key.lstrip('/')}"
        return key

    def request_upload_grant(self, key: str) -> UploadGrant:
        """
        Issue a grant allowing one client to PUT one key.

        Args:
            key: Requested file name or object key.

        Returns:
            UploadGrant valid for ``expires_in`` seconds.

        Raises:
            InvalidKeyError: If the key is empty.
        """
        key = self.normalize_key(key)
        now = self._clock()

        if self.store.supports_presigned_urls:
            expires_at = now + timedelta(seconds=self.expires_in)
            url = self.store.presign_put(key, self.expires_in)
        else:
            expires = int(now.timestamp()) + self.expires_in
            expires_at = datetime.fromtimestamp(expires, tz=timezone.utc)
            url = self._local_url(key, expires)

        logger.info(
            f"Issued upload grant for s3://{self.store.bucket}/{key} "
            f"(expires {expires_at.isoformat()})"
        )
        return UploadGrant(
            bucket=self.store.bucket,
            key=key,
            expires_at=expires_at,
            url=url,
        )

    def _local_url(self, key: str, expires: int) -> str:
        signature = self.signer.sign(self.store.bucket, key, expires)
        path = f"{quote(self.store.bucket, safe='')}/{quote(key, safe='/')}"
        return f"{self.base_url}/{path}?expires={expires}&signature={signature}"

    def _parse_local_url(self, url: str) -> Tuple[str, str, int, str]:
        parts = urlsplit(url)
        base_path = urlsplit(self.base_url).path.rstrip('/')
        path = parts.path

        if base_path and not path.startswith(base_path + '/'):
            raise GrantSignatureError("URL was not issued by this gateway", {'url': url})
        bucket, _, key = path[len(base_path) + 1:].partition('/')

        query = parse_qs(parts.query)
        try:
            expires = int(query['expires'][0])
            signature = query['signature'][0]
        except (KeyError, IndexError, ValueError):
            raise GrantSignatureError("URL is missing grant parameters", {'url': url}) from None

        return unquote(bucket), unquote(key), expires, signature

    def accept_upload(
        self,
        url: str,
        body: bytes,
        content_type: Optional[str] = None
    ) -> StoredObject:
        """
        Redeem a locally served grant by writing ``body`` to its key.

        Args:
            url: Upload URL returned in the grant.
            body: File contents.
            content_type: MIME type; guessed from the key when omitted.

        Returns:
            The stored raw object.

        Raises:
            GrantSignatureError: If the URL names another bucket or key than
                the one it was signed for.
            GrantExpiredError: If the grant's expiry has passed.
            GrantReusedError: If single-use grants are enforced and this one
                was already redeemed.
        """
        bucket, key, expires, signature = self._parse_local_url(url)
        details = {'bucket': bucket, 'key': key}

        if bucket != self.store.bucket or not self.signer.verify(bucket, key, expires, signature):
            logger.warning(f"Rejected upload with invalid grant for s3://{bucket}/{key}")
            raise GrantSignatureError("Upload grant does not cover this bucket and key", details)

        grant = UploadGrant(
            bucket=bucket,
            key=key,
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
            url=url,
        )
        now = self._clock()
        if grant.is_expired(now):
            logger.warning(f"Rejected upload with expired grant for s3://{bucket}/{key}")
            raise GrantExpiredError("Upload grant has expired", details)

        self._forget_expired(now)
        if self.single_use and signature in self._redeemed:
            logger.warning(f"Rejected reused grant for s3://{bucket}/{key}")
            raise GrantReusedError("Upload grant was already used", details)

        content_type = content_type or mimetypes.guess_type(key)[0] or "application/octet-stream"
        stored = self.store.put(key, body, content_type)

        # A failed write leaves the grant usable
        if self.single_use:
            self._redeemed[signature] = expires
        return stored

    def _forget_expired(self, now: datetime) -> None:
        """Drop redeemed grants past their expiry."""
        self._redeemed = {
            signature: expires for signature, expires in self._redeemed.items()
            if expires >= now.timestamp()
        }

    @property
    def redeemed_count(self) -> int:
        return len(self._redeemed)
