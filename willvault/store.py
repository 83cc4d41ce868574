"""
WillVault Durable Store Adapters

Thin interface to an external content-addressed, append-only network:

    put(bytes, content_type) -> locator
    get(locator) -> bytes

Locators are opaque to the core. Puts never overwrite and nothing is ever
deleted. A get returns exactly the bytes that were put, or raises NotFound
(terminal) or StorageUnavailable (transient, retryable).

Implementations:
- InMemoryDurableStore: development and tests
- HttpDurableStore: client of a storage gateway (see willvault.service)
- S3ObjectLockStore: WORM bucket with S3 Object Lock
- SqliteDurableStore: lives in willvault.service.db
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import requests

from .config import HTTP_TIMEOUT_SECONDS, STORE_URL
from .errors import NotFound, StorageError, StorageUnavailable, ValidationError
from .hashing import content_locator, is_content_locator, verify_content

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class DurableStore(ABC):
    """Abstract interface to the durable store."""

    @abstractmethod
    async def put(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        """
        Append a blob.

        Returns:
            Opaque, stable locator
        """

    @abstractmethod
    async def get(self, locator: str) -> bytes:
        """
        Fetch a blob.

        Raises:
            NotFound: the locator does not resolve
            StorageUnavailable: transient failure
        """

    async def exists(self, locator: str) -> bool:
        try:
            await self.get(locator)
        except NotFound:
            return False
        return True


class InMemoryDurableStore(DurableStore):
    """
    In-memory content-addressed store for development/testing.

    WARNING: Not durable. Contents are lost when the process exits.
    """

    def __init__(self):
        self._blobs: Dict[str, Tuple[str, bytes]] = {}
        self.put_count = 0
        self.get_count = 0

    async def put(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        self.put_count += 1
        locator = content_locator(data)
        # Append-only: identical content maps to the existing entry
        self._blobs.setdefault(locator, (content_type, bytes(data)))
        return locator

    async def get(self, locator: str) -> bytes:
        self.get_count += 1
        entry = self._blobs.get(locator)
        if entry is None:
            raise NotFound(locator)
        return entry[1]

    def content_type(self, locator: str) -> Optional[str]:
        entry = self._blobs.get(locator)
        return entry[0] if entry else None

    def __len__(self) -> int:
        return len(self._blobs)


class HttpDurableStore(DurableStore):
    """
    Client of a storage gateway.

    Endpoints:
        POST {base_url}/blobs            body = raw bytes, Content-Type header
                                         -> {"locator": "..."}
        GET  {base_url}/blobs/{locator}  -> raw bytes

    Connection errors, timeouts, 429 and 5xx map to StorageUnavailable;
    404 maps to NotFound. Blocking requests calls run in a worker thread.
    """

    def __init__(
        self,
        base_url: str = STORE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    async def put(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        return await asyncio.to_thread(self._put_sync, data, content_type)

    async def get(self, locator: str) -> bytes:
        return await asyncio.to_thread(self._get_sync, locator)

    def _put_sync(self, data: bytes, content_type: str) -> str:
        try:
            r = self._session.post(
                f"{self.base_url}/blobs",
                data=data,
                headers={"Content-Type": content_type},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise StorageUnavailable(f"store unreachable: {type(e).__name__}") from None
        self._raise_for_status(r, None)
        try:
            return r.json()["locator"]
        except (ValueError, KeyError, TypeError):
            raise StorageUnavailable("store returned a malformed put response") from None

    def _get_sync(self, locator: str) -> bytes:
        try:
            r = self._session.get(
                f"{self.base_url}/blobs/{requests.utils.quote(locator, safe=':')}",
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise StorageUnavailable(f"store unreachable: {type(e).__name__}") from None
        self._raise_for_status(r, locator)
        data = r.content
        if is_content_locator(locator) and not verify_content(locator, data):
            raise StorageUnavailable(f"content for {locator} failed integrity check")
        return data

    @staticmethod
    def _raise_for_status(r: requests.Response, locator: Optional[str]) -> None:
        if r.status_code == 404 and locator is not None:
            raise NotFound(locator)
        if r.status_code == 413:
            raise ValidationError("store rejected the blob as too large")
        if r.status_code == 429 or r.status_code >= 500:
            raise StorageUnavailable(f"store returned HTTP {r.status_code}")
        if r.status_code >= 400:
            raise StorageError(f"store rejected request: HTTP {r.status_code}")


class S3ObjectLockStore(DurableStore):
    """
    Writes each blob as an immutable object to an S3 bucket with Object Lock.

    Requires a bucket with Object Lock enabled. Objects are written in
    COMPLIANCE mode and are never overwritten: a put of content that already
    exists returns the existing locator.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "willvault/blobs/",
        retention_days: int = 36500,
        legal_hold: str = "OFF",
        client=None
    ):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError(
                    "boto3 required for S3 Object Lock storage. Install with: pip install willvault[s3]"
                ) from e
            self._client = boto3.client("s3")
        return self._client

    def _key(self, locator: str) -> str:
        if not is_content_locator(locator):
            raise NotFound(locator)
        return f"{self.prefix}{locator.split(':', 1)[1]}"

    async def put(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        return await asyncio.to_thread(self._put_sync, data, content_type)

    async def get(self, locator: str) -> bytes:
        return await asyncio.to_thread(self._get_sync, locator)

    def _put_sync(self, data: bytes, content_type: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        s3 = self._get_client()
        locator = content_locator(data)
        key = self._key(locator)
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        try:
            try:
                s3.head_object(Bucket=self.bucket, Key=key)
                return locator
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") not in ("404", "NoSuchKey", "NotFound"):
                    raise
            s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ObjectLockMode="COMPLIANCE",
                ObjectLockRetainUntilDate=retain_until,
                ObjectLockLegalHoldStatus=self.legal_hold,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageUnavailable(f"S3 put failed: {type(e).__name__}") from None
        return locator

    def _get_sync(self, locator: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        s3 = self._get_client()
        key = self._key(locator)
        try:
            resp = s3.get_object(Bucket=self.bucket, Key=key)
            data = resp["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                raise NotFound(locator) from None
            raise StorageUnavailable(f"S3 get failed: {type(e).__name__}") from None
        except BotoCoreError as e:
            raise StorageUnavailable(f"S3 get failed: {type(e).__name__}") from None
        if not verify_content(locator, data):
            raise StorageUnavailable(f"content for {locator} failed integrity check")
        return data
