from __future__ import annotations

from typing import Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from app.core.config import Settings
from app.core.logger import get_logger
from app.schemas.health_event import CacheSnapshot

logger = get_logger(component="CacheStore")

_MISSING_CODES = frozenset({"NoSuchBucket", "NoSuchKey", "NotFound", "404"})


class CacheStoreError(Exception):
    """Base class for snapshot storage failures."""


class CacheNotConfiguredError(CacheStoreError):
    """Raised when no cache bucket is configured."""


class CacheReadError(CacheStoreError):
    """Raised when an existing snapshot could not be read or decoded."""


class CacheWriteError(CacheStoreError):
    """Raised when a snapshot could not be written. Nothing is partially written."""


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class CacheStore:
    """Snapshot blob store backed by an S3-compatible bucket.

    ``get`` distinguishes a missing bucket or object (returns None) from any
    other failure (raises), so a transient read error can never look like an
    empty cache. ``put`` overwrites the whole object; there is no locking, the
    poller is the only writer.
    """

    def __init__(self, settings: Settings, session: aioboto3.Session | None = None) -> None:
        self._settings = settings
        self._session = session
        self._bucket_ready = False

    @property
    def session(self) -> aioboto3.Session:
        # Built on first use so a bad AWS_PROFILE surfaces as a cache error, not at wiring time.
        if self._session is None:
            self._session = aioboto3.Session(
                profile_name=self._settings.aws_profile,
                aws_access_key_id=self._settings.aws_access_key_id,
                aws_secret_access_key=self._settings.aws_secret_access_key,
                aws_session_token=self._settings.aws_session_token,
            )
        return self._session

    @property
    def bucket(self) -> str:
        if not self._settings.cache_bucket:
            raise CacheNotConfiguredError("HEALTH_CACHE_BUCKET is not configured")
        return self._settings.cache_bucket

    def _client(self):
        endpoint_url = str(self._settings.s3_endpoint_url) if self._settings.s3_endpoint_url else None
        return self.session.client("s3", region_name=self._settings.aws_region, endpoint_url=endpoint_url)

    async def get(self, key: str) -> CacheSnapshot | None:
        bucket = self.bucket
        try:
            async with self._client() as s3_client:
                response = await s3_client.get_object(Bucket=bucket, Key=key)
                body = await response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                logger.info("No cached snapshot found", bucket=bucket, key=key, code=_error_code(exc))
                return None
            raise CacheReadError(f"Failed to read {bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise CacheReadError(f"Failed to read {bucket}/{key}: {exc}") from exc

        try:
            return CacheSnapshot.model_validate_json(body)
        except ValidationError as exc:
            raise CacheReadError(f"Cached snapshot {bucket}/{key} is not a valid document") from exc

    async def put(self, key: str, snapshot: CacheSnapshot) -> None:
        bucket = self.bucket
        body = snapshot.to_json()
        try:
            async with self._client() as s3_client:
                if not self._bucket_ready:
                    await self._ensure_bucket(s3_client, bucket)
                await s3_client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/json",
                )
        except (ClientError, BotoCoreError) as exc:
            raise CacheWriteError(f"Failed to write {bucket}/{key}: {exc}") from exc

        logger.info(
            "Snapshot written",
            bucket=bucket,
            key=key,
            size_bytes=len(body),
            event_count=len(snapshot.events),
        )

    async def _ensure_bucket(self, s3_client: Any, bucket: str) -> None:
        try:
            await s3_client.head_bucket(Bucket=bucket)
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_CODES:
                raise
            create_kwargs: dict[str, Any] = {"Bucket": bucket}
            if self._settings.aws_region != "us-east-1":
                create_kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._settings.aws_region}
            try:
                await s3_client.create_bucket(**create_kwargs)
                logger.info("Cache bucket created", bucket=bucket)
            except ClientError as create_exc:
                if _error_code(create_exc) != "BucketAlreadyOwnedByYou":
                    raise
        self._bucket_ready = True
