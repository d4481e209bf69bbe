import logging
import os
from asyncio import Lock
from contextlib import AbstractAsyncContextManager

import aioboto3
from aiobotocore.client import AioBaseClient
from botocore.exceptions import BotoCoreError, ClientError

from peanuts.config import Settings


logger = logging.getLogger("s3")  # Logger for S3 interactions


DEFAULT_BUCKET = "peanuts"
DEFAULT_REGION = "us-east-1"
# Renditions never change once uploaded
CACHE_CONTROL = "max-age=31536000"

_settings: Settings | None = None

_client_ctx: AbstractAsyncContextManager[AioBaseClient] | None = None
_client: AioBaseClient | None = None
_client_lock: Lock = Lock()


class StorageError(RuntimeError):
    """Raised when a rendition could not be stored."""


def _setting(env_name: str, attr: str, default: str | None = None) -> str | None:
    """Environment first, then the settings passed to ``init_storage``."""
    fallback = getattr(_settings, attr) if _settings is not None else default
    return os.getenv(env_name, fallback)


async def _make_client() -> AioBaseClient:
    session = aioboto3.Session()
    client_ctx = session.client(
        "s3",
        endpoint_url=_setting("S3_ENDPOINT", "s3_endpoint"),
        region_name=_setting("S3_REGION", "s3_region", DEFAULT_REGION),
        aws_access_key_id=_setting("S3_ACCESS_KEY", "s3_access_key"),
        aws_secret_access_key=_setting("S3_SECRET_KEY", "s3_secret_key"),
    )
    try:
        client = await client_ctx.__aenter__()
    except (BotoCoreError, ClientError) as exc:
        try:
            await client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client after failed entry")
        logger.exception("Failed to create S3 client: %s", exc)
        raise
    global _client_ctx
    _client_ctx = client_ctx
    return client


async def get_client() -> AioBaseClient:
    """Return a cached aioboto3 client, creating it if needed."""
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = await _make_client()
        return _client


async def close_client() -> None:
    """Close the cached S3 client if it exists."""
    global _client, _client_ctx
    if _client_ctx is not None:
        try:
            await _client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client")
    _client = None
    _client_ctx = None


async def init_storage(cfg: Settings) -> None:
    """Remember settings and drop any client built from older ones."""
    global _settings
    _settings = cfg
    await close_client()


def rendition_key(file_stem: str, width: int, height: int) -> str:
    return f"{file_stem}/{file_stem}.{width}x{height}.jpeg"


def get_public_url(key: str) -> str:
    """Public URL of an uploaded object.

    ``PEANUTS_STATIC_HOST`` wins; otherwise the object is addressed through
    the custom endpoint, or the regional AWS host.
    """
    static_host = _setting("PEANUTS_STATIC_HOST", "static_host")
    if static_host:
        return f"{static_host.rstrip('/')}/{key}"

    bucket = _setting("S3_BUCKET", "s3_bucket", DEFAULT_BUCKET)
    endpoint = _setting("S3_ENDPOINT", "s3_endpoint")
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{key}"

    region = _setting("S3_REGION", "s3_region", DEFAULT_REGION)
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


async def upload_rendition(file_stem: str, width: int, height: int, data: bytes) -> str:
    """Upload a JPEG rendition and return its public URL."""
    key = rendition_key(file_stem, width, height)
    logger.info("Uploading resized image of size %sx%s", width, height)
    try:
        client = await get_client()
        await client.put_object(
            Bucket=_setting("S3_BUCKET", "s3_bucket", DEFAULT_BUCKET),
            Key=key,
            Body=data,
            ContentType="image/jpeg",
            ACL="public-read",
            CacheControl=CACHE_CONTROL,
        )
    except (BotoCoreError, ClientError) as exc:
        logger.exception("S3 upload of %s failed: %s", key, exc)
        raise StorageError(f"S3 upload of {key} failed") from exc
    logger.info("Uploading resized image of size %sx%s finished", width, height)
    return get_public_url(key)
