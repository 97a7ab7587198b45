"""Shared boto3 clients and thread-offloaded AWS calls.

Clients are cached per ``(service, region, profile)`` and expire after
``_CLIENT_TTL_SECONDS`` so refreshed profile credentials are picked up by
long-running engines. The cache is LRU-bounded.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from cloud_remediator.config import Settings, load_settings

logger = logging.getLogger(__name__)

ClientKey = tuple[str, str, str]

_CLIENT_CACHE: OrderedDict[ClientKey, tuple[Any, float]] = OrderedDict()
_CLIENT_CACHE_LOCK = threading.Lock()
_CLIENT_TTL_SECONDS = 3600
_CLIENT_CACHE_MAX_SIZE = 64

# Adaptive mode backs off on throttling before errors reach recovery.
_RETRY_POLICY = {"max_attempts": 3, "mode": "adaptive"}


def _client_key(service: str, region: str | None, profile: str | None, settings: Settings) -> ClientKey:
    return (
        service,
        region or settings.aws.default_region or "",
        profile or settings.aws.default_profile or "",
    )


def _build_client(key: ClientKey, settings: Settings) -> Any:
    service, region, profile = key
    session = boto3.Session(profile_name=profile or None, region_name=region or None)
    timeout = settings.aws.sdk_timeout_seconds
    logger.debug("Creating %s client (region=%s, profile=%s)", service, region or "-", profile or "-")
    return session.client(
        service,
        config=Config(read_timeout=timeout, connect_timeout=timeout, retries=_RETRY_POLICY),
    )


def get_client(service: str, region: str | None = None, profile: str | None = None) -> Any:
    settings = load_settings()
    key = _client_key(service, region, profile, settings)
    now = time.monotonic()
    with _CLIENT_CACHE_LOCK:
        entry = _CLIENT_CACHE.get(key)
        if entry is not None and now - entry[1] < _CLIENT_TTL_SECONDS:
            _CLIENT_CACHE.move_to_end(key)
            return entry[0]
        _CLIENT_CACHE.pop(key, None)
        client = _build_client(key, settings)
        _CLIENT_CACHE[key] = (client, now)
        while len(_CLIENT_CACHE) > _CLIENT_CACHE_MAX_SIZE:
            _CLIENT_CACHE.popitem(last=False)
    return client


def clear_client_cache() -> None:
    with _CLIENT_CACHE_LOCK:
        _CLIENT_CACHE.clear()


async def get_client_async(service: str, region: str | None = None, profile: str | None = None) -> Any:
    return await asyncio.to_thread(get_client, service, region, profile)


async def call_aws_api_async(client: Any, method_name: str, **kwargs: Any) -> Any:
    """Run a blocking client method on a worker thread."""
    method = getattr(client, method_name)
    return await asyncio.to_thread(method, **kwargs)


async def wait_for_waiter_async(client: Any, waiter_name: str, **kwargs: Any) -> None:
    waiter = client.get_waiter(waiter_name)
    await asyncio.to_thread(waiter.wait, **kwargs)


def aws_error_code(error: BaseException) -> str:
    """Return the AWS error code of a ``ClientError``, or ``""``."""
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""
