"""HTTP utilities and an opt-in retry wrapper built on httpx.

Intended use:
- One place for timeouts, User-Agent, TLS policy, and transient-error retries.
- Helpers for conditional requests using ETag (If-Match / If-None-Match).

Notes:
- `RetryConfig.max_retries` counts retries after the first attempt. The default
  is 0: a request is tried once, and the only automatic retry the sync makes
  is the cursor-invalidation fallback in the engine.
"""

from __future__ import annotations

import logging
import os
import random
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass
from time import sleep

import httpx

log = logging.getLogger(__name__)

__all__ = [
    "RetryConfig",
    "create_client",
    "delete_with_etag",
    "put_with_etag",
    "request_with_retries",
]

USER_AGENT = "gcalsync/0.1"


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 0
    backoff_initial_sec: float = 1.0
    backoff_factor: float = 2.0
    jitter_frac: float = 0.2  # +/- 20%
    status_forcelist: tuple[int, ...] = (429, 500, 502, 503, 504)
    methods: tuple[str, ...] = ("GET", "PUT", "DELETE", "HEAD", "OPTIONS", "PROPFIND", "REPORT")


def create_client(
    base_url: str | None = None,
    auth: httpx.Auth | None = None,
    timeout: float = 30.0,
    headers: Mapping[str, str] | None = None,
    verify: bool | str = True,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create a configured httpx client (`transport` is for tests)."""
    if verify is False and os.getenv("GCALSYNC_ENVIRONMENT") == "production":
        raise ValueError(
            "TLS certificate verification cannot be disabled in production. "
            "Set GCALSYNC_ENVIRONMENT to 'development' or 'test' to allow it."
        )
    if verify is False:
        log.warning("TLS certificate verification is DISABLED; use only for development.")

    base_headers: MutableMapping[str, str] = {"User-Agent": USER_AGENT}
    if headers:
        base_headers.update(headers)
    kwargs: dict[str, object] = {
        "auth": auth,
        "timeout": timeout,
        "headers": base_headers,
        "verify": verify,
        "limits": httpx.Limits(max_keepalive_connections=5, max_connections=10),
    }
    if base_url is not None:
        kwargs["base_url"] = base_url
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.Client(**kwargs)  # type: ignore[arg-type]


def _should_retry(
    method: str,
    status_code: int | None,
    exc: Exception | None,
    retry: RetryConfig,
) -> bool:
    if method.upper() not in retry.methods:
        return False
    if exc is not None:
        return True
    if status_code is None:
        return False
    return status_code in retry.status_forcelist


def _sleep_backoff(attempt: int, retry: RetryConfig) -> None:
    # attempt starts at 1
    base = retry.backoff_initial_sec * (retry.backoff_factor ** (attempt - 1))
    jitter = base * retry.jitter_frac
    delay = base + random.uniform(-jitter, jitter)
    if delay > 0:
        sleep(delay)


def request_with_retries(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, str] | None = None,
    data: str | bytes | None = None,
    retry: RetryConfig | None = None,
    expected: Iterable[int] = (200, 201, 204, 207),  # 207 for WebDAV multi-status
) -> httpx.Response:
    """Perform an HTTP request; retry transient failures up to `retry.max_retries` times."""
    cfg = retry or RetryConfig()
    expected = tuple(expected)
    attempts = 1 + max(cfg.max_retries, 0)
    resp: httpx.Response | None = None

    for attempt in range(1, attempts + 1):
        try:
            resp = client.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                content=data.encode("utf-8") if isinstance(data, str) else data,
            )
        except httpx.HTTPError as exc:
            if attempt >= attempts or not _should_retry(method, None, exc, cfg):
                raise
            log.debug("http-retry method=%s url=%s err=%s", method, url, exc)
        else:
            if resp.status_code in expected:
                return resp
            if attempt >= attempts or not _should_retry(method, resp.status_code, None, cfg):
                return resp
            log.debug("http-retry method=%s url=%s status=%s", method, url, resp.status_code)
        _sleep_backoff(attempt, cfg)

    assert resp is not None
    return resp


def put_with_etag(
    client: httpx.Client,
    url: str,
    body: str | bytes,
    *,
    content_type: str,
    etag: str | None = None,
    create_if_missing: bool = False,
    retry: RetryConfig | None = None,
) -> httpx.Response:
    """PUT with If-Match (update) or If-None-Match: * (create-only)."""
    headers = {"Content-Type": content_type}
    if etag:
        headers["If-Match"] = etag
    elif create_if_missing:
        headers["If-None-Match"] = "*"

    return request_with_retries(
        client,
        "PUT",
        url,
        headers=headers,
        data=body,
        retry=retry,
        expected=(200, 201, 204),
    )


def delete_with_etag(
    client: httpx.Client,
    url: str,
    *,
    etag: str | None = None,
    retry: RetryConfig | None = None,
) -> httpx.Response:
    """DELETE with optional If-Match ETag."""
    headers = {}
    if etag:
        headers["If-Match"] = etag
    return request_with_retries(
        client,
        "DELETE",
        url,
        headers=headers,
        retry=retry,
        expected=(200, 204, 404),
    )
