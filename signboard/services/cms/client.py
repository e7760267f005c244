from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Mapping

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from signboard.core.config import get_settings
from signboard.core.errors import CmsClientError, CmsUnavailableError
from signboard.core.logging import ErrorCode, log_error
from signboard.persistence.repos.settings import get_cms_credentials
from signboard.services.cache import ResponseCache, build_cache_key
from signboard.services.cms.types import (
    CmsConfig,
    ConnectionTestResult,
    DashboardStatus,
    RawResponse,
    TokenStore,
)
from signboard.services.resilience import CircuitBreaker, RetryPolicy, is_retryable_error, retry_async
from signboard.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

INTEGRATION_NAME = "cms"
_DASHBOARD_COUNT_ENDPOINTS = ("menuboard", "library", "layout", "dataset")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _connection_error(exc: Exception) -> CmsClientError:
    log_error(logger, ErrorCode.CMS_API_CONNECTION, type(exc).__name__)
    return CmsClientError("Failed to connect to CMS", 0)


def _invalid_response(response: httpx.Response, what: str) -> CmsClientError:
    # A 2xx answer that is not the expected JSON, e.g. an API URL pointing at an HTML login page.
    log_error(logger, ErrorCode.CMS_API_REQUEST, f"invalid response {what} status={response.status_code}")
    return CmsClientError("Invalid CMS response", response.status_code)


def decode_json(response: httpx.Response, what: str = "body") -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise _invalid_response(response, what) from exc


def response_id(payload: Any, key: str) -> int:
    """Read the id of a created entity from a CMS response body."""
    try:
        return int(payload[key])
    except (KeyError, TypeError, ValueError) as exc:
        log_error(logger, ErrorCode.CMS_API_REQUEST, f"invalid response missing={key}")
        raise CmsClientError("Invalid CMS response", 200) from exc


def _invalidation_prefix(endpoint: str) -> str:
    # "menuboard/5/category" invalidates every "menuboard..." key.
    return endpoint.split("/")[0]


class CmsClient:
    """OAuth2 client-credentials client for the signage CMS REST API.

    Each call passes the circuit breaker gate, then the retry policy, then an
    authenticated send that refreshes the bearer token once on HTTP 401.
    GET responses go through the response cache; mutations invalidate the
    cache prefix of the endpoint's first path segment.
    """

    def __init__(
        self,
        config: CmsConfig,
        *,
        cache: ResponseCache,
        breaker: CircuitBreaker,
        tokens: TokenStore,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        time_source: Callable[[], int] | None = None,
    ) -> None:
        settings = get_settings()
        self._config = config
        self._cache = cache
        self._breaker = breaker
        self._tokens = tokens
        self._retry_policy = retry_policy or RetryPolicy(delays_ms=tuple(settings.ext_retry_delays_ms))
        self._http = http_client
        self._sleep = sleep
        self._now = time_source or _now_ms
        self._timeout_s = settings.cms_http_timeout_s
        self._token_margin_ms = settings.cms_token_margin_s * 1000
        self._cache_ttl_ms = settings.cms_cache_ttl_ms

    @property
    def config(self) -> CmsConfig:
        return self._config

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        # Translate transport failures into status-0 client errors.
        try:
            if self._http is not None:
                return await self._http.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                return await client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise _connection_error(exc) from exc

    async def authenticate(self) -> str:
        started = time.monotonic()
        response = await self._send(
            "POST",
            f"{self._config.base_url}/api/authorize/access_token",
            data={
                "grant_type": "client_credentials",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
            },
        )
        if response.is_error:
            log_error(logger, ErrorCode.CMS_API_AUTH, f"status={response.status_code}")
            raise CmsClientError(
                f"Authentication failed: {response.status_code} {response.text}".strip(),
                response.status_code,
            )
        payload = decode_json(response, "token")
        try:
            access_token = str(payload["access_token"])
            expires_in_s = int(payload.get("expires_in", 3600))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise _invalid_response(response, "token") from exc
        self._tokens.store(
            access_token=access_token,
            expires_in_s=expires_in_s,
            now_ms=self._now(),
            margin_ms=self._token_margin_ms,
        )
        logger.debug("cms_authenticated ms=%.1f", (time.monotonic() - started) * 1000.0)
        return access_token

    async def _ensure_token(self) -> str:
        token = self._tokens.access_token
        if token is None or not self._tokens.is_valid(self._now()):
            token = await self.authenticate()
        return token

    async def _send_with_auth(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        # One refresh-and-retry on 401; a second 401 is returned to the caller.
        token = await self._ensure_token()
        response = await self._send(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
        if response.status_code == 401:
            self._tokens.clear()
            token = await self._ensure_token()
            response = await self._send(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
        return response

    async def _guarded(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        # Breaker decides whether to try at all; retry governs attempts once allowed.
        if not self._breaker.can_attempt():
            raise CmsUnavailableError()
        started = time.monotonic()
        try:
            result = await retry_async(operation, policy=self._retry_policy, sleep=self._sleep)
        except CmsClientError as exc:
            if is_retryable_error(exc):
                self._breaker.record_failure()
            else:
                # The CMS answered; only transient failures count against it.
                self._breaker.record_success()
            record_external_call(
                integration=INTEGRATION_NAME,
                latency_ms=(time.monotonic() - started) * 1000.0,
                success=False,
            )
            raise
        self._breaker.record_success()
        record_external_call(
            integration=INTEGRATION_NAME,
            latency_ms=(time.monotonic() - started) * 1000.0,
            success=True,
        )
        return result

    async def _request_once(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
    ) -> Any:
        started = time.monotonic()
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = dict(params)
        if files is not None:
            kwargs["files"] = dict(files)
            if data:
                kwargs["data"] = dict(data)
        elif body is not None:
            kwargs["json"] = dict(body)
        response = await self._send_with_auth(method, f"{self._config.base_url}/api/{endpoint}", **kwargs)
        logger.debug(
            "cms_request method=%s endpoint=%s status=%s ms=%.1f",
            method,
            endpoint,
            response.status_code,
            (time.monotonic() - started) * 1000.0,
        )
        if response.is_error:
            log_error(logger, ErrorCode.CMS_API_REQUEST, f"{method} {endpoint} {response.status_code}")
            raise CmsClientError(
                f"API request failed: {method} {endpoint} {response.status_code} {response.text}".strip(),
                response.status_code,
            )
        # Some DELETE endpoints answer 204 No Content.
        if response.status_code == 204 or not response.content:
            return None
        return decode_json(response, f"{method} {endpoint}")

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        return await self._guarded(lambda: self._request_once(method, endpoint, **kwargs))

    async def _invalidate_for_endpoint(self, endpoint: str) -> None:
        prefix = _invalidation_prefix(endpoint)
        if prefix:
            await self._cache.invalidate_prefix(prefix)

    async def get(
        self,
        endpoint: str,
        params: Mapping[str, str] | None = None,
        *,
        cache_ttl_ms: int | None = None,
    ) -> Any:
        cache_key = build_cache_key(endpoint, params)
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return json.loads(cached)
        result = await self._request("GET", endpoint, params=params)
        await self._cache.set(
            cache_key,
            json.dumps(result),
            self._cache_ttl_ms if cache_ttl_ms is None else cache_ttl_ms,
        )
        return result

    async def post(self, endpoint: str, body: Mapping[str, Any] | None = None) -> Any:
        result = await self._request("POST", endpoint, body=body)
        await self._invalidate_for_endpoint(endpoint)
        return result

    async def put(self, endpoint: str, body: Mapping[str, Any] | None = None) -> Any:
        result = await self._request("PUT", endpoint, body=body)
        await self._invalidate_for_endpoint(endpoint)
        return result

    async def delete(self, endpoint: str) -> None:
        await self._request("DELETE", endpoint)
        await self._invalidate_for_endpoint(endpoint)

    async def post_multipart(
        self,
        endpoint: str,
        *,
        files: Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
    ) -> Any:
        result = await self._request("POST", endpoint, files=files, data=data)
        await self._invalidate_for_endpoint(endpoint)
        return result

    async def get_raw(self, endpoint: str) -> RawResponse:
        # Binary download; bypasses JSON parsing and the cache.
        async def _once() -> RawResponse:
            response = await self._send_with_auth("GET", f"{self._config.base_url}/api/{endpoint}")
            logger.debug("cms_request_raw endpoint=%s status=%s", endpoint, response.status_code)
            if response.is_error:
                log_error(logger, ErrorCode.CMS_API_REQUEST, f"GET {endpoint} {response.status_code}")
                raise CmsClientError(
                    f"API request failed: GET {endpoint} {response.status_code}",
                    response.status_code,
                )
            return RawResponse(
                content=response.content,
                content_type=response.headers.get("content-type", "application/octet-stream"),
            )

        return await self._guarded(_once)

    async def test_connection(self) -> ConnectionTestResult:
        # Force a fresh token so bad credentials cannot hide behind a cached one.
        self._tokens.clear()
        try:
            await self._guarded(self.authenticate)
            about = await self._request("GET", "about")
        except CmsClientError as exc:
            return ConnectionTestResult(success=False, message=exc.message)
        version = about.get("version") if isinstance(about, dict) else None
        return ConnectionTestResult(success=True, message="Connected successfully", version=version)

    async def _count(self, endpoint: str) -> int | None:
        try:
            data = await self.get(endpoint)
        except CmsClientError:
            return None
        return len(data) if isinstance(data, list) else None

    async def get_dashboard_status(self) -> DashboardStatus:
        # Counts are cached individually; any auth failure yields a disconnected status.
        try:
            await self._guarded(self._ensure_token)
            about = await self.get("about")
        except CmsClientError:
            return DashboardStatus(connected=False)
        version = (about.get("version") or None) if isinstance(about, dict) else None
        menu_boards, media, layouts, datasets = await asyncio.gather(
            *(self._count(endpoint) for endpoint in _DASHBOARD_COUNT_ENDPOINTS)
        )
        return DashboardStatus(
            connected=True,
            version=version,
            menu_board_count=menu_boards,
            media_count=media,
            layout_count=layouts,
            dataset_count=datasets,
        )


async def load_cms_config(session: AsyncSession) -> CmsConfig | None:
    # None when any credential is missing.
    api_url, client_id, client_secret = await get_cms_credentials(session)
    if not api_url or not client_id or not client_secret:
        return None
    return CmsConfig(api_url=api_url, client_id=client_id, client_secret=client_secret)
