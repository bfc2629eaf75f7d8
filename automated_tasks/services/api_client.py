from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

import httpx
import msal

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60


class ApiError(Exception):
    """Raised when an API request cannot be completed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiClient:
    """Thin httpx wrapper that treats 404 as "no content" and any other failure as an error."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.timeout_seconds = timeout_seconds
        self._client = client

    def _error_info(self, correlation_id: str | None) -> str:
        return f"(baseUri: {self.base_url}, correlationId: {correlation_id or 'Not provided'})"

    async def _headers(self, correlation_id: str | None, headers: dict[str, str] | None) -> dict[str, str]:
        merged = dict(headers or {})
        if correlation_id is not None:
            merged["x-correlation-id"] = correlation_id
        return merged

    async def request_raw(
        self,
        method: str,
        path: str,
        *,
        correlation_id: str | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        text_body: str | None = None,
    ) -> httpx.Response:
        # Absolute paths replace any path on the base URL, relative ones extend it.
        url = urljoin(self.base_url, path)
        request_headers = await self._headers(correlation_id, headers)
        content: str | None = None
        if method.upper() != "GET":
            if json_body is not None:
                content = json.dumps(json_body)
                request_headers["content-type"] = "application/json"
            else:
                content = text_body

        try:
            if self._client is not None:
                response = await self._client.request(method, url, content=content, headers=request_headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, content=content, headers=request_headers)
        except httpx.HTTPError as exc:
            raise ApiError(f'API fetch error "{exc}" {self._error_info(correlation_id)}') from exc

        if response.status_code != 404 and not response.is_success:
            raise ApiError(
                f'API request failed with status {response.status_code} "{response.reason_phrase}" '
                f"{self._error_info(correlation_id)}",
                status_code=response.status_code,
            )
        return response

    async def request(
        self,
        method: str,
        path: str,
        *,
        correlation_id: str | None = None,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        text_body: str | None = None,
    ) -> Any | None:
        response = await self.request_raw(
            method,
            path,
            correlation_id=correlation_id,
            headers=headers,
            json_body=json_body,
            text_body=text_body,
        )
        if response.status_code == 404:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f'API response JSON parse failed "{exc}" {self._error_info(correlation_id)}') from exc


@dataclass(slots=True)
class MsalAuthOptions:
    tenant: str
    authority_host_url: str
    client_id: str
    client_secret: str
    resource: str


@dataclass(slots=True)
class CachedToken:
    access_token: str
    expires_at: float


def build_client_application(options: MsalAuthOptions) -> msal.ConfidentialClientApplication:
    authority_host = options.authority_host_url if options.authority_host_url.endswith("/") else f"{options.authority_host_url}/"
    return msal.ConfidentialClientApplication(
        client_id=options.client_id,
        client_credential=options.client_secret,
        authority=urljoin(authority_host, options.tenant),
    )


class MsalApiClient(ApiClient):
    """API client authenticating with an MSAL client-credential bearer token."""

    def __init__(
        self,
        base_url: str,
        auth: MsalAuthOptions,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        application: Any | None = None,
    ) -> None:
        super().__init__(base_url, timeout_seconds=timeout_seconds, client=client)
        self.resource = auth.resource
        self._application = application or build_client_application(auth)
        self._cached_token: CachedToken | None = None
        self._token_lock = asyncio.Lock()

    async def _access_token(self, correlation_id: str | None) -> str:
        async with self._token_lock:
            if self._cached_token is not None and self._cached_token.expires_at > time.time():
                return self._cached_token.access_token

            try:
                result = await asyncio.to_thread(
                    self._application.acquire_token_for_client,
                    scopes=[f"{self.resource}/.default"],
                )
            except Exception as exc:
                raise ApiError(f'Error acquiring auth token "{exc}" {self._error_info(correlation_id)}') from exc

            payload: dict[str, Any] = result if isinstance(result, dict) else {}
            if "access_token" not in payload:
                description = payload.get("error_description") or payload.get("error") or "no token returned"
                raise ApiError(f'Error acquiring auth token "{description}" {self._error_info(correlation_id)}')

            expires_in = int(payload.get("expires_in", 0))
            self._cached_token = CachedToken(
                access_token=payload["access_token"],
                expires_at=time.time() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS),
            )
            logger.debug("acquired api token for resource=%s expires_in=%s", self.resource, expires_in)
            return self._cached_token.access_token

    async def _headers(self, correlation_id: str | None, headers: dict[str, str] | None) -> dict[str, str]:
        merged = await super()._headers(correlation_id, headers)
        merged["authorization"] = f"Bearer {await self._access_token(correlation_id)}"
        return merged
