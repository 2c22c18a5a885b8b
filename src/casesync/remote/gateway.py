"""Authenticated HTTP gateway to the system-of-record.

Every request resolves a fresh descriptor, so a credential change takes
effect on the next call without a restart.

Failures map onto the error taxonomy:
    httpx.TimeoutException  -> RemoteTimeout
    other httpx.TransportError -> RemoteNetworkError
    non-2xx response        -> RemoteRejected
    2xx with a non-JSON body -> {} (the request still succeeded)
    disabled descriptor     -> ConfigUnavailable
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from casesync.errors import (
    ConfigUnavailable,
    RemoteNetworkError,
    RemoteRejected,
    RemoteTimeout,
)
from casesync.remote.resolver import ConfigResolver

logger = logging.getLogger(__name__)


class RemoteGateway(Protocol):
    """Protocol for authenticated requests to the system-of-record."""

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform a request and return the decoded JSON body."""
        ...

    async def get_invoice(self, invoice_id: str) -> dict[str, Any]:
        ...

    async def create_payment(
        self, invoice_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        ...


class ServeManagerGateway:
    """RemoteGateway over httpx with HTTP Basic auth (``api_key:``)."""

    def __init__(
        self,
        resolver: ConfigResolver,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._resolver = resolver
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        descriptor = await self._resolver.resolve()
        if not descriptor.enabled:
            raise ConfigUnavailable("ServeManager integration is not configured")

        url = descriptor.base_url.rstrip("/") + "/" + path.lstrip("/")
        async with httpx.AsyncClient(
            auth=httpx.BasicAuth(descriptor.api_key, ""),
            timeout=self._timeout_seconds,
            transport=self._transport,
            headers={"Accept": "application/json"},
        ) as client:
            try:
                resp = await client.request(method, url, json=body)
            except httpx.TimeoutException as e:
                raise RemoteTimeout(f"{method} {path} timed out") from e
            except httpx.TransportError as e:
                raise RemoteNetworkError(f"{method} {path} failed: {e}") from e

        if not resp.is_success:
            logger.warning("Remote %s %s returned %s", method, path, resp.status_code)
            raise RemoteRejected(resp.status_code, resp.text, path)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            # the request succeeded; an unreadable body does not undo it
            logger.warning(
                "Remote %s %s returned %s with a non-JSON body",
                method,
                path,
                resp.status_code,
            )
            return {}

    async def get_invoice(self, invoice_id: str) -> dict[str, Any]:
        return await self.request(f"/invoices/{invoice_id}")

    async def create_payment(
        self, invoice_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.request(
            f"/invoices/{invoice_id}/payments", method="POST", body=payload
        )

    async def list_page(
        self, resource: str, page: int = 1, per_page: int = 100
    ) -> dict[str, Any]:
        """Fetch one page of a collection resource (jobs, clients, servers)."""
        return await self.request(f"/{resource}?page={page}&per_page={per_page}")
