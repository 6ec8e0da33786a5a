"""Asynchronous HTTP transport to the decision backend.

Wraps ``httpx.AsyncClient`` with a flat retry policy, connectivity
tracking, and request counters. Network failures are retried; well-formed
HTTP error responses are handed back to the caller untouched.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

ResultCallback = Callable[[bool, str], None]


@dataclass
class TransportResult:
    success: bool
    body: str
    status_code: Optional[int] = None
    transport_error: bool = False


class TransportClient:
    """Retrying JSON client with a connected/disconnected flag."""

    SUPPORTED_METHODS = {"GET", "POST", "DELETE"}

    def __init__(
        self,
        base_url: str,
        *,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.retry_delay = max(0.0, retry_delay)
        self.timeout = timeout
        self.health_timeout = health_timeout
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._background: set[asyncio.Task] = set()
        self.is_connected = False
        self.last_error = ""
        self.successful_requests = 0
        self.failed_requests = 0

    async def send(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        callback: Optional[ResultCallback] = None,
    ) -> TransportResult:
        result = await self._send_with_retry(method.upper(), path, body)
        if callback is not None:
            callback(result.success, result.body)
        return result

    def send_in_background(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        callback: Optional[ResultCallback] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(self.send(method, path, body, callback))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    async def check_connection(self) -> bool:
        try:
            response = await self._client.get("/health", timeout=self.health_timeout)
        except httpx.TransportError as exc:
            self._mark_disconnected(str(exc) or type(exc).__name__)
            logger.warning("backend health check failed url=%s error=%s", self.base_url, self.last_error)
            return False
        if response.is_success:
            self._mark_connected()
            logger.info("connected to backend url=%s health=%s", self.base_url, response.text[:200])
            return True
        self._mark_disconnected(f"HTTP {response.status_code}")
        logger.warning("backend health check rejected url=%s status=%s", self.base_url, response.status_code)
        return False

    def stats(self) -> dict[str, Any]:
        return {
            "backend_url": self.base_url,
            "connected": self.is_connected,
            "last_error": self.last_error,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
        }

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self._client.aclose()

    async def _send_with_retry(self, method: str, path: str, body: Optional[dict[str, Any]]) -> TransportResult:
        if method not in self.SUPPORTED_METHODS:
            logger.error("unsupported http method method=%s path=%s", method, path)
            return TransportResult(success=False, body=f"Unsupported HTTP method: {method}")

        payload = body if body is not None else {}
        last_error = ""
        for attempt in range(self.max_retries + 1):
            try:
                if method == "POST":
                    response = await self._client.post(path, json=payload)
                elif method == "DELETE":
                    response = await self._client.delete(path)
                else:
                    response = await self._client.get(path)
            except httpx.TransportError as exc:
                self.failed_requests += 1
                last_error = str(exc) or type(exc).__name__
                if attempt < self.max_retries:
                    logger.warning(
                        "request failed, retrying method=%s path=%s attempt=%s/%s error=%s",
                        method,
                        path,
                        attempt + 1,
                        self.max_retries,
                        last_error,
                    )
                    await self._sleep(self.retry_delay)
                    continue
                break

            if response.is_success:
                self.successful_requests += 1
                self._mark_connected()
                return TransportResult(success=True, body=response.text, status_code=response.status_code)

            self.failed_requests += 1
            logger.warning(
                "backend returned error method=%s path=%s status=%s",
                method,
                path,
                response.status_code,
            )
            return TransportResult(
                success=False,
                body=response.text or response.reason_phrase,
                status_code=response.status_code,
            )

        logger.error("request failed after %s retries method=%s path=%s error=%s", self.max_retries, method, path, last_error)
        self._mark_disconnected(last_error)
        return TransportResult(success=False, body=last_error, transport_error=True)

    def _mark_connected(self) -> None:
        if not self.is_connected:
            logger.info("backend connection restored url=%s", self.base_url)
        self.is_connected = True
        self.last_error = ""

    def _mark_disconnected(self, error: str) -> None:
        self.is_connected = False
        self.last_error = error

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background request raised error=%s: %s", type(exc).__name__, exc)
