"""Async HTTP adapter used for the aggregator API and audio downloads."""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import UpstreamError

log = logging.getLogger("music.http")

_MAX_LOG_BODY = 512
_USER_AGENT = "music-voice-bot/1.0"


class _TransientStatus(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"temporary upstream status {status}")
        self.status = status


def _is_retryable(status: int) -> bool:
    return status >= 500 or status == 429


class HttpClient:
    """Thin wrapper around :class:`httpx.AsyncClient` with retries on transient failures.

    Connection errors, timeouts, HTTP 429 and 5xx answers are retried with
    exponential backoff; other 4xx answers fail immediately. Every failure
    surfaces as :class:`UpstreamError`.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        read_timeout: float = 15.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.8,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._connect_timeout = float(connect_timeout)
        self._read_timeout = float(read_timeout)
        self._retry_attempts = max(1, int(retry_attempts))
        self._retry_base_delay = max(0.0, float(retry_base_delay))
        self._transport = transport
        self._headers = {"User-Agent": _USER_AGENT, **dict(headers or {})}
        self._client: Optional[httpx.AsyncClient] = None

    def _timeout(self, read: Optional[float] = None) -> httpx.Timeout:
        read_timeout = self._read_timeout if read is None else float(read)
        return httpx.Timeout(
            connect=self._connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=self._connect_timeout,
        )

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout(),
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _retrying(self) -> AsyncRetrying:
        base = self._retry_base_delay
        return AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=base, min=base, max=max(base, 10.0)),
            retry=retry_if_exception_type((httpx.TransportError, _TransientStatus)),
            reraise=True,
        )

    async def get_json(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Return the decoded JSON body, or the raw text when it is not JSON."""

        client = self._ensure_client()

        async def _once() -> httpx.Response:
            response = await client.get(
                url,
                params=dict(params or {}),
                headers=dict(headers or {}),
                timeout=self._timeout(timeout),
            )
            self._check_status(url, response)
            return response

        response = await self._run(url, _once)
        text = response.text
        log.debug(
            "music.http.response",
            extra={"meta": {"url": url, "status": response.status_code, "body": text[:_MAX_LOG_BODY]}},
        )
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def get_binary(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ) -> bytes:
        """Download ``url`` fully, refusing bodies larger than ``max_bytes``."""

        client = self._ensure_client()

        async def _once() -> bytes:
            async with client.stream(
                "GET",
                url,
                headers=dict(headers or {}),
                timeout=self._timeout(timeout),
            ) as response:
                self._check_status(url, response)
                declared = response.headers.get("content-length")
                if max_bytes and declared and declared.isdigit() and int(declared) > max_bytes:
                    raise UpstreamError(
                        f"download is too large: {declared} bytes",
                        status=response.status_code,
                    )
                chunks = bytearray()
                async for chunk in response.aiter_bytes():
                    chunks.extend(chunk)
                    if max_bytes and len(chunks) > max_bytes:
                        raise UpstreamError(
                            f"download exceeded {max_bytes} bytes",
                            status=response.status_code,
                        )
                return bytes(chunks)

        data = await self._run(url, _once)
        log.info("music.http.download", extra={"meta": {"url": url, "bytes": len(data)}})
        return data

    async def _run(self, url: str, call: Any) -> Any:
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await call()
        except _TransientStatus as exc:
            log.warning("music.http.status", extra={"meta": {"url": url, "status": exc.status}})
            raise UpstreamError(str(exc), status=exc.status) from exc
        except httpx.TimeoutException as exc:
            log.warning("music.http.timeout", extra={"meta": {"url": url, "err": repr(exc)}})
            raise UpstreamError("upstream request timed out") from exc
        except httpx.HTTPError as exc:
            log.warning("music.http.error", extra={"meta": {"url": url, "err": repr(exc)}})
            raise UpstreamError(f"upstream request failed: {exc.__class__.__name__}") from exc
        raise UpstreamError("upstream request was not attempted")  # pragma: no cover

    @staticmethod
    def _check_status(url: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if _is_retryable(status):
            raise _TransientStatus(status)
        raise UpstreamError(f"upstream responded with {status}", status=status)

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


__all__ = ["HttpClient"]
