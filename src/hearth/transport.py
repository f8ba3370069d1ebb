"""Outbound HTTP transport shared by the identity-provider and hub clients."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping

import msgspec


class TransportError(OSError):
    """Raised when an outbound request cannot be completed."""


class HttpRequest(msgspec.Struct, frozen=True):
    method: str
    url: str
    headers: dict[str, str] = msgspec.field(default_factory=dict)
    body: bytes | None = None
    timeout: float = 10.0


class HttpResponse(msgspec.Struct, frozen=True):
    status: int
    body: bytes = b""
    headers: dict[str, str] = msgspec.field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


TransportCallable = Callable[[HttpRequest], Awaitable[HttpResponse] | HttpResponse]


async def send(transport: TransportCallable, request: HttpRequest) -> HttpResponse:
    result: Any = transport(request)
    if inspect.isawaitable(result):
        result = await result
    return result


async def default_transport(request: HttpRequest) -> HttpResponse:
    """Perform ``request`` with :mod:`urllib` on a worker thread.

    HTTP error statuses are returned as responses. Anything that stops a
    complete response from arriving raises :class:`TransportError`, including a
    body cut short after the headers were received.
    """

    import http.client
    import urllib.error
    import urllib.request

    prepared = urllib.request.Request(
        request.url,
        data=request.body,
        headers=dict(request.headers),
        method=request.method,
    )

    def _send() -> HttpResponse:
        try:
            with urllib.request.urlopen(prepared, timeout=request.timeout) as response:
                status = getattr(response, "status", response.getcode())
                return HttpResponse(status=status, body=response.read(), headers=_headers(response.headers))
        except urllib.error.HTTPError as exc:
            try:
                body = exc.read() or b""
            except (OSError, http.client.HTTPException) as read_exc:
                raise TransportError(f"failed reading error response from {request.url!r}: {read_exc!r}") from read_exc
            return HttpResponse(status=exc.code, body=body, headers=_headers(exc.headers))
        except urllib.error.URLError as exc:
            raise TransportError(f"failed to reach {request.url!r}: {exc.reason}") from exc
        except TimeoutError as exc:
            raise TransportError(f"request to {request.url!r} timed out") from exc
        except (OSError, http.client.HTTPException) as exc:
            # IncompleteRead, BadStatusLine or a reset while reading the body
            raise TransportError(f"request to {request.url!r} failed: {exc!r}") from exc

    return await asyncio.to_thread(_send)


def _headers(raw: Mapping[str, str] | None) -> dict[str, str]:
    if raw is None:
        return {}
    return {key: value for key, value in raw.items()}


__all__ = ["HttpRequest", "HttpResponse", "TransportCallable", "TransportError", "default_transport", "send"]
