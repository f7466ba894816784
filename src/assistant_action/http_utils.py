"""Minimal JSON-over-HTTP helper shared by the GitHub client and token broker."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from assistant_action.errors import NetworkError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20
USER_AGENT = "assistant-action/1.0"


@dataclass(slots=True)
class HttpResponse:
    """Status plus decoded JSON body (``None`` when the body was not JSON)."""

    status: int
    body: Any = None
    text: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _decode(raw: bytes) -> tuple[str, Any]:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return text, None
    try:
        return text, json.loads(text)
    except json.JSONDecodeError:
        return text, None


def request_json(
    url: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    payload: Any = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> HttpResponse:
    """Send a request and return the response without raising on HTTP errors.

    Non-2xx statuses come back as a normal :class:`HttpResponse` so callers
    can inspect structured error bodies. Connection failures raise
    :class:`NetworkError`.
    """
    request_headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    request_headers.update(headers or {})
    data: bytes | None = None
    if payload is not None:
        request_headers["Content-Type"] = "application/json"
        data = json.dumps(payload).encode("utf-8")

    request_obj = Request(url, data=data, headers=request_headers, method=method.upper())
    logger.debug("%s %s", method.upper(), url)
    try:
        with urlopen(request_obj, timeout=timeout) as response:
            text, body = _decode(response.read())
            return HttpResponse(
                status=int(response.status),
                body=body,
                text=text,
                headers=dict(response.headers.items()),
            )
    except HTTPError as exc:
        try:
            raw = exc.read()
        except OSError:
            raw = b""
        text, body = _decode(raw or b"")
        return HttpResponse(
            status=int(exc.code),
            body=body,
            text=text,
            headers=dict(exc.headers.items()) if exc.headers else {},
        )
    except URLError as exc:
        reason = str(getattr(exc, "reason", exc) or "").strip()
        raise NetworkError(f"Could not reach {url}: {reason or exc}") from exc
    except TimeoutError as exc:
        raise NetworkError(f"Request to {url} timed out") from exc
