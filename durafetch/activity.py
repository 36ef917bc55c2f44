"""The single side-effecting activity: one outbound HTTP request."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from .contracts import TRANSPORT_FAILURE_STATUS, HttpRequestSpec

logger = logging.getLogger(__name__)


class ActivityResponse(BaseModel):
    """Outcome of one HTTP call.

    ``error`` is set only when no usable response was received (connection
    failures, timeouts, undecodable bodies, redirect loops), in which case
    ``status_code`` is ``TRANSPORT_FAILURE_STATUS``.
    """

    status_code: int
    content: Optional[str] = None
    error: Optional[str] = None


class HttpCallActivity:
    """Performs exactly one HTTP request per ``call``; never retries."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def call(self, spec: HttpRequestSpec) -> ActivityResponse:
        headers = dict(spec.headers)
        if spec.content_type:
            headers.setdefault("Content-Type", spec.content_type)

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            try:
                response = await client.request(
                    spec.method,
                    spec.uri,
                    headers=headers,
                    content=spec.body.encode() if spec.body is not None else None,
                )
            except httpx.RequestError as e:
                logger.warning(
                    f"{spec.method} {spec.uri} failed without a response: "
                    f"{type(e).__name__}: {e}"
                )
                return ActivityResponse(
                    status_code=TRANSPORT_FAILURE_STATUS,
                    error=f"{type(e).__name__}: {e}",
                )

        return ActivityResponse(status_code=response.status_code, content=response.text)
