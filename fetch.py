"""Outbound HTTP with a hard timeout.

A request that runs past its timeout is cancelled and reported as a failed
envelope. It is not retried.
"""

from typing import Any, Dict, Optional

import httpx

from config import settings
from errors import ActionResponse, RequestError, handle_error
from log import get_logger

logger = get_logger(__name__)

DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class UpstreamError(RequestError):
    """Non-2xx reply from the remote service, carrying its status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self._status_code = status_code

    @property
    def status_code(self) -> int:
        return self._status_code


async def fetch_handler(
    url: str,
    method: str = "GET",
    json: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ActionResponse:
    timeout = settings.FETCH_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, json=json, headers={**DEFAULT_HEADERS, **(headers or {})})
        if response.is_error:
            raise UpstreamError(response.status_code, f"HTTP error: {response.status_code}")
        return ActionResponse.model_validate(response.json())
    except httpx.TimeoutException:
        logger.warning(f"Request to {url} timed out", extra={"timeout": timeout})
        return handle_error(RequestError(f"Request to {url} timed out after {timeout}s"))
    except UpstreamError as error:
        return handle_error(error)
    except Exception as error:
        logger.error(f"Error fetching {url}: {error}")
        return handle_error(error)
